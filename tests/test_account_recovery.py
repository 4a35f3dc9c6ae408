from sqlalchemy import delete, update

from app.core import clock, config
from app.core.results import ErrorCode
from app.db import SessionLocal
from app.models.token import PasswordResetToken, VerificationToken
from app.models.user import User
from app.services import email_service, tokens
from conftest import DEFAULT_PASSWORD, use_credential

NEW_PASSWORD = "N3w!Password"


def _reset_token(db, user):
    db.expire_all()
    return db.query(PasswordResetToken).filter(PasswordResetToken.user_id == user.id).one()


def _verification_token(db, user):
    db.expire_all()
    return db.query(VerificationToken).filter(VerificationToken.user_id == user.id).one()


def _reset(client, token, password=NEW_PASSWORD, confirm=None):
    return client.post(
        "/auth/reset-password",
        json={"token": token, "password": password, "confirm_password": confirm or password},
    )


def _competitor_on_first_clock_read(monkeypatch, frozen_clock, competitor):
    """Commit `competitor` from its own session when the service first reads the clock."""
    pending = [competitor]

    def _utcnow():
        if pending:
            other = SessionLocal()
            try:
                pending.pop()(other)
                other.commit()
            finally:
                other.close()
        return frozen_clock.now

    monkeypatch.setattr(clock, "utcnow", _utcnow)


# ---------------- FORGOT PASSWORD ----------------
def test_forgot_password_same_answer_for_unknown_email(client, make_user, sent_emails):
    make_user()

    known = client.post("/auth/forgot-password", json={"email": "ana@example.com"})
    unknown = client.post("/auth/forgot-password", json={"email": "ghost@example.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    assert [mail["to"] for mail in sent_emails] == ["ana@example.com"]


def test_new_reset_request_invalidates_previous_link(client, db, make_user):
    user = make_user()
    client.post("/auth/forgot-password", json={"email": "ana@example.com"})
    first = _reset_token(db, user).token
    client.post("/auth/forgot-password", json={"email": "ana@example.com"})
    second = _reset_token(db, user).token

    assert first != second
    assert _reset(client, first).status_code == 404
    assert _reset(client, second).status_code == 200


# ---------------- RESET PASSWORD ----------------
def test_reset_password_changes_password_once(client, db, make_user, sent_emails):
    user = make_user()
    client.post("/auth/forgot-password", json={"email": "ana@example.com"})
    token = _reset_token(db, user).token
    assert token in sent_emails[0]["html"]

    response = _reset(client, token)
    assert response.status_code == 200
    assert "Your password was changed - Eternal Gift" in [mail["subject"] for mail in sent_emails]

    reused = _reset(client, token, password="An0ther!Pass")
    assert reused.status_code == 400
    assert reused.json()["error"]["code"] == "TOKEN_ALREADY_USED"

    old = client.post("/auth/login", json={"email": "ana@example.com", "password": DEFAULT_PASSWORD})
    assert old.status_code == 401
    new = client.post("/auth/login", json={"email": "ana@example.com", "password": NEW_PASSWORD})
    assert new.status_code == 200


def test_reset_token_expires(client, db, make_user, frozen_clock):
    user = make_user()
    client.post("/auth/forgot-password", json={"email": "ana@example.com"})
    token = _reset_token(db, user).token

    frozen_clock.advance(minutes=config.RESET_TOKEN_MINUTES, seconds=1)
    response = _reset(client, token)

    assert response.status_code == 410
    assert response.json()["error"]["code"] == "TOKEN_EXPIRED"
    db.expire_all()
    assert db.query(PasswordResetToken).count() == 0


def test_reset_password_revokes_every_session(client, db, make_user, login):
    user = make_user()
    login()
    credential = client.cookies.get(config.SESSION_COOKIE_NAME)

    client.post("/auth/forgot-password", json={"email": "ana@example.com"})
    assert _reset(client, _reset_token(db, user).token).status_code == 200

    use_credential(client, credential)
    assert client.get("/auth/me").status_code == 401


def test_reset_password_clears_lockout(client, db, make_user):
    user = make_user()
    for _ in range(config.MAX_LOGIN_ATTEMPTS):
        client.post("/auth/login", json={"email": "ana@example.com", "password": "Wr0ng!Pass"})

    client.post("/auth/forgot-password", json={"email": "ana@example.com"})
    assert _reset(client, _reset_token(db, user).token).status_code == 200

    response = client.post("/auth/login", json={"email": "ana@example.com", "password": NEW_PASSWORD})
    assert response.status_code == 200


def test_reset_password_validates_input_before_token(client, db, make_user):
    user = make_user()
    client.post("/auth/forgot-password", json={"email": "ana@example.com"})
    token = _reset_token(db, user).token

    assert _reset(client, token, confirm="Different!1").status_code == 400
    assert _reset(client, token, password="weak").status_code == 400
    # the token survives rejected attempts
    assert _reset(client, token).status_code == 200


def test_reset_with_unknown_token(client):
    response = _reset(client, "f" * 64)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_reset_token_loses_race_to_concurrent_redemption(db, make_user, frozen_clock, monkeypatch):
    user = make_user()
    issued = tokens.issue_reset_token(db, user.id)
    db.commit()
    token_id, token = issued.id, issued.token
    db.expunge_all()

    def _redeem_elsewhere(other):
        other.execute(update(PasswordResetToken).where(PasswordResetToken.id == token_id).values(used=True))

    _competitor_on_first_clock_read(monkeypatch, frozen_clock, _redeem_elsewhere)
    result = tokens.redeem_reset_token(db, token)

    assert result.ok is False
    assert result.code == ErrorCode.TOKEN_ALREADY_USED


# ---------------- EMAIL VERIFICATION ----------------
def test_verify_email_activates_login(client, db, sent_emails):
    client.post("/auth/signup", json={"email": "bia@example.com", "password": DEFAULT_PASSWORD})
    user = db.query(User).filter(User.email == "bia@example.com").one()
    token = _verification_token(db, user).token

    response = client.post("/auth/verify-email", json={"token": token})
    assert response.status_code == 200
    assert response.json()["user"]["email_verified"] is True
    assert "Welcome to Eternal Gift" in [mail["subject"] for mail in sent_emails]

    # tokens are deleted on use
    again = client.post("/auth/verify-email", json={"token": token})
    assert again.status_code == 404

    login = client.post("/auth/login", json={"email": "bia@example.com", "password": DEFAULT_PASSWORD})
    assert login.status_code == 200


def test_verification_token_expires(client, db, frozen_clock):
    client.post("/auth/signup", json={"email": "bia@example.com", "password": DEFAULT_PASSWORD})
    user = db.query(User).filter(User.email == "bia@example.com").one()
    token = _verification_token(db, user).token

    frozen_clock.advance(hours=config.VERIFICATION_TOKEN_HOURS, seconds=1)
    response = client.post("/auth/verify-email", json={"token": token})

    assert response.status_code == 410
    db.expire_all()
    assert db.get(User, user.id).email_verified is False


def test_verification_token_loses_race_to_concurrent_redemption(db, make_user, frozen_clock, monkeypatch):
    user = make_user(verified=False)
    issued = tokens.issue_verification_token(db, user.id)
    db.commit()
    token_id, token = issued.id, issued.token
    db.expunge_all()

    def _redeem_elsewhere(other):
        other.execute(delete(VerificationToken).where(VerificationToken.id == token_id))

    _competitor_on_first_clock_read(monkeypatch, frozen_clock, _redeem_elsewhere)
    result = tokens.redeem_verification_token(db, token)

    assert result.ok is False
    assert result.code == ErrorCode.TOKEN_ALREADY_USED


def test_resend_verification_replaces_token(client, db, make_user, sent_emails):
    user = make_user(verified=False)
    response = client.post("/auth/resend-verification", json={"email": "ana@example.com"})
    assert response.status_code == 200
    first = _verification_token(db, user).token

    client.post("/auth/resend-verification", json={"email": "ana@example.com"})
    second = _verification_token(db, user).token

    assert first != second
    assert len(sent_emails) == 2
    assert client.post("/auth/verify-email", json={"token": first}).status_code == 404
    assert client.post("/auth/verify-email", json={"token": second}).status_code == 200


def test_resend_verification_unknown_email(client):
    response = client.post("/auth/resend-verification", json={"email": "ghost@example.com"})
    assert response.status_code == 404


def test_resend_verification_already_verified(client, make_user):
    make_user()
    response = client.post("/auth/resend-verification", json={"email": "ana@example.com"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "EMAIL_ALREADY_VERIFIED"


def test_resend_verification_reports_delivery_failure(client, make_user, monkeypatch):
    make_user(verified=False)

    def _fail(*args, **kwargs):
        raise email_service.EmailDeliveryError("smtp down")

    monkeypatch.setattr(email_service, "send_verification_email", _fail)
    response = client.post("/auth/resend-verification", json={"email": "ana@example.com"})

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "EMAIL_DELIVERY_FAILED"


def test_resend_verification_fails_when_smtp_sends_nothing(client, make_user, monkeypatch):
    make_user(verified=False)
    monkeypatch.setattr(email_service, "send_email", lambda to_email, subject, html_body: False)

    response = client.post("/auth/resend-verification", json={"email": "ana@example.com"})

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "EMAIL_DELIVERY_FAILED"
