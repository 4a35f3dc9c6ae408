from app.core import config
from app.jobs.expire_subscriptions import main as run_expiry_job
from app.models.audit_log import AuditLog
from app.models.subscription import STATUS_ACTIVE, STATUS_EXPIRED, Subscription
from app.models.user import User
from app.services.entitlements import get_effective_plan
from app.services.subscription import expire_overdue_subscriptions

CRON_HEADERS = {"Authorization": "Bearer cron-test-secret"}


# ---------------- CANCEL ----------------
def test_cancel_keeps_access_until_end_date(client, db, make_user, make_subscription, login, sent_emails):
    user = make_user()
    subscription = make_subscription(user, plan="PREMIUM")
    login()

    response = client.post("/subscription/cancel")
    assert response.status_code == 200
    body = response.json()
    assert body["already_cancelled"] is False
    assert body["subscription"]["auto_renew"] is False
    assert body["subscription"]["cancelled_at"] is not None

    db.expire_all()
    stored = db.get(Subscription, subscription.id)
    assert stored.status == STATUS_ACTIVE
    assert stored.auto_renew is False

    effective = get_effective_plan(db, user.id)
    assert effective.is_active is True
    assert effective.plan == "PREMIUM"
    assert "Subscription cancelled - Eternal Gift" in [mail["subject"] for mail in sent_emails]


def test_cancel_is_idempotent(client, make_user, make_subscription, login, sent_emails):
    make_subscription(make_user())
    login()

    client.post("/subscription/cancel")
    response = client.post("/subscription/cancel")

    assert response.status_code == 200
    assert response.json()["already_cancelled"] is True
    assert len(sent_emails) == 1


def test_cancel_without_subscription(client, make_user, login):
    make_user()
    login()

    response = client.post("/subscription/cancel")
    assert response.status_code == 404


def test_cancel_expired_subscription(client, make_user, make_subscription, login):
    make_subscription(make_user(), status=STATUS_EXPIRED, days_left=-1)
    login()

    response = client.post("/subscription/cancel")
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "SUBSCRIPTION_EXPIRED"


# ---------------- EXPIRY SWEEP ----------------
def test_sweep_expires_only_overdue_rows(db, make_user, make_subscription):
    overdue_user = make_user(email="overdue@example.com", plan="PREMIUM")
    overdue = make_subscription(overdue_user, days_left=-1)
    current = make_subscription(make_user(email="current@example.com", plan="ETERNAL"), plan="ETERNAL")
    make_subscription(make_user(email="gone@example.com"), status=STATUS_EXPIRED, days_left=-30)

    assert expire_overdue_subscriptions(db) == 1

    db.expire_all()
    assert db.get(Subscription, overdue.id).status == STATUS_EXPIRED
    assert db.get(Subscription, overdue.id).auto_renew is False
    assert db.get(Subscription, current.id).status == STATUS_ACTIVE
    assert db.get(User, overdue_user.id).plan == "START"

    events = db.query(AuditLog).filter(AuditLog.user_id == overdue_user.id).all()
    assert [event.event_type for event in events] == ["SUBSCRIPTION_EXPIRED"]

    assert expire_overdue_subscriptions(db) == 0


def test_sweep_and_resolver_agree(db, make_user, make_subscription, frozen_clock):
    user = make_user()
    make_subscription(user, days_left=1)
    frozen_clock.advance(days=1, seconds=1)

    before = get_effective_plan(db, user.id)
    assert before.reason == "grace_period_ended"
    assert before.is_active is False

    expire_overdue_subscriptions(db)

    after = get_effective_plan(db, user.id)
    assert after.reason == "expired"
    assert (after.plan, after.is_active) == (before.plan, before.is_active)


# ---------------- CRON ----------------
def test_cron_requires_bearer_secret(client):
    assert client.get("/cron/expire-subscriptions").status_code == 401

    wrong = client.get("/cron/expire-subscriptions", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401
    assert wrong.json()["error"]["code"] == "UNAUTHENTICATED"


def test_cron_runs_sweep(client, make_user, make_subscription):
    make_subscription(make_user(), days_left=-2)

    response = client.get("/cron/expire-subscriptions", headers=CRON_HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert body["expired"] == 1
    assert body["timestamp"]


def test_cron_refuses_when_unconfigured(client, monkeypatch):
    monkeypatch.setattr(config, "CRON_SECRET", "")

    response = client.get("/cron/expire-subscriptions", headers=CRON_HEADERS)
    assert response.status_code == 500


def test_expiry_job_entry_point(db, make_user, make_subscription):
    subscription = make_subscription(make_user(), days_left=-1)
    assert run_expiry_job() == 1

    db.expire_all()
    assert db.get(Subscription, subscription.id).status == STATUS_EXPIRED
