import uuid
from datetime import timedelta

from jose import jwt

from app.core import config
from app.core.security import (
    canonicalize_email,
    create_session_credential,
    decode_session_credential,
    hash_password,
    is_valid_email,
    validate_password_strength,
    verify_password,
)


def test_password_hash_roundtrip():
    hashed = hash_password("Str0ng!Pass")
    assert hashed != "Str0ng!Pass"
    assert verify_password("Str0ng!Pass", hashed)
    assert not verify_password("Str0ng!Pas", hashed)


def test_verify_password_rejects_garbage_hash():
    assert not verify_password("Str0ng!Pass", "not-a-hash")


def test_password_policy_reports_every_broken_rule():
    errors = validate_password_strength("abc")
    assert len(errors) == 4
    assert validate_password_strength("Str0ng!Pass") == []


def test_password_policy_requires_listed_special_char():
    assert validate_password_strength("Str0ngPass#") != []
    assert validate_password_strength("Str0ngPass?") == []


def test_email_canonical_form():
    assert canonicalize_email("  Ana@Example.COM ") == "ana@example.com"
    assert canonicalize_email(None) == ""


def test_email_shape():
    assert is_valid_email("ana@example.com")
    assert not is_valid_email("ana@example")
    assert not is_valid_email("ana example@x.com")
    assert not is_valid_email("a" * 250 + "@x.com")


def test_session_credential_carries_ids(frozen_clock):
    user_id, session_id = uuid.uuid4(), uuid.uuid4()
    token = create_session_credential(user_id, "ana@example.com", session_id, frozen_clock.now + timedelta(days=7))

    payload = decode_session_credential(token)
    assert payload["sub"] == user_id
    assert payload["sid"] == session_id
    assert payload["email"] == "ana@example.com"


def test_session_credential_expires_on_service_clock(frozen_clock):
    token = create_session_credential(uuid.uuid4(), "ana@example.com", uuid.uuid4(), frozen_clock.now + timedelta(hours=1))
    assert decode_session_credential(token) is not None

    frozen_clock.advance(hours=1, seconds=1)
    assert decode_session_credential(token) is None


def test_session_credential_rejects_foreign_signature(frozen_clock):
    payload = {
        "sub": str(uuid.uuid4()),
        "sid": str(uuid.uuid4()),
        "exp": int((frozen_clock.now + timedelta(days=1)).timestamp()),
    }
    forged = jwt.encode(payload, "some-other-secret", algorithm=config.ALGORITHM)
    assert decode_session_credential(forged) is None
    assert decode_session_credential("") is None
    assert decode_session_credential("garbage") is None
