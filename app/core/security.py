from __future__ import annotations

import re
import secrets
import uuid
from datetime import datetime
from typing import Any, Optional

from email_validator import EmailNotValidError, validate_email
from fastapi import Request
from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core import clock, config

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

EMAIL_MAX_LENGTH = 254
PASSWORD_SPECIAL_CHARS = "@$!%*?&"

# Verified against when the email is unknown so both branches cost one hash check.
_DUMMY_PASSWORD_HASH = pwd_context.hash(secrets.token_hex(16))


# ---------------- PASSWORD ----------------
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(password, hashed)
    except (ValueError, TypeError):
        return False


def burn_password_check(password: str) -> None:
    pwd_context.verify(password, _DUMMY_PASSWORD_HASH)


def validate_password_strength(password: str) -> list[str]:
    """Return every policy rule the password breaks; an empty list means it is acceptable."""
    errors: list[str] = []

    if len(password) < config.PASSWORD_MIN_LENGTH:
        errors.append(f"Password must be at least {config.PASSWORD_MIN_LENGTH} characters")

    if not re.search(r"[a-z]", password):
        errors.append("Password must include a lowercase letter")

    if not re.search(r"[A-Z]", password):
        errors.append("Password must include an uppercase letter")

    if not re.search(r"[0-9]", password):
        errors.append("Password must include a number")

    if not any(char in PASSWORD_SPECIAL_CHARS for char in password):
        errors.append(f"Password must include a special character ({PASSWORD_SPECIAL_CHARS})")

    return errors


# ---------------- EMAIL ----------------
def canonicalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: str) -> bool:
    if not email or len(email) > EMAIL_MAX_LENGTH:
        return False
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


# ---------------- TOKENS ----------------
def generate_secure_token(num_bytes: int = 32) -> str:
    return secrets.token_hex(num_bytes)


def create_session_credential(
    user_id: uuid.UUID,
    email: str,
    session_id: uuid.UUID,
    expires_at: datetime,
) -> str:
    now = clock.utcnow()
    payload = {
        "sub": str(user_id),
        "email": email,
        "sid": str(session_id),
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, config.SECRET_KEY, algorithm=config.ALGORITHM)


def decode_session_credential(token: str | None) -> Optional[dict[str, Any]]:
    """
    Verify signature and expiry of a session credential.

    Returns the claims with `sub` and `sid` parsed into UUIDs, or None when
    the credential is missing, tampered, expired or malformed.
    """
    if not token:
        return None

    try:
        payload = jwt.decode(
            token,
            config.SECRET_KEY,
            algorithms=[config.ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        return None

    # expiry is checked against the service clock so it agrees with session rows
    exp = payload.get("exp")
    if not isinstance(exp, (int, float)) or exp <= clock.utcnow().timestamp():
        return None

    try:
        payload["sub"] = uuid.UUID(str(payload.get("sub")))
        payload["sid"] = uuid.UUID(str(payload.get("sid")))
    except ValueError:
        return None

    return payload


# ---------------- REQUEST METADATA ----------------
def client_ip(request: Request | None) -> str | None:
    if request is None:
        return None

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    if request.client:
        return request.client.host
    return None


def client_user_agent(request: Request | None) -> str | None:
    if request is None:
        return None
    return request.headers.get("user-agent")
