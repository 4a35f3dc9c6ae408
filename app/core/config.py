from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent.parent
load_dotenv(BASE_DIR / ".env")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


SECRET_KEY = os.getenv("SECRET_KEY")

if not SECRET_KEY:
    raise RuntimeError("SECRET_KEY not set in environment")

ALGORITHM = "HS256"

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./eternal_gift.db")
REDIS_URL = os.getenv("REDIS_URL")

# ---------------- AUTH ----------------
MAX_LOGIN_ATTEMPTS = _env_int("MAX_LOGIN_ATTEMPTS", 5)
LOCKOUT_MINUTES = _env_int("LOCKOUT_MINUTES", 15)
SESSION_DURATION_DAYS = _env_int("SESSION_DURATION_DAYS", 7)
REMEMBER_ME_MULTIPLIER = _env_int("REMEMBER_ME_MULTIPLIER", 4)
VERIFICATION_TOKEN_HOURS = _env_int("VERIFICATION_TOKEN_HOURS", 24)
RESET_TOKEN_MINUTES = _env_int("RESET_TOKEN_MINUTES", 60)
PASSWORD_MIN_LENGTH = _env_int("PASSWORD_MIN_LENGTH", 8)

SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")
SESSION_COOKIE_SECURE = _env_bool("SESSION_COOKIE_SECURE", True)

# ---------------- BILLING ----------------
CHECKOUT_REUSE_WINDOW_MINUTES = _env_int("CHECKOUT_REUSE_WINDOW_MINUTES", 60)
IDEMPOTENCY_BUCKET_SECONDS = _env_int("IDEMPOTENCY_BUCKET_SECONDS", 60)
SUBSCRIPTION_PERIOD_MONTHS = _env_int("SUBSCRIPTION_PERIOD_MONTHS", 1)
PAYMENT_GATEWAY = os.getenv("PAYMENT_GATEWAY", "mock").strip().lower()
CURRENCY = os.getenv("CURRENCY", "BRL")

CRON_SECRET = os.getenv("CRON_SECRET")

# ---------------- FRONTEND ----------------
FRONTEND_BASE_URL = os.getenv("FRONTEND_BASE_URL", "http://localhost:3000").rstrip("/")
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "").strip()
