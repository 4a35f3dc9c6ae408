import os
from datetime import datetime, timedelta, timezone

os.environ["SECRET_KEY"] = "test-secret-key-for-session-credentials"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SESSION_COOKIE_SECURE"] = "false"
os.environ["CRON_SECRET"] = "cron-test-secret"
os.environ["REDIS_URL"] = ""
os.environ["SMTP_HOST"] = ""

import pytest
from fastapi.testclient import TestClient

from app.core import clock, config
from app.core.security import hash_password
from app.db import Base, SessionLocal, engine
from app.main import app
from app.models.subscription import STATUS_ACTIVE, Subscription
from app.models.user import User
from app.services import email_service
from app.services.payment_gateway import MockPaymentGateway, get_payment_gateway

DEFAULT_PASSWORD = "Str0ng!Pass"


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def frozen_clock(monkeypatch):
    frozen = FrozenClock(datetime.now(timezone.utc).replace(microsecond=0))
    monkeypatch.setattr(clock, "utcnow", frozen)
    return frozen


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    outbox = []

    def _capture(to_email, subject, html_body):
        outbox.append({"to": to_email, "subject": subject, "html": html_body})
        return True

    monkeypatch.setattr(email_service, "send_email", _capture)
    return outbox


@pytest.fixture
def gateway():
    instance = MockPaymentGateway()
    app.dependency_overrides[get_payment_gateway] = lambda: instance
    yield instance
    app.dependency_overrides.pop(get_payment_gateway, None)


@pytest.fixture
def client(gateway):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(db):
    def _make_user(email="ana@example.com", password=DEFAULT_PASSWORD, verified=True, **fields):
        user = User(
            email=email,
            name=fields.pop("name", "Ana"),
            password_hash=hash_password(password),
            email_verified=verified,
            **fields,
        )
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def make_subscription(db, frozen_clock):
    def _make_subscription(user, plan="PREMIUM", status=STATUS_ACTIVE, days_left=20, **fields):
        now = frozen_clock.now
        subscription = Subscription(
            user_id=user.id,
            plan=plan,
            status=status,
            start_date=now - timedelta(days=10),
            end_date=now + timedelta(days=days_left),
            auto_renew=fields.pop("auto_renew", True),
            **fields,
        )
        db.add(subscription)
        db.commit()
        return subscription

    return _make_subscription


@pytest.fixture
def login(client):
    def _login(email="ana@example.com", password=DEFAULT_PASSWORD, remember_me=False):
        response = client.post(
            "/auth/login",
            json={"email": email, "password": password, "remember_me": remember_me},
        )
        assert response.status_code == 200, response.json()
        return response

    return _login


def use_credential(client, credential):
    """Replace whatever session cookie the client holds."""
    client.cookies.clear()
    client.cookies.set(config.SESSION_COOKIE_NAME, credential)
