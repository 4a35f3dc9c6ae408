from collections import Counter

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from app.dependencies import rate_limit as rate_limit_module
from app.main import app
from app.routes import subscription as subscription_routes
from app.services import redis_store
from app.services.redis_store import WindowHit


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.headers["X-Request-ID"]


def test_malformed_body_is_a_400(client):
    response = client.post("/auth/login", json={"email": "ana@example.com"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "INVALID_INPUT"
    assert "password" in body["fields"]


def test_unknown_fields_are_rejected(client):
    response = client.post(
        "/auth/login",
        json={"email": "ana@example.com", "password": "x", "is_admin": True},
    )
    assert response.status_code == 400


def test_unexpected_errors_are_opaque(gateway, make_user, monkeypatch):
    make_user()

    def _explode(db, user_id):
        raise RuntimeError("database password is hunter2")

    monkeypatch.setattr(subscription_routes, "get_effective_plan", _explode)

    with TestClient(app, raise_server_exceptions=False) as client:
        client.post("/auth/login", json={"email": "ana@example.com", "password": "Str0ng!Pass"})
        response = client.get("/subscription/plan")

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "UNEXPECTED"
    assert "hunter2" not in response.text


@pytest.fixture
def fake_window(monkeypatch):
    hits = Counter()

    def _hit(namespace, limit, window_seconds, *parts):
        hits[(namespace, parts)] += 1
        count = hits[(namespace, parts)]
        return WindowHit(allowed=count <= limit, count=count, retry_after=window_seconds - 1)

    monkeypatch.setattr(rate_limit_module, "redis_configured", lambda: True)
    monkeypatch.setattr(rate_limit_module, "hit_fixed_window", _hit)
    return hits


def test_rate_limit_returns_429(client, fake_window):
    payload = {"email": "ghost@example.com"}
    for _ in range(3):
        assert client.post("/auth/forgot-password", json=payload).status_code == 200

    response = client.post("/auth/forgot-password", json=payload)
    assert response.status_code == 429
    assert response.headers["Retry-After"] == "3599"
    assert response.json()["detail"]["retry_after"] == 3599
    assert response.json()["detail"]["error"]["code"] == "RATE_LIMITED"


def test_rate_limit_is_per_client(client, fake_window):
    payload = {"email": "ghost@example.com"}
    for _ in range(3):
        client.post("/auth/forgot-password", json=payload)

    response = client.post(
        "/auth/forgot-password",
        json=payload,
        headers={"X-Forwarded-For": "198.51.100.20"},
    )
    assert response.status_code == 200


def test_rate_limit_fails_open_when_redis_errors(client, monkeypatch):
    def _down(*args, **kwargs):
        raise RedisConnectionError("connection refused")

    monkeypatch.setattr(rate_limit_module, "redis_configured", lambda: True)
    monkeypatch.setattr(rate_limit_module, "hit_fixed_window", _down)

    response = client.post("/auth/forgot-password", json={"email": "ghost@example.com"})
    assert response.status_code == 200


class _ScriptedRedis:
    def __init__(self, replies):
        self.replies = list(replies)
        self.keys = []

    def eval(self, script, numkeys, key, *args):
        self.keys.append(key)
        return self.replies.pop(0)


def test_fixed_window_reports_remaining_ttl(monkeypatch):
    fake = _ScriptedRedis([[1, 60], [2, 42], [3, -1]])
    monkeypatch.setattr(redis_store, "get_redis", lambda: fake)

    first = redis_store.hit_fixed_window("rate:login", 2, 60, "203.0.113.7", "agent")
    second = redis_store.hit_fixed_window("rate:login", 2, 60, "203.0.113.7", "agent")
    third = redis_store.hit_fixed_window("rate:login", 2, 60, "203.0.113.7", "agent")

    assert (first.allowed, second.allowed, third.allowed) == (True, True, False)
    assert second.retry_after == 42
    assert third.retry_after == 60
    assert all(key.startswith("eternalgift:rate:login:") for key in fake.keys)
    assert "203.0.113.7" not in fake.keys[0]
