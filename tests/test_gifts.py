import pytest

from app.models.gift import Gift
from conftest import DEFAULT_PASSWORD

PHOTO_URL = "https://cdn.example.com/photo.jpg"
SONG_URL = "https://cdn.example.com/song.mp3"


def _create_gift(client, title="Our story"):
    return client.post("/gifts", json={"title": title, "message": "Happy anniversary"})


def _add(client, gift_id, kind, url):
    return client.post(f"/gifts/{gift_id}/{kind}", json={"url": url})


@pytest.fixture
def subscribed(make_user, make_subscription, login):
    def _subscribed(plan):
        user = make_user()
        make_subscription(user, plan=plan)
        login()
        return user

    return _subscribed


def test_gift_creation_requires_subscription(client, make_user, login):
    make_user()
    login()

    response = _create_gift(client)
    assert response.status_code == 403
    body = response.json()
    assert body["error"]["code"] == "REQUIRES_SUBSCRIPTION"
    assert body["quota"]["requires_subscription"] is True
    assert body["quota"]["upgrade"]["recommended_plan"] == "START"


def test_create_gift(client, db, subscribed):
    user = subscribed("START")

    response = _create_gift(client)
    assert response.status_code == 201
    gift = response.json()["gift"]
    assert gift["title"] == "Our story"
    assert gift["slug"].startswith("our-story-")
    assert db.query(Gift).filter(Gift.user_id == user.id).count() == 1


def test_gift_title_is_required(client, subscribed):
    subscribed("START")
    assert _create_gift(client, title="   ").status_code == 400


def test_photo_quota_on_start_plan(client, subscribed):
    subscribed("START")
    gift_id = _create_gift(client).json()["gift"]["id"]

    for position in range(5):
        response = _add(client, gift_id, "photos", PHOTO_URL)
        assert response.status_code == 200
        assert response.json()["media"]["position"] == position

    assert response.json()["remaining"] == 0

    response = _add(client, gift_id, "photos", PHOTO_URL)
    assert response.status_code == 403
    body = response.json()
    assert body["error"]["code"] == "QUOTA_EXCEEDED"
    assert body["quota"]["limit"] == 5
    assert body["quota"]["upgrade"]["recommended_plan"] == "PREMIUM"


def test_music_unavailable_on_start_plan(client, subscribed):
    subscribed("START")
    gift_id = _create_gift(client).json()["gift"]["id"]

    response = _add(client, gift_id, "music", SONG_URL)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FEATURE_UNAVAILABLE"
    assert response.json()["quota"]["feature_available"] is False


def test_music_quota_on_premium_plan(client, subscribed):
    subscribed("PREMIUM")
    gift_id = _create_gift(client).json()["gift"]["id"]

    assert _add(client, gift_id, "music", SONG_URL).status_code == 200
    response = _add(client, gift_id, "music", SONG_URL)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "QUOTA_EXCEEDED"


def test_media_requires_https_url(client, subscribed):
    subscribed("ETERNAL")
    gift_id = _create_gift(client).json()["gift"]["id"]

    assert _add(client, gift_id, "photos", "http://cdn.example.com/photo.jpg").status_code == 400
    assert _add(client, gift_id, "photos", "javascript:alert(1)").status_code == 400


def test_media_on_foreign_gift(client, make_user, make_subscription, login, subscribed):
    subscribed("ETERNAL")
    gift_id = _create_gift(client).json()["gift"]["id"]

    make_subscription(make_user(email="eve@example.com"), plan="ETERNAL")
    login(email="eve@example.com")

    assert _add(client, gift_id, "photos", PHOTO_URL).status_code == 404
    assert _add(client, "not-a-uuid", "photos", PHOTO_URL).status_code == 404


def test_lapsed_subscription_blocks_media(client, subscribed, frozen_clock):
    user = subscribed("PREMIUM")
    gift_id = _create_gift(client).json()["gift"]["id"]

    frozen_clock.advance(days=6)
    assert _add(client, gift_id, "photos", PHOTO_URL).status_code == 200

    # the subscription fixture ends 20 days out; push past it on a fresh session
    frozen_clock.advance(days=15)
    client.post(
        "/auth/login",
        json={"email": user.email, "password": DEFAULT_PASSWORD},
    )
    response = _add(client, gift_id, "photos", PHOTO_URL)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "REQUIRES_SUBSCRIPTION"
    assert response.json()["quota"]["reason"] == "grace_period_ended"


def test_analytics_needs_feature(client, subscribed):
    subscribed("START")
    gift_id = _create_gift(client).json()["gift"]["id"]

    response = client.get(f"/gifts/{gift_id}/analytics")
    assert response.status_code == 403
    detail = response.json()["detail"]
    assert detail["error"]["code"] == "FEATURE_UNAVAILABLE"
    assert detail["upgrade"]["recommended_plan"] == "PREMIUM"


def test_analytics_on_premium(client, subscribed):
    subscribed("PREMIUM")
    gift_id = _create_gift(client).json()["gift"]["id"]
    _add(client, gift_id, "photos", PHOTO_URL)
    _add(client, gift_id, "music", SONG_URL)

    response = client.get(f"/gifts/{gift_id}/analytics")
    assert response.status_code == 200
    assert response.json()["media_counts"] == {"PHOTO": 1, "MUSIC": 1}


def test_analytics_without_subscription(client, make_user, login):
    make_user()
    login()

    response = client.get("/gifts/00000000-0000-0000-0000-000000000000/analytics")
    assert response.status_code == 403
    assert response.json()["detail"]["error"]["code"] == "REQUIRES_SUBSCRIPTION"
