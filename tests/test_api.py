"""
HTTP tests for the feed, search, suggestions and health endpoints.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from mobile_feed_service.cache import RedisCache, get_cache
from mobile_feed_service.config import settings
from mobile_feed_service.main import app, get_feed_service, get_search_service
from mobile_feed_service.schemas import MAX_QUERY_LENGTH
from mobile_feed_service.service_client import get_cms_client

from conftest import FakeCmsClient, make_location, make_post, make_user

FEED_URL = "/api/mobile/posts/feed"
SEARCH_URL = "/api/mobile/search"


def _posts(count):
    return [make_post(f"p{i}", f"2024-05-{20 - i:02d}T12:00:00Z") for i in range(1, count + 1)]


def _token(viewer_id):
    return jwt.encode({"id": viewer_id}, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


@pytest.fixture
def cms():
    return FakeCmsClient({
        "posts": _posts(5),
        "locations": [make_location("l1", "Harbor Cafe", categories=[{"name": "Cafes"}])],
        "users": [make_user("v1", "Viewer", following=["p-author"])],
    })


@pytest.fixture
def client(cms):
    app.dependency_overrides[get_cms_client] = lambda: cms
    app.dependency_overrides[get_cache] = lambda: RedisCache()
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------

def test_feed_posts_only_with_limit_three(client):
    response = client.get(FEED_URL, params={"includeTypes": "post", "limit": 3})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert [item["type"] for item in body["data"]["posts"]] == ["post"] * 3
    pagination = body["data"]["pagination"]
    assert pagination["total"] == 5
    assert pagination["hasNext"] is True
    assert pagination["hasPrev"] is False
    assert pagination["nextCursor"].startswith("2024-05-17")


def test_feed_items_use_camel_case_and_hide_privacy(client, cms):
    cms.collections["posts"] = [make_post("p1", "2024-05-01T00:00:00Z", author="gone")]

    item = client.get(FEED_URL, params={"includeTypes": "post"}).json()["data"]["posts"][0]

    assert item["author"]["name"] == "Anonymous"
    assert "location" not in item
    assert "createdAt" in item
    assert "engagementScore" in item
    assert "likeCount" in item["engagement"]


def test_place_items_do_not_expose_privacy(client):
    body = client.get(FEED_URL, params={"includeTypes": "place_recommendation"}).json()

    place = body["data"]["posts"][0]
    assert place["type"] == "place_recommendation"
    assert "privacy" not in place


@pytest.mark.parametrize("params,cache_control", [
    ({}, "private, no-cache, no-store, must-revalidate"),
    ({"feedType": "following"}, "private, no-cache, no-store, must-revalidate"),
    ({"feedType": "latest"}, "public, max-age=30"),
    ({"feedType": "popular", "sortBy": "popularity"}, "public, max-age=120"),
    ({"feedType": "discover", "sortBy": "trending"}, "public, max-age=120"),
])
def test_feed_cache_control(client, params, cache_control):
    response = client.get(FEED_URL, params=params)

    assert response.headers["cache-control"] == cache_control
    assert "Authorization" in [v.strip() for v in response.headers["vary"].split(",")]


@pytest.mark.parametrize("params", [
    {"page": 0},
    {"limit": 0},
    {"limit": 51},
    {"feedType": "everything"},
    {"sortBy": "random"},
    {"lastSeen": "not-a-date"},
])
def test_feed_invalid_parameters_return_400(client, params):
    response = client.get(FEED_URL, params=params)

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "VALIDATION_ERROR"
    assert body["error"]


def test_feed_with_viewer_token_uses_profile(client, cms):
    response = client.get(
        FEED_URL,
        params={"feedType": "discover", "includeTypes": "post"},
        headers={"Authorization": f"Bearer {_token('v1')}"},
    )

    assert response.status_code == 200
    assert cms.calls_for("users")[0]["id"] == "v1"
    assert cms.calls_for("posts")[0]["where"]["author"] == {"not_equals": "v1"}


def test_feed_with_invalid_token_is_anonymous(client, cms):
    response = client.get(
        FEED_URL,
        params={"feedType": "discover", "includeTypes": "post"},
        headers={"Authorization": "Bearer not-a-jwt"},
    )

    assert response.status_code == 200
    assert cms.calls_for("users") == []
    assert "author" not in cms.calls_for("posts")[0]["where"]


def test_feed_pipeline_error_returns_fallback_body(client):
    service = MagicMock()
    service.get_feed = AsyncMock(side_effect=RuntimeError("boom"))
    app.dependency_overrides[get_feed_service] = lambda: service

    response = client.get(FEED_URL, params={"limit": 5})

    assert response.status_code == 500
    body = response.json()
    assert body["code"] == "SERVER_ERROR"
    assert body["data"]["posts"] == []
    assert body["data"]["pagination"]["total"] == 0
    assert body["data"]["pagination"]["limit"] == 5


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

def test_search_returns_ranked_results_and_insights(client):
    response = client.post(SEARCH_URL, json={"query": "harbor cafe", "type": "locations"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert [loc["id"] for loc in data["locations"]] == ["l1"]
    assert data["locations"][0]["relevanceScore"] > 0
    assert data["aiInsights"]["context"] == "category"
    assert isinstance(data["suggestedQueries"], list)


@pytest.mark.parametrize("payload", [{"query": " a "}, {"query": ""}, {}, {"query": "tacos", "type": "events"}])
def test_search_validation_errors_return_400(client, payload):
    response = client.post(SEARCH_URL, json=payload)

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_search_query_over_max_length_returns_400(client, cms):
    response = client.post(SEARCH_URL, json={"query": " ".join(f"word{i}" for i in range(5000))})

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"
    assert cms.calls == []


def test_search_private_location_is_excluded(client, cms):
    cms.collections["locations"] = [make_location("secret", "Harbor Cafe", privacy="PRIVATE")]

    data = client.post(SEARCH_URL, json={"query": "harbor cafe"}).json()["data"]

    assert data["locations"] == []


def test_search_pipeline_error_returns_fallback_body(client):
    service = MagicMock()
    service.search = AsyncMock(side_effect=RuntimeError("boom"))
    app.dependency_overrides[get_search_service] = lambda: service

    response = client.post(SEARCH_URL, json={"query": "tacos"})

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "SERVER_ERROR"
    assert body["data"]["locations"] == []
    assert body["data"]["suggestedQueries"]


def test_search_suggestions(client):
    response = client.get(f"{SEARCH_URL}/suggestions", params={"q": "ar"})

    assert response.status_code == 200
    assert response.json()["data"] == {"query": "ar", "suggestions": ["parks", "bars"]}


def test_search_suggestions_query_over_max_length_returns_400(client):
    response = client.get(f"{SEARCH_URL}/suggestions", params={"q": "x" * (MAX_QUERY_LENGTH + 1)})

    assert response.status_code == 400


def test_search_suggestions_empty_query(client):
    response = client.get(f"{SEARCH_URL}/suggestions")

    assert response.json()["data"]["suggestions"] == []


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

def test_health(client):
    body = client.get("/health").json()

    assert body["status"] == "healthy"
    assert body["service"] == settings.APP_NAME
    assert body["dependencies"]["redis"] in ("down", "disabled")
