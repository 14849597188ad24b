"""
Tests for the CMS client: where-clause encoding and HTTP failure mapping.
"""
import asyncio

import httpx
import pytest

from mobile_feed_service.exceptions import SourceFetchError
from mobile_feed_service.service_client import CmsClient, flatten_where

BASE_URL = "http://cms.test"


def _call(handler, call):
    """Run call(client) against a CmsClient whose transport is the given handler"""
    async def run():
        cms = CmsClient(BASE_URL)
        cms.client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
        try:
            return await call(cms)
        finally:
            await cms.stop()

    return asyncio.run(run())


def _json_handler(payload, status_code=200, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=payload)
    return handler


# ---------------------------------------------------------------------------
# flatten_where
# ---------------------------------------------------------------------------

def test_flatten_where_simple_operators():
    params = flatten_where({"status": {"equals": "published"}, "author": {"not_equals": "v1"}})

    assert params == [
        ("where[status][equals]", "published"),
        ("where[author][not_equals]", "v1"),
    ]


def test_flatten_where_indexes_lists():
    params = flatten_where({"id": {"not_in": ["b1", "b2", "v1"]}})

    assert params == [
        ("where[id][not_in][0]", "b1"),
        ("where[id][not_in][1]", "b2"),
        ("where[id][not_in][2]", "v1"),
    ]


def test_flatten_where_nested_and_or():
    where = {
        "or": [
            {"name": {"like": "harbor"}},
            {"and": [{"isVerified": {"equals": True}}, {"rating": {"greater_than": 4.5}}]},
        ]
    }

    assert flatten_where(where) == [
        ("where[or][0][name][like]", "harbor"),
        ("where[or][1][and][0][isVerified][equals]", "true"),
        ("where[or][1][and][1][rating][greater_than]", "4.5"),
    ]


def test_flatten_where_booleans_and_null():
    assert flatten_where({"a": {"equals": False}, "b": {"equals": None}}) == [
        ("where[a][equals]", "false"),
        ("where[b][equals]", "null"),
    ]


def test_flatten_where_empty():
    assert flatten_where({}) == []


# ---------------------------------------------------------------------------
# find / find_docs / find_by_id
# ---------------------------------------------------------------------------

def test_find_sends_collection_paging_and_where():
    seen = []
    handler = _json_handler({"docs": [{"id": "p1"}], "totalDocs": 1, "page": 2}, seen=seen)

    result = _call(handler, lambda cms: cms.find(
        "posts", where={"status": {"equals": "published"}}, sort="-createdAt", page=2, limit=6, depth=2,
    ))

    assert result["docs"] == [{"id": "p1"}]
    request = seen[0]
    assert request.url.path == "/api/posts"
    params = request.url.params
    assert params["where[status][equals]"] == "published"
    assert params["page"] == "2"
    assert params["limit"] == "6"
    assert params["depth"] == "2"
    assert params["sort"] == "-createdAt"


def test_find_with_malformed_docs_returns_empty_list():
    result = _call(_json_handler({"docs": "nope", "totalDocs": 3}), lambda cms: cms.find("posts"))

    assert result["docs"] == []


def test_find_docs_skips_non_object_documents():
    handler = _json_handler({"docs": [{"id": "p1"}, "p2", None, {"id": "p3"}]})

    docs = _call(handler, lambda cms: cms.find_docs("posts"))

    assert docs == [{"id": "p1"}, {"id": "p3"}]


def test_find_on_missing_collection_returns_empty_page():
    result = _call(_json_handler({"errors": []}, status_code=404), lambda cms: cms.find("posts", page=3))

    assert result == {"docs": [], "totalDocs": 0, "page": 3}


def test_find_by_id_returns_none_for_404():
    seen = []
    handler = _json_handler({"errors": [{"message": "Not Found"}]}, status_code=404, seen=seen)

    assert _call(handler, lambda cms: cms.find_by_id("users", "gone", depth=0)) is None
    assert seen[0].url.path == "/api/users/gone"
    assert seen[0].url.params["depth"] == "0"


def test_find_by_id_returns_document():
    doc = _call(_json_handler({"id": "u1", "name": "Dana"}), lambda cms: cms.find_by_id("users", "u1"))

    assert doc == {"id": "u1", "name": "Dana"}


# ---------------------------------------------------------------------------
# Failure mapping
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("status_code", [400, 401, 500, 503])
def test_error_status_raises_source_fetch_error(status_code):
    with pytest.raises(SourceFetchError) as exc:
        _call(_json_handler({"errors": []}, status_code=status_code), lambda cms: cms.find("locations"))

    assert exc.value.collection == "locations"
    assert str(status_code) in exc.value.reason


def test_invalid_json_raises_source_fetch_error():
    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    with pytest.raises(SourceFetchError) as exc:
        _call(handler, lambda cms: cms.find("posts"))

    assert exc.value.reason == "invalid JSON response"


def test_transport_error_raises_source_fetch_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SourceFetchError) as exc:
        _call(handler, lambda cms: cms.find("guides"))

    assert exc.value.collection == "guides"
    assert "connection refused" in exc.value.reason


def test_request_before_start_raises_source_fetch_error():
    with pytest.raises(SourceFetchError):
        asyncio.run(CmsClient(BASE_URL).find("posts"))


# ---------------------------------------------------------------------------
# Blocked users
# ---------------------------------------------------------------------------

def test_blocked_user_ids_from_populated_and_plain_relations():
    seen = []
    handler = _json_handler(
        {"docs": [
            {"id": "b1", "blocker": "v1", "blockedUser": {"id": "u2", "name": "Sam"}},
            {"id": "b2", "blocker": "v1", "blockedUser": "u3"},
            {"id": "b3", "blocker": "v1", "blockedUser": None},
        ]},
        seen=seen,
    )

    ids = _call(handler, lambda cms: cms.get_blocked_user_ids("v1"))

    assert ids == {"u2", "u3"}
    assert seen[0].url.path == "/api/userBlocks"
    assert seen[0].url.params["where[blocker][equals]"] == "v1"
    assert seen[0].url.params["depth"] == "0"


def test_users_who_blocked_viewer():
    seen = []
    handler = _json_handler({"docs": [{"id": "b1", "blocker": {"id": "u9"}, "blockedUser": "v1"}]}, seen=seen)

    ids = _call(handler, lambda cms: cms.get_users_who_blocked("v1"))

    assert ids == {"u9"}
    assert seen[0].url.params["where[blockedUser][equals]"] == "v1"
