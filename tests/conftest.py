"""
Shared fixtures: an in-memory CMS client and record factories.
"""
import asyncio
from typing import Any, Dict, List, Optional, Set

import pytest

from mobile_feed_service.exceptions import SourceFetchError


class FakeCmsClient:
    """In-memory stand-in for CmsClient, recording every find() call"""

    def __init__(
        self,
        collections: Optional[Dict[str, List[dict]]] = None,
        failing: Optional[Set[str]] = None,
        delays: Optional[Dict[str, float]] = None,
        blocked: Optional[Set[str]] = None,
        blocked_by: Optional[Set[str]] = None,
    ):
        self.collections = collections or {}
        self.failing = failing or set()
        self.delays = delays or {}
        self.blocked = blocked or set()
        self.blocked_by = blocked_by or set()
        self.calls: List[Dict[str, Any]] = []

    async def _enter(self, collection: str):
        if collection in self.delays:
            await asyncio.sleep(self.delays[collection])
        if collection in self.failing:
            raise SourceFetchError(collection, "HTTP 503")

    async def find(self, collection, where=None, sort=None, page=1, limit=10, depth=1):
        self.calls.append({
            "collection": collection, "where": where, "sort": sort,
            "page": page, "limit": limit, "depth": depth,
        })
        await self._enter(collection)
        docs = self.collections.get(collection, [])
        start = (page - 1) * limit
        return {"docs": docs[start:start + limit], "totalDocs": len(docs), "page": page}

    async def find_docs(self, collection, **kwargs):
        result = await self.find(collection, **kwargs)
        return result["docs"]

    async def find_by_id(self, collection, document_id, depth=1):
        self.calls.append({"collection": collection, "id": document_id, "depth": depth})
        await self._enter(collection)
        for doc in self.collections.get(collection, []):
            if str(doc.get("id")) == str(document_id):
                return doc
        return None

    async def get_blocked_user_ids(self, viewer_id):
        return set(self.blocked)

    async def get_users_who_blocked(self, viewer_id):
        return set(self.blocked_by)

    def calls_for(self, collection: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["collection"] == collection]


def make_post(post_id: str, created_at: str, **overrides) -> dict:
    post = {
        "id": post_id,
        "content": f"Post {post_id}",
        "author": {"id": "author-1", "name": "Dana Reyes"},
        "status": "published",
        "createdAt": created_at,
        "likes": [],
        "comments": [],
        "savedBy": [],
    }
    post.update(overrides)
    return post


def make_location(location_id: str, name: str, created_at: str = "2024-01-01T00:00:00.000Z", **overrides) -> dict:
    location = {
        "id": location_id,
        "name": name,
        "description": "",
        "status": "published",
        "createdAt": created_at,
        "categories": [],
        "tags": [],
    }
    location.update(overrides)
    return location


def make_user(user_id: str, name: str, created_at: str = "2024-01-01T00:00:00.000Z", **overrides) -> dict:
    user = {"id": user_id, "name": name, "createdAt": created_at}
    user.update(overrides)
    return user


@pytest.fixture
def fake_cms():
    return FakeCmsClient()
