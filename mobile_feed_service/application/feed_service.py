"""
Mobile Feed Service - Core business logic
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
import logging

from ..cache import RedisCache
from ..config import settings
from ..domain.models import GeoPoint, PersonCandidate
from ..schemas import (
    AppliedFilters,
    Coordinates,
    FeedData,
    FeedMeta,
    Pagination,
    PeopleSuggestionFeedItem,
    PersonSummary,
    Viewer,
)
from ..service_client import CmsClient
from .geo import distance_between_miles, to_geo_point
from .mixer import mix_feed
from .normalizer import normalize_person, normalize_place, normalize_post, normalize_records, parse_timestamp
from .scoring import people_score
from .sources import bounded_map, fetch_source, skip_source

logger = logging.getLogger(__name__)

FEED_ITEM_TYPES = ("post", "place_recommendation", "people_suggestion")
FEED_TYPES = ("personalized", "discover", "popular", "latest", "following")
SORT_OPTIONS = ("createdAt", "popularity", "trending")

# Feed types whose content depends on who is asking
VIEWER_SCOPED_FEED_TYPES = ("personalized", "following")

# category: (title, subtitle, icon, max users)
PEOPLE_GROUPS: Dict[str, Tuple[str, str, str, int]] = {
    "nearby": ("People Near You", "Discover people in your area", "location.fill", 3),
    "mutual": ("People You May Know", "Based on mutual connections", "person.2.fill", 3),
    "suggested": ("Suggested for You", "People you might like to follow", "sparkles", 2),
}


def parse_include_types(include_types: Optional[str]) -> List[str]:
    """Requested item types in canonical order; unknown names are ignored, nothing means all"""
    if not include_types:
        return list(FEED_ITEM_TYPES)
    requested = {part.strip() for part in include_types.split(",") if part.strip()}
    selected = [t for t in FEED_ITEM_TYPES if t in requested]
    return selected or list(FEED_ITEM_TYPES)


def source_fetch_limit(limit: int) -> int:
    return min(limit * settings.SOURCE_FETCH_MULTIPLIER, settings.MAX_SOURCE_FETCH_LIMIT)


def _iso(value: datetime) -> str:
    """UTC ISO-8601 with a Z suffix; naive values are already UTC"""
    return parse_timestamp(value).astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def viewer_point(viewer: Optional[Viewer]) -> Optional[GeoPoint]:
    if viewer is None:
        return None
    return to_geo_point({"latitude": viewer.latitude, "longitude": viewer.longitude})


class FeedService:
    """Mixed feed of posts, place recommendations and people suggestions"""

    def __init__(self, cms: CmsClient, cache: Optional[RedisCache] = None):
        self.cms = cms
        self.cache = cache

    async def get_feed(
        self,
        viewer: Optional[Viewer],
        page: int = 1,
        limit: int = 20,
        feed_type: str = "personalized",
        category: Optional[str] = None,
        sort_by: str = "createdAt",
        last_seen: Optional[datetime] = None,
        include_types: Optional[List[str]] = None,
    ) -> FeedData:
        """
        Build one page of the mixed feed

        The three sources are fetched concurrently; a source that fails or
        times out contributes nothing and is listed in meta.degradedSources.
        """
        types = include_types or list(FEED_ITEM_TYPES)
        cache_params = None
        if self._is_cacheable(viewer, feed_type):
            cache_params = {
                "page": page, "limit": limit, "feedType": feed_type, "category": category,
                "sortBy": sort_by, "lastSeen": last_seen, "includeTypes": types,
            }
            cached = await self.cache.get_feed_page(cache_params)
            if cached:
                logger.info(f"Cache hit for public {feed_type} feed page {page}")
                return FeedData.model_validate(cached)

        fetch_limit = source_fetch_limit(limit)
        posts_result, places_result, people_result = await asyncio.gather(
            fetch_source("posts", self._fetch_posts(viewer, page, fetch_limit, feed_type, category, sort_by, last_seen))
            if "post" in types else skip_source("posts"),
            fetch_source("places", self._fetch_places(page, fetch_limit, last_seen))
            if "place_recommendation" in types else skip_source("places"),
            fetch_source("people", self._fetch_people_groups(viewer, page, fetch_limit, last_seen))
            if "people_suggestion" in types else skip_source("people"),
        )

        results = (posts_result, places_result, people_result)
        degraded = [r.source for r in results if not r.ok]

        items, pagination = mix_feed(
            posts_result.unwrap_or_empty(),
            places_result.unwrap_or_empty(),
            people_result.unwrap_or_empty(),
            page=page,
            limit=limit,
            sort_by=sort_by,
        )

        data = FeedData(
            posts=items,
            pagination=pagination,
            meta=FeedMeta(
                feed_type=feed_type,
                applied_filters=AppliedFilters(category=category, sort_by=sort_by),
                included_types=types,
                degraded_sources=degraded,
            ),
        )

        logger.info(
            f"Built {feed_type} feed page {page}: {len(items)} of {pagination.total} items"
            + (f", degraded sources: {degraded}" if degraded else "")
        )

        # Degraded pages are not cached so a recovered source shows up on the next request
        if cache_params is not None and not degraded:
            await self.cache.set_feed_page(cache_params, data.model_dump(mode="json", by_alias=True))
        return data

    def _is_cacheable(self, viewer: Optional[Viewer], feed_type: str) -> bool:
        return (
            self.cache is not None
            and self.cache.available
            and viewer is None
            and feed_type not in VIEWER_SCOPED_FEED_TYPES
        )

    # Posts
    def _posts_where(
        self,
        viewer: Optional[Viewer],
        feed_type: str,
        category: Optional[str],
        sort_by: str,
        last_seen: Optional[datetime],
    ) -> Dict[str, Any]:
        where: Dict[str, Any] = {"status": {"equals": "published"}}

        if feed_type == "discover" and viewer:
            where["author"] = {"not_equals": viewer.id}
        elif feed_type == "following" and viewer:
            where["author"] = {"in": list(viewer.following_ids)}

        if category and category.lower() != "all":
            where["categories"] = {"in": [category]}

        created_at: Dict[str, str] = {}
        if last_seen is not None:
            created_at["less_than"] = _iso(last_seen)
        if sort_by == "trending":
            window_start = datetime.now(timezone.utc) - timedelta(days=settings.TRENDING_WINDOW_DAYS)
            created_at["greater_than"] = _iso(window_start)
        if created_at:
            where["createdAt"] = created_at

        return where

    async def _fetch_posts(
        self,
        viewer: Optional[Viewer],
        page: int,
        limit: int,
        feed_type: str,
        category: Optional[str],
        sort_by: str,
        last_seen: Optional[datetime],
    ) -> list:
        if feed_type == "following" and (viewer is None or not viewer.following_ids):
            return []

        docs = await self.cms.find_docs(
            "posts",
            where=self._posts_where(viewer, feed_type, category, sort_by, last_seen),
            sort="-createdAt",
            page=page,
            limit=limit,
            depth=2,
        )
        return normalize_records(docs, normalize_post, "post", viewer_id=viewer.id if viewer else None)

    # Places
    async def _fetch_places(self, page: int, limit: int, last_seen: Optional[datetime]) -> list:
        where: Dict[str, Any] = {"status": {"equals": "published"}}
        if last_seen is not None:
            where["createdAt"] = {"less_than": _iso(last_seen)}

        docs = await self.cms.find_docs(
            "locations",
            where=where,
            sort="-createdAt",
            page=page,
            limit=limit,
            depth=1,
        )
        return normalize_records(docs, normalize_place, "place")

    # People
    async def _excluded_user_ids(self, viewer: Optional[Viewer]) -> Set[str]:
        """The viewer, users already followed and blocked users in both directions"""
        if viewer is None:
            return set()

        blocked, blocked_by = await asyncio.gather(
            self.cms.get_blocked_user_ids(viewer.id),
            self.cms.get_users_who_blocked(viewer.id),
            return_exceptions=True,
        )
        excluded = {viewer.id, *viewer.following_ids}
        for result in (blocked, blocked_by):
            if isinstance(result, BaseException):
                logger.warning(f"Blocked-user lookup failed for {viewer.id}: {result}")
                continue
            excluded |= result
        return excluded

    async def _fetch_people_groups(
        self,
        viewer: Optional[Viewer],
        page: int,
        limit: int,
        last_seen: Optional[datetime],
    ) -> List[PeopleSuggestionFeedItem]:
        excluded = await self._excluded_user_ids(viewer)

        where: Dict[str, Any] = {}
        if excluded:
            where["id"] = {"not_in": sorted(excluded)}
        if last_seen is not None:
            where["createdAt"] = {"less_than": _iso(last_seen)}

        docs = await self.cms.find_docs(
            settings.CMS_USERS_COLLECTION,
            where=where,
            sort="-createdAt",
            page=page,
            limit=limit,
            depth=1,
        )
        candidates = [
            person for person in normalize_records(docs, normalize_person, "person")
            if person.id not in excluded
        ]

        if viewer and viewer.following_ids:
            await self._resolve_followers(candidates)

        return build_people_groups(candidates, viewer)

    async def _resolve_followers(self, candidates: Sequence[PersonCandidate]):
        """Fetch follower lists that were not populated on the candidate records"""
        missing = [c for c in candidates if c.follower_ids is None]
        if not missing:
            return

        async def lookup(candidate: PersonCandidate):
            return await self.cms.find_by_id(settings.CMS_USERS_COLLECTION, candidate.id, depth=0)

        documents = await bounded_map(lookup, missing)
        for candidate, document in zip(missing, documents):
            if isinstance(document, BaseException):
                logger.warning(f"Follower lookup failed for user {candidate.id}: {document}")
                continue
            if isinstance(document, dict):
                candidate.follower_ids = normalize_person(document).follower_ids


def _person_summary(
    person: PersonCandidate,
    score: float,
    mutual: int,
    distance_miles: Optional[float],
) -> PersonSummary:
    return PersonSummary(
        id=person.id,
        name=person.name,
        username=person.username,
        bio=person.bio,
        profile_image=person.profile_image,
        location=(
            Coordinates(latitude=person.coordinates.latitude, longitude=person.coordinates.longitude)
            if person.coordinates else None
        ),
        distance=round(distance_miles, 1) if distance_miles is not None else None,
        mutual_followers=mutual,
        followers_count=len(person.follower_ids or []),
        is_verified=person.is_verified,
        is_creator=person.is_creator,
        suggestion_score=score,
        created_at=person.created_at,
        last_login=person.last_login,
    )


def build_people_groups(
    candidates: Sequence[PersonCandidate],
    viewer: Optional[Viewer],
    now: Optional[datetime] = None,
) -> List[PeopleSuggestionFeedItem]:
    """
    Score candidates and group them into nearby / mutual / suggested items

    A candidate lands in exactly one group: nearby when within the proximity
    radius, else mutual when sharing followers with the viewer, else suggested.
    Each group is ordered by score (stable) and capped; empty groups are omitted.
    """
    now = now or datetime.now(timezone.utc)
    origin = viewer_point(viewer)
    following = set(viewer.following_ids) if viewer else set()

    grouped: Dict[str, List[PersonSummary]] = {name: [] for name in PEOPLE_GROUPS}
    for person in candidates:
        distance = distance_between_miles(origin, person.coordinates)
        score, mutual = people_score(person, following, distance, now)
        summary = _person_summary(person, score, mutual, distance)

        if distance is not None and distance <= settings.PROXIMITY_RADIUS_MILES:
            grouped["nearby"].append(summary)
        elif mutual > 0:
            grouped["mutual"].append(summary)
        else:
            grouped["suggested"].append(summary)

    groups = []
    for category, (title, subtitle, icon, max_users) in PEOPLE_GROUPS.items():
        members = sorted(grouped[category], key=lambda s: s.suggestion_score, reverse=True)[:max_users]
        if not members:
            continue
        groups.append(PeopleSuggestionFeedItem(
            id=f"people-{category}",
            category=category,
            title=title,
            subtitle=subtitle,
            icon=icon,
            users=members,
            created_at=max(member.created_at for member in members),
        ))
    return groups


def empty_feed_data(
    page: int,
    limit: int,
    feed_type: str,
    category: Optional[str],
    sort_by: str,
    include_types: Optional[List[str]] = None,
) -> FeedData:
    """Valid empty page returned when the feed cannot be built"""
    return FeedData(
        posts=[],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=0,
            total_pages=0,
            has_next=False,
            has_prev=page > 1,
        ),
        meta=FeedMeta(
            feed_type=feed_type,
            applied_filters=AppliedFilters(category=category, sort_by=sort_by),
            included_types=include_types or list(FEED_ITEM_TYPES),
            degraded_sources=["posts", "places", "people"],
        ),
    )
