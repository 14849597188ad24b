"""
Mobile Search Service - ranked search over locations, guides and users
"""
import asyncio
from typing import Any, Dict, List, Optional, Sequence, Set
import logging

from ..config import settings
from ..domain.models import GeoPoint, QueryAnalysis, SearchCandidate
from ..exceptions import InvalidRequestError
from ..schemas import (
    AiInsights,
    AuthorSummary,
    GuideResult,
    ImageRef,
    LocationResult,
    SearchData,
    SearchRequest,
    UserResult,
    Viewer,
)
from ..service_client import CmsClient
from .feed_service import viewer_point
from .geo import distance_between_miles, to_geo_point
from .mixer import is_private
from .normalizer import (
    as_float,
    flatten_address,
    guide_candidate,
    location_candidate,
    normalize_records,
    relation_id,
    resolve_media_url,
    to_coordinates,
    user_candidate,
)
from .query_analyzer import (
    GENERIC_SUGGESTIONS,
    analyze_handle_query,
    analyze_query,
    popular_suggestions,
    suggest_queries,
    MAX_PREFIX_SUGGESTIONS,
)
from .scoring import rank_by_score, search_relevance, tokenize
from .sources import fetch_source, skip_source

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2
LOCATION_NAME_SUGGESTIONS = 3


def _contains_any(fields: Sequence[str], terms: Sequence[str]) -> List[Dict[str, Any]]:
    return [{field: {"contains": term}} for term in terms for field in fields]


def _search_terms(query: str, analysis: QueryAnalysis) -> List[str]:
    terms = []
    for term in (query, *analysis.location_search_terms):
        term = term.strip()
        if term and term not in terms:
            terms.append(term)
    return terms


def _distance(origin: Optional[GeoPoint], candidate: SearchCandidate) -> Optional[float]:
    miles = distance_between_miles(origin, candidate.coordinates)
    return round(miles, 1) if miles is not None else None


class SearchService:
    """Query analysis, concurrent source fetches and relevance ranking"""

    def __init__(self, cms: CmsClient):
        self.cms = cms

    async def search(self, request: SearchRequest, viewer: Optional[Viewer] = None) -> SearchData:
        """
        Search locations, guides and users

        Raises:
            InvalidRequestError: query shorter than two characters after trimming
        """
        query = request.query.strip()
        if len(query) < MIN_QUERY_LENGTH:
            raise InvalidRequestError(f"Search query must be at least {MIN_QUERY_LENGTH} characters long")

        analysis = analyze_handle_query(query) or analyze_query(query)
        wanted = self._wanted_sources(analysis, request.type)

        origin = to_geo_point(request.coordinates) if request.coordinates else viewer_point(viewer)
        terms = _search_terms(query.lstrip("@"), analysis)

        locations_result, guides_result, users_result = await asyncio.gather(
            fetch_source("locations", self._fetch_locations(terms, analysis))
            if "locations" in wanted else skip_source("locations"),
            fetch_source("guides", self._fetch_guides(terms))
            if "guides" in wanted else skip_source("guides"),
            fetch_source("users", self._fetch_users(terms, viewer))
            if "users" in wanted else skip_source("users"),
        )
        for result in (locations_result, guides_result, users_result):
            if not result.ok:
                logger.warning(f"Search for '{query}' degraded: {result.source} unavailable ({result.error})")

        query_tokens = tokenize(query)
        limit = settings.SEARCH_RESULT_LIMIT

        def rank(candidates: List[SearchCandidate]):
            scored = [
                (c, search_relevance(c, query_tokens, query, analysis, origin))
                for c in candidates
            ]
            return rank_by_score(scored, limit)

        visible_locations = [
            c for c in locations_result.unwrap_or_empty() if not is_private(c.privacy)
        ]
        locations = [self._location_result(c, s, origin) for c, s in rank(visible_locations)]
        guides = [self._guide_result(c, s) for c, s in rank(guides_result.unwrap_or_empty())]
        users = [self._user_result(c, s, origin) for c, s in rank(users_result.unwrap_or_empty())]

        total = len(locations) + len(guides) + len(users)
        logger.info(f"Search '{query}' ({analysis.context}): {total} results")

        return SearchData(
            query=query,
            locations=locations,
            guides=guides,
            users=users,
            suggested_queries=suggest_queries(analysis, query),
            ai_insights=build_insights(analysis, wanted, total),
        )

    def _wanted_sources(self, analysis: QueryAnalysis, search_type: str) -> Set[str]:
        # An explicit type overrides whatever the analysis narrowed to
        if search_type != "all":
            return {search_type}
        wanted = set()
        if analysis.should_search_locations:
            wanted.add("locations")
        if analysis.should_search_guides:
            wanted.add("guides")
        if analysis.should_search_users:
            wanted.add("users")
        return wanted

    # Source fetches
    async def _fetch_locations(self, terms: List[str], analysis: QueryAnalysis) -> List[SearchCandidate]:
        clauses = _contains_any(("name", "description", "shortDescription", "tags.tag"), terms)
        if analysis.categories:
            clauses.append({"categories.slug": {"in": list(analysis.categories)}})

        docs = await self.cms.find_docs(
            "locations",
            where={"and": [{"status": {"equals": "published"}}, {"or": clauses}]},
            sort="-createdAt",
            limit=settings.MAX_SOURCE_FETCH_LIMIT,
            depth=1,
        )
        return normalize_records(docs, location_candidate, "location")

    async def _fetch_guides(self, terms: List[str]) -> List[SearchCandidate]:
        docs = await self.cms.find_docs(
            "guides",
            where={"and": [
                {"status": {"equals": "published"}},
                {"or": _contains_any(("title", "description", "tags.tag"), terms)},
            ]},
            sort="-createdAt",
            limit=settings.MAX_SOURCE_FETCH_LIMIT,
            depth=1,
        )
        return normalize_records(docs, guide_candidate, "guide")

    async def _fetch_users(self, terms: List[str], viewer: Optional[Viewer]) -> List[SearchCandidate]:
        excluded: Set[str] = set()
        if viewer:
            blocked, blocked_by = await asyncio.gather(
                self.cms.get_blocked_user_ids(viewer.id),
                self.cms.get_users_who_blocked(viewer.id),
            )
            excluded = {viewer.id} | blocked | blocked_by

        where: Dict[str, Any] = {"or": _contains_any(("name", "username", "bio"), terms)}
        if excluded:
            where = {"and": [where, {"id": {"not_in": sorted(excluded)}}]}

        docs = await self.cms.find_docs(
            settings.CMS_USERS_COLLECTION,
            where=where,
            sort="-createdAt",
            limit=settings.MAX_SOURCE_FETCH_LIMIT,
            depth=1,
        )
        candidates = normalize_records(docs, user_candidate, "user")
        return [c for c in candidates if c.id not in excluded]

    # Result shapes
    def _location_result(self, c: SearchCandidate, score: float, origin: Optional[GeoPoint]) -> LocationResult:
        raw = c.raw
        return LocationResult(
            id=c.id,
            name=c.title,
            slug=raw.get("slug") if isinstance(raw.get("slug"), str) else None,
            description=c.description,
            address=flatten_address(raw.get("address")),
            coordinates=to_coordinates(raw.get("coordinates")),
            featured_image=resolve_media_url(raw.get("featuredImage")),
            categories=c.categories,
            rating=c.rating or 0.0,
            review_count=int(as_float(raw.get("reviewCount")) or 0),
            price_range=c.price_range,
            is_verified=c.is_verified,
            is_featured=c.is_featured,
            distance=_distance(origin, c),
            relevance_score=score,
        )

    def _guide_result(self, c: SearchCandidate, score: float) -> GuideResult:
        raw = c.raw
        creator = raw.get("creator") or raw.get("author")
        creator_summary = None
        if isinstance(creator, dict) and relation_id(creator):
            avatar = resolve_media_url(creator.get("profileImage"))
            creator_summary = AuthorSummary(
                id=relation_id(creator),
                name=creator.get("name") or "Anonymous",
                profile_image=ImageRef(url=avatar) if avatar else None,
            )
        return GuideResult(
            id=c.id,
            title=c.title,
            slug=raw.get("slug") if isinstance(raw.get("slug"), str) else None,
            description=c.description,
            featured_image=resolve_media_url(raw.get("featuredImage")),
            creator=creator_summary,
            categories=c.categories,
            rating=c.rating or 0.0,
            relevance_score=score,
        )

    def _user_result(self, c: SearchCandidate, score: float, origin: Optional[GeoPoint]) -> UserResult:
        raw = c.raw
        followers = raw.get("followers")
        return UserResult(
            id=c.id,
            name=raw.get("name") if isinstance(raw.get("name"), str) and raw.get("name") else c.title,
            username=raw.get("username") if isinstance(raw.get("username"), str) else None,
            bio=c.description,
            profile_image=resolve_media_url(raw.get("profileImage")),
            is_verified=c.is_verified,
            follower_count=len(followers) if isinstance(followers, list) else 0,
            distance=_distance(origin, c),
            relevance_score=score,
        )

    async def suggestions(self, prefix: str, viewer: Optional[Viewer] = None) -> List[str]:
        """
        Type-ahead suggestions: popular searches containing the prefix, then
        matching location names for signed-in viewers
        """
        text = prefix.strip()
        if not text:
            return []

        suggestions = popular_suggestions(text)
        if viewer and len(text) >= MIN_QUERY_LENGTH:
            result = await fetch_source("locations", self._location_names(text))
            for name in result.unwrap_or_empty():
                if name not in suggestions:
                    suggestions.append(name)
        return suggestions[:MAX_PREFIX_SUGGESTIONS]

    async def _location_names(self, text: str) -> List[str]:
        docs = await self.cms.find_docs(
            "locations",
            where={"and": [{"status": {"equals": "published"}}, {"name": {"contains": text}}]},
            limit=LOCATION_NAME_SUGGESTIONS,
            depth=0,
        )
        return [
            doc["name"] for doc in docs
            if isinstance(doc.get("name"), str) and doc["name"] and not is_private(doc.get("privacy"))
        ]


def _search_strategy(analysis: QueryAnalysis) -> str:
    if analysis.context == "people":
        return "people_handle"
    if analysis.intents:
        return "intent_matching"
    if analysis.place_names:
        return "place_name"
    if analysis.categories:
        return "category_matching"
    return "keyword"


def build_insights(analysis: QueryAnalysis, sources: Set[str], total_results: int) -> AiInsights:
    """Deterministic summary of how the query was understood"""
    intents = sorted(analysis.intents)
    parts = []
    if intents:
        parts.append(f"{', '.join(intents)} friendly")
    if analysis.price_preference:
        parts.append(analysis.price_preference)
    parts.append(", ".join(analysis.categories) if analysis.categories else "places and people")
    if analysis.place_names:
        parts.append(f"around {', '.join(analysis.place_names)}")

    searched = ", ".join(sorted(sources)) or "nothing"
    summary = f"Looking for {' '.join(parts)}; searched {searched}; found {total_results} results"

    return AiInsights(
        context=analysis.context,
        detected_categories=list(analysis.categories),
        intents=intents,
        location_search_terms=list(analysis.location_search_terms),
        price_preference=analysis.price_preference,
        activity_type=analysis.activity_type,
        search_strategy=_search_strategy(analysis),
        total_results=total_results,
        summary=summary,
    )


def fallback_search_data(query: str) -> SearchData:
    """Empty-but-valid body returned when search cannot complete"""
    return SearchData(
        query=query,
        suggested_queries=list(GENERIC_SUGGESTIONS),
    )
