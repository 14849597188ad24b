"""
Pydantic schemas for Mobile Feed Service
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Annotated, Optional, List, Dict, Literal, Union
from datetime import datetime


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys for the mobile clients"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Viewer schema (resolved from the bearer token)
class Viewer(BaseModel):
    """Authenticated viewer of a feed or search request"""
    id: str
    name: Optional[str] = None
    following_ids: List[str] = []
    follower_ids: List[str] = []
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class Coordinates(CamelModel):
    """Latitude/longitude pair"""
    latitude: float
    longitude: float


# Feed item building blocks
class ImageRef(CamelModel):
    url: str


class MediaItem(CamelModel):
    """Image or video attached to a post"""
    type: Literal["image", "video"]
    url: str
    thumbnail: Optional[str] = None
    duration: Optional[float] = None
    alt: Optional[str] = None


class AuthorSummary(CamelModel):
    id: str
    name: str
    profile_image: Optional[ImageRef] = None


class LocationSummary(CamelModel):
    id: str
    name: str
    coordinates: Optional[Coordinates] = None
    privacy: Optional[str] = Field(default=None, exclude=True)


class Engagement(CamelModel):
    like_count: int = 0
    comment_count: int = 0
    share_count: int = 0
    save_count: int = 0
    is_liked: bool = False
    is_saved: bool = False


class PersonSummary(CamelModel):
    """User shown inside a people suggestion group"""
    id: str
    name: str
    username: Optional[str] = None
    bio: str = ""
    profile_image: Optional[str] = None
    location: Optional[Coordinates] = None
    distance: Optional[float] = None  # miles
    mutual_followers: int = 0
    followers_count: int = 0
    is_verified: bool = False
    is_creator: bool = False
    suggestion_score: float = 0.0
    created_at: datetime
    last_login: Optional[datetime] = None


# Feed item variants
class PostFeedItem(CamelModel):
    type: Literal["post"] = "post"
    id: str
    caption: str = ""
    author: AuthorSummary
    location: Optional[LocationSummary] = None
    media: List[MediaItem] = []
    engagement: Engagement
    categories: List[str] = []
    tags: List[str] = []
    created_at: datetime
    updated_at: Optional[datetime] = None
    rating: Optional[float] = None
    is_promoted: bool = False
    engagement_score: float = 0.0


class PlaceFeedItem(CamelModel):
    type: Literal["place_recommendation"] = "place_recommendation"
    id: str
    name: str
    description: str = ""
    photo: Optional[str] = None
    image: Optional[str] = None
    rating: Optional[float] = None
    categories: List[str] = []
    location: Optional[Coordinates] = None
    address: str = ""
    created_at: datetime
    updated_at: Optional[datetime] = None
    is_promoted: bool = False
    privacy: Optional[str] = Field(default=None, exclude=True)


class PeopleSuggestionFeedItem(CamelModel):
    type: Literal["people_suggestion"] = "people_suggestion"
    id: str
    category: Literal["nearby", "mutual", "suggested"]
    title: str
    subtitle: str
    icon: str
    users: List[PersonSummary]
    created_at: datetime


FeedItem = Annotated[
    Union[PostFeedItem, PlaceFeedItem, PeopleSuggestionFeedItem],
    Field(discriminator="type"),
]


# Feed response
class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool
    next_cursor: Optional[datetime] = None


class AppliedFilters(CamelModel):
    category: Optional[str] = None
    sort_by: str


class FeedMeta(CamelModel):
    feed_type: str
    applied_filters: AppliedFilters
    included_types: List[str] = []
    degraded_sources: List[str] = []


class FeedData(CamelModel):
    posts: List[FeedItem]
    pagination: Pagination
    meta: FeedMeta


class FeedResponse(CamelModel):
    """Feed response envelope"""
    success: bool
    message: str
    data: Optional[FeedData] = None
    error: Optional[str] = None
    code: Optional[str] = None


# Search
# Longest accepted search text; longer queries are rejected with a 400
MAX_QUERY_LENGTH = 200


class SearchRequest(CamelModel):
    """Search request body"""
    query: str = Field(..., max_length=MAX_QUERY_LENGTH)
    type: Literal["all", "locations", "guides", "users"] = "all"
    coordinates: Optional[Coordinates] = None


class LocationResult(CamelModel):
    id: str
    name: str
    slug: Optional[str] = None
    description: str = ""
    address: str = ""
    coordinates: Optional[Coordinates] = None
    featured_image: Optional[str] = None
    categories: List[str] = []
    rating: float = 0.0
    review_count: int = 0
    price_range: Optional[str] = None
    is_verified: bool = False
    is_featured: bool = False
    distance: Optional[float] = None  # miles
    relevance_score: float


class GuideResult(CamelModel):
    id: str
    title: str
    slug: Optional[str] = None
    description: str = ""
    featured_image: Optional[str] = None
    creator: Optional[AuthorSummary] = None
    categories: List[str] = []
    rating: float = 0.0
    relevance_score: float


class UserResult(CamelModel):
    id: str
    name: str
    username: Optional[str] = None
    bio: str = ""
    profile_image: Optional[str] = None
    is_verified: bool = False
    follower_count: int = 0
    distance: Optional[float] = None  # miles
    relevance_score: float


class AiInsights(CamelModel):
    """Deterministic summary of how the query was understood"""
    context: str
    detected_categories: List[str] = []
    intents: List[str] = []
    location_search_terms: List[str] = []
    price_preference: Optional[str] = None
    activity_type: Optional[str] = None
    search_strategy: str
    total_results: int = 0
    summary: str


class SearchData(CamelModel):
    query: str
    guides: List[GuideResult] = []
    locations: List[LocationResult] = []
    users: List[UserResult] = []
    suggested_queries: List[str] = []
    ai_insights: Optional[AiInsights] = None


class SearchResponse(CamelModel):
    """Search response envelope"""
    success: bool
    message: Optional[str] = None
    data: Optional[SearchData] = None
    error: Optional[str] = None
    code: Optional[str] = None


class SuggestionsData(CamelModel):
    query: str
    suggestions: List[str] = []


class SuggestionsResponse(CamelModel):
    success: bool
    data: SuggestionsData


# Health
class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    dependencies: Dict[str, str] = {}
