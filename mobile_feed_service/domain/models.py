"""
Domain models - Core pipeline entities
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees"""
    latitude: float
    longitude: float


@dataclass(frozen=True)
class IntentRule:
    """One row of the query intent table"""
    intent: str  # 'family', 'date', 'group', 'solo'
    keywords: Tuple[str, ...]
    category_hints: Tuple[str, ...] = ()


@dataclass(frozen=True)
class KeywordRule:
    """Maps any of the keywords to a single value (category, price, activity)"""
    value: str
    keywords: Tuple[str, ...]


@dataclass(frozen=True)
class QueryAnalysis:
    """Intent and category hints derived from a free-text search query"""
    location_search_terms: Tuple[str, ...]
    categories: Tuple[str, ...] = ()
    context: str = "general"
    is_family_query: bool = False
    is_date_query: bool = False
    is_group_query: bool = False
    is_solo_query: bool = False
    price_preference: Optional[str] = None
    activity_type: Optional[str] = None
    place_names: Tuple[str, ...] = ()
    should_search_locations: bool = True
    should_search_guides: bool = True
    should_search_users: bool = True

    @property
    def intents(self) -> FrozenSet[str]:
        """Intent names flagged on this analysis"""
        flags = {
            "family": self.is_family_query,
            "date": self.is_date_query,
            "group": self.is_group_query,
            "solo": self.is_solo_query,
        }
        return frozenset(name for name, flagged in flags.items() if flagged)

    @classmethod
    def general(cls, query: str) -> "QueryAnalysis":
        """Default analysis: the whole query is the single search term"""
        return cls(location_search_terms=(query,), context="general")


@dataclass
class SearchCandidate:
    """A location, guide or user reduced to the fields the relevance scorer reads"""
    id: str
    kind: str  # 'location', 'guide', 'user'
    title: str
    description: str = ""
    categories: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    context_flags: FrozenSet[str] = frozenset()
    is_verified: bool = False
    is_featured: bool = False
    rating: Optional[float] = None
    price_range: Optional[str] = None
    coordinates: Optional[GeoPoint] = None
    privacy: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class PersonCandidate:
    """A user record considered for people suggestions"""
    id: str
    name: str
    created_at: datetime
    username: Optional[str] = None
    bio: str = ""
    profile_image: Optional[str] = None
    coordinates: Optional[GeoPoint] = None
    follower_ids: Optional[List[str]] = None  # None when the relation was not populated
    following_ids: List[str] = field(default_factory=list)
    last_login: Optional[datetime] = None
    is_verified: bool = False
    is_creator: bool = False


@dataclass
class SourceResult:
    """Outcome of fetching one source: either its records or the failure reason"""
    source: str
    items: List[Any] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, source: str, items: List[Any]) -> "SourceResult":
        return cls(source=source, items=list(items))

    @classmethod
    def failure(cls, source: str, error: str) -> "SourceResult":
        return cls(source=source, error=error)

    def unwrap_or_empty(self) -> List[Any]:
        """Records of a successful fetch, an empty list otherwise"""
        return self.items if self.ok else []
