"""
Record normalizer

Turns raw CMS documents (posts, locations, users, guides) into the feed item
and search candidate shapes used by the rest of the pipeline. A malformed
field falls back to a safe default; only a record without an id is rejected
with NormalizationError.
"""
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence
from urllib.parse import urlsplit, urlunsplit
import logging
import re

from ..config import settings
from ..domain.models import PersonCandidate, SearchCandidate
from ..exceptions import NormalizationError
from ..schemas import (
    AuthorSummary,
    Coordinates,
    Engagement,
    ImageRef,
    LocationSummary,
    MediaItem,
    PlaceFeedItem,
    PostFeedItem,
)
from .geo import to_geo_point
from .scoring import engagement_score

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
MEDIA_FILE_PREFIX = "/api/media/file/"
# Unpopulated upload relations arrive as bare document ids (ObjectId, UUID or integer)
_DOCUMENT_ID_RE = re.compile(r"^(?:[0-9a-f]{24}|[0-9a-f]{8}(?:-[0-9a-f]{4}){3}-[0-9a-f]{12}|\d+)$", re.IGNORECASE)

# Tag/category words that mark a record as suited to a query intent
INTENT_MARKERS: Dict[str, tuple] = {
    "family": ("family", "kid", "child", "playground"),
    "date": ("romantic", "date night", "intimate", "couples"),
    "group": ("group", "friends", "party", "social"),
    "solo": ("solo", "quiet", "peaceful", "study"),
}

# Boolean fields that flag an intent directly
INTENT_FLAG_FIELDS: Dict[str, tuple] = {
    "family": ("isFamilyFriendly", "familyFriendly"),
    "date": ("isRomantic", "goodForDates"),
    "group": ("goodForGroups",),
    "solo": ("goodForSolo",),
}


# =============================================================================
# Field helpers
# =============================================================================

def relation_id(value: Any) -> Optional[str]:
    """Id of a relationship that may be a bare id or a populated document"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (str, int)):
        text = str(value).strip()
        return text or None
    if isinstance(value, dict):
        raw = value.get("id", value.get("_id"))
        return relation_id(raw)
    return None


def relation_ids(values: Any) -> List[str]:
    if not isinstance(values, list):
        return []
    ids = [relation_id(v) for v in values]
    return [i for i in ids if i]


def coerce_string_list(values: Any, keys: Sequence[str] = ("name", "slug")) -> List[str]:
    """
    Coerce a list of strings or embedded objects into plain strings

    Objects contribute the first non-empty value among `keys`; anything that
    resolves to nothing is dropped.
    """
    if not isinstance(values, list):
        return []

    result = []
    for value in values:
        if isinstance(value, str):
            text = value.strip()
        elif isinstance(value, dict):
            text = next(
                (str(value[k]).strip() for k in keys if value.get(k)),
                "",
            )
        else:
            text = ""
        if text:
            result.append(text)
    return result


def parse_timestamp(value: Any) -> datetime:
    """Timezone-aware datetime from an ISO string, datetime or epoch number; epoch on failure"""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool) or value is None:
        return EPOCH
    if isinstance(value, (int, float)):
        # Values above 1e11 are JavaScript millisecond timestamps
        seconds = value / 1000 if abs(value) > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return EPOCH
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return EPOCH
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return EPOCH


def parse_optional_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    parsed = parse_timestamp(value)
    return None if parsed == EPOCH else parsed


def as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _count(relation: Any, fallback: Any) -> int:
    if isinstance(relation, list):
        return len(relation)
    try:
        return max(0, int(fallback or 0))
    except (TypeError, ValueError):
        return 0


# =============================================================================
# Media URLs
# =============================================================================

def normalize_media_url(url: Optional[str]) -> Optional[str]:
    """
    Normalize a media URL without any network access

    - bare filenames and non-media relative paths are served from /api/media/file/
    - absolute URLs pointing at the alias host are rewritten to the canonical host
    """
    if not isinstance(url, str):
        return None
    url = url.strip()
    if not url:
        return None

    if url.startswith(("http://", "https://", "//")):
        parts = urlsplit(url)
        if parts.hostname and parts.hostname.lower() == settings.MEDIA_ALIAS_HOST:
            netloc = settings.MEDIA_CANONICAL_HOST
            if parts.port:
                netloc = f"{netloc}:{parts.port}"
            parts = parts._replace(netloc=netloc)
        return urlunsplit(parts)

    if url.startswith("/api/media/"):
        return url

    return MEDIA_FILE_PREFIX + url.lstrip("/")


def resolve_media_url(media: Any) -> Optional[str]:
    """URL of a media reference given as a string or as a CMS media document"""
    if isinstance(media, str):
        if _DOCUMENT_ID_RE.match(media.strip()):
            return None
        return normalize_media_url(media)
    if not isinstance(media, dict):
        return None

    sizes = media.get("sizes") if isinstance(media.get("sizes"), dict) else {}

    def size_url(name: str) -> Optional[str]:
        size = sizes.get(name)
        return size.get("url") if isinstance(size, dict) else None

    candidates = [
        media.get("url"),
        size_url("card"),
        size_url("thumbnail"),
        media.get("thumbnailURL"),
    ]
    for candidate in candidates:
        url = normalize_media_url(candidate)
        if url:
            return url

    filename = media.get("filename")
    if isinstance(filename, str) and filename.strip():
        return MEDIA_FILE_PREFIX + filename.strip().lstrip("/")
    return None


def _alt_text(media: Any) -> Optional[str]:
    if isinstance(media, dict) and isinstance(media.get("alt"), str):
        return media["alt"]
    return None


def build_post_media(raw: Dict[str, Any]) -> List[MediaItem]:
    """Main image, video and photo gallery of a post, with videos first"""
    media: List[MediaItem] = []

    image_url = resolve_media_url(raw.get("image"))
    if image_url:
        media.append(MediaItem(type="image", url=image_url, alt=_alt_text(raw.get("image"))))

    video = raw.get("video")
    video_url = resolve_media_url(video)
    if video_url:
        thumbnail = None
        duration = None
        if isinstance(video, dict):
            thumbnail = normalize_media_url(video.get("thumbnail"))
            duration = as_float(video.get("duration"))
        media.append(MediaItem(
            type="video",
            url=video_url,
            thumbnail=thumbnail,
            duration=duration,
            alt="Post video",
        ))

    photos = raw.get("photos")
    if isinstance(photos, list):
        for photo in photos:
            photo_url = resolve_media_url(photo)
            if photo_url:
                media.append(MediaItem(type="image", url=photo_url, alt=_alt_text(photo)))

    # sorted() is stable, so images keep their relative order
    return sorted(media, key=lambda m: 0 if m.type == "video" else 1)


# =============================================================================
# Shared shapes
# =============================================================================

def flatten_address(address: Any) -> str:
    if isinstance(address, str):
        return address.strip()
    if isinstance(address, dict):
        parts = [address.get(k) for k in ("street", "city", "state", "zip", "country")]
        return ", ".join(str(p).strip() for p in parts if p)
    return ""


def to_coordinates(value: Any) -> Optional[Coordinates]:
    point = to_geo_point(value)
    if point is None:
        return None
    return Coordinates(latitude=point.latitude, longitude=point.longitude)


def _author_summary(author: Any) -> AuthorSummary:
    # A bare id means the relation was not populated (or points at a deleted user)
    if not isinstance(author, dict):
        return AuthorSummary(id=relation_id(author) or "unknown", name="Anonymous")

    avatar_url = resolve_media_url(author.get("profileImage"))
    return AuthorSummary(
        id=relation_id(author) or "unknown",
        name=_as_text(author.get("name")) or "Anonymous",
        profile_image=ImageRef(url=avatar_url) if avatar_url else None,
    )


def _location_summary(location: Any) -> Optional[LocationSummary]:
    if not isinstance(location, dict):
        return None
    location_id = relation_id(location)
    if not location_id:
        return None
    return LocationSummary(
        id=location_id,
        name=_as_text(location.get("name")),
        coordinates=to_coordinates(location.get("coordinates")),
        privacy=location.get("privacy") if isinstance(location.get("privacy"), str) else None,
    )


def _require_id(raw: Any, record_type: str) -> str:
    if not isinstance(raw, dict):
        raise NormalizationError(record_type, "record is not an object")
    record_id = relation_id(raw.get("id", raw.get("_id")))
    if not record_id:
        raise NormalizationError(record_type, "record has no id")
    return record_id


# =============================================================================
# Feed items
# =============================================================================

def normalize_post(raw: Dict[str, Any], viewer_id: Optional[str] = None) -> PostFeedItem:
    """Normalize a CMS post into a `post` feed item"""
    post_id = _require_id(raw, "post")

    likes = raw.get("likes")
    comments = raw.get("comments")
    saved_by = raw.get("savedBy")

    like_count = _count(likes, raw.get("likeCount"))
    comment_count = _count(comments, raw.get("commentCount"))
    save_count = _count(saved_by, raw.get("saveCount"))

    is_liked = bool(viewer_id) and viewer_id in relation_ids(likes)
    is_saved = bool(viewer_id) and viewer_id in relation_ids(saved_by)

    caption = _as_text(raw.get("content")) or _as_text(raw.get("caption")) or _as_text(raw.get("title"))

    return PostFeedItem(
        id=post_id,
        caption=caption,
        author=_author_summary(raw.get("author")),
        location=_location_summary(raw.get("location")),
        media=build_post_media(raw),
        engagement=Engagement(
            like_count=like_count,
            comment_count=comment_count,
            share_count=_count(None, raw.get("shareCount")),
            save_count=save_count,
            is_liked=is_liked,
            is_saved=is_saved,
        ),
        categories=coerce_string_list(raw.get("categories"), ("name", "slug")),
        tags=coerce_string_list(raw.get("tags"), ("tag", "name")),
        created_at=parse_timestamp(raw.get("createdAt")),
        updated_at=parse_optional_timestamp(raw.get("updatedAt")),
        rating=as_float(raw.get("rating")),
        is_promoted=bool(raw.get("isSponsored") or raw.get("isFeatured")),
        engagement_score=engagement_score(like_count, comment_count, save_count),
    )


def _primary_photo(raw: Dict[str, Any]) -> Optional[str]:
    featured = resolve_media_url(raw.get("featuredImage"))
    if featured:
        return featured

    gallery = raw.get("gallery")
    if not isinstance(gallery, list) or not gallery:
        return None
    entries = [g for g in gallery if isinstance(g, dict)]
    primary = next((g for g in entries if g.get("isPrimary")), entries[0] if entries else None)
    if primary is None:
        return None
    return resolve_media_url(primary.get("image"))


def normalize_place(raw: Dict[str, Any]) -> PlaceFeedItem:
    """Normalize a CMS location into a `place_recommendation` feed item"""
    place_id = _require_id(raw, "place")

    return PlaceFeedItem(
        id=place_id,
        name=_as_text(raw.get("name")),
        description=_as_text(raw.get("description")),
        photo=_primary_photo(raw),
        image=resolve_media_url(raw.get("image")),
        rating=as_float(raw.get("averageRating", raw.get("rating"))),
        categories=coerce_string_list(raw.get("categories"), ("name", "slug")),
        location=to_coordinates(raw.get("coordinates")),
        address=flatten_address(raw.get("address")),
        created_at=parse_timestamp(raw.get("createdAt")),
        updated_at=parse_optional_timestamp(raw.get("updatedAt")),
        is_promoted=bool(raw.get("isFeatured")),
        privacy=raw.get("privacy") if isinstance(raw.get("privacy"), str) else None,
    )


def normalize_person(raw: Dict[str, Any]) -> PersonCandidate:
    """Normalize a CMS user into a people-suggestion candidate"""
    person_id = _require_id(raw, "person")

    location = raw.get("location") if isinstance(raw.get("location"), dict) else {}
    followers = raw.get("followers")

    return PersonCandidate(
        id=person_id,
        name=_as_text(raw.get("name")) or _as_text(raw.get("username")) or "Anonymous",
        created_at=parse_timestamp(raw.get("createdAt")),
        username=_as_text(raw.get("username")) or None,
        bio=_as_text(raw.get("bio")),
        profile_image=resolve_media_url(raw.get("profileImage")),
        coordinates=to_geo_point(location.get("coordinates")),
        follower_ids=relation_ids(followers) if isinstance(followers, list) else None,
        following_ids=relation_ids(raw.get("following")),
        last_login=parse_optional_timestamp(raw.get("lastLogin")),
        is_verified=bool(raw.get("isVerified")),
        is_creator=bool(raw.get("isCreator")),
    )


def normalize_records(records: Iterable[Any], normalize, record_type: str, **kwargs) -> list:
    """Normalize every record, skipping and logging the ones that cannot be normalized"""
    items = []
    for record in records:
        try:
            items.append(normalize(record, **kwargs))
        except NormalizationError as e:
            logger.warning(f"Skipping {record_type} record: {e}")
    return items


# =============================================================================
# Search candidates
# =============================================================================

def _context_flags(raw: Dict[str, Any], labels: Iterable[str]) -> FrozenSet[str]:
    flags = set()
    for intent, fields in INTENT_FLAG_FIELDS.items():
        if any(raw.get(f) is True for f in fields):
            flags.add(intent)

    lowered = [label.lower() for label in labels]
    for intent, markers in INTENT_MARKERS.items():
        if any(marker in label for label in lowered for marker in markers):
            flags.add(intent)
    return frozenset(flags)


def location_candidate(raw: Dict[str, Any]) -> SearchCandidate:
    location_id = _require_id(raw, "location")
    categories = coerce_string_list(raw.get("categories"), ("name", "slug"))
    tags = coerce_string_list(raw.get("tags"), ("tag", "name"))
    description = _as_text(raw.get("shortDescription")) or _as_text(raw.get("description"))

    return SearchCandidate(
        id=location_id,
        kind="location",
        title=_as_text(raw.get("name")),
        description=description,
        categories=categories,
        tags=tags,
        context_flags=_context_flags(raw, categories + tags),
        is_verified=bool(raw.get("isVerified")),
        is_featured=bool(raw.get("isFeatured")),
        rating=as_float(raw.get("averageRating", raw.get("rating"))),
        price_range=raw.get("priceRange") if isinstance(raw.get("priceRange"), str) else None,
        coordinates=to_geo_point(raw.get("coordinates")),
        privacy=raw.get("privacy") if isinstance(raw.get("privacy"), str) else None,
        raw=raw,
    )


def guide_candidate(raw: Dict[str, Any]) -> SearchCandidate:
    guide_id = _require_id(raw, "guide")
    categories = coerce_string_list(raw.get("categories"), ("name", "slug"))
    tags = coerce_string_list(raw.get("tags"), ("tag", "name"))
    highlights = coerce_string_list(raw.get("highlights"), ("highlight",))
    primary_location = raw.get("primaryLocation")

    return SearchCandidate(
        id=guide_id,
        kind="guide",
        title=_as_text(raw.get("title")),
        description=_as_text(raw.get("description")),
        categories=categories,
        tags=tags + highlights,
        context_flags=_context_flags(raw, categories + tags),
        is_verified=bool(raw.get("isVerified")),
        is_featured=bool(raw.get("isFeatured")),
        rating=as_float(raw.get("averageRating", raw.get("rating"))),
        coordinates=to_geo_point(primary_location.get("coordinates")) if isinstance(primary_location, dict) else None,
        raw=raw,
    )


def user_candidate(raw: Dict[str, Any]) -> SearchCandidate:
    user_id = _require_id(raw, "user")
    name = _as_text(raw.get("name"))
    username = _as_text(raw.get("username"))
    location = raw.get("location") if isinstance(raw.get("location"), dict) else {}

    return SearchCandidate(
        id=user_id,
        kind="user",
        title=" ".join(part for part in (name, username) if part),
        description=_as_text(raw.get("bio")),
        tags=coerce_string_list(raw.get("interests"), ("name", "interest")),
        is_verified=bool(raw.get("isVerified")),
        coordinates=to_geo_point(location.get("coordinates")),
        raw=raw,
    )
