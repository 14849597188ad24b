"""
Relevance scoring

Three weight tables share the same shape, higher is more relevant:
- search relevance for locations, guides and users
- engagement score for feed posts (popularity/trending sorts)
- suggestion score for people suggestions
"""
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Set, Tuple, TypeVar
import re

from ..config import settings
from ..domain.models import GeoPoint, PersonCandidate, QueryAnalysis, SearchCandidate
from .geo import distance_between_miles

T = TypeVar("T")

# Search relevance weights
TOKEN_MATCH_POINTS = 15
PHRASE_MATCH_POINTS = 60
CATEGORY_MATCH_POINTS = 35
INTENT_MATCH_POINTS = 40
VERIFIED_POINTS = 20
TOP_RATING_POINTS = 15
GOOD_RATING_POINTS = 8
FEATURED_POINTS = 10
PRICE_MATCH_POINTS = 20
SCORE_FLOOR = 5

# People suggestion weights
MUTUAL_FOLLOWER_POINTS = 10
PROXIMITY_POINTS_PER_MILE = 2
RECENT_LOGIN_POINTS = 5  # within 7 days
MONTHLY_LOGIN_POINTS = 2  # within 30 days
AVATAR_POINTS = 3
BIO_POINTS = 2
USERNAME_POINTS = 1

MIN_TOKEN_LENGTH = 3
STOPWORDS = frozenset({
    "the", "and", "for", "with", "near", "from", "that", "this", "some", "any",
    "are", "was", "you", "your", "our", "out", "get", "can", "what", "where",
    "best", "good", "great", "nice", "place", "places", "spot", "spots",
})

_WORD_RE = re.compile(r"[\w'&-]+", re.UNICODE)


def tokenize(text: str) -> List[str]:
    """Distinct lowercase words worth matching, in first-seen order"""
    tokens: List[str] = []
    seen: Set[str] = set()
    for word in _WORD_RE.findall(text.lower()):
        word = word.strip("'-&")
        if len(word) >= MIN_TOKEN_LENGTH and word not in STOPWORDS and word not in seen:
            seen.add(word)
            tokens.append(word)
    return tokens


def category_key(name: str) -> str:
    """Comparable form of a category name: 'Restaurants' and 'restaurant' share a key"""
    key = re.sub(r"[-_\s]+", " ", name.strip().lower())
    return key[:-1] if key.endswith("s") else key


def proximity_bonus(
    distance_miles: Optional[float],
    radius_miles: Optional[float] = None,
) -> float:
    """Bonus of PROXIMITY_POINTS_PER_MILE per mile inside the radius, zero outside it"""
    radius = settings.PROXIMITY_RADIUS_MILES if radius_miles is None else radius_miles
    if distance_miles is None or distance_miles > radius:
        return 0.0
    return max(0.0, radius - distance_miles) * PROXIMITY_POINTS_PER_MILE


def _candidate_words(candidate: SearchCandidate) -> List[str]:
    text = " ".join([candidate.title, candidate.description, *candidate.categories, *candidate.tags])
    return tokenize(text)


def search_relevance(
    candidate: SearchCandidate,
    query_tokens: Sequence[str],
    phrase: str,
    analysis: QueryAnalysis,
    viewer_point: Optional[GeoPoint] = None,
) -> float:
    """
    Additive relevance score of a search candidate

    A candidate with no evidence either way is floored to SCORE_FLOOR so it
    still ranks above nothing.
    """
    score = 0.0

    words = _candidate_words(candidate)
    matching_pairs = sum(
        1 for token in query_tokens for word in words
        if token in word or word in token
    )
    score += matching_pairs * TOKEN_MATCH_POINTS

    phrase = phrase.strip().lower()
    if phrase and phrase in f"{candidate.title} {candidate.description}".lower():
        score += PHRASE_MATCH_POINTS

    wanted = {category_key(c) for c in analysis.categories}
    if wanted:
        own = {category_key(c) for c in candidate.categories}
        score += len(own & wanted) * CATEGORY_MATCH_POINTS

    score += len(analysis.intents & candidate.context_flags) * INTENT_MATCH_POINTS

    if candidate.is_verified:
        score += VERIFIED_POINTS
    if candidate.rating is not None:
        if candidate.rating >= 4.5:
            score += TOP_RATING_POINTS
        elif candidate.rating >= 4.0:
            score += GOOD_RATING_POINTS
    if candidate.is_featured:
        score += FEATURED_POINTS

    if (
        analysis.price_preference
        and candidate.price_range
        and candidate.price_range.lower() == analysis.price_preference.lower()
    ):
        score += PRICE_MATCH_POINTS

    score += proximity_bonus(distance_between_miles(viewer_point, candidate.coordinates))

    if score == 0:
        score = SCORE_FLOOR
    return float(score)


def rank_by_score(scored: Iterable[Tuple[T, float]], limit: int) -> List[Tuple[T, float]]:
    """Keep positive scores, sort descending (stable, ties keep fetch order) and truncate"""
    kept = [(item, score) for item, score in scored if score > 0]
    kept.sort(key=lambda pair: pair[1], reverse=True)
    return kept[:limit]


def engagement_score(like_count: int, comment_count: int, save_count: int) -> float:
    """Feed engagement score: likes + comments*2 + saves*3"""
    return float(like_count + comment_count * 2 + save_count * 3)


def people_score(
    person: PersonCandidate,
    viewer_following: Set[str],
    distance_miles: Optional[float],
    now: datetime,
) -> Tuple[float, int]:
    """
    Suggestion score of a person for the viewer

    Returns:
        Tuple of (score, mutual follower count)
    """
    mutual = len(viewer_following & set(person.follower_ids or []))
    score = mutual * MUTUAL_FOLLOWER_POINTS
    score += proximity_bonus(distance_miles)

    if person.last_login is not None:
        days_since_login = (now - person.last_login).total_seconds() / 86400
        if days_since_login <= 7:
            score += RECENT_LOGIN_POINTS
        elif days_since_login <= 30:
            score += MONTHLY_LOGIN_POINTS

    if person.profile_image:
        score += AVATAR_POINTS
    if person.bio:
        score += BIO_POINTS
    if person.username:
        score += USERNAME_POINTS

    return float(score), mutual
