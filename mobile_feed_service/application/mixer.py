"""
Feed mixer and paginator

Privacy filtering, the fixed 2 posts : 1 place : 1 people-group interleave,
the final ordering and page slicing. Everything here is a pure function of
its inputs.
"""
import math
from datetime import datetime
from typing import Any, List, Optional, Sequence, Tuple

from ..schemas import FeedItem, Pagination, PlaceFeedItem, PostFeedItem

# How many items each stream contributes per round: posts, places, people groups
INTERLEAVE_PATTERN: Tuple[int, int, int] = (2, 1, 1)


def is_private(privacy: Any) -> bool:
    """True for a privacy marker equal to 'private' in any case"""
    return isinstance(privacy, str) and privacy.strip().lower() == "private"


def filter_private_posts(posts: Sequence[PostFeedItem]) -> List[PostFeedItem]:
    """
    Drop posts attached to a private location

    A post without a populated location is public.
    """
    return [
        post for post in posts
        if post.location is None or not is_private(post.location.privacy)
    ]


def filter_private_places(places: Sequence[PlaceFeedItem]) -> List[PlaceFeedItem]:
    return [place for place in places if not is_private(place.privacy)]


def interleave(
    posts: Sequence[FeedItem],
    places: Sequence[FeedItem],
    people_groups: Sequence[FeedItem],
    pattern: Tuple[int, int, int] = INTERLEAVE_PATTERN,
) -> List[FeedItem]:
    """
    Merge the three streams in the repeating pattern

    Each stream advances its own cursor; an exhausted stream stops contributing
    while the others continue until all are exhausted. No item is dropped.
    """
    streams = (list(posts), list(places), list(people_groups))
    cursors = [0, 0, 0]
    mixed: List[FeedItem] = []

    while any(cursors[i] < len(streams[i]) for i in range(3)):
        for i, take in enumerate(pattern):
            chunk = streams[i][cursors[i]:cursors[i] + take]
            mixed.extend(chunk)
            cursors[i] += len(chunk)

    return mixed


def sort_by_recency(items: Sequence[FeedItem]) -> List[FeedItem]:
    """Stable sort by createdAt descending; ties keep the interleave order"""
    return sorted(items, key=lambda item: item.created_at, reverse=True)


def sort_by_engagement(posts: Sequence[PostFeedItem]) -> List[PostFeedItem]:
    """Stable sort by engagement score descending; ties keep recency order"""
    return sorted(posts, key=lambda post: post.engagement_score, reverse=True)


def paginate(items: Sequence[FeedItem], page: int, limit: int) -> Tuple[List[FeedItem], Pagination]:
    """
    Slice the mixed list and build the pagination block

    Sources are already fetched at the requested page, so the slice always
    starts at offset 0 of the mixed list.
    """
    total = len(items)
    page_items = list(items[:limit])
    next_cursor: Optional[datetime] = page_items[-1].created_at if page_items else None

    pagination = Pagination(
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit) if limit else 0,
        has_next=page * limit < total,
        has_prev=page > 1,
        next_cursor=next_cursor,
    )
    return page_items, pagination


def mix_feed(
    posts: Sequence[PostFeedItem],
    places: Sequence[PlaceFeedItem],
    people_groups: Sequence[FeedItem],
    page: int,
    limit: int,
    sort_by: str = "createdAt",
) -> Tuple[List[FeedItem], Pagination]:
    """
    Filter, interleave, order and paginate the feed streams

    For 'popularity' and 'trending' the post stream is ranked by engagement
    before interleaving and the interleaved order is final. Otherwise the
    interleaved list is re-sorted by recency.
    """
    visible_posts = filter_private_posts(posts)
    visible_places = filter_private_places(places)

    if sort_by in ("popularity", "trending"):
        mixed = interleave(sort_by_engagement(visible_posts), visible_places, people_groups)
    else:
        mixed = sort_by_recency(interleave(visible_posts, visible_places, people_groups))

    return paginate(mixed, page, limit)
