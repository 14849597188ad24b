"""
Tests for privacy filtering, interleaving and pagination.
"""
from datetime import datetime, timedelta, timezone

import pytest

from mobile_feed_service.application.mixer import (
    filter_private_places,
    filter_private_posts,
    interleave,
    is_private,
    mix_feed,
    paginate,
)
from mobile_feed_service.schemas import (
    AuthorSummary,
    Engagement,
    LocationSummary,
    PeopleSuggestionFeedItem,
    PlaceFeedItem,
    PostFeedItem,
)

T0 = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _post(post_id, minutes_ago=0, privacy=None, score=0.0):
    location = LocationSummary(id=f"loc-{post_id}", name="Somewhere", privacy=privacy) if privacy else None
    return PostFeedItem(
        id=post_id,
        author=AuthorSummary(id="a1", name="Dana"),
        location=location,
        engagement=Engagement(),
        created_at=T0 - timedelta(minutes=minutes_ago),
        engagement_score=score,
    )


def _place(place_id, minutes_ago=0, privacy=None):
    return PlaceFeedItem(
        id=place_id,
        name=place_id,
        created_at=T0 - timedelta(minutes=minutes_ago),
        privacy=privacy,
    )


def _people(group_id, minutes_ago=0):
    return PeopleSuggestionFeedItem(
        id=group_id,
        category="suggested",
        title="Suggested for You",
        subtitle="",
        icon="sparkles",
        users=[],
        created_at=T0 - timedelta(minutes=minutes_ago),
    )


# ---------------------------------------------------------------------------
# Privacy
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("value,expected", [
    ("private", True), ("PRIVATE", True), (" Private ", True),
    ("public", False), (None, False), ("", False), (1, False),
])
def test_is_private(value, expected):
    assert is_private(value) is expected


def test_private_posts_and_places_are_filtered_case_insensitively():
    posts = [_post("p1"), _post("p2", privacy="PRIVATE"), _post("p3", privacy="public")]
    places = [_place("l1", privacy="Private"), _place("l2")]

    assert [p.id for p in filter_private_posts(posts)] == ["p1", "p3"]
    assert [p.id for p in filter_private_places(places)] == ["l2"]


# ---------------------------------------------------------------------------
# Interleaving
# ---------------------------------------------------------------------------

def test_interleave_two_posts_one_place_one_group():
    posts = [_post(f"post{i}") for i in range(1, 5)]
    places = [_place("place1"), _place("place2")]
    groups = [_people("peopleGroup1")]

    mixed = interleave(posts, places, groups)

    assert [item.id for item in mixed] == [
        "post1", "post2", "place1", "peopleGroup1", "post3", "post4", "place2",
    ]


def test_interleave_keeps_every_item_when_streams_are_uneven():
    posts = [_post("p1")]
    places = [_place(f"l{i}") for i in range(5)]
    groups = [_people("g1"), _people("g2")]

    mixed = interleave(posts, places, groups)

    assert len(mixed) == 8
    assert [item.id for item in mixed] == ["p1", "l0", "g1", "l1", "g2", "l2", "l3", "l4"]


def test_interleave_is_deterministic():
    posts = [_post(f"p{i}", minutes_ago=i) for i in range(7)]
    places = [_place(f"l{i}", minutes_ago=i) for i in range(3)]
    groups = [_people("g1")]

    first = mix_feed(posts, places, groups, page=1, limit=50)
    second = mix_feed(posts, places, groups, page=1, limit=50)

    assert [i.id for i in first[0]] == [i.id for i in second[0]]


def test_interleave_of_empty_streams_is_empty():
    assert interleave([], [], []) == []


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

def test_mixed_feed_is_sorted_by_recency_with_interleave_breaking_ties():
    posts = [_post("p1", 0), _post("p2", 10), _post("p3", 0)]
    places = [_place("l1", 5)]
    groups = [_people("g1", 0)]

    items, _ = mix_feed(posts, places, groups, page=1, limit=10)

    # Interleave order is p1 p2 l1 g1 p3; the sort keeps it for equal timestamps
    assert [i.id for i in items] == ["p1", "g1", "p3", "l1", "p2"]


def test_popularity_sort_ranks_posts_by_engagement_and_keeps_interleave_order():
    posts = [_post("new", 0, score=1), _post("hot", 30, score=50), _post("warm", 20, score=10)]
    places = [_place("l1", 0)]

    items, _ = mix_feed(posts, places, [], page=1, limit=10, sort_by="popularity")

    assert [i.id for i in items] == ["hot", "warm", "l1", "new"]


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------

def test_paginate_first_page():
    items = [_post(f"p{i}", minutes_ago=i) for i in range(5)]

    page_items, pagination = paginate(items, page=1, limit=3)

    assert [i.id for i in page_items] == ["p0", "p1", "p2"]
    assert pagination.total == 5
    assert pagination.total_pages == 2
    assert pagination.has_next is True
    assert pagination.has_prev is False
    assert pagination.next_cursor == page_items[-1].created_at


@pytest.mark.parametrize("page,limit,total", [(1, 3, 0), (2, 3, 5), (1, 5, 5), (3, 1, 10), (2, 50, 7)])
def test_pagination_invariants(page, limit, total):
    items = [_post(f"p{i}", minutes_ago=i) for i in range(total)]

    page_items, pagination = paginate(items, page=page, limit=limit)

    assert pagination.has_next == (page * limit < total)
    assert pagination.has_prev == (page > 1)
    assert len(page_items) <= limit
    if not page_items:
        assert pagination.next_cursor is None


def test_mix_feed_total_excludes_private_items():
    posts = [_post("p1"), _post("p2", privacy="private")]
    places = [_place("l1", privacy="PRIVATE"), _place("l2")]
    groups = [_people("g1")]

    items, pagination = mix_feed(posts, places, groups, page=1, limit=10)

    assert pagination.total == len(posts) + len(places) + len(groups) - 2
    assert {i.id for i in items} == {"p1", "l2", "g1"}
