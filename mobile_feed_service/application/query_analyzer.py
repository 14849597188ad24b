"""
Rule-based query analyzer

Classifies a free-text search query into intent flags, category hints, a
price preference, an activity type and place-name fragments. Every rule is a
row in one of the tables below; adding an intent or category is a data change.
"""
from typing import Any, Iterable, List, Optional, Sequence, Tuple
import logging
import re

from ..domain.models import IntentRule, KeywordRule, QueryAnalysis

logger = logging.getLogger(__name__)

INTENT_RULES: Tuple[IntentRule, ...] = (
    IntentRule(
        intent="family",
        keywords=("family", "families", "kid", "kids", "child", "children", "toddler", "toddlers", "baby"),
        category_hints=("parks", "museums"),
    ),
    IntentRule(
        intent="date",
        keywords=("date", "date night", "romantic", "couple", "couples", "anniversary", "valentine"),
        category_hints=("restaurants", "bars"),
    ),
    IntentRule(
        intent="group",
        keywords=("group", "groups", "friends", "party", "hangout", "meetup", "squad", "team"),
        category_hints=("bars", "entertainment"),
    ),
    IntentRule(
        intent="solo",
        keywords=("solo", "alone", "by myself", "me time", "quiet", "peaceful"),
        category_hints=("cafes", "parks"),
    ),
)

CATEGORY_RULES: Tuple[KeywordRule, ...] = (
    KeywordRule("restaurants", ("restaurant", "restaurants", "food", "dinner", "lunch", "brunch", "breakfast",
                                "eat", "eats", "dining", "pizza", "sushi", "burger", "burgers", "tacos")),
    KeywordRule("cafes", ("cafe", "cafes", "coffee", "coffee shop", "coffee shops", "bakery", "bakeries", "tea")),
    KeywordRule("bars", ("bar", "bars", "pub", "pubs", "brewery", "breweries", "cocktail", "cocktails", "wine")),
    KeywordRule("parks", ("park", "parks", "playground", "playgrounds", "garden", "gardens", "hike", "hiking",
                          "trail", "trails")),
    KeywordRule("museums", ("museum", "museums", "gallery", "galleries", "exhibit", "exhibition", "history")),
    KeywordRule("beaches", ("beach", "beaches", "lake", "waterfront")),
    KeywordRule("shopping", ("shop", "shops", "shopping", "mall", "boutique", "boutiques", "market", "store")),
    KeywordRule("hotels", ("hotel", "hotels", "inn", "resort", "resorts", "stay")),
    KeywordRule("fitness", ("gym", "gyms", "fitness", "yoga", "climbing")),
    KeywordRule("entertainment", ("concert", "concerts", "music", "theater", "theatre", "cinema", "movie",
                                  "movies", "comedy", "bowling", "arcade")),
)

# Checked in order, first match wins
PRICE_RULES: Tuple[KeywordRule, ...] = (
    KeywordRule("luxury", ("luxury", "luxurious", "fine dining", "michelin")),
    KeywordRule("expensive", ("upscale", "expensive", "fancy", "high-end", "high end", "splurge")),
    KeywordRule("moderate", ("moderate", "mid-range", "mid range", "reasonably priced")),
    KeywordRule("budget", ("cheap", "budget", "affordable", "inexpensive", "low cost", "low-cost")),
    KeywordRule("free", ("free",)),
)

ACTIVITY_RULES: Tuple[KeywordRule, ...] = (
    KeywordRule("outdoor", ("outdoor", "outdoors", "outside", "hike", "hiking", "trail", "park", "beach")),
    KeywordRule("indoor", ("indoor", "indoors", "inside", "rainy")),
    KeywordRule("nightlife", ("nightlife", "late night", "club", "clubs", "bar", "bars")),
    KeywordRule("dining", ("eat", "dinner", "lunch", "brunch", "breakfast", "restaurant", "restaurants", "food")),
    KeywordRule("cultural", ("museum", "art", "gallery", "theater", "theatre", "history")),
)

GUIDE_KEYWORDS = ("guide", "guides", "itinerary", "tour", "things to do", "day trip")

PLACE_TYPES = (
    "coffee shop", "restaurant", "cafe", "bar", "pub", "brewery", "bakery", "park", "museum",
    "gallery", "beach", "hotel", "gym", "mall", "shop", "store", "playground",
)

FILLER_WORDS = frozenset({
    "a", "an", "the", "some", "any", "good", "great", "best", "nice", "cool", "new", "fun",
    "cheap", "local", "nearby", "popular", "top", "in", "near", "at", "for", "with", "to",
    "and", "or", "of", "on", "by", "around", "me", "my", "i", "we", "us", "find", "show",
    "looking", "want", "place", "places", "spot", "spots",
})

_TYPES_PATTERN = "|".join(re.escape(t) for t in sorted(PLACE_TYPES, key=len, reverse=True))
_NAME = r"[^\W\d_][\w'\-]*"

# "a quincy restaurant", "the downtown boston cafe"
_ARTICLE_NAME_TYPE = re.compile(
    rf"\b(?:a|an|the|some)\s+({_NAME}(?:\s+{_NAME})?)\s+(?:{_TYPES_PATTERN})(?:e?s)?\b"
)
# "restaurants in quincy", "cafe near harvard square"
_TYPE_IN_NAME = re.compile(
    rf"\b(?:{_TYPES_PATTERN})(?:e?s)?\s+(?:in|near|around|at|by)\s+({_NAME}(?:\s+{_NAME})?)"
)
# "date night in boston"
_TRAILING_IN_NAME = re.compile(rf"\b(?:in|near|around)\s+({_NAME}(?:\s+{_NAME})?)\s*$")
_TYPE_AFTER_ARTICLE = re.compile(rf"\b(?:a|an|the|some)\s+(?:{_NAME}\s+){{1,2}}({_TYPES_PATTERN})(?:e?s)?\b")


def _contains(text: str, keyword: str) -> bool:
    return re.search(rf"(?<![\w-]){re.escape(keyword)}(?![\w])", text) is not None


def _matches(text: str, keywords: Iterable[str]) -> List[str]:
    return [k for k in keywords if _contains(text, k)]


def _first_match(text: str, rules: Sequence[KeywordRule]) -> Optional[str]:
    return next((rule.value for rule in rules if _matches(text, rule.keywords)), None)


def _vocabulary() -> frozenset:
    words = set(FILLER_WORDS)
    for rule in INTENT_RULES:
        words.update(rule.keywords)
    for table in (CATEGORY_RULES, PRICE_RULES, ACTIVITY_RULES):
        for rule in table:
            words.update(rule.keywords)
    words.update(PLACE_TYPES)
    return frozenset(words)


VOCABULARY = _vocabulary()

# Words that never become location search terms
NON_TERMS = FILLER_WORDS.union(
    *(rule.keywords for rule in INTENT_RULES),
    *(rule.keywords for rule in PRICE_RULES),
)


def _clean_place_name(name: str) -> Optional[str]:
    words = [w for w in name.split() if w not in VOCABULARY]
    return " ".join(words) or None


def extract_place_names(text: str) -> List[str]:
    """Place-name fragments from phrases like 'a quincy restaurant' or 'cafes in quincy'"""
    names: List[str] = []
    for pattern in (_ARTICLE_NAME_TYPE, _TYPE_IN_NAME, _TRAILING_IN_NAME):
        for match in pattern.finditer(text):
            name = _clean_place_name(match.group(1))
            if name and name not in names:
                names.append(name)
    return names


def _content_terms(text: str) -> List[str]:
    terms: List[str] = []
    seen = set()
    for word in re.findall(r"[\w'\-]+", text):
        if word in NON_TERMS or word in seen:
            continue
        seen.add(word)
        terms.append(word)
    return terms


def _as_text(query: Any) -> str:
    if isinstance(query, bytes):
        return query.decode("utf-8", errors="replace")
    if query is None:
        return ""
    return query if isinstance(query, str) else str(query)


def analyze_query(query: Any) -> QueryAnalysis:
    """
    Analyze a free-text search query

    Never raises: when no rule matches, or when anything goes wrong, the
    general analysis (whole query as the single search term) is returned.
    """
    raw = ""
    try:
        raw = _as_text(query).strip()
        text = " ".join(raw.lower().split())
        if not text:
            return QueryAnalysis.general(raw)

        matched_intents = [rule for rule in INTENT_RULES if _matches(text, rule.keywords)]
        intent_names = {rule.intent for rule in matched_intents}

        categories: List[str] = []
        for rule in CATEGORY_RULES:
            if _matches(text, rule.keywords) and rule.value not in categories:
                categories.append(rule.value)
        for rule in matched_intents:
            for hint in rule.category_hints:
                if hint not in categories:
                    categories.append(hint)

        price = _first_match(text, PRICE_RULES)
        activity = _first_match(text, ACTIVITY_RULES)
        place_names = extract_place_names(text)

        for match in _TYPE_AFTER_ARTICLE.finditer(text):
            category = _first_match(match.group(1), CATEGORY_RULES)
            if category and category not in categories:
                categories.append(category)

        wants_guides = bool(_matches(text, GUIDE_KEYWORDS))
        if not (intent_names or categories or price or activity or place_names or wants_guides):
            return QueryAnalysis.general(raw)

        if place_names:
            search_terms = place_names
        else:
            search_terms = _content_terms(text) or [raw]

        if matched_intents:
            context = matched_intents[0].intent
        elif place_names:
            context = "specific_place"
        elif categories:
            context = "category"
        elif wants_guides:
            context = "guide"
        else:
            context = "general"

        is_place_query = bool(categories or price or place_names)

        return QueryAnalysis(
            location_search_terms=tuple(search_terms),
            categories=tuple(categories),
            context=context,
            is_family_query="family" in intent_names,
            is_date_query="date" in intent_names,
            is_group_query="group" in intent_names,
            is_solo_query="solo" in intent_names,
            price_preference=price,
            activity_type=activity,
            place_names=tuple(place_names),
            should_search_locations=True,
            should_search_guides=True,
            should_search_users=not (is_place_query or wants_guides),
        )
    except Exception as e:
        logger.warning(f"Query analysis failed, using general analysis: {e}")
        return QueryAnalysis.general(raw)


def analyze_handle_query(query: str) -> Optional[QueryAnalysis]:
    """'@name' queries only look for people"""
    text = query.strip()
    if not text.startswith("@") or len(text) < 2:
        return None
    handle = text[1:].strip()
    return QueryAnalysis(
        location_search_terms=(handle,),
        context="people",
        should_search_locations=False,
        should_search_guides=False,
        should_search_users=True,
    )


POPULAR_SEARCHES = (
    "restaurants", "hiking trails", "coffee shops", "beaches", "museums",
    "parks", "bars", "shopping", "events", "activities", "nightlife",
)

GENERIC_SUGGESTIONS = (
    "restaurants near me", "coffee shops", "parks", "things to do this weekend", "museums",
)

INTENT_SUGGESTIONS = {
    "family": ("family-friendly restaurants", "playgrounds", "kid-friendly museums"),
    "date": ("romantic restaurants", "cocktail bars", "date night ideas"),
    "group": ("group-friendly bars", "bowling and arcades", "brunch for groups"),
    "solo": ("quiet cafes", "bookstores", "peaceful parks"),
}

MAX_SUGGESTED_QUERIES = 5
MAX_PREFIX_SUGGESTIONS = 8


def suggest_queries(analysis: QueryAnalysis, query: str) -> List[str]:
    """Follow-up queries derived from the analysis, generic ones when nothing was detected"""
    suggestions: List[str] = []

    def add(text: str):
        if text.lower() != query.strip().lower() and text not in suggestions:
            suggestions.append(text)

    for intent in ("family", "date", "group", "solo"):
        if intent in analysis.intents:
            for text in INTENT_SUGGESTIONS[intent]:
                add(text)

    for category in analysis.categories:
        for place in analysis.place_names:
            add(f"{category} in {place}")
        add(f"best {category}")
        if analysis.price_preference:
            add(f"{analysis.price_preference} {category}")

    for text in POPULAR_SEARCHES:
        if any(term and term.lower() in text for term in analysis.location_search_terms):
            add(text)

    if not suggestions:
        suggestions.extend(s for s in GENERIC_SUGGESTIONS if s.lower() != query.strip().lower())
    return suggestions[:MAX_SUGGESTED_QUERIES]


def popular_suggestions(prefix: str) -> List[str]:
    """Popular searches containing the typed text"""
    text = prefix.strip().lower()
    if not text:
        return []
    return [search for search in POPULAR_SEARCHES if text in search][:MAX_PREFIX_SUGGESTIONS]
