from __future__ import annotations

from datetime import timedelta

LEMMA_CACHE_TTL = timedelta(hours=24)
CONTEXT_KEY_SNIPPET_LENGTH = 50

RECENT_ENTRIES_WINDOW = timedelta(days=30)
SEARCH_STATS_RECENT_WINDOW = timedelta(days=7)

SHORT_TERM_MAX_LENGTH = 3
SIMILARITY_PREFIX_LENGTH = 3

DEFAULT_BROWSE_PAGE_SIZE = 200
DEFAULT_SEARCH_PAGE_SIZE = 50
DEFAULT_RECENT_LIMIT = 10
DEFAULT_SUGGESTION_LIMIT = 10
DEFAULT_SIMILAR_LIMIT = 5
DEFAULT_CONTENT_SEARCH_LIMIT = 50

# Lemma cache health heuristics.
CACHE_OLD_ENTRY_AGE = timedelta(days=7)
CACHE_OLD_ENTRY_RATIO = 0.5
CACHE_MAX_HEALTHY_ROWS = 10_000
CACHE_MIN_HIT_RATE = 0.7
CACHE_MAX_AVERAGE_AGE_HOURS = 168.0
CACHE_TOP_LANGUAGES = 5
CACHE_PRELOAD_LIMIT = 100

# Lower bounds of the age buckets reported by cache metrics.
CACHE_AGE_BUCKETS: tuple[tuple[str, timedelta], ...] = (
    ("under_1h", timedelta(0)),
    ("1h_to_24h", timedelta(hours=1)),
    ("1d_to_7d", timedelta(days=1)),
    ("over_7d", timedelta(days=7)),
)
