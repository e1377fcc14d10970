from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from dictstore.domain.models import Entry


@dataclass(frozen=True, slots=True)
class SearchFilters:
    search_term: str | None = None
    source_language: str | None = None
    target_language: str | None = None
    part_of_speech: str | None = None


@dataclass(frozen=True, slots=True)
class AdvancedSearchFilters:
    search_term: str | None = None
    source_language: str | None = None
    target_language: str | None = None
    part_of_speech: str | None = None
    has_context: bool | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


@dataclass(frozen=True, slots=True)
class SearchResult:
    entries: tuple[Entry, ...]
    total: int
    page: int
    page_size: int

    @classmethod
    def empty(cls, page: int, page_size: int) -> SearchResult:
        return cls(entries=(), total=0, page=page, page_size=page_size)


@dataclass(frozen=True, slots=True)
class SearchStats:
    total_entries: int = 0
    context_aware_entries: int = 0
    recent_entries: int = 0
    part_of_speech_breakdown: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CacheStats:
    total_entries: int = 0
    expired_entries: int = 0
    cache_hit_rate: float = 0.0
    observed_lookups: int = 0


@dataclass(frozen=True, slots=True)
class LanguageUsage:
    language: str
    count: int


@dataclass(frozen=True, slots=True)
class CacheMetrics:
    total_entries: int = 0
    old_entries: int = 0
    average_age_hours: float = 0.0
    top_languages: tuple[LanguageUsage, ...] = ()
    age_distribution: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CacheHealth:
    healthy: bool
    issues: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class DatabaseStats:
    backend: str = ""
    entry_count: int = 0
    meaning_count: int = 0
    example_count: int = 0
    cache_size: int = 0
    size_bytes: int = 0

    @property
    def size_megabytes(self) -> float:
        return round(self.size_bytes / (1024 * 1024), 2)
