from __future__ import annotations

import logging
from typing import Any

from dictstore.constants import (
    DEFAULT_CONTENT_SEARCH_LIMIT,
    DEFAULT_SEARCH_PAGE_SIZE,
    DEFAULT_SIMILAR_LIMIT,
    DEFAULT_SUGGESTION_LIMIT,
    SEARCH_STATS_RECENT_WINDOW,
    SHORT_TERM_MAX_LENGTH,
    SIMILARITY_PREFIX_LENGTH,
)
from dictstore.db.manager import ConnectionManager
from dictstore.db.rows import load_entry_trees, page_window, scalar
from dictstore.domain.models import Entry
from dictstore.domain.normalization import (
    contains_pattern,
    normalize_headword,
    normalize_term,
    prefix_pattern,
    suffix_pattern,
)
from dictstore.domain.part_of_speech import count_parts_of_speech
from dictstore.domain.reports import AdvancedSearchFilters, SearchFilters, SearchResult, SearchStats

logger = logging.getLogger(__name__)

# Sentinel the browsing UI sends for "no filter".
_ANY_VALUE = "All"


def _headword_like(alias: str = "") -> str:
    return f"lower({alias}headword) LIKE lower(?) ESCAPE '!'"


def _filter_value(value: str | None) -> str | None:
    if not value or value == _ANY_VALUE:
        return None
    return value


def _term_patterns(term: str, *, short_prefix_only: bool) -> tuple[str | None, str | None]:
    """Prefix pattern plus the broad pattern used to filter headwords."""
    if not term:
        return None, None
    prefix = prefix_pattern(term)
    if short_prefix_only and len(term) <= SHORT_TERM_MAX_LENGTH:
        return prefix, prefix
    return prefix, contains_pattern(term)


def _part_of_speech_pattern(value: str | None) -> str | None:
    # Multi-value fields are stored as JSON lists.
    return contains_pattern(f'"{value}"') if value else None


class _Where:
    def __init__(self) -> None:
        self.clauses: list[str] = []
        self.params: list[Any] = []

    def add(self, clause: str, *params: Any) -> None:
        self.clauses.append(clause)
        self.params.extend(params)

    def languages(self, source_language: str | None, target_language: str | None, *, alias: str = "") -> None:
        source_language = _filter_value(source_language)
        target_language = _filter_value(target_language)
        if source_language:
            self.add(f"{alias}source_language = ?", source_language)
        if target_language:
            self.add(f"{alias}target_language = ?", target_language)

    @property
    def sql(self) -> str:
        return " AND ".join(self.clauses) if self.clauses else "1 = 1"


class SearchRepository:
    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    async def search_entries(
        self,
        filters: SearchFilters,
        *,
        page: int = 1,
        page_size: int = DEFAULT_SEARCH_PAGE_SIZE,
    ) -> SearchResult:
        """Ranked headword search: exact, then prefix, then substring, then alphabetical."""
        backend = self._manager.get_database()
        statements = self._manager.statements
        page, page_size, offset = page_window(page, page_size)

        term = normalize_term(filters.search_term) or None
        # Ranked pages always admit substring hits; rank 3 orders them last.
        prefix, broad = _term_patterns(term or "", short_prefix_only=False)
        source_language = _filter_value(filters.source_language)
        target_language = _filter_value(filters.target_language)
        part_of_speech = _filter_value(filters.part_of_speech)
        where_params = (
            source_language,
            source_language,
            target_language,
            target_language,
            term,
            prefix,
            broad,
            part_of_speech,
            part_of_speech,
            _part_of_speech_pattern(part_of_speech),
        )
        try:
            total = await backend.fetchval(statements.ranked_search_count, where_params)
            rows = await backend.fetchall(
                statements.ranked_search,
                (term, prefix, *where_params, page_size, offset),
            )
            entries = await load_entry_trees(backend, statements, [int(row["id"]) for row in rows])
        except Exception:
            logger.exception("Error searching entries for %r", filters.search_term)
            return SearchResult.empty(page, page_size)
        return SearchResult(tuple(entries), scalar(total), page, page_size)

    async def advanced_search(
        self,
        filters: AdvancedSearchFilters,
        *,
        page: int = 1,
        page_size: int = DEFAULT_SEARCH_PAGE_SIZE,
    ) -> SearchResult:
        """Filtered search; terms of up to three characters match by prefix only.

        Results are newest first within each match rank.
        """
        backend = self._manager.get_database()
        statements = self._manager.statements
        page, page_size, offset = page_window(page, page_size)

        where = _Where()
        term = normalize_term(filters.search_term)
        rank_sql = "3"
        rank_params: list[Any] = []
        if term:
            # Filtered views match short terms by prefix only; ranked search keeps substring hits.
            prefix, broad = _term_patterns(term, short_prefix_only=True)
            where.add(f"({_headword_like('e.')} OR {_headword_like('e.')})", prefix, broad)
            rank_sql = (
                "CASE WHEN lower(e.headword) = lower(?) THEN 1 "
                "WHEN lower(e.headword) LIKE lower(?) ESCAPE '!' THEN 2 ELSE 3 END"
            )
            rank_params = [term, prefix]
        where.languages(filters.source_language, filters.target_language, alias="e.")
        part_of_speech = _filter_value(filters.part_of_speech)
        if part_of_speech:
            where.add(
                "(e.part_of_speech = ? OR e.part_of_speech LIKE ? ESCAPE '!')",
                part_of_speech,
                _part_of_speech_pattern(part_of_speech),
            )
        if filters.has_context is not None:
            where.add("e.has_context = ?", bool(filters.has_context))
        if filters.date_from is not None:
            where.add("e.created_at >= ?", filters.date_from)
        if filters.date_to is not None:
            where.add("e.created_at <= ?", filters.date_to)

        try:
            total = await backend.fetchval(
                f"SELECT COUNT(*) AS total FROM entries e WHERE {where.sql}", where.params
            )
            rows = await backend.fetchall(
                f"""
                SELECT e.id, {rank_sql} AS rank_score
                FROM entries e
                WHERE {where.sql}
                ORDER BY rank_score, e.created_at DESC, e.id DESC
                LIMIT ? OFFSET ?
                """,
                (*rank_params, *where.params, page_size, offset),
            )
            entries = await load_entry_trees(backend, statements, [int(row["id"]) for row in rows])
        except Exception:
            logger.exception("Error in advanced search")
            return SearchResult.empty(page, page_size)
        return SearchResult(tuple(entries), scalar(total), page, page_size)

    async def get_entries_by_part_of_speech(
        self,
        part_of_speech: str,
        *,
        source_language: str | None = None,
        target_language: str | None = None,
        page: int = 1,
        page_size: int = DEFAULT_SEARCH_PAGE_SIZE,
    ) -> SearchResult:
        return await self.search_entries(
            SearchFilters(
                source_language=source_language,
                target_language=target_language,
                part_of_speech=part_of_speech,
            ),
            page=page,
            page_size=page_size,
        )

    async def get_context_aware_entries(
        self,
        *,
        source_language: str | None = None,
        target_language: str | None = None,
        page: int = 1,
        page_size: int = DEFAULT_SEARCH_PAGE_SIZE,
    ) -> SearchResult:
        return await self.advanced_search(
            AdvancedSearchFilters(
                source_language=source_language,
                target_language=target_language,
                has_context=True,
            ),
            page=page,
            page_size=page_size,
        )

    async def search_content(
        self,
        term: str,
        *,
        source_language: str | None = None,
        target_language: str | None = None,
        limit: int = DEFAULT_CONTENT_SEARCH_LIMIT,
    ) -> list[Entry]:
        """Entries whose definitions, example sentences or translations contain the term."""
        backend = self._manager.get_database()
        statements = self._manager.statements
        term = normalize_term(term)
        if not term:
            return []
        pattern = contains_pattern(term)
        where = _Where()
        where.add(
            """
            EXISTS (
                SELECT 1
                FROM meanings m
                LEFT JOIN examples ex ON ex.meaning_id = m.id
                WHERE m.entry_id = e.id
                  AND (
                      lower(m.definition) LIKE lower(?) ESCAPE '!'
                      OR lower(ex.sentence) LIKE lower(?) ESCAPE '!'
                      OR lower(ex.translation) LIKE lower(?) ESCAPE '!'
                  )
            )
            """,
            pattern,
            pattern,
            pattern,
        )
        where.languages(source_language, target_language, alias="e.")
        try:
            rows = await backend.fetchall(
                f"""
                SELECT e.id FROM entries e
                WHERE {where.sql}
                ORDER BY e.created_at DESC, e.id DESC
                LIMIT ?
                """,
                (*where.params, max(1, limit)),
            )
            return await load_entry_trees(backend, statements, [int(row["id"]) for row in rows])
        except Exception:
            logger.exception("Error searching content for %r", term)
            return []

    async def get_search_suggestions(
        self,
        partial: str,
        *,
        source_language: str | None = None,
        target_language: str | None = None,
        limit: int = DEFAULT_SUGGESTION_LIMIT,
    ) -> list[str]:
        backend = self._manager.get_database()
        partial = normalize_term(partial)
        if not partial:
            return []
        where = _Where()
        where.add(_headword_like(), prefix_pattern(partial))
        where.languages(source_language, target_language)
        try:
            rows = await backend.fetchall(
                f"""
                SELECT headword FROM entries
                WHERE {where.sql}
                GROUP BY headword
                ORDER BY lower(headword), headword
                LIMIT ?
                """,
                (*where.params, max(1, limit)),
            )
        except Exception:
            logger.exception("Error getting suggestions for %r", partial)
            return []
        return [row["headword"] for row in rows]

    async def get_similar_entries(
        self,
        headword: str,
        *,
        source_language: str | None = None,
        target_language: str | None = None,
        limit: int = DEFAULT_SIMILAR_LIMIT,
    ) -> list[Entry]:
        """Entries sharing a prefix, a suffix or an inner fragment with the headword."""
        backend = self._manager.get_database()
        statements = self._manager.statements
        word = normalize_headword(headword)
        if not word:
            return []

        patterns = [prefix_pattern(word[:SIMILARITY_PREFIX_LENGTH])]
        if len(word) > 1:
            patterns.append(suffix_pattern(word[1:]))
        inner = word[1:-1]
        # Single characters would match nearly every headword.
        if len(inner) > 1:
            patterns.append(contains_pattern(inner))

        where = _Where()
        where.add("lower(headword) <> lower(?)", word)
        where.add("(" + " OR ".join(_headword_like() for _ in patterns) + ")", *patterns)
        where.languages(source_language, target_language)
        try:
            rows = await backend.fetchall(
                f"""
                SELECT id FROM entries
                WHERE {where.sql}
                ORDER BY lower(headword), id
                LIMIT ?
                """,
                (*where.params, max(1, limit)),
            )
            return await load_entry_trees(backend, statements, [int(row["id"]) for row in rows])
        except Exception:
            logger.exception("Error getting entries similar to %r", headword)
            return []

    async def get_search_stats(
        self,
        *,
        source_language: str | None = None,
        target_language: str | None = None,
    ) -> SearchStats:
        backend = self._manager.get_database()
        where = _Where()
        where.languages(source_language, target_language)
        recent_cutoff = self._manager.now() - SEARCH_STATS_RECENT_WINDOW
        try:
            totals = await backend.fetchone(
                f"""
                SELECT
                    COUNT(*) AS total_entries,
                    SUM(CASE WHEN has_context = ? THEN 1 ELSE 0 END) AS context_entries,
                    SUM(CASE WHEN created_at > ? THEN 1 ELSE 0 END) AS recent_entries
                FROM entries
                WHERE {where.sql}
                """,
                (True, recent_cutoff, *where.params),
            ) or {}
            pos_rows = await backend.fetchall(
                f"""
                SELECT part_of_speech, COUNT(*) AS count
                FROM entries
                WHERE {where.sql}
                GROUP BY part_of_speech
                """,
                where.params,
            )
        except Exception:
            logger.exception("Error getting search stats")
            return SearchStats()
        return SearchStats(
            total_entries=scalar(totals.get("total_entries")),
            context_aware_entries=scalar(totals.get("context_entries")),
            recent_entries=scalar(totals.get("recent_entries")),
            part_of_speech_breakdown=count_parts_of_speech(
                (row["part_of_speech"], row["count"]) for row in pos_rows
            ),
        )
