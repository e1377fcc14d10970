from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from dictstore.constants import DEFAULT_BROWSE_PAGE_SIZE, DEFAULT_RECENT_LIMIT, RECENT_ENTRIES_WINDOW
from dictstore.db.backends import Session
from dictstore.db.errors import IntegrityViolation, WriteError
from dictstore.db.manager import ConnectionManager
from dictstore.db.rows import load_entry_trees, page_window, scalar
from dictstore.db.schema import Statements
from dictstore.domain.models import Entry, LanguageSet, Meaning
from dictstore.domain.normalization import normalize_headword
from dictstore.domain.part_of_speech import serialize_part_of_speech
from dictstore.domain.reports import SearchResult
from dictstore.domain.validation import validate_entry

logger = logging.getLogger(__name__)


@contextmanager
def _write_failure(action: str) -> Iterator[None]:
    try:
        yield
    except IntegrityViolation:
        raise
    except WriteError:
        logger.exception("Error %s", action)
        raise
    except Exception as exc:
        logger.exception("Error %s", action)
        raise WriteError(f"Failed {action}") from exc


class EntryRepository:
    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    async def add_entry(self, entry: Entry) -> int | None:
        """Insert the entry tree atomically; None when the same key is already stored."""
        validate_entry(entry)
        backend = self._manager.get_database()
        statements = self._manager.statements
        headword = normalize_headword(entry.headword)

        with _write_failure(f"checking existing entry {headword!r}"):
            async with backend.session() as session:
                existing = await session.fetchone(
                    statements.lookup_by_key,
                    (headword, entry.source_language, entry.target_language, entry.context_key),
                )
        if existing is not None:
            logger.info(
                "Entry %r already exists for %s -> %s",
                headword,
                entry.source_language,
                entry.target_language,
            )
            return None

        now = self._manager.now()
        try:
            with _write_failure(f"adding entry {headword!r}"):
                async with backend.transaction() as session:
                    row = await session.execute_returning(
                        statements.insert_entry,
                        _entry_params(statements, entry, headword, now, include_created=True),
                    )
                    if row is None:
                        raise WriteError("failed to insert entry")
                    entry_id = int(row["id"])
                    await _insert_meanings(session, statements, entry_id, entry.meanings)
        except IntegrityViolation:
            logger.info("Entry %r was stored concurrently; skipping", headword)
            return None
        logger.info("Added entry %r (id=%s)", headword, entry_id)
        return entry_id

    async def update_entry(self, entry_id: int, entry: Entry) -> bool:
        """Replace the stored entry and its whole meaning/example tree."""
        validate_entry(entry)
        backend = self._manager.get_database()
        statements = self._manager.statements
        headword = normalize_headword(entry.headword)
        now = self._manager.now()

        with _write_failure(f"updating entry {entry_id}"):
            async with backend.transaction() as session:
                updated = await session.execute(
                    statements.update_entry,
                    (*_entry_params(statements, entry, headword, now, include_created=False), entry_id),
                )
                if updated <= 0:
                    return False
                await session.execute("DELETE FROM meanings WHERE entry_id = ?", (entry_id,))
                await _insert_meanings(session, statements, entry_id, entry.meanings)
        logger.info("Updated entry %r (id=%s)", headword, entry_id)
        return True

    async def delete_entry(
        self,
        headword: str,
        *,
        source_language: str | None = None,
        target_language: str | None = None,
    ) -> bool:
        backend = self._manager.get_database()
        clauses = ["lower(headword) = lower(?)"]
        params: list[Any] = [normalize_headword(headword)]
        if source_language:
            clauses.append("source_language = ?")
            params.append(source_language)
        if target_language:
            clauses.append("target_language = ?")
            params.append(target_language)

        with _write_failure(f"deleting entry {headword!r}"):
            removed = await backend.execute(
                f"DELETE FROM entries WHERE {' AND '.join(clauses)}", params
            )
        if removed > 0:
            logger.info("Deleted %s entr%s for %r", removed, "y" if removed == 1 else "ies", headword)
        return removed > 0

    async def get_entry_by_headword(
        self,
        headword: str,
        *,
        source_language: str,
        target_language: str,
    ) -> Entry | None:
        """Most recent entry for the headword in the pair, whatever its context."""
        backend = self._manager.get_database()
        statements = self._manager.statements
        if not source_language or not target_language:
            return None
        try:
            row = await backend.fetchone(
                statements.lookup_by_headword,
                (normalize_headword(headword), source_language, target_language),
            )
            if row is None:
                return None
            entries = await load_entry_trees(backend, statements, [int(row["id"])])
        except Exception:
            logger.exception("Error getting entry %r", headword)
            return None
        return entries[0] if entries else None

    async def get_entry_by_id(self, entry_id: int) -> Entry | None:
        backend = self._manager.get_database()
        statements = self._manager.statements
        try:
            entries = await load_entry_trees(backend, statements, [entry_id])
        except Exception:
            logger.exception("Error getting entry id=%s", entry_id)
            return None
        return entries[0] if entries else None

    async def get_entries_by_ids(self, entry_ids: Sequence[int]) -> list[Entry]:
        backend = self._manager.get_database()
        statements = self._manager.statements
        try:
            return await load_entry_trees(backend, statements, entry_ids)
        except Exception:
            logger.exception("Error loading %s entries", len(entry_ids))
            return []

    async def entry_exists(
        self,
        headword: str,
        *,
        source_language: str,
        target_language: str,
        context_sentence: str | None = None,
    ) -> bool:
        """Without a context sentence any stored context matches."""
        backend = self._manager.get_database()
        statements = self._manager.statements
        word = normalize_headword(headword)
        try:
            if context_sentence is None:
                row = await backend.fetchone(
                    statements.lookup_by_headword, (word, source_language, target_language)
                )
            else:
                row = await backend.fetchone(
                    statements.lookup_by_key,
                    (word, source_language, target_language, context_sentence),
                )
        except Exception:
            logger.exception("Error checking entry %r", headword)
            return False
        return row is not None

    async def get_entries_for_languages(
        self,
        *,
        source_language: str,
        target_language: str,
        page: int = 1,
        page_size: int = DEFAULT_BROWSE_PAGE_SIZE,
    ) -> SearchResult:
        """Newest first."""
        backend = self._manager.get_database()
        statements = self._manager.statements
        page, page_size, offset = page_window(page, page_size)
        try:
            total = await backend.fetchval(
                "SELECT COUNT(*) AS total FROM entries WHERE source_language = ? AND target_language = ?",
                (source_language, target_language),
            )
            rows = await backend.fetchall(
                """
                SELECT id FROM entries
                WHERE source_language = ? AND target_language = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                (source_language, target_language, page_size, offset),
            )
            entries = await load_entry_trees(backend, statements, [int(row["id"]) for row in rows])
        except Exception:
            logger.exception("Error getting entries for %s -> %s", source_language, target_language)
            return SearchResult.empty(page, page_size)
        return SearchResult(tuple(entries), scalar(total), page, page_size)

    async def get_recent_entries(
        self,
        *,
        source_language: str,
        target_language: str,
        limit: int = DEFAULT_RECENT_LIMIT,
    ) -> list[Entry]:
        backend = self._manager.get_database()
        statements = self._manager.statements
        cutoff = self._manager.now() - RECENT_ENTRIES_WINDOW
        try:
            rows = await backend.fetchall(
                """
                SELECT id FROM entries
                WHERE source_language = ? AND target_language = ? AND created_at > ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (source_language, target_language, cutoff, max(1, limit)),
            )
            return await load_entry_trees(backend, statements, [int(row["id"]) for row in rows])
        except Exception:
            logger.exception("Error getting recent entries")
            return []

    async def get_entry_count(
        self,
        *,
        source_language: str | None = None,
        target_language: str | None = None,
    ) -> int:
        backend = self._manager.get_database()
        try:
            total = await backend.fetchval(
                """
                SELECT COUNT(*) AS total FROM entries
                WHERE (CAST(? AS TEXT) IS NULL OR source_language = ?)
                  AND (CAST(? AS TEXT) IS NULL OR target_language = ?)
                """,
                (source_language, source_language, target_language, target_language),
            )
        except Exception:
            logger.exception("Error counting entries")
            return 0
        return scalar(total)

    async def get_all_languages(self) -> LanguageSet:
        backend = self._manager.get_database()
        try:
            rows = await backend.fetchall(
                """
                SELECT DISTINCT source_language, target_language, definition_language
                FROM entries
                """
            )
        except Exception:
            logger.exception("Error getting languages")
            return LanguageSet()
        return LanguageSet(
            source_languages=tuple(sorted({row["source_language"] for row in rows})),
            target_languages=tuple(sorted({row["target_language"] for row in rows})),
            definition_languages=tuple(sorted({row["definition_language"] for row in rows})),
        )


def _entry_params(
    statements: Statements,
    entry: Entry,
    headword: str,
    now: datetime,
    *,
    include_created: bool,
) -> tuple[Any, ...]:
    context_sentence = entry.context_sentence or None
    params: list[Any] = [
        headword,
        serialize_part_of_speech(entry.part_of_speech),
        entry.source_language,
        entry.target_language,
        entry.definition_language,
        bool(entry.has_context or context_sentence),
        context_sentence,
    ]
    if include_created:
        params.append(now)
    if statements.has_updated_at:
        params.append(now)
    return tuple(params)


async def _insert_meanings(
    session: Session,
    statements: Statements,
    entry_id: int,
    meanings: Sequence[Meaning],
) -> None:
    for meaning_index, meaning in enumerate(meanings):
        params: list[Any] = [entry_id, meaning.definition]
        if statements.meanings_ordered:
            params.append(meaning_index)
        params += [meaning.noun_type, meaning.verb_type, meaning.comparison]
        row = await session.execute_returning(statements.insert_meaning, params)
        if row is None:
            raise WriteError("failed to insert meaning")
        meaning_id = int(row["id"])

        for example_index, example in enumerate(meaning.examples):
            example_params: list[Any] = [
                meaning_id,
                example.sentence,
                example.translation,
                example.is_context_sentence,
            ]
            if statements.examples_ordered:
                example_params.append(example_index)
            await session.execute(statements.insert_example, example_params)
