from __future__ import annotations

import asyncio

import aiosqlite
import pytest

from dictstore.db.backends import SQLiteBackend, create_backend
from dictstore.db.errors import DatabaseConnectionError, UninitializedError
from dictstore.db.manager import ConnectionManager
from dictstore.db.repositories import EntryRepository, LemmaCacheRepository

_LEGACY_SCHEMA = (
    """
    CREATE TABLE entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        headword TEXT NOT NULL,
        part_of_speech TEXT NOT NULL,
        source_language TEXT NOT NULL,
        target_language TEXT NOT NULL,
        definition_language TEXT NOT NULL,
        has_context BOOLEAN DEFAULT 0,
        context_sentence TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE meanings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entry_id INTEGER NOT NULL REFERENCES entries(id) ON DELETE CASCADE,
        definition TEXT NOT NULL,
        noun_type TEXT,
        verb_type TEXT,
        comparison TEXT
    )
    """,
    """
    CREATE TABLE examples (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        meaning_id INTEGER NOT NULL REFERENCES meanings(id) ON DELETE CASCADE,
        sentence TEXT NOT NULL,
        translation TEXT,
        is_context_sentence BOOLEAN DEFAULT 0
    )
    """,
    """
    CREATE TABLE lemma_cache (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        word TEXT NOT NULL,
        lemma TEXT NOT NULL,
        target_language TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (word, target_language)
    )
    """,
)


async def _create_legacy_database(path, *, duplicate_entry: bool = False) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(str(path)) as conn:
        for ddl in _LEGACY_SCHEMA:
            await conn.execute(ddl)
        await conn.execute(
            "INSERT INTO entries (headword, part_of_speech, source_language, target_language, "
            "definition_language, created_at) VALUES ('Hund', 'noun', 'de', 'en', 'en', '2026-02-01 08:00:00')"
        )
        if duplicate_entry:
            await conn.execute(
                "INSERT INTO entries (headword, part_of_speech, source_language, target_language, "
                "definition_language) VALUES ('hund', 'noun', 'de', 'en', 'en')"
            )
        await conn.execute("INSERT INTO meanings (entry_id, definition) VALUES (1, 'dog')")
        await conn.execute("INSERT INTO meanings (entry_id, definition) VALUES (1, 'hound')")
        await conn.execute("INSERT INTO examples (meaning_id, sentence) VALUES (1, 'Der Hund bellt.')")
        await conn.execute("INSERT INTO examples (meaning_id, sentence) VALUES (1, 'Ein Hund.')")
        await conn.execute("INSERT INTO lemma_cache (word, lemma, target_language) VALUES ('Hunde', 'Hund', 'en')")
        await conn.commit()


def test_concurrent_callers_share_one_initialization(settings, clock) -> None:
    calls = []

    def factory(current_settings):
        calls.append(current_settings)
        return create_backend(current_settings)

    manager = ConnectionManager(settings, backend_factory=factory, clock=clock)

    async def run_case():
        try:
            await asyncio.gather(*(manager.ensure_initialized() for _ in range(5)))
            await manager.ensure_initialized()
            return manager.get_database().name
        finally:
            await manager.close()

    assert asyncio.run(run_case()) == "sqlite"
    assert len(calls) == 1


def test_repositories_refuse_to_run_before_initialization(settings, clock) -> None:
    manager = ConnectionManager(settings, clock=clock)

    with pytest.raises(UninitializedError):
        manager.get_database()
    with pytest.raises(UninitializedError):
        asyncio.run(EntryRepository(manager).get_entry_by_id(1))


def test_failed_initialization_can_be_retried(tmp_path, settings, clock) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    attempts = []

    def factory(current_settings):
        attempts.append(1)
        if len(attempts) == 1:
            return SQLiteBackend(blocker / "d.db")
        return create_backend(current_settings)

    manager = ConnectionManager(settings, backend_factory=factory, clock=clock)

    async def run_case():
        with pytest.raises(DatabaseConnectionError):
            await manager.ensure_initialized()
        assert manager.is_initialized is False
        await manager.ensure_initialized()
        initialized = manager.is_initialized
        await manager.close()
        return initialized

    assert asyncio.run(run_case()) is True
    assert len(attempts) == 2


def test_failure_after_connect_closes_backend(settings, clock) -> None:
    class BrokenBackend(SQLiteBackend):
        closed = False

        async def column_exists(self, table, column):
            raise RuntimeError("catalog unavailable")

        async def close(self):
            BrokenBackend.closed = True
            await super().close()

    manager = ConnectionManager(
        settings,
        backend_factory=lambda current: BrokenBackend(current.database_path),
        clock=clock,
    )

    with pytest.raises(DatabaseConnectionError):
        asyncio.run(manager.ensure_initialized())
    assert BrokenBackend.closed is True
    assert manager.is_initialized is False


def test_fresh_database_reports_indexes_and_no_migrations(settings, clock) -> None:
    manager = ConnectionManager(settings, clock=clock)

    async def run_case():
        await manager.ensure_initialized()
        report = manager.init_report
        stats = await manager.get_database_stats()
        await manager.close()
        return report, stats

    report, stats = asyncio.run(run_case())
    assert report.ok
    assert report.outcome.migrations_applied == ()
    assert "idx_entries_lookup" in report.outcome.indexes_created
    assert "idx_lemma_lookup" in report.outcome.indexes_created
    assert stats.backend == "sqlite"
    assert stats.entry_count == 0
    assert stats.size_bytes > 0


def test_legacy_database_is_migrated_once(settings, clock) -> None:
    async def run_case():
        await _create_legacy_database(settings.database_path)

        first = ConnectionManager(settings, clock=clock)
        await first.ensure_initialized()
        first_report = first.init_report
        entry = await EntryRepository(first).get_entry_by_id(1)
        lemma = await LemmaCacheRepository(first).get_cached_lemma("Hunde", "en")
        await first.close()

        second = ConnectionManager(settings, clock=clock)
        await second.ensure_initialized()
        second_report = second.init_report
        backend = second.get_database()
        order_rows = await backend.fetchall("SELECT order_index FROM meanings ORDER BY id")
        expiry = await backend.fetchval("SELECT expires_at FROM lemma_cache")
        updated = await backend.fetchval("SELECT updated_at FROM entries WHERE id = 1")
        await second.close()
        return first_report, entry, lemma, second_report, order_rows, expiry, updated

    first_report, entry, lemma, second_report, order_rows, expiry, updated = asyncio.run(run_case())

    assert first_report.outcome.migrations_applied == (
        "meanings_order_index",
        "examples_order_index",
        "lemma_cache_expires_at",
        "entries_updated_at",
    )
    assert second_report.outcome.migrations_applied == ()
    assert [row["order_index"] for row in order_rows] == [0, 1]
    assert expiry == "2026-02-20 12:00:00"
    assert updated == "2026-02-01 08:00:00"
    assert lemma == "Hund"
    assert entry is not None
    assert [meaning.definition for meaning in entry.meanings] == ["dog", "hound"]
    assert [example.sentence for example in entry.meanings[0].examples] == ["Der Hund bellt.", "Ein Hund."]


def test_duplicate_legacy_keys_degrade_to_a_warning(settings, clock) -> None:
    manager = ConnectionManager(settings, clock=clock)

    async def run_case():
        await _create_legacy_database(settings.database_path, duplicate_entry=True)
        await manager.ensure_initialized()
        report = manager.init_report
        await manager.close()
        return report

    report = asyncio.run(run_case())
    assert [warning.step for warning in report.warnings] == ["uq_entries_key"]


def test_maintenance_removes_expired_lemmas(settings, clock) -> None:
    manager = ConnectionManager(settings, clock=clock)
    cache = LemmaCacheRepository(manager)

    async def run_case():
        await manager.ensure_initialized()
        await cache.cache_lemma("ran", "run", "en")
        clock.advance(hours=1)
        await cache.cache_lemma("went", "go", "en")
        clock.advance(hours=23, minutes=30)
        report = await manager.run_maintenance()
        remaining = await manager.get_database_stats()
        await manager.close()
        return report, remaining

    report, remaining = asyncio.run(run_case())
    assert report.outcome == 1
    assert report.ok
    assert remaining.cache_size == 1


def test_maintenance_before_initialization_only_warns(settings, clock) -> None:
    report = asyncio.run(ConnectionManager(settings, clock=clock).run_maintenance())
    assert report.outcome == 0
    assert not report.ok


def test_close_resets_state(settings, clock) -> None:
    manager = ConnectionManager(settings, clock=clock)

    async def run_case():
        await manager.ensure_initialized()
        await manager.close()
        await manager.close()

    asyncio.run(run_case())
    with pytest.raises(UninitializedError):
        manager.get_database()
    assert manager.is_initialized is False
    assert manager.init_report is None
