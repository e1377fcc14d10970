from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from dictstore.constants import LEMMA_CACHE_TTL
from dictstore.db.backends import Backend, PreparedStatement
from dictstore.db.errors import DatabaseConnectionError, OperationReport, StepWarning

logger = logging.getLogger(__name__)

_SQLITE_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS entries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        headword TEXT NOT NULL,
        part_of_speech TEXT NOT NULL,
        source_language TEXT NOT NULL,
        target_language TEXT NOT NULL,
        definition_language TEXT NOT NULL,
        has_context BOOLEAN NOT NULL DEFAULT 0,
        context_sentence TEXT,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS meanings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entry_id INTEGER NOT NULL REFERENCES entries(id) ON DELETE CASCADE,
        definition TEXT NOT NULL,
        order_index INTEGER,
        noun_type TEXT,
        verb_type TEXT,
        comparison TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS examples (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        meaning_id INTEGER NOT NULL REFERENCES meanings(id) ON DELETE CASCADE,
        sentence TEXT NOT NULL,
        translation TEXT,
        is_context_sentence BOOLEAN NOT NULL DEFAULT 0,
        order_index INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS lemma_cache (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        word TEXT NOT NULL,
        lemma TEXT NOT NULL,
        target_language TEXT NOT NULL,
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
        expires_at TIMESTAMP,
        UNIQUE (word, target_language)
    )
    """,
)

_POSTGRES_TABLES = (
    """
    CREATE TABLE IF NOT EXISTS entries (
        id BIGSERIAL PRIMARY KEY,
        headword TEXT NOT NULL,
        part_of_speech TEXT NOT NULL,
        source_language TEXT NOT NULL,
        target_language TEXT NOT NULL,
        definition_language TEXT NOT NULL,
        has_context BOOLEAN NOT NULL DEFAULT FALSE,
        context_sentence TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS meanings (
        id BIGSERIAL PRIMARY KEY,
        entry_id BIGINT NOT NULL REFERENCES entries(id) ON DELETE CASCADE,
        definition TEXT NOT NULL,
        order_index INTEGER,
        noun_type TEXT,
        verb_type TEXT,
        comparison TEXT,
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS examples (
        id BIGSERIAL PRIMARY KEY,
        meaning_id BIGINT NOT NULL REFERENCES meanings(id) ON DELETE CASCADE,
        sentence TEXT NOT NULL,
        translation TEXT,
        is_context_sentence BOOLEAN NOT NULL DEFAULT FALSE,
        order_index INTEGER,
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS lemma_cache (
        id BIGSERIAL PRIMARY KEY,
        word TEXT NOT NULL,
        lemma TEXT NOT NULL,
        target_language TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        expires_at TIMESTAMPTZ,
        UNIQUE (word, target_language)
    )
    """,
)

TABLES: dict[str, tuple[str, ...]] = {
    "sqlite": _SQLITE_TABLES,
    "postgres": _POSTGRES_TABLES,
}

# One row per (headword ignoring case, language pair, context sentence).
ENTRY_KEY_INDEX = """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_entries_key
    ON entries (lower(headword), source_language, target_language, COALESCE(context_sentence, ''))
"""

COLUMN_TYPES: dict[str, dict[str, str]] = {
    "sqlite": {"integer": "INTEGER", "timestamp": "TIMESTAMP"},
    "postgres": {"integer": "INTEGER", "timestamp": "TIMESTAMPTZ"},
}

_ORDER_BACKFILL = """
    UPDATE {table} SET order_index = (
        SELECT COUNT(*) FROM {table} AS earlier
        WHERE earlier.{parent} = {table}.{parent} AND earlier.id < {table}.id
    )
    WHERE order_index IS NULL
"""


@dataclass(frozen=True, slots=True)
class ColumnMigration:
    name: str
    table: str
    column: str
    column_type: str
    backfill: str | None = None
    backfill_expiry: bool = False


MIGRATIONS: tuple[ColumnMigration, ...] = (
    ColumnMigration(
        name="meanings_order_index",
        table="meanings",
        column="order_index",
        column_type="integer",
        backfill=_ORDER_BACKFILL.format(table="meanings", parent="entry_id"),
    ),
    ColumnMigration(
        name="examples_order_index",
        table="examples",
        column="order_index",
        column_type="integer",
        backfill=_ORDER_BACKFILL.format(table="examples", parent="meaning_id"),
    ),
    ColumnMigration(
        name="lemma_cache_expires_at",
        table="lemma_cache",
        column="expires_at",
        column_type="timestamp",
        backfill="UPDATE lemma_cache SET expires_at = ? WHERE expires_at IS NULL",
        backfill_expiry=True,
    ),
    ColumnMigration(
        name="entries_updated_at",
        table="entries",
        column="updated_at",
        column_type="timestamp",
        backfill="UPDATE entries SET updated_at = created_at WHERE updated_at IS NULL",
    ),
)

# Embedded engine only; the managed server keeps its own plans.
_ENTRY_INDEXES = (
    (
        "idx_entries_lookup",
        "CREATE INDEX IF NOT EXISTS idx_entries_lookup "
        "ON entries (lower(headword), source_language, target_language)",
    ),
    (
        "idx_entries_languages",
        "CREATE INDEX IF NOT EXISTS idx_entries_languages "
        "ON entries (source_language, target_language, created_at DESC)",
    ),
    (
        "idx_entries_context",
        "CREATE INDEX IF NOT EXISTS idx_entries_context "
        "ON entries (source_language, target_language) WHERE has_context = 1",
    ),
)

DELETE_EXPIRED_LEMMAS = (
    "DELETE FROM lemma_cache WHERE expires_at IS NOT NULL AND expires_at < ?"
)


async def create_tables(backend: Backend) -> OperationReport[None]:
    try:
        async with backend.transaction() as session:
            for ddl in TABLES[backend.name]:
                await session.execute(ddl)
    except Exception as exc:
        raise DatabaseConnectionError(f"Failed to create tables: {exc}") from exc

    warnings: list[StepWarning] = []
    try:
        await backend.execute(ENTRY_KEY_INDEX)
    except Exception as exc:
        # Legacy data may already hold duplicate keys.
        logger.warning("Entry uniqueness index not created: %s", exc)
        warnings.append(StepWarning("uq_entries_key", str(exc)))
    return OperationReport(None, tuple(warnings))


async def run_migrations(
    backend: Backend,
    *,
    now: datetime,
    lemma_ttl: timedelta = LEMMA_CACHE_TTL,
) -> OperationReport[tuple[str, ...]]:
    applied: list[str] = []
    warnings: list[StepWarning] = []
    column_types = COLUMN_TYPES[backend.name]
    for migration in MIGRATIONS:
        try:
            if await backend.column_exists(migration.table, migration.column):
                continue
            async with backend.transaction() as session:
                await session.execute(
                    f"ALTER TABLE {migration.table} ADD COLUMN {migration.column} "
                    f"{column_types[migration.column_type]}"
                )
                if migration.backfill:
                    params = (now + lemma_ttl,) if migration.backfill_expiry else ()
                    await session.execute(migration.backfill, params)
        except Exception as exc:
            logger.warning("Migration %s failed (continuing): %s", migration.name, exc)
            warnings.append(StepWarning(f"migration:{migration.name}", str(exc)))
            continue
        logger.info("Applied migration %s", migration.name)
        applied.append(migration.name)
    return OperationReport(tuple(applied), tuple(warnings))


async def _column_exists_or_warn(
    backend: Backend, table: str, column: str, warnings: list[StepWarning]
) -> bool:
    try:
        return await backend.column_exists(table, column)
    except Exception as exc:
        warnings.append(StepWarning(f"inspect:{table}.{column}", str(exc)))
        return False


async def create_indexes(backend: Backend) -> OperationReport[tuple[str, ...]]:
    warnings: list[StepWarning] = []
    indexes = list(_ENTRY_INDEXES)
    if await _column_exists_or_warn(backend, "meanings", "order_index", warnings):
        indexes.append(
            (
                "idx_meanings_entry",
                "CREATE INDEX IF NOT EXISTS idx_meanings_entry ON meanings (entry_id, order_index)",
            )
        )
    if await _column_exists_or_warn(backend, "examples", "order_index", warnings):
        indexes.append(
            (
                "idx_examples_meaning",
                "CREATE INDEX IF NOT EXISTS idx_examples_meaning ON examples (meaning_id, order_index)",
            )
        )
    if await _column_exists_or_warn(backend, "lemma_cache", "expires_at", warnings):
        indexes.append(
            (
                "idx_lemma_lookup",
                "CREATE INDEX IF NOT EXISTS idx_lemma_lookup "
                "ON lemma_cache (word, target_language, expires_at)",
            )
        )
    else:
        indexes.append(
            (
                "idx_lemma_lookup_basic",
                "CREATE INDEX IF NOT EXISTS idx_lemma_lookup_basic ON lemma_cache (word, target_language)",
            )
        )

    created: list[str] = []
    for name, ddl in indexes:
        try:
            await backend.execute(ddl)
        except Exception as exc:
            logger.warning("Index %s not created (continuing): %s", name, exc)
            warnings.append(StepWarning(f"index:{name}", str(exc)))
            continue
        created.append(name)

    try:
        await backend.execute("ANALYZE")
    except Exception as exc:
        logger.warning("ANALYZE failed: %s", exc)
        warnings.append(StepWarning("analyze", str(exc)))
    return OperationReport(tuple(created), tuple(warnings))


# --- statements -------------------------------------------------------------

_SEARCH_WHERE = """
    (CAST(? AS TEXT) IS NULL OR e.source_language = ?)
    AND (CAST(? AS TEXT) IS NULL OR e.target_language = ?)
    AND (
        CAST(? AS TEXT) IS NULL
        OR lower(e.headword) LIKE lower(?) ESCAPE '!'
        OR lower(e.headword) LIKE lower(?) ESCAPE '!'
    )
    AND (
        CAST(? AS TEXT) IS NULL
        OR e.part_of_speech = ?
        OR e.part_of_speech LIKE ? ESCAPE '!'
    )
"""

RANKED_SEARCH = f"""
    SELECT e.id,
        CASE
            WHEN lower(e.headword) = lower(?) THEN 1
            WHEN lower(e.headword) LIKE lower(?) ESCAPE '!' THEN 2
            ELSE 3
        END AS rank_score
    FROM entries e
    WHERE {_SEARCH_WHERE}
    ORDER BY rank_score, lower(e.headword), e.id
    LIMIT ? OFFSET ?
"""

RANKED_SEARCH_COUNT = f"SELECT COUNT(*) AS total FROM entries e WHERE {_SEARCH_WHERE}"


@dataclass(frozen=True, slots=True)
class Statements:
    """Hot-path statements, built once for the columns the database really has."""

    lookup_by_headword: PreparedStatement
    lookup_by_key: PreparedStatement
    insert_entry: PreparedStatement
    update_entry: PreparedStatement
    insert_meaning: PreparedStatement
    insert_example: PreparedStatement
    entry_tree: PreparedStatement
    ranked_search: PreparedStatement
    ranked_search_count: PreparedStatement
    get_cached_lemma: PreparedStatement
    set_cached_lemma: PreparedStatement
    meanings_ordered: bool
    examples_ordered: bool
    has_updated_at: bool
    has_expires_at: bool

    def entry_tree_query(self, id_count: int) -> str:
        return entry_tree_query(
            id_count,
            meanings_ordered=self.meanings_ordered,
            examples_ordered=self.examples_ordered,
            has_updated_at=self.has_updated_at,
        )


def entry_tree_query(
    id_count: int,
    *,
    meanings_ordered: bool,
    examples_ordered: bool,
    has_updated_at: bool,
) -> str:
    """Flat entry/meaning/example join for ``id_count`` entry ids."""
    placeholders = ", ".join("?" for _ in range(max(1, id_count)))
    meaning_order = "m.order_index" if meanings_ordered else "m.id"
    example_order = "ex.order_index" if examples_ordered else "ex.id"
    updated_at = "e.updated_at" if has_updated_at else "e.created_at"
    return f"""
        SELECT
            e.id, e.headword, e.part_of_speech, e.source_language, e.target_language,
            e.definition_language, e.has_context, e.context_sentence, e.created_at,
            {updated_at} AS updated_at,
            m.id AS meaning_id, m.definition, m.noun_type, m.verb_type, m.comparison,
            ex.id AS example_id, ex.sentence, ex.translation, ex.is_context_sentence
        FROM entries e
        LEFT JOIN meanings m ON m.entry_id = e.id
        LEFT JOIN examples ex ON ex.meaning_id = m.id
        WHERE e.id IN ({placeholders})
        ORDER BY e.id, {meaning_order}, m.id, {example_order}, ex.id
    """


async def build_statements(backend: Backend) -> Statements:
    meanings_ordered = await backend.column_exists("meanings", "order_index")
    examples_ordered = await backend.column_exists("examples", "order_index")
    has_updated_at = await backend.column_exists("entries", "updated_at")
    has_expires_at = await backend.column_exists("lemma_cache", "expires_at")

    entry_columns = [
        "headword",
        "part_of_speech",
        "source_language",
        "target_language",
        "definition_language",
        "has_context",
        "context_sentence",
        "created_at",
    ]
    entry_updates = [f"{column} = ?" for column in entry_columns[:7]]
    if has_updated_at:
        entry_columns.append("updated_at")
        entry_updates.append("updated_at = ?")

    meaning_columns = ["entry_id", "definition"]
    if meanings_ordered:
        meaning_columns.append("order_index")
    meaning_columns += ["noun_type", "verb_type", "comparison"]

    example_columns = ["meaning_id", "sentence", "translation", "is_context_sentence"]
    if examples_ordered:
        example_columns.append("order_index")

    if has_expires_at:
        get_lemma = (
            "SELECT lemma FROM lemma_cache WHERE word = ? AND target_language = ? "
            "AND (expires_at IS NULL OR expires_at > ?)"
        )
        set_lemma = """
            INSERT INTO lemma_cache (word, lemma, target_language, created_at, expires_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (word, target_language) DO UPDATE SET
                lemma = excluded.lemma,
                created_at = excluded.created_at,
                expires_at = excluded.expires_at
        """
    else:
        get_lemma = "SELECT lemma FROM lemma_cache WHERE word = ? AND target_language = ?"
        set_lemma = """
            INSERT INTO lemma_cache (word, lemma, target_language, created_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (word, target_language) DO UPDATE SET
                lemma = excluded.lemma,
                created_at = excluded.created_at
        """

    prepare = backend.prepare
    return Statements(
        lookup_by_headword=prepare(
            "SELECT id FROM entries WHERE lower(headword) = lower(?) "
            "AND source_language = ? AND target_language = ? "
            "ORDER BY created_at DESC, id DESC LIMIT 1"
        ),
        lookup_by_key=prepare(
            "SELECT id FROM entries WHERE lower(headword) = lower(?) "
            "AND source_language = ? AND target_language = ? "
            "AND COALESCE(context_sentence, '') = ? LIMIT 1"
        ),
        insert_entry=prepare(
            f"INSERT INTO entries ({', '.join(entry_columns)}) "
            f"VALUES ({_placeholders(entry_columns)}) RETURNING id"
        ),
        update_entry=prepare(
            f"UPDATE entries SET {', '.join(entry_updates)} WHERE id = ?"
        ),
        insert_meaning=prepare(
            f"INSERT INTO meanings ({', '.join(meaning_columns)}) "
            f"VALUES ({_placeholders(meaning_columns)}) RETURNING id"
        ),
        insert_example=prepare(
            f"INSERT INTO examples ({', '.join(example_columns)}) "
            f"VALUES ({_placeholders(example_columns)})"
        ),
        entry_tree=prepare(
            entry_tree_query(
                1,
                meanings_ordered=meanings_ordered,
                examples_ordered=examples_ordered,
                has_updated_at=has_updated_at,
            )
        ),
        ranked_search=prepare(RANKED_SEARCH),
        ranked_search_count=prepare(RANKED_SEARCH_COUNT),
        get_cached_lemma=prepare(get_lemma),
        set_cached_lemma=prepare(set_lemma),
        meanings_ordered=meanings_ordered,
        examples_ordered=examples_ordered,
        has_updated_at=has_updated_at,
        has_expires_at=has_expires_at,
    )


def _placeholders(columns: list[str]) -> str:
    return ", ".join("?" for _ in columns)
