"""Storage backends behind one statement/transaction interface.

SQL handed to a backend is written once with ``?`` placeholders and portable
expressions (``lower()``, ``COALESCE``, ``ON CONFLICT``, ``RETURNING``).
Each backend turns it into its driver's dialect in :meth:`Backend.prepare`,
so repositories never branch on the engine in use.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import re
import sqlite3
from collections.abc import AsyncIterator, Iterator, Sequence
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite
import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from dictstore.config import Settings
from dictstore.db.errors import (
    DatabaseConnectionError,
    IntegrityViolation,
    ReadError,
    WriteError,
)

logger = logging.getLogger(__name__)

Params = Sequence[Any]
Row = dict[str, Any]

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_SQLITE_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_SQLITE_TUNING = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA cache_size = -64000",
    "PRAGMA temp_store = MEMORY",
    "PRAGMA mmap_size = 268435456",
    "PRAGMA foreign_keys = ON",
)


@dataclass(frozen=True, slots=True)
class PreparedStatement:
    sql: str
    text: str


Statement = PreparedStatement | str


class Session(abc.ABC):
    """Statement execution inside one backend connection scope."""

    def __init__(self, backend: Backend) -> None:
        self._backend = backend

    def _text(self, statement: Statement) -> str:
        if isinstance(statement, PreparedStatement):
            return statement.text
        return self._backend.prepare(statement).text

    @abc.abstractmethod
    async def execute(self, statement: Statement, params: Params = ()) -> int:
        """Run a write statement and return the affected row count."""

    @abc.abstractmethod
    async def execute_returning(self, statement: Statement, params: Params = ()) -> Row | None:
        """Run a write statement with a RETURNING clause."""

    @abc.abstractmethod
    async def fetchone(self, statement: Statement, params: Params = ()) -> Row | None:
        ...

    @abc.abstractmethod
    async def fetchall(self, statement: Statement, params: Params = ()) -> list[Row]:
        ...

    async def fetchval(self, statement: Statement, params: Params = ()) -> Any:
        row = await self.fetchone(statement, params)
        if not row:
            return None
        return next(iter(row.values()))


class Backend(abc.ABC):
    name: str
    embedded: bool

    def __init__(self) -> None:
        self._prepared: dict[str, PreparedStatement] = {}

    @abc.abstractmethod
    async def connect(self) -> None:
        ...

    @abc.abstractmethod
    async def close(self) -> None:
        ...

    @abc.abstractmethod
    def _translate(self, sql: str) -> str:
        ...

    @abc.abstractmethod
    def transaction(self) -> AsyncIterator[Session]:
        """Async context manager: commit on success, roll back on error."""

    def session(self) -> AsyncIterator[Session]:
        return self.transaction()

    @abc.abstractmethod
    async def column_exists(self, table: str, column: str) -> bool:
        ...

    @abc.abstractmethod
    async def database_size_bytes(self) -> int:
        ...

    @abc.abstractmethod
    def epoch_seconds_sql(self, column: str) -> str:
        ...

    async def apply_tuning(self) -> list[str]:
        return []

    def prepare(self, sql: str) -> PreparedStatement:
        statement = self._prepared.get(sql)
        if statement is None:
            statement = PreparedStatement(sql=sql, text=self._translate(sql))
            self._prepared[sql] = statement
        return statement

    async def execute(self, statement: Statement, params: Params = ()) -> int:
        async with self.transaction() as session:
            return await session.execute(statement, params)

    async def fetchone(self, statement: Statement, params: Params = ()) -> Row | None:
        async with self.session() as session:
            return await session.fetchone(statement, params)

    async def fetchall(self, statement: Statement, params: Params = ()) -> list[Row]:
        async with self.session() as session:
            return await session.fetchall(statement, params)

    async def fetchval(self, statement: Statement, params: Params = ()) -> Any:
        async with self.session() as session:
            return await session.fetchval(statement, params)


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


# --- SQLite -----------------------------------------------------------------


def format_sqlite_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(_SQLITE_TIMESTAMP_FORMAT)


def unicode_lower(value: str | None) -> str | None:
    return value.lower() if isinstance(value, str) else value


def _sqlite_params(params: Params) -> tuple[Any, ...]:
    return tuple(
        format_sqlite_timestamp(value) if isinstance(value, datetime) else value
        for value in params
    )


@contextmanager
def _sqlite_write_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.IntegrityError as exc:
        if "UNIQUE constraint failed" in str(exc):
            raise IntegrityViolation(str(exc)) from exc
        raise WriteError(str(exc)) from exc
    except sqlite3.Error as exc:
        raise WriteError(str(exc)) from exc


@contextmanager
def _sqlite_read_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise ReadError(str(exc)) from exc


class _SQLiteSession(Session):
    def __init__(self, backend: SQLiteBackend, conn: aiosqlite.Connection) -> None:
        super().__init__(backend)
        self._conn = conn

    async def execute(self, statement: Statement, params: Params = ()) -> int:
        with _sqlite_write_errors():
            async with self._conn.execute(self._text(statement), _sqlite_params(params)) as cursor:
                return cursor.rowcount

    async def execute_returning(self, statement: Statement, params: Params = ()) -> Row | None:
        with _sqlite_write_errors():
            async with self._conn.execute(self._text(statement), _sqlite_params(params)) as cursor:
                row = await cursor.fetchone()
        return dict(row) if row is not None else None

    async def fetchone(self, statement: Statement, params: Params = ()) -> Row | None:
        with _sqlite_read_errors():
            async with self._conn.execute(self._text(statement), _sqlite_params(params)) as cursor:
                row = await cursor.fetchone()
        return dict(row) if row is not None else None

    async def fetchall(self, statement: Statement, params: Params = ()) -> list[Row]:
        with _sqlite_read_errors():
            async with self._conn.execute(self._text(statement), _sqlite_params(params)) as cursor:
                rows = await cursor.fetchall()
        return [dict(row) for row in rows]


class SQLiteBackend(Backend):
    """Embedded file-backed engine; one connection, I/O serialized by a lock."""

    name = "sqlite"
    embedded = True

    def __init__(self, path: Path | str) -> None:
        super().__init__()
        self._path = Path(path)
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def connect(self) -> None:
        directory = self._path.parent
        try:
            if not directory.exists():
                directory.mkdir(parents=True, exist_ok=True)
                logger.info("Created database directory: %s", directory)
            conn = await aiosqlite.connect(str(self._path), isolation_level=None)
        except (OSError, sqlite3.Error) as exc:
            raise DatabaseConnectionError(
                f"Cannot open SQLite database at {self._path}: {exc}"
            ) from exc
        conn.row_factory = aiosqlite.Row
        self._conn = conn
        try:
            await conn.execute("PRAGMA foreign_keys = ON")
            # The built-in lower() folds ASCII only.
            await conn.create_function("lower", 1, unicode_lower, deterministic=True)
        except sqlite3.Error as exc:
            await self.close()
            raise DatabaseConnectionError(f"SQLite database unusable: {exc}") from exc
        logger.info("Local SQLite database opened at: %s", self._path)

    async def close(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            await conn.close()

    def _require_connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise DatabaseConnectionError("SQLite connection is not open")
        return self._conn

    def _translate(self, sql: str) -> str:
        return sql

    async def apply_tuning(self) -> list[str]:
        conn = self._require_connection()
        problems: list[str] = []
        async with self._lock:
            for pragma in _SQLITE_TUNING:
                try:
                    async with conn.execute(pragma) as cursor:
                        await cursor.fetchall()
                except sqlite3.Error as exc:
                    logger.warning("Failed to apply %s: %s", pragma, exc)
                    problems.append(f"{pragma}: {exc}")
        return problems

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Session]:
        conn = self._require_connection()
        async with self._lock:
            with _sqlite_write_errors():
                await conn.execute("BEGIN")
            try:
                yield _SQLiteSession(self, conn)
            except BaseException:
                await self._rollback(conn)
                raise
            try:
                await conn.execute("COMMIT")
            except sqlite3.Error as exc:
                await self._rollback(conn)
                raise WriteError(f"Commit failed: {exc}") from exc

    @asynccontextmanager
    async def session(self) -> AsyncIterator[Session]:
        conn = self._require_connection()
        async with self._lock:
            yield _SQLiteSession(self, conn)

    @staticmethod
    async def _rollback(conn: aiosqlite.Connection) -> None:
        if conn.in_transaction:
            await conn.execute("ROLLBACK")

    async def column_exists(self, table: str, column: str) -> bool:
        rows = await self.fetchall(f"PRAGMA table_info({_check_identifier(table)})")
        return any(row["name"] == column for row in rows)

    async def database_size_bytes(self) -> int:
        page_count = await self.fetchval("PRAGMA page_count")
        page_size = await self.fetchval("PRAGMA page_size")
        return int(page_count or 0) * int(page_size or 0)

    def epoch_seconds_sql(self, column: str) -> str:
        return f"CAST(strftime('%s', {column}) AS REAL)"


# --- PostgreSQL -------------------------------------------------------------


@contextmanager
def _postgres_write_errors() -> Iterator[None]:
    try:
        yield
    except pg_errors.UniqueViolation as exc:
        raise IntegrityViolation(str(exc)) from exc
    except psycopg.Error as exc:
        raise WriteError(str(exc)) from exc


@contextmanager
def _postgres_read_errors() -> Iterator[None]:
    try:
        yield
    except psycopg.Error as exc:
        raise ReadError(str(exc)) from exc


class _PostgresSession(Session):
    def __init__(self, backend: PostgresBackend, cursor: psycopg.AsyncCursor[Row]) -> None:
        super().__init__(backend)
        self._cursor = cursor

    async def execute(self, statement: Statement, params: Params = ()) -> int:
        with _postgres_write_errors():
            await self._cursor.execute(self._text(statement), tuple(params))
        return self._cursor.rowcount

    async def execute_returning(self, statement: Statement, params: Params = ()) -> Row | None:
        with _postgres_write_errors():
            await self._cursor.execute(self._text(statement), tuple(params))
            return await self._cursor.fetchone()

    async def fetchone(self, statement: Statement, params: Params = ()) -> Row | None:
        with _postgres_read_errors():
            await self._cursor.execute(self._text(statement), tuple(params))
            return await self._cursor.fetchone()

    async def fetchall(self, statement: Statement, params: Params = ()) -> list[Row]:
        with _postgres_read_errors():
            await self._cursor.execute(self._text(statement), tuple(params))
            return list(await self._cursor.fetchall())


def to_pyformat(sql: str) -> str:
    """Rewrite ``?`` placeholders for psycopg; literal ``%`` must be doubled."""
    return sql.replace("%", "%%").replace("?", "%s")


class PostgresBackend(Backend):
    """Managed remote engine; tuning is left to the server."""

    name = "postgres"
    embedded = False

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 1,
        max_size: int = 4,
        open_timeout: float = 30.0,
    ) -> None:
        super().__init__()
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._open_timeout = open_timeout
        self._pool: AsyncConnectionPool | None = None

    async def connect(self) -> None:
        pool = AsyncConnectionPool(
            conninfo=self._dsn,
            min_size=self._min_size,
            max_size=self._max_size,
            open=False,
            kwargs={"autocommit": False},
        )
        try:
            await pool.open(wait=True, timeout=self._open_timeout)
        except (PoolTimeout, psycopg.Error, OSError) as exc:
            await pool.close()
            raise DatabaseConnectionError(f"Cannot reach PostgreSQL: {exc}") from exc
        self._pool = pool
        logger.info("PostgreSQL connection pool opened.")

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()

    def _require_pool(self) -> AsyncConnectionPool:
        if self._pool is None:
            raise DatabaseConnectionError("PostgreSQL pool is not open")
        return self._pool

    def _translate(self, sql: str) -> str:
        return to_pyformat(sql)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Session]:
        pool = self._require_pool()
        async with pool.connection() as conn:
            try:
                async with conn.cursor(row_factory=dict_row) as cursor:
                    yield _PostgresSession(self, cursor)
            except BaseException:
                await conn.rollback()
                raise
            with _postgres_write_errors():
                await conn.commit()

    async def column_exists(self, table: str, column: str) -> bool:
        row = await self.fetchone(
            """
            SELECT 1 AS present
            FROM information_schema.columns
            WHERE table_schema = current_schema()
              AND table_name = ?
              AND column_name = ?
            """,
            (_check_identifier(table), column),
        )
        return row is not None

    async def database_size_bytes(self) -> int:
        size = await self.fetchval("SELECT pg_database_size(current_database()) AS size")
        return int(size or 0)

    def epoch_seconds_sql(self, column: str) -> str:
        return f"EXTRACT(EPOCH FROM {column})"


def create_backend(settings: Settings) -> Backend:
    if settings.use_remote_backend:
        if not settings.database_url:
            raise DatabaseConnectionError("DATABASE_URL is required for the remote backend")
        return PostgresBackend(
            settings.database_url,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
        )
    return SQLiteBackend(settings.database_path)
