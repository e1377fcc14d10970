from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from dictstore.config import Settings
from dictstore.db.backends import Backend, create_backend
from dictstore.db.errors import (
    DatabaseConnectionError,
    DictStoreError,
    OperationReport,
    StepWarning,
    UninitializedError,
)
from dictstore.db.rows import scalar
from dictstore.db.schema import (
    DELETE_EXPIRED_LEMMAS,
    Statements,
    build_statements,
    create_indexes,
    create_tables,
    run_migrations,
)
from dictstore.domain.reports import DatabaseStats

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
BackendFactory = Callable[[Settings], Backend]


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class InitSummary:
    backend: str
    migrations_applied: tuple[str, ...] = ()
    indexes_created: tuple[str, ...] = ()


class ConnectionManager:
    """Owns the backend connection, schema setup and prepared statements."""

    def __init__(
        self,
        settings: Settings,
        *,
        backend_factory: BackendFactory = create_backend,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings
        self._backend_factory = backend_factory
        self._clock = clock
        self._backend: Backend | None = None
        self._statements: Statements | None = None
        self._init_task: asyncio.Future[None] | None = None
        self._init_report: OperationReport[InitSummary] | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def is_initialized(self) -> bool:
        return self._backend is not None and self._statements is not None

    @property
    def init_report(self) -> OperationReport[InitSummary] | None:
        return self._init_report

    @property
    def statements(self) -> Statements:
        if self._statements is None:
            raise UninitializedError("Database not initialized. Call ensure_initialized() first.")
        return self._statements

    def now(self) -> datetime:
        return self._clock()

    def get_database(self) -> Backend:
        if self._backend is None or self._statements is None:
            raise UninitializedError("Database not initialized. Call ensure_initialized() first.")
        return self._backend

    async def ensure_initialized(self) -> None:
        """Initialize once; concurrent callers share the same in-flight attempt."""
        if self.is_initialized:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        task = self._init_task
        try:
            await asyncio.shield(task)
        except Exception:
            if self._init_task is task:
                self._init_task = None
            raise

    async def _initialize(self) -> None:
        backend = self._backend_factory(self._settings)
        warnings: list[StepWarning] = []
        logger.info("Initializing %s database", backend.name)
        try:
            await backend.connect()
            if backend.embedded:
                warnings.extend(StepWarning("tuning", problem) for problem in await backend.apply_tuning())

            tables = await create_tables(backend)
            warnings.extend(tables.warnings)

            migrations = await run_migrations(backend, now=self._clock())
            warnings.extend(migrations.warnings)

            indexes_created: tuple[str, ...] = ()
            if backend.embedded:
                indexes = await create_indexes(backend)
                warnings.extend(indexes.warnings)
                indexes_created = indexes.outcome

            statements = await build_statements(backend)
        except DictStoreError:
            logger.exception("Database initialization failed")
            await _close_quietly(backend)
            raise
        except Exception as exc:
            logger.exception("Database initialization failed")
            await _close_quietly(backend)
            raise DatabaseConnectionError(f"Database initialization failed: {exc}") from exc

        self._backend = backend
        self._statements = statements
        self._init_report = OperationReport(
            InitSummary(
                backend=backend.name,
                migrations_applied=migrations.outcome,
                indexes_created=indexes_created,
            ),
            tuple(warnings),
        )
        for warning in warnings:
            logger.warning("Initialization step degraded: %s", warning)
        logger.info("Database initialized (%s)", backend.name)

    async def run_maintenance(self) -> OperationReport[int]:
        """Purge expired lemma cache rows and refresh planner statistics; never raises."""
        backend = self._backend
        if backend is None or self._statements is None:
            return OperationReport(0, (StepWarning("maintenance", "database not initialized"),))

        warnings: list[StepWarning] = []
        removed = 0
        try:
            if await backend.column_exists("lemma_cache", "expires_at"):
                removed = max(0, await backend.execute(DELETE_EXPIRED_LEMMAS, (self.now(),)))
                if removed:
                    logger.info("Cleaned %s expired lemma cache entries", removed)
        except Exception as exc:
            logger.exception("Lemma cache cleanup failed")
            warnings.append(StepWarning("expire_lemmas", str(exc)))

        try:
            await backend.execute("ANALYZE")
        except Exception as exc:
            logger.warning("ANALYZE failed: %s", exc)
            warnings.append(StepWarning("analyze", str(exc)))
        return OperationReport(removed, tuple(warnings))

    async def get_database_stats(self) -> DatabaseStats:
        backend = self.get_database()
        try:
            counts = await backend.fetchone(
                """
                SELECT
                    (SELECT COUNT(*) FROM entries) AS entry_count,
                    (SELECT COUNT(*) FROM meanings) AS meaning_count,
                    (SELECT COUNT(*) FROM examples) AS example_count,
                    (SELECT COUNT(*) FROM lemma_cache) AS cache_size
                """
            ) or {}
            size_bytes = await backend.database_size_bytes()
        except Exception:
            logger.exception("Error getting database stats")
            return DatabaseStats(backend=backend.name)
        return DatabaseStats(
            backend=backend.name,
            entry_count=scalar(counts.get("entry_count")),
            meaning_count=scalar(counts.get("meaning_count")),
            example_count=scalar(counts.get("example_count")),
            cache_size=scalar(counts.get("cache_size")),
            size_bytes=size_bytes,
        )

    async def close(self) -> None:
        backend = self._backend
        self._backend = None
        self._statements = None
        self._init_task = None
        self._init_report = None
        if backend is None:
            return
        try:
            await backend.close()
        except Exception:
            logger.exception("Error closing database")
            return
        logger.info("Database connection closed")


async def _close_quietly(backend: Backend) -> None:
    try:
        await backend.close()
    except Exception:
        logger.warning("Failed to close backend after initialization error", exc_info=True)
