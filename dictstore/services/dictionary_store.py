from __future__ import annotations

import logging
from dataclasses import dataclass

from dictstore.config import Settings
from dictstore.db.backends import create_backend
from dictstore.db.errors import StepWarning
from dictstore.db.manager import BackendFactory, Clock, ConnectionManager, utc_now
from dictstore.db.repositories import EntryRepository, LemmaCacheRepository, SearchRepository
from dictstore.domain.models import LanguageSet
from dictstore.domain.reports import CacheHealth, CacheStats, DatabaseStats, SearchStats

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DictionaryOverview:
    database: DatabaseStats
    search: SearchStats
    cache: CacheStats
    languages: LanguageSet


@dataclass(frozen=True, slots=True)
class MaintenanceSummary:
    expired_lemmas_removed: int
    cache_health: CacheHealth
    warnings: tuple[StepWarning, ...] = ()


class DictionaryStore:
    """One connection manager shared by the three repositories."""

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager
        self.entries = EntryRepository(manager)
        self.search = SearchRepository(manager)
        self.lemmas = LemmaCacheRepository(manager)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        backend_factory: BackendFactory = create_backend,
        clock: Clock = utc_now,
    ) -> DictionaryStore:
        return cls(ConnectionManager(settings, backend_factory=backend_factory, clock=clock))

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    async def open(self) -> None:
        await self._manager.ensure_initialized()

    async def close(self) -> None:
        await self._manager.close()

    async def get_overview(
        self,
        *,
        source_language: str | None = None,
        target_language: str | None = None,
    ) -> DictionaryOverview:
        return DictionaryOverview(
            database=await self._manager.get_database_stats(),
            search=await self.search.get_search_stats(
                source_language=source_language, target_language=target_language
            ),
            cache=await self.lemmas.get_cache_stats(),
            languages=await self.entries.get_all_languages(),
        )

    async def run_maintenance(self) -> MaintenanceSummary:
        report = await self._manager.run_maintenance()
        health = await self.lemmas.check_cache_health()
        if not health.healthy:
            logger.warning("Lemma cache issues: %s", "; ".join(health.issues))
        return MaintenanceSummary(
            expired_lemmas_removed=report.outcome,
            cache_health=health,
            warnings=report.warnings,
        )
