from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import timedelta

from dictstore.constants import (
    CACHE_AGE_BUCKETS,
    CACHE_MAX_AVERAGE_AGE_HOURS,
    CACHE_MAX_HEALTHY_ROWS,
    CACHE_MIN_HIT_RATE,
    CACHE_OLD_ENTRY_AGE,
    CACHE_OLD_ENTRY_RATIO,
    CACHE_PRELOAD_LIMIT,
    CACHE_TOP_LANGUAGES,
    LEMMA_CACHE_TTL,
)
from dictstore.db.errors import WriteError
from dictstore.db.manager import ConnectionManager
from dictstore.db.rows import scalar
from dictstore.db.schema import DELETE_EXPIRED_LEMMAS
from dictstore.domain.models import LemmaCacheItem
from dictstore.domain.reports import CacheHealth, CacheMetrics, CacheStats, LanguageUsage

logger = logging.getLogger(__name__)


class LemmaCacheRepository:
    """Word -> lemma cache keyed by (word, target language) with a fixed TTL."""

    def __init__(self, manager: ConnectionManager, *, ttl: timedelta = LEMMA_CACHE_TTL) -> None:
        self._manager = manager
        self._ttl = ttl
        self._lookups = 0
        self._hits = 0

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    async def get_cached_lemma(self, word: str, target_language: str) -> str | None:
        backend = self._manager.get_database()
        statements = self._manager.statements
        params: tuple[object, ...] = (word, target_language)
        if statements.has_expires_at:
            params = (*params, self._manager.now())
        try:
            row = await backend.fetchone(statements.get_cached_lemma, params)
        except Exception:
            logger.exception("Error reading lemma cache for %r", word)
            return None
        self._lookups += 1
        if row is None:
            return None
        self._hits += 1
        return str(row["lemma"])

    async def cache_lemma(self, word: str, lemma: str, target_language: str) -> None:
        """Upsert the lemma and restart its TTL."""
        backend = self._manager.get_database()
        statements = self._manager.statements
        now = self._manager.now()
        params: tuple[object, ...] = (word, lemma, target_language, now)
        if statements.has_expires_at:
            params = (*params, now + self._ttl)
        try:
            await backend.execute(statements.set_cached_lemma, params)
        except Exception as exc:
            logger.exception("Error caching lemma for %r", word)
            if isinstance(exc, WriteError):
                raise
            raise WriteError(f"Failed to cache lemma for {word!r}") from exc
        logger.debug("Cached lemma %r -> %r (%s)", word, lemma, target_language)

    async def bulk_cache_lemmas(self, items: Iterable[LemmaCacheItem]) -> int:
        """Best effort per item; returns how many were stored."""
        stored = 0
        for item in items:
            try:
                await self.cache_lemma(item.word, item.lemma, item.target_language)
            except WriteError:
                logger.warning("Skipping lemma %r in bulk cache", item.word)
                continue
            stored += 1
        logger.info("Bulk cached %s lemmas", stored)
        return stored

    async def clear_expired_lemma_cache(self) -> int:
        backend = self._manager.get_database()
        try:
            if not await backend.column_exists("lemma_cache", "expires_at"):
                return 0
            removed = await backend.execute(DELETE_EXPIRED_LEMMAS, (self._manager.now(),))
        except Exception:
            logger.exception("Error clearing expired lemma cache")
            return 0
        if removed > 0:
            logger.info("Cleared %s expired lemma cache entries", removed)
        return max(0, removed)

    async def clear_lemma_cache(self) -> int:
        backend = self._manager.get_database()
        try:
            removed = await backend.execute("DELETE FROM lemma_cache")
        except Exception:
            logger.exception("Error clearing lemma cache")
            return 0
        logger.info("Cleared lemma cache (%s entries)", removed)
        return max(0, removed)

    async def optimize_cache(self, *, max_age_days: float = CACHE_OLD_ENTRY_AGE.days) -> int:
        """Drop rows created more than ``max_age_days`` ago, expired or not."""
        backend = self._manager.get_database()
        cutoff = self._manager.now() - timedelta(days=max_age_days)
        try:
            removed = await backend.execute("DELETE FROM lemma_cache WHERE created_at < ?", (cutoff,))
        except Exception:
            logger.exception("Error optimizing lemma cache")
            return 0
        logger.info("Removed %s old lemma cache entries", removed)
        return max(0, removed)

    async def get_cache_stats(self) -> CacheStats:
        backend = self._manager.get_database()
        statements = self._manager.statements
        try:
            total = scalar(await backend.fetchval("SELECT COUNT(*) AS total FROM lemma_cache"))
            expired = 0
            if statements.has_expires_at:
                expired = scalar(
                    await backend.fetchval(
                        "SELECT COUNT(*) AS total FROM lemma_cache WHERE expires_at IS NOT NULL AND expires_at <= ?",
                        (self._manager.now(),),
                    )
                )
        except Exception:
            logger.exception("Error getting lemma cache stats")
            return CacheStats(observed_lookups=self._lookups)

        if self._lookups:
            hit_rate = self._hits / self._lookups
        elif total:
            hit_rate = (total - expired) / total
        else:
            hit_rate = 0.0
        return CacheStats(
            total_entries=total,
            expired_entries=expired,
            cache_hit_rate=round(hit_rate, 4),
            observed_lookups=self._lookups,
        )

    async def get_cache_metrics(self) -> CacheMetrics:
        backend = self._manager.get_database()
        now = self._manager.now()
        try:
            total = scalar(await backend.fetchval("SELECT COUNT(*) AS total FROM lemma_cache"))
            old = scalar(
                await backend.fetchval(
                    "SELECT COUNT(*) AS total FROM lemma_cache WHERE created_at < ?",
                    (now - CACHE_OLD_ENTRY_AGE,),
                )
            )
            average_epoch = await backend.fetchval(
                f"SELECT AVG({backend.epoch_seconds_sql('created_at')}) AS average_epoch FROM lemma_cache"
            )
            language_rows = await backend.fetchall(
                """
                SELECT target_language, COUNT(*) AS count
                FROM lemma_cache
                GROUP BY target_language
                ORDER BY count DESC, target_language
                LIMIT ?
                """,
                (CACHE_TOP_LANGUAGES,),
            )
            distribution: dict[str, int] = {}
            bounds = [lower for _, lower in CACHE_AGE_BUCKETS]
            for index, (label, lower) in enumerate(CACHE_AGE_BUCKETS):
                if index + 1 < len(bounds):
                    count = await backend.fetchval(
                        "SELECT COUNT(*) AS total FROM lemma_cache WHERE created_at <= ? AND created_at > ?",
                        (now - lower, now - bounds[index + 1]),
                    )
                else:
                    count = await backend.fetchval(
                        "SELECT COUNT(*) AS total FROM lemma_cache WHERE created_at <= ?",
                        (now - lower,),
                    )
                distribution[label] = scalar(count)
        except Exception:
            logger.exception("Error getting lemma cache metrics")
            return CacheMetrics()

        average_age_hours = 0.0
        if average_epoch is not None:
            average_age_hours = max(0.0, (now.timestamp() - float(average_epoch)) / 3600)
        return CacheMetrics(
            total_entries=total,
            old_entries=old,
            average_age_hours=round(average_age_hours, 2),
            top_languages=tuple(
                LanguageUsage(language=row["target_language"], count=scalar(row["count"]))
                for row in language_rows
            ),
            age_distribution=distribution,
        )

    async def check_cache_health(self) -> CacheHealth:
        try:
            stats = await self.get_cache_stats()
            metrics = await self.get_cache_metrics()
        except Exception as exc:
            logger.exception("Error checking lemma cache health")
            return CacheHealth(
                healthy=False,
                issues=(f"Failed to check cache health: {exc}",),
                suggestions=("Check database connectivity",),
            )

        issues: list[str] = []
        suggestions: list[str] = []
        if stats.total_entries and stats.expired_entries > stats.total_entries * CACHE_OLD_ENTRY_RATIO:
            issues.append("High number of expired entries")
            suggestions.append("Run cache cleanup more frequently")
        if metrics.total_entries and metrics.old_entries > metrics.total_entries * CACHE_OLD_ENTRY_RATIO:
            issues.append("Many old cache entries")
            suggestions.append("Consider running cache optimization")
        if stats.total_entries > CACHE_MAX_HEALTHY_ROWS:
            issues.append("Cache size is very large")
            suggestions.append("Consider implementing cache size limits")
        if stats.observed_lookups and stats.cache_hit_rate < CACHE_MIN_HIT_RATE:
            issues.append("Low cache hit rate")
            suggestions.append("Review cache key strategy or TTL settings")
        if metrics.average_age_hours > CACHE_MAX_AVERAGE_AGE_HOURS:
            issues.append("Average cache age is high")
            suggestions.append("Consider shorter TTL or more frequent cleanup")
        return CacheHealth(healthy=not issues, issues=tuple(issues), suggestions=tuple(suggestions))

    async def preload_frequent_lemmas(
        self, *, limit: int = CACHE_PRELOAD_LIMIT
    ) -> dict[tuple[str, str], str]:
        """Most recently cached unexpired lemmas, keyed by (word, target language)."""
        backend = self._manager.get_database()
        statements = self._manager.statements
        where = "expires_at IS NULL OR expires_at > ?" if statements.has_expires_at else "1 = 1"
        params: tuple[object, ...] = (self._manager.now(),) if statements.has_expires_at else ()
        try:
            rows = await backend.fetchall(
                f"""
                SELECT word, lemma, target_language FROM lemma_cache
                WHERE {where}
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (*params, max(1, limit)),
            )
        except Exception:
            logger.exception("Error preloading lemmas")
            return {}
        return {(row["word"], row["target_language"]): row["lemma"] for row in rows}
