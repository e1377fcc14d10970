from __future__ import annotations

import asyncio
import logging

from dictstore.services.dictionary_store import DictionaryStore

logger = logging.getLogger(__name__)


async def run_periodic_maintenance(
    store: DictionaryStore,
    *,
    interval_seconds: float,
    stop_event: asyncio.Event,
) -> int:
    """Run maintenance now and every ``interval_seconds`` until ``stop_event`` is set."""
    runs = 0
    while not stop_event.is_set():
        summary = await store.run_maintenance()
        runs += 1
        logger.info(
            "Maintenance run %s: removed %s expired lemmas, %s warnings",
            runs,
            summary.expired_lemmas_removed,
            len(summary.warnings),
        )
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except TimeoutError:
            continue
    return runs
