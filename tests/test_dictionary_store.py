from __future__ import annotations

import asyncio

from dictstore.main import main
from dictstore.services.maintenance import run_periodic_maintenance


def test_overview_combines_all_statistics(make_store, make_entry) -> None:
    async def run_case():
        store = make_store()
        await store.open()
        try:
            await store.entries.add_entry(make_entry("Hund", source_language="de", target_language="en"))
            await store.lemmas.cache_lemma("Hunde", "Hund", "en")
            return await store.get_overview()
        finally:
            await store.close()

    overview = asyncio.run(run_case())
    assert overview.database.entry_count == 1
    assert overview.database.cache_size == 1
    assert overview.search.total_entries == 1
    assert overview.cache.total_entries == 1
    assert overview.languages.source_languages == ("de",)


def test_store_maintenance_reports_removed_lemmas_and_health(make_store, clock) -> None:
    async def run_case():
        store = make_store()
        await store.open()
        try:
            await store.lemmas.cache_lemma("ran", "run", "en")
            clock.advance(days=2)
            return await store.run_maintenance()
        finally:
            await store.close()

    summary = asyncio.run(run_case())
    assert summary.expired_lemmas_removed == 1
    assert summary.warnings == ()
    assert summary.cache_health.healthy is True


def test_periodic_maintenance_stops_when_signalled(make_store) -> None:
    async def run_case():
        store = make_store()
        await store.open()
        stop_event = asyncio.Event()
        try:
            task = asyncio.create_task(
                run_periodic_maintenance(store, interval_seconds=60, stop_event=stop_event)
            )
            await asyncio.sleep(0.1)
            stop_event.set()
            return await asyncio.wait_for(task, timeout=5)
        finally:
            await store.close()

    assert asyncio.run(run_case()) == 1


def test_cli_init_prints_report(monkeypatch, tmp_path, capsys) -> None:
    monkeypatch.setattr("dictstore.config.load_dotenv", lambda **kwargs: False)
    monkeypatch.setattr("dictstore.main.configure_logging", lambda log_level: None)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("APP_ENV", raising=False)
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "cli.db"))

    main(["init"])

    output = capsys.readouterr().out
    assert '"backend": "sqlite"' in output
    assert (tmp_path / "cli.db").exists()
