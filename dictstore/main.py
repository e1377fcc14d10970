from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import asdict
from typing import Any

from dictstore.config import ConfigError, Settings, load_settings
from dictstore.db.errors import DatabaseConnectionError
from dictstore.logging_setup import configure_logging
from dictstore.services.dictionary_store import DictionaryStore
from dictstore.services.maintenance import run_periodic_maintenance

logger = logging.getLogger(__name__)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


async def _run_command(args: argparse.Namespace, settings: Settings) -> None:
    store = DictionaryStore.from_settings(settings)
    await store.open()
    try:
        if args.command == "init":
            report = store.manager.init_report
            if report is not None:
                _print_json(
                    {
                        **asdict(report.outcome),
                        "warnings": [str(warning) for warning in report.warnings],
                    }
                )
        elif args.command == "maintenance" and args.loop:
            # Runs until interrupted.
            await run_periodic_maintenance(
                store,
                interval_seconds=settings.maintenance_interval_seconds,
                stop_event=asyncio.Event(),
            )
        elif args.command == "maintenance":
            summary = await store.run_maintenance()
            _print_json(
                {
                    "expired_lemmas_removed": summary.expired_lemmas_removed,
                    "cache_health": asdict(summary.cache_health),
                    "warnings": [str(warning) for warning in summary.warnings],
                }
            )
        elif args.command == "stats":
            overview = await store.get_overview(
                source_language=args.source, target_language=args.target
            )
            payload = asdict(overview)
            payload["database"]["size_megabytes"] = overview.database.size_megabytes
            _print_json(payload)
        elif args.command == "cache-health":
            _print_json(
                {
                    "metrics": asdict(await store.lemmas.get_cache_metrics()),
                    "health": asdict(await store.lemmas.check_cache_health()),
                }
            )
    finally:
        await store.close()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Dictionary storage engine")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("init", help="Create tables, apply migrations and build indexes.")
    maintenance = subparsers.add_parser(
        "maintenance", help="Remove expired lemma cache rows and refresh statistics."
    )
    maintenance.add_argument(
        "--loop",
        action="store_true",
        help="Keep running every MAINTENANCE_INTERVAL_SECONDS until interrupted.",
    )
    stats = subparsers.add_parser("stats", help="Print database, search and cache statistics.")
    stats.add_argument("--source", help="Restrict search statistics to a source language.")
    stats.add_argument("--target", help="Restrict search statistics to a target language.")
    subparsers.add_parser("cache-health", help="Print lemma cache metrics and health report.")
    args = parser.parse_args(argv)

    try:
        settings = load_settings()
    except ConfigError as exc:
        raise SystemExit(str(exc)) from exc

    configure_logging(settings.log_level)
    logger.info("Loaded configuration: %s", settings.safe_log_values())
    try:
        asyncio.run(_run_command(args, settings))
    except DatabaseConnectionError as exc:
        raise SystemExit(f"Database unavailable: {exc}") from exc
    except KeyboardInterrupt:
        logger.info("Interrupted.")


if __name__ == "__main__":
    main()
