"""Command line entry point: ``python -m launchpad_indexer <command>``."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from collections.abc import Sequence

from launchpad_indexer.app import IndexerApp
from launchpad_indexer.config import Settings, get_settings
from launchpad_indexer.storage.database import DatabaseManager

logger = logging.getLogger("launchpad_indexer")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="launchpad-indexer",
        description="Reorg-aware event indexer for launchpad contracts",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command")
    subparsers.add_parser("run", help="Run scan and repair loops until interrupted")
    subparsers.add_parser("scan-once", help="Run one scan cycle per chain and exit")
    subparsers.add_parser("repair-once", help="Run one repair pass per chain and exit")
    subparsers.add_parser("init-db", help="Create database tables (development only)")
    subparsers.add_parser("show-config", help="Print the effective configuration, redacted")
    return parser


async def _run(settings: Settings) -> int:
    app = IndexerApp(settings)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, app.request_stop)
        except NotImplementedError:
            # Windows event loops do not support signal handlers.
            pass
    await app.run()
    return 0


async def _run_once(settings: Settings, *, repair: bool) -> int:
    app = IndexerApp(settings)
    reports = await app.run_once(repair=repair)
    for report in reports:
        logger.info(
            "Chain %d %s: head=%s target=%s windows=%d campaigns=%d trades=%d votes=%d orphaned=%d",
            report.chain_id,
            "repair" if report.repair else "scan",
            report.head,
            report.target,
            report.windows,
            report.new_campaigns,
            report.trades,
            report.votes,
            report.orphaned,
        )
    return 0 if app.stats.errors == 0 else 1


async def _init_db(settings: Settings) -> int:
    db = DatabaseManager(settings.database.url, echo=settings.database.echo)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()
    logger.info("Database schema created")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "show-config":
        print(json.dumps(settings.redacted_summary(), indent=2, default=str))
        return 0
    if args.command == "init-db":
        return asyncio.run(_init_db(settings))

    try:
        settings.validate_requirements(command=args.command)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    if args.command == "run":
        return asyncio.run(_run(settings))
    return asyncio.run(_run_once(settings, repair=args.command == "repair-once"))


if __name__ == "__main__":
    sys.exit(main())
