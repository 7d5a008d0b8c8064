"""Maintenance entrypoint.

Usage:
    freightguard archive --older-than-days 90
    freightguard archive --older-than-days 30 --kind message --kind audit

Archiving only flags rows; nothing is ever deleted, so the command is safe to
run on a schedule and re-run.
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from freightguard.audit.archival import archive_older_than
from freightguard.core.config import settings
from freightguard.db.database import async_session
from freightguard.db.enums import HistoryKind

logger = logging.getLogger("freightguard.cli")


async def run_archive(days: int, kinds: Optional[List[HistoryKind]] = None, session_factory=None) -> int:
    async with (session_factory or async_session)() as db:
        return await archive_older_than(db, days, kinds=kinds)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="freightguard")
    sub = parser.add_subparsers(dest="cmd")

    p_archive = sub.add_parser("archive", help="Archive history records older than N days")
    p_archive.add_argument(
        "--older-than-days",
        type=int,
        default=settings.ARCHIVE_RETENTION_DAYS,
        help=f"Age threshold in days (default {settings.ARCHIVE_RETENTION_DAYS})",
    )
    p_archive.add_argument(
        "--kind",
        action="append",
        choices=[k.value for k in HistoryKind],
        help="History table to archive; repeat for several (default: all)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "archive":
        if args.older_than_days < 0:
            parser.error("--older-than-days must be zero or positive")
        kinds = [HistoryKind(k) for k in args.kind] if args.kind else None
        archived = asyncio.run(run_archive(args.older_than_days, kinds))
        logger.info("archive finished: %s records", archived)
        print(archived)
        return 0

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
