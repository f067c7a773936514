from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional, Sequence

import structlog

from tradeledger.core.config.settings import settings
from tradeledger.core.logging.setup import configure_logging
from tradeledger.ingest.jsonl_source import JsonlBatchSource
from tradeledger.ingest.runner import ingest
from tradeledger.ledger.errors import LedgerError
from tradeledger.ledger.registry import LedgerRegistry

log = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tradeledger-ingest",
        description="Append a JSONL transaction-log dump to a user's ledger.",
    )
    parser.add_argument("user_id", help="Ledger owner")
    parser.add_argument("path", type=Path, help="JSONL dump, one exchange page or record per line")
    parser.add_argument("--category", default="", help="Category for pages that carry none")
    parser.add_argument("--data-dir", type=Path, default=None, help="Overrides TRADELEDGER_DATA_DIR")
    parser.add_argument("--recalculate", action="store_true", help="Full replay after ingesting")
    parser.add_argument("--daily-summaries", action="store_true", help="Rebuild daily symbol summaries")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(level=settings.log_level)

    registry = LedgerRegistry(
        data_dir=args.data_dir or settings.data_dir,
        lock_timeout_s=settings.lock_timeout_s,
        journal_mode=settings.sqlite_journal_mode,
    )

    try:
        book = registry.get(args.user_id)
        trades = ingest(book, JsonlBatchSource(path=args.path, default_category=args.category))
        if args.recalculate:
            book.recalculate()
        if args.daily_summaries:
            book.save_daily_summaries()
    except (OSError, ValueError, LedgerError) as exc:
        log.error("cli.ingest_failed", path=str(args.path), error_type=type(exc).__name__, error=str(exc))
        return 1

    log.info("cli.ingest_done", user_id=args.user_id, trades=trades)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
