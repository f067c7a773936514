from __future__ import annotations

import structlog

from tradeledger.ingest.datasource import RawBatchSource
from tradeledger.ledger.orchestrator import LedgerBook

log = structlog.get_logger()


def ingest(book: LedgerBook, source: RawBatchSource) -> int:
    """
    Feed every batch of `source` into `book` in append mode.

    Each batch commits on its own; a failure stops the run and propagates,
    leaving earlier batches committed.
    """
    total = 0
    batches = 0
    for batch in source:
        total += book.ingest_raw(batch.records, batch.category)
        batches += 1

    log.info("ingest.completed", user_id=book.user_id, batches=batches, trades=total)
    return total
