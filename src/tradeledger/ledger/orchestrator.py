from __future__ import annotations

import sqlite3
import time
import uuid
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Iterable, Iterator, Optional, Sequence

import structlog

from tradeledger.core.logging.setup import bind_context, unbind_context
from tradeledger.ledger.calculator import apply_all, order_trades
from tradeledger.ledger.errors import LedgerCommitError
from tradeledger.ledger.models import (
    CanonicalTrade,
    Checkpoint,
    DailyPnlRow,
    DailySymbolSummaryRow,
    EntryPage,
    LatestInfo,
    LedgerEntry,
    LedgerState,
    SettleCoinPnlRow,
    SymbolSummaryRow,
)
from tradeledger.ledger.summaries import (
    build_daily_summaries,
    summarize_by_settle_coin,
    summarize_by_symbol,
    summarize_daily,
)
from tradeledger.normalize.normalizer import normalize
from tradeledger.storage.gate import ReadWriteGate
from tradeledger.storage.sqlite import SqliteLedgerStore

log = structlog.get_logger()


def _now_ms() -> int:
    return int(time.time() * 1000)


def prepare_trade(trade: CanonicalTrade, *, now_ms: int) -> CanonicalTrade:
    """
    Give a trade the identity it needs to be persisted: a generated id when
    blank, "now" when the timestamp is missing or non-positive.
    """
    changes: dict[str, Any] = {}
    if not trade.id.strip():
        changes["id"] = uuid.uuid4().hex
    if trade.timestamp <= 0:
        changes["timestamp"] = now_ms
    return replace(trade, **changes) if changes else trade


class LedgerBook:
    """
    One user's ledger: the calculator driven over the persisted history.

    Write modes
    -----------
    - append (`save_trades`): fold the new batch on top of the checkpoint state
    - full replay (`recalculate()`): fold everything from empty state and
      overwrite every row's calculated fields
    - partial replay (`recalculate(T)`): fold everything from empty state but
      persist calculated fields only for trades with timestamp >= T

    Each write commits its rows and the checkpoint in one SQLite
    transaction. Reads may run concurrently; writes are exclusive.
    """

    def __init__(self, *, store: SqliteLedgerStore, gate: ReadWriteGate, user_id: str = "") -> None:
        self._store = store
        self._gate = gate
        self._user_id = user_id

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def store(self) -> SqliteLedgerStore:
        return self._store

    @contextmanager
    def _log_context(self) -> Iterator[None]:
        bind_context(user_id=self._user_id)
        try:
            yield
        finally:
            unbind_context("user_id")

    @contextmanager
    def _committing(self, conn: sqlite3.Connection, operation: str) -> Iterator[None]:
        try:
            with self._store.transaction(conn):
                yield
        except sqlite3.Error as exc:
            log.error("ledger.commit_failed", operation=operation, error=str(exc))
            raise LedgerCommitError(f"{operation} failed to commit: {exc}") from exc

    # ---------------- Writes ----------------

    def save_trades(self, trades: Iterable[CanonicalTrade]) -> int:
        """
        Append mode. Returns the number of rows written.

        Trades are re-sorted by (timestamp, id) regardless of input order.
        An id repeated within the batch is written and folded once, using its
        last occurrence.
        A batch reaching back before the checkpoint, or re-delivering an id
        already on disk, is still written but flags the checkpoint for
        recalculation.
        """
        now = _now_ms()
        prepared = [prepare_trade(t, now_ms=now) for t in trades]
        unique = {t.id: t for t in prepared}
        ordered = order_trades(unique.values())
        if not ordered:
            return 0

        with self._log_context(), self._gate.write(), self._store.connect() as conn:
            with self._committing(conn, "append"):
                checkpoint = self._store.load_checkpoint(conn)
                state = checkpoint.ledger_state()
                through = checkpoint.calculated_through_timestamp

                first = ordered[0]
                stale = through is not None and (
                    first.timestamp < through
                    or (
                        first.timestamp == through
                        and self._store.has_entries_after(conn, timestamp=first.timestamp, trade_id=first.id)
                    )
                )
                redelivered = self._store.existing_ids(conn, (t.id for t in ordered))
                if stale or redelivered:
                    log.warning(
                        "ledger.append_out_of_order",
                        calculated_through=through,
                        oldest=first.timestamp,
                        redelivered=len(redelivered),
                        batch_duplicates=len(prepared) - len(ordered),
                    )

                entries = [
                    LedgerEntry(trade=trade, calculated=fields, changed_at=now)
                    for trade, fields in apply_all(ordered, state)
                ]
                written = self._store.upsert_entries(conn, entries)

                newest = ordered[-1].timestamp
                updated = checkpoint.with_state(state)
                updated.calculated_through_timestamp = newest if through is None else max(through, newest)
                if stale or redelivered:
                    updated.requires_recalculation = True
                self._store.save_checkpoint(conn, updated)

        log.info(
            "ledger.appended",
            trades=written,
            calculated_through=updated.calculated_through_timestamp,
            requires_recalculation=updated.requires_recalculation,
        )
        return written

    def ingest_raw(self, records: Iterable[Any], category_fallback: str = "") -> int:
        """
        Normalize a raw exchange batch and append it.
        """
        return self.save_trades(normalize(records, category_fallback))

    def save_daily_summaries(self, rows: Optional[Iterable[DailySymbolSummaryRow]] = None) -> int:
        """
        Replace the stored per-day, per-symbol summaries.

        Without `rows` they are rebuilt from the full history. Returns the
        number of rows stored.
        """
        with self._log_context(), self._gate.write(), self._store.connect() as conn:
            with self._committing(conn, "save_daily_summaries"):
                if rows is None:
                    rows = build_daily_summaries(self._store.load_all_asc(conn))
                written = self._store.replace_daily_summaries(conn, rows)

        log.info("ledger.daily_summaries_saved", rows=written)
        return written

    def recalculate(self, from_timestamp: Optional[int] = None) -> int:
        """
        Replay the whole history from empty state.

        With `from_timestamp` only trades at or after it get their
        calculated fields rewritten; earlier rows stay untouched on disk.
        Returns the number of rows rewritten.
        """
        mode = "full" if from_timestamp is None else "partial"
        now = _now_ms()

        with self._log_context(), self._gate.write(), self._store.connect() as conn:
            with self._committing(conn, f"recalculate:{mode}"):
                checkpoint = self._store.load_checkpoint(conn)
                history = order_trades(e.trade for e in self._store.load_all_asc(conn))

                state = LedgerState()
                rewritten = [
                    LedgerEntry(trade=trade, calculated=fields, changed_at=now)
                    for trade, fields in apply_all(history, state)
                    if from_timestamp is None or trade.timestamp >= from_timestamp
                ]
                written = self._store.update_calculated(conn, rewritten)

                updated = checkpoint.with_state(state)
                updated.calculated_through_timestamp = history[-1].timestamp if history else None
                updated.requires_recalculation = False
                self._store.save_checkpoint(conn, updated)

        log.info(
            "ledger.recalculated",
            mode=mode,
            from_timestamp=from_timestamp,
            history=len(history),
            rewritten=written,
        )
        return written

    def save_meta(self, checkpoint: Checkpoint) -> None:
        with self._log_context(), self._gate.write(), self._store.connect() as conn:
            with self._committing(conn, "save_meta"):
                self._store.save_checkpoint(conn, checkpoint)

    # ---------------- Reads ----------------

    def load_meta(self) -> Checkpoint:
        with self._gate.read(), self._store.connect() as conn:
            return self._store.load_checkpoint(conn)

    def load_entries(self, start_index: int, limit: int, base_asset: Optional[str] = None) -> EntryPage:
        """
        One page of entries, newest first, optionally restricted to symbols
        starting with `base_asset`. Invalid paging yields an empty page.
        """
        if start_index < 0 or limit <= 0:
            return EntryPage(entries=(), total=0)

        with self._gate.read(), self._store.connect() as conn:
            total = self._store.count(conn, symbol_prefix=base_asset)
            entries = self._store.load_range(
                conn,
                symbol_prefix=base_asset,
                direction="DESC",
                limit=limit,
                offset=start_index,
            )
        return EntryPage(entries=tuple(entries), total=total)

    def load_by_symbol(
        self,
        symbol: str,
        category: Optional[str] = None,
        since: Optional[int] = None,
    ) -> list[LedgerEntry]:
        if not symbol.strip():
            return []
        with self._gate.read(), self._store.connect() as conn:
            return self._store.load_range(
                conn,
                symbol=symbol,
                category=category,
                since_timestamp=since,
                direction="DESC",
            )

    def load_all(self) -> list[LedgerEntry]:
        with self._gate.read(), self._store.connect() as conn:
            return self._store.load_all_asc(conn)

    def load_latest_by_symbol(self, symbol: str, category: Optional[str] = None) -> LatestInfo:
        with self._gate.read(), self._store.connect() as conn:
            timestamp, ids = self._store.latest_for_symbol(conn, symbol=symbol, category=category)
        return LatestInfo(timestamp=timestamp, ids=tuple(ids))

    def load_daily_summaries(self) -> list[DailySymbolSummaryRow]:
        with self._gate.read(), self._store.connect() as conn:
            return self._store.load_daily_summaries(conn)

    def load_summary_by_symbol(self) -> list[SymbolSummaryRow]:
        with self._gate.read(), self._store.connect() as conn:
            return summarize_by_symbol(self._store.iter_aggregation_rows(conn))

    def load_pnl_by_settle_coin(self) -> list[SettleCoinPnlRow]:
        with self._gate.read(), self._store.connect() as conn:
            return summarize_by_settle_coin(self._store.iter_aggregation_rows(conn))

    def load_daily_pnl(self, from_timestamp: int, to_timestamp: int) -> list[DailyPnlRow]:
        if to_timestamp < from_timestamp:
            return []
        with self._gate.read(), self._store.connect() as conn:
            return summarize_daily(
                self._store.iter_realized_between(
                    conn,
                    from_timestamp=from_timestamp,
                    to_timestamp=to_timestamp,
                )
            )


def replay(trades: Sequence[CanonicalTrade]) -> tuple[list[LedgerEntry], LedgerState]:
    """
    In-memory full replay, without persistence.
    """
    state = LedgerState()
    entries = [LedgerEntry(trade=t, calculated=f) for t, f in apply_all(order_trades(trades), state)]
    return entries, state
