from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Literal, Optional

import structlog
from pydantic import ValidationError

from tradeledger.ledger.models import (
    CalculatedFields,
    CanonicalTrade,
    Checkpoint,
    DailySymbolSummaryRow,
    LedgerEntry,
)
from tradeledger.ledger.numeric import from_db, to_db

log = structlog.get_logger()

META_KEY = "state"

_ENTRY_COLUMNS = (
    "id",
    "timestamp",
    "symbol",
    "category",
    "transaction_type",
    "side",
    "size",
    "price",
    "fee",
    "currency",
    "change",
    "cash_flow",
    "order_id",
    "order_link_id",
    "trade_id",
    "raw_payload",
    "changed_at",
    "calc_size_after",
    "calc_avg_price_after",
    "calc_realized_pnl",
    "calc_cumulative_pnl",
)

_SELECT_ENTRIES = f"SELECT {', '.join(_ENTRY_COLUMNS)} FROM ledger_entries"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS ledger_entries (
    id TEXT PRIMARY KEY,
    timestamp INTEGER NOT NULL,
    symbol TEXT NOT NULL,
    category TEXT NOT NULL,
    transaction_type TEXT NOT NULL,
    side TEXT NOT NULL,
    size TEXT NOT NULL,
    price TEXT NOT NULL,
    fee TEXT NOT NULL,
    currency TEXT NOT NULL,
    change TEXT NOT NULL,
    cash_flow TEXT NOT NULL,
    order_id TEXT NOT NULL,
    order_link_id TEXT NOT NULL,
    trade_id TEXT NOT NULL,
    raw_payload TEXT NOT NULL,
    changed_at INTEGER NOT NULL,
    calc_size_after TEXT NOT NULL,
    calc_avg_price_after TEXT NOT NULL,
    calc_realized_pnl TEXT NOT NULL,
    calc_cumulative_pnl TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_ledger_entries_timestamp
    ON ledger_entries (timestamp);
CREATE INDEX IF NOT EXISTS idx_ledger_entries_symbol_timestamp
    ON ledger_entries (symbol, timestamp);
CREATE INDEX IF NOT EXISTS idx_ledger_entries_symbol_category_timestamp
    ON ledger_entries (symbol, category, timestamp);
CREATE TABLE IF NOT EXISTS ledger_meta (
    key TEXT PRIMARY KEY,
    payload TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS ledger_daily_summaries (
    key TEXT PRIMARY KEY,
    day TEXT NOT NULL,
    symbol_key TEXT NOT NULL,
    symbol TEXT NOT NULL,
    category TEXT NOT NULL,
    total_size TEXT NOT NULL,
    total_value TEXT NOT NULL,
    total_fee TEXT NOT NULL
);
"""

Direction = Literal["ASC", "DESC"]


class SqliteLedgerStore:
    """
    Persistence boundary for one ledger (one SQLite file).

    - connections are opened per operation and closed afterwards
    - every write goes through `transaction()`: BEGIN IMMEDIATE ... COMMIT,
      rolled back on any error, so rows and checkpoint land together or not
      at all
    - decimals are stored as fixed-point text
    Locking between operations is the caller's job (see ReadWriteGate).
    """

    def __init__(self, *, path: Path, journal_mode: str = "WAL") -> None:
        self._path = path
        self._journal_mode = journal_mode
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        # isolation_level=None: transactions are explicit
        conn = sqlite3.connect(self._path, isolation_level=None)
        try:
            conn.execute(f"PRAGMA journal_mode={self._journal_mode}")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.executescript(_SCHEMA)
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self, conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    # ---------------- Writes ----------------

    def upsert_entries(self, conn: sqlite3.Connection, entries: Iterable[LedgerEntry]) -> int:
        placeholders = ", ".join("?" for _ in _ENTRY_COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in _ENTRY_COLUMNS if c != "id")
        sql = (
            f"INSERT INTO ledger_entries ({', '.join(_ENTRY_COLUMNS)}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}"
        )
        rows = [_entry_to_row(e) for e in entries]
        conn.executemany(sql, rows)
        return len(rows)

    def update_calculated(self, conn: sqlite3.Connection, entries: Iterable[LedgerEntry]) -> int:
        sql = (
            "UPDATE ledger_entries SET "
            "calc_size_after = ?, calc_avg_price_after = ?, "
            "calc_realized_pnl = ?, calc_cumulative_pnl = ?, changed_at = ? "
            "WHERE id = ?"
        )
        rows = [
            (
                to_db(e.calculated.size_after),
                to_db(e.calculated.avg_price_after),
                to_db(e.calculated.realized_pnl),
                to_db(e.calculated.cumulative_pnl),
                e.changed_at,
                e.trade.id,
            )
            for e in entries
        ]
        conn.executemany(sql, rows)
        return len(rows)

    def save_checkpoint(self, conn: sqlite3.Connection, checkpoint: Checkpoint) -> None:
        conn.execute(
            "INSERT INTO ledger_meta (key, payload) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET payload = excluded.payload",
            (META_KEY, checkpoint.model_dump_json()),
        )

    def replace_daily_summaries(self, conn: sqlite3.Connection, rows: Iterable[DailySymbolSummaryRow]) -> int:
        """
        Swap the whole daily summary table for `rows`.
        """
        conn.execute("DELETE FROM ledger_daily_summaries")
        params = [
            (
                r.key,
                r.day,
                r.symbol_key,
                r.symbol,
                r.category,
                to_db(r.total_size),
                to_db(r.total_value),
                to_db(r.total_fee),
            )
            for r in rows
        ]
        conn.executemany(
            "INSERT INTO ledger_daily_summaries "
            "(key, day, symbol_key, symbol, category, total_size, total_value, total_fee) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET "
            "day = excluded.day, symbol_key = excluded.symbol_key, symbol = excluded.symbol, "
            "category = excluded.category, total_size = excluded.total_size, "
            "total_value = excluded.total_value, total_fee = excluded.total_fee",
            params,
        )
        return len(params)

    # ---------------- Reads ----------------

    def load_checkpoint(self, conn: sqlite3.Connection) -> Checkpoint:
        """
        Load the checkpoint blob.

        A missing blob yields a fresh checkpoint. A blob that fails to
        deserialize also yields a fresh one, flagged for recalculation.
        """
        row = conn.execute("SELECT payload FROM ledger_meta WHERE key = ?", (META_KEY,)).fetchone()
        if row is None or not str(row[0]).strip():
            return Checkpoint()
        try:
            return Checkpoint.model_validate_json(row[0])
        except (ValidationError, ValueError) as exc:
            log.warning(
                "ledger.checkpoint_corrupt",
                path=str(self._path),
                error_type=type(exc).__name__,
            )
            return Checkpoint(requires_recalculation=True)

    def load_all_asc(self, conn: sqlite3.Connection) -> list[LedgerEntry]:
        return self.load_range(conn, direction="ASC")

    def load_range(
        self,
        conn: sqlite3.Connection,
        *,
        symbol: Optional[str] = None,
        category: Optional[str] = None,
        since_timestamp: Optional[int] = None,
        symbol_prefix: Optional[str] = None,
        direction: Direction = "DESC",
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[LedgerEntry]:
        if direction not in ("ASC", "DESC"):
            raise ValueError(f"invalid direction: {direction!r}")

        where, params = _filters(
            symbol=symbol,
            category=category,
            since_timestamp=since_timestamp,
            symbol_prefix=symbol_prefix,
        )
        sql = f"{_SELECT_ENTRIES} {where} ORDER BY timestamp {direction}, id {direction}"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params += [limit, offset]
        return [_row_to_entry(r) for r in conn.execute(sql, params)]

    def count(self, conn: sqlite3.Connection, *, symbol_prefix: Optional[str] = None) -> int:
        where, params = _filters(symbol_prefix=symbol_prefix)
        row = conn.execute(f"SELECT COUNT(*) FROM ledger_entries {where}", params).fetchone()
        return int(row[0]) if row else 0

    def has_entries_after(self, conn: sqlite3.Connection, *, timestamp: int, trade_id: str) -> bool:
        """
        True when some stored entry sorts after (timestamp, trade_id) in fold order.
        """
        row = conn.execute(
            "SELECT 1 FROM ledger_entries WHERE timestamp > ? OR (timestamp = ? AND id > ?) LIMIT 1",
            (timestamp, timestamp, trade_id),
        ).fetchone()
        return row is not None

    def existing_ids(self, conn: sqlite3.Connection, ids: Iterable[str]) -> set[str]:
        wanted = list(dict.fromkeys(ids))
        found: set[str] = set()
        # stay under SQLite's host parameter limit
        for i in range(0, len(wanted), 500):
            chunk = wanted[i : i + 500]
            marks = ", ".join("?" for _ in chunk)
            found.update(r[0] for r in conn.execute(f"SELECT id FROM ledger_entries WHERE id IN ({marks})", chunk))
        return found

    def iter_aggregation_rows(self, conn: sqlite3.Connection) -> Iterator[tuple[str, str, str, str, str, str, str]]:
        yield from conn.execute(
            "SELECT category, symbol, currency, size, price, fee, calc_realized_pnl FROM ledger_entries"
        )

    def iter_realized_between(
        self, conn: sqlite3.Connection, *, from_timestamp: int, to_timestamp: int
    ) -> Iterator[tuple[int, str, str]]:
        yield from conn.execute(
            "SELECT timestamp, currency, calc_realized_pnl FROM ledger_entries "
            "WHERE timestamp >= ? AND timestamp <= ?",
            (from_timestamp, to_timestamp),
        )

    def load_daily_summaries(self, conn: sqlite3.Connection) -> list[DailySymbolSummaryRow]:
        return [
            DailySymbolSummaryRow(
                day=r[0],
                symbol_key=r[1],
                symbol=r[2],
                category=r[3],
                total_size=from_db(r[4]),
                total_value=from_db(r[5]),
                total_fee=from_db(r[6]),
            )
            for r in conn.execute(
                "SELECT day, symbol_key, symbol, category, total_size, total_value, total_fee "
                "FROM ledger_daily_summaries ORDER BY day, symbol_key"
            )
        ]

    def latest_for_symbol(
        self, conn: sqlite3.Connection, *, symbol: str, category: Optional[str] = None
    ) -> tuple[Optional[int], list[str]]:
        if not symbol.strip():
            return None, []
        where, params = _filters(symbol=symbol, category=category)
        row = conn.execute(f"SELECT MAX(timestamp) FROM ledger_entries {where}", params).fetchone()
        if row is None or row[0] is None:
            return None, []
        max_ts = int(row[0])
        ids = [
            r[0]
            for r in conn.execute(
                f"SELECT id FROM ledger_entries {where} AND timestamp = ? ORDER BY id",
                params + [max_ts],
            )
        ]
        return max_ts, ids


def _filters(
    *,
    symbol: Optional[str] = None,
    category: Optional[str] = None,
    since_timestamp: Optional[int] = None,
    symbol_prefix: Optional[str] = None,
) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if symbol and symbol.strip():
        clauses.append("symbol = ?")
        params.append(symbol)
    if category and category.strip():
        clauses.append("category = ?")
        params.append(category)
    if since_timestamp is not None:
        clauses.append("timestamp >= ?")
        params.append(since_timestamp)
    if symbol_prefix and symbol_prefix.strip():
        clauses.append("symbol LIKE ? ESCAPE '\\'")
        params.append(_escape_like(symbol_prefix.strip()) + "%")
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _entry_to_row(entry: LedgerEntry) -> tuple[Any, ...]:
    t = entry.trade
    c = entry.calculated
    return (
        t.id,
        t.timestamp,
        t.symbol,
        t.category,
        t.transaction_type,
        t.side,
        to_db(t.size),
        to_db(t.price),
        to_db(t.fee),
        t.currency,
        to_db(t.change),
        to_db(t.cash_flow),
        t.order_id,
        t.order_link_id,
        t.trade_id,
        t.raw_payload,
        entry.changed_at,
        to_db(c.size_after),
        to_db(c.avg_price_after),
        to_db(c.realized_pnl),
        to_db(c.cumulative_pnl),
    )


def _row_to_entry(row: tuple[Any, ...]) -> LedgerEntry:
    trade = CanonicalTrade(
        id=row[0],
        timestamp=int(row[1]),
        symbol=row[2],
        category=row[3],
        transaction_type=row[4],
        side=row[5],
        size=from_db(row[6]),
        price=from_db(row[7]),
        fee=from_db(row[8]),
        currency=row[9],
        change=from_db(row[10]),
        cash_flow=from_db(row[11]),
        order_id=row[12],
        order_link_id=row[13],
        trade_id=row[14],
        raw_payload=row[15],
    )
    calculated = CalculatedFields(
        size_after=from_db(row[17]),
        avg_price_after=from_db(row[18]),
        realized_pnl=from_db(row[19]),
        cumulative_pnl=from_db(row[20]),
    )
    return LedgerEntry(trade=trade, calculated=calculated, changed_at=int(row[16]))
