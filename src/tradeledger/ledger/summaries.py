from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from tradeledger.ledger.models import (
    UNKNOWN_SETTLE_COIN,
    DailyPnlRow,
    DailySymbolSummaryRow,
    LedgerEntry,
    SettleCoinPnlRow,
    SymbolSummaryRow,
)
from tradeledger.ledger.numeric import ZERO, from_db, ledger_context

# (category, symbol, currency, size, price, fee, realized) as stored
AggregationRow = tuple[str, str, str, str, str, str, str]


@dataclass(slots=True)
class _SymbolAccumulator:
    category: str
    symbol: str
    settle_coin: str
    trades: int = 0
    total_qty: Decimal = ZERO
    total_value: Decimal = ZERO
    total_fees: Decimal = ZERO
    realized_pnl: Decimal = ZERO

    def to_row(self) -> SymbolSummaryRow:
        return SymbolSummaryRow(
            category=self.category,
            symbol=self.symbol,
            settle_coin=self.settle_coin,
            trades=self.trades,
            total_qty=self.total_qty,
            total_value=self.total_value,
            total_fees=self.total_fees,
            realized_pnl=self.realized_pnl,
        )


@dataclass(slots=True)
class _DailySymbolAccumulator:
    day: str
    symbol_key: str
    symbol: str
    category: str
    total_size: Decimal = ZERO
    total_value: Decimal = ZERO
    total_fee: Decimal = ZERO

    def to_row(self) -> DailySymbolSummaryRow:
        return DailySymbolSummaryRow(
            day=self.day,
            symbol_key=self.symbol_key,
            symbol=self.symbol,
            category=self.category,
            total_size=self.total_size,
            total_value=self.total_value,
            total_fee=self.total_fee,
        )


def _coin(currency: str) -> str:
    return currency if currency.strip() else UNKNOWN_SETTLE_COIN


def symbol_key(symbol: str) -> str:
    return symbol.strip().upper()


def summarize_by_symbol(rows: Iterable[AggregationRow]) -> list[SymbolSummaryRow]:
    """
    One row per (category, symbol, settle coin), matched case-insensitively.

    Sorted by trade count (desc), then category and symbol.
    """
    acc: dict[tuple[str, str, str], _SymbolAccumulator] = {}
    with ledger_context():
        for category, symbol, currency, size, price, fee, realized in rows:
            coin = _coin(currency)
            key = (category.casefold(), symbol.casefold(), coin.casefold())
            a = acc.get(key)
            if a is None:
                a = acc[key] = _SymbolAccumulator(category=category, symbol=symbol, settle_coin=coin)

            qty = from_db(size)
            a.trades += 1
            a.total_qty += qty
            a.total_value += qty * from_db(price)
            a.total_fees += from_db(fee)
            a.realized_pnl += from_db(realized)

    out = [a.to_row() for a in acc.values()]
    out.sort(key=lambda r: (-r.trades, r.category.casefold(), r.symbol.casefold()))
    return out


def summarize_by_settle_coin(rows: Iterable[AggregationRow]) -> list[SettleCoinPnlRow]:
    realized_by: dict[str, Decimal] = {}
    fees_by: dict[str, Decimal] = {}
    display: dict[str, str] = {}
    with ledger_context():
        for _category, _symbol, currency, _size, _price, fee, realized in rows:
            coin = _coin(currency)
            key = coin.casefold()
            display.setdefault(key, coin)
            realized_by[key] = realized_by.get(key, ZERO) + from_db(realized)
            fees_by[key] = fees_by.get(key, ZERO) + from_db(fee)

        out = [
            SettleCoinPnlRow(
                settle_coin=display[key],
                realized_pnl=realized_by[key],
                fees=fees_by[key],
                net_pnl=realized_by[key] - fees_by[key],
            )
            for key in display
        ]
    out.sort(key=lambda r: r.settle_coin.casefold())
    return out


def day_key(timestamp_ms: int) -> str:
    """
    UTC calendar day ("YYYY-MM-DD"); "" for non-positive or out-of-range values.
    """
    if timestamp_ms <= 0:
        return ""
    try:
        return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
    except (OverflowError, OSError, ValueError):
        return ""


def summarize_daily(rows: Iterable[tuple[int, str, str]]) -> list[DailyPnlRow]:
    totals: dict[tuple[str, str], Decimal] = {}
    display: dict[tuple[str, str], str] = {}
    with ledger_context():
        for timestamp, currency, realized in rows:
            day = day_key(int(timestamp))
            if not day:
                continue
            coin = _coin(currency)
            key = (day, coin.casefold())
            display.setdefault(key, coin)
            totals[key] = totals.get(key, ZERO) + from_db(realized)

    out = [DailyPnlRow(day=k[0], settle_coin=display[k], realized_pnl=v) for k, v in totals.items()]
    out.sort(key=lambda r: (r.day, r.settle_coin.casefold()))
    return out


def build_daily_summaries(entries: Iterable[LedgerEntry]) -> list[DailySymbolSummaryRow]:
    """
    Traded size, notional (size * price) and fees per (symbol, UTC day).

    Symbols group on their trimmed upper-case form; the first entry seen
    gives the displayed symbol and category. Entries without a usable
    timestamp are skipped. Sorted by day, then symbol key.
    """
    acc: dict[tuple[str, str], _DailySymbolAccumulator] = {}
    with ledger_context():
        for entry in entries:
            t = entry.trade
            day = day_key(t.timestamp)
            if not day:
                continue
            skey = symbol_key(t.symbol)
            a = acc.get((skey, day))
            if a is None:
                a = acc[(skey, day)] = _DailySymbolAccumulator(
                    day=day,
                    symbol_key=skey,
                    symbol=t.symbol,
                    category=t.category,
                )
            a.total_size += t.size
            a.total_value += t.size * t.price
            a.total_fee += t.fee

    out = [a.to_row() for a in acc.values()]
    out.sort(key=lambda r: (r.day, r.symbol_key))
    return out
