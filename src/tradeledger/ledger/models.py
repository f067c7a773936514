from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from tradeledger.ledger.numeric import ZERO

UNKNOWN_SETTLE_COIN = "_unknown"


@dataclass(frozen=True, slots=True)
class CanonicalTrade:
    """
    The engine's unit of work: one economic transaction, normalized.

    Immutable once normalized. `timestamp` is epoch milliseconds (UTC).
    `raw_payload` is the JSON text of the source record(s).
    """

    id: str
    timestamp: int
    symbol: str
    category: str
    side: str
    transaction_type: str
    size: Decimal = ZERO
    price: Decimal = ZERO
    fee: Decimal = ZERO
    currency: str = ""
    order_id: str = ""
    trade_id: str = ""
    order_link_id: str = ""
    change: Decimal = ZERO
    cash_flow: Decimal = ZERO
    raw_payload: str = ""

    @property
    def settle_coin(self) -> str:
        coin = self.currency.strip()
        return coin if coin else UNKNOWN_SETTLE_COIN

    def sort_key(self) -> tuple[int, str]:
        return (self.timestamp, self.id)


@dataclass(frozen=True, slots=True)
class CalculatedFields:
    size_after: Decimal = ZERO
    avg_price_after: Decimal = ZERO
    realized_pnl: Decimal = ZERO
    cumulative_pnl: Decimal = ZERO


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """
    A persisted ledger row: the trade, its calculated fields, and when
    the row was last written (epoch ms).
    """

    trade: CanonicalTrade
    calculated: CalculatedFields = field(default_factory=CalculatedFields)
    changed_at: int = 0


def _key(name: str) -> str:
    return name.strip().upper()


@dataclass(slots=True)
class LedgerState:
    """
    Running memory of the calculator.

    Owned by the caller and passed into every fold; never shared between
    ledgers. Keys are case-insensitive (stored upper-cased).
    """

    size_by_symbol: dict[str, Decimal] = field(default_factory=dict)
    avg_price_by_symbol: dict[str, Decimal] = field(default_factory=dict)
    cumulative_by_settle_coin: dict[str, Decimal] = field(default_factory=dict)

    def position(self, symbol: str) -> tuple[Decimal, Decimal]:
        k = _key(symbol)
        return self.size_by_symbol.get(k, ZERO), self.avg_price_by_symbol.get(k, ZERO)

    def set_position(self, symbol: str, *, size: Decimal, avg_price: Decimal) -> None:
        k = _key(symbol)
        self.size_by_symbol[k] = size
        self.avg_price_by_symbol[k] = avg_price

    def cumulative(self, settle_coin: str) -> Decimal:
        return self.cumulative_by_settle_coin.get(_key(settle_coin), ZERO)

    def set_cumulative(self, settle_coin: str, value: Decimal) -> None:
        self.cumulative_by_settle_coin[_key(settle_coin)] = value


class LedgerSnapshot(BaseModel):
    """
    Serializable form of LedgerState (decimals travel as strings).
    """

    size_by_symbol: dict[str, Decimal] = Field(default_factory=dict)
    avg_price_by_symbol: dict[str, Decimal] = Field(default_factory=dict)
    cumulative_by_settle_coin: dict[str, Decimal] = Field(default_factory=dict)

    @classmethod
    def from_state(cls, state: LedgerState) -> "LedgerSnapshot":
        return cls(
            size_by_symbol=dict(sorted(state.size_by_symbol.items())),
            avg_price_by_symbol=dict(sorted(state.avg_price_by_symbol.items())),
            cumulative_by_settle_coin=dict(sorted(state.cumulative_by_settle_coin.items())),
        )

    def to_state(self) -> LedgerState:
        state = LedgerState()
        for symbol, size in self.size_by_symbol.items():
            avg = self.avg_price_by_symbol.get(symbol, ZERO)
            state.set_position(symbol, size=size, avg_price=avg)
        for coin, value in self.cumulative_by_settle_coin.items():
            state.set_cumulative(coin, value)
        return state


class Checkpoint(BaseModel):
    """
    Persisted singleton per ledger.

    `ledger` must always equal the fold of every persisted trade up to
    `calculated_through_timestamp` in (timestamp, id) order.
    """

    schema_version: int = Field(default=1, description="Checkpoint schema version")

    calculated_through_timestamp: Optional[int] = None
    ledger: LedgerSnapshot = Field(default_factory=LedgerSnapshot)
    requires_recalculation: bool = False

    # Sync bookkeeping owned by the exchange collaborator
    registration_time_ms: Optional[int] = None
    latest_synced_time_ms_by_category: dict[str, int] = Field(default_factory=dict)

    def ledger_state(self) -> LedgerState:
        return self.ledger.to_state()

    def with_state(self, state: LedgerState) -> "Checkpoint":
        return self.model_copy(update={"ledger": LedgerSnapshot.from_state(state)}, deep=True)


@dataclass(frozen=True, slots=True)
class EntryPage:
    entries: tuple[LedgerEntry, ...]
    total: int


@dataclass(frozen=True, slots=True)
class SymbolSummaryRow:
    category: str
    symbol: str
    settle_coin: str
    trades: int
    total_qty: Decimal
    total_value: Decimal
    total_fees: Decimal
    realized_pnl: Decimal


@dataclass(frozen=True, slots=True)
class SettleCoinPnlRow:
    settle_coin: str
    realized_pnl: Decimal
    fees: Decimal
    net_pnl: Decimal


@dataclass(frozen=True, slots=True)
class DailyPnlRow:
    day: str
    settle_coin: str
    realized_pnl: Decimal


@dataclass(frozen=True, slots=True)
class DailySymbolSummaryRow:
    """
    Traded size, notional and fees for one symbol on one UTC day.
    """

    day: str
    symbol_key: str
    symbol: str
    category: str
    total_size: Decimal
    total_value: Decimal
    total_fee: Decimal

    @property
    def key(self) -> str:
        return f"{self.symbol_key}|{self.day}"


@dataclass(frozen=True, slots=True)
class LatestInfo:
    timestamp: Optional[int] = None
    ids: tuple[str, ...] = ()
