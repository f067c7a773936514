from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar, Optional, Union

from tradeledger.ledger.numeric import ZERO
from tradeledger.normalize.fields import RawRecord, read_decimal, read_str, read_timestamp

SPOT = "spot"


@dataclass(frozen=True, slots=True)
class RawTransaction:
    """
    Typed view of one raw exchange record.

    Every optional field carries a typed default, so nothing downstream
    reads the raw mapping by string key. `qty`/`trade_price`/`fee` keep
    None when the field was absent so grouping can tell "missing" from "0".
    """

    kind: ClassVar[str] = "OTHER"

    record: RawRecord
    timestamp: int | None
    raw_id: str
    symbol: str
    category: str
    type_tag: str
    side: str
    qty: Decimal | None
    trade_price: Decimal | None
    fee: Decimal | None
    currency: str
    order_id: str
    order_link_id: str
    trade_id: str
    change: Decimal | None
    cash_flow: Decimal | None

    @property
    def is_spot_trade(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class TradeTransaction(RawTransaction):
    kind: ClassVar[str] = "TRADE"

    @property
    def is_spot_trade(self) -> bool:
        return self.category.strip().lower() == SPOT


@dataclass(frozen=True, slots=True)
class SettlementTransaction(RawTransaction):
    kind: ClassVar[str] = "SETTLEMENT"


@dataclass(frozen=True, slots=True)
class DeliveryTransaction(RawTransaction):
    kind: ClassVar[str] = "DELIVERY"

    position: Decimal = ZERO
    delivery_price: Optional[Decimal] = None
    strike: Optional[Decimal] = None
    option_type: str = ""


@dataclass(frozen=True, slots=True)
class OtherTransaction(RawTransaction):
    kind: ClassVar[str] = "OTHER"


Classified = Union[TradeTransaction, SettlementTransaction, DeliveryTransaction, OtherTransaction]


def classify(record: RawRecord, category_fallback: str) -> Classified:
    """
    Turn one raw record into exactly one of the known transaction shapes.

    Never raises for malformed values: unreadable fields fall back to
    their typed defaults.
    """
    category = read_str(record, "category").strip() or category_fallback
    type_tag = read_str(record, "type").strip()

    common = dict(
        record=record,
        timestamp=read_timestamp(record, "transactionTime"),
        raw_id=read_str(record, "id"),
        symbol=read_str(record, "symbol"),
        category=category,
        type_tag=type_tag,
        side=read_str(record, "side"),
        qty=read_decimal(record, "qty", "size"),
        trade_price=read_decimal(record, "tradePrice"),
        fee=read_decimal(record, "fee"),
        currency=read_str(record, "currency"),
        order_id=read_str(record, "orderId"),
        order_link_id=read_str(record, "orderLinkId"),
        trade_id=read_str(record, "tradeId"),
        change=read_decimal(record, "change"),
        cash_flow=read_decimal(record, "cashFlow"),
    )

    kind = type_tag.upper()
    if kind == TradeTransaction.kind:
        return TradeTransaction(**common)
    if kind == SettlementTransaction.kind:
        return SettlementTransaction(**common)
    if kind == DeliveryTransaction.kind:
        return DeliveryTransaction(
            **common,
            position=read_decimal(record, "position") or ZERO,
            delivery_price=read_decimal(record, "deliveryPrice", "tradePrice", "price", "execPrice"),
            strike=read_decimal(record, "strike"),
            option_type=read_str(record, "optionType").strip(),
        )
    return OtherTransaction(**common)
