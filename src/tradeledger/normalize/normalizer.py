from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Iterable

import structlog

from tradeledger.ledger.models import CanonicalTrade
from tradeledger.ledger.numeric import ZERO
from tradeledger.normalize.classify import (
    Classified,
    DeliveryTransaction,
    SettlementTransaction,
    TradeTransaction,
    classify,
)
from tradeledger.normalize.delivery import delivery_terms
from tradeledger.normalize.spot import collapse_spot_group, group_transactions, raw_payload, unique_key

log = structlog.get_logger()


def normalize(raw_records: Iterable[Any], category_fallback: str = "") -> list[CanonicalTrade]:
    """
    Map one batch of raw exchange records into canonical trades.

    - records are classified (trade / settlement / delivery / other)
    - spot trade legs of the same fill collapse into one trade
    - duplicates of the same record (same unique key) keep the first copy
    Output order follows the first appearance of each group in the batch.
    Malformed fields default to zero/empty; the batch never aborts.
    """
    classified: list[Classified] = []
    for index, record in enumerate(raw_records):
        if not isinstance(record, Mapping):
            log.warning("normalize.record_skipped", index=index, reason="not_a_mapping")
            continue
        classified.append(classify(record, category_fallback))

    trades: list[CanonicalTrade] = []
    for legs in group_transactions(classified):
        primary = legs[0]
        if isinstance(primary, TradeTransaction) and primary.is_spot_trade:
            trades.append(collapse_spot_group(legs))
        else:
            trades.append(to_canonical(primary))

    log.debug(
        "normalize.batch",
        category_fallback=category_fallback,
        records=len(classified),
        trades=len(trades),
    )
    return trades


def to_canonical(tx: Classified) -> CanonicalTrade:
    size = tx.qty if tx.qty is not None else ZERO
    price = tx.trade_price if tx.trade_price is not None else ZERO

    if isinstance(tx, SettlementTransaction):
        # Settlement rows carry fees/funding only
        size, price = ZERO, ZERO
    elif isinstance(tx, DeliveryTransaction):
        terms = delivery_terms(tx, raw_size=size, raw_price=price)
        if not terms.resolved:
            log.debug("normalize.delivery_unresolved", symbol=tx.symbol, reason=terms.reason)
        size, price = terms.size, terms.price

    return CanonicalTrade(
        id=unique_key(tx),
        timestamp=tx.timestamp or 0,
        symbol=tx.symbol,
        category=tx.category,
        side=tx.side,
        transaction_type=tx.type_tag,
        size=size,
        price=price,
        fee=tx.fee if tx.fee is not None else ZERO,
        currency=tx.currency,
        order_id=tx.order_id,
        trade_id=tx.trade_id,
        order_link_id=tx.order_link_id,
        change=tx.change if tx.change is not None else ZERO,
        cash_flow=tx.cash_flow if tx.cash_flow is not None else ZERO,
        raw_payload=raw_payload(dict(tx.record)),
    )
