from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Sequence

import orjson

from tradeledger.ledger.models import CanonicalTrade
from tradeledger.ledger.numeric import ZERO, format_decimal
from tradeledger.normalize.classify import SPOT, RawTransaction
from tradeledger.normalize.fields import read_str


def _ts_text(tx: RawTransaction) -> str:
    return "" if tx.timestamp is None else str(tx.timestamp)


def _same(a: str, b: str) -> bool:
    return a.casefold() == b.casefold()


def unique_key(tx: RawTransaction) -> str:
    """
    Stable id of a single record: the exchange id when present, otherwise
    a composite of the fields that identify the movement.
    """
    if tx.raw_id.strip():
        return tx.raw_id

    ts = _ts_text(tx)
    qty = read_str(tx.record, "qty")
    fee = read_str(tx.record, "fee")
    if tx.order_id.strip():
        return f"{tx.order_id}|{ts}|{qty}|{fee}|{tx.currency}|{tx.side}"

    price = read_str(tx.record, "tradePrice")
    return f"{tx.type_tag}|{tx.symbol}|{ts}|{qty}|{price}|{fee}|{tx.currency}|{tx.category}|{tx.side}"


def grouping_key(tx: RawTransaction) -> str:
    """
    Legs of one spot fill share order (or trade) id, timestamp, symbol and
    side. Everything else groups by its own unique key.
    """
    if not tx.is_spot_trade:
        return unique_key(tx)

    ts = _ts_text(tx)
    if tx.order_id.strip():
        return f"spot|{tx.order_id}|{ts}|{tx.symbol}|{tx.side}"
    if tx.trade_id.strip():
        return f"spot|{tx.trade_id}|{ts}|{tx.symbol}|{tx.side}"
    return f"spot|{tx.symbol}|{ts}|{tx.side}"


def group_transactions(txs: Iterable[RawTransaction]) -> list[list[RawTransaction]]:
    """
    Bucket by grouping key (case-insensitive), keeping first-seen order of
    both the buckets and the legs inside them.
    """
    buckets: dict[str, list[RawTransaction]] = {}
    for tx in txs:
        buckets.setdefault(grouping_key(tx).casefold(), []).append(tx)
    return list(buckets.values())


def raw_payload(obj: object) -> str:
    """
    Deterministic JSON text of a raw record (or list of legs).
    """
    return orjson.dumps(obj, option=orjson.OPT_SORT_KEYS, default=str).decode("utf-8")


def _distinct_currencies(legs: Sequence[RawTransaction]) -> list[str]:
    out: list[str] = []
    for leg in legs:
        cur = leg.currency.strip()
        if cur and not any(_same(cur, seen) for seen in out):
            out.append(cur)
    return out


def infer_quote_currency(symbol: str, currencies: Sequence[str]) -> str:
    """
    The quote is the leg currency the symbol ends with ("BTCUSDT" -> "USDT");
    with a single currency it is that currency; otherwise unknown ("").
    """
    sym = symbol.strip().upper()
    if sym:
        for cur in currencies:
            if sym.endswith(cur.upper()):
                return cur
    if len(currencies) == 1:
        return currencies[0]
    return ""


def collapse_spot_group(legs: Sequence[RawTransaction]) -> CanonicalTrade:
    """
    Collapse the currency legs of one spot fill into a single trade.

    - size comes from the base-asset leg (|qty|)
    - fees are summed in quote terms; base-denominated fees are converted
      at the trade price
    - the trade settles in the quote currency
    """
    primary = legs[0]
    price = primary.trade_price if primary.trade_price is not None else ZERO

    currencies = _distinct_currencies(legs)
    quote = infer_quote_currency(primary.symbol, currencies)
    base = next((c for c in currencies if not _same(c, quote)), currencies[0] if currencies else "")

    base_leg = next((leg for leg in legs if _same(leg.currency.strip(), base)), None)
    base_qty = abs(base_leg.qty) if base_leg is not None and base_leg.qty is not None else ZERO

    fee_total = ZERO
    for leg in legs:
        if leg.fee is None or leg.fee == 0:
            continue
        fee_total += fee_in_quote(leg.fee, fee_currency=leg.currency.strip(), quote=quote, base=base, price=price)

    ts = _ts_text(primary)
    if primary.order_id.strip():
        trade_id = f"{primary.order_id}|{ts}|{primary.symbol}|{primary.side}"
    else:
        price_text = read_str(primary.record, "tradePrice")
        trade_id = f"{primary.symbol}|{ts}|{primary.side}|{price_text}|{format_decimal(base_qty)}|{quote}"

    return CanonicalTrade(
        id=trade_id,
        timestamp=primary.timestamp or 0,
        symbol=primary.symbol,
        category=SPOT,
        side=primary.side,
        transaction_type=primary.type_tag,
        size=base_qty,
        price=price,
        fee=fee_total,
        currency=quote,
        order_id=primary.order_id,
        trade_id=primary.trade_id,
        order_link_id=primary.order_link_id,
        raw_payload=raw_payload([dict(leg.record) for leg in legs]),
    )


def fee_in_quote(fee: Decimal, *, fee_currency: str, quote: str, base: str, price: Decimal) -> Decimal:
    if quote and _same(fee_currency, quote):
        return fee
    if _same(fee_currency, base):
        return fee * price
    return ZERO
