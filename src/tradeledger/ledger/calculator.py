from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Iterator, Sequence

from tradeledger.ledger.models import CalculatedFields, CanonicalTrade, LedgerState
from tradeledger.ledger.numeric import FLAT_EPS, ZERO, ledger_context, round10, sign

TRADE = "TRADE"
SETTLEMENT = "SETTLEMENT"
DELIVERY = "DELIVERY"


def order_trades(trades: Iterable[CanonicalTrade]) -> list[CanonicalTrade]:
    """
    Fold order: timestamp ascending, then id (ordinal) ascending.
    """
    return sorted(trades, key=CanonicalTrade.sort_key)


def effective_quantity(trade: CanonicalTrade) -> tuple[Decimal, Decimal]:
    """
    (signed quantity, price) a trade contributes to its symbol's position.

    Settlements carry fees only. Unknown transaction types never move the
    position but still pay their fee.
    """
    kind = trade.transaction_type.strip().upper()
    price = trade.price

    if kind == SETTLEMENT:
        return ZERO, ZERO
    if kind not in (TRADE, DELIVERY):
        return ZERO, price

    qty = round10(trade.size)
    if trade.side.strip().upper() == "SELL":
        qty = -qty
    return round10(qty), price


def apply(trade: CanonicalTrade, state: LedgerState) -> CalculatedFields:
    """
    Fold one trade into `state` and return the fields calculated for it.

    Average-cost accounting:
      - the part of the trade that offsets the current position is closed
        at the prior average and realizes P/L
      - the remainder opens (or extends) a position at the trade price,
        which also covers long <-> short flips
    Must be called exactly once per trade, in (timestamp, id) order.
    """
    with ledger_context():
        qty, price = effective_quantity(trade)
        fee = trade.fee

        pos_before, avg_before = state.position(trade.symbol)
        pos_before = round10(pos_before)

        q_sign = sign(qty)
        if pos_before != 0 and q_sign == -sign(pos_before):
            close_qty = round10(min(abs(qty), abs(pos_before)))
        else:
            close_qty = ZERO
        open_qty = round10(qty - q_sign * close_qty)

        realized = ZERO
        if close_qty != 0:
            if pos_before > 0:
                realized = round10((price - avg_before) * close_qty)
            else:
                realized = round10((avg_before - price) * close_qty)

        # Cash bookkeeping: the closed part leaves at the prior average
        cash_before = round10(-avg_before * pos_before)
        cash_after = round10(cash_before - avg_before * close_qty * q_sign - price * open_qty)
        pos_after = round10(pos_before + qty)
        if abs(pos_after) < FLAT_EPS:
            pos_after = round10(ZERO)
            avg_after = round10(ZERO)
        else:
            avg_after = round10(-cash_after / pos_after)

        settle_coin = trade.settle_coin
        cumulative_after = round10(state.cumulative(settle_coin) + realized - fee)

        state.set_position(trade.symbol, size=pos_after, avg_price=avg_after)
        state.set_cumulative(settle_coin, cumulative_after)

        return CalculatedFields(
            size_after=pos_after,
            avg_price_after=avg_after,
            realized_pnl=realized,
            cumulative_pnl=cumulative_after,
        )


def apply_all(
    trades: Sequence[CanonicalTrade],
    state: LedgerState,
) -> Iterator[tuple[CanonicalTrade, CalculatedFields]]:
    """
    Fold an already-ordered sequence, yielding (trade, fields) pairs.

    Lazy: state only advances as the iterator is consumed.
    """
    for trade in trades:
        yield trade, apply(trade, state)
