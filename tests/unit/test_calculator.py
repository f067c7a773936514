from __future__ import annotations

from decimal import Decimal

from tradeledger.ledger.calculator import apply, apply_all, effective_quantity, order_trades
from tradeledger.ledger.models import LedgerState


def test_scenario_long_partial_close_flip_and_flat(scenario_trades) -> None:
    state = LedgerState()
    results = [fields for _, fields in apply_all(scenario_trades, state)]

    # --- Buy 2 @ 100 ---
    assert results[0].size_after == 2
    assert results[0].avg_price_after == 100
    assert results[0].realized_pnl == 0
    assert results[0].cumulative_pnl == -1

    # --- Sell 1 @ 120: closes 1 at avg 100 ---
    assert results[1].size_after == 1
    assert results[1].avg_price_after == 100
    assert results[1].realized_pnl == 20
    assert results[1].cumulative_pnl == 18

    # --- Sell 3 @ 90: closes the long, opens a short of 2 at 90 ---
    assert results[2].size_after == -2
    assert results[2].avg_price_after == 90
    assert results[2].realized_pnl == -10
    assert results[2].cumulative_pnl == 7

    # --- Buy 2 @ 95: closes the short ---
    assert results[3].size_after == 0
    assert results[3].avg_price_after == 0
    assert results[3].realized_pnl == -10
    assert results[3].cumulative_pnl == -4

    assert state.position("BTCUSDT") == (0, 0)
    assert state.cumulative("USDT") == -4


def test_pure_opens_accumulate_weighted_average(make_trade) -> None:
    state = LedgerState()
    trades = [
        make_trade("a", 1, "Buy", "1", "100"),
        make_trade("b", 2, "Buy", "3", "200"),
        make_trade("c", 3, "Buy", "0.5", "50"),
    ]
    results = [fields for _, fields in apply_all(trades, state)]

    assert all(r.realized_pnl == 0 for r in results)
    # (100 + 600 + 25) / 4.5
    assert results[-1].size_after == Decimal("4.5")
    assert results[-1].avg_price_after == Decimal("161.1111111111")


def test_short_side_opens_and_covers(make_trade) -> None:
    state = LedgerState()
    short = apply(make_trade("a", 1, "Sell", "2", "50"), state)
    cover = apply(make_trade("b", 2, "Buy", "1", "40"), state)

    assert short.size_after == -2
    assert short.avg_price_after == 50
    assert cover.realized_pnl == 10
    assert cover.size_after == -1
    assert cover.avg_price_after == 50


def test_flip_short_to_long_opens_at_trade_price(make_trade) -> None:
    state = LedgerState()
    apply(make_trade("a", 1, "Sell", "1", "100"), state)
    flip = apply(make_trade("b", 2, "Buy", "3", "80"), state)

    assert flip.realized_pnl == 20
    assert flip.size_after == 2
    assert flip.avg_price_after == 80


def test_zero_position_always_has_zero_average(make_trade) -> None:
    state = LedgerState()
    apply(make_trade("a", 1, "Buy", "0.3", "101.7"), state)
    apply(make_trade("b", 2, "Buy", "0.7", "99.1"), state)
    flat = apply(make_trade("c", 3, "Sell", "1", "100"), state)

    assert flat.size_after == 0
    assert flat.avg_price_after == 0


def test_settlement_pays_fee_without_moving_position(make_trade) -> None:
    state = LedgerState()
    apply(make_trade("a", 1, "Buy", "1", "100"), state)
    settled = apply(
        make_trade("b", 2, "Sell", "5", "123", "0.25", transaction_type="SETTLEMENT"),
        state,
    )

    assert settled.size_after == 1
    assert settled.avg_price_after == 100
    assert settled.realized_pnl == 0
    assert settled.cumulative_pnl == Decimal("-0.25")


def test_unknown_type_pays_fee_only(make_trade) -> None:
    trade = make_trade("a", 1, "Buy", "4", "10", "0.5", transaction_type="TRANSFER_IN")
    qty, price = effective_quantity(trade)
    assert qty == 0
    assert price == 10

    state = LedgerState()
    fields = apply(trade, state)
    assert fields.size_after == 0
    assert fields.cumulative_pnl == Decimal("-0.5")


def test_side_type_and_symbol_are_case_insensitive(make_trade) -> None:
    state = LedgerState()
    apply(make_trade("a", 1, "buy", "2", "10", symbol="btcusdt", transaction_type="trade"), state)
    fields = apply(make_trade("b", 2, "sell", "2", "12", symbol="BTCUSDT"), state)

    assert fields.realized_pnl == 4
    assert fields.size_after == 0


def test_blank_currency_settles_in_unknown_coin(make_trade) -> None:
    state = LedgerState()
    apply(make_trade("a", 1, "Buy", "1", "10", "2", currency=" "), state)
    assert state.cumulative("_unknown") == -2
    assert state.cumulative("USDT") == 0


def test_cumulative_is_tracked_per_settle_coin(make_trade) -> None:
    state = LedgerState()
    apply(make_trade("a", 1, "Buy", "1", "10", "1", symbol="ETHUSDT"), state)
    apply(make_trade("b", 2, "Buy", "1", "10", "3", symbol="BTC-29DEC23-40000-C", currency="USDC"), state)

    assert state.cumulative("USDT") == -1
    assert state.cumulative("usdc") == -3


def test_values_are_rounded_half_up_to_ten_places(make_trade) -> None:
    state = LedgerState()
    apply(make_trade("a", 1, "Buy", "3", "1"), state)
    fields = apply(make_trade("b", 2, "Buy", "3", "1.00000000005"), state)
    # cash -6.00000000015 rounds to -6.0000000002 before dividing
    assert fields.avg_price_after == Decimal("1.0000000000")

    up = apply(make_trade("c", 3, "Buy", "1", "0.00000000005", symbol="X"), LedgerState())
    assert up.avg_price_after == Decimal("0.0000000001")


def test_order_trades_sorts_by_timestamp_then_id(make_trade) -> None:
    trades = [
        make_trade("b", 2, "Buy", "1", "1"),
        make_trade("a", 2, "Buy", "1", "1"),
        make_trade("z", 1, "Buy", "1", "1"),
        make_trade("B", 2, "Buy", "1", "1"),
    ]
    assert [t.id for t in order_trades(trades)] == ["z", "B", "a", "b"]


def test_apply_all_advances_state_lazily(make_trade) -> None:
    state = LedgerState()
    it = apply_all([make_trade("a", 1, "Buy", "1", "1")], state)
    assert state.position("BTCUSDT") == (0, 0)

    list(it)
    assert state.position("BTCUSDT") == (1, 1)


def test_large_quantities_fold_exactly(make_trade) -> None:
    state = LedgerState()
    opened = apply(make_trade("a", 1, "Buy", "1000000000000000000", "1"), state)
    closed = apply(make_trade("b", 2, "Sell", "1000000000000000000", "3", "0.5"), state)

    assert opened.size_after == Decimal("1e18")
    assert opened.avg_price_after == 1
    assert closed.realized_pnl == Decimal("2e18")
    assert closed.size_after == 0
    assert closed.cumulative_pnl == Decimal("1999999999999999999.5")
