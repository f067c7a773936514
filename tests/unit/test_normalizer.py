from __future__ import annotations

from decimal import Decimal

import orjson

from tradeledger.normalize.classify import (
    DeliveryTransaction,
    OtherTransaction,
    SettlementTransaction,
    TradeTransaction,
    classify,
)
from tradeledger.normalize.delivery import parse_option_symbol
from tradeledger.normalize.normalizer import normalize
from tradeledger.normalize.spot import infer_quote_currency

TS = "1700000000000"


def _spot_leg(**overrides):
    leg = {
        "symbol": "BTCUSDT",
        "category": "spot",
        "side": "Buy",
        "transactionTime": TS,
        "type": "TRADE",
        "tradePrice": "35000",
        "orderId": "o1",
    }
    leg.update(overrides)
    return leg


def test_classify_produces_one_shape_per_record() -> None:
    assert isinstance(classify({"type": "TRADE"}, ""), TradeTransaction)
    assert isinstance(classify({"type": "settlement"}, ""), SettlementTransaction)
    assert isinstance(classify({"type": "DELIVERY"}, ""), DeliveryTransaction)
    assert isinstance(classify({"type": "TRANSFER_IN"}, ""), OtherTransaction)
    assert isinstance(classify({}, ""), OtherTransaction)


def test_category_fallback_applies_only_when_missing() -> None:
    assert classify({"type": "TRADE"}, "linear").category == "linear"
    assert classify({"type": "TRADE", "category": "option"}, "linear").category == "option"


def test_settlement_keeps_fee_but_zeroes_size_and_price() -> None:
    (trade,) = normalize(
        [
            {
                "id": "s1",
                "type": "SETTLEMENT",
                "symbol": "BTCUSDT",
                "category": "linear",
                "transactionTime": TS,
                "qty": "1",
                "tradePrice": "100",
                "fee": "0.5",
                "currency": "USDT",
                "funding": "-0.5",
            }
        ]
    )

    assert trade.id == "s1"
    assert trade.size == 0
    assert trade.price == 0
    assert trade.fee == Decimal("0.5")
    assert trade.timestamp == 1_700_000_000_000


def test_delivery_call_uses_intrinsic_value_and_position_size() -> None:
    (trade,) = normalize(
        [
            {
                "id": "d1",
                "type": "DELIVERY",
                "symbol": "BTC-29DEC23-40000-C",
                "side": "Sell",
                "transactionTime": TS,
                "qty": "0",
                "position": "-0.5",
                "deliveryPrice": "42000",
                "currency": "USDC",
            }
        ],
        category_fallback="option",
    )

    assert trade.category == "option"
    assert trade.size == Decimal("0.5")
    assert trade.price == 2000


def test_delivery_put_out_of_the_money_is_worthless() -> None:
    (trade,) = normalize(
        [
            {
                "id": "d2",
                "type": "DELIVERY",
                "symbol": "BTC-29DEC23-40000-P",
                "transactionTime": TS,
                "qty": "1",
                "deliveryPrice": "42000",
            }
        ]
    )
    assert trade.size == 1
    assert trade.price == 0


def test_delivery_strike_field_wins_over_symbol() -> None:
    (trade,) = normalize(
        [
            {
                "id": "d3",
                "type": "DELIVERY",
                "symbol": "BTC-29DEC23-40000-P",
                "transactionTime": TS,
                "qty": "1",
                "strike": "45000",
                "deliveryPrice": "42000",
            }
        ]
    )
    assert trade.price == 3000


def test_delivery_without_option_kind_keeps_raw_price() -> None:
    (trade,) = normalize(
        [
            {
                "id": "d4",
                "type": "DELIVERY",
                "symbol": "BTCUSD",
                "transactionTime": TS,
                "qty": "2",
                "tradePrice": "123",
            }
        ]
    )
    assert trade.size == 2
    assert trade.price == 123


def test_delivery_without_strike_keeps_raw_price() -> None:
    (trade,) = normalize(
        [
            {
                "id": "d6",
                "type": "DELIVERY",
                "symbol": "BTC-29DEC23-C",
                "transactionTime": TS,
                "qty": "1",
                "tradePrice": "7",
                "deliveryPrice": "42000",
            }
        ]
    )
    assert trade.size == 1
    assert trade.price == 7


def test_delivery_without_spot_keeps_raw_price() -> None:
    (trade,) = normalize(
        [
            {
                "id": "d7",
                "type": "DELIVERY",
                "symbol": "BTC-29DEC23-40000-P",
                "transactionTime": TS,
                "qty": "1",
                "tradePrice": "oops",
            }
        ]
    )
    # unparseable price falls back to 0, never to the strike
    assert trade.size == 1
    assert trade.price == 0


def test_delivery_option_type_field_resolves_kind() -> None:
    (trade,) = normalize(
        [
            {
                "id": "d5",
                "type": "DELIVERY",
                "symbol": "BTCOPT",
                "optionType": "Call",
                "strike": "100",
                "transactionTime": TS,
                "qty": "1",
                "deliveryPrice": "130",
            }
        ]
    )
    assert trade.price == 30


def test_parse_option_symbol() -> None:
    details = parse_option_symbol("eth-28jun24-3500-p")
    assert details is not None
    assert details.kind == "P"
    assert details.strike == 3500
    assert parse_option_symbol("BTCUSDT") is None


def test_spot_legs_collapse_into_one_trade() -> None:
    legs = [
        _spot_leg(id="a1", qty="0.01", fee="0.00001", currency="BTC"),
        _spot_leg(id="a2", qty="-350", fee="0", currency="USDT"),
    ]
    (trade,) = normalize(legs)

    assert trade.id == f"o1|{TS}|BTCUSDT|Buy"
    assert trade.category == "spot"
    assert trade.currency == "USDT"
    assert trade.size == Decimal("0.01")
    assert trade.price == 35000
    # base-denominated fee converted at the trade price
    assert trade.fee == Decimal("0.35")
    assert [leg["id"] for leg in orjson.loads(trade.raw_payload)] == ["a1", "a2"]


def test_spot_fees_in_quote_are_summed_as_is() -> None:
    legs = [
        _spot_leg(id="a1", side="Sell", qty="-0.02", fee="0", currency="BTC"),
        _spot_leg(id="a2", side="Sell", qty="700", fee="0.7", currency="USDT"),
    ]
    (trade,) = normalize(legs)

    assert trade.side == "Sell"
    assert trade.size == Decimal("0.02")
    assert trade.fee == Decimal("0.7")


def test_spot_without_order_id_groups_by_trade_id() -> None:
    legs = [
        _spot_leg(orderId="", tradeId="x9", qty="1", currency="ETH", symbol="ETHUSDC", tradePrice="2000"),
        _spot_leg(orderId="", tradeId="x9", qty="-2000", currency="USDC", symbol="ETHUSDC", tradePrice="2000"),
    ]
    (trade,) = normalize(legs)

    assert trade.id == f"ETHUSDC|{TS}|Buy|2000|1|USDC"
    assert trade.currency == "USDC"


def test_distinct_spot_fills_stay_separate() -> None:
    legs = [
        _spot_leg(id="a1", qty="0.01", currency="BTC"),
        _spot_leg(id="a2", qty="-350", currency="USDT"),
        _spot_leg(id="b1", orderId="o2", qty="0.02", currency="BTC"),
        _spot_leg(id="b2", orderId="o2", qty="-700", currency="USDT"),
    ]
    trades = normalize(legs)
    assert [t.order_id for t in trades] == ["o1", "o2"]
    assert [t.size for t in trades] == [Decimal("0.01"), Decimal("0.02")]


def test_infer_quote_currency() -> None:
    assert infer_quote_currency("BTCUSDT", ["BTC", "USDT"]) == "USDT"
    assert infer_quote_currency("ETHBTC", ["ETH", "BTC"]) == "BTC"
    assert infer_quote_currency("", ["USDC"]) == "USDC"
    assert infer_quote_currency("XYZ", ["A", "B"]) == ""


def test_unique_key_fallbacks() -> None:
    with_order = {
        "type": "TRADE",
        "symbol": "ETHUSDT",
        "category": "linear",
        "side": "Buy",
        "transactionTime": TS,
        "qty": "1",
        "fee": "0.1",
        "currency": "USDT",
        "orderId": "o9",
    }
    bare = dict(with_order, orderId="", side="Sell", qty="2", tradePrice="1800", fee="0.2")

    first, second = normalize([with_order, bare])
    assert first.id == f"o9|{TS}|1|0.1|USDT|Buy"
    assert second.id == f"TRADE|ETHUSDT|{TS}|2|1800|0.2|USDT|linear|Sell"


def test_duplicate_records_keep_first_copy() -> None:
    record = {"id": "dup", "type": "TRADE", "symbol": "BTCUSDT", "transactionTime": TS, "qty": "1"}
    trades = normalize([record, dict(record, qty="5")])

    assert len(trades) == 1
    assert trades[0].size == 1


def test_malformed_input_never_aborts_the_batch() -> None:
    records = [
        1,
        "not a record",
        {"id": "m1", "type": "TRADE", "symbol": "BTCUSDT", "qty": "lots", "tradePrice": None, "fee": {}},
    ]
    (trade,) = normalize(records)

    assert trade.id == "m1"
    assert trade.size == 0
    assert trade.price == 0
    assert trade.fee == 0
    assert trade.timestamp == 0


def test_raw_payload_is_deterministic_json() -> None:
    record = {"type": "TRADE", "id": "r1", "symbol": "BTCUSDT", "b": 1, "a": 2}
    (trade,) = normalize([record])
    assert trade.raw_payload == '{"a":2,"b":1,"id":"r1","symbol":"BTCUSDT","type":"TRADE"}'
