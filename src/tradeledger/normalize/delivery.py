from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Literal, Optional

from tradeledger.ledger.numeric import ZERO, to_decimal
from tradeledger.normalize.classify import DeliveryTransaction

OptionKind = Literal["C", "P"]


@dataclass(frozen=True, slots=True)
class OptionDetails:
    kind: OptionKind
    strike: Optional[Decimal]


@dataclass(frozen=True, slots=True)
class DeliveryTerms:
    """
    Economic size/price of a delivery event.

    `resolved` is False when the option kind, a non-zero strike or the
    spot at expiry could not be determined; `price` is then the raw price
    and `reason` names the first missing input.
    """

    size: Decimal
    price: Decimal
    resolved: bool
    reason: str = ""


def parse_option_symbol(symbol: str) -> Optional[OptionDetails]:
    """
    Parse dash-separated option symbols such as "BTC-27DEC24-60000-C".

    The "C"/"P" token gives the kind; the token before it is the strike.
    Returns None when there is no kind token.
    """
    parts = [p for p in symbol.strip().upper().split("-") if p]
    for i, part in enumerate(parts):
        if part in ("C", "P"):
            strike = to_decimal(parts[i - 1]) if i > 0 else None
            return OptionDetails(kind=part, strike=strike)  # type: ignore[arg-type]
    return None


def _kind_from_field(option_type: str) -> Optional[OptionKind]:
    t = option_type.strip().upper()
    if t in ("C", "CALL"):
        return "C"
    if t in ("P", "PUT"):
        return "P"
    return None


def intrinsic_value(*, kind: OptionKind, spot: Decimal, strike: Decimal) -> Decimal:
    if kind == "C":
        return max(spot - strike, ZERO)
    return max(strike - spot, ZERO)


def delivery_terms(tx: DeliveryTransaction, *, raw_size: Decimal, raw_price: Decimal) -> DeliveryTerms:
    """
    Quantity from the reported position, price from intrinsic value at expiry.

    Whatever cannot be derived keeps its raw value.
    """
    size = abs(tx.position) if tx.position != 0 else raw_size

    details = parse_option_symbol(tx.symbol)
    kind = details.kind if details is not None else _kind_from_field(tx.option_type)
    strike = tx.strike
    if not strike and details is not None:
        strike = details.strike

    if kind is None:
        return DeliveryTerms(size=size, price=raw_price, resolved=False, reason="option_kind_unknown")
    if not strike:
        return DeliveryTerms(size=size, price=raw_price, resolved=False, reason="strike_missing")
    if tx.delivery_price is None:
        return DeliveryTerms(size=size, price=raw_price, resolved=False, reason="spot_missing")

    price = intrinsic_value(kind=kind, spot=tx.delivery_price, strike=strike)
    return DeliveryTerms(size=size, price=price, resolved=True)
