from __future__ import annotations

from contextlib import AbstractContextManager
from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation, localcontext

ZERO = Decimal(0)

# Ten fractional digits, half away from zero
_QUANTUM = Decimal("1e-10")

# Positions smaller than this are treated as flat
FLAT_EPS = Decimal("1e-9")

# Raw magnitudes at or above this are rejected on input. Products of two
# such values plus ten fractional digits still fit in _CONTEXT.
MAX_ABS = Decimal("1e30")

_CONTEXT = Context(prec=100, rounding=ROUND_HALF_UP)


def ledger_context() -> AbstractContextManager[Context]:
    """
    Arithmetic context for ledger math: wide enough that quantizing to ten
    places never overflows the precision.
    """
    return localcontext(_CONTEXT)


def round10(value: Decimal) -> Decimal:
    return value.quantize(_QUANTUM, rounding=ROUND_HALF_UP, context=_CONTEXT)


def sign(value: Decimal) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def _parse(value: object) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        out = value
    elif isinstance(value, int):
        out = Decimal(value)
    elif isinstance(value, float):
        out = Decimal(repr(value))
    elif isinstance(value, str):
        s = value.strip().replace(",", "")
        if not s:
            return None
        try:
            out = Decimal(s)
        except InvalidOperation:
            return None
    else:
        return None

    if not out.is_finite():
        return None
    return out


def to_decimal(value: object) -> Decimal | None:
    """
    Best-effort conversion of a JSON scalar into a Decimal.

    Accepts ints, floats (via their shortest repr) and numeric strings.
    Returns None for anything else, including NaN/Infinity and magnitudes
    of MAX_ABS or more.
    """
    out = _parse(value)
    if out is None or out.copy_abs() >= MAX_ABS:
        return None
    return out


def format_decimal(value: Decimal) -> str:
    """
    Human form: at most 10 fractional digits, no trailing zeros, no exponent.
    """
    out = format(round10(value).normalize(_CONTEXT), "f")
    return "0" if out in ("-0", "0") else out


def to_db(value: Decimal) -> str:
    # Fixed-point text; round-trips exactly through Decimal()
    return format(value, "f")


def from_db(raw: object) -> Decimal:
    # Stored values are trusted, so no magnitude bound here
    out = _parse(raw)
    return ZERO if out is None else out
