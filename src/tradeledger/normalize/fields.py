from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping

from tradeledger.ledger.numeric import to_decimal

RawRecord = Mapping[str, Any]

_DATETIME_FORMATS = ("%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%d %H:%M:%S")


def read_str(record: RawRecord, *names: str) -> str:
    """
    First present, non-null field rendered as text; "" when none is.

    Non-string scalars use their JSON-ish text form so keys built from them
    stay stable (e.g. 0.5 -> "0.5", 12 -> "12").
    """
    for name in names:
        value = record.get(name)
        if value is None:
            continue
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)
    return ""


def read_decimal(record: RawRecord, *names: str) -> Decimal | None:
    """
    First field that parses as a finite decimal; None when none does.
    """
    for name in names:
        if name not in record:
            continue
        out = to_decimal(record.get(name))
        if out is not None:
            return out
    return None


def read_timestamp(record: RawRecord, *names: str) -> int | None:
    """
    Epoch milliseconds from an int, an integer string, an ISO-8601 string
    or "YYYY-MM-DD HH:MM:SS[.fff]" (naive values are UTC).
    """
    for name in names:
        value = record.get(name)
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if not isinstance(value, str):
            continue

        s = value.strip()
        if not s:
            continue
        if s.lstrip("-").isascii() and s.lstrip("-").isdigit():
            return int(s)

        parsed = _parse_datetime(s)
        if parsed is not None:
            return round(parsed.timestamp() * 1000)
    return None


def _parse_datetime(s: str) -> datetime | None:
    dt: datetime | None = None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        for fmt in _DATETIME_FORMATS:
            try:
                dt = datetime.strptime(s, fmt)
                break
            except ValueError:
                continue

    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
