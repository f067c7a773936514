from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Callable

import pytest

from tradeledger.ledger.models import CanonicalTrade
from tradeledger.ledger.orchestrator import LedgerBook
from tradeledger.storage.gate import ReadWriteGate
from tradeledger.storage.sqlite import SqliteLedgerStore

# 2023-11-14T22:13:20Z and 2023-11-15T00:00:00Z
DAY1_TS = 1_700_000_000_000
DAY2_TS = 1_700_006_400_000


def _trade(
    id: str,
    timestamp: int,
    side: str,
    size: str,
    price: str,
    fee: str = "0",
    *,
    symbol: str = "BTCUSDT",
    currency: str = "USDT",
    category: str = "linear",
    transaction_type: str = "TRADE",
) -> CanonicalTrade:
    return CanonicalTrade(
        id=id,
        timestamp=timestamp,
        symbol=symbol,
        category=category,
        side=side,
        transaction_type=transaction_type,
        size=Decimal(size),
        price=Decimal(price),
        fee=Decimal(fee),
        currency=currency,
    )


@pytest.fixture
def make_trade() -> Callable[..., CanonicalTrade]:
    return _trade


@pytest.fixture
def scenario_trades() -> list[CanonicalTrade]:
    """
    Buy 2 @ 100, sell 1 @ 120, sell 3 @ 90 (flip short), buy 2 @ 95 (flat).
    Fee 1 USDT each; two trades per UTC day.
    """
    return [
        _trade("t1", DAY1_TS, "Buy", "2", "100", "1"),
        _trade("t2", DAY1_TS + 60_000, "Sell", "1", "120", "1"),
        _trade("t3", DAY2_TS, "Sell", "3", "90", "1"),
        _trade("t4", DAY2_TS + 60_000, "Buy", "2", "95", "1"),
    ]


def _open_book(path: Path, *, timeout_s: float | None = None) -> LedgerBook:
    return LedgerBook(
        store=SqliteLedgerStore(path=path / "ledger.db"),
        gate=ReadWriteGate(timeout_s=timeout_s),
        user_id="test",
    )


@pytest.fixture
def book(tmp_path: Path) -> LedgerBook:
    return _open_book(tmp_path)


@pytest.fixture
def book_factory() -> Callable[..., LedgerBook]:
    """
    Opens an independent ledger rooted at the given directory.
    """
    return _open_book
