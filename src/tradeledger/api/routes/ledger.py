from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field

from tradeledger.core.config.settings import settings
from tradeledger.ledger.models import CanonicalTrade, Checkpoint, LedgerEntry
from tradeledger.ledger.numeric import MAX_ABS, ZERO, format_decimal
from tradeledger.ledger.orchestrator import LedgerBook
from tradeledger.ledger.registry import LedgerRegistry

router = APIRouter(prefix="/ledger", tags=["ledger"])


# =========================
# Dependencies
# =========================

def get_registry(request: Request) -> LedgerRegistry:
    return request.app.state.registry


def get_book(
    registry: LedgerRegistry = Depends(get_registry),
    x_user_id: str | None = Header(default=None),
) -> LedgerBook:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="missing X-User-Id header")
    try:
        return registry.get(user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


# =========================
# Schemas
# =========================

# Same magnitude bound as raw exchange input
BoundedDecimal = Annotated[Decimal, Field(gt=-MAX_ABS, lt=MAX_ABS)]


class TradeIn(BaseModel):
    id: str = Field(default="", description="Stable trade id; generated when blank")
    timestamp: int = Field(default=0, description="Epoch ms; 'now' when non-positive")
    symbol: str
    category: str = ""
    side: str = ""
    transaction_type: str = "TRADE"
    size: BoundedDecimal = ZERO
    price: BoundedDecimal = ZERO
    fee: BoundedDecimal = ZERO
    currency: str = ""
    order_id: str = ""
    trade_id: str = ""
    order_link_id: str = ""
    change: BoundedDecimal = ZERO
    cash_flow: BoundedDecimal = ZERO
    raw_payload: str = ""

    def to_trade(self) -> CanonicalTrade:
        return CanonicalTrade(**self.model_dump())


class SaveTradesRequest(BaseModel):
    trades: list[TradeIn]


class RawTransactionsRequest(BaseModel):
    category: str = Field(default="", description="Fallback for records without a category")
    records: list[dict[str, Any]]


class CountResponse(BaseModel):
    count: int


class EntryOut(BaseModel):
    id: str
    timestamp: int
    symbol: str
    category: str
    side: str
    transaction_type: str
    size: str
    price: str
    fee: str
    currency: str
    order_id: str
    trade_id: str
    order_link_id: str
    change: str
    cash_flow: str
    changed_at: int
    size_after: str
    avg_price_after: str
    realized_pnl: str
    cumulative_pnl: str

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> "EntryOut":
        t = entry.trade
        c = entry.calculated
        return cls(
            id=t.id,
            timestamp=t.timestamp,
            symbol=t.symbol,
            category=t.category,
            side=t.side,
            transaction_type=t.transaction_type,
            size=format_decimal(t.size),
            price=format_decimal(t.price),
            fee=format_decimal(t.fee),
            currency=t.currency,
            order_id=t.order_id,
            trade_id=t.trade_id,
            order_link_id=t.order_link_id,
            change=format_decimal(t.change),
            cash_flow=format_decimal(t.cash_flow),
            changed_at=entry.changed_at,
            size_after=format_decimal(c.size_after),
            avg_price_after=format_decimal(c.avg_price_after),
            realized_pnl=format_decimal(c.realized_pnl),
            cumulative_pnl=format_decimal(c.cumulative_pnl),
        )


class EntryPageResponse(BaseModel):
    entries: list[EntryOut]
    total: int


class SymbolSummaryOut(BaseModel):
    category: str
    symbol: str
    settle_coin: str
    trades: int
    total_qty: str
    total_value: str
    total_fees: str
    realized_pnl: str


class SettleCoinPnlOut(BaseModel):
    settle_coin: str
    realized_pnl: str
    fees: str
    net_pnl: str


class DailyPnlOut(BaseModel):
    day: str
    settle_coin: str
    realized_pnl: str


class DailySymbolSummaryOut(BaseModel):
    day: str
    symbol_key: str
    symbol: str
    category: str
    total_size: str
    total_value: str
    total_fee: str


class LatestMetaResponse(BaseModel):
    timestamp: int | None = None
    ids: list[str]


class RecalculateRequest(BaseModel):
    from_timestamp: int | None = Field(default=None, description="Partial replay start; full replay when omitted")


class RecalculateResponse(BaseModel):
    mode: Literal["full", "partial"]
    rewritten: int


# =========================
# Routes
# =========================

@router.post("/trades/bulk", response_model=CountResponse)
def save_trades(payload: SaveTradesRequest, book: LedgerBook = Depends(get_book)) -> CountResponse:
    count = book.save_trades(t.to_trade() for t in payload.trades)
    return CountResponse(count=count)


@router.post("/transactions/raw", response_model=CountResponse)
def save_raw_transactions(payload: RawTransactionsRequest, book: LedgerBook = Depends(get_book)) -> CountResponse:
    count = book.ingest_raw(payload.records, payload.category)
    return CountResponse(count=count)


@router.get("/entries", response_model=EntryPageResponse)
def load_entries(
    start_index: int = Query(default=0),
    limit: int | None = Query(default=None),
    base_asset: str | None = Query(default=None),
    book: LedgerBook = Depends(get_book),
) -> EntryPageResponse:
    page_limit = settings.default_page_limit if limit is None else limit
    if start_index < 0 or page_limit <= 0:
        raise HTTPException(status_code=400, detail="invalid paging arguments")

    page = book.load_entries(start_index, page_limit, base_asset=base_asset)
    return EntryPageResponse(entries=[EntryOut.from_entry(e) for e in page.entries], total=page.total)


@router.get("/all", response_model=list[EntryOut])
def load_all(book: LedgerBook = Depends(get_book)) -> list[EntryOut]:
    return [EntryOut.from_entry(e) for e in book.load_all()]


@router.get("/by-symbol", response_model=list[EntryOut])
def load_by_symbol(
    symbol: str = Query(...),
    category: str | None = Query(default=None),
    since: int | None = Query(default=None),
    book: LedgerBook = Depends(get_book),
) -> list[EntryOut]:
    return [EntryOut.from_entry(e) for e in book.load_by_symbol(symbol, category=category, since=since)]


@router.get("/summary/by-symbol", response_model=list[SymbolSummaryOut])
def summary_by_symbol(book: LedgerBook = Depends(get_book)) -> list[SymbolSummaryOut]:
    return [
        SymbolSummaryOut(
            category=r.category,
            symbol=r.symbol,
            settle_coin=r.settle_coin,
            trades=r.trades,
            total_qty=format_decimal(r.total_qty),
            total_value=format_decimal(r.total_value),
            total_fees=format_decimal(r.total_fees),
            realized_pnl=format_decimal(r.realized_pnl),
        )
        for r in book.load_summary_by_symbol()
    ]


@router.get("/summary/by-settle-coin", response_model=list[SettleCoinPnlOut])
def summary_by_settle_coin(book: LedgerBook = Depends(get_book)) -> list[SettleCoinPnlOut]:
    return [
        SettleCoinPnlOut(
            settle_coin=r.settle_coin,
            realized_pnl=format_decimal(r.realized_pnl),
            fees=format_decimal(r.fees),
            net_pnl=format_decimal(r.net_pnl),
        )
        for r in book.load_pnl_by_settle_coin()
    ]


@router.get("/daily-pnl", response_model=list[DailyPnlOut])
def daily_pnl(
    from_ts: int = Query(...),
    to_ts: int = Query(...),
    book: LedgerBook = Depends(get_book),
) -> list[DailyPnlOut]:
    return [
        DailyPnlOut(day=r.day, settle_coin=r.settle_coin, realized_pnl=format_decimal(r.realized_pnl))
        for r in book.load_daily_pnl(from_ts, to_ts)
    ]


@router.get("/daily-summaries", response_model=list[DailySymbolSummaryOut])
def load_daily_summaries(book: LedgerBook = Depends(get_book)) -> list[DailySymbolSummaryOut]:
    return [
        DailySymbolSummaryOut(
            day=r.day,
            symbol_key=r.symbol_key,
            symbol=r.symbol,
            category=r.category,
            total_size=format_decimal(r.total_size),
            total_value=format_decimal(r.total_value),
            total_fee=format_decimal(r.total_fee),
        )
        for r in book.load_daily_summaries()
    ]


@router.post("/daily-summaries", response_model=CountResponse)
def rebuild_daily_summaries(book: LedgerBook = Depends(get_book)) -> CountResponse:
    return CountResponse(count=book.save_daily_summaries())


@router.get("/latest-meta", response_model=LatestMetaResponse)
def latest_meta(
    symbol: str = Query(...),
    category: str | None = Query(default=None),
    book: LedgerBook = Depends(get_book),
) -> LatestMetaResponse:
    info = book.load_latest_by_symbol(symbol, category=category)
    return LatestMetaResponse(timestamp=info.timestamp, ids=list(info.ids))


@router.get("/meta", response_model=Checkpoint)
def load_meta(book: LedgerBook = Depends(get_book)) -> Checkpoint:
    return book.load_meta()


@router.post("/meta", response_model=Checkpoint)
def save_meta(payload: Checkpoint, book: LedgerBook = Depends(get_book)) -> Checkpoint:
    book.save_meta(payload)
    return payload


@router.post("/recalculate", response_model=RecalculateResponse)
def recalculate(
    payload: RecalculateRequest | None = None,
    book: LedgerBook = Depends(get_book),
) -> RecalculateResponse:
    from_timestamp = payload.from_timestamp if payload is not None else None
    rewritten = book.recalculate(from_timestamp)
    return RecalculateResponse(mode="full" if from_timestamp is None else "partial", rewritten=rewritten)
