from __future__ import annotations

from fastapi import APIRouter

from tradeledger.api.routes.health import router as health_router
from tradeledger.api.routes.ledger import router as ledger_router

# Top-level API router
router = APIRouter()

# Route composition
router.include_router(health_router)
router.include_router(ledger_router)
