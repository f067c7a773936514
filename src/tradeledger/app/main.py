from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tradeledger.api import router as api_router
from tradeledger.core.config.settings import settings
from tradeledger.core.logging.setup import configure_logging
from tradeledger.ledger.errors import LedgerError
from tradeledger.ledger.registry import LedgerRegistry

log = structlog.get_logger()


def create_app(*, registry: LedgerRegistry | None = None) -> FastAPI:
    """
    Application factory.

    This function is the single place where the FastAPI app
    is created and configured. Tests pass their own registry.
    """
    # Initialize structured logging
    configure_logging(level=settings.log_level)

    app = FastAPI(
        title="Trade Ledger",
        version="0.1.0",
    )

    app.state.registry = registry or LedgerRegistry(
        data_dir=settings.data_dir,
        lock_timeout_s=settings.lock_timeout_s,
        journal_mode=settings.sqlite_journal_mode,
    )

    @app.on_event("startup")
    async def on_startup() -> None:
        log.info(
            "app.startup",
            environment=settings.env,
            data_dir=str(app.state.registry.data_dir),
        )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        log.info("app.shutdown")

    @app.exception_handler(LedgerError)
    async def on_ledger_error(request: Request, exc: LedgerError) -> JSONResponse:
        log.warning(
            "api.ledger_error",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    # Mount API
    app.include_router(api_router, prefix="/api")

    return app


# ASGI entrypoint
app = create_app()
