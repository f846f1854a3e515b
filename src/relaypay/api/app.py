"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from relaypay.config import get_settings
from relaypay.errors import ErrorCategory, RelayPayError, TransferInProgress, TransferNotFound
from relaypay.ledger.database import close_db, init_db

logger = logging.getLogger(__name__)

# HTTP status per error category
CATEGORY_STATUS = {
    ErrorCategory.PRECONDITION: 400,
    ErrorCategory.CONFIGURATION: 503,
    ErrorCategory.SUBMISSION: 502,
    ErrorCategory.ONCHAIN: 502,
    ErrorCategory.TIMEOUT: 202,
}


def error_status(error: RelayPayError) -> int:
    if isinstance(error, TransferInProgress):
        return 409
    return CATEGORY_STATUS.get(error.category, 400)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    await init_db()
    yield
    # Shutdown
    await close_db()


async def relaypay_error_handler(request: Request, exc: RelayPayError) -> JSONResponse:
    body = {"error": exc.to_dict()}
    tx_hash = getattr(exc, "tx_hash", None)
    if tx_hash:
        body["error"]["tx_hash"] = tx_hash
    return JSONResponse(status_code=error_status(exc), content=body)


async def not_found_handler(request: Request, exc: TransferNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="RelayPay API",
        description="Custodial USDC wallets with gasless transfers",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RelayPayError, relaypay_error_handler)
    app.add_exception_handler(TransferNotFound, not_found_handler)

    # Register routes
    from relaypay.api.routers import relayer, transfers, wallets
    from relaypay.api.routes import health

    app.include_router(health.router, tags=["Health"])
    app.include_router(wallets.router)
    app.include_router(transfers.router)
    app.include_router(relayer.router)

    return app
