"""
Blockbook API - payment requests for the web frontend.

Provides REST endpoints for:
- Creating payment requests (POST /payment-requests)
- Reading one request (GET /payment-requests/{id})
- Listing requests (GET /payment-requests?status=&requester=)
- Cancelling open requests (DELETE /payment-requests/{id})
- Health checks (GET /health)

The settlement listener runs as a background task owned by the app lifespan.
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from web3 import Web3

from . import __version__
from .auth import verify_api_token
from .chain import ChainClient
from .config import Settings, get_settings
from .db import PaymentRequestStore, RequestStatus
from .errors import ConfigurationError, PaymentRequestConflict, PaymentRequestNotFound
from .listener import SettlementListener
from .models import (
    CreatePaymentRequest,
    HealthResponse,
    ListenerStatus,
    PaymentRequestResponse,
)

# Configure logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


# Global services (initialized at startup)
_store: Optional[PaymentRequestStore] = None
_chain: Optional[ChainClient] = None
_listener: Optional[SettlementListener] = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    global _store, _chain, _listener

    settings = get_settings()

    missing = settings.missing_required()
    if missing:
        logger.error("missing_configuration", missing=missing)
        raise ConfigurationError(missing)

    _store = PaymentRequestStore(settings.database_url)

    if settings.rpc_url and settings.token_address:
        _chain = ChainClient(
            settings.rpc_url,
            settings.token_address,
            timeout=settings.rpc_timeout_seconds,
        )

    if settings.listener_enabled and _chain is not None:
        _listener = SettlementListener.from_settings(settings, _store, _chain)
        _listener.start()

    logger.info(
        "API started",
        version=__version__,
        host=settings.host,
        port=settings.port,
        database=settings.masked_database_url(),
        rpc=settings.rpc_url,
        listener=_listener is not None,
    )

    yield

    # Cleanup
    if _listener:
        await _listener.aclose()
        _listener = None
    _chain = None
    if _store:
        _store.close()
        _store = None

    logger.info("API stopped")


# Create FastAPI app
app = FastAPI(
    title="Blockbook API",
    description="Payment requests settled by on-chain ERC-20 transfers",
    version=__version__,
    lifespan=lifespan,
)


# Add CORS middleware
_settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
)


def get_store() -> PaymentRequestStore:
    """Request store dependency."""
    if _store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Request store not initialized",
        )
    return _store


# ============================================================================
# Health Check
# ============================================================================


@app.get("/health", response_model=HealthResponse)
async def health_check(settings: Settings = Depends(get_settings)) -> HealthResponse:
    """
    Check API health and connectivity.

    Always answers 200; `status` is "degraded" when the store or RPC is down.
    """
    database_ok = _store.ping() if _store else False
    chain_ok = await _chain.check_connectivity() if _chain else False

    listener_status = ListenerStatus(enabled=_listener is not None)
    if _listener:
        listener_status = ListenerStatus(
            enabled=True,
            running=_listener.state.is_running,
            cycles=_listener.state.cycles,
            requests_settled=_listener.state.requests_settled,
            errors=_listener.state.errors,
            last_poll_time=_listener.state.last_poll_time,
        )

    return HealthResponse(
        status="ok" if (database_ok and chain_ok) else "degraded",
        version=__version__,
        database=database_ok,
        chain_rpc=chain_ok,
        chain_id=settings.chain_id,
        token_address=settings.token_address,
        listener=listener_status,
    )


# ============================================================================
# Payment Requests
# ============================================================================


@app.post(
    "/payment-requests",
    response_model=PaymentRequestResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(verify_api_token)],
)
def create_payment_request(
    request: CreatePaymentRequest,
    store: PaymentRequestStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> PaymentRequestResponse:
    """
    Create an open payment request.

    The requester is paid by any ERC-20 transfer of a matching amount to
    `requester_address`; the settlement listener records it.
    """
    if request.amount < settings.min_request_amount:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Amount must be at least {settings.min_request_amount}",
        )

    record = store.create(
        requester_address=Web3.to_checksum_address(request.requester_address),
        amount=request.amount,
        token_address=Web3.to_checksum_address(request.token_address),
        chain_id=request.chain_id,
        chain_name=request.chain_name,
        token_symbol=request.token_symbol,
        caption=request.caption,
    )
    return PaymentRequestResponse.from_record(record)


@app.get("/payment-requests", response_model=list[PaymentRequestResponse])
def list_payment_requests(
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    requester: Optional[str] = Query(None, description="Requester address"),
    requester_address: Optional[str] = Query(None, description="Alias of requester"),
    limit: Optional[int] = Query(None, ge=1),
    store: PaymentRequestStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> list[PaymentRequestResponse]:
    """
    List payment requests, newest first.

    Cancelled requests are only returned when asked for with status=cancelled.
    """
    limit = min(limit or settings.list_limit_default, settings.list_limit_max)
    records = store.list_requests(
        status=status_filter,
        requester=requester or requester_address,
        limit=limit,
    )
    return [PaymentRequestResponse.from_record(record) for record in records]


@app.get("/payment-requests/{request_id}", response_model=PaymentRequestResponse)
def get_payment_request(
    request_id: uuid.UUID,
    store: PaymentRequestStore = Depends(get_store),
) -> PaymentRequestResponse:
    """Get one payment request by id."""
    try:
        record = store.get(str(request_id))
    except PaymentRequestNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return PaymentRequestResponse.from_record(record)


def _cancel(request_id: uuid.UUID, store: PaymentRequestStore) -> PaymentRequestResponse:
    try:
        record = store.cancel(str(request_id))
    except PaymentRequestNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PaymentRequestConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return PaymentRequestResponse.from_record(record)


@app.delete(
    "/payment-requests/{request_id}",
    response_model=PaymentRequestResponse,
    dependencies=[Depends(verify_api_token)],
)
def cancel_payment_request(
    request_id: uuid.UUID,
    store: PaymentRequestStore = Depends(get_store),
) -> PaymentRequestResponse:
    """
    Cancel an open payment request.

    Paid or already cancelled requests are rejected with 409 and left unchanged.
    """
    return _cancel(request_id, store)


@app.patch(
    "/payment-requests/{request_id}/cancel",
    response_model=PaymentRequestResponse,
    dependencies=[Depends(verify_api_token)],
)
def cancel_payment_request_compat(
    request_id: uuid.UUID,
    store: PaymentRequestStore = Depends(get_store),
) -> PaymentRequestResponse:
    """Same as DELETE /payment-requests/{id}; kept for older frontends."""
    return _cancel(request_id, store)


# ============================================================================
# Entry Point
# ============================================================================


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    uvicorn.run(
        "blockbook.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
