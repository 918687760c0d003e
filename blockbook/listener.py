"""
Settlement listener - watches Transfer logs and settles open payment requests.

Each cycle:
1. Loads open requests for the configured (chain, token) pair
2. Reads Transfer logs to each requester over the last BLOCK_WINDOW blocks
3. Marks the request paid on the first transfer within tolerance

Best-effort reconciliation: transfers older than the window are never seen,
and scan progress is not persisted.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol

import structlog

from .chain import ChainClient, TransferEvent, to_token_units
from .config import Settings
from .db import PaymentRequest, PaymentRequestStore, utcnow

logger = structlog.get_logger()


class TransferSource(Protocol):
    """What the listener needs from a chain client."""

    async def get_block_number(self) -> int: ...

    async def get_transfers_to(
        self, recipient: str, from_block: int, to_block: int
    ) -> list[TransferEvent]: ...


def amount_matches(requested: Decimal, observed: Decimal, tolerance: Decimal) -> bool:
    """True if `observed` is within an absolute `tolerance` of `requested`."""
    return abs(observed - requested) <= tolerance


@dataclass
class SettlementResult:
    """Outcome of matching one transfer against one request."""

    request_id: str
    tx_hash: str
    paid_by: str
    amount: Decimal
    settled: bool  # False if the request stopped being open before the write


@dataclass
class ListenerState:
    """Current listener state."""

    is_running: bool = False
    cycles: int = 0
    last_poll_time: Optional[datetime] = None
    requests_settled: int = 0
    errors: int = 0


class SettlementListener:
    """
    Polls the chain for transfers that settle open payment requests.
    """

    def __init__(
        self,
        store: PaymentRequestStore,
        chain: TransferSource,
        chain_id: str,
        token_address: str,
        token_decimals: int = 6,
        block_window: int = 1000,
        tolerance: Decimal = Decimal("0.01"),
        poll_interval_seconds: float = 30.0,
    ):
        self.store = store
        self.chain = chain
        self.chain_id = str(chain_id)
        self.token_address = token_address
        self.token_decimals = token_decimals
        self.block_window = block_window
        self.tolerance = tolerance
        self.poll_interval_seconds = poll_interval_seconds
        self.state = ListenerState()
        self._task: Optional[asyncio.Task] = None

        logger.info(
            "listener_initialized",
            chain_id=self.chain_id,
            token=token_address,
            block_window=block_window,
            tolerance=str(tolerance),
            poll_interval=poll_interval_seconds,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: PaymentRequestStore,
        chain: Optional[TransferSource] = None,
    ) -> "SettlementListener":
        """Build a listener (and, by default, a real chain client) from settings."""
        chain = chain or ChainClient(
            settings.rpc_url,
            settings.token_address,
            timeout=settings.rpc_timeout_seconds,
        )
        return cls(
            store=store,
            chain=chain,
            chain_id=settings.chain_id,
            token_address=settings.token_address,
            token_decimals=settings.token_decimals,
            block_window=settings.block_window,
            tolerance=settings.amount_tolerance,
            poll_interval_seconds=settings.poll_interval_seconds,
        )

    async def run_once(self) -> list[SettlementResult]:
        """
        Run one settlement cycle over all open requests.

        A failure for one request is logged and does not stop the others;
        it is retried on the next cycle.
        """
        results: list[SettlementResult] = []
        open_requests = self.store.list_open(self.chain_id, self.token_address)

        if open_requests:
            logger.info("checking_open_requests", count=len(open_requests))

        for request in open_requests:
            try:
                result = await self._check_request(request)
            except Exception as e:
                self.state.errors += 1
                logger.error(
                    "request_check_error",
                    request_id=request.id,
                    requester=request.requester_address,
                    error=str(e),
                )
                continue

            if result is not None:
                results.append(result)
                if result.settled:
                    self.state.requests_settled += 1

        self.state.cycles += 1
        self.state.last_poll_time = utcnow()
        return results

    async def _check_request(self, request: PaymentRequest) -> Optional[SettlementResult]:
        """Look for a matching transfer to one requester and settle on the first hit."""
        head = await self.chain.get_block_number()
        from_block = max(head - self.block_window, 0)

        events = await self.chain.get_transfers_to(
            request.requester_address, from_block, head
        )

        for event in events:
            if event.to_address.lower() != request.requester_address.lower():
                continue

            amount = to_token_units(event.value, self.token_decimals)
            if not amount_matches(request.amount, amount, self.tolerance):
                logger.debug(
                    "transfer_amount_mismatch",
                    request_id=request.id,
                    requested=str(request.amount),
                    observed=str(amount),
                    tx_hash=event.tx_hash,
                )
                continue

            updated = self.store.mark_paid(request.id, event.from_address, event.tx_hash)
            if updated is None:
                logger.info(
                    "settlement_skipped_not_open",
                    request_id=request.id,
                    tx_hash=event.tx_hash,
                )
            else:
                logger.info(
                    "payment_detected",
                    request_id=request.id,
                    amount=str(amount),
                    paid_by=event.from_address,
                    tx_hash=event.tx_hash,
                )

            return SettlementResult(
                request_id=request.id,
                tx_hash=event.tx_hash,
                paid_by=event.from_address,
                amount=amount,
                settled=updated is not None,
            )

        return None

    async def run(self) -> None:
        """Run the listener continuously until stop() is called."""
        self.state.is_running = True
        logger.info("listener_starting", poll_interval=self.poll_interval_seconds)

        while self.state.is_running:
            try:
                results = await self.run_once()
                logger.info(
                    "poll_cycle_complete",
                    cycle=self.state.cycles,
                    settled=sum(1 for r in results if r.settled),
                    total_settled=self.state.requests_settled,
                )
            except Exception as e:
                self.state.errors += 1
                logger.error("poll_cycle_error", error=str(e))

            await asyncio.sleep(self.poll_interval_seconds)

    def stop(self) -> None:
        """Stop the listener after the current cycle."""
        self.state.is_running = False
        logger.info("listener_stopping")

    def start(self) -> asyncio.Task:
        """Run the listener as a background task on the current event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="settlement-listener")
        return self._task

    async def aclose(self) -> None:
        """Stop the loop and wait for the background task to finish."""
        self.stop()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
