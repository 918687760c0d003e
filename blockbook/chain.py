"""
Chain RPC client for reading ERC-20 Transfer logs.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

import structlog
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

logger = structlog.get_logger()

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


class ChainClientError(Exception):
    """Error from a chain RPC call (including timeouts)."""

    def __init__(self, method: str, message: str):
        self.method = method
        self.message = message
        super().__init__(f"RPC {method} failed: {message}")


@dataclass
class TransferEvent:
    """A decoded ERC-20 Transfer log."""

    tx_hash: str
    block_number: int
    log_index: int
    from_address: str
    to_address: str
    value: int  # raw token base units


def to_token_units(raw: int, decimals: int) -> Decimal:
    """
    Convert raw base units to a token amount.

    Examples:
        >>> to_token_units(50_005_000, 6)
        Decimal('50.005000')
    """
    return Decimal(raw).scaleb(-decimals)


def address_topic(address: str) -> str:
    """Left-pad an address to a 32-byte log topic."""
    return "0x" + "0" * 24 + address.lower().removeprefix("0x")


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return bytes.fromhex(str(value).removeprefix("0x"))


def _hex(value: Any) -> str:
    """0x-prefixed hex for HexBytes/bytes/str values."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    value = str(value)
    return value if value.startswith("0x") else f"0x{value}"


def decode_transfer_log(log: Any) -> TransferEvent:
    """Decode a Transfer log returned by eth_getLogs."""
    topics = log["topics"]
    if len(topics) < 3:
        raise ValueError("Not an ERC-20 Transfer log (missing indexed topics)")

    data = _as_bytes(log["data"])
    return TransferEvent(
        tx_hash=_hex(log["transactionHash"]),
        block_number=int(log["blockNumber"]),
        log_index=int(log["logIndex"]),
        from_address=Web3.to_checksum_address("0x" + _as_bytes(topics[1])[-20:].hex()),
        to_address=Web3.to_checksum_address("0x" + _as_bytes(topics[2])[-20:].hex()),
        value=int.from_bytes(data[:32], "big") if data else 0,
    )


class ChainClient:
    """
    Async client for one ERC-20 token contract.
    """

    def __init__(self, rpc_url: str, token_address: str, timeout: float = 30.0):
        self.rpc_url = rpc_url
        self.token_address = Web3.to_checksum_address(token_address)
        self.w3 = AsyncWeb3(
            AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout})
        )

    async def check_connectivity(self) -> bool:
        """Check if the RPC endpoint is reachable."""
        try:
            await self.w3.eth.block_number
            return True
        except Exception:
            return False

    async def get_block_number(self) -> int:
        """Get the current head block."""
        try:
            return await self.w3.eth.block_number
        except Exception as e:
            raise ChainClientError("eth_blockNumber", str(e)) from e

    async def get_transfers_to(
        self, recipient: str, from_block: int, to_block: int
    ) -> list[TransferEvent]:
        """Transfers of the token to `recipient` within [from_block, to_block]."""
        params = {
            "address": self.token_address,
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": [TRANSFER_TOPIC, None, address_topic(recipient)],
        }
        try:
            logs = await self.w3.eth.get_logs(params)
        except Exception as e:
            raise ChainClientError("eth_getLogs", str(e)) from e

        events = [decode_transfer_log(log) for log in logs]
        logger.debug(
            "transfer_logs_fetched",
            recipient=recipient,
            from_block=from_block,
            to_block=to_block,
            count=len(events),
        )
        return events


class MockChainClient:
    """
    In-memory chain client for testing without an RPC endpoint.
    """

    def __init__(self, head: int = 1_000_000) -> None:
        self.head = head
        self._transfers: list[TransferEvent] = []
        self._failing: dict[str, str] = {}
        self.queries: list[tuple[str, int, int]] = []

    def add_transfer(
        self,
        to_address: str,
        value: int,
        from_address: str = "0x000000000000000000000000000000000000dEaD",
        tx_hash: Optional[str] = None,
        block_number: Optional[int] = None,
    ) -> TransferEvent:
        """Add a mock Transfer log."""
        index = len(self._transfers)
        event = TransferEvent(
            tx_hash=tx_hash or "0x" + f"{index + 1:064x}",
            block_number=self.head if block_number is None else block_number,
            log_index=index,
            from_address=Web3.to_checksum_address(from_address),
            to_address=Web3.to_checksum_address(to_address),
            value=value,
        )
        self._transfers.append(event)
        return event

    def fail_for(self, recipient: str, message: str = "request timed out") -> None:
        """Make queries for `recipient` raise ChainClientError."""
        self._failing[recipient.lower()] = message

    async def check_connectivity(self) -> bool:
        return True

    async def get_block_number(self) -> int:
        return self.head

    async def get_transfers_to(
        self, recipient: str, from_block: int, to_block: int
    ) -> list[TransferEvent]:
        self.queries.append((recipient, from_block, to_block))
        if recipient.lower() in self._failing:
            raise ChainClientError("eth_getLogs", self._failing[recipient.lower()])
        return [
            event
            for event in self._transfers
            if event.to_address.lower() == recipient.lower()
            and from_block <= event.block_number <= to_block
        ]
