"""
Pydantic models for API requests and responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .db import PaymentRequest, RequestStatus


ADDRESS_PATTERN = r"^0x[0-9a-fA-F]{40}$"


# ============================================================================
# Create Payment Request
# ============================================================================

class CreatePaymentRequest(BaseModel):
    """Request to create a payment request."""

    # The frontend posts camelCase keys; snake_case is accepted too.
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        json_schema_extra={
            "examples": [
                {
                    "requesterAddress": "0x1234567890abcdef1234567890abcdef12345678",
                    "amount": "50",
                    "tokenSymbol": "USDC",
                    "tokenAddress": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
                    "chainId": 8453,
                    "chainName": "Base",
                    "caption": "dinner",
                }
            ]
        },
    )

    requester_address: str = Field(..., pattern=ADDRESS_PATTERN, description="Requester EVM address (0x...)")
    amount: Decimal = Field(..., gt=0, max_digits=20, decimal_places=6, description="Requested token amount")
    token_address: str = Field(..., pattern=ADDRESS_PATTERN, description="ERC-20 contract address (0x...)")
    chain_id: str = Field(..., min_length=1, max_length=50, description="Chain id (e.g. 8453)")
    chain_name: str = Field(..., min_length=1, max_length=50, description="Human chain name")
    token_symbol: str = Field("USDC", min_length=1, max_length=10, description="Token symbol")
    caption: Optional[str] = Field(None, max_length=500, description="Optional note shown to the payer")

    @field_validator("chain_id", mode="before")
    @classmethod
    def _chain_id_to_str(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("caption")
    @classmethod
    def _empty_caption_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None


# ============================================================================
# Payment Request
# ============================================================================

class PaymentRequestResponse(BaseModel):
    """A payment request as stored."""

    id: str = Field(..., description="Request id (UUID)")
    requester_address: str = Field(..., description="Address that receives the payment")
    amount: Decimal = Field(..., description="Requested token amount")
    token_symbol: str
    token_address: str
    chain_id: str
    chain_name: str
    caption: Optional[str] = None
    status: RequestStatus = Field(..., description="open, paid or cancelled")
    paid_by: Optional[str] = Field(None, description="Payer address once paid")
    tx_hash: Optional[str] = Field(None, description="Settling transaction hash once paid")
    created_at: datetime
    paid_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: PaymentRequest) -> "PaymentRequestResponse":
        return cls(
            id=record.id,
            requester_address=record.requester_address,
            amount=record.amount,
            token_symbol=record.token_symbol,
            token_address=record.token_address,
            chain_id=record.chain_id,
            chain_name=record.chain_name,
            caption=record.caption,
            status=record.status,
            paid_by=record.paid_by,
            tx_hash=record.tx_hash,
            created_at=record.created_at,
            paid_at=record.paid_at,
        )


# ============================================================================
# Health Check
# ============================================================================

class ListenerStatus(BaseModel):
    """Settlement listener status."""

    enabled: bool
    running: bool = False
    cycles: int = 0
    requests_settled: int = 0
    errors: int = 0
    last_poll_time: Optional[datetime] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="ok or degraded")
    version: str = Field(..., description="API version")
    database: bool = Field(..., description="Request store connectivity")
    chain_rpc: bool = Field(..., description="Chain RPC connectivity")
    chain_id: str
    token_address: str
    listener: ListenerStatus
