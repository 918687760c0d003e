"""
Configuration for the Blockbook payments backend.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional
from urllib.parse import urlparse

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# USDC on Base mainnet
BASE_USDC_ADDRESS = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"


class Settings(BaseSettings):
    """
    Backend configuration settings.

    All settings can be overridden via environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API Server
    # WARNING: If using host="0.0.0.0" (externally accessible), set API_TOKEN.
    host: str = Field(
        default="127.0.0.1",
        description="API host (127.0.0.1 for local only, 0.0.0.0 for external - set API_TOKEN)",
    )
    port: int = Field(default=8000, description="API port")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Authentication
    # When API_TOKEN is set, mutating endpoints require the X-API-Key header.
    api_token: Optional[str] = Field(
        default=None,
        description="API token for create/cancel endpoints (REQUIRED for non-local use)",
    )
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:3001"],
        description="CORS allowed origins",
    )

    # Request store
    database_url: str = Field(
        default="sqlite:///./blockbook.db",
        description="SQLAlchemy database URL (sqlite:/// or postgresql://)",
    )

    # Chain
    rpc_url: str = Field(
        default="https://mainnet.base.org",
        description="JSON-RPC endpoint used to read Transfer logs",
    )
    rpc_timeout_seconds: float = Field(default=30.0, description="RPC request timeout")
    chain_id: str = Field(default="8453", description="Chain id the listener settles")
    chain_name: str = Field(default="Base", description="Human chain name")
    token_address: str = Field(
        default=BASE_USDC_ADDRESS,
        description="ERC-20 contract the listener watches",
    )
    token_symbol: str = Field(default="USDC", description="Symbol of the watched token")
    token_decimals: int = Field(default=6, ge=0, le=36, description="Decimals of the watched token")

    # Settlement listener
    listener_enabled: bool = Field(
        default=True,
        description="Run the settlement listener inside the API process",
    )
    poll_interval_seconds: float = Field(default=30.0, gt=0, description="Seconds between cycles")
    block_window: int = Field(
        default=1000,
        ge=1,
        description="How many recent blocks each cycle scans",
    )
    amount_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        ge=0,
        description="Absolute tolerance between requested and transferred amount",
    )

    # Request API
    min_request_amount: Decimal = Field(
        default=Decimal("0.000001"),
        gt=0,
        description="Smallest amount a request may ask for",
    )
    list_limit_default: int = Field(default=50, ge=1)
    list_limit_max: int = Field(default=200, ge=1)

    def missing_required(self) -> list[str]:
        """Names of required settings that are empty."""
        missing = []
        if not self.database_url:
            missing.append("DATABASE_URL")
        if self.listener_enabled:
            if not self.rpc_url:
                missing.append("RPC_URL")
            if not self.token_address:
                missing.append("TOKEN_ADDRESS")
        return missing

    def masked_database_url(self) -> str:
        """Database URL with the password replaced, for logs and CLI output."""
        parsed = urlparse(self.database_url)
        if parsed.password:
            return self.database_url.replace(parsed.password, "***")
        return self.database_url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
