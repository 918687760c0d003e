"""
Shared fixtures for Blockbook tests.
"""

from decimal import Decimal

import pytest

from blockbook.chain import MockChainClient
from blockbook.config import BASE_USDC_ADDRESS
from blockbook.db import PaymentRequestStore
from blockbook.listener import SettlementListener


REQUESTER_A = "0x1111111111111111111111111111111111111111"
REQUESTER_B = "0x2222222222222222222222222222222222222222"
PAYER = "0x9999999999999999999999999999999999999999"


@pytest.fixture
def store(tmp_path):
    """File-backed SQLite store, fresh per test."""
    store = PaymentRequestStore(f"sqlite:///{tmp_path / 'requests.db'}")
    yield store
    store.close()


@pytest.fixture
def mock_chain() -> MockChainClient:
    return MockChainClient(head=5_000)


@pytest.fixture
def listener(store: PaymentRequestStore, mock_chain: MockChainClient) -> SettlementListener:
    return SettlementListener(
        store=store,
        chain=mock_chain,
        chain_id="8453",
        token_address=BASE_USDC_ADDRESS,
        token_decimals=6,
        block_window=1000,
        tolerance=Decimal("0.01"),
        poll_interval_seconds=0.01,
    )


def create_usdc_request(store: PaymentRequestStore, requester: str, amount: str, **kwargs):
    """Open a USDC-on-Base request."""
    params = dict(
        requester_address=requester,
        amount=Decimal(amount),
        token_address=BASE_USDC_ADDRESS,
        chain_id="8453",
        chain_name="Base",
    )
    params.update(kwargs)
    return store.create(**params)
