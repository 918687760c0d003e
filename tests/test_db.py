"""
Tests for the payment request store.
"""

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import text

from blockbook.config import BASE_USDC_ADDRESS
from blockbook.db import PaymentRequestStore, RequestStatus, parse_database_url
from blockbook.errors import PaymentRequestConflict, PaymentRequestNotFound

from conftest import PAYER, REQUESTER_A, REQUESTER_B, create_usdc_request


TX_HASH = "0x" + "ab" * 32


class TestParseDatabaseUrl:
    """Tests for DATABASE_URL normalization."""

    def test_sqlite_url_unchanged(self):
        assert parse_database_url("sqlite:///./blockbook.db") == "sqlite:///./blockbook.db"

    def test_plain_path_becomes_sqlite(self):
        assert parse_database_url("data/requests.db") == "sqlite:///data/requests.db"

    def test_postgres_scheme_rewritten(self):
        """Hosted providers hand out postgres://, SQLAlchemy wants postgresql://."""
        url = parse_database_url("postgres://user:pw@db.example.com:5432/app")
        assert url == "postgresql://user:pw@db.example.com:5432/app"


class TestCreate:
    """Tests for creating requests."""

    def test_create_returns_open_request(self, store):
        record = create_usdc_request(store, REQUESTER_A, "50", caption="dinner")

        assert len(record.id) == 36
        assert record.status == RequestStatus.OPEN
        assert record.is_open
        assert record.amount == Decimal("50")
        assert record.requester_address == REQUESTER_A
        assert record.token_symbol == "USDC"
        assert record.token_address == BASE_USDC_ADDRESS
        assert record.chain_id == "8453"
        assert record.chain_name == "Base"
        assert record.caption == "dinner"
        assert record.paid_by is None
        assert record.tx_hash is None
        assert record.paid_at is None
        assert isinstance(record.created_at, datetime)

    def test_ids_are_unique(self, store):
        first = create_usdc_request(store, REQUESTER_A, "1")
        second = create_usdc_request(store, REQUESTER_A, "1")
        assert first.id != second.id

    def test_amount_keeps_six_decimals(self, store):
        record = create_usdc_request(store, REQUESTER_A, "0.000001")
        assert store.get(record.id).amount == Decimal("0.000001")

    def test_largest_amount_round_trips_exactly(self, store):
        """20 digits, 6 after the point: no float rounding on any backend."""
        record = create_usdc_request(store, REQUESTER_A, "99999999999999.999999")
        assert store.get(record.id).amount == Decimal("99999999999999.999999")

    def test_fourteen_digit_amount_round_trips_exactly(self, store):
        record = create_usdc_request(store, REQUESTER_A, "12345678901234.123456")
        assert store.get(record.id).amount == Decimal("12345678901234.123456")

    def test_amount_stored_at_fixed_scale(self, store):
        record = create_usdc_request(store, REQUESTER_A, "1.5")
        with store._get_engine().connect() as conn:
            stored = conn.execute(
                text("SELECT amount FROM payment_requests WHERE id = :id"), {"id": record.id}
            ).scalar_one()
        assert stored == "1.500000"

    def test_non_evm_chain_id(self, store):
        """chain_id is stored as text."""
        record = create_usdc_request(store, REQUESTER_A, "5", chain_id="solana", chain_name="Solana")
        assert store.get(record.id).chain_id == "solana"


class TestGet:
    """Tests for fetching one request."""

    def test_get_unknown_raises(self, store):
        with pytest.raises(PaymentRequestNotFound) as exc_info:
            store.get("00000000-0000-0000-0000-000000000000")
        assert exc_info.value.request_id == "00000000-0000-0000-0000-000000000000"


class TestListRequests:
    """Tests for listing requests."""

    def test_newest_first(self, store):
        first = create_usdc_request(store, REQUESTER_A, "1")
        second = create_usdc_request(store, REQUESTER_A, "2")
        third = create_usdc_request(store, REQUESTER_A, "3")

        ids = [r.id for r in store.list_requests()]
        assert ids == [third.id, second.id, first.id]

    def test_filter_by_requester_case_insensitive(self, store):
        mixed = "0xAbCdEf0000000000000000000000000000000001"
        mine = create_usdc_request(store, mixed, "1")
        create_usdc_request(store, REQUESTER_B, "2")

        records = store.list_requests(requester=mixed.lower())
        assert [r.id for r in records] == [mine.id]

    def test_filter_by_status(self, store):
        open_request = create_usdc_request(store, REQUESTER_A, "1")
        paid = create_usdc_request(store, REQUESTER_A, "2")
        store.mark_paid(paid.id, PAYER, TX_HASH)

        assert [r.id for r in store.list_requests(status=RequestStatus.PAID)] == [paid.id]
        assert [r.id for r in store.list_requests(status=RequestStatus.OPEN)] == [open_request.id]

    def test_cancelled_hidden_unless_requested(self, store):
        kept = create_usdc_request(store, REQUESTER_A, "1")
        cancelled = create_usdc_request(store, REQUESTER_A, "2")
        store.cancel(cancelled.id)

        assert [r.id for r in store.list_requests()] == [kept.id]
        assert [r.id for r in store.list_requests(status=RequestStatus.CANCELLED)] == [cancelled.id]

    def test_same_timestamp_order_is_stable(self, store, monkeypatch):
        """Ties on created_at fall back to id, newest-first and repeatable."""
        monkeypatch.setattr("blockbook.db.utcnow", lambda: datetime(2024, 5, 1, 12, 0, 0))
        records = [create_usdc_request(store, REQUESTER_A, "1") for _ in range(4)]
        expected = sorted((r.id for r in records), reverse=True)

        assert [r.id for r in store.list_requests()] == expected
        assert [r.id for r in store.list_open("8453", BASE_USDC_ADDRESS)] == expected

    def test_limit(self, store):
        for i in range(5):
            create_usdc_request(store, REQUESTER_A, str(i + 1))
        assert len(store.list_requests(limit=3)) == 3


class TestListOpen:
    """Tests for the listener's open request query."""

    def test_only_open_for_chain_and_token(self, store):
        wanted = create_usdc_request(store, REQUESTER_A, "1")
        create_usdc_request(store, REQUESTER_A, "1", chain_id="1", chain_name="Ethereum")
        create_usdc_request(
            store, REQUESTER_A, "1",
            token_address="0x0000000000000000000000000000000000000001",
        )
        paid = create_usdc_request(store, REQUESTER_A, "1")
        store.mark_paid(paid.id, PAYER, TX_HASH)

        records = store.list_open("8453", BASE_USDC_ADDRESS.lower())
        assert [r.id for r in records] == [wanted.id]


class TestCancel:
    """Tests for cancelling requests."""

    def test_cancel_open(self, store):
        record = create_usdc_request(store, REQUESTER_A, "10")
        cancelled = store.cancel(record.id)
        assert cancelled.status == RequestStatus.CANCELLED
        assert cancelled.paid_by is None

    def test_cancel_twice_conflicts(self, store):
        record = create_usdc_request(store, REQUESTER_A, "10")
        store.cancel(record.id)

        with pytest.raises(PaymentRequestConflict) as exc_info:
            store.cancel(record.id)
        assert exc_info.value.status == "cancelled"

    def test_cancel_paid_conflicts_and_keeps_payment(self, store):
        record = create_usdc_request(store, REQUESTER_A, "10")
        store.mark_paid(record.id, PAYER, TX_HASH)

        with pytest.raises(PaymentRequestConflict) as exc_info:
            store.cancel(record.id)
        assert exc_info.value.status == "paid"

        after = store.get(record.id)
        assert after.status == RequestStatus.PAID
        assert after.tx_hash == TX_HASH

    def test_cancel_unknown_raises(self, store):
        with pytest.raises(PaymentRequestNotFound):
            store.cancel("00000000-0000-0000-0000-000000000000")


class TestMarkPaid:
    """Tests for settling requests."""

    def test_mark_paid_sets_payment_fields(self, store):
        record = create_usdc_request(store, REQUESTER_A, "50")
        paid_at = datetime(2024, 5, 1, 12, 0, 0)

        paid = store.mark_paid(record.id, PAYER, TX_HASH, paid_at=paid_at)

        assert paid is not None
        assert paid.status == RequestStatus.PAID
        assert paid.paid_by == PAYER
        assert paid.tx_hash == TX_HASH
        assert paid.paid_at == paid_at

    def test_mark_paid_defaults_paid_at(self, store):
        record = create_usdc_request(store, REQUESTER_A, "50")
        paid = store.mark_paid(record.id, PAYER, TX_HASH)
        assert paid.paid_at is not None
        assert paid.paid_at >= record.created_at

    def test_second_settlement_is_ignored(self, store):
        """Payment fields never change once set."""
        record = create_usdc_request(store, REQUESTER_A, "50")
        store.mark_paid(record.id, PAYER, TX_HASH)

        assert store.mark_paid(record.id, REQUESTER_B, "0x" + "cd" * 32) is None

        after = store.get(record.id)
        assert after.paid_by == PAYER
        assert after.tx_hash == TX_HASH

    def test_cancelled_request_not_settled(self, store):
        record = create_usdc_request(store, REQUESTER_A, "50")
        store.cancel(record.id)

        assert store.mark_paid(record.id, PAYER, TX_HASH) is None
        assert store.get(record.id).status == RequestStatus.CANCELLED


class TestStoreHelpers:
    """Tests for ping and schema inspection."""

    def test_ping(self, store):
        assert store.ping() is True

    def test_table_columns(self, store):
        names = [name for name, _ in store.table_columns()]
        assert names[0] == "id"
        for column in ("requester_address", "amount", "status", "paid_by", "tx_hash", "created_at", "paid_at"):
            assert column in names

    def test_reopen_keeps_data(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'persist.db'}"
        first = PaymentRequestStore(url)
        record = create_usdc_request(first, REQUESTER_A, "7")
        first.close()

        second = PaymentRequestStore(url)
        try:
            assert second.get(record.id).amount == Decimal("7")
        finally:
            second.close()
