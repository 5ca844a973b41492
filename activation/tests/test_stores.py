"""
Unit Tests for the user and ledger stores

Tests cover:
1. In-memory compare-and-swap activation
2. Ledger reference uniqueness
3. Supabase REST requests and error mapping
"""

import json
import pytest
import httpx
from decimal import Decimal
from pydantic import ValidationError

from activation.models import EntryType, LedgerEntry, UserAccount
from activation.storage import (
    DuplicateReferenceError,
    InMemoryLedgerStore,
    InMemoryUserStore,
    StoreError,
)
from activation.supabase import SupabaseClient, SupabaseLedgerStore, SupabaseUserStore


USER_ID = "660e8400-e29b-41d4-a716-446655440001"


def unpaid_user(**overrides) -> UserAccount:
    fields = {"id": USER_ID, "balance": Decimal("10.00"), "total_earned": Decimal("20.00")}
    fields.update(overrides)
    return UserAccount(**fields)


def payment_entry(reference="T685312345678901") -> LedgerEntry:
    return LedgerEntry(
        user_id=USER_ID,
        entry_type=EntryType.PAYMENT,
        amount=Decimal("15.00"),
        description="Account activation payment",
        reference=reference,
        gateway_reference=reference,
    )


def supabase(handler) -> SupabaseClient:
    return SupabaseClient(
        "https://project.supabase.test",
        "service-role-key",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


class TestInMemoryUserStore:
    """Tests for the in-memory user store."""

    def test_activation_applies_deltas(self):
        store = InMemoryUserStore(users=[unpaid_user()])

        updated = store.update_user_payment_status(
            store.get_user(USER_ID), True, Decimal("3.00"), Decimal("3.00"),
        )

        assert updated.is_paid is True
        assert updated.balance == Decimal("13.00")
        assert updated.total_earned == Decimal("23.00")

    def test_stale_snapshot_does_not_match(self):
        """Test that a second update from the same read is rejected."""
        store = InMemoryUserStore(users=[unpaid_user()])
        snapshot = store.get_user(USER_ID)

        assert store.update_user_payment_status(snapshot, True, Decimal("3.00"), Decimal("3.00")) is not None
        assert store.update_user_payment_status(snapshot, True, Decimal("3.00"), Decimal("3.00")) is None
        assert store.get_user(USER_ID).balance == Decimal("13.00")

    def test_unknown_user(self):
        store = InMemoryUserStore()

        assert store.get_user("nobody") is None
        assert store.update_user_payment_status(unpaid_user(id="nobody"), True, Decimal("3"), Decimal("3")) is None

    def test_seed_data(self):
        store = InMemoryUserStore(seed=True)

        assert store.get_user("550e8400-e29b-41d4-a716-446655440000").is_paid is True
        assert store.get_user(USER_ID).is_paid is False


class TestInMemoryLedgerStore:
    """Tests for the in-memory ledger."""

    def test_append_sets_created_at(self):
        ledger = InMemoryLedgerStore()

        stored = ledger.append_entry(payment_entry())

        assert stored.created_at is not None
        assert ledger.entries_for_user(USER_ID) == [stored]

    def test_duplicate_reference_rejected(self):
        ledger = InMemoryLedgerStore()
        ledger.append_entry(payment_entry())

        with pytest.raises(DuplicateReferenceError):
            ledger.append_entry(payment_entry())
        assert len(ledger.entries) == 1

    def test_get_entry_by_reference(self):
        ledger = InMemoryLedgerStore()
        ledger.append_entry(payment_entry())

        assert ledger.get_entry("T685312345678901").user_id == USER_ID
        assert ledger.get_entry("unknown") is None

    def test_entries_are_immutable(self):
        entry = payment_entry()

        with pytest.raises(ValidationError):
            entry.amount = Decimal("1.00")

    def test_non_positive_amount_rejected(self):
        with pytest.raises(ValidationError):
            LedgerEntry(
                user_id=USER_ID, entry_type=EntryType.BONUS, amount=Decimal("0.00"),
                description="Welcome bonus for account activation", reference="WELCOME-x-1",
            )


class TestSupabaseUserStore:
    """Tests for the PostgREST user store."""

    def test_get_user(self):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json=[{
                "id": USER_ID, "email": "new@example.com", "is_paid": False,
                "balance": None, "total_earned": 20,
            }])

        account = SupabaseUserStore(supabase(handler)).get_user(USER_ID)

        request = seen["request"]
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/users"
        assert request.url.params["id"] == f"eq.{USER_ID}"
        assert request.headers["apikey"] == "service-role-key"
        assert request.headers["Authorization"] == "Bearer service-role-key"
        assert account.balance == Decimal("0.00")
        assert account.total_earned == Decimal("20")
        assert account.is_paid is False

    def test_get_missing_user(self):
        store = SupabaseUserStore(supabase(lambda request: httpx.Response(200, json=[])))

        assert store.get_user(USER_ID) is None

    def test_get_user_with_malformed_id(self):
        def handler(request):
            return httpx.Response(400, json={"code": "22P02", "message": "invalid input syntax for type uuid"})

        assert SupabaseUserStore(supabase(handler)).get_user("not-a-uuid") is None

    def test_get_user_error(self):
        def handler(request):
            return httpx.Response(500, json={"message": "database is starting up"})

        with pytest.raises(StoreError, match="database is starting up"):
            SupabaseUserStore(supabase(handler)).get_user(USER_ID)

    def test_conditional_update(self):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json=[{
                "id": USER_ID, "email": None, "is_paid": True, "balance": 13.0, "total_earned": 23.0,
            }])

        updated = SupabaseUserStore(supabase(handler)).update_user_payment_status(
            unpaid_user(), True, Decimal("3.00"), Decimal("3.00"),
        )

        request = seen["request"]
        assert request.method == "PATCH"
        assert request.headers["Prefer"] == "return=representation"
        assert request.url.params["id"] == f"eq.{USER_ID}"
        assert request.url.params["and"] == (
            "(or(is_paid.is.null,is_paid.is.false),balance.eq.10.00,total_earned.eq.20.00)"
        )
        assert json.loads(request.content) == {"is_paid": True, "balance": 13.0, "total_earned": 23.0}
        assert updated.is_paid is True
        assert updated.balance == Decimal("13.0")

    def test_zero_balance_matches_null(self):
        seen = {}

        def handler(request):
            seen["and"] = request.url.params["and"]
            return httpx.Response(200, json=[])

        result = SupabaseUserStore(supabase(handler)).update_user_payment_status(
            unpaid_user(balance=Decimal("0.00"), total_earned=Decimal("0.00")),
            True, Decimal("3.00"), Decimal("3.00"),
        )

        assert result is None
        assert "or(balance.is.null,balance.eq.0)" in seen["and"]
        assert "or(total_earned.is.null,total_earned.eq.0)" in seen["and"]

    def test_update_error(self):
        def handler(request):
            return httpx.Response(503, json={"message": "upstream connect error"})

        with pytest.raises(StoreError):
            SupabaseUserStore(supabase(handler)).update_user_payment_status(
                unpaid_user(), True, Decimal("3.00"), Decimal("3.00"),
            )

    def test_transport_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(StoreError, match="timed out"):
            SupabaseUserStore(supabase(handler)).get_user(USER_ID)


class TestSupabaseLedgerStore:
    """Tests for the PostgREST ledger store."""

    def test_append_entry(self):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(201)

        SupabaseLedgerStore(supabase(handler)).append_entry(payment_entry())

        request = seen["request"]
        assert request.method == "POST"
        assert request.url.path == "/rest/v1/transactions"
        assert json.loads(request.content) == {
            "user_id": USER_ID,
            "type": "payment",
            "amount": 15.0,
            "description": "Account activation payment",
            "reference": "T685312345678901",
            "paystack_reference": "T685312345678901",
            "status": "completed",
        }

    def test_duplicate_reference(self):
        def handler(request):
            return httpx.Response(409, json={
                "code": "23505",
                "message": 'duplicate key value violates unique constraint "transactions_reference_key"',
            })

        with pytest.raises(DuplicateReferenceError):
            SupabaseLedgerStore(supabase(handler)).append_entry(payment_entry())

    def test_insert_error(self):
        def handler(request):
            return httpx.Response(500, text="internal error")

        with pytest.raises(StoreError) as exc_info:
            SupabaseLedgerStore(supabase(handler)).append_entry(payment_entry())
        assert not isinstance(exc_info.value, DuplicateReferenceError)

    def test_get_entry(self):
        """Test that a claimed reference is read back with its owner."""
        seen = {}

        def handler(request):
            seen["params"] = request.url.params
            return httpx.Response(200, json=[{
                "user_id": USER_ID, "type": "payment", "amount": 15, "description": "Account activation payment",
                "reference": "T685312345678901", "status": "completed", "paystack_reference": "T685312345678901",
            }])

        entry = SupabaseLedgerStore(supabase(handler)).get_entry("T685312345678901")

        assert seen["params"]["reference"] == "eq.T685312345678901"
        assert entry.user_id == USER_ID
        assert entry.entry_type == EntryType.PAYMENT
        assert entry.amount == Decimal("15")

    def test_get_missing_entry(self):
        store = SupabaseLedgerStore(supabase(lambda request: httpx.Response(200, json=[])))

        assert store.get_entry("unknown") is None

    def test_get_entry_error(self):
        def handler(request):
            return httpx.Response(500, json={"message": "database is starting up"})

        with pytest.raises(StoreError):
            SupabaseLedgerStore(supabase(handler)).get_entry("T685312345678901")

    def test_close_shares_one_client(self):
        """Test that closing either store closes the shared HTTP client."""
        client = supabase(lambda request: httpx.Response(200, json=[]))
        users = SupabaseUserStore(client)
        ledger = SupabaseLedgerStore(client)

        users.close()
        ledger.close()

        assert client.client.is_closed
