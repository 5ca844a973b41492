from decimal import Decimal

import pytest

from activation.errors import GatewayUnavailableError
from activation.models import GatewayTransaction, UserAccount
from activation.service import ConfirmationService
from activation.storage import InMemoryLedgerStore, InMemoryUserStore, StoreError


USER_ID = "660e8400-e29b-41d4-a716-446655440001"
FIXED_NOW = 1700000000.0


class FakeGateway:
    def __init__(self, status: str = "success", amount: Decimal = Decimal("15.00")):
        self.status = status
        self.amount = amount
        self.error = None
        self.calls = []

    def verify_transaction(self, reference: str) -> GatewayTransaction:
        self.calls.append(reference)
        if self.error:
            raise self.error
        return GatewayTransaction(reference=reference, status=self.status, amount=self.amount, currency="NGN")


class RecordingUserStore(InMemoryUserStore):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.reads = 0
        self.writes = 0
        self.fail_updates = False

    def get_user(self, user_id):
        self.reads += 1
        return super().get_user(user_id)

    def update_user_payment_status(self, account, is_paid, balance_delta, total_earned_delta):
        self.writes += 1
        if self.fail_updates:
            raise StoreError("connection reset")
        return super().update_user_payment_status(account, is_paid, balance_delta, total_earned_delta)


class FlakyLedgerStore(InMemoryLedgerStore):
    def __init__(self):
        super().__init__()
        self.fail_appends = False
        self.attempts = 0

    def append_entry(self, entry):
        self.attempts += 1
        if self.fail_appends:
            raise StoreError("insert timed out")
        return super().append_entry(entry)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def users():
    return RecordingUserStore(users=[
        UserAccount(
            id=USER_ID,
            email="new@example.com",
            is_paid=False,
            balance=Decimal("10.00"),
            total_earned=Decimal("20.00"),
        ),
    ])


@pytest.fixture
def ledger():
    return FlakyLedgerStore()


@pytest.fixture
def service(gateway, users, ledger):
    return ConfirmationService(gateway, users, ledger, clock=lambda: FIXED_NOW)


@pytest.fixture
def gateway_down(gateway):
    gateway.error = GatewayUnavailableError("Could not reach payment gateway: connection refused")
    return gateway
