import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Protocol

from .models import LedgerEntry, UserAccount


class StoreError(Exception):
    pass


class DuplicateReferenceError(StoreError):
    pass


class UserStore(Protocol):
    def get_user(self, user_id: str) -> Optional[UserAccount]:
        ...

    def update_user_payment_status(
        self,
        account: UserAccount,
        is_paid: bool,
        balance_delta: Decimal,
        total_earned_delta: Decimal,
    ) -> Optional[UserAccount]:
        """Apply the deltas only if the stored record is still unpaid and matches
        ``account``. Returns the updated record, or None when nothing matched."""
        ...


class LedgerStore(Protocol):
    def append_entry(self, entry: LedgerEntry) -> LedgerEntry:
        ...

    def get_entry(self, reference: str) -> Optional[LedgerEntry]:
        ...


class InMemoryUserStore:
    def __init__(self, users: Optional[list[UserAccount]] = None, seed: bool = False):
        self._lock = threading.Lock()
        self.users: dict[str, dict] = {}
        for user in users or []:
            self.users[user.id] = user.model_dump()
        if seed:
            self._seed_data()

    def _seed_data(self):
        self.users["550e8400-e29b-41d4-a716-446655440000"] = {
            "id": "550e8400-e29b-41d4-a716-446655440000", "email": "active@example.com",
            "is_paid": True, "balance": Decimal("12.50"), "total_earned": Decimal("27.50"),
        }
        self.users["660e8400-e29b-41d4-a716-446655440001"] = {
            "id": "660e8400-e29b-41d4-a716-446655440001", "email": "new@example.com",
            "is_paid": False, "balance": Decimal("0.00"), "total_earned": Decimal("0.00"),
        }

    def get_user(self, user_id: str) -> Optional[UserAccount]:
        with self._lock:
            user_data = self.users.get(user_id)
            return UserAccount(**user_data) if user_data else None

    def update_user_payment_status(
        self,
        account: UserAccount,
        is_paid: bool,
        balance_delta: Decimal,
        total_earned_delta: Decimal,
    ) -> Optional[UserAccount]:
        with self._lock:
            user_data = self.users.get(account.id)
            if user_data is None or user_data["is_paid"]:
                return None
            if user_data["balance"] != account.balance or user_data["total_earned"] != account.total_earned:
                return None

            user_data["is_paid"] = is_paid
            user_data["balance"] = account.balance + balance_delta
            user_data["total_earned"] = account.total_earned + total_earned_delta
            return UserAccount(**user_data)


class InMemoryLedgerStore:
    def __init__(self):
        self._lock = threading.Lock()
        self.entries: list[LedgerEntry] = []
        self.reference_index: set[str] = set()

    def append_entry(self, entry: LedgerEntry) -> LedgerEntry:
        with self._lock:
            if entry.reference in self.reference_index:
                raise DuplicateReferenceError(f"Ledger entry with reference {entry.reference} already exists")
            stored = entry.model_copy(update={"created_at": entry.created_at or datetime.now(timezone.utc)})
            self.entries.append(stored)
            self.reference_index.add(entry.reference)
            return stored

    def get_entry(self, reference: str) -> Optional[LedgerEntry]:
        with self._lock:
            return next((e for e in self.entries if e.reference == reference), None)

    def entries_for_user(self, user_id: str) -> list[LedgerEntry]:
        with self._lock:
            return [e for e in self.entries if e.user_id == user_id]
