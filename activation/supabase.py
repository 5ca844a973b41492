"""
Supabase (PostgREST) backed user and ledger stores.

Only the REST surface is used: one select, one conditional PATCH and one
insert. The PATCH carries the unpaid/balance snapshot in its filters, so two
racing activations can never both match the row.
"""

from decimal import Decimal
from typing import Any, Optional

import httpx
import structlog

from .models import LedgerEntry, UserAccount
from .storage import DuplicateReferenceError, StoreError

logger = structlog.get_logger(__name__)

UNIQUE_VIOLATION = "23505"


class SupabaseClient:
    def __init__(self, url: str, service_key: str, timeout: float = 30.0, client: Optional[httpx.Client] = None):
        self.rest_url = f"{url.rstrip('/')}/rest/v1"
        self.client = client or httpx.Client(timeout=timeout)
        self.headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }

    def request(self, method: str, table: str, *, params=None, json=None, prefer: Optional[str] = None) -> httpx.Response:
        headers = dict(self.headers)
        if prefer:
            headers["Prefer"] = prefer
        try:
            return self.client.request(method, f"{self.rest_url}/{table}", params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise StoreError(f"Supabase request failed: {e}") from e

    def close(self) -> None:
        self.client.close()


def _error_detail(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"message": response.text}
    return body if isinstance(body, dict) else {"message": str(body)}


def _decimal(value: Any) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0.00")


def _amount_filter(column: str, value: Decimal) -> str:
    # null amounts are read as zero, so zero must also match null
    if value == 0:
        return f"or({column}.is.null,{column}.eq.0)"
    return f"{column}.eq.{value}"


def _account_from_row(row: dict[str, Any]) -> UserAccount:
    return UserAccount(
        id=str(row["id"]),
        email=row.get("email"),
        is_paid=bool(row.get("is_paid")),
        balance=_decimal(row.get("balance")),
        total_earned=_decimal(row.get("total_earned")),
    )


class SupabaseUserStore:
    def __init__(self, client: SupabaseClient, table: str = "users"):
        self.client = client
        self.table = table

    def get_user(self, user_id: str) -> Optional[UserAccount]:
        response = self.client.request(
            "GET", self.table,
            params={"id": f"eq.{user_id}", "select": "id,email,is_paid,balance,total_earned"},
        )
        if response.is_error:
            detail = _error_detail(response)
            # malformed ids (e.g. not a uuid) are reported as 400 by PostgREST
            if response.status_code == 400 and detail.get("code") == "22P02":
                return None
            raise StoreError(f"Error fetching user: {detail.get('message')}")

        rows = response.json()
        return _account_from_row(rows[0]) if rows else None

    def update_user_payment_status(
        self,
        account: UserAccount,
        is_paid: bool,
        balance_delta: Decimal,
        total_earned_delta: Decimal,
    ) -> Optional[UserAccount]:
        new_balance = account.balance + balance_delta
        new_total = account.total_earned + total_earned_delta
        guard = ",".join([
            "or(is_paid.is.null,is_paid.is.false)",
            _amount_filter("balance", account.balance),
            _amount_filter("total_earned", account.total_earned),
        ])

        response = self.client.request(
            "PATCH", self.table,
            params={"id": f"eq.{account.id}", "and": f"({guard})"},
            json={"is_paid": is_paid, "balance": float(new_balance), "total_earned": float(new_total)},
            prefer="return=representation",
        )
        if response.is_error:
            raise StoreError(f"Error updating user: {_error_detail(response).get('message')}")

        rows = response.json()
        if not rows:
            logger.info("user_update_not_applied", user_id=account.id)
            return None
        return _account_from_row(rows[0])

    def close(self) -> None:
        self.client.close()


class SupabaseLedgerStore:
    def __init__(self, client: SupabaseClient, table: str = "transactions"):
        self.client = client
        self.table = table

    def append_entry(self, entry: LedgerEntry) -> LedgerEntry:
        payload = {
            "user_id": entry.user_id,
            "type": entry.entry_type.value,
            "amount": float(entry.amount),
            "description": entry.description,
            "reference": entry.reference,
            "status": entry.status.value,
        }
        if entry.gateway_reference:
            payload["paystack_reference"] = entry.gateway_reference

        response = self.client.request("POST", self.table, json=payload, prefer="return=minimal")
        if response.is_error:
            detail = _error_detail(response)
            if response.status_code == 409 or detail.get("code") == UNIQUE_VIOLATION:
                raise DuplicateReferenceError(f"Ledger entry with reference {entry.reference} already exists")
            raise StoreError(f"Error inserting ledger entry: {detail.get('message')}")
        return entry

    def get_entry(self, reference: str) -> Optional[LedgerEntry]:
        response = self.client.request(
            "GET", self.table,
            params={
                "reference": f"eq.{reference}",
                "select": "user_id,type,amount,description,reference,status,paystack_reference",
                "limit": "1",
            },
        )
        if response.is_error:
            raise StoreError(f"Error fetching ledger entry: {_error_detail(response).get('message')}")

        rows = response.json()
        if not rows:
            return None
        row = rows[0]
        try:
            return LedgerEntry(
                user_id=str(row["user_id"]),
                entry_type=row["type"],
                amount=_decimal(row.get("amount")),
                description=row.get("description") or "",
                reference=row["reference"],
                status=row.get("status") or "completed",
                gateway_reference=row.get("paystack_reference"),
            )
        except (KeyError, ValueError) as e:
            raise StoreError(f"Unreadable ledger entry {reference}: {e}") from e

    def close(self) -> None:
        self.client.close()
