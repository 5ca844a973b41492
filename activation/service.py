import time
from decimal import Decimal
from typing import Callable

import structlog
from pydantic import ValidationError

from .config import Settings
from .errors import (
    ActivationFailedError,
    AlreadyActivatedError,
    ConfirmationError,
    InvalidRequestError,
    PaymentNotSuccessfulError,
    UserNotFoundError,
)
from .gateway import PaystackClient
from .models import (
    ConfirmationFailure,
    ConfirmationRequest,
    ConfirmationResult,
    ConfirmationSuccess,
    EntryStatus,
    EntryType,
    GatewayTransaction,
    LedgerEntry,
    UserAccount,
)
from .storage import (
    DuplicateReferenceError,
    InMemoryLedgerStore,
    InMemoryUserStore,
    LedgerStore,
    StoreError,
    UserStore,
)
from .supabase import SupabaseClient, SupabaseLedgerStore, SupabaseUserStore

logger = structlog.get_logger(__name__)

DEFAULT_WELCOME_BONUS = Decimal("3.00")


class ConfirmationService:
    def __init__(
        self,
        gateway: PaystackClient,
        users: UserStore,
        ledger: LedgerStore,
        welcome_bonus: Decimal = DEFAULT_WELCOME_BONUS,
        clock: Callable[[], float] = time.time,
    ):
        self.gateway = gateway
        self.users = users
        self.ledger = ledger
        self.welcome_bonus = welcome_bonus
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConfirmationService":
        gateway = PaystackClient(
            secret_key=settings.PAYSTACK_SECRET_KEY,
            base_url=settings.PAYSTACK_BASE_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
        if settings.supabase_enabled:
            client = SupabaseClient(
                settings.SUPABASE_URL,
                settings.SUPABASE_SERVICE_ROLE_KEY,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            )
            users = SupabaseUserStore(client, table=settings.USERS_TABLE)
            ledger = SupabaseLedgerStore(client, table=settings.TRANSACTIONS_TABLE)
        else:
            logger.warning("supabase_not_configured", store="in_memory")
            users = InMemoryUserStore(seed=True)
            ledger = InMemoryLedgerStore()
        return cls(gateway, users, ledger, welcome_bonus=settings.WELCOME_BONUS)

    def confirm(self, request: ConfirmationRequest) -> ConfirmationResult:
        """Verify the payment and activate the account.

        Never raises for the known failure kinds; they come back as a
        ConfirmationFailure so callers can branch on ``kind``.
        """
        try:
            return self._confirm(request)
        except ConfirmationError as e:
            return ConfirmationFailure(kind=e.kind, error=str(e))

    def _confirm(self, request: ConfirmationRequest) -> ConfirmationSuccess:
        reference, user_id = self._validate(request)
        log = logger.bind(user_id=user_id, reference=reference)

        transaction = self.gateway.verify_transaction(reference)
        if not transaction.is_successful:
            log.info("payment_not_successful", status=transaction.status)
            raise PaymentNotSuccessfulError("Payment not successful")

        account = self._get_user(user_id)
        if account.is_paid:
            log.info("account_already_activated")
            raise AlreadyActivatedError("Account already activated")

        ledger_failures = self._claim_payment(user_id, transaction)
        activated = self._activate(account)
        ledger_failures += self._record_bonus(activated)

        log.info(
            "payment_confirmed",
            amount=str(transaction.amount),
            welcome_bonus=str(self.welcome_bonus),
            ledger_failures=len(ledger_failures),
        )
        return ConfirmationSuccess(
            welcome_bonus=self.welcome_bonus,
            account=activated,
            ledger_failures=ledger_failures,
        )

    def _validate(self, request: ConfirmationRequest) -> tuple[str, str]:
        reference = (request.reference or "").strip()
        user_id = (request.user_id or "").strip()
        if not reference or not user_id:
            raise InvalidRequestError("Missing reference or userId")
        return reference, user_id

    def _get_user(self, user_id: str) -> UserAccount:
        try:
            account = self.users.get_user(user_id)
        except StoreError as e:
            logger.error("user_fetch_failed", user_id=user_id, error=str(e))
            raise ActivationFailedError("Failed to fetch user") from e

        if account is None:
            # the gateway has already taken the money at this point
            logger.error("paid_user_not_found", user_id=user_id)
            raise UserNotFoundError("User not found")
        return account

    def _activate(self, account: UserAccount) -> UserAccount:
        try:
            updated = self.users.update_user_payment_status(
                account,
                is_paid=True,
                balance_delta=self.welcome_bonus,
                total_earned_delta=self.welcome_bonus,
            )
        except StoreError as e:
            logger.error("user_update_failed", user_id=account.id, error=str(e))
            raise ActivationFailedError("Failed to update user status") from e

        if updated is not None:
            return updated

        # the conditional update matched nothing; find out why
        current = self._get_user(account.id)
        if current.is_paid:
            logger.info("account_already_activated", user_id=account.id, raced=True)
            raise AlreadyActivatedError("Account already activated")
        logger.error("user_update_conflict", user_id=account.id)
        raise ActivationFailedError("Failed to update user status: account changed concurrently")

    def _claim_payment(self, user_id: str, transaction: GatewayTransaction) -> list[str]:
        """Write the payment entry before crediting anything.

        The ledger's unique reference binds a gateway transaction to the first
        account that claims it. A claim already held by the same account is
        fine (a retry after a failed activation); one held by another account
        stops the confirmation.
        """
        if transaction.amount <= 0:
            logger.error("payment_amount_missing", user_id=user_id, reference=transaction.reference)
            return ["payment: gateway reported no amount"]

        try:
            self.ledger.append_entry(LedgerEntry(
                user_id=user_id,
                entry_type=EntryType.PAYMENT,
                amount=transaction.amount,
                description="Account activation payment",
                reference=transaction.reference,
                gateway_reference=transaction.reference,
                status=EntryStatus.COMPLETED,
            ))
        except DuplicateReferenceError:
            self._check_claim_owner(user_id, transaction.reference)
        except (StoreError, ValidationError) as e:
            self._log_ledger_failure(user_id, EntryType.PAYMENT, transaction.reference, e)
            return [f"payment: {e}"]
        return []

    def _check_claim_owner(self, user_id: str, reference: str) -> None:
        try:
            existing = self.ledger.get_entry(reference)
        except StoreError as e:
            logger.error("payment_claim_lookup_failed", user_id=user_id, reference=reference, error=str(e))
            raise ActivationFailedError("Failed to verify payment reference") from e

        if existing is None or existing.user_id != user_id:
            logger.warning(
                "payment_reference_reused",
                user_id=user_id,
                reference=reference,
                claimed_by=existing.user_id if existing else None,
            )
            raise PaymentNotSuccessfulError("Payment reference already used")

    def _record_bonus(self, account: UserAccount) -> list[str]:
        reference = f"WELCOME-{account.id}-{int(self.clock() * 1000)}"
        try:
            self.ledger.append_entry(LedgerEntry(
                user_id=account.id,
                entry_type=EntryType.BONUS,
                amount=self.welcome_bonus,
                description="Welcome bonus for account activation",
                reference=reference,
                status=EntryStatus.COMPLETED,
            ))
        except (StoreError, ValidationError) as e:
            self._log_ledger_failure(account.id, EntryType.BONUS, reference, e)
            return [f"bonus: {e}"]
        return []

    def _log_ledger_failure(self, user_id: str, entry_type: EntryType, reference: str, error: Exception) -> None:
        logger.error(
            "ledger_write_failed",
            user_id=user_id,
            entry_type=entry_type.value,
            reference=reference,
            error=str(error),
        )

    def close(self) -> None:
        for resource in (self.gateway, self.users, self.ledger):
            close = getattr(resource, "close", None)
            if close is not None:
                close()
