"""
Account Activation Payment Confirmation

This module provides:
- Paystack transaction verification
- Conditional (compare-and-swap) account activation with a welcome bonus
- Best-effort, append-only ledger of bonus and payment entries
- A tagged result type for every confirmation outcome
"""

from .models import (
    ConfirmationFailure,
    ConfirmationRequest,
    ConfirmationSuccess,
    EntryType,
    FailureKind,
    LedgerEntry,
    UserAccount,
)
from .service import ConfirmationService

__all__ = [
    "ConfirmationFailure",
    "ConfirmationRequest",
    "ConfirmationSuccess",
    "EntryType",
    "FailureKind",
    "LedgerEntry",
    "UserAccount",
    "ConfirmationService",
]
