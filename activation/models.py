from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Optional, Union
from pydantic import BaseModel, Field, ConfigDict


SUCCESS_STATUS = "success"


class EntryType(str, Enum):
    BONUS = "bonus"
    PAYMENT = "payment"


class EntryStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"


class FailureKind(str, Enum):
    INVALID_REQUEST = "INVALID_REQUEST"
    GATEWAY_UNAVAILABLE = "GATEWAY_UNAVAILABLE"
    PAYMENT_NOT_SUCCESSFUL = "PAYMENT_NOT_SUCCESSFUL"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    ALREADY_ACTIVATED = "ALREADY_ACTIVATED"
    ACTIVATION_FAILED = "ACTIVATION_FAILED"


class ConfirmationRequest(BaseModel):
    reference: Optional[str] = Field(default=None, description="Gateway transaction reference")
    user_id: Optional[str] = Field(default=None, alias="userId")

    model_config = ConfigDict(populate_by_name=True, json_schema_extra={
        "example": {
            "reference": "T685312345678901",
            "userId": "550e8400-e29b-41d4-a716-446655440000",
        }
    })


class GatewayTransaction(BaseModel):
    reference: str
    status: str
    amount: Decimal = Decimal("0.00")
    currency: Optional[str] = None
    raw_payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_successful(self) -> bool:
        return self.status == SUCCESS_STATUS


class UserAccount(BaseModel):
    id: str
    email: Optional[str] = None
    is_paid: bool = False
    balance: Decimal = Decimal("0.00")
    total_earned: Decimal = Decimal("0.00")

    model_config = ConfigDict(from_attributes=True)


class LedgerEntry(BaseModel):
    user_id: str
    entry_type: EntryType
    amount: Decimal = Field(..., gt=0)
    description: str
    reference: str
    status: EntryStatus = EntryStatus.COMPLETED
    gateway_reference: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)


class ConfirmationSuccess(BaseModel):
    outcome: Literal["success"] = "success"
    welcome_bonus: Decimal
    message: str = "Payment confirmed and account activated"
    account: Optional[UserAccount] = None
    ledger_failures: list[str] = Field(default_factory=list)


class ConfirmationFailure(BaseModel):
    outcome: Literal["failure"] = "failure"
    kind: FailureKind
    error: str
    welcome_bonus: Decimal = Decimal("0.00")


ConfirmationResult = Union[ConfirmationSuccess, ConfirmationFailure]


class ConfirmationResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    welcome_bonus: Optional[float] = Field(default=None, serialization_alias="welcomeBonus")
    error: Optional[str] = None
