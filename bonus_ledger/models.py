from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict, field_validator

from .datetime_helpers import ensure_utc


class EntryStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    SPENT = "spent"


class TransactionType(str, Enum):
    # Shared by request validation and dispatch so the two can never disagree.
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    MULTIPLY = "multiply"


class TransactionRequest(BaseModel):
    user_id: UUID
    amount: int = Field(..., gt=0, description="Points to move; the percent for multiply")
    type: TransactionType
    lifetime_days: Optional[int] = Field(default=None, gt=0)

    model_config = ConfigDict(extra="forbid", json_schema_extra={
        "example": {
            "user_id": "550e8400-e29b-41d4-a716-446655440000",
            "amount": 100,
            "type": "deposit",
            "lifetime_days": 30
        }
    })


class SpendReceipt(BaseModel):
    """Portion of one entry consumed by a withdrawal."""
    entry_id: UUID
    amount: int
    spent_at: datetime

    @field_validator("spent_at")
    @classmethod
    def as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class BonusEntrySchema(BaseModel):
    id: UUID
    user_id: UUID
    amount: int
    created_at: datetime
    expires_at: datetime
    lifetime_days: int
    status: EntryStatus
    spent_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("created_at", "expires_at", "spent_at")
    @classmethod
    def as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class TransactionResult(BaseModel):
    user_id: UUID
    amount: int
    type: TransactionType
    balance: int
    entry_id: Optional[UUID] = None
    credited: Optional[int] = None
    receipts: list[SpendReceipt] = Field(default_factory=list)


class BalanceResponse(BaseModel):
    user_id: UUID
    balance: int
    expiring: dict[date, int]


class EntryListResponse(BaseModel):
    user_id: UUID
    entries: list[BonusEntrySchema]
    total_count: int


class SweepResponse(BaseModel):
    expired: int
