from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import TransactionType
from periods import to_utc_millis

# Keeps stored amounts and running balances well inside a 64-bit integer.
MAX_AMOUNT_CENTS = 10**12


class TransactionIn(BaseModel):
    occurred_at: datetime
    type: TransactionType
    amount_cents: int = Field(..., ge=0, le=MAX_AMOUNT_CENTS)
    external_iban: str = Field(default="", max_length=64)
    description: str = Field(default="", max_length=500)
    category_id: Optional[int] = None

    @field_validator("occurred_at")
    @classmethod
    def _normalise_occurred_at(cls, value: datetime) -> datetime:
        return to_utc_millis(value)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class CategoryRuleIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: str = Field(default="", max_length=200)
    iban: str = Field(default="", max_length=64)
    type: Optional[TransactionType] = None
    category_id: int
    apply_on_history: bool = False

    @field_validator("type", mode="before")
    @classmethod
    def _blank_type_is_wildcard(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class SavingGoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    target_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)
    save_per_month_cents: int = Field(..., gt=0, le=MAX_AMOUNT_CENTS)
    min_balance_cents: int = Field(default=0, ge=0, le=MAX_AMOUNT_CENTS)
    starts_at: Optional[datetime] = None

    @field_validator("starts_at")
    @classmethod
    def _normalise_starts_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_utc_millis(value) if value is not None else None


class PaymentRequestIn(BaseModel):
    description: str = Field(default="", max_length=500)
    due_date: datetime
    amount_cents: int = Field(..., ge=0, le=MAX_AMOUNT_CENTS)
    number_of_requests: int = Field(..., gt=0)

    @field_validator("due_date")
    @classmethod
    def _normalise_due_date(cls, value: datetime) -> datetime:
        return to_utc_millis(value)
