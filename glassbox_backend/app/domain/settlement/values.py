"""
Value types shared by the allocation and settlement domain.

Immutable Pydantic models so results can be compared and hashed.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from glassbox_backend.app.models.fee_enums import FeeEntity


class Period(BaseModel):
    """A (year, month) settlement period."""
    year: int = Field(..., ge=2000, le=9999)
    month: int = Field(..., ge=1, le=12)

    class Config:
        frozen = True

    @property
    def start(self) -> datetime:
        return datetime(self.year, self.month, 1)

    @property
    def end(self) -> datetime:
        """Exclusive upper bound: first instant of the following month."""
        if self.month == 12:
            return datetime(self.year + 1, 1, 1)
        return datetime(self.year, self.month + 1, 1)

    @property
    def label(self) -> str:
        return f"{self.year}-{self.month:02d}"

    @classmethod
    def containing(cls, moment: datetime) -> "Period":
        moment = utc_naive(moment)
        return cls(year=moment.year, month=moment.month)


class FeeShare(BaseModel):
    """A fee schema as seen by the validator and calculator."""
    id: Optional[int] = None
    merchant_id: str
    entity: FeeEntity
    amount: Decimal
    is_active: bool = True

    class Config:
        frozen = True


class ValidationResult(BaseModel):
    """Outcome of a successful fee schema validation."""
    merchant_id: str
    total_allocated: Decimal
    remaining: Decimal


class TransactionRecord(BaseModel):
    """One ad view transaction as read from the transaction feed."""
    id: str
    merchant_id: Optional[str] = None
    partner_id: Optional[str] = None
    advertisement_id: Optional[str] = None
    device_id: Optional[str] = None
    category: Optional[str] = None
    amount: Decimal
    currency: str
    displayed_at: datetime

    class Config:
        frozen = True

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        return value.upper()

    @property
    def period(self) -> Period:
        return Period.containing(self.displayed_at)


class AllocationShare(BaseModel):
    """Monetary share of one entity computed from one amount."""
    entity: FeeEntity
    percentage: Decimal
    amount_allocated: Decimal
    schema_id: Optional[int] = None

    class Config:
        frozen = True


class AllocationResult(BaseModel):
    """
    An allocation line of one transaction.

    entity is None for the explicit unassigned remainder.
    """
    transaction_id: str
    entity: Optional[FeeEntity]
    amount_allocated: Decimal
    percentage: Decimal
    currency: str
    year: int
    month: int
    merchant_id: Optional[str] = None
    partner_id: Optional[str] = None
    category: Optional[str] = None
    device_id: Optional[str] = None

    class Config:
        frozen = True


class AggregateRow(BaseModel):
    """A revenue rollup for one period, currency and dimension key."""
    year: int
    month: int
    currency: str
    dimension: str
    partner_id: Optional[str] = None
    merchant_id: Optional[str] = None
    category: Optional[str] = None
    device_id: Optional[str] = None
    entity: Optional[FeeEntity] = None
    total_amount: Decimal
    record_count: int

    class Config:
        frozen = True


def utc_naive(moment: Optional[datetime]) -> Optional[datetime]:
    """Normalize to the naive UTC datetimes stored by this service."""
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)
