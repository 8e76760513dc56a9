"""
Revenue Schemas.

Allocation previews, settlement batches, aggregates and reports.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict
from glassbox_backend.app.models.fee_enums import FeeEntity, BatchStatus, BatchOutcome


class AllocationPreviewRequest(BaseModel):
    """Compute the split of an amount with a merchant's current schemas."""
    merchant_id: str = Field(..., min_length=1, max_length=64)
    amount: Decimal = Field(..., ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


class AllocationShareResponse(BaseModel):
    entity: FeeEntity
    percentage: Decimal
    amount_allocated: Decimal


class AllocationPreviewResponse(BaseModel):
    merchant_id: str
    amount: Decimal
    currency: str
    shares: List[AllocationShareResponse]
    unallocated: Decimal


class RevenueGenerateRequest(BaseModel):
    """Request a settlement run for a period."""
    year: int = Field(..., ge=2000, le=9999)
    month: int = Field(..., ge=1, le=12)
    force_regenerate: bool = False


class SettlementBatchResponse(BaseModel):
    """Schema for displaying (and polling) a settlement batch."""
    id: int
    year: int
    month: int
    status: BatchStatus
    outcome: Optional[BatchOutcome]
    total_records: int
    processed_records: int
    failed_records: int
    progress_percent: float
    started_at: Optional[datetime]
    heartbeat_at: Optional[datetime] = None
    completed_at: Optional[datetime]
    error: Optional[str]
    generated_by: Optional[str]
    force_regenerated: bool
    previous_batch_id: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True


class RecordFailureResponse(BaseModel):
    """Per-record failure of a settlement run."""
    id: int
    batch_id: int
    transaction_id: Optional[str]
    error_code: str
    error_message: str
    payload: Optional[dict]
    created_at: datetime

    class Config:
        from_attributes = True


class RevenueAggregateResponse(BaseModel):
    """Schema for displaying a stored revenue aggregate."""
    batch_id: int
    year: int
    month: int
    dimension: str
    currency: str
    partner_id: Optional[str]
    merchant_id: Optional[str]
    category: Optional[str]
    device_id: Optional[str]
    entity: Optional[FeeEntity]
    total_amount: Decimal
    record_count: int

    class Config:
        from_attributes = True


class EntityRevenue(BaseModel):
    """Revenue of one entity; UNASSIGNED holds the unallocated remainder."""
    entity: str
    amount: Decimal
    percentage: Decimal


class MerchantSummary(BaseModel):
    """Revenue earned on one merchant and what is left after fees."""
    merchant_id: str
    total_revenue: Decimal
    fees: Dict[str, Decimal]
    total_fees: Decimal
    net_revenue: Decimal
    transaction_count: int


class CategoryRevenue(BaseModel):
    """Revenue of one ad category; UNCATEGORIZED holds untagged displays."""
    category: str
    revenue: Decimal
    transaction_count: int
    percentage: Decimal


class PartnerFeeLine(BaseModel):
    """Flat monthly fee of a partner active in the period."""
    partner_id: str
    amount: Decimal
    currency: str


class CurrencyReportSection(BaseModel):
    """All report breakdowns for one currency."""
    currency: str
    total_revenue: Decimal
    transaction_count: int
    entity_breakdown: List[EntityRevenue]
    merchant_summary: List[MerchantSummary]
    category_breakdown: List[CategoryRevenue]
    partner_fees: List[PartnerFeeLine]
    total_partner_fees: Decimal


class SettlementReport(BaseModel):
    """Detailed revenue report of a completed settlement batch."""
    batch_id: int
    period: str
    status: BatchStatus
    outcome: Optional[BatchOutcome]
    total_records: int
    processed_records: int
    failed_records: int
    generated_at: Optional[datetime]
    sections: List[CurrencyReportSection]


class ScopedRevenueLine(BaseModel):
    entity: str
    currency: str
    amount: Decimal
    transaction_count: int


class ScopedRevenueResponse(BaseModel):
    """Revenue of one merchant or partner in the current batch of a period."""
    period: str
    batch_id: Optional[int]
    lines: List[ScopedRevenueLine]
