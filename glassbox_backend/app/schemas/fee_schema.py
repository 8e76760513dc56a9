"""
Fee Schema Schemas.

Request/response models for business and partner schema fees.
Percentage ranges are checked by the fee validator, not here, so callers
always get the specific violated rule back.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from glassbox_backend.app.models.fee_enums import FeeEntity, PriceType


class BusinessSchemaFeeCreate(BaseModel):
    """Schema for creating a business schema fee."""
    entity: FeeEntity
    merchant_id: str = Field(..., min_length=1, max_length=64)
    amount: Decimal = Field(..., description="Percentage share (0.00-100.00)")
    description: Optional[str] = Field(None, max_length=255)
    is_active: bool = True
    effective_from: Optional[datetime] = Field(
        None, description="Backdate the first revision, e.g. when importing existing agreements"
    )


class BusinessSchemaFeeUpdate(BaseModel):
    """Schema for editing a business schema fee. merchant_id cannot change."""
    entity: Optional[FeeEntity] = None
    amount: Optional[Decimal] = None
    description: Optional[str] = Field(None, max_length=255)
    is_active: Optional[bool] = None
    effective_at: Optional[datetime] = None


class BusinessSchemaFeeValidateRequest(BaseModel):
    """Dry-run validation of a proposed schema."""
    entity: FeeEntity
    merchant_id: str = Field(..., min_length=1, max_length=64)
    amount: Decimal
    is_active: bool = True
    exclude_id: Optional[int] = Field(None, description="Schema being edited")


class StatusChangeRequest(BaseModel):
    """Activate / deactivate body."""
    effective_at: Optional[datetime] = None


class ValidationResponse(BaseModel):
    """Successful validation result."""
    valid: bool = True
    merchant_id: str
    total_allocated: Decimal
    remaining: Decimal


class BusinessSchemaFeeResponse(BaseModel):
    """Schema for displaying a business schema fee."""
    id: int
    entity: FeeEntity
    merchant_id: str
    amount: Decimal
    description: Optional[str]
    is_active: bool
    created_by: Optional[str]
    created_at: datetime
    updated_at: datetime
    deactivated_at: Optional[datetime]

    class Config:
        from_attributes = True


class FeeSchemaRevisionResponse(BaseModel):
    """Schema for displaying a fee schema revision."""
    id: int
    fee_schema_id: int
    entity: FeeEntity
    amount: Decimal
    is_active: bool
    valid_from: datetime
    valid_to: Optional[datetime]

    class Config:
        from_attributes = True


class MerchantAllocationSummary(BaseModel):
    """Current active allocation of a merchant."""
    merchant_id: str
    total_allocated: Decimal
    remaining: Decimal
    schemas: List[BusinessSchemaFeeResponse]


class PartnerSchemaFeeCreate(BaseModel):
    """Schema for creating a partner schema fee."""
    partner_id: str = Field(..., min_length=1, max_length=64)
    price_type: PriceType = PriceType.MONTHLY
    amount: Decimal = Field(..., ge=0)
    currency: str = Field("IDR", min_length=3, max_length=3)
    description: Optional[str] = Field(None, max_length=255)
    is_active: bool = True


class PartnerSchemaFeeUpdate(BaseModel):
    """Schema for editing a partner schema fee."""
    amount: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    description: Optional[str] = Field(None, max_length=255)
    is_active: Optional[bool] = None


class PartnerSchemaFeeResponse(BaseModel):
    """Schema for displaying a partner schema fee."""
    id: int
    partner_id: str
    price_type: PriceType
    amount: Decimal
    currency: str
    description: Optional[str]
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
