"""
Admin Business Schema Fee API Endpoints.

Manages the percentage split of merchant advertising revenue between
GLASSBOX, SALES, BROKER, MERCHANT and PARTNER.
"""

from fastapi import APIRouter, Depends, Query, Path, Body, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from glassbox_backend.app.db.session import get_db
from glassbox_backend.app.core.redis_client import get_redis
from glassbox_backend.app.core.guards import require_role
from glassbox_backend.app.models.enums import UserRole
from glassbox_backend.app.models.fee_enums import FeeEntity
from glassbox_backend.app.schemas.fee_schema import (
    BusinessSchemaFeeCreate, BusinessSchemaFeeUpdate, BusinessSchemaFeeResponse,
    BusinessSchemaFeeValidateRequest, ValidationResponse, StatusChangeRequest,
    FeeSchemaRevisionResponse, MerchantAllocationSummary
)
from glassbox_backend.app.services.fee_schemas import FeeSchemaService

router = APIRouter(prefix="/admin", tags=["Admin - Business Schema Fees"])


@router.post("/business-schema-fees", response_model=BusinessSchemaFeeResponse, status_code=status.HTTP_201_CREATED)
async def create_business_schema_fee(
    data: BusinessSchemaFeeCreate,
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis)
):
    """
    Create a business schema fee.

    Rejected with 422 when the merchant already has an active fee for the
    entity or the merchant's active total would exceed 100%.
    """
    return await FeeSchemaService.create_schema(db, redis, data, current_user)


@router.get("/business-schema-fees", response_model=List[BusinessSchemaFeeResponse])
async def list_business_schema_fees(
    merchant_id: Optional[str] = Query(None),
    entity: Optional[FeeEntity] = Query(None),
    is_active: Optional[bool] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """List business schema fees with optional filters."""
    return await FeeSchemaService.list_schemas(db, merchant_id, entity, is_active, skip, limit)


@router.post("/business-schema-fees/validate", response_model=ValidationResponse)
async def validate_business_schema_fee(
    data: BusinessSchemaFeeValidateRequest,
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Dry-run validation of a proposed fee. Nothing is written.

    Pass exclude_id when validating an edit of an existing fee.
    """
    result = await FeeSchemaService.dry_run_validate(db, data)
    return ValidationResponse(
        merchant_id=result.merchant_id,
        total_allocated=result.total_allocated,
        remaining=result.remaining
    )


@router.get("/business-schema-fees/{schema_id}", response_model=BusinessSchemaFeeResponse)
async def get_business_schema_fee(
    schema_id: int = Path(..., description="Business schema fee ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    return await FeeSchemaService.get_schema(db, schema_id)


@router.put("/business-schema-fees/{schema_id}", response_model=BusinessSchemaFeeResponse)
async def update_business_schema_fee(
    data: BusinessSchemaFeeUpdate,
    schema_id: int = Path(..., description="Business schema fee ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis)
):
    """Edit a fee. The fee is re-validated against its siblings, excluding itself."""
    return await FeeSchemaService.update_schema(db, redis, schema_id, data, current_user)


@router.post("/business-schema-fees/{schema_id}/activate", response_model=BusinessSchemaFeeResponse)
async def activate_business_schema_fee(
    schema_id: int = Path(..., description="Business schema fee ID"),
    data: Optional[StatusChangeRequest] = Body(None),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis)
):
    """Re-activate a fee. Validated like any other write."""
    effective_at = data.effective_at if data else None
    return await FeeSchemaService.set_active(db, redis, schema_id, True, current_user, effective_at)


@router.post("/business-schema-fees/{schema_id}/deactivate", response_model=BusinessSchemaFeeResponse)
async def deactivate_business_schema_fee(
    schema_id: int = Path(..., description="Business schema fee ID"),
    data: Optional[StatusChangeRequest] = Body(None),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis)
):
    """Retire a fee. Fees are never deleted so past settlements keep their references."""
    effective_at = data.effective_at if data else None
    return await FeeSchemaService.set_active(db, redis, schema_id, False, current_user, effective_at)


@router.get("/business-schema-fees/{schema_id}/revisions", response_model=List[FeeSchemaRevisionResponse])
async def list_business_schema_fee_revisions(
    schema_id: int = Path(..., description="Business schema fee ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Full history of a fee, oldest first."""
    return await FeeSchemaService.list_revisions(db, schema_id)


@router.get("/merchants/{merchant_id}/allocation", response_model=MerchantAllocationSummary)
async def get_merchant_allocation(
    merchant_id: str = Path(..., description="Merchant ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Active fees of a merchant with the allocated total and what remains."""
    return await FeeSchemaService.merchant_allocation(db, merchant_id)
