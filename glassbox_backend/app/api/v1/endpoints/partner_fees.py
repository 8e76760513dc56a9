"""
Admin Partner Schema Fee API Endpoints.

Flat monthly fees charged to advertising partners.
"""

from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from glassbox_backend.app.db.session import get_db
from glassbox_backend.app.core.guards import require_role
from glassbox_backend.app.models.enums import UserRole
from glassbox_backend.app.schemas.fee_schema import (
    PartnerSchemaFeeCreate, PartnerSchemaFeeUpdate, PartnerSchemaFeeResponse
)
from glassbox_backend.app.services.partner_fees import PartnerFeeService

router = APIRouter(prefix="/admin", tags=["Admin - Partner Schema Fees"])


@router.post("/partner-schema-fees", response_model=PartnerSchemaFeeResponse, status_code=status.HTTP_201_CREATED)
async def create_partner_schema_fee(
    data: PartnerSchemaFeeCreate,
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Create a partner fee. 409 if the partner already has an active fee in that currency."""
    return await PartnerFeeService.create_fee(db, data, current_user)


@router.get("/partner-schema-fees", response_model=List[PartnerSchemaFeeResponse])
async def list_partner_schema_fees(
    partner_id: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    return await PartnerFeeService.list_fees(db, partner_id, is_active, skip, limit)


@router.put("/partner-schema-fees/{fee_id}", response_model=PartnerSchemaFeeResponse)
async def update_partner_schema_fee(
    data: PartnerSchemaFeeUpdate,
    fee_id: int = Path(..., description="Partner schema fee ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    return await PartnerFeeService.update_fee(db, fee_id, data, current_user)


@router.post("/partner-schema-fees/{fee_id}/deactivate", response_model=PartnerSchemaFeeResponse)
async def deactivate_partner_schema_fee(
    fee_id: int = Path(..., description="Partner schema fee ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    return await PartnerFeeService.deactivate_fee(db, fee_id, current_user)
