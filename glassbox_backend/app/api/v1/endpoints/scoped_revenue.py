"""
Merchant and Partner Revenue API Endpoints.

Each caller only sees the revenue of the merchant or partner its token is
scoped to.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from glassbox_backend.app.db.session import get_db
from glassbox_backend.app.core.guards import require_role, scope_claim
from glassbox_backend.app.models.enums import UserRole
from glassbox_backend.app.schemas.revenue import ScopedRevenueResponse
from glassbox_backend.app.services.revenue_reports import RevenueReportService

merchant_router = APIRouter(prefix="/merchant", tags=["Merchant - Revenue"])
partner_router = APIRouter(prefix="/partner", tags=["Partner - Revenue"])


@merchant_router.get("/revenue", response_model=ScopedRevenueResponse)
async def get_merchant_revenue(
    year: int = Query(..., ge=2000, le=9999),
    month: int = Query(..., ge=1, le=12),
    current_user: dict = Depends(require_role([UserRole.MERCHANT])),
    db: AsyncSession = Depends(get_db)
):
    """Entity split of the caller's revenue in the current batch of a period."""
    merchant_id = scope_claim(current_user)
    return await RevenueReportService.scoped_revenue(db, year, month, merchant_id=merchant_id)


@partner_router.get("/revenue", response_model=ScopedRevenueResponse)
async def get_partner_revenue(
    year: int = Query(..., ge=2000, le=9999),
    month: int = Query(..., ge=1, le=12),
    current_user: dict = Depends(require_role([UserRole.PARTNER])),
    db: AsyncSession = Depends(get_db)
):
    partner_id = scope_claim(current_user)
    return await RevenueReportService.scoped_revenue(db, year, month, partner_id=partner_id)
