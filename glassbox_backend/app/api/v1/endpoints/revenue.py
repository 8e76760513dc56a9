"""
Admin Revenue API Endpoints.

Allocation previews, settlement generation (run in the background and
polled) and revenue reports.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Path, Response, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from typing import List, Optional

from glassbox_backend.app.db.session import get_db, get_session_factory
from glassbox_backend.app.core.redis_client import get_redis
from glassbox_backend.app.core.guards import require_role
from glassbox_backend.app.models.enums import UserRole
from glassbox_backend.app.domain.settlement.batch_generator import SettlementBatchGenerator
from glassbox_backend.app.schemas.revenue import (
    AllocationPreviewRequest, AllocationPreviewResponse, RevenueGenerateRequest,
    SettlementBatchResponse, RecordFailureResponse, RevenueAggregateResponse, SettlementReport
)
from glassbox_backend.app.services.revenue_reports import RevenueReportService

router = APIRouter(prefix="/admin/revenue", tags=["Admin - Revenue"])


@router.post("/allocate", response_model=AllocationPreviewResponse)
async def preview_allocation(
    data: AllocationPreviewRequest,
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Split an amount with the merchant's current active fees.

    404 if the merchant has no active fee.
    """
    return await RevenueReportService.preview_allocation(db, data)


@router.post("/generate", response_model=SettlementBatchResponse, status_code=status.HTTP_202_ACCEPTED)
async def generate_revenue(
    data: RevenueGenerateRequest,
    background_tasks: BackgroundTasks,
    response: Response,
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    redis=Depends(get_redis)
):
    """
    Request the settlement of a period.

    - 202 with a PENDING batch: the run continues in the background, poll
      GET /admin/revenue/generations/{id}
    - 200 with the current COMPLETED batch when the period is already
      settled and force_regenerate is false
    - 409 while another run for the period is in flight
    """
    generator = SettlementBatchGenerator(session_factory, redis)
    batch, created = await generator.prepare(
        data.year, data.month,
        force_regenerate=data.force_regenerate,
        generated_by=current_user.get("sub")
    )

    if not created:
        response.status_code = status.HTTP_200_OK
        return batch

    background_tasks.add_task(generator.run, batch.id)
    return batch


@router.get("/generations", response_model=List[SettlementBatchResponse])
async def list_generations(
    year: Optional[int] = Query(None, ge=2000, le=9999),
    month: Optional[int] = Query(None, ge=1, le=12),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Generation history, newest first."""
    return await RevenueReportService.list_generations(db, year, month, skip, limit)


@router.get("/generations/{batch_id}", response_model=SettlementBatchResponse)
async def get_generation(
    batch_id: int = Path(..., description="Settlement batch ID"),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Poll a settlement run: status, outcome and record counters."""
    return await RevenueReportService.get_batch(db, batch_id)


@router.get("/generations/{batch_id}/failures", response_model=List[RecordFailureResponse])
async def list_generation_failures(
    batch_id: int = Path(..., description="Settlement batch ID"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Transactions the run could not settle, with the reason."""
    return await RevenueReportService.list_failures(db, batch_id, skip, limit)


@router.get("/data", response_model=List[RevenueAggregateResponse])
async def get_revenue_data(
    year: int = Query(..., ge=2000, le=9999),
    month: int = Query(..., ge=1, le=12),
    dimension: str = Query("", description="e.g. 'merchant_id,entity'; empty for period totals"),
    currency: Optional[str] = Query(None, min_length=3, max_length=3),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """Stored aggregates of the current batch of a period."""
    return await RevenueReportService.get_aggregates(db, year, month, dimension, currency)


@router.get("/detailed", response_model=SettlementReport)
async def get_detailed_revenue(
    year: Optional[int] = Query(None, ge=2000, le=9999),
    month: Optional[int] = Query(None, ge=1, le=12),
    batch_id: Optional[int] = Query(None),
    current_user: dict = Depends(require_role([UserRole.ADMIN])),
    db: AsyncSession = Depends(get_db)
):
    """
    Entity, merchant and category breakdowns of a settlement.

    Uses batch_id when given, otherwise the current batch of year/month.
    409 if the batch has not COMPLETED.
    """
    return await RevenueReportService.detailed_report(db, year, month, batch_id)
