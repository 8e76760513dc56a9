"""
Revenue reporting service.

READ-ONLY queries over settlement batches and their stored aggregates.
Only COMPLETED batches are ever reported on.
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from glassbox_backend.app.core.config import settings
from glassbox_backend.app.core.exceptions import ResourceNotFoundError
from glassbox_backend.app.domain.settlement.aggregation import dimension_label, parse_dimension
from glassbox_backend.app.domain.settlement.allocation import allocate, quantize_money
from glassbox_backend.app.domain.settlement.batch_generator import current_batch
from glassbox_backend.app.domain.settlement.report_builder import UNASSIGNED, build_report
from glassbox_backend.app.models.fee_enums import Dimension
from glassbox_backend.app.models.revenue_aggregate import RevenueAggregate
from glassbox_backend.app.models.settlement_batch import SettlementBatch, SettlementPartnerFee, SettlementRecordFailure
from glassbox_backend.app.schemas.revenue import (
    AllocationPreviewRequest, AllocationPreviewResponse, AllocationShareResponse,
    ScopedRevenueLine, ScopedRevenueResponse, SettlementReport
)
from glassbox_backend.app.services.fee_schemas import FeeSchemaService


class RevenueReportService:

    @staticmethod
    async def preview_allocation(db: AsyncSession, request: AllocationPreviewRequest) -> AllocationPreviewResponse:
        """Split an amount with the merchant's current active schemas."""
        currency = (request.currency or settings.default_currency).upper()
        schemas = await FeeSchemaService.active_for_merchant(db, request.merchant_id)
        shares = allocate(request.amount, schemas, request.merchant_id, currency)

        amount = quantize_money(request.amount, currency)
        allocated = sum((share.amount_allocated for share in shares), Decimal(0))
        return AllocationPreviewResponse(
            merchant_id=request.merchant_id,
            amount=amount,
            currency=currency,
            shares=[
                AllocationShareResponse(
                    entity=share.entity,
                    percentage=share.percentage,
                    amount_allocated=share.amount_allocated
                )
                for share in shares
            ],
            unallocated=amount - allocated
        )

    @staticmethod
    async def list_generations(
        db: AsyncSession,
        year: Optional[int] = None,
        month: Optional[int] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[SettlementBatch]:
        """Generation history, newest first."""
        query = select(SettlementBatch)
        if year:
            query = query.where(SettlementBatch.year == year)
        if month:
            query = query.where(SettlementBatch.month == month)

        result = await db.execute(query.order_by(desc(SettlementBatch.id)).offset(skip).limit(limit))
        return result.scalars().all()

    @staticmethod
    async def get_batch(db: AsyncSession, batch_id: int) -> SettlementBatch:
        batch = await db.get(SettlementBatch, batch_id)
        if not batch:
            raise ResourceNotFoundError("Settlement batch", batch_id)
        return batch

    @staticmethod
    async def list_failures(
        db: AsyncSession,
        batch_id: int,
        skip: int = 0,
        limit: int = 100
    ) -> List[SettlementRecordFailure]:
        await RevenueReportService.get_batch(db, batch_id)
        result = await db.execute(
            select(SettlementRecordFailure)
            .where(SettlementRecordFailure.batch_id == batch_id)
            .order_by(SettlementRecordFailure.id)
            .offset(skip)
            .limit(limit)
        )
        return result.scalars().all()

    @staticmethod
    async def require_current_batch(db: AsyncSession, year: int, month: int) -> SettlementBatch:
        batch = await current_batch(db, year, month)
        if not batch:
            raise ResourceNotFoundError("Completed settlement batch for period", f"{year}-{month:02d}")
        return batch

    @staticmethod
    async def batch_aggregates(
        db: AsyncSession,
        batch_id: int,
        dimension: Optional[str] = None,
        currency: Optional[str] = None
    ) -> List[RevenueAggregate]:
        query = select(RevenueAggregate).where(RevenueAggregate.batch_id == batch_id)
        if dimension is not None:
            query = query.where(RevenueAggregate.dimension == dimension)
        if currency:
            query = query.where(RevenueAggregate.currency == currency.upper())

        result = await db.execute(query.order_by(RevenueAggregate.id))
        return result.scalars().all()

    @staticmethod
    async def batch_partner_fees(db: AsyncSession, batch_id: int) -> List[SettlementPartnerFee]:
        """Partner fees recorded with a batch when it ran."""
        result = await db.execute(
            select(SettlementPartnerFee)
            .where(SettlementPartnerFee.batch_id == batch_id)
            .order_by(SettlementPartnerFee.partner_id, SettlementPartnerFee.currency)
        )
        return result.scalars().all()

    @staticmethod
    async def get_aggregates(
        db: AsyncSession,
        year: int,
        month: int,
        dimension: str = "",
        currency: Optional[str] = None
    ) -> List[RevenueAggregate]:
        """
        Aggregates of the current batch of a period for one dimension label.

        `dimension` is a comma separated list of partner_id, merchant_id,
        category, device_id and entity; empty for period totals.
        """
        try:
            label = dimension_label(parse_dimension(dimension))
        except ValueError:
            allowed = ", ".join(d.value for d in Dimension)
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown dimension '{dimension}'. Use a comma separated list of: {allowed}"
            )

        batch = await RevenueReportService.require_current_batch(db, year, month)
        return await RevenueReportService.batch_aggregates(db, batch.id, label, currency)

    @staticmethod
    async def detailed_report(
        db: AsyncSession,
        year: Optional[int] = None,
        month: Optional[int] = None,
        batch_id: Optional[int] = None
    ) -> SettlementReport:
        """
        Detailed report of a batch, or of the current batch of a period.

        Raises:
            BatchNotFinalError: If `batch_id` names a batch that is not COMPLETED
        """
        if batch_id is not None:
            batch = await RevenueReportService.get_batch(db, batch_id)
        elif year and month:
            batch = await RevenueReportService.require_current_batch(db, year, month)
        else:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Provide batch_id, or year and month"
            )

        aggregates = await RevenueReportService.batch_aggregates(db, batch.id)
        partner_fees = await RevenueReportService.batch_partner_fees(db, batch.id)
        return build_report(batch, aggregates, partner_fees)

    @staticmethod
    async def scoped_revenue(
        db: AsyncSession,
        year: int,
        month: int,
        merchant_id: Optional[str] = None,
        partner_id: Optional[str] = None
    ) -> ScopedRevenueResponse:
        """Entity split of one merchant's or one partner's revenue in a period."""
        period = f"{year}-{month:02d}"
        batch = await current_batch(db, year, month)
        if not batch:
            return ScopedRevenueResponse(period=period, batch_id=None, lines=[])

        if merchant_id is not None:
            label = dimension_label((Dimension.MERCHANT, Dimension.ENTITY))
            owner = RevenueAggregate.merchant_id == merchant_id
        else:
            label = dimension_label((Dimension.PARTNER, Dimension.ENTITY))
            owner = RevenueAggregate.partner_id == partner_id

        result = await db.execute(
            select(RevenueAggregate).where(
                RevenueAggregate.batch_id == batch.id,
                RevenueAggregate.dimension == label,
                owner
            ).order_by(RevenueAggregate.currency, RevenueAggregate.id)
        )

        lines = [
            ScopedRevenueLine(
                entity=row.entity.value if row.entity is not None else UNASSIGNED,
                currency=row.currency,
                amount=row.total_amount,
                transaction_count=row.record_count
            )
            for row in result.scalars().all()
        ]
        return ScopedRevenueResponse(period=period, batch_id=batch.id, lines=lines)
