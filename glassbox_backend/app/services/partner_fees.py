"""
Partner schema fee service.

Flat monthly fees charged to advertising partners. A partner has at most
one active fee per currency; creating or activating another one for the
same currency is rejected. The read-side check gives a readable error; the
partial unique index settles concurrent writers.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from glassbox_backend.app.core.exceptions import ResourceNotFoundError
from glassbox_backend.app.models.partner_schema_fee import PartnerSchemaFee
from glassbox_backend.app.schemas.fee_schema import PartnerSchemaFeeCreate, PartnerSchemaFeeUpdate
from glassbox_backend.app.services.audit import log_admin_action, AuditAction, AuditTarget

logger = logging.getLogger("glassbox.fees")


class PartnerFeeService:

    @staticmethod
    async def list_fees(
        db: AsyncSession,
        partner_id: Optional[str] = None,
        is_active: Optional[bool] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[PartnerSchemaFee]:
        query = select(PartnerSchemaFee)
        if partner_id:
            query = query.where(PartnerSchemaFee.partner_id == partner_id)
        if is_active is not None:
            query = query.where(PartnerSchemaFee.is_active == is_active)

        result = await db.execute(
            query.order_by(PartnerSchemaFee.partner_id, PartnerSchemaFee.id).offset(skip).limit(limit)
        )
        return result.scalars().all()

    @staticmethod
    async def active_fees(db: AsyncSession, currency: Optional[str] = None) -> List[PartnerSchemaFee]:
        query = select(PartnerSchemaFee).where(PartnerSchemaFee.is_active == True)
        if currency:
            query = query.where(PartnerSchemaFee.currency == currency.upper())
        result = await db.execute(query.order_by(PartnerSchemaFee.partner_id, PartnerSchemaFee.currency))
        return result.scalars().all()

    @staticmethod
    async def get_fee(db: AsyncSession, fee_id: int) -> PartnerSchemaFee:
        fee = await db.get(PartnerSchemaFee, fee_id)
        if not fee:
            raise ResourceNotFoundError("Partner schema fee", fee_id)
        return fee

    @staticmethod
    async def _ensure_single_active(
        db: AsyncSession,
        partner_id: str,
        currency: str,
        exclude_id: Optional[int] = None
    ) -> None:
        query = select(PartnerSchemaFee).where(
            PartnerSchemaFee.partner_id == partner_id,
            PartnerSchemaFee.currency == currency,
            PartnerSchemaFee.is_active == True
        )
        if exclude_id is not None:
            query = query.where(PartnerSchemaFee.id != exclude_id)

        result = await db.execute(query.limit(1))
        existing = result.scalar_one_or_none()
        if existing:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Partner {partner_id} already has an active {currency} fee (ID {existing.id})"
            )

    @staticmethod
    async def _commit(db: AsyncSession, fee: PartnerSchemaFee) -> None:
        # rollback expires the fee
        partner_id, currency = fee.partner_id, fee.currency
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Partner {partner_id} already has an active {currency} fee"
            )
        await db.refresh(fee)

    @staticmethod
    async def create_fee(
        db: AsyncSession,
        data: PartnerSchemaFeeCreate,
        current_user: Dict[str, Any]
    ) -> PartnerSchemaFee:
        currency = data.currency.upper()
        if data.is_active:
            await PartnerFeeService._ensure_single_active(db, data.partner_id, currency)

        fee = PartnerSchemaFee(
            partner_id=data.partner_id,
            price_type=data.price_type,
            amount=data.amount,
            currency=currency,
            description=data.description,
            is_active=data.is_active
        )
        db.add(fee)
        await PartnerFeeService._commit(db, fee)

        logger.info("Partner fee %s created: partner=%s %s %s", fee.id, fee.partner_id, fee.amount, fee.currency)
        await log_admin_action(
            db=db,
            current_user=current_user,
            action=AuditAction.PARTNER_FEE_CREATED,
            target_type=AuditTarget.PARTNER_FEE,
            target_id=fee.id,
            metadata={"partner_id": fee.partner_id, "amount": str(fee.amount), "currency": fee.currency}
        )
        return fee

    @staticmethod
    async def update_fee(
        db: AsyncSession,
        fee_id: int,
        data: PartnerSchemaFeeUpdate,
        current_user: Dict[str, Any]
    ) -> PartnerSchemaFee:
        fee = await PartnerFeeService.get_fee(db, fee_id)

        update_data = data.model_dump(exclude_unset=True)
        update_data = {field: value for field, value in update_data.items() if value is not None}
        if "currency" in update_data:
            update_data["currency"] = update_data["currency"].upper()

        becomes_active = update_data.get("is_active", fee.is_active)
        if becomes_active:
            await PartnerFeeService._ensure_single_active(
                db, fee.partner_id, update_data.get("currency", fee.currency), exclude_id=fee.id
            )

        before = {"amount": str(fee.amount), "currency": fee.currency, "is_active": fee.is_active}
        for field, value in update_data.items():
            setattr(fee, field, value)

        await PartnerFeeService._commit(db, fee)

        await log_admin_action(
            db=db,
            current_user=current_user,
            action=AuditAction.PARTNER_FEE_UPDATED,
            target_type=AuditTarget.PARTNER_FEE,
            target_id=fee.id,
            metadata={
                "partner_id": fee.partner_id,
                "before": before,
                "after": {"amount": str(fee.amount), "currency": fee.currency, "is_active": fee.is_active}
            }
        )
        return fee

    @staticmethod
    async def deactivate_fee(
        db: AsyncSession,
        fee_id: int,
        current_user: Dict[str, Any]
    ) -> PartnerSchemaFee:
        fee = await PartnerFeeService.get_fee(db, fee_id)
        if not fee.is_active:
            return fee

        fee.is_active = False
        await db.commit()
        await db.refresh(fee)

        await log_admin_action(
            db=db,
            current_user=current_user,
            action=AuditAction.PARTNER_FEE_DEACTIVATED,
            target_type=AuditTarget.PARTNER_FEE,
            target_id=fee.id,
            metadata={"partner_id": fee.partner_id, "currency": fee.currency}
        )
        return fee
