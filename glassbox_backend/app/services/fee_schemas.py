"""
Business schema fee service.

Every write goes through the same pipeline:
1. Hold the merchant's schema lock (Redis)
2. Read the merchant's active schemas FOR UPDATE
3. Validate the resulting state
4. Persist the change and its revision in one transaction
5. Audit
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from glassbox_backend.app.core.exceptions import ResourceNotFoundError, ValidationError
from glassbox_backend.app.domain.settlement.fee_validator import (
    MAX_PERCENTAGE, active_total, validate_fee_schema
)
from glassbox_backend.app.domain.settlement.values import FeeShare, ValidationResult, utc_naive
from glassbox_backend.app.models.fee_enums import FeeEntity
from glassbox_backend.app.models.fee_schema import FeeSchema, FeeSchemaRevision
from glassbox_backend.app.schemas.fee_schema import (
    BusinessSchemaFeeCreate, BusinessSchemaFeeResponse, BusinessSchemaFeeUpdate, BusinessSchemaFeeValidateRequest,
    MerchantAllocationSummary
)
from glassbox_backend.app.services.audit import log_admin_action, AuditAction, AuditTarget
from glassbox_backend.app.services.locking import merchant_schema_lock

logger = logging.getLogger("glassbox.fees")

# Fields that change how revenue is split, and therefore open a new revision
ALLOCATION_FIELDS = ("entity", "amount", "is_active")


def _state(schema: FeeSchema) -> Dict[str, Any]:
    return {
        "entity": schema.entity.value,
        "amount": str(schema.amount),
        "is_active": schema.is_active,
    }


def _duplicate_active(merchant_id: str, entity: Any) -> ValidationError:
    # Lost a race the lock did not cover; the partial unique index caught it
    entity = getattr(entity, "value", entity)
    return ValidationError(
        message=f"{entity} already has an active fee for merchant {merchant_id}",
        violation=ValidationError.DUPLICATE_ACTIVE_ENTITY,
        details={"merchant_id": merchant_id, "entity": entity}
    )


class FeeSchemaService:

    @staticmethod
    async def list_schemas(
        db: AsyncSession,
        merchant_id: Optional[str] = None,
        entity: Optional[FeeEntity] = None,
        is_active: Optional[bool] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[FeeSchema]:
        query = select(FeeSchema)
        if merchant_id:
            query = query.where(FeeSchema.merchant_id == merchant_id)
        if entity:
            query = query.where(FeeSchema.entity == entity)
        if is_active is not None:
            query = query.where(FeeSchema.is_active == is_active)

        query = query.order_by(FeeSchema.merchant_id, FeeSchema.id).offset(skip).limit(limit)
        result = await db.execute(query)
        return result.scalars().all()

    @staticmethod
    async def get_schema(db: AsyncSession, schema_id: int) -> FeeSchema:
        schema = await db.get(FeeSchema, schema_id)
        if not schema:
            raise ResourceNotFoundError("Business schema fee", schema_id)
        return schema

    @staticmethod
    async def active_for_merchant(
        db: AsyncSession,
        merchant_id: str,
        for_update: bool = False
    ) -> List[FeeSchema]:
        """
        Active schemas of a merchant.

        With for_update the rows stay locked until the caller's transaction
        ends, so concurrent writers validate against the same state.
        """
        query = select(FeeSchema).where(
            FeeSchema.merchant_id == merchant_id,
            FeeSchema.is_active == True
        ).order_by(FeeSchema.id)
        if for_update:
            query = query.with_for_update()

        result = await db.execute(query)
        return result.scalars().all()

    @staticmethod
    async def dry_run_validate(db: AsyncSession, request: BusinessSchemaFeeValidateRequest) -> ValidationResult:
        """Advisory pre-check; the authoritative check runs again on write."""
        siblings = await FeeSchemaService.active_for_merchant(db, request.merchant_id)
        return validate_fee_schema(request, siblings, exclude_id=request.exclude_id)

    @staticmethod
    async def merchant_allocation(db: AsyncSession, merchant_id: str) -> MerchantAllocationSummary:
        schemas = await FeeSchemaService.active_for_merchant(db, merchant_id)
        total = active_total(schemas, merchant_id)
        return MerchantAllocationSummary(
            merchant_id=merchant_id,
            total_allocated=total,
            remaining=MAX_PERCENTAGE - total,
            schemas=[BusinessSchemaFeeResponse.model_validate(s) for s in schemas]
        )

    @staticmethod
    async def list_revisions(db: AsyncSession, schema_id: int) -> List[FeeSchemaRevision]:
        await FeeSchemaService.get_schema(db, schema_id)
        result = await db.execute(
            select(FeeSchemaRevision)
            .where(FeeSchemaRevision.fee_schema_id == schema_id)
            .order_by(FeeSchemaRevision.valid_from, FeeSchemaRevision.id)
        )
        return result.scalars().all()

    @staticmethod
    async def _open_revision(db: AsyncSession, schema_id: int) -> Optional[FeeSchemaRevision]:
        result = await db.execute(
            select(FeeSchemaRevision).where(
                FeeSchemaRevision.fee_schema_id == schema_id,
                FeeSchemaRevision.valid_to.is_(None)
            ).order_by(desc(FeeSchemaRevision.valid_from)).limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _validate_history(db: AsyncSession, candidate: FeeShare, at: datetime) -> None:
        """
        Validate `candidate` against every past state it will be part of.

        A change effective at `at` joins each revision state of the merchant
        from `at` on, so each of those states must still satisfy the rules.
        States are evaluated on [valid_from, valid_to).

        Raises:
            ValidationError: With the first failing boundary in `details`
        """
        result = await db.execute(
            select(FeeSchemaRevision).where(FeeSchemaRevision.merchant_id == candidate.merchant_id)
        )
        revisions = [
            revision for revision in result.scalars().all()
            if candidate.id is None or revision.fee_schema_id != candidate.id
        ]

        boundaries = {at}
        for revision in revisions:
            for moment in (utc_naive(revision.valid_from), utc_naive(revision.valid_to)):
                if moment is not None and moment > at:
                    boundaries.add(moment)

        for boundary in sorted(boundaries):
            in_effect = [
                FeeShare(
                    id=revision.fee_schema_id,
                    merchant_id=revision.merchant_id,
                    entity=revision.entity,
                    amount=revision.amount,
                    is_active=revision.is_active
                )
                for revision in revisions
                if utc_naive(revision.valid_from) <= boundary
                and (revision.valid_to is None or utc_naive(revision.valid_to) > boundary)
            ]
            try:
                validate_fee_schema(candidate, in_effect, exclude_id=candidate.id)
            except ValidationError as exc:
                exc.details["effective_at"] = boundary.isoformat()
                raise

    @staticmethod
    async def _check_effective_date(db: AsyncSession, schema_id: int, at: datetime) -> None:
        """
        Raises:
            ValidationError: If `at` precedes the open revision of the schema
        """
        open_revision = await FeeSchemaService._open_revision(db, schema_id)
        if open_revision is not None and at < utc_naive(open_revision.valid_from):
            raise ValidationError(
                message="Change cannot take effect before the current revision started",
                violation=ValidationError.INVALID_EFFECTIVE_DATE,
                details={
                    "effective_at": at.isoformat(),
                    "current_valid_from": utc_naive(open_revision.valid_from).isoformat()
                }
            )

    @staticmethod
    async def _record_revision(db: AsyncSession, schema: FeeSchema, at: datetime) -> None:
        """Close the open revision of `schema` and open one with its current state."""
        open_revision = await FeeSchemaService._open_revision(db, schema.id)
        if open_revision is not None:
            open_revision.valid_to = at

        db.add(FeeSchemaRevision(
            fee_schema_id=schema.id,
            merchant_id=schema.merchant_id,
            entity=schema.entity,
            amount=schema.amount,
            is_active=schema.is_active,
            valid_from=at
        ))

    @staticmethod
    async def _commit(db: AsyncSession, schema: FeeSchema) -> None:
        # rollback expires the schema
        merchant_id, entity = schema.merchant_id, schema.entity
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise _duplicate_active(merchant_id, entity)
        await db.refresh(schema)

    @staticmethod
    async def create_schema(
        db: AsyncSession,
        redis,
        data: BusinessSchemaFeeCreate,
        current_user: Dict[str, Any]
    ) -> FeeSchema:
        """
        Create a business schema fee.

        Raises:
            ValidationError: If the merchant's resulting allocation is invalid
            ConcurrentModificationError: If the merchant lock is busy
        """
        async with merchant_schema_lock(redis, data.merchant_id):
            siblings = await FeeSchemaService.active_for_merchant(db, data.merchant_id, for_update=True)
            result = validate_fee_schema(data, siblings)

            at = utc_naive(data.effective_from) or datetime.utcnow()
            await FeeSchemaService._validate_history(
                db,
                FeeShare(
                    merchant_id=data.merchant_id, entity=data.entity, amount=data.amount, is_active=data.is_active
                ),
                at
            )

            schema = FeeSchema(
                entity=data.entity,
                merchant_id=data.merchant_id,
                amount=data.amount,
                description=data.description,
                is_active=data.is_active,
                created_by=current_user.get("sub")
            )
            db.add(schema)
            await db.flush()

            await FeeSchemaService._record_revision(db, schema, at)
            if not schema.is_active:
                schema.deactivated_at = at

            await FeeSchemaService._commit(db, schema)

        logger.info(
            "Fee schema %s created: merchant=%s entity=%s amount=%s (merchant total %s%%)",
            schema.id, schema.merchant_id, schema.entity.value, schema.amount, result.total_allocated
        )
        await log_admin_action(
            db=db,
            current_user=current_user,
            action=AuditAction.FEE_SCHEMA_CREATED,
            target_type=AuditTarget.FEE_SCHEMA,
            target_id=schema.id,
            metadata={"merchant_id": schema.merchant_id, **_state(schema)}
        )
        return schema

    @staticmethod
    async def _mutate(
        db: AsyncSession,
        redis,
        schema_id: int,
        changes: Dict[str, Any],
        effective_at: Optional[datetime]
    ) -> Dict[str, Any]:
        """
        Apply `changes` to a schema under the merchant lock.

        Returns:
            Allocation state before the change, for auditing
        """
        schema = await FeeSchemaService.get_schema(db, schema_id)
        merchant_id = schema.merchant_id

        async with merchant_schema_lock(redis, merchant_id):
            siblings = await FeeSchemaService.active_for_merchant(db, merchant_id, for_update=True)
            # Re-read under the lock
            await db.refresh(schema)
            before = _state(schema)

            candidate = FeeShare(
                id=schema.id,
                merchant_id=merchant_id,
                entity=changes.get("entity", schema.entity),
                amount=changes.get("amount", schema.amount),
                is_active=changes.get("is_active", schema.is_active)
            )
            validate_fee_schema(candidate, siblings, exclude_id=schema.id)

            allocation_changed = any(
                field in changes and changes[field] != getattr(schema, field)
                for field in ALLOCATION_FIELDS
            )
            at = utc_naive(effective_at) or datetime.utcnow()
            if allocation_changed:
                await FeeSchemaService._check_effective_date(db, schema.id, at)
                await FeeSchemaService._validate_history(db, candidate, at)

            was_active = schema.is_active
            for field, value in changes.items():
                setattr(schema, field, value)

            if allocation_changed:
                await FeeSchemaService._record_revision(db, schema, at)
                if was_active and not schema.is_active:
                    schema.deactivated_at = at
                elif schema.is_active and not was_active:
                    schema.deactivated_at = None

            await FeeSchemaService._commit(db, schema)

        return before

    @staticmethod
    async def update_schema(
        db: AsyncSession,
        redis,
        schema_id: int,
        data: BusinessSchemaFeeUpdate,
        current_user: Dict[str, Any]
    ) -> FeeSchema:
        """Edit a schema; re-validated against its siblings, excluding itself."""
        changes = data.model_dump(exclude_unset=True, exclude={"effective_at"})
        # entity, amount and is_active cannot be cleared
        changes = {
            field: value for field, value in changes.items()
            if value is not None or field not in ALLOCATION_FIELDS
        }

        before = await FeeSchemaService._mutate(db, redis, schema_id, changes, data.effective_at)
        schema = await FeeSchemaService.get_schema(db, schema_id)

        logger.info("Fee schema %s updated: %s -> %s", schema.id, before, _state(schema))
        await log_admin_action(
            db=db,
            current_user=current_user,
            action=AuditAction.FEE_SCHEMA_UPDATED,
            target_type=AuditTarget.FEE_SCHEMA,
            target_id=schema.id,
            metadata={"merchant_id": schema.merchant_id, "before": before, "after": _state(schema)}
        )
        return schema

    @staticmethod
    async def set_active(
        db: AsyncSession,
        redis,
        schema_id: int,
        active: bool,
        current_user: Dict[str, Any],
        effective_at: Optional[datetime] = None
    ) -> FeeSchema:
        """
        Activate or deactivate a schema. Activation is validated like any write.

        Setting the state a schema already has is a no-op.
        """
        schema = await FeeSchemaService.get_schema(db, schema_id)
        if schema.is_active == active:
            return schema

        await FeeSchemaService._mutate(db, redis, schema_id, {"is_active": active}, effective_at)
        schema = await FeeSchemaService.get_schema(db, schema_id)

        action = AuditAction.FEE_SCHEMA_ACTIVATED if active else AuditAction.FEE_SCHEMA_DEACTIVATED
        logger.info("Fee schema %s %s", schema.id, "activated" if active else "deactivated")
        await log_admin_action(
            db=db,
            current_user=current_user,
            action=action,
            target_type=AuditTarget.FEE_SCHEMA,
            target_id=schema.id,
            metadata={"merchant_id": schema.merchant_id, **_state(schema)}
        )
        return schema
