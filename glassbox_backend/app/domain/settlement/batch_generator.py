"""
Settlement Batch Generator.

Materializes a period's allocations into a settlement batch.

Flow:
1. prepare(): take the period lock, return the current batch or create a PENDING one
2. run(): snapshot schemas, count the feed, mark RUNNING
3. Allocate every transaction page by page, storing record failures and
   checkpointing progress (which also refreshes the heartbeat and the lock)
4. Persist aggregates, the partner fees in force and COMPLETED in one commit
5. Any run-level error rolls back and marks the batch FAILED

Batches are append-only: regeneration creates a new batch pointing at the
one it supersedes, and terminal batches are never rewritten. Every status
write is conditional on the status the worker expects, so a run whose batch
was aborted as abandoned stops at its next checkpoint.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, desc, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from glassbox_backend.app.core.config import settings
from glassbox_backend.app.core.exceptions import (
    AppException, RecordProcessingError, ResourceNotFoundError, RunFatalError, RunTakenOverError,
    SchemaNotFoundError, SettlementInProgressError, ValidationError
)
from glassbox_backend.app.domain.settlement.aggregation import aggregate, merge_aggregates
from glassbox_backend.app.domain.settlement.allocation import HUNDRED, allocate_transaction
from glassbox_backend.app.domain.settlement.schema_resolver import FeeSchemaResolver
from glassbox_backend.app.domain.settlement.transaction_source import SqlTransactionSource, TransactionSource
from glassbox_backend.app.domain.settlement.values import (
    AggregateRow, AllocationResult, FeeShare, Period, TransactionRecord, utc_naive
)
from glassbox_backend.app.models.fee_enums import (
    BatchOutcome, BatchStatus, Dimension, FeeEntity, MissingSchemaPolicy, RemainderPolicy
)
from glassbox_backend.app.models.revenue_aggregate import RevenueAggregate
from glassbox_backend.app.models.settlement_batch import SettlementBatch, SettlementPartnerFee, SettlementRecordFailure
from glassbox_backend.app.services.audit import log_event, AuditAction, AuditTarget
from glassbox_backend.app.services.locking import DistributedLock, settlement_lock_key
from glassbox_backend.app.services.partner_fees import PartnerFeeService

logger = logging.getLogger("glassbox.settlement")

# Rollups stored with every completed batch
SETTLEMENT_DIMENSIONS = [
    (),
    (Dimension.ENTITY,),
    (Dimension.MERCHANT,),
    (Dimension.MERCHANT, Dimension.ENTITY),
    (Dimension.PARTNER,),
    (Dimension.PARTNER, Dimension.ENTITY),
    (Dimension.CATEGORY,),
    (Dimension.DEVICE,),
]

IN_FLIGHT = [BatchStatus.PENDING, BatchStatus.RUNNING]


async def current_batch(db: AsyncSession, year: int, month: int) -> Optional[SettlementBatch]:
    """Most recent COMPLETED batch of a period."""
    result = await db.execute(
        select(SettlementBatch).where(
            SettlementBatch.year == year,
            SettlementBatch.month == month,
            SettlementBatch.status == BatchStatus.COMPLETED
        ).order_by(desc(SettlementBatch.id)).limit(1)
    )
    return result.scalar_one_or_none()


async def transition_batch(
    db: AsyncSession,
    batch_id: int,
    expected: Sequence[BatchStatus],
    **values
) -> bool:
    """
    Update a batch only while its status is one of `expected`.

    Does not commit. Returns False when another worker moved the batch on first.
    """
    result = await db.execute(
        update(SettlementBatch)
        .where(SettlementBatch.id == batch_id, SettlementBatch.status.in_(list(expected)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


class SettlementBatchGenerator:

    def __init__(
        self,
        session_factory: async_sessionmaker,
        redis,
        transaction_source: Optional[TransactionSource] = None,
        schema_resolver=None,
        remainder_policy: Optional[RemainderPolicy] = None,
        missing_schema_policy: Optional[MissingSchemaPolicy] = None
    ):
        self.session_factory = session_factory
        self.redis = redis
        self.transaction_source = transaction_source or SqlTransactionSource()
        self.schema_resolver = schema_resolver or FeeSchemaResolver
        self.remainder_policy = remainder_policy or RemainderPolicy(settings.remainder_policy)
        self.missing_schema_policy = missing_schema_policy or MissingSchemaPolicy(settings.missing_schema_policy)
        self._locks: Dict[int, DistributedLock] = {}

    async def generate(
        self,
        year: int,
        month: int,
        force_regenerate: bool = False,
        generated_by: Optional[str] = None
    ) -> SettlementBatch:
        """
        Generate (or return) the settlement batch of a period, in the foreground.

        Returns the existing COMPLETED batch unchanged unless forced.
        """
        batch, created = await self.prepare(year, month, force_regenerate, generated_by)
        if not created:
            return batch
        return await self.run(batch.id)

    async def prepare(
        self,
        year: int,
        month: int,
        force_regenerate: bool = False,
        generated_by: Optional[str] = None
    ) -> Tuple[SettlementBatch, bool]:
        """
        Take the period lock and decide what a generate request resolves to.

        Returns:
            (batch, created). When created is True the caller must call
            run(batch.id) on this generator; the lock is held until then.

        Raises:
            SettlementInProgressError: If a run for the period is in flight
        """
        period = Period(year=year, month=month)
        lock = DistributedLock(
            self.redis, settlement_lock_key(year, month), settings.settlement_lock_ttl_seconds
        )
        if not await lock.acquire():
            raise SettlementInProgressError(year, month)

        try:
            async with self.session_factory() as db:
                await self._reject_in_flight(db, period)

                current = await current_batch(db, year, month)
                if current is not None and not force_regenerate:
                    await lock.release()
                    return current, False

                batch = SettlementBatch(
                    year=year,
                    month=month,
                    status=BatchStatus.PENDING,
                    heartbeat_at=datetime.utcnow(),
                    generated_by=generated_by,
                    force_regenerated=force_regenerate,
                    previous_batch_id=current.id if current else None
                )
                db.add(batch)
                await db.commit()
                await db.refresh(batch)

                await log_event(
                    db=db,
                    action=AuditAction.SETTLEMENT_REQUESTED,
                    actor_username=generated_by,
                    target_type=AuditTarget.SETTLEMENT_BATCH,
                    target_id=batch.id,
                    metadata={
                        "period": period.label,
                        "force_regenerate": force_regenerate,
                        "previous_batch_id": batch.previous_batch_id
                    }
                )
        except BaseException:
            await lock.release()
            raise

        self._locks[batch.id] = lock
        logger.info(
            "Settlement batch %s created for %s (force=%s, previous=%s)",
            batch.id, period.label, force_regenerate, batch.previous_batch_id
        )
        return batch, True

    async def _reject_in_flight(self, db: AsyncSession, period: Period) -> None:
        """
        Refuse to start while a PENDING/RUNNING batch exists for the period.

        Batches whose heartbeat is older than the lock TTL lost their worker
        and are aborted.
        """
        result = await db.execute(
            select(SettlementBatch).where(
                SettlementBatch.year == period.year,
                SettlementBatch.month == period.month,
                SettlementBatch.status.in_(IN_FLIGHT)
            ).order_by(desc(SettlementBatch.id))
        )
        stale_before = datetime.utcnow() - timedelta(seconds=settings.settlement_lock_ttl_seconds)

        abandoned = False
        for batch in result.scalars().all():
            last_seen = utc_naive(batch.heartbeat_at or batch.created_at)
            if last_seen is None or last_seen >= stale_before:
                raise SettlementInProgressError(period.year, period.month, batch.id)

            aborted = await transition_batch(
                db, batch.id, [batch.status],
                status=BatchStatus.FAILED,
                outcome=BatchOutcome.ABORTED,
                error="Run abandoned: no heartbeat within the lock TTL",
                completed_at=datetime.utcnow()
            )
            if aborted:
                logger.warning("Aborted abandoned settlement batch %s (last heartbeat %s)", batch.id, last_seen)
            abandoned = True

        if abandoned:
            await db.commit()
            db.expire_all()

    async def run(self, batch_id: int) -> SettlementBatch:
        """
        Execute a PENDING batch to a terminal state.

        Never raises for run failures: they are recorded on the batch.
        """
        try:
            async with self.session_factory() as db:
                batch = await db.get(SettlementBatch, batch_id)
                if batch is None:
                    raise ResourceNotFoundError("Settlement batch", batch_id)
                if batch.status != BatchStatus.PENDING:
                    logger.info("Settlement batch %s is %s, nothing to run", batch_id, batch.status.value)
                    return batch

                try:
                    await self._execute(db, batch)
                except RunTakenOverError as exc:
                    await db.rollback()
                    logger.warning("Settlement batch %s stopped: %s", batch_id, exc.message)
                except Exception as exc:
                    await db.rollback()
                    await self._abort(db, batch, exc)

                await db.refresh(batch)
                return batch
        finally:
            lock = self._locks.pop(batch_id, None)
            if lock is not None:
                await lock.release()

    async def _checkpoint(
        self,
        db: AsyncSession,
        batch_id: int,
        expected: Sequence[BatchStatus],
        **values
    ) -> None:
        """
        Commit run state with a fresh heartbeat and extend the period lock.

        Raises:
            RunTakenOverError: If the batch left the `expected` states
        """
        if not await transition_batch(db, batch_id, expected, heartbeat_at=datetime.utcnow(), **values):
            raise RunTakenOverError(batch_id)
        await db.commit()

        lock = self._locks.get(batch_id)
        if lock is not None and not await lock.extend():
            logger.warning("Settlement batch %s no longer holds %s", batch_id, lock.key)

    async def _execute(self, db: AsyncSession, batch: SettlementBatch) -> None:
        period = Period(year=batch.year, month=batch.month)
        batch_id = batch.id

        try:
            snapshot = await self.schema_resolver.snapshot_for_period(db, period)
            total = await self.transaction_source.count(db, period)
            partner_fees = [
                dict(
                    partner_fee_id=fee.id,
                    partner_id=fee.partner_id,
                    price_type=fee.price_type,
                    amount=fee.amount,
                    currency=fee.currency
                )
                for fee in await PartnerFeeService.active_fees(db)
            ]
        except Exception as exc:
            raise RunFatalError(
                f"Could not load inputs for {period.label}: {exc}",
                details={"exception": type(exc).__name__}
            ) from exc

        await self._checkpoint(
            db, batch_id, [BatchStatus.PENDING],
            status=BatchStatus.RUNNING,
            started_at=datetime.utcnow(),
            total_records=total,
            processed_records=0,
            failed_records=0
        )
        logger.info(
            "Settlement batch %s running for %s: %s records, %s merchants with schemas",
            batch_id, period.label, total, len(snapshot)
        )

        interval = max(settings.settlement_progress_interval, 1)
        rollup: List[AggregateRow] = []
        processed = failed = handled = 0

        async for page in self.transaction_source.iter_pages(db, period, settings.settlement_page_size):
            lines: List[AllocationResult] = []
            for record in page:
                try:
                    lines.extend(self._allocate_record(record, snapshot))
                    processed += 1
                except (RecordProcessingError, SchemaNotFoundError, ValidationError) as exc:
                    failed += 1
                    db.add(SettlementRecordFailure(
                        batch_id=batch_id,
                        transaction_id=record.id,
                        error_code=exc.error_code,
                        error_message=exc.message,
                        payload=record.model_dump(mode="json")
                    ))

                handled += 1
                if handled % interval == 0:
                    await self._checkpoint(
                        db, batch_id, [BatchStatus.RUNNING], processed_records=processed, failed_records=failed
                    )
                    logger.info("Settlement batch %s progress: %s/%s (%s failed)", batch_id, handled, total, failed)

            # Pages hold disjoint transactions, so their rollups merge by summation
            page_rows = [row for dimension in SETTLEMENT_DIMENSIONS for row in aggregate(lines, dimension)]
            rollup = merge_aggregates(rollup, page_rows)

        for row in rollup:
            db.add(RevenueAggregate(batch_id=batch_id, **row.model_dump()))
        for fee in partner_fees:
            db.add(SettlementPartnerFee(batch_id=batch_id, **fee))

        if handled != total:
            # Feed changed between count and read
            logger.warning("Settlement batch %s counted %s records but read %s", batch_id, total, handled)
            total = handled

        outcome = BatchOutcome.PARTIAL_FAILURE if failed else BatchOutcome.SUCCESS
        await self._checkpoint(
            db, batch_id, [BatchStatus.RUNNING],
            status=BatchStatus.COMPLETED,
            outcome=outcome,
            completed_at=datetime.utcnow(),
            total_records=total,
            processed_records=processed,
            failed_records=failed
        )

        logger.info(
            "Settlement batch %s completed: outcome=%s processed=%s failed=%s",
            batch_id, outcome.value, processed, failed
        )
        await log_event(
            db=db,
            action=AuditAction.SETTLEMENT_COMPLETED,
            actor_username=batch.generated_by,
            target_type=AuditTarget.SETTLEMENT_BATCH,
            target_id=batch_id,
            metadata={
                "period": period.label,
                "outcome": outcome.value,
                "processed_records": processed,
                "failed_records": failed
            }
        )

    def _allocate_record(
        self,
        record: TransactionRecord,
        snapshot: Dict[str, List[FeeShare]]
    ) -> List[AllocationResult]:
        if not record.merchant_id:
            raise RecordProcessingError(
                "Transaction has no merchant reference", record.id, error_code="ERR_RECORD_NO_MERCHANT"
            )
        if record.amount < 0:
            raise RecordProcessingError(
                f"Transaction amount {record.amount} is negative", record.id, error_code="ERR_RECORD_NEGATIVE_AMOUNT"
            )

        try:
            return allocate_transaction(record, snapshot.get(record.merchant_id, []), self.remainder_policy)
        except SchemaNotFoundError:
            if self.missing_schema_policy == MissingSchemaPolicy.FAIL_RECORD:
                raise
            if self.missing_schema_policy == MissingSchemaPolicy.SKIP:
                logger.debug("Skipping transaction %s: merchant %s has no schema", record.id, record.merchant_id)
                return []
            platform = FeeShare(merchant_id=record.merchant_id, entity=FeeEntity.GLASSBOX, amount=HUNDRED)
            return allocate_transaction(record, [platform], self.remainder_policy)

    async def _abort(self, db: AsyncSession, batch: SettlementBatch, exc: Exception) -> None:
        # rollback expired the batch
        await db.refresh(batch)

        if isinstance(exc, AppException):
            message = exc.message
        else:
            message = f"{type(exc).__name__}: {exc}"
        logger.exception("Settlement batch %s aborted: %s", batch.id, message)

        aborted = await transition_batch(
            db, batch.id, IN_FLIGHT,
            status=BatchStatus.FAILED,
            outcome=BatchOutcome.ABORTED,
            error=message,
            completed_at=datetime.utcnow(),
            heartbeat_at=datetime.utcnow()
        )
        await db.commit()
        if not aborted:
            logger.warning("Settlement batch %s already left its run, abort not recorded", batch.id)
            return

        await log_event(
            db=db,
            action=AuditAction.SETTLEMENT_FAILED,
            actor_username=batch.generated_by,
            target_type=AuditTarget.SETTLEMENT_BATCH,
            target_id=batch.id,
            metadata={"period": f"{batch.year}-{batch.month:02d}", "error": message}
        )
