"""
Settlement Batch database models.

One batch per generation run of a (year, month) period.
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Enum, JSON, Numeric
from sqlalchemy.sql import func
from glassbox_backend.app.db.session import Base
from glassbox_backend.app.models.fee_enums import BatchStatus, BatchOutcome, PriceType


class SettlementBatch(Base):
    """
    Settlement Batch model.

    Lifecycle: PENDING -> RUNNING -> COMPLETED | FAILED.
    Transitions are conditional updates on the expected status, so a worker
    that lost its batch cannot overwrite a terminal state.
    Terminal batches are never rewritten; regeneration creates a new batch
    that points at the one it supersedes. The current batch of a period is
    its most recent COMPLETED batch.
    """
    __tablename__ = "settlement_batches"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Period
    year = Column(Integer, nullable=False, index=True)
    month = Column(Integer, nullable=False, index=True)

    # Status
    status = Column(Enum(BatchStatus), default=BatchStatus.PENDING, nullable=False, index=True)
    outcome = Column(Enum(BatchOutcome), nullable=True)

    # Progress
    total_records = Column(Integer, default=0, nullable=False)
    processed_records = Column(Integer, default=0, nullable=False)
    failed_records = Column(Integer, default=0, nullable=False)

    started_at = Column(DateTime(timezone=True), nullable=True)
    # Touched by the worker on every checkpoint; a silent batch is abandoned
    heartbeat_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)

    # Provenance
    generated_by = Column(String(100), nullable=True)
    force_regenerated = Column(Boolean, default=False, nullable=False)
    previous_batch_id = Column(Integer, ForeignKey('settlement_batches.id'), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def progress_percent(self) -> float:
        if not self.total_records:
            return 100.0 if self.status == BatchStatus.COMPLETED else 0.0
        done = (self.processed_records or 0) + (self.failed_records or 0)
        return round(done * 100.0 / self.total_records, 2)

    def __repr__(self):
        return f"<SettlementBatch(id={self.id}, period={self.year}-{self.month:02d}, status='{self.status.value}')>"


class SettlementRecordFailure(Base):
    """
    Per-transaction failure captured during a settlement run.

    Kept for operator remediation; failures never abort the run.
    """
    __tablename__ = "settlement_record_failures"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    batch_id = Column(Integer, ForeignKey('settlement_batches.id'), nullable=False, index=True)

    transaction_id = Column(String(64), nullable=True, index=True)
    error_code = Column(String(64), nullable=False)
    error_message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<SettlementRecordFailure(id={self.id}, batch={self.batch_id}, code='{self.error_code}')>"


class SettlementPartnerFee(Base):
    """
    Partner monthly fee as it stood when a batch ran.

    Reports read these rows, so editing a partner fee later leaves the
    report of a settled period unchanged.
    """
    __tablename__ = "settlement_partner_fees"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    batch_id = Column(Integer, ForeignKey('settlement_batches.id'), nullable=False, index=True)
    partner_fee_id = Column(Integer, ForeignKey('partner_schema_fees.id'), nullable=True)

    partner_id = Column(String(64), nullable=False)
    price_type = Column(Enum(PriceType), nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    def __repr__(self):
        return f"<SettlementPartnerFee(batch={self.batch_id}, partner='{self.partner_id}', amount={self.amount} {self.currency})>"
