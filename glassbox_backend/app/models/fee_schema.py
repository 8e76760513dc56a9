"""
Business Schema Fee database models.

Percentage shares of a merchant's advertising revenue, one per entity.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, ForeignKey, Enum, Index, text
from sqlalchemy.sql import func
from glassbox_backend.app.db.session import Base
from glassbox_backend.app.models.fee_enums import FeeEntity


class FeeSchema(Base):
    """
    Business Schema Fee model.

    One row per (merchant, entity) share. Retired shares are deactivated,
    never deleted, so historical settlements keep their references.
    The partial unique index enforces one ACTIVE share per entity per merchant.
    """
    __tablename__ = "business_schema_fees"
    __table_args__ = (
        Index(
            "uq_business_schema_fees_active_entity",
            "merchant_id", "entity",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    entity = Column(Enum(FeeEntity), nullable=False)
    merchant_id = Column(String(64), nullable=False, index=True)
    amount = Column(Numeric(5, 2), nullable=False)  # Percentage 0.00 - 100.00

    is_active = Column(Boolean, default=True, nullable=False, index=True)
    description = Column(String(255), nullable=True)

    # Audit
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<FeeSchema(id={self.id}, merchant='{self.merchant_id}', entity='{self.entity.value}', amount={self.amount})>"


class FeeSchemaRevision(Base):
    """
    Append-only history of fee schema states.

    Each mutation closes the open revision (valid_to) and opens a new one.
    Settlement runs read the revisions in effect at the end of their period,
    so regenerating an old period is unaffected by later edits.
    """
    __tablename__ = "business_schema_fee_revisions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    fee_schema_id = Column(Integer, ForeignKey('business_schema_fees.id'), nullable=False, index=True)

    # Denormalized state at this revision
    merchant_id = Column(String(64), nullable=False, index=True)
    entity = Column(Enum(FeeEntity), nullable=False)
    amount = Column(Numeric(5, 2), nullable=False)
    is_active = Column(Boolean, nullable=False)

    # Validity window [valid_from, valid_to)
    valid_from = Column(DateTime(timezone=True), nullable=False, index=True)
    valid_to = Column(DateTime(timezone=True), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<FeeSchemaRevision(id={self.id}, schema={self.fee_schema_id}, amount={self.amount}, active={self.is_active})>"
