"""
Revenue Aggregate database model.

Period rollups written by a settlement run.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Enum
from sqlalchemy.sql import func
from glassbox_backend.app.db.session import Base
from glassbox_backend.app.models.fee_enums import FeeEntity


class RevenueAggregate(Base):
    """
    Revenue Aggregate model.

    `dimension` names the grouped columns (e.g. "merchant_id,entity", or ""
    for the period total). Columns outside the dimension are NULL. Rows of a
    batch are only authoritative once the batch is COMPLETED.
    """
    __tablename__ = "revenue_aggregates"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    batch_id = Column(Integer, ForeignKey('settlement_batches.id'), nullable=False, index=True)

    year = Column(Integer, nullable=False, index=True)
    month = Column(Integer, nullable=False, index=True)
    dimension = Column(String(64), nullable=False, index=True)
    currency = Column(String(3), nullable=False)

    # Dimension values
    partner_id = Column(String(64), nullable=True)
    merchant_id = Column(String(64), nullable=True)
    category = Column(String(100), nullable=True)
    device_id = Column(String(64), nullable=True)
    entity = Column(Enum(FeeEntity), nullable=True)

    # Measures
    total_amount = Column(Numeric(20, 4), nullable=False)
    record_count = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<RevenueAggregate(batch={self.batch_id}, dimension='{self.dimension}', total={self.total_amount})>"
