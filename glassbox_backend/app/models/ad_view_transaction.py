"""
Advertisement view transaction model.

Written by the display pipeline; the settlement engine only reads it.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime
from sqlalchemy.sql import func
from glassbox_backend.app.db.session import Base


class AdViewTransaction(Base):
    """
    One paid advertisement display.

    merchant_id is nullable: feeds occasionally carry displays whose merchant
    reference was lost, and settlement reports those as record failures.
    """
    __tablename__ = "ad_view_transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    merchant_id = Column(String(64), nullable=True, index=True)
    partner_id = Column(String(64), nullable=True, index=True)
    advertisement_id = Column(String(64), nullable=True)
    device_id = Column(String(64), nullable=True)
    category = Column(String(100), nullable=True)

    # Base fee of the display
    amount = Column(Numeric(18, 4), nullable=False)
    currency = Column(String(3), nullable=False)

    displayed_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<AdViewTransaction(id={self.id}, merchant='{self.merchant_id}', amount={self.amount} {self.currency})>"
