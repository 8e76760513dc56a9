"""
Partner Schema Fee database model.

Flat monthly fee charged to an advertising partner.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, Enum, Index, text
from sqlalchemy.sql import func
from glassbox_backend.app.db.session import Base
from glassbox_backend.app.models.fee_enums import PriceType


class PartnerSchemaFee(Base):
    """
    Partner Schema Fee model.

    At most one active fee per (partner, currency), enforced by a partial
    unique index.
    """
    __tablename__ = "partner_schema_fees"
    __table_args__ = (
        Index(
            "uq_partner_schema_fees_active_currency",
            "partner_id", "currency",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    partner_id = Column(String(64), nullable=False, index=True)
    price_type = Column(Enum(PriceType), default=PriceType.MONTHLY, nullable=False)
    amount = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    description = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<PartnerSchemaFee(id={self.id}, partner='{self.partner_id}', amount={self.amount} {self.currency})>"
