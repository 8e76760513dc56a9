"""
Audit Log Database Model.

Tracks fee schema mutations and settlement runs for financial auditability.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from glassbox_backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for tracking schema changes and settlement actions.

    Events logged:
    - FEE_SCHEMA_CREATED / UPDATED / ACTIVATED / DEACTIVATED
    - PARTNER_FEE_CREATED / UPDATED / DEACTIVATED
    - SETTLEMENT_REQUESTED / COMPLETED / FAILED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(String(64), index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # What was acted upon
    target_type = Column(String(50), nullable=True)
    target_id = Column(String(64), index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    ip_address = Column(String(50), nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_username}, target={self.target_type}:{self.target_id})>"
