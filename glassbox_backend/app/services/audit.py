"""
Audit logging service for tracking fee schema changes and settlement runs.

Provides centralized logging for financial compliance.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from glassbox_backend.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    # Business schema fees
    FEE_SCHEMA_CREATED = "FEE_SCHEMA_CREATED"
    FEE_SCHEMA_UPDATED = "FEE_SCHEMA_UPDATED"
    FEE_SCHEMA_ACTIVATED = "FEE_SCHEMA_ACTIVATED"
    FEE_SCHEMA_DEACTIVATED = "FEE_SCHEMA_DEACTIVATED"

    # Partner schema fees
    PARTNER_FEE_CREATED = "PARTNER_FEE_CREATED"
    PARTNER_FEE_UPDATED = "PARTNER_FEE_UPDATED"
    PARTNER_FEE_DEACTIVATED = "PARTNER_FEE_DEACTIVATED"

    # Settlement generation
    SETTLEMENT_REQUESTED = "SETTLEMENT_REQUESTED"
    SETTLEMENT_COMPLETED = "SETTLEMENT_COMPLETED"
    SETTLEMENT_FAILED = "SETTLEMENT_FAILED"


class AuditTarget:
    FEE_SCHEMA = "business_schema_fee"
    PARTNER_FEE = "partner_schema_fee"
    SETTLEMENT_BATCH = "settlement_batch"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[Any] = None,
    actor_username: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[Any] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """
    Log an admin or system event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action (None for system runs)
        actor_username: Username of actor
        target_type: Kind of record acted upon (use AuditTarget constants)
        target_id: ID of the record acted upon
        metadata: Additional context as JSON
        ip_address: IP address of the request

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=str(actor_id) if actor_id is not None else None,
        actor_username=actor_username,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        meta_data=metadata,
        ip_address=ip_address
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    return audit_log


async def log_admin_action(
    db: AsyncSession,
    current_user: Dict[str, Any],
    action: str,
    target_type: str,
    target_id: Any,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """Log an action taken by the admin identified by a decoded token payload."""
    return await log_event(
        db=db,
        action=action,
        actor_id=current_user.get("user_id"),
        actor_username=current_user.get("sub"),
        target_type=target_type,
        target_id=target_id,
        metadata=metadata
    )


async def get_audit_trail(
    db: AsyncSession,
    target_type: Optional[str] = None,
    target_id: Optional[Any] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if target_type:
        query = query.where(AuditLog.target_type == target_type)

    if target_id is not None:
        query = query.where(AuditLog.target_id == str(target_id))

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
