"""
Audit logging service for order and ledger events.

Audit rows are added to the caller's session and flushed; they commit (or
roll back) together with the change they describe.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from dailyorder.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_MERGED = "ORDER_MERGED"
    ORDER_UPDATED = "ORDER_UPDATED"
    ORDERS_COMPLETED = "ORDERS_COMPLETED"
    ORDERS_CANCELLED = "ORDERS_CANCELLED"
    PAYMENT_STATUS_CHANGED = "PAYMENT_STATUS_CHANGED"

    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    LEDGER_ADJUSTED = "LEDGER_ADJUSTED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor: Optional[dict] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    tenant_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Record an audit event in the current transaction.

    Args:
        db: Database session (caller commits)
        action: Action being performed (use AuditAction constants)
        actor: Identity dict of the caller, None for system actions
        entity_type: "order" or "ledger_entry"
        entity_id: Primary key of the affected row, if a single one
        tenant_id: Tenant the event belongs to
        metadata: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        tenant_id=tenant_id,
        actor_id=actor.get("user_id") if actor else None,
        actor_username=actor.get("sub") if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=metadata,
    )

    db.add(audit_log)
    await db.flush()

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.id))

    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)

    if entity_id:
        query = query.where(AuditLog.entity_id == entity_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
