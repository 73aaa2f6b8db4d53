"""
Audit Log Database Model.

Tracks order transitions and ledger operations for reconciliation.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from dailyorder.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - ORDER_CREATED / ORDER_MERGED / ORDER_UPDATED
    - ORDERS_COMPLETED / ORDERS_CANCELLED
    - PAYMENT_STATUS_CHANGED
    - PAYMENT_RECORDED / LEDGER_ADJUSTED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(Integer, index=True, nullable=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_username = Column(String(100), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # What it was performed on
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(Integer, index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_username}, entity={self.entity_type}:{self.entity_id})>"
