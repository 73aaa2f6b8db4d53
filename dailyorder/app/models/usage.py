"""
Subscription usage database models.

Plan management lives elsewhere; these tables hold the per-tenant order
limit and the monthly counters the order engine gates on.
"""

from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from dailyorder.app.db.session import Base


class TenantLimit(Base):
    __tablename__ = "tenant_limits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, unique=True, nullable=False, index=True)
    orders_per_month = Column(Integer, nullable=False, default=-1)  # -1 = unlimited

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class TenantUsage(Base):
    __tablename__ = "tenant_usage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    period_month = Column(String(7), nullable=False)  # YYYY-MM
    orders_count = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "period_month", name="uq_tenant_usage_period"),
    )

    def __repr__(self):
        return f"<TenantUsage(tenant={self.tenant_id}, month='{self.period_month}', orders={self.orders_count})>"
