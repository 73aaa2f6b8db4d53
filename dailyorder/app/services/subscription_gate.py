"""
Subscription usage gate.

Consulted before an order is created and bumped after it commits. Plan
management is external; this module only reads the configured monthly limit
and maintains the per-month counter.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from dailyorder.app.core.exceptions import LimitExceededError
from dailyorder.app.models.usage import TenantLimit, TenantUsage

logger = logging.getLogger("dailyorder.orders")

ORDERS_PER_MONTH = "orders_per_month"
UNLIMITED = -1


def period_of(now: datetime) -> str:
    return now.strftime("%Y-%m")


@dataclass(frozen=True)
class LimitCheck:
    allowed: bool
    limit: int
    current: int
    remaining: int

    def raise_if_blocked(self) -> None:
        if not self.allowed:
            raise LimitExceededError(
                message=f"Monthly order limit of {self.limit} reached. Upgrade your plan to create more orders.",
                limit=self.limit,
                current=self.current,
                remaining=self.remaining,
            )


class SubscriptionGate:

    @staticmethod
    async def _current_usage(db: AsyncSession, tenant_id: int, period: str) -> int:
        result = await db.execute(
            select(TenantUsage.orders_count).where(
                TenantUsage.tenant_id == tenant_id,
                TenantUsage.period_month == period,
            )
        )
        return result.scalar_one_or_none() or 0

    @staticmethod
    async def can_create(
        db: AsyncSession,
        tenant_id: Optional[int],
        now: datetime,
        resource: str = ORDERS_PER_MONTH,
    ) -> LimitCheck:
        """
        Yes/no gate for creating one more ``resource`` this month.

        Platform scope (tenant None) and tenants without a limit row are
        unlimited.
        """
        if resource != ORDERS_PER_MONTH:
            raise ValueError(f"Unknown usage resource: {resource}")

        if tenant_id is None:
            return LimitCheck(allowed=True, limit=UNLIMITED, current=0, remaining=UNLIMITED)

        limit_result = await db.execute(
            select(TenantLimit.orders_per_month).where(TenantLimit.tenant_id == tenant_id)
        )
        limit = limit_result.scalar_one_or_none()
        current = await SubscriptionGate._current_usage(db, tenant_id, period_of(now))

        if limit is None or limit == UNLIMITED:
            return LimitCheck(allowed=True, limit=UNLIMITED, current=current, remaining=UNLIMITED)

        remaining = max(limit - current, 0)
        return LimitCheck(allowed=current < limit, limit=limit, current=current, remaining=remaining)

    @staticmethod
    async def increment_usage(db: AsyncSession, tenant_id: Optional[int], now: datetime) -> None:
        """Add one to this month's order counter and commit."""
        if tenant_id is None:
            return
        period = period_of(now)

        try:
            result = await db.execute(
                update(TenantUsage)
                .where(TenantUsage.tenant_id == tenant_id, TenantUsage.period_month == period)
                .values(orders_count=TenantUsage.orders_count + 1)
            )
            if result.rowcount == 0:
                try:
                    async with db.begin_nested():
                        db.add(TenantUsage(tenant_id=tenant_id, period_month=period, orders_count=1))
                except IntegrityError:
                    # Another request created the row first
                    await db.execute(
                        update(TenantUsage)
                        .where(TenantUsage.tenant_id == tenant_id, TenantUsage.period_month == period)
                        .values(orders_count=TenantUsage.orders_count + 1)
                    )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(
                "Failed to increment order usage",
                extra={"tenant_id": tenant_id, "period": period, "error": str(e)},
            )

    @staticmethod
    async def decrement_usage(db: AsyncSession, tenant_id: Optional[int], now: datetime) -> None:
        """Take one off this month's order counter, never below zero."""
        if tenant_id is None:
            return
        period = period_of(now)

        try:
            await db.execute(
                update(TenantUsage)
                .where(
                    TenantUsage.tenant_id == tenant_id,
                    TenantUsage.period_month == period,
                    TenantUsage.orders_count > 0,
                )
                .values(orders_count=TenantUsage.orders_count - 1)
            )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(
                "Failed to decrement order usage",
                extra={"tenant_id": tenant_id, "period": period, "error": str(e)},
            )
