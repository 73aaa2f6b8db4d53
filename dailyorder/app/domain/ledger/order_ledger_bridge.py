"""
Order -> Ledger coupling.

Translates order transitions into ledger appends. Each handler runs inside
the caller's transaction and distributor lock, once per qualifying order.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from dailyorder.app.domain.ledger.ledger_service import LedgerService
from dailyorder.app.domain.orders.state_machine import PaymentLedgerEffect
from dailyorder.app.models.ledger_entry import LedgerEntry
from dailyorder.app.models.ledger_enums import LedgerReferenceType
from dailyorder.app.models.order import Order


class OrderLedgerBridge:

    @staticmethod
    async def on_order_completed(
        db: AsyncSession, order: Order, actor_id: Optional[int], entry_date: date, now: datetime
    ) -> LedgerEntry:
        """Completed order: the distributor now owes its total."""
        return await LedgerService.debit(
            db,
            distributor_id=order.distributor_id,
            tenant_id=order.tenant_id,
            amount=order.total_amount,
            reference_type=LedgerReferenceType.ORDER,
            reference_id=order.id,
            narration=f"Order {order.order_no} - Sale",
            entry_date=entry_date,
            created_by=actor_id,
            now=now,
        )

    @staticmethod
    async def on_payment_confirmed(
        db: AsyncSession, order: Order, actor_id: Optional[int], entry_date: date, now: datetime
    ) -> LedgerEntry:
        return await LedgerService.credit(
            db,
            distributor_id=order.distributor_id,
            tenant_id=order.tenant_id,
            amount=order.total_amount,
            reference_type=LedgerReferenceType.PAYMENT,
            reference_id=order.id,
            narration=f"Payment received for Order {order.order_no}",
            entry_date=entry_date,
            created_by=actor_id,
            now=now,
        )

    @staticmethod
    async def on_payment_reversed(
        db: AsyncSession, order: Order, actor_id: Optional[int], entry_date: date, now: datetime
    ) -> LedgerEntry:
        return await LedgerService.debit(
            db,
            distributor_id=order.distributor_id,
            tenant_id=order.tenant_id,
            amount=order.total_amount,
            reference_type=LedgerReferenceType.ADJUSTMENT,
            reference_id=order.id,
            narration=f"Payment reversal for Order {order.order_no}",
            entry_date=entry_date,
            created_by=actor_id,
            now=now,
        )

    @staticmethod
    async def apply_payment_effect(
        db: AsyncSession,
        order: Order,
        effect: PaymentLedgerEffect,
        actor_id: Optional[int],
        entry_date: date,
        now: datetime,
    ) -> Optional[LedgerEntry]:
        if effect == PaymentLedgerEffect.CREDIT:
            return await OrderLedgerBridge.on_payment_confirmed(db, order, actor_id, entry_date, now)
        if effect == PaymentLedgerEffect.REVERSAL:
            return await OrderLedgerBridge.on_payment_reversed(db, order, actor_id, entry_date, now)
        return None
