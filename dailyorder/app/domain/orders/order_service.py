"""
Order Service (Domain Logic).

Orchestrates the order lifecycle: window resolution, merge-or-create,
status and payment transitions, and the ledger side effects of those
transitions.

Every write follows the same shape:
1. Cheap scoped reads and validation outside any lock
2. Take the (tenant, distributor) locks in sorted order
3. Re-read with populate_existing and validate again (retake the locks
   if an order moved to another distributor meanwhile)
4. Mutate, append ledger entries, write audit rows
5. Single commit (rollback on any error)
6. Post-commit soft work: usage counter, notifications
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from dailyorder.app.core.clock import Clock
from dailyorder.app.core.config import OrderingWindowConfig
from dailyorder.app.core.exceptions import (
    InsufficientPermissionsError,
    OutsideOrderingWindowError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from dailyorder.app.core.guards import is_admin, tenant_scope
from dailyorder.app.domain.ledger.order_ledger_bridge import OrderLedgerBridge
from dailyorder.app.domain.orders.aggregator import (
    ComputedLine,
    OrderAggregator,
    RequestedLine,
    ResolutionMode,
    order_total,
)
from dailyorder.app.domain.orders.state_machine import OrderStateMachine
from dailyorder.app.models.enums import DeliveryWindow, OrderStatus, PaymentStatus, UserRole
from dailyorder.app.models.order import Order
from dailyorder.app.models.order_item import OrderItem
from dailyorder.app.models.user import User
from dailyorder.app.services.audit import AuditAction, log_event
from dailyorder.app.services.catalog import CatalogPriceLookup
from dailyorder.app.services.distributor_locks import LockKey, distributor_locks, lock_distributor_rows, lock_key
from dailyorder.app.services.notification_service import NotificationSink, NullNotificationSink, notify_orders
from dailyorder.app.services.subscription_gate import SubscriptionGate
from dailyorder.app.services.window_resolver import WindowResolver

logger = logging.getLogger("dailyorder.orders")


def format_order_no(order_id: int) -> str:
    return f"ORD-{order_id:08d}"


def _build_items(lines: Iterable[ComputedLine]) -> List[OrderItem]:
    return [
        OrderItem(
            line_no=line.line_no,
            catalog_item_id=line.catalog_item_id,
            qty=line.qty,
            rate=line.rate,
            amount=line.amount,
            ordered_by_box=line.ordered_by_box,
            box_count=line.box_count,
            box_rate=line.box_rate,
        )
        for line in lines
    ]


class OrderService:

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock,
        window_config: OrderingWindowConfig,
        sink: Optional[NotificationSink] = None,
    ):
        self.db = db
        self.clock = clock
        self.window_config = window_config
        self.resolver = WindowResolver(window_config)
        self.sink = sink or NullNotificationSink()

    # Reads

    def current_window(self) -> Dict:
        now = self.clock.now()
        return {
            "enabled": self.window_config.enabled,
            "current_window": self.resolver.current_window(now),
            "target_window": self.resolver.target_window(now),
            "server_time": now,
            "windows": self.resolver.describe(),
        }

    def _scoped(self, query, actor: dict):
        tenant_id = tenant_scope(actor)
        if tenant_id is not None:
            query = query.where(Order.tenant_id == tenant_id)
        if actor.get("role") == UserRole.DISTRIBUTOR.value:
            query = query.where(Order.distributor_id == actor.get("user_id"))
        return query

    async def list_orders(
        self,
        actor: dict,
        search: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        distributor_id: Optional[int] = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Tuple[List[Order], int]:
        """Newest first. Search matches order number or distributor name."""
        distributor = aliased(User)
        filters = []
        if search:
            pattern = f"%{search.strip()}%"
            filters.append(or_(
                Order.order_no.ilike(pattern),
                distributor.first_name.ilike(pattern),
                distributor.last_name.ilike(pattern),
            ))
        if status:
            filters.append(Order.status == status)
        if distributor_id and is_admin(actor):
            filters.append(Order.distributor_id == distributor_id)

        count_query = self._scoped(
            select(func.count(Order.id)).join(distributor, Order.distributor_id == distributor.id),
            actor,
        ).where(*filters)
        total = (await self.db.execute(count_query)).scalar() or 0

        query = self._scoped(
            select(Order).join(distributor, Order.distributor_id == distributor.id),
            actor,
        ).where(*filters)
        query = (
            query.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self.db.execute(query)
        return list(result.unique().scalars().all()), total

    async def get_order(self, order_id: int, actor: dict) -> Order:
        result = await self.db.execute(
            self._scoped(select(Order).where(Order.id == order_id), actor)
            .execution_options(populate_existing=True)
        )
        order = result.unique().scalar_one_or_none()
        if order is None:
            raise ResourceNotFoundError("Order", order_id)
        return order

    async def _load_orders(self, order_ids: Sequence[int], actor: dict) -> List[Order]:
        result = await self.db.execute(
            self._scoped(select(Order).where(Order.id.in_(list(order_ids))), actor)
            .order_by(Order.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.unique().scalars().all())

    async def _reload(self, order_id: int) -> Order:
        result = await self.db.execute(
            select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        )
        return result.unique().scalar_one()

    async def _get_distributor(self, distributor_id: int, tenant_id: Optional[int]) -> User:
        query = select(User).where(User.id == distributor_id, User.role == UserRole.DISTRIBUTOR)
        if tenant_id is not None:
            query = query.where(User.tenant_id == tenant_id)
        distributor = (await self.db.execute(query)).scalar_one_or_none()
        if distributor is None:
            raise ResourceNotFoundError("Distributor", distributor_id)
        return distributor

    async def _replace_items(self, order: Order, lines: List[ComputedLine]) -> None:
        # Old lines must be deleted before the new ones reuse their line numbers
        order.items.clear()
        await self.db.flush()
        order.items.extend(_build_items(lines))
        order.total_amount = order_total(lines)

    @asynccontextmanager
    async def _hold_orders(self, keys: Iterable[LockKey], reload: Callable[[], Awaitable[List[Order]]]):
        """
        Hold the distributor locks covering the orders ``reload`` returns.

        An order reassigned between the unlocked read and the lock carries a
        key that is not held yet. The transaction is rolled back and the locks
        are retaken with the wider key set until the reloaded orders fit.
        """
        held = set(keys)
        while True:
            async with distributor_locks.hold(held):
                try:
                    await lock_distributor_rows(self.db, [distributor_id for _, distributor_id in held])
                    orders = await reload()
                except Exception:
                    await self.db.rollback()
                    raise
                needed = {lock_key(o.tenant_id, o.distributor_id) for o in orders}
                if needed <= held:
                    yield orders
                    return
                await self.db.rollback()
            logger.info("Order moved while waiting for its lock, retrying", extra={"keys": sorted(needed - held)})
            held |= needed

    # Writes

    async def create_order(
        self,
        actor: dict,
        items: Sequence[RequestedLine],
        distributor_id: Optional[int] = None,
    ) -> Tuple[Order, bool]:
        """
        Create an order or merge into today's open order for the same window.

        Returns:
            (order, created) where created is False for a merge

        Raises:
            OutsideOrderingWindowError: window feature on and no window open
            InsufficientPermissionsError: distributor ordering for someone else
            ValidationFailedError: admin without distributor_id
            ResourceNotFoundError: distributor or catalog items missing
            LimitExceededError: monthly order limit reached
        """
        now = self.clock.now()
        role = actor.get("role")

        target_window: Optional[DeliveryWindow] = None
        if self.window_config.enabled:
            target_window = self.resolver.target_window(now)
            if target_window == DeliveryWindow.NONE:
                raise OutsideOrderingWindowError(self.resolver.describe())

        if role == UserRole.DISTRIBUTOR.value:
            if distributor_id is not None and distributor_id != actor.get("user_id"):
                raise InsufficientPermissionsError("Distributors can only place orders for themselves")
            distributor_id = actor.get("user_id")
        elif distributor_id is None:
            raise ValidationFailedError("distributor_id is required when placing an order for a distributor")

        distributor = await self._get_distributor(distributor_id, tenant_scope(actor))

        if role != UserRole.MASTER_ADMIN.value:
            check = await SubscriptionGate.can_create(self.db, distributor.tenant_id, now)
            check.raise_if_blocked()

        quotes = await CatalogPriceLookup.get_rates(
            self.db, [line.catalog_item_id for line in items], distributor.tenant_id
        )
        CatalogPriceLookup.require_all(quotes)

        async with distributor_locks.hold([lock_key(distributor.tenant_id, distributor.id)]):
            try:
                await lock_distributor_rows(self.db, [distributor.id])
                day_start, day_end = self.resolver.utc_day_bounds(now)
                resolution = await OrderAggregator.resolve_order(
                    self.db,
                    distributor.id,
                    target_window or DeliveryWindow.NONE,
                    day_start,
                    day_end,
                    self.window_config.enabled,
                )

                if resolution.mode == ResolutionMode.MERGE:
                    order = resolution.order
                    lines = OrderAggregator.merge_lines(order.items, items, quotes)
                    await self._replace_items(order, lines)
                    order.updated_by = actor.get("user_id")
                    order.updated_at = now
                    await self.db.flush()
                    action = AuditAction.ORDER_MERGED
                else:
                    lines = OrderAggregator.price_lines(items, quotes)
                    order = Order(
                        order_no=f"TMP-{uuid.uuid4().hex}",
                        tenant_id=distributor.tenant_id,
                        distributor_id=distributor.id,
                        status=OrderStatus.PENDING,
                        payment_status=PaymentStatus.UNPAID,
                        delivery_window=resolution.target_window,
                        total_amount=order_total(lines),
                        created_by=actor.get("user_id"),
                        updated_by=actor.get("user_id"),
                        created_at=now,
                        updated_at=now,
                    )
                    order.items = _build_items(lines)
                    self.db.add(order)
                    await self.db.flush()
                    order.order_no = format_order_no(order.id)
                    order.updated_at = now
                    await self.db.flush()
                    action = AuditAction.ORDER_CREATED

                await log_event(
                    self.db,
                    action=action,
                    actor=actor,
                    entity_type="order",
                    entity_id=order.id,
                    tenant_id=order.tenant_id,
                    metadata={
                        "order_no": order.order_no,
                        "distributor_id": order.distributor_id,
                        "delivery_window": order.delivery_window.value if order.delivery_window else None,
                        "total_amount": str(order.total_amount),
                        "lines": len(lines),
                    },
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        created = resolution.mode == ResolutionMode.CREATE
        logger.info(
            "Order created" if created else "Order merged",
            extra={
                "order_no": order.order_no,
                "distributor_id": order.distributor_id,
                "total_amount": str(order.total_amount),
            },
        )

        if created:
            await SubscriptionGate.increment_usage(self.db, order.tenant_id, now)

        order = await self._reload(order.id)
        await notify_orders(self.sink, "order.created" if created else "order.merged", [order])
        return order, created

    async def update_order(
        self,
        order_id: int,
        actor: dict,
        items: Sequence[RequestedLine],
        distributor_id: Optional[int] = None,
    ) -> Order:
        """Replace the full item set of a pending order at current rates."""
        now = self.clock.now()
        order = await self.get_order(order_id, actor)
        OrderStateMachine.validate_editable(order)

        new_distributor_id = order.distributor_id
        if distributor_id is not None and distributor_id != order.distributor_id:
            if not is_admin(actor):
                raise InsufficientPermissionsError("Only administrators can reassign an order")
            target = await self._get_distributor(distributor_id, tenant_scope(actor))
            if target.tenant_id != order.tenant_id:
                raise ResourceNotFoundError("Distributor", distributor_id)
            new_distributor_id = target.id

        quotes = await CatalogPriceLookup.get_rates(
            self.db, [line.catalog_item_id for line in items], order.tenant_id
        )
        CatalogPriceLookup.require_all(quotes)

        async def reload():
            return [await self.get_order(order_id, actor)]

        keys = [lock_key(order.tenant_id, order.distributor_id), lock_key(order.tenant_id, new_distributor_id)]
        async with self._hold_orders(keys, reload) as (order,):
            try:
                OrderStateMachine.validate_editable(order)

                previous_distributor_id = order.distributor_id
                lines = OrderAggregator.price_lines(items, quotes)
                await self._replace_items(order, lines)
                order.distributor_id = new_distributor_id
                order.updated_by = actor.get("user_id")
                order.updated_at = now
                await self.db.flush()

                await log_event(
                    self.db,
                    action=AuditAction.ORDER_UPDATED,
                    actor=actor,
                    entity_type="order",
                    entity_id=order.id,
                    tenant_id=order.tenant_id,
                    metadata={
                        "order_no": order.order_no,
                        "previous_distributor_id": previous_distributor_id,
                        "distributor_id": new_distributor_id,
                        "total_amount": str(order.total_amount),
                    },
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info("Order updated", extra={"order_no": order.order_no, "total_amount": str(order.total_amount)})
        return await self._reload(order.id)

    async def _prepare_batch(self, order_ids: Sequence[int], actor: dict) -> List[LockKey]:
        if not order_ids:
            raise ValidationFailedError("At least one order id is required")
        orders = await self._load_orders(order_ids, actor)
        OrderStateMachine.ensure_all_found(order_ids, orders)
        return [lock_key(o.tenant_id, o.distributor_id) for o in orders]

    async def complete_orders(self, order_ids: Sequence[int], actor: dict) -> List[Order]:
        """
        Complete pending orders as one unit; each one debits its distributor.

        Raises:
            ResourceNotFoundError: any id missing or out of scope
            IllegalTransitionError: any order not pending (all offenders listed)
        """
        now = self.clock.now()
        today = self.resolver.business_date(now)
        keys = await self._prepare_batch(order_ids, actor)

        async with self._hold_orders(keys, lambda: self._load_orders(order_ids, actor)) as orders:
            try:
                OrderStateMachine.ensure_all_found(order_ids, orders)
                OrderStateMachine.validate_status_transition(orders, OrderStatus.COMPLETED)

                entries = []
                for order in orders:
                    order.status = OrderStatus.COMPLETED
                    order.updated_by = actor.get("user_id")
                    order.updated_at = now
                    entries.append(
                        await OrderLedgerBridge.on_order_completed(self.db, order, actor.get("user_id"), today, now)
                    )

                await log_event(
                    self.db,
                    action=AuditAction.ORDERS_COMPLETED,
                    actor=actor,
                    entity_type="order",
                    tenant_id=tenant_scope(actor),
                    metadata={
                        "order_nos": [o.order_no for o in orders],
                        "ledger_entry_ids": [e.id for e in entries],
                    },
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info("Orders completed", extra={"order_nos": [o.order_no for o in orders]})
        await notify_orders(self.sink, "order.completed", orders)
        return orders

    async def cancel_orders(self, order_ids: Sequence[int], actor: dict) -> List[Order]:
        """Cancel pending orders as one unit. No ledger effect."""
        now = self.clock.now()
        keys = await self._prepare_batch(order_ids, actor)

        async with self._hold_orders(keys, lambda: self._load_orders(order_ids, actor)) as orders:
            try:
                OrderStateMachine.ensure_all_found(order_ids, orders)
                OrderStateMachine.validate_status_transition(orders, OrderStatus.CANCELLED)

                for order in orders:
                    order.status = OrderStatus.CANCELLED
                    order.updated_by = actor.get("user_id")
                    order.updated_at = now

                await log_event(
                    self.db,
                    action=AuditAction.ORDERS_CANCELLED,
                    actor=actor,
                    entity_type="order",
                    tenant_id=tenant_scope(actor),
                    metadata={"order_nos": [o.order_no for o in orders]},
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info("Orders cancelled", extra={"order_nos": [o.order_no for o in orders]})
        return orders

    async def cancel_order(self, order_id: int, actor: dict) -> Order:
        now = self.clock.now()
        order = await self.get_order(order_id, actor)
        OrderStateMachine.validate_single_cancel(order)

        async def reload():
            return [await self.get_order(order_id, actor)]

        async with self._hold_orders([lock_key(order.tenant_id, order.distributor_id)], reload) as (order,):
            try:
                OrderStateMachine.validate_single_cancel(order)

                order.status = OrderStatus.CANCELLED
                order.updated_by = actor.get("user_id")
                order.updated_at = now

                await log_event(
                    self.db,
                    action=AuditAction.ORDERS_CANCELLED,
                    actor=actor,
                    entity_type="order",
                    entity_id=order.id,
                    tenant_id=order.tenant_id,
                    metadata={"order_nos": [order.order_no]},
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info("Order cancelled", extra={"order_no": order.order_no})
        return order

    async def set_payment_status(
        self, order_ids: Sequence[int], payment_status: PaymentStatus, actor: dict
    ) -> List[Order]:
        """
        Move a batch of orders to ``payment_status``.

        Entering PAID credits the order total, leaving PAID debits it back;
        PARTIAL on its own moves no money.
        """
        now = self.clock.now()
        today = self.resolver.business_date(now)
        keys = await self._prepare_batch(order_ids, actor)

        async with self._hold_orders(keys, lambda: self._load_orders(order_ids, actor)) as orders:
            try:
                OrderStateMachine.ensure_all_found(order_ids, orders)
                OrderStateMachine.validate_payment_transition(orders, payment_status)

                transitions = []
                for order in orders:
                    previous = order.payment_status
                    effect = OrderStateMachine.payment_ledger_effect(previous, payment_status)
                    order.payment_status = payment_status
                    order.updated_by = actor.get("user_id")
                    order.updated_at = now
                    entry = await OrderLedgerBridge.apply_payment_effect(
                        self.db, order, effect, actor.get("user_id"), today, now
                    )
                    transitions.append({
                        "order_no": order.order_no,
                        "from": previous.value,
                        "to": payment_status.value,
                        "ledger_entry_id": entry.id if entry else None,
                    })

                await log_event(
                    self.db,
                    action=AuditAction.PAYMENT_STATUS_CHANGED,
                    actor=actor,
                    entity_type="order",
                    tenant_id=tenant_scope(actor),
                    metadata={"transitions": transitions},
                )
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise

        logger.info(
            "Payment status updated",
            extra={"order_nos": [o.order_no for o in orders], "payment_status": payment_status.value},
        )
        return orders
