"""
Order lifecycle tests.

Covers the end-to-end order/ledger scenarios, batch atomicity and the
payment gate, driven through OrderService against an in-memory database.
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from sqlalchemy import select, func, update

from dailyorder.app.core.exceptions import (
    IllegalTransitionError,
    InsufficientPermissionsError,
    OutsideOrderingWindowError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from dailyorder.app.core.reliability import CircuitBreaker
from dailyorder.app.domain.ledger.ledger_service import LedgerService
from dailyorder.app.domain.orders.aggregator import RequestedLine
from dailyorder.app.domain.orders.order_service import OrderService
from dailyorder.app.models.catalog_item import CatalogItem
from dailyorder.app.models.enums import DeliveryWindow, OrderStatus, PaymentStatus
from dailyorder.app.models.ledger_entry import LedgerEntry
from dailyorder.app.models.ledger_enums import LedgerEntryType, LedgerReferenceType
from dailyorder.app.models.order import Order
from dailyorder.app.services.audit import AuditAction, get_audit_trail
from dailyorder.app.services.notification_service import RedisNotificationSink


@pytest.fixture
def make_service(db_session, clock, window, mock_redis):
    sink = RedisNotificationSink(mock_redis, "test:orders", CircuitBreaker(failure_threshold=3, reset_timeout=30))

    def factory():
        return OrderService(db_session, clock, window.config, sink)

    return factory


async def ledger_entries(db, distributor_id):
    result = await db.execute(
        select(LedgerEntry).where(LedgerEntry.distributor_id == distributor_id).order_by(LedgerEntry.id)
    )
    return list(result.scalars().all())


async def fetch_order(db, order_id):
    result = await db.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    )
    return result.unique().scalar_one()


def assert_total_consistent(order):
    assert order.total_amount == sum((item.amount for item in order.items), Decimal("0"))


# Scenario A-E


@pytest.mark.asyncio
async def test_full_order_and_ledger_lifecycle(db_session, seed, window, make_service):
    window.enable()
    service = make_service()
    dist = seed.dist1["user_id"]

    # A: first order of the window
    order, created = await service.create_order(
        seed.dist1, [RequestedLine(seed.item_a, 3), RequestedLine(seed.item_b, 2)]
    )
    assert created is True
    assert order.total_amount == Decimal("40.00")
    assert order.delivery_window == DeliveryWindow.EVENING
    assert order.order_no == f"ORD-{order.id:08d}"
    assert_total_consistent(order)

    # B: second request in the same window merges
    merged, created = await service.create_order(
        seed.dist1, [RequestedLine(seed.item_a, 1), RequestedLine(seed.item_c, 4)]
    )
    assert created is False
    assert merged.id == order.id
    quantities = {item.catalog_item_id: item.qty for item in merged.items}
    assert quantities == {seed.item_a: 4, seed.item_b: 2, seed.item_c: 4}
    assert merged.total_amount == Decimal("58.00")
    assert [item.line_no for item in merged.items] == [1, 2, 3]
    assert_total_consistent(merged)
    assert (await db_session.execute(select(func.count(Order.id)))).scalar() == 1

    # An earlier balance so the running balance has something to build on
    await LedgerService.create_adjustment(
        db_session, dist, 1, LedgerEntryType.DEBIT, Decimal("100.00"), "Opening dues",
        actor=seed.admin, now=service.clock.now(), today=service.resolver.business_date(service.clock.now()),
    )

    # C: completion debits the order total
    await service.complete_orders([order.id], seed.admin)
    entries = await ledger_entries(db_session, dist)
    sale = entries[-1]
    assert sale.entry_type == LedgerEntryType.DEBIT
    assert sale.reference_type == LedgerReferenceType.ORDER
    assert sale.reference_id == order.id
    assert sale.amount == Decimal("58.00")
    assert sale.running_balance == Decimal("158.00")
    assert sale.narration == f"Order {order.order_no} - Sale"

    # D: paid credits it back, unpaid reverses the credit
    await service.set_payment_status([order.id], PaymentStatus.PAID, seed.admin)
    assert await LedgerService.get_balance(db_session, dist, 1) == Decimal("100.00")
    await service.set_payment_status([order.id], PaymentStatus.UNPAID, seed.admin)
    assert await LedgerService.get_balance(db_session, dist, 1) == Decimal("158.00")

    entries = await ledger_entries(db_session, dist)
    assert [(e.entry_type, e.amount, e.running_balance) for e in entries] == [
        (LedgerEntryType.DEBIT, Decimal("100.00"), Decimal("100.00")),
        (LedgerEntryType.DEBIT, Decimal("58.00"), Decimal("158.00")),
        (LedgerEntryType.CREDIT, Decimal("58.00"), Decimal("100.00")),
        (LedgerEntryType.DEBIT, Decimal("58.00"), Decimal("158.00")),
    ]
    assert entries[2].narration == f"Payment received for Order {order.order_no}"
    assert entries[3].reference_type == LedgerReferenceType.ADJUSTMENT
    assert entries[3].narration == f"Payment reversal for Order {order.order_no}"

    # E: a completed order can no longer be cancelled
    with pytest.raises(IllegalTransitionError):
        await service.cancel_orders([order.id], seed.admin)


@pytest.mark.asyncio
async def test_merge_reprices_at_current_rate(db_session, seed, window, make_service):
    window.enable()
    service = make_service()
    await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 3), RequestedLine(seed.item_b, 2)])

    await db_session.execute(update(CatalogItem).where(CatalogItem.id == seed.item_a).values(rate=Decimal("11.00")))
    await db_session.commit()

    merged, _ = await service.create_order(
        seed.dist1, [RequestedLine(seed.item_a, 1), RequestedLine(seed.item_c, 4)]
    )
    rates = {item.catalog_item_id: item.rate for item in merged.items}
    assert rates[seed.item_a] == Decimal("11.00")
    assert rates[seed.item_b] == Decimal("5.00")
    assert merged.total_amount == Decimal("62.00")


@pytest.mark.asyncio
async def test_cancel_pending_order_leaves_ledger_untouched(db_session, seed, make_service):
    service = make_service()
    order, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 2)])

    cancelled = await service.cancel_orders([order.id], seed.admin)

    assert cancelled[0].status == OrderStatus.CANCELLED
    assert await ledger_entries(db_session, seed.dist1["user_id"]) == []
    assert await LedgerService.get_balance(db_session, seed.dist1["user_id"], 1) == Decimal("0.00")


@pytest.mark.asyncio
async def test_single_cancel_rules(db_session, seed, make_service):
    service = make_service()
    pending, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])
    completed, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])
    await service.complete_orders([completed.id], seed.admin)

    # Distributors may cancel their own pending orders
    order = await service.cancel_order(pending.id, seed.dist1)
    assert order.status == OrderStatus.CANCELLED

    with pytest.raises(IllegalTransitionError, match="already cancelled"):
        await service.cancel_order(pending.id, seed.admin)
    with pytest.raises(IllegalTransitionError):
        await service.cancel_order(completed.id, seed.admin)
    with pytest.raises(ResourceNotFoundError):
        await service.cancel_order(pending.id, seed.dist2)


# Window handling


@pytest.mark.asyncio
async def test_window_disabled_always_creates(db_session, seed, make_service):
    service = make_service()
    first, created_first = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])
    second, created_second = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])

    assert created_first and created_second
    assert first.id != second.id
    assert first.delivery_window is None


@pytest.mark.asyncio
async def test_outside_window_rejected_without_side_effects(db_session, seed, clock, window, make_service):
    window.enable()
    # 13:30 in Kolkata, between the windows
    clock.advance(timedelta(hours=4))
    service = make_service()

    with pytest.raises(OutsideOrderingWindowError) as exc:
        await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])

    assert exc.value.details["retry_later"] is True
    assert (await db_session.execute(select(func.count(Order.id)))).scalar() == 0


@pytest.mark.asyncio
async def test_next_day_starts_new_order(db_session, seed, clock, window, make_service):
    window.enable()
    service = make_service()
    first, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])

    clock.advance(timedelta(days=1))
    second, created = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])

    assert created is True
    assert second.id != first.id


@pytest.mark.asyncio
async def test_completed_order_is_not_merged_into(db_session, seed, window, make_service):
    window.enable()
    service = make_service()
    first, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])
    await service.complete_orders([first.id], seed.admin)

    second, created = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])

    assert created is True
    assert second.id != first.id


# Create validation


@pytest.mark.asyncio
async def test_unknown_catalog_item_fails_whole_order(db_session, seed, make_service):
    service = make_service()

    with pytest.raises(ResourceNotFoundError) as exc:
        await service.create_order(
            seed.dist1, [RequestedLine(seed.item_a, 1), RequestedLine(seed.foreign_item, 1)]
        )

    assert exc.value.details["missing_ids"] == [seed.foreign_item]
    assert (await db_session.execute(select(func.count(Order.id)))).scalar() == 0


@pytest.mark.asyncio
async def test_platform_items_can_be_ordered(db_session, seed, make_service):
    order, _ = await make_service().create_order(seed.dist1, [RequestedLine(seed.platform_item, 2)])
    assert order.total_amount == Decimal("15.00")


@pytest.mark.asyncio
async def test_admin_must_name_distributor(db_session, seed, make_service):
    with pytest.raises(ValidationFailedError):
        await make_service().create_order(seed.admin, [RequestedLine(seed.item_a, 1)])


@pytest.mark.asyncio
async def test_admin_orders_for_distributor_in_own_tenant_only(db_session, seed, make_service):
    service = make_service()
    order, _ = await service.create_order(seed.admin, [RequestedLine(seed.item_a, 1)], seed.dist2["user_id"])
    assert order.distributor_id == seed.dist2["user_id"]
    assert order.tenant_id == 1
    assert order.created_by == seed.admin["user_id"]

    with pytest.raises(ResourceNotFoundError):
        await service.create_order(seed.admin, [RequestedLine(seed.item_a, 1)], seed.dist3["user_id"])


@pytest.mark.asyncio
async def test_distributor_cannot_order_for_someone_else(db_session, seed, make_service):
    with pytest.raises(InsufficientPermissionsError):
        await make_service().create_order(seed.dist1, [RequestedLine(seed.item_a, 1)], seed.dist2["user_id"])


@pytest.mark.asyncio
async def test_box_packaging_is_recorded_without_changing_amount(db_session, seed, make_service):
    order, _ = await make_service().create_order(
        seed.dist1, [RequestedLine(seed.item_a, 24, ordered_by_box=True, box_count=1)]
    )
    item = order.items[0]
    assert item.ordered_by_box is True
    assert item.box_count == 1
    assert item.box_rate == Decimal("240.00")
    assert item.amount == Decimal("240.00")


# Batch atomicity


@pytest.mark.asyncio
async def test_bulk_complete_with_one_bad_order_changes_nothing(db_session, seed, make_service):
    service = make_service()
    o1, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])
    o2, _ = await service.create_order(seed.dist2, [RequestedLine(seed.item_b, 1)])
    o3, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_c, 1)])
    await service.complete_orders([o3.id], seed.admin)
    entries_before = (await db_session.execute(select(func.count(LedgerEntry.id)))).scalar()
    ids = [o1.id, o2.id, o3.id]
    completed_no = o3.order_no

    with pytest.raises(IllegalTransitionError) as exc:
        await service.complete_orders(ids, seed.admin)

    assert exc.value.details["order_nos"] == [completed_no]
    assert (await fetch_order(db_session, ids[0])).status == OrderStatus.PENDING
    assert (await fetch_order(db_session, ids[1])).status == OrderStatus.PENDING
    assert (await db_session.execute(select(func.count(LedgerEntry.id)))).scalar() == entries_before


@pytest.mark.asyncio
async def test_bulk_operation_reports_missing_ids(db_session, seed, make_service):
    service = make_service()
    o1, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])

    with pytest.raises(ResourceNotFoundError) as exc:
        await service.complete_orders([o1.id, 9998, 9999], seed.admin)

    assert exc.value.details["missing_ids"] == [9998, 9999]
    assert (await fetch_order(db_session, o1.id)).status == OrderStatus.PENDING


@pytest.mark.asyncio
async def test_orders_of_other_tenant_count_as_missing(db_session, seed, make_service):
    service = make_service()
    foreign, _ = await service.create_order(seed.dist3, [RequestedLine(seed.foreign_item, 1)])

    with pytest.raises(ResourceNotFoundError):
        await service.complete_orders([foreign.id], seed.admin)

    # The platform operator sees every tenant
    completed = await service.complete_orders([foreign.id], seed.master)
    assert completed[0].status == OrderStatus.COMPLETED
    assert await LedgerService.get_balance(db_session, seed.dist3["user_id"], 2) == Decimal("3.00")


@pytest.mark.asyncio
async def test_bulk_complete_appends_in_order_for_same_distributor(db_session, seed, make_service):
    service = make_service()
    o1, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])
    o2, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_b, 2)])

    await service.complete_orders([o2.id, o1.id], seed.admin)

    entries = await ledger_entries(db_session, seed.dist1["user_id"])
    assert [e.running_balance for e in entries] == [Decimal("10.00"), Decimal("20.00")]
    audit = await get_audit_trail(db_session, action=AuditAction.ORDERS_COMPLETED)
    assert audit[0].meta_data["order_nos"] == [o1.order_no, o2.order_no]
    assert audit[0].actor_id == seed.admin["user_id"]


# Payment gate


@pytest.mark.asyncio
async def test_paid_requires_completed(db_session, seed, make_service):
    service = make_service()
    order, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])
    order_id, order_no = order.id, order.order_no

    with pytest.raises(IllegalTransitionError) as exc:
        await service.set_payment_status([order_id], PaymentStatus.PAID, seed.admin)

    assert exc.value.details["not_completed"] == [order_no]
    assert (await fetch_order(db_session, order_id)).payment_status == PaymentStatus.UNPAID
    assert await ledger_entries(db_session, seed.dist1["user_id"]) == []


@pytest.mark.asyncio
async def test_paid_twice_is_rejected_with_all_offenders(db_session, seed, make_service):
    service = make_service()
    paid, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])
    pending, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_b, 1)])
    await service.complete_orders([paid.id], seed.admin)
    await service.set_payment_status([paid.id], PaymentStatus.PAID, seed.admin)
    entries_before = len(await ledger_entries(db_session, seed.dist1["user_id"]))
    paid_no, pending_no = paid.order_no, pending.order_no

    with pytest.raises(IllegalTransitionError) as exc:
        await service.set_payment_status([paid.id, pending.id], PaymentStatus.PAID, seed.admin)

    assert set(exc.value.details["order_nos"]) == {paid_no, pending_no}
    assert exc.value.details["already_paid"] == [paid_no]
    assert len(await ledger_entries(db_session, seed.dist1["user_id"])) == entries_before


@pytest.mark.asyncio
async def test_partial_is_a_status_only_marker(db_session, seed, make_service):
    service = make_service()
    dist = seed.dist1["user_id"]
    order, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 2)])
    await service.complete_orders([order.id], seed.admin)

    await service.set_payment_status([order.id], PaymentStatus.PARTIAL, seed.admin)
    assert len(await ledger_entries(db_session, dist)) == 1
    assert await LedgerService.get_balance(db_session, dist, 1) == Decimal("20.00")

    await service.set_payment_status([order.id], PaymentStatus.PAID, seed.admin)
    assert await LedgerService.get_balance(db_session, dist, 1) == Decimal("0.00")

    await service.set_payment_status([order.id], PaymentStatus.PARTIAL, seed.admin)
    assert await LedgerService.get_balance(db_session, dist, 1) == Decimal("20.00")
    assert len(await ledger_entries(db_session, dist)) == 3


@pytest.mark.asyncio
async def test_unpaid_and_partial_allowed_on_pending_orders(db_session, seed, make_service):
    service = make_service()
    order, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])

    updated = await service.set_payment_status([order.id], PaymentStatus.PARTIAL, seed.admin)

    assert updated[0].payment_status == PaymentStatus.PARTIAL
    assert await ledger_entries(db_session, seed.dist1["user_id"]) == []


# Update


@pytest.mark.asyncio
async def test_update_replaces_items_at_current_rates(db_session, seed, make_service):
    service = make_service()
    order, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 3), RequestedLine(seed.item_b, 2)])

    updated = await service.update_order(order.id, seed.dist1, [RequestedLine(seed.item_c, 5)])

    assert [(i.catalog_item_id, i.qty, i.line_no) for i in updated.items] == [(seed.item_c, 5, 1)]
    assert updated.total_amount == Decimal("10.00")
    assert_total_consistent(updated)


@pytest.mark.asyncio
async def test_update_reassignment_rules(db_session, seed, make_service):
    service = make_service()
    order, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])

    with pytest.raises(InsufficientPermissionsError):
        await service.update_order(order.id, seed.dist1, [RequestedLine(seed.item_a, 1)], seed.dist2["user_id"])
    with pytest.raises(ResourceNotFoundError):
        await service.update_order(order.id, seed.admin, [RequestedLine(seed.item_a, 1)], seed.dist3["user_id"])

    moved = await service.update_order(order.id, seed.admin, [RequestedLine(seed.item_a, 1)], seed.dist2["user_id"])
    assert moved.distributor_id == seed.dist2["user_id"]


@pytest.mark.asyncio
async def test_only_pending_orders_can_be_updated(db_session, seed, make_service):
    service = make_service()
    order, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])
    await service.complete_orders([order.id], seed.admin)

    with pytest.raises(IllegalTransitionError, match="Only pending orders can be updated"):
        await service.update_order(order.id, seed.admin, [RequestedLine(seed.item_a, 9)])


# Listing


@pytest.mark.asyncio
async def test_listing_is_role_scoped_and_searchable(db_session, seed, clock, make_service):
    service = make_service()
    mine, _ = await service.create_order(seed.dist1, [RequestedLine(seed.item_a, 1)])
    clock.advance(timedelta(minutes=1))
    theirs, _ = await service.create_order(seed.dist2, [RequestedLine(seed.item_a, 1)])
    await service.create_order(seed.dist3, [RequestedLine(seed.foreign_item, 1)])

    orders, total = await service.list_orders(seed.dist1)
    assert total == 1 and orders[0].id == mine.id

    orders, total = await service.list_orders(seed.admin)
    assert total == 2
    assert [o.id for o in orders] == [theirs.id, mine.id]

    orders, total = await service.list_orders(seed.admin, search="meena")
    assert [o.id for o in orders] == [theirs.id]

    orders, total = await service.list_orders(seed.admin, search=mine.order_no)
    assert [o.id for o in orders] == [mine.id]

    orders, total = await service.list_orders(seed.admin, distributor_id=seed.dist1["user_id"])
    assert total == 1

    await service.complete_orders([mine.id], seed.admin)
    orders, total = await service.list_orders(seed.admin, status=OrderStatus.PENDING)
    assert [o.id for o in orders] == [theirs.id]

    orders, total = await service.list_orders(seed.master)
    assert total == 3
