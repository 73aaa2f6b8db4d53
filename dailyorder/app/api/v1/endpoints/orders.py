"""
Order API Endpoints.

Distributors place and edit their own orders; administrators approve,
cancel and reconcile them in bulk.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, Path, status
from sqlalchemy.ext.asyncio import AsyncSession
from dailyorder.app.db.session import get_db
from dailyorder.app.core.clock import Clock, get_clock
from dailyorder.app.core.config import OrderingWindowConfig, get_ordering_window
from dailyorder.app.core.dependencies import get_current_user
from dailyorder.app.core.guards import require_role
from dailyorder.app.domain.orders.aggregator import RequestedLine
from dailyorder.app.domain.orders.order_service import OrderService
from dailyorder.app.models.enums import UserRole, OrderStatus
from dailyorder.app.schemas.order import (
    OrderCreate,
    OrderUpdate,
    OrderIdsRequest,
    PaymentStatusUpdate,
    OrderResponse,
    OrderCreateResponse,
    OrderBatchResponse,
    OrderListResponse,
    CurrentWindowResponse,
)
from dailyorder.app.services.notification_service import NotificationSink, get_notification_sink

router = APIRouter(prefix="/orders", tags=["Orders"])

ALL_ROLES = [UserRole.MASTER_ADMIN, UserRole.SUPER_ADMIN, UserRole.DISTRIBUTOR]
BULK_ROLES = [UserRole.MASTER_ADMIN, UserRole.SUPER_ADMIN]


def get_order_service(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    window_config: OrderingWindowConfig = Depends(get_ordering_window),
    sink: NotificationSink = Depends(get_notification_sink),
) -> OrderService:
    return OrderService(db, clock, window_config, sink)


def _requested_lines(items) -> list:
    return [
        RequestedLine(
            catalog_item_id=line.catalog_item_id,
            qty=line.qty,
            ordered_by_box=line.ordered_by_box,
            box_count=line.box_count,
        )
        for line in items
    ]


@router.get("", response_model=OrderListResponse)
async def list_orders(
    search: Optional[str] = Query(None, max_length=100, description="Order number or distributor name"),
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    distributor_id: Optional[int] = Query(None, gt=0, description="Admins only"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    current_user: dict = Depends(require_role(ALL_ROLES)),
    service: OrderService = Depends(get_order_service),
):
    """
    List orders visible to the caller, newest first.

    Distributors only ever see their own orders.
    """
    orders, total = await service.list_orders(
        current_user,
        search=search,
        status=status_filter,
        distributor_id=distributor_id,
        page=page,
        page_size=page_size,
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/current-window", response_model=CurrentWindowResponse)
async def get_current_window(
    current_user: dict = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    """Current delivery window and the window new orders are stamped with."""
    return CurrentWindowResponse(**service.current_window())


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int = Path(..., description="Order ID"),
    current_user: dict = Depends(require_role(ALL_ROLES)),
    service: OrderService = Depends(get_order_service),
):
    order = await service.get_order(order_id, current_user)
    return OrderResponse.model_validate(order)


@router.post("", response_model=OrderCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    order_data: OrderCreate,
    current_user: dict = Depends(require_role(ALL_ROLES)),
    service: OrderService = Depends(get_order_service),
):
    """
    Place an order.

    When the ordering-window feature is on, a second order from the same
    distributor in the same window on the same day is merged into the first.
    """
    order, created = await service.create_order(
        current_user,
        _requested_lines(order_data.items),
        distributor_id=order_data.distributor_id,
    )
    return OrderCreateResponse(merged=not created, order=OrderResponse.model_validate(order))


@router.put("/complete", response_model=OrderBatchResponse)
async def complete_orders(
    request: OrderIdsRequest,
    current_user: dict = Depends(require_role(BULK_ROLES)),
    service: OrderService = Depends(get_order_service),
):
    """Complete pending orders (all or nothing); debits each distributor."""
    orders = await service.complete_orders(request.ids, current_user)
    return OrderBatchResponse(
        message=f"{len(orders)} order(s) marked as completed",
        orders=[OrderResponse.model_validate(o) for o in orders],
    )


@router.put("/cancel", response_model=OrderBatchResponse)
async def cancel_orders(
    request: OrderIdsRequest,
    current_user: dict = Depends(require_role(BULK_ROLES)),
    service: OrderService = Depends(get_order_service),
):
    """Cancel pending orders (all or nothing)."""
    orders = await service.cancel_orders(request.ids, current_user)
    return OrderBatchResponse(
        message=f"{len(orders)} order(s) cancelled",
        orders=[OrderResponse.model_validate(o) for o in orders],
    )


@router.put("/payment-status", response_model=OrderBatchResponse)
async def update_payment_status(
    request: PaymentStatusUpdate,
    current_user: dict = Depends(require_role(BULK_ROLES)),
    service: OrderService = Depends(get_order_service),
):
    """Set the payment status of a batch of orders (all or nothing)."""
    orders = await service.set_payment_status(request.ids, request.payment_status, current_user)
    return OrderBatchResponse(
        message=f"Payment status updated to {request.payment_status.value} for {len(orders)} order(s)",
        orders=[OrderResponse.model_validate(o) for o in orders],
    )


@router.put("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: int = Path(..., description="Order ID"),
    current_user: dict = Depends(require_role(ALL_ROLES)),
    service: OrderService = Depends(get_order_service),
):
    order = await service.cancel_order(order_id, current_user)
    return OrderResponse.model_validate(order)


@router.put("/{order_id}", response_model=OrderResponse)
async def update_order(
    order_id: int = Path(..., description="Order ID"),
    order_data: OrderUpdate = ...,
    current_user: dict = Depends(require_role(ALL_ROLES)),
    service: OrderService = Depends(get_order_service),
):
    """Replace the items of a pending order at current catalog rates."""
    order = await service.update_order(
        order_id,
        current_user,
        _requested_lines(order_data.items),
        distributor_id=order_data.distributor_id,
    )
    return OrderResponse.model_validate(order)
