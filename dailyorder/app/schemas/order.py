"""
Order Pydantic schemas.

Defines request and response models for the order lifecycle endpoints.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict
from dailyorder.app.models.enums import OrderStatus, PaymentStatus, DeliveryWindow


class OrderLineRequest(BaseModel):
    """One requested catalog item."""
    catalog_item_id: int = Field(..., gt=0, description="Catalog item ID")
    qty: int = Field(..., ge=0, description="Quantity in catalog units")
    ordered_by_box: bool = Field(default=False, description="Ordered in boxes")
    box_count: int = Field(default=0, ge=0, description="Number of boxes")


class OrderCreate(BaseModel):
    """Schema for placing an order (admins must name the distributor)."""
    distributor_id: Optional[int] = Field(None, gt=0, description="Distributor the order is for")
    items: List[OrderLineRequest] = Field(..., min_length=1)


class OrderUpdate(BaseModel):
    """Schema for replacing the item set of a pending order."""
    distributor_id: Optional[int] = Field(None, gt=0, description="Reassign to another distributor (admins)")
    items: List[OrderLineRequest] = Field(..., min_length=1)


class OrderIdsRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1, description="Order IDs")


class PaymentStatusUpdate(BaseModel):
    ids: List[int] = Field(..., min_length=1, description="Order IDs")
    payment_status: PaymentStatus


class DistributorSummary(BaseModel):
    id: int
    first_name: str
    last_name: str
    business_name: Optional[str]
    phone_no: str

    class Config:
        from_attributes = True


class OrderItemResponse(BaseModel):
    id: int
    line_no: int
    catalog_item_id: int
    qty: int
    rate: Decimal
    amount: Decimal
    ordered_by_box: bool
    box_count: int
    box_rate: Decimal

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    """Schema for order response."""
    id: int
    order_no: str
    tenant_id: Optional[int]
    distributor_id: int
    distributor: Optional[DistributorSummary] = None
    status: OrderStatus
    payment_status: PaymentStatus
    delivery_window: Optional[DeliveryWindow]
    total_amount: Decimal
    items: List[OrderItemResponse]
    created_by: Optional[int]
    updated_by: Optional[int]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OrderCreateResponse(BaseModel):
    merged: bool
    order: OrderResponse


class OrderBatchResponse(BaseModel):
    message: str
    orders: List[OrderResponse]


class OrderListResponse(BaseModel):
    """Schema for paginated order list."""
    orders: List[OrderResponse]
    total: int
    page: int
    page_size: int


class CurrentWindowResponse(BaseModel):
    enabled: bool
    current_window: DeliveryWindow
    target_window: DeliveryWindow
    server_time: datetime
    windows: Dict
