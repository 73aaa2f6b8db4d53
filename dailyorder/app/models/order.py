"""
Order database model.

An order exclusively owns its item lines. The item set is always replaced as
a whole (create, merge, update) and total_amount is the sum of line amounts.
"""

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from dailyorder.app.db.session import Base
from dailyorder.app.models.enums import OrderStatus, PaymentStatus, DeliveryWindow


class Order(Base):
    """
    Order model.

    Status flow: PENDING -> COMPLETED | CANCELLED.
    Payment flow: UNPAID <-> PARTIAL <-> PAID, PAID only while COMPLETED.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_no = Column(String(40), unique=True, index=True, nullable=False)

    tenant_id = Column(Integer, index=True, nullable=True)
    distributor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.UNPAID, nullable=False)
    delivery_window = Column(Enum(DeliveryWindow), nullable=True)

    total_amount = Column(Numeric(12, 2), nullable=False, default=0)

    # Audit
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    updated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.line_no",
        lazy="selectin",
    )
    distributor = relationship("User", foreign_keys=[distributor_id], lazy="joined")

    __table_args__ = (
        # Same-window merge lookup
        Index("ix_orders_merge_lookup", "distributor_id", "delivery_window", "status", "created_at"),
    )

    def __repr__(self):
        return f"<Order(id={self.id}, no='{self.order_no}', status='{self.status.value}', total={self.total_amount})>"
