"""
Order item database model.

Rates are snapshots taken from the catalog when the line was (re)computed.
"""

from sqlalchemy import Column, Integer, Numeric, ForeignKey, Boolean, UniqueConstraint
from sqlalchemy.orm import relationship
from dailyorder.app.db.session import Base


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    line_no = Column(Integer, nullable=False)
    catalog_item_id = Column(Integer, ForeignKey("catalog_items.id"), nullable=False, index=True)

    qty = Column(Integer, nullable=False)
    rate = Column(Numeric(12, 2), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)

    # Alternate box packaging (does not feed amount)
    ordered_by_box = Column(Boolean, default=False, nullable=False)
    box_count = Column(Integer, default=0, nullable=False)
    box_rate = Column(Numeric(12, 2), default=0, nullable=False)

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        UniqueConstraint("order_id", "line_no", name="uq_order_items_line"),
    )

    def __repr__(self):
        return f"<OrderItem(order={self.order_id}, item={self.catalog_item_id}, qty={self.qty}, amount={self.amount})>"
