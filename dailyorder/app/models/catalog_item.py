"""
Catalog item database model.

Owned by the catalog module; the order engine only reads current rates.
"""

from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime
from sqlalchemy.sql import func
from dailyorder.app.db.session import Base


class CatalogItem(Base):
    __tablename__ = "catalog_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(Integer, index=True, nullable=True)

    name = Column(String(255), nullable=False)
    unit = Column(String(50), nullable=False, default="pcs")
    rate = Column(Numeric(10, 2), nullable=False)
    box_rate = Column(Numeric(10, 2), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<CatalogItem(id={self.id}, name='{self.name}', rate={self.rate})>"
