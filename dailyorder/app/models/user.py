"""
User database model.

Admins and distributors share one table; distributor business details live
on the same row.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from sqlalchemy.sql import func
from dailyorder.app.db.session import Base
from dailyorder.app.models.enums import UserRole


class User(Base):
    """
    User model.

    Identity and credentials are managed by the auth service; this table is
    the tenant-scoped directory the order engine validates distributors against.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    tenant_id = Column(Integer, index=True, nullable=True)  # None for platform users

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=True)
    phone_no = Column(String(15), unique=True, nullable=False)

    role = Column(Enum(UserRole), default=UserRole.DISTRIBUTOR, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Distributor details
    business_name = Column(String(255), nullable=True)
    gstin = Column(String(15), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self):
        return f"<User(id={self.id}, phone='{self.phone_no}', role='{self.role.value}')>"
