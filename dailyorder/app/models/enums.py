"""
Role and order enumerations.

Defines the role types and the two independent order axes (status and
payment status) plus the delivery windows.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        MASTER_ADMIN: Platform operator, sees every tenant
        SUPER_ADMIN: Tenant administrator, approves and reconciles orders
        DISTRIBUTOR: Places orders for themselves
    """
    MASTER_ADMIN = "master_admin"
    SUPER_ADMIN = "super_admin"
    DISTRIBUTOR = "distributor"


class OrderStatus(str, enum.Enum):
    """Order lifecycle: PENDING -> COMPLETED | CANCELLED (both terminal)."""
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    """Payment axis, independent of OrderStatus. PAID requires COMPLETED."""
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class DeliveryWindow(str, enum.Enum):
    """Named daily delivery windows."""
    MORNING = "morning"
    EVENING = "evening"
    NONE = "none"
