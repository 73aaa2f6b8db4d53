"""
Security guards for role-based access and tenant scoping.
"""

from typing import List, Optional
from fastapi import Depends, HTTPException, status
from dailyorder.app.models.enums import UserRole
from dailyorder.app.core.dependencies import get_current_user


ADMIN_ROLES = [UserRole.MASTER_ADMIN, UserRole.SUPER_ADMIN]


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.put("/orders/complete")
        async def complete(current_user: dict = Depends(require_role([UserRole.SUPER_ADMIN]))):
            ...

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        user_role_str = current_user.get("role")

        if not user_role_str:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Role information missing from token"
            )

        try:
            user_role = UserRole(user_role_str)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if user_role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker


def tenant_scope(current_user: dict) -> Optional[int]:
    """
    Tenant id to filter queries by.

    Master admins operate platform-wide and get None (no filtering).
    """
    if current_user.get("role") == UserRole.MASTER_ADMIN.value:
        return None
    return current_user.get("tenant_id")


def is_admin(current_user: dict) -> bool:
    return current_user.get("role") in {r.value for r in ADMIN_ROLES}
