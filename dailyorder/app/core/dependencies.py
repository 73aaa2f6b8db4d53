"""
Identity dependencies for FastAPI.

Resolves the bearer token into the identity context every core operation
consumes: ``{"sub", "user_id", "role", "tenant_id"}``.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from dailyorder.app.core.exceptions import AuthenticationError, InsufficientPermissionsError
from dailyorder.app.core.jwt import decode_access_token
from dailyorder.app.db.session import get_db
from dailyorder.app.models.user import User

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    FastAPI dependency returning the caller's identity.

    Checks:
    1. Validates JWT token signature and expiry
    2. Verifies the user still exists and is active (real-time check)
    3. Takes role and tenant from the user row so a stale token cannot
       widen its scope

    Raises:
        AuthenticationError: token unusable or user gone (401)
        InsufficientPermissionsError: user inactive (403)
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Could not validate credentials")

    user_id = payload.get("user_id")
    if not user_id:
        raise AuthenticationError("Invalid token payload")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise InsufficientPermissionsError("User account is inactive")

    return {
        "sub": payload.get("sub"),
        "user_id": user.id,
        "role": user.role.value,
        "tenant_id": user.tenant_id,
    }
