"""
Shared test helpers: fake Redis, window configuration and identities.
"""

from datetime import datetime, time, timezone

from dailyorder.app.core.config import OrderingWindowConfig
from dailyorder.app.core.jwt import create_access_token
from dailyorder.app.models.user import User

# 09:30 in Asia/Kolkata: inside the morning window, orders target the evening
MORNING_INSTANT = datetime(2026, 3, 10, 4, 0, tzinfo=timezone.utc)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.published = []
        self.fail_publish = False
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def publish(self, channel, message):
        if self.fail_publish or self._closed:
            raise ConnectionError("Redis unavailable")
        self.published.append((channel, message))
        return 1

    async def aclose(self):
        self._closed = True


def make_window_config(enabled: bool) -> OrderingWindowConfig:
    return OrderingWindowConfig(
        enabled=enabled,
        timezone="Asia/Kolkata",
        morning_start=time(6, 0),
        morning_end=time(12, 0),
        evening_start=time(15, 0),
        evening_end=time(21, 0),
    )


class WindowSwitch:
    """Mutable ordering-window configuration for a single test."""

    def __init__(self, enabled: bool = False):
        self.config = make_window_config(enabled)

    def enable(self):
        self.config = make_window_config(True)


def actor_for(user: User) -> dict:
    return {
        "sub": user.phone_no,
        "user_id": user.id,
        "role": user.role.value,
        "tenant_id": user.tenant_id,
    }


def auth_headers(actor: dict) -> dict:
    token = create_access_token(data={"sub": actor["sub"], "user_id": actor["user_id"]})
    return {"Authorization": f"Bearer {token}"}
