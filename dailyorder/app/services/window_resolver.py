"""
Delivery window resolution.

Maps an instant to the named window it falls in and to the opposite window
new orders should target: orders taken in the morning go out in the evening
and vice versa. Pure and stateless; ``now`` is always passed in.
"""

from datetime import date, datetime, time, timedelta
from typing import Tuple
from zoneinfo import ZoneInfo

from dailyorder.app.core.clock import as_utc
from dailyorder.app.core.config import OrderingWindowConfig
from dailyorder.app.models.enums import DeliveryWindow


OPPOSITE_WINDOW = {
    DeliveryWindow.MORNING: DeliveryWindow.EVENING,
    DeliveryWindow.EVENING: DeliveryWindow.MORNING,
    DeliveryWindow.NONE: DeliveryWindow.NONE,
}


def _within(moment: time, start: time, end: time) -> bool:
    # Half-open [start, end)
    return start <= moment < end


class WindowResolver:

    def __init__(self, config: OrderingWindowConfig):
        self.config = config
        self.tz = ZoneInfo(config.timezone)

    def local(self, now: datetime) -> datetime:
        return now.astimezone(self.tz)

    def current_window(self, now: datetime) -> DeliveryWindow:
        """Window the local wall-clock time of ``now`` falls into."""
        moment = self.local(now).time()
        if _within(moment, self.config.morning_start, self.config.morning_end):
            return DeliveryWindow.MORNING
        if _within(moment, self.config.evening_start, self.config.evening_end):
            return DeliveryWindow.EVENING
        return DeliveryWindow.NONE

    def target_window(self, now: datetime) -> DeliveryWindow:
        """Window that an order placed at ``now`` is delivered in."""
        return OPPOSITE_WINDOW[self.current_window(now)]

    def business_date(self, now: datetime) -> date:
        return self.local(now).date()

    def day_bounds(self, now: datetime) -> Tuple[datetime, datetime]:
        """
        Start of the local business day and start of the next one.

        Both are returned as aware datetimes; callers treat the range as
        half-open.
        """
        local_day = self.business_date(now)
        start = datetime.combine(local_day, time.min, tzinfo=self.tz)
        end = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=self.tz)
        return start, end

    def describe(self) -> dict:
        fmt = "%H:%M"
        return {
            "timezone": self.config.timezone,
            "morning": [self.config.morning_start.strftime(fmt), self.config.morning_end.strftime(fmt)],
            "evening": [self.config.evening_start.strftime(fmt), self.config.evening_end.strftime(fmt)],
        }

    def utc_day_bounds(self, now: datetime) -> Tuple[datetime, datetime]:
        """``day_bounds`` converted to UTC for comparison with stored instants."""
        start, end = self.day_bounds(now)
        return as_utc(start), as_utc(end)
