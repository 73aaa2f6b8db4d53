"""
Order notification sink.

Publishes a read-only order summary after an order is created, merged or
completed. The sink is a soft dependency: any failure is logged and dropped,
never surfaced to the caller or allowed to undo the committed transaction.
"""

import json
import logging
from typing import Any, Dict, Iterable, List

from fastapi import Depends

from dailyorder.app.core.config import settings
from dailyorder.app.core.redis_client import get_redis
from dailyorder.app.core.reliability import CircuitBreaker, notification_circuit_breaker
from dailyorder.app.models.order import Order

logger = logging.getLogger("dailyorder.notifications")


class NotificationSink:
    """Receives order summaries."""

    async def send(self, event: str, summary: Dict[str, Any]) -> None:
        raise NotImplementedError


class NullNotificationSink(NotificationSink):
    async def send(self, event: str, summary: Dict[str, Any]) -> None:
        return None


class RedisNotificationSink(NotificationSink):
    """Publishes summaries as JSON on a Redis pub/sub channel."""

    def __init__(self, redis, channel: str, breaker: CircuitBreaker = notification_circuit_breaker):
        self.redis = redis
        self.channel = channel
        self.breaker = breaker

    async def send(self, event: str, summary: Dict[str, Any]) -> None:
        message = json.dumps({"event": event, "order": summary}, default=str)
        await self.breaker.call(self.redis.publish, self.channel, message)


def build_order_summary(order: Order) -> Dict[str, Any]:
    distributor = order.distributor
    lines: List[Dict[str, Any]] = [
        {
            "line_no": item.line_no,
            "catalog_item_id": item.catalog_item_id,
            "qty": item.qty,
            "rate": str(item.rate),
            "amount": str(item.amount),
            "ordered_by_box": item.ordered_by_box,
            "box_count": item.box_count,
        }
        for item in order.items
    ]
    return {
        "order_no": order.order_no,
        "tenant_id": order.tenant_id,
        "distributor_id": order.distributor_id,
        "distributor_name": distributor.full_name if distributor is not None else None,
        "business_name": distributor.business_name if distributor is not None else None,
        "status": order.status.value,
        "payment_status": order.payment_status.value,
        "delivery_window": order.delivery_window.value if order.delivery_window else None,
        "total_amount": str(order.total_amount),
        "items": lines,
    }


async def notify_orders(sink: NotificationSink, event: str, orders: Iterable[Order]) -> None:
    """
    Fire-and-forget delivery of order summaries.

    Called after commit. Exceptions from the sink (including an open circuit)
    are logged per order and never propagated.
    """
    for order in orders:
        try:
            await sink.send(event, build_order_summary(order))
        except Exception as e:
            logger.warning(
                "Order notification failed",
                extra={"event": event, "order_no": order.order_no, "error": str(e)},
            )


async def get_notification_sink(redis=Depends(get_redis)) -> NotificationSink:
    """FastAPI dependency for the configured sink."""
    if not settings.notifications_enabled:
        return NullNotificationSink()
    return RedisNotificationSink(redis, settings.order_notification_channel)
