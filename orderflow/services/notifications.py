"""
OrderFlow — Notification fan-out

Every order event goes out on up to three independent paths, in this order:
  1. durable record in the pending-notification store (source of truth for
     "did the user miss anything")
  2. live push to every authenticated socket of the target user
  3. Redis pub/sub on order:{order_id} for per-order SSE followers

A failure on one path never blocks the others, and never raises into the
already-committed order mutation.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import redis.asyncio as aioredis

from orderflow.core.redis_client import get_redis
from orderflow.models.order import Order, OrderStatus
from orderflow.realtime.registry import ConnectionRegistry, get_registry
from orderflow.services.pending_store import PendingNotificationStore

logger = logging.getLogger(__name__)

ORDER_CHANNEL = "order:{order_id}"


class NotificationKind(str, Enum):
    ORDER_CONFIRMATION = "order_confirmation"
    NEW_ORDER = "new_order"
    STATUS_UPDATE = "status_update"
    DELIVERY_ASSIGNMENT = "delivery_assignment"
    DELIVERY_COMPLETE = "delivery_complete"


SOCKET_EVENTS = {
    NotificationKind.ORDER_CONFIRMATION: "order_confirmed",
    NotificationKind.NEW_ORDER: "order_received",
    NotificationKind.STATUS_UPDATE: "status_updated",
    NotificationKind.DELIVERY_ASSIGNMENT: "delivery_assigned",
    NotificationKind.DELIVERY_COMPLETE: "order_delivered",
}


@dataclass(frozen=True)
class NotificationEvent:
    target_user_id: str
    order_id: str
    new_status: OrderStatus
    kind: NotificationKind
    old_status: OrderStatus | None = None
    message: str | None = None

    def payload(self) -> dict[str, Any]:
        return {
            "type": self.kind.value,
            "order_id": self.order_id,
            "old_status": self.old_status.value if self.old_status else None,
            "new_status": self.new_status.value,
            "message": self.message or self.new_status.customer_message,
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
        }


@dataclass(frozen=True)
class PublishResult:
    recorded: bool
    delivered: int


class NotificationFanout:
    def __init__(
        self,
        redis: aioredis.Redis,
        registry: ConnectionRegistry,
        store: PendingNotificationStore | None = None,
    ):
        self.redis = redis
        self.registry = registry
        self.store = store or PendingNotificationStore(redis)

    async def publish(self, event: NotificationEvent) -> PublishResult:
        payload = event.payload()

        recorded = True
        try:
            payload = await self.store.append(event.target_user_id, payload)
        except Exception:
            recorded = False
            logger.exception(
                "Durable notification write failed for user %s (order %s, %s)",
                event.target_user_id, event.order_id, event.kind.value,
            )

        delivered = await self.registry.send_to_user(
            event.target_user_id, SOCKET_EVENTS[event.kind], payload
        )
        logger.info(
            "Notification %s for order %s → user %s (recorded=%s, live=%d)",
            event.kind.value, event.order_id, event.target_user_id, recorded, delivered,
        )
        return PublishResult(recorded=recorded, delivered=delivered)

    async def broadcast_order(self, order_id: str, status: OrderStatus) -> None:
        """Publish the new status on the order's pub/sub channel (SSE followers)."""
        channel = ORDER_CHANNEL.format(order_id=order_id)
        try:
            await self.redis.publish(
                channel,
                json.dumps({"order_id": order_id, "status": status.value, "message": status.customer_message}),
            )
        except Exception:
            logger.exception("Publishing to %s failed", channel)

    # ── Order events ──────────────────────────────────────────────────────────

    async def notify_order_created(self, order: Order, restaurant_owner_id: str | None) -> list[PublishResult]:
        results = [await self.publish(NotificationEvent(
            target_user_id=order.customer_id,
            order_id=order.id,
            new_status=order.status,
            kind=NotificationKind.ORDER_CONFIRMATION,
            message="Your order has been placed!",
        ))]
        if restaurant_owner_id:
            results.append(await self.publish(NotificationEvent(
                target_user_id=restaurant_owner_id,
                order_id=order.id,
                new_status=order.status,
                kind=NotificationKind.NEW_ORDER,
                message="A new order is waiting for confirmation.",
            )))
        await self.broadcast_order(order.id, order.status)
        return results

    async def notify_status_change(
        self,
        order: Order,
        old_status: OrderStatus,
        new_status: OrderStatus,
        changed_by: str,
        restaurant_owner_id: str | None = None,
    ) -> list[PublishResult]:
        results = [await self.publish(NotificationEvent(
            target_user_id=order.customer_id,
            order_id=order.id,
            new_status=new_status,
            old_status=old_status,
            kind=NotificationKind.STATUS_UPDATE,
        ))]

        if new_status == OrderStatus.CANCELLED:
            others = {order.delivery_partner_id, restaurant_owner_id} - {None, changed_by, order.customer_id}
            for user_id in sorted(others):
                results.append(await self.publish(NotificationEvent(
                    target_user_id=user_id,
                    order_id=order.id,
                    new_status=new_status,
                    old_status=old_status,
                    kind=NotificationKind.STATUS_UPDATE,
                    message="An order you were handling has been cancelled.",
                )))

        if new_status == OrderStatus.DELIVERED:
            results.append(await self.publish(NotificationEvent(
                target_user_id=order.customer_id,
                order_id=order.id,
                new_status=new_status,
                old_status=old_status,
                kind=NotificationKind.DELIVERY_COMPLETE,
            )))

        await self.broadcast_order(order.id, new_status)
        return results

    async def notify_assignment(self, order: Order) -> PublishResult:
        return await self.publish(NotificationEvent(
            target_user_id=order.customer_id,
            order_id=order.id,
            new_status=order.status,
            kind=NotificationKind.DELIVERY_ASSIGNMENT,
            message="A delivery partner has been assigned to your order!",
        ))

    # ── Pending record ────────────────────────────────────────────────────────

    async def check_pending(self, user_id: str) -> bool:
        return await self.store.has_pending(user_id)

    async def pending_count(self, user_id: str) -> int:
        return await self.store.count(user_id)

    async def list_pending(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        return await self.store.list(user_id, limit)

    async def mark_read(self, user_id: str, notification_id: str) -> dict[str, Any] | None:
        return await self.store.mark_read(user_id, notification_id)

    async def clear_pending(self, user_id: str) -> None:
        await self.store.clear(user_id)
        logger.info("Pending notifications cleared for user %s", user_id)


def get_fanout() -> NotificationFanout:
    """FastAPI dependency: fan-out bound to the process Redis client and registry."""
    return NotificationFanout(get_redis(), get_registry())
