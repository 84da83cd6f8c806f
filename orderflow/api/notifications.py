"""
OrderFlow — Notifications API

  - GET    /notifications            pending payloads for the current user
  - GET    /notifications/pending    "has unseen order activity" flag + count
  - DELETE /notifications/clear      acknowledge everything (idempotent)
  - PUT    /notifications/{id}/read  flag one payload as read
  - GET    /notifications/stream/{order_id}
        SSE stream of the order's status changes. The fan-out publishes to
        Redis channel order:{order_id}; this endpoint subscribes and relays
        until the order reaches a terminal state or the client goes away.
"""
import asyncio
import json
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.api.deps import get_current_user
from orderflow.core.config import get_settings
from orderflow.core.errors import NotFoundError
from orderflow.core.redis_client import get_redis
from orderflow.db.database import AsyncSessionLocal, get_db
from orderflow.models.order import OrderStatus
from orderflow.schemas.common import ApiResponse, CurrentUser, ok
from orderflow.schemas.notification import (
    NotificationListResponse,
    NotificationResponse,
    PendingResponse,
)
from orderflow.services import order_store
from orderflow.services.notifications import ORDER_CHANNEL, NotificationFanout, get_fanout

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications", tags=["notifications"])

TERMINAL_STATUSES = {s.value for s in OrderStatus if s.is_terminal}


@router.get("", response_model=ApiResponse[NotificationListResponse])
async def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    user: CurrentUser = Depends(get_current_user),
    fanout: NotificationFanout = Depends(get_fanout),
):
    notifications = await fanout.list_pending(user.id, limit)
    return ok({"notifications": notifications, "count": len(notifications)})


@router.get("/pending", response_model=ApiResponse[PendingResponse])
async def check_pending_notifications(
    user: CurrentUser = Depends(get_current_user),
    fanout: NotificationFanout = Depends(get_fanout),
):
    count = await fanout.pending_count(user.id)
    return ok(PendingResponse(has_new_order_notification=count > 0, count=count).model_dump())


@router.delete("/clear")
async def clear_notifications(
    user: CurrentUser = Depends(get_current_user),
    fanout: NotificationFanout = Depends(get_fanout),
):
    await fanout.clear_pending(user.id)
    return ok(message="Notifications cleared.")


@router.put("/{notification_id}/read", response_model=ApiResponse[NotificationResponse])
async def mark_notification_read(
    notification_id: str,
    user: CurrentUser = Depends(get_current_user),
    fanout: NotificationFanout = Depends(get_fanout),
):
    """Flag one pending notification as read. It stays in the list until cleared."""
    notification = await fanout.mark_read(user.id, notification_id)
    if notification is None:
        raise NotFoundError(f"Notification '{notification_id}' not found.")
    return ok(notification)


def _status_event(payload: dict) -> str:
    return f"event: order_status_changed\ndata: {json.dumps(payload)}\n\n"


async def _current_status(order_id: str) -> OrderStatus:
    async with AsyncSessionLocal() as db:
        return (await order_store.load_order(db, order_id)).status


async def _sse_generator(order_id: str, request: Request) -> AsyncGenerator[str, None]:
    """
    Subscribe to the order channel, then read the stored status. A terminal
    status published before the subscription is therefore still seen.
    """
    redis = get_redis()
    channel_name = ORDER_CHANNEL.format(order_id=order_id)
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel_name)

    try:
        yield f": connected to order {order_id}\n\n"
        yield f"retry: {settings.SSE_RETRY_MILLISECONDS}\n\n"

        status = await _current_status(order_id)
        if status.is_terminal:
            yield _status_event({"order_id": order_id, "status": status.value,
                                 "message": status.customer_message})
            return

        while True:
            if await request.is_disconnected():
                break

            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if message and message["type"] == "message":
                try:
                    payload = json.loads(message["data"])
                except ValueError:
                    payload = {"raw": message["data"]}

                yield _status_event(payload)

                if payload.get("status") in TERMINAL_STATUSES:
                    break
            else:
                yield ": keepalive\n\n"
                await asyncio.sleep(settings.SSE_KEEPALIVE_INTERVAL_SECONDS)

    finally:
        await pubsub.unsubscribe(channel_name)
        await pubsub.aclose()


@router.get("/stream/{order_id}")
async def stream_order(
    order_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    SSE endpoint for following one order. Requires read access to the order.
    Ends after the first terminal status (immediately if already terminal).
    """
    await order_store.get_order_by_id(db, order_id, user)
    return StreamingResponse(
        _sse_generator(order_id, request),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        },
    )
