"""
OrderFlow — Pydantic Schemas (notifications)
"""
from pydantic import BaseModel


class PendingResponse(BaseModel):
    has_new_order_notification: bool
    count: int


class NotificationResponse(BaseModel):
    id: str
    type: str
    order_id: str
    old_status: str | None = None
    new_status: str
    message: str
    timestamp: str
    read: bool = False


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    count: int
