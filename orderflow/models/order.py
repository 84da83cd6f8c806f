"""
OrderFlow — Order DB models

[TRANSACTIONAL DATA] — orders, their line snapshots and status history.
Line items are written once at creation; price/name changes on the menu never
reach historical orders.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import String, Integer, DateTime, Text, Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from orderflow.db.database import Base


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class OrderStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARED = "prepared"
    IN_DELIVERY = "in_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def customer_message(self) -> str:
        return _MESSAGES[self]

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


_LABELS = {
    OrderStatus.PENDING: "Pending",
    OrderStatus.CONFIRMED: "Confirmed",
    OrderStatus.PREPARED: "Prepared",
    OrderStatus.IN_DELIVERY: "In delivery",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
}

_MESSAGES = {
    OrderStatus.PENDING: "Your order is waiting for confirmation.",
    OrderStatus.CONFIRMED: "Your order has been confirmed by the restaurant.",
    OrderStatus.PREPARED: "Your order is ready and will be on its way soon.",
    OrderStatus.IN_DELIVERY: "Your order is out for delivery.",
    OrderStatus.DELIVERED: "Your order has been delivered!",
    OrderStatus.CANCELLED: "Your order has been cancelled.",
}

# Persist the lower-case values, not the member names.
order_status_type = Enum(
    OrderStatus,
    name="order_status",
    values_callable=lambda enum: [member.value for member in enum],
)


class Order(Base):
    """
    [TRANSACTIONAL DATA]
    delivery_partner_id is only ever written by the matching service's
    conditional assignment; version_id is bumped by every conditional write.
    """
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    restaurant_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    delivery_partner_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    status: Mapped[OrderStatus] = mapped_column(
        order_status_type, default=OrderStatus.PENDING, index=True, nullable=False
    )
    total_price: Mapped[int] = mapped_column(Integer, nullable=False)  # integer cents

    # Delivery address snapshot, independent of the user's profile address
    address_line1: Mapped[str] = mapped_column(String(255), nullable=False)
    address_line2: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str] = mapped_column(String(120), nullable=False)
    region: Mapped[str] = mapped_column(String(120), nullable=False)
    postal_code: Mapped[str] = mapped_column(String(20), nullable=False)
    country: Mapped[str] = mapped_column(String(120), nullable=False)

    special_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    estimated_delivery_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        lazy="selectin",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
    )

    @property
    def delivery_address(self) -> dict[str, str | None]:
        return {
            "line1": self.address_line1,
            "line2": self.address_line2,
            "city": self.city,
            "region": self.region,
            "postal_code": self.postal_code,
            "country": self.country,
        }

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status.value} partner={self.delivery_partner_id}>"


class OrderItem(Base):
    """
    [TRANSACTIONAL DATA] — immutable line snapshot.
    """
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    menu_item_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)  # integer cents
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    line_total: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    order: Mapped[Order] = relationship(back_populates="items")


class OrderStatusChange(Base):
    """
    [TRANSACTIONAL DATA] — audit trail, one row per creation, transition or assignment.
    """
    __tablename__ = "order_status_history"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False)
    from_status: Mapped[OrderStatus | None] = mapped_column(order_status_type, nullable=True)
    to_status: Mapped[OrderStatus] = mapped_column(order_status_type, nullable=False)
    changed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
