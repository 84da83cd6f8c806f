"""
OrderFlow — Order store

Creation (server-side price snapshot), authorized reads and paginated lists.
Prices and names are copied from the menu read model at creation time and
never recomputed; anything the client sends as a price is ignored.
"""
import logging
import math
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.config import get_settings
from orderflow.core.errors import ForbiddenError, NotFoundError, ValidationError
from orderflow.models.order import Order, OrderItem, OrderStatus, OrderStatusChange
from orderflow.models.restaurant import MenuItem, Restaurant
from orderflow.schemas.common import CurrentUser, UserRole
from orderflow.schemas.order import DeliveryAddress, OrderItemRequest

settings = get_settings()
logger = logging.getLogger(__name__)


class Relationship(str, Enum):
    """How a requester relates to a given order."""
    CUSTOMER = "customer"
    RESTAURANT_OWNER = "restaurant_owner"
    PLATFORM_ADMIN = "platform_admin"
    ASSIGNED_PARTNER = "assigned_partner"


def relationships_for(order: Order, requester: CurrentUser, restaurant_owner_id: str | None) -> set[Relationship]:
    rels: set[Relationship] = set()
    if requester.id == order.customer_id:
        rels.add(Relationship.CUSTOMER)
    if requester.role == UserRole.PLATFORM_ADMIN:
        rels.add(Relationship.PLATFORM_ADMIN)
    if requester.role == UserRole.RESTAURANT_ADMIN and requester.id == restaurant_owner_id:
        rels.add(Relationship.RESTAURANT_OWNER)
    if requester.role == UserRole.DELIVERY_PARTNER and requester.id == order.delivery_partner_id:
        rels.add(Relationship.ASSIGNED_PARTNER)
    return rels


def is_available_for_pickup(order: Order) -> bool:
    return order.status == OrderStatus.PREPARED and order.delivery_partner_id is None


@dataclass
class PlacedOrder:
    order: Order
    restaurant_owner_id: str


@dataclass
class Page:
    orders: list[Order]
    current_page: int
    total_pages: int
    total_orders: int

    @property
    def has_next(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.current_page > 1

    def pagination(self) -> dict:
        return {
            "current_page": self.current_page,
            "total_pages": self.total_pages,
            "total_orders": self.total_orders,
            "has_next": self.has_next,
            "has_prev": self.has_prev,
        }


async def load_order(db: AsyncSession, order_id: str) -> Order:
    """Fresh read of an order (bypasses stale identity-map state). NotFoundError if absent."""
    result = await db.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFoundError(f"Order '{order_id}' not found.")
    return order


async def restaurant_owner_id(db: AsyncSession, restaurant_id: str) -> str | None:
    result = await db.execute(select(Restaurant.owner_id).where(Restaurant.id == restaurant_id))
    return result.scalar_one_or_none()


async def create_order(
    db: AsyncSession,
    customer_id: str,
    restaurant_id: str,
    items: list[OrderItemRequest],
    delivery_address: DeliveryAddress,
    special_instructions: str | None = None,
) -> PlacedOrder:
    """Place an order. Also returns the restaurant owner's id for the new-order notification."""
    if not items:
        raise ValidationError("Order must contain at least one item.")

    restaurant = await db.get(Restaurant, restaurant_id)
    if restaurant is None or not restaurant.is_active:
        raise NotFoundError(f"Restaurant '{restaurant_id}' not found.")
    owner_id = restaurant.owner_id

    requested_ids = {item.menu_item_id for item in items}
    result = await db.execute(select(MenuItem).where(MenuItem.id.in_(list(requested_ids))))
    menu = {m.id: m for m in result.scalars().all()}

    lines: list[OrderItem] = []
    for position, item in enumerate(items):
        menu_item = menu.get(item.menu_item_id)
        if menu_item is None:
            raise ValidationError(f"Menu item '{item.menu_item_id}' does not exist.")
        if menu_item.restaurant_id != restaurant_id:
            raise ValidationError(
                f"Menu item '{item.menu_item_id}' does not belong to restaurant '{restaurant_id}'."
            )
        if not menu_item.is_available:
            raise ValidationError(f"Menu item '{menu_item.name}' is currently unavailable.")
        lines.append(OrderItem(
            position=position,
            menu_item_id=menu_item.id,
            name=menu_item.name,
            unit_price=menu_item.price,
            quantity=item.quantity,
            line_total=menu_item.price * item.quantity,
            notes=item.notes,
        ))

    order = Order(
        customer_id=customer_id,
        restaurant_id=restaurant_id,
        status=OrderStatus.PENDING,
        total_price=sum(line.line_total for line in lines),
        address_line1=delivery_address.line1,
        address_line2=delivery_address.line2,
        city=delivery_address.city,
        region=delivery_address.region,
        postal_code=delivery_address.postal_code,
        country=delivery_address.country,
        special_instructions=special_instructions,
        items=lines,
    )
    db.add(order)
    await db.flush()
    db.add(OrderStatusChange(
        order_id=order.id,
        from_status=None,
        to_status=OrderStatus.PENDING,
        changed_by=customer_id,
        notes="order placed",
    ))
    await db.commit()

    logger.info(
        "Order %s created by %s at restaurant %s (%d lines, total=%d)",
        order.id, customer_id, restaurant_id, len(lines), order.total_price,
    )
    return PlacedOrder(order=await load_order(db, order.id), restaurant_owner_id=owner_id)


async def get_order_by_id(db: AsyncSession, order_id: str, requester: CurrentUser) -> Order:
    order = await load_order(db, order_id)
    owner_id = await restaurant_owner_id(db, order.restaurant_id)
    if relationships_for(order, requester, owner_id):
        return order
    if requester.role == UserRole.DELIVERY_PARTNER and is_available_for_pickup(order):
        return order
    raise ForbiddenError("Not authorized to view this order.")


async def get_status_history(db: AsyncSession, order_id: str, requester: CurrentUser) -> list[OrderStatusChange]:
    await get_order_by_id(db, order_id, requester)
    result = await db.execute(
        select(OrderStatusChange)
        .where(OrderStatusChange.order_id == order_id)
        .order_by(OrderStatusChange.changed_at.asc())
    )
    return list(result.scalars().all())


def _clamp_page(page: int, page_size: int | None) -> tuple[int, int]:
    size = page_size or settings.DEFAULT_PAGE_SIZE
    return max(page, 1), max(1, min(size, settings.MAX_PAGE_SIZE))


async def _paginate(db: AsyncSession, query, page: int, page_size: int) -> Page:
    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    result = await db.execute(
        query.order_by(Order.created_at.desc()).limit(page_size).offset((page - 1) * page_size)
    )
    return Page(
        orders=list(result.scalars().all()),
        current_page=page,
        total_pages=math.ceil(total / page_size) if total else 0,
        total_orders=total,
    )


async def list_orders_for_user(
    db: AsyncSession,
    user_id: str,
    status: OrderStatus | None = None,
    page: int = 1,
    page_size: int | None = None,
) -> Page:
    """Customer's own orders, newest first."""
    page, page_size = _clamp_page(page, page_size)
    query = select(Order).where(Order.customer_id == user_id)
    if status is not None:
        query = query.where(Order.status == status)
    return await _paginate(db, query, page, page_size)


async def list_orders_for_restaurant_admin(
    db: AsyncSession,
    requester: CurrentUser,
    status: OrderStatus | None = None,
    page: int = 1,
    page_size: int | None = None,
) -> Page:
    """Orders of the restaurants the requester owns (every order for a platform admin)."""
    page, page_size = _clamp_page(page, page_size)
    query = select(Order)
    if requester.role != UserRole.PLATFORM_ADMIN:
        owned = select(Restaurant.id).where(Restaurant.owner_id == requester.id)
        query = query.where(Order.restaurant_id.in_(owned))
    if status is not None:
        query = query.where(Order.status == status)
    return await _paginate(db, query, page, page_size)
