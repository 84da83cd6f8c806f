"""
OrderFlow — Delivery matching

The available pool is every prepared order with no delivery partner, oldest
first. Claiming is a single conditional UPDATE (first writer wins); a
read-then-write here would let two partners claim the same order.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.errors import ConflictError, InvalidTransitionError
from orderflow.models.order import Order, OrderStatus, OrderStatusChange
from orderflow.services.order_store import load_order

logger = logging.getLogger(__name__)

ACTIVE_DELIVERY_STATUSES = (OrderStatus.PREPARED, OrderStatus.IN_DELIVERY)


async def list_available_orders(db: AsyncSession) -> list[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.status == OrderStatus.PREPARED, Order.delivery_partner_id.is_(None))
        .order_by(Order.created_at.asc())
    )
    return list(result.scalars().all())


async def assign_to_me(db: AsyncSession, order_id: str, partner_id: str) -> Order:
    """
    Exclusively bind ``partner_id`` to the order.
    Raises NotFoundError, ConflictError (already claimed) or
    InvalidTransitionError (order not ready for pickup).
    """
    now = datetime.now(tz=timezone.utc)
    result = await db.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.delivery_partner_id.is_(None),
            Order.status == OrderStatus.PREPARED,
        )
        .values(delivery_partner_id=partner_id, version_id=Order.version_id + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        await db.rollback()
        order = await load_order(db, order_id)
        if order.delivery_partner_id is not None:
            logger.info(
                "Partner %s lost the claim on order %s (held by %s)",
                partner_id, order_id, order.delivery_partner_id,
            )
            raise ConflictError("Order is already assigned to a delivery partner.")
        raise InvalidTransitionError(
            f"Order must be '{OrderStatus.PREPARED.value}' to be assigned (currently '{order.status.value}')."
        )

    db.add(OrderStatusChange(
        order_id=order_id,
        from_status=OrderStatus.PREPARED,
        to_status=OrderStatus.PREPARED,
        changed_by=partner_id,
        notes=f"assigned to {partner_id}",
        changed_at=now,
    ))
    await db.commit()
    logger.info("Order %s assigned to delivery partner %s", order_id, partner_id)
    return await load_order(db, order_id)


async def list_assigned_orders(db: AsyncSession, partner_id: str) -> list[Order]:
    result = await db.execute(
        select(Order)
        .where(
            Order.delivery_partner_id == partner_id,
            Order.status.in_(ACTIVE_DELIVERY_STATUSES),
        )
        .order_by(Order.created_at.asc())
    )
    return list(result.scalars().all())


async def list_delivery_history(db: AsyncSession, partner_id: str) -> list[Order]:
    result = await db.execute(
        select(Order)
        .where(Order.delivery_partner_id == partner_id, Order.status == OrderStatus.DELIVERED)
        .order_by(Order.delivered_at.desc())
    )
    return list(result.scalars().all())
