"""
OrderFlow — Order state machine

pending → confirmed → prepared → in_delivery → delivered
pending / confirmed / prepared → cancelled

The table below is the whole rule set: a (from, to) pair that is absent is an
InvalidTransition, and a requester whose relationships to the order do not
intersect the allowed set is Forbidden. Writes are conditional on the status
we read, so a concurrent writer makes our UPDATE match zero rows; the
optimistic-retry decorator then re-reads and re-evaluates.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.config import get_settings
from orderflow.core.errors import ConflictError, ForbiddenError, InvalidTransitionError
from orderflow.core.optimistic_lock import StaleDataError, with_optimistic_retry
from orderflow.models.order import Order, OrderStatus, OrderStatusChange
from orderflow.schemas.common import CurrentUser
from orderflow.services.order_store import (
    Relationship,
    load_order,
    relationships_for,
    restaurant_owner_id,
)

settings = get_settings()
logger = logging.getLogger(__name__)

_RESTAURANT = frozenset({Relationship.RESTAURANT_OWNER, Relationship.PLATFORM_ADMIN})
_CANCELLERS = frozenset({Relationship.CUSTOMER, Relationship.RESTAURANT_OWNER, Relationship.PLATFORM_ADMIN})
_PARTNER = frozenset({Relationship.ASSIGNED_PARTNER})

TRANSITIONS: dict[tuple[OrderStatus, OrderStatus], frozenset[Relationship]] = {
    (OrderStatus.PENDING, OrderStatus.CONFIRMED): _RESTAURANT,
    (OrderStatus.PENDING, OrderStatus.CANCELLED): _CANCELLERS,
    (OrderStatus.CONFIRMED, OrderStatus.PREPARED): _RESTAURANT,
    (OrderStatus.CONFIRMED, OrderStatus.CANCELLED): _CANCELLERS,
    (OrderStatus.PREPARED, OrderStatus.IN_DELIVERY): _PARTNER,
    (OrderStatus.PREPARED, OrderStatus.CANCELLED): _CANCELLERS,
    (OrderStatus.IN_DELIVERY, OrderStatus.DELIVERED): _PARTNER,
}


def allowed_targets(current: OrderStatus) -> list[OrderStatus]:
    return [to for (frm, to) in TRANSITIONS if frm == current]


def check_transition(
    current: OrderStatus,
    target: OrderStatus,
    relationships: set[Relationship],
) -> frozenset[Relationship]:
    """Validate a transition against the table. Returns the allowed relationship set."""
    allowed = TRANSITIONS.get((current, target))
    if allowed is None:
        raise InvalidTransitionError(
            f"Cannot move order from '{current.value}' to '{target.value}'."
        )
    if not relationships & allowed:
        raise ForbiddenError(
            f"Not authorized to move this order from '{current.value}' to '{target.value}'."
        )
    return allowed


@dataclass
class Transition:
    order: Order
    old_status: OrderStatus
    new_status: OrderStatus
    restaurant_owner_id: str | None


@with_optimistic_retry()
async def _transition(
    db: AsyncSession,
    order_id: str,
    target: OrderStatus,
    requester: CurrentUser,
    notes: str | None,
) -> Transition:
    order = await load_order(db, order_id)
    current = order.status
    owner_id = await restaurant_owner_id(db, order.restaurant_id)
    allowed = check_transition(current, target, relationships_for(order, requester, owner_id))

    now = datetime.now(tz=timezone.utc)
    values: dict = {"status": target, "version_id": Order.version_id + 1, "updated_at": now}
    if target == OrderStatus.IN_DELIVERY:
        values["estimated_delivery_at"] = now + timedelta(minutes=settings.ESTIMATED_DELIVERY_MINUTES)
    elif target == OrderStatus.DELIVERED:
        values["delivered_at"] = now

    stmt = update(Order).where(Order.id == order_id, Order.status == current)
    if allowed == _PARTNER:
        stmt = stmt.where(Order.delivery_partner_id == requester.id)
    result = await db.execute(
        stmt.values(**values).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise StaleDataError(f"Order {order_id} changed while moving to {target.value}.")

    db.add(OrderStatusChange(
        order_id=order_id,
        from_status=current,
        to_status=target,
        changed_by=requester.id,
        notes=notes,
        changed_at=now,
    ))
    await db.commit()

    logger.info("Order %s: %s → %s by %s", order_id, current.value, target.value, requester.id)
    return Transition(
        order=await load_order(db, order_id),
        old_status=current,
        new_status=target,
        restaurant_owner_id=owner_id,
    )


async def transition(
    db: AsyncSession,
    order_id: str,
    target: OrderStatus,
    requester: CurrentUser,
    notes: str | None = None,
) -> Transition:
    try:
        return await _transition(db, order_id, target, requester, notes)
    except StaleDataError:
        raise ConflictError("Order was modified concurrently. Please retry.")


async def cancel(
    db: AsyncSession,
    order_id: str,
    requester: CurrentUser,
    reason: str | None = None,
) -> Transition:
    return await transition(db, order_id, OrderStatus.CANCELLED, requester, notes=reason)
