"""
OrderFlow — Orders API

Flow for every mutation:
  1. JWT validated by middleware (request.state.user set), role gate per route
  2. Order store / state machine / matching performs a conditional write and commits
  3. Notification fan-out: durable pending record, then live push
  4. Return the order in the {success, message, data} envelope
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.api.deps import get_current_user, require_roles
from orderflow.db.database import get_db
from orderflow.models.order import Order, OrderStatus
from orderflow.schemas.common import ApiResponse, CurrentUser, UserRole, ok
from orderflow.schemas.order import (
    CancelRequest,
    OrderCreateRequest,
    OrderPageResponse,
    OrderResponse,
    StatusChangeResponse,
    StatusUpdateRequest,
)
from orderflow.services import matching, order_store, state_machine
from orderflow.services.notifications import NotificationFanout, get_fanout

router = APIRouter(prefix="/orders", tags=["orders"])


def _order_out(order: Order) -> dict:
    return OrderResponse.model_validate(order).model_dump(mode="json")


def _page_out(page: order_store.Page) -> dict:
    return {"orders": [_order_out(o) for o in page.orders], "pagination": page.pagination()}


@router.post("", status_code=status.HTTP_201_CREATED, response_model=ApiResponse[OrderResponse])
async def create_order(
    payload: OrderCreateRequest,
    user: CurrentUser = Depends(require_roles(UserRole.CLIENT)),
    db: AsyncSession = Depends(get_db),
    fanout: NotificationFanout = Depends(get_fanout),
):
    """Place an order. Totals are computed from the restaurant's current menu."""
    placed = await order_store.create_order(
        db,
        customer_id=user.id,
        restaurant_id=payload.restaurant_id,
        items=payload.items,
        delivery_address=payload.delivery_address,
        special_instructions=payload.special_instructions,
    )
    await fanout.notify_order_created(placed.order, placed.restaurant_owner_id)
    return ok(_order_out(placed.order), "Order created successfully.")


@router.get("", response_model=ApiResponse[OrderPageResponse])
async def list_my_orders(
    status_filter: OrderStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, ge=1),
    user: CurrentUser = Depends(require_roles(UserRole.CLIENT)),
    db: AsyncSession = Depends(get_db),
):
    """The current customer's orders, newest first."""
    result = await order_store.list_orders_for_user(db, user.id, status_filter, page, page_size)
    return ok(_page_out(result))


@router.get("/restaurant", response_model=ApiResponse[OrderPageResponse])
async def list_restaurant_orders(
    status_filter: OrderStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, ge=1),
    user: CurrentUser = Depends(require_roles(UserRole.RESTAURANT_ADMIN, UserRole.PLATFORM_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    result = await order_store.list_orders_for_restaurant_admin(db, user, status_filter, page, page_size)
    return ok(_page_out(result))


@router.get("/delivery/available", response_model=ApiResponse[list[OrderResponse]])
async def list_available_orders(
    user: CurrentUser = Depends(require_roles(UserRole.DELIVERY_PARTNER)),
    db: AsyncSession = Depends(get_db),
):
    """Prepared, unclaimed orders, oldest first."""
    orders = await matching.list_available_orders(db)
    return ok([_order_out(o) for o in orders])


@router.get("/delivery/me", response_model=ApiResponse[list[OrderResponse]])
async def list_my_assigned_orders(
    user: CurrentUser = Depends(require_roles(UserRole.DELIVERY_PARTNER)),
    db: AsyncSession = Depends(get_db),
):
    orders = await matching.list_assigned_orders(db, user.id)
    return ok([_order_out(o) for o in orders])


@router.get("/delivery/history", response_model=ApiResponse[list[OrderResponse]])
async def list_my_delivery_history(
    user: CurrentUser = Depends(require_roles(UserRole.DELIVERY_PARTNER)),
    db: AsyncSession = Depends(get_db),
):
    orders = await matching.list_delivery_history(db, user.id)
    return ok([_order_out(o) for o in orders])


@router.get("/{order_id}", response_model=ApiResponse[OrderResponse])
async def get_order(
    order_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    order = await order_store.get_order_by_id(db, order_id, user)
    return ok(_order_out(order))


@router.get("/{order_id}/history", response_model=ApiResponse[list[StatusChangeResponse]])
async def get_order_history(
    order_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    changes = await order_store.get_status_history(db, order_id, user)
    return ok([StatusChangeResponse.model_validate(c).model_dump(mode="json") for c in changes])


@router.put("/{order_id}/cancel", response_model=ApiResponse[OrderResponse])
async def cancel_order(
    order_id: str,
    payload: CancelRequest | None = None,
    user: CurrentUser = Depends(
        require_roles(UserRole.CLIENT, UserRole.RESTAURANT_ADMIN, UserRole.PLATFORM_ADMIN)
    ),
    db: AsyncSession = Depends(get_db),
    fanout: NotificationFanout = Depends(get_fanout),
):
    reason = payload.reason if payload else None
    result = await state_machine.cancel(db, order_id, user, reason)
    await fanout.notify_status_change(
        result.order, result.old_status, result.new_status, user.id, result.restaurant_owner_id
    )
    return ok(_order_out(result.order), "Order cancelled successfully.")


@router.post("/{order_id}/assign", response_model=ApiResponse[OrderResponse])
async def assign_order_to_me(
    order_id: str,
    user: CurrentUser = Depends(require_roles(UserRole.DELIVERY_PARTNER)),
    db: AsyncSession = Depends(get_db),
    fanout: NotificationFanout = Depends(get_fanout),
):
    """Claim an order from the available pool. 409 if another partner got it first."""
    order = await matching.assign_to_me(db, order_id, user.id)
    await fanout.notify_assignment(order)
    return ok(_order_out(order), "Order assigned successfully.")


@router.put("/{order_id}/status", response_model=ApiResponse[OrderResponse])
async def update_order_status(
    order_id: str,
    payload: StatusUpdateRequest,
    user: CurrentUser = Depends(
        require_roles(UserRole.RESTAURANT_ADMIN, UserRole.DELIVERY_PARTNER, UserRole.PLATFORM_ADMIN)
    ),
    db: AsyncSession = Depends(get_db),
    fanout: NotificationFanout = Depends(get_fanout),
):
    result = await state_machine.transition(db, order_id, payload.status, user, payload.notes)
    await fanout.notify_status_change(
        result.order, result.old_status, result.new_status, user.id, result.restaurant_owner_id
    )
    return ok(_order_out(result.order), "Order status updated successfully.")
