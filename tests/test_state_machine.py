"""
Transition table tests — pure, no database.
"""
import itertools

import pytest

from orderflow.core.errors import ForbiddenError, InvalidTransitionError
from orderflow.models.order import OrderStatus
from orderflow.services.order_store import Relationship
from orderflow.services.state_machine import TRANSITIONS, allowed_targets, check_transition

EVERYONE = set(Relationship)

LEGAL = {
    (OrderStatus.PENDING, OrderStatus.CONFIRMED),
    (OrderStatus.PENDING, OrderStatus.CANCELLED),
    (OrderStatus.CONFIRMED, OrderStatus.PREPARED),
    (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
    (OrderStatus.PREPARED, OrderStatus.IN_DELIVERY),
    (OrderStatus.PREPARED, OrderStatus.CANCELLED),
    (OrderStatus.IN_DELIVERY, OrderStatus.DELIVERED),
}


def test_table_matches_lifecycle():
    assert set(TRANSITIONS) == LEGAL


@pytest.mark.parametrize(
    "current,target",
    [pair for pair in itertools.product(OrderStatus, OrderStatus) if pair not in LEGAL],
)
def test_pairs_outside_table_are_invalid_for_everyone(current, target):
    with pytest.raises(InvalidTransitionError):
        check_transition(current, target, EVERYONE)


@pytest.mark.parametrize("terminal", [OrderStatus.DELIVERED, OrderStatus.CANCELLED])
def test_terminal_states_have_no_exit(terminal):
    assert allowed_targets(terminal) == []


def test_in_delivery_cannot_be_cancelled():
    assert OrderStatus.CANCELLED not in allowed_targets(OrderStatus.IN_DELIVERY)
    with pytest.raises(InvalidTransitionError):
        check_transition(OrderStatus.IN_DELIVERY, OrderStatus.CANCELLED, EVERYONE)


def test_prepared_cannot_skip_to_delivered():
    with pytest.raises(InvalidTransitionError):
        check_transition(OrderStatus.PREPARED, OrderStatus.DELIVERED, {Relationship.ASSIGNED_PARTNER})


@pytest.mark.parametrize("target", [OrderStatus.IN_DELIVERY])
@pytest.mark.parametrize(
    "rels",
    [
        {Relationship.CUSTOMER},
        {Relationship.RESTAURANT_OWNER},
        {Relationship.PLATFORM_ADMIN},
        set(),
    ],
)
def test_only_assigned_partner_moves_to_in_delivery(target, rels):
    with pytest.raises(ForbiddenError):
        check_transition(OrderStatus.PREPARED, target, rels)
    check_transition(OrderStatus.PREPARED, target, {Relationship.ASSIGNED_PARTNER})


def test_only_assigned_partner_delivers():
    with pytest.raises(ForbiddenError):
        check_transition(OrderStatus.IN_DELIVERY, OrderStatus.DELIVERED, {Relationship.PLATFORM_ADMIN})
    check_transition(OrderStatus.IN_DELIVERY, OrderStatus.DELIVERED, {Relationship.ASSIGNED_PARTNER})


def test_customer_cannot_confirm_but_can_cancel():
    with pytest.raises(ForbiddenError):
        check_transition(OrderStatus.PENDING, OrderStatus.CONFIRMED, {Relationship.CUSTOMER})
    check_transition(OrderStatus.PENDING, OrderStatus.CANCELLED, {Relationship.CUSTOMER})


def test_partner_cannot_cancel():
    with pytest.raises(ForbiddenError):
        check_transition(OrderStatus.PREPARED, OrderStatus.CANCELLED, {Relationship.ASSIGNED_PARTNER})


def test_restaurant_side_drives_kitchen_states():
    for current, target in [
        (OrderStatus.PENDING, OrderStatus.CONFIRMED),
        (OrderStatus.CONFIRMED, OrderStatus.PREPARED),
    ]:
        check_transition(current, target, {Relationship.RESTAURANT_OWNER})
        check_transition(current, target, {Relationship.PLATFORM_ADMIN})
