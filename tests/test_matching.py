"""
Delivery matching: the available pool, exclusive claiming and partner lists.
"""
import asyncio

import pytest

from helpers import (
    PARTNER_A,
    PARTNER_B,
    customer_headers,
    owner_headers,
    partner_headers,
    place_order,
    prepared_order,
    set_status,
)


@pytest.mark.asyncio
async def test_pool_lists_prepared_unclaimed_orders_oldest_first(client):
    first = await prepared_order(client)
    second = await prepared_order(client)
    await place_order(client)  # still pending, not in the pool

    r = await client.get("/orders/delivery/available", headers=partner_headers())
    assert r.status_code == 200
    assert [o["id"] for o in r.json()["data"]] == [first["id"], second["id"]]


@pytest.mark.asyncio
async def test_pool_is_for_delivery_partners_only(client):
    r = await client.get("/orders/delivery/available", headers=customer_headers())
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_claimed_order_leaves_the_pool(client):
    order = await prepared_order(client)
    r = await client.post(f"/orders/{order['id']}/assign", headers=partner_headers())
    assert r.status_code == 200
    assert r.json()["data"]["delivery_partner_id"] == PARTNER_A
    assert r.json()["data"]["status"] == "prepared"

    r = await client.get("/orders/delivery/available", headers=partner_headers(PARTNER_B))
    assert r.json()["data"] == []


@pytest.mark.asyncio
async def test_second_claim_conflicts_and_keeps_first_partner(client):
    order = await prepared_order(client)
    await client.post(f"/orders/{order['id']}/assign", headers=partner_headers(PARTNER_A))

    r = await client.post(f"/orders/{order['id']}/assign", headers=partner_headers(PARTNER_B))
    assert r.status_code == 409

    r = await client.get(f"/orders/{order['id']}", headers=customer_headers())
    assert r.json()["data"]["delivery_partner_id"] == PARTNER_A


@pytest.mark.asyncio
async def test_reclaiming_own_order_conflicts(client):
    order = await prepared_order(client)
    await client.post(f"/orders/{order['id']}/assign", headers=partner_headers())
    r = await client.post(f"/orders/{order['id']}/assign", headers=partner_headers())
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_concurrent_claims_have_exactly_one_winner(client):
    order = await prepared_order(client)

    responses = await asyncio.gather(
        client.post(f"/orders/{order['id']}/assign", headers=partner_headers(PARTNER_A)),
        client.post(f"/orders/{order['id']}/assign", headers=partner_headers(PARTNER_B)),
    )
    codes = sorted(r.status_code for r in responses)
    assert codes == [200, 409]

    winner = next(r for r in responses if r.status_code == 200).json()["data"]["delivery_partner_id"]
    r = await client.get(f"/orders/{order['id']}", headers=customer_headers())
    assert r.json()["data"]["delivery_partner_id"] == winner


@pytest.mark.asyncio
async def test_order_not_ready_cannot_be_claimed(client):
    order = await place_order(client)
    r = await client.post(f"/orders/{order['id']}/assign", headers=partner_headers())
    assert r.status_code == 409

    r = await client.get(f"/orders/{order['id']}", headers=customer_headers())
    assert r.json()["data"]["delivery_partner_id"] is None


@pytest.mark.asyncio
async def test_claiming_unknown_order_is_not_found(client):
    r = await client.post("/orders/missing/assign", headers=partner_headers())
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_cancelled_order_cannot_be_claimed(client):
    order = await prepared_order(client)
    await client.put(f"/orders/{order['id']}/cancel", headers=owner_headers())
    r = await client.post(f"/orders/{order['id']}/assign", headers=partner_headers())
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_assigned_and_history_lists(client):
    active = await prepared_order(client)
    done = await prepared_order(client)
    other = await prepared_order(client)

    for order in (active, done):
        await client.post(f"/orders/{order['id']}/assign", headers=partner_headers(PARTNER_A))
    await client.post(f"/orders/{other['id']}/assign", headers=partner_headers(PARTNER_B))

    await set_status(client, done["id"], "in_delivery", partner_headers())
    await set_status(client, done["id"], "delivered", partner_headers())
    await set_status(client, active["id"], "in_delivery", partner_headers())

    mine = await client.get("/orders/delivery/me", headers=partner_headers())
    assert [o["id"] for o in mine.json()["data"]] == [active["id"]]

    history = await client.get("/orders/delivery/history", headers=partner_headers())
    assert [o["id"] for o in history.json()["data"]] == [done["id"]]

    theirs = await client.get("/orders/delivery/me", headers=partner_headers(PARTNER_B))
    assert [o["id"] for o in theirs.json()["data"]] == [other["id"]]


@pytest.mark.asyncio
async def test_delivery_scenario_end_to_end(client):
    order = await place_order(client)
    assert order["total_price"] == 2000
    assert order["status"] == "pending"

    await set_status(client, order["id"], "confirmed", owner_headers())
    r = await set_status(client, order["id"], "prepared", owner_headers())
    assert r.json()["data"]["status"] == "prepared"

    responses = await asyncio.gather(
        client.post(f"/orders/{order['id']}/assign", headers=partner_headers(PARTNER_A)),
        client.post(f"/orders/{order['id']}/assign", headers=partner_headers(PARTNER_B)),
    )
    assert sorted(r.status_code for r in responses) == [200, 409]
    winner = next(r for r in responses if r.status_code == 200).json()["data"]["delivery_partner_id"]
    headers = partner_headers(winner)

    assert (await set_status(client, order["id"], "in_delivery", headers)).status_code == 200
    assert (await set_status(client, order["id"], "delivered", headers)).status_code == 200

    available = await client.get("/orders/delivery/available", headers=headers)
    assert available.json()["data"] == []
    active = await client.get("/orders/delivery/me", headers=headers)
    assert active.json()["data"] == []
    history = await client.get("/orders/delivery/history", headers=headers)
    assert [o["id"] for o in history.json()["data"]] == [order["id"]]
