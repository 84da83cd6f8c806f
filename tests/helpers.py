"""
Test helpers: user ids, JWT headers and order walkers shared by the test modules.
"""
import httpx

from orderflow.core.security import create_access_token

CUSTOMER = "customer-1"
OTHER_CUSTOMER = "customer-2"
OWNER = "owner-1"
OTHER_OWNER = "owner-2"
PARTNER_A = "partner-a"
PARTNER_B = "partner-b"
ADMIN = "admin-1"

ADDRESS = {
    "line1": "1200 Rue Sainte-Catherine",
    "city": "Montreal",
    "region": "QC",
    "postal_code": "H3B 1K1",
    "country": "Canada",
}


def headers_for(user_id: str, role: str) -> dict[str, str]:
    token = create_access_token({"sub": user_id, "role": role})
    return {"Authorization": f"Bearer {token}"}


def customer_headers(user_id: str = CUSTOMER) -> dict[str, str]:
    return headers_for(user_id, "client")


def owner_headers(user_id: str = OWNER) -> dict[str, str]:
    return headers_for(user_id, "restaurant_admin")


def partner_headers(user_id: str = PARTNER_A) -> dict[str, str]:
    return headers_for(user_id, "delivery_partner")


def admin_headers() -> dict[str, str]:
    return headers_for(ADMIN, "platform_admin")


async def place_order(client: httpx.AsyncClient, items=None, headers=None, restaurant_id="r1") -> dict:
    r = await client.post(
        "/orders",
        json={
            "restaurant_id": restaurant_id,
            "items": items or [
                {"menu_item_id": "burger", "quantity": 2},
                {"menu_item_id": "pizza", "quantity": 1},
            ],
            "delivery_address": ADDRESS,
        },
        headers=headers or customer_headers(),
    )
    assert r.status_code == 201, r.text
    return r.json()["data"]


async def set_status(client: httpx.AsyncClient, order_id: str, status: str, headers) -> httpx.Response:
    return await client.put(f"/orders/{order_id}/status", json={"status": status}, headers=headers)


async def prepared_order(client: httpx.AsyncClient) -> dict:
    """Place an order and walk it to 'prepared' as the restaurant owner."""
    order = await place_order(client)
    for status in ("confirmed", "prepared"):
        r = await set_status(client, order["id"], status, owner_headers())
        assert r.status_code == 200, r.text
    return r.json()["data"]
