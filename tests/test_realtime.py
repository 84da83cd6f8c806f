"""
Connection registry and the /ws authenticate handshake.
"""
import asyncio

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from orderflow.api import realtime as realtime_api
from orderflow.core.security import create_access_token
from orderflow.main import app
from orderflow.realtime.registry import Connection, ConnectionRegistry

from helpers import CUSTOMER, OWNER


class FakeSocket:
    def __init__(self):
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)


def _token(user_id: str = CUSTOMER) -> str:
    return create_access_token({"sub": user_id, "role": "client"})


# ── Registry ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_unauthenticated_connection_receives_nothing():
    registry = ConnectionRegistry()
    connection = Connection(FakeSocket())

    assert connection.authenticated is False
    assert await registry.send_to_user(CUSTOMER, "status_updated", {}) == 0
    assert connection.socket.sent == []


@pytest.mark.asyncio
async def test_user_with_several_connections():
    registry = ConnectionRegistry()
    phone, laptop = Connection(FakeSocket()), Connection(FakeSocket())
    await registry.bind(phone, CUSTOMER)
    await registry.bind(laptop, CUSTOMER)

    assert await registry.connection_count(CUSTOMER) == 2
    assert await registry.send_to_user(CUSTOMER, "pong", {}) == 2

    await registry.unbind(phone)
    assert await registry.connection_count(CUSTOMER) == 1
    assert await registry.is_online(CUSTOMER) is True

    await registry.unbind(laptop)
    await registry.unbind(laptop)
    assert await registry.is_online(CUSTOMER) is False
    assert await registry.connection_count() == 0


@pytest.mark.asyncio
async def test_rebinding_moves_connection_to_new_user():
    registry = ConnectionRegistry()
    connection = Connection(FakeSocket())
    await registry.bind(connection, CUSTOMER)
    await registry.bind(connection, OWNER)

    assert await registry.is_online(CUSTOMER) is False
    assert await registry.connections_for(OWNER) == [connection]


@pytest.mark.asyncio
async def test_concurrent_bind_and_unbind():
    registry = ConnectionRegistry()
    connections = [Connection(FakeSocket()) for _ in range(50)]
    await asyncio.gather(*(registry.bind(c, CUSTOMER) for c in connections))
    assert await registry.connection_count(CUSTOMER) == 50

    await asyncio.gather(*(registry.unbind(c) for c in connections[:25]))
    assert await registry.connection_count(CUSTOMER) == 25


# ── /ws ───────────────────────────────────────────────────────────────────────

def test_authenticate_then_ping(registry):
    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "authenticate", "data": {"user_id": CUSTOMER, "token": _token()}})
        assert ws.receive_json() == {"event": "authenticated", "data": {"success": True, "user_id": CUSTOMER}}

        ws.send_json({"event": "ping", "data": {}})
        assert ws.receive_json()["event"] == "pong"

        ws.send_json({"event": "join_room", "data": {}})
        assert ws.receive_json()["event"] == "error"


def test_camel_case_user_id_is_accepted(registry):
    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "authenticate", "data": {"userId": CUSTOMER, "token": _token()}})
        assert ws.receive_json()["event"] == "authenticated"


def test_token_for_another_user_is_rejected(registry):
    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "authenticate", "data": {"user_id": OWNER, "token": _token(CUSTOMER)}})
        reply = ws.receive_json()
        assert reply["event"] == "authentication_error"
        assert reply["data"]["message"] == "Invalid token for this user."

        # The socket stays open and may retry
        ws.send_json({"event": "authenticate", "data": {"user_id": CUSTOMER, "token": _token(CUSTOMER)}})
        assert ws.receive_json()["event"] == "authenticated"


def test_garbage_token_is_rejected(registry):
    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "authenticate", "data": {"user_id": CUSTOMER, "token": "not-a-jwt"}})
        assert ws.receive_json()["event"] == "authentication_error"


def test_missing_credentials(registry):
    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "authenticate", "data": {"user_id": CUSTOMER}})
        reply = ws.receive_json()
        assert reply["data"]["message"] == "Missing authentication data."


def test_events_before_authentication_are_refused(registry):
    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "ping", "data": {}})
        reply = ws.receive_json()
        assert reply == {"event": "authentication_error", "data": {"message": "Authenticate first."}}

        ws.send_text("not json")
        assert ws.receive_json()["event"] == "authentication_error"


def test_silent_socket_is_closed_after_timeout(registry, monkeypatch):
    monkeypatch.setattr(realtime_api.settings, "WS_AUTH_TIMEOUT_SECONDS", 0.1)
    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_json()
    assert exc_info.value.code == 1008


def test_binary_frames_are_answered_not_fatal(registry):
    client = TestClient(app)
    with client.websocket_connect("/ws") as ws:
        ws.send_bytes(b"\x00\x01")
        reply = ws.receive_json()
        assert reply == {"event": "authentication_error", "data": {"message": "Authenticate first."}}

        ws.send_json({"event": "authenticate", "data": {"user_id": CUSTOMER, "token": _token()}})
        assert ws.receive_json()["event"] == "authenticated"

        ws.send_bytes(b'{"event": "ping"}')
        assert ws.receive_json() == {"event": "error", "data": {"message": "Unknown event ''."}}

        ws.send_json({"event": "ping", "data": {}})
        assert ws.receive_json()["event"] == "pong"
