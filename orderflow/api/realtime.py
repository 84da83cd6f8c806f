"""
OrderFlow — Real-time gateway (WebSocket)

Frames are JSON text: {"event": "<name>", "data": {...}}.
Per connection: Connected (unauthenticated) → Authenticated(user_id) → Disconnected.
Until an `authenticate` event carrying {user_id, token} succeeds, the socket
is not in the registry and no order event can reach it.
"""
import asyncio
import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from orderflow.core.config import get_settings
from orderflow.core.security import token_belongs_to
from orderflow.realtime.registry import Connection, ConnectionRegistry, get_registry

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(tags=["realtime"])


async def _receive(websocket: WebSocket) -> tuple[str, dict[str, Any]]:
    frame = await websocket.receive()
    if frame["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(frame.get("code", status.WS_1000_NORMAL_CLOSURE), frame.get("reason"))
    raw = frame.get("text")
    if raw is None:
        # Binary frames carry no event
        return "", {}
    try:
        message = json.loads(raw)
    except ValueError:
        return "", {}
    if not isinstance(message, dict):
        return "", {}
    data = message.get("data")
    return str(message.get("event", "")), data if isinstance(data, dict) else {}


async def _authenticate(connection: Connection, registry: ConnectionRegistry, data: dict[str, Any]) -> bool:
    user_id = data.get("user_id") or data.get("userId")
    token = data.get("token")
    if not user_id or not token:
        await connection.send("authentication_error", {"message": "Missing authentication data."})
        return False
    if not token_belongs_to(token, str(user_id)):
        logger.info("Socket authentication rejected for user %s", user_id)
        await connection.send("authentication_error", {"message": "Invalid token for this user."})
        return False
    await registry.bind(connection, str(user_id))
    await connection.send("authenticated", {"success": True, "user_id": str(user_id)})
    return True


async def _handshake(websocket: WebSocket, connection: Connection, registry: ConnectionRegistry) -> None:
    while not connection.authenticated:
        event, data = await _receive(websocket)
        if event != "authenticate":
            await connection.send("authentication_error", {"message": "Authenticate first."})
            continue
        await _authenticate(connection, registry, data)


@router.websocket("/ws")
async def realtime_gateway(websocket: WebSocket):
    await websocket.accept()
    registry = get_registry()
    connection = Connection(websocket)
    try:
        try:
            await asyncio.wait_for(
                _handshake(websocket, connection, registry),
                timeout=settings.WS_AUTH_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.info("Socket %s did not authenticate in time", connection.id)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        while True:
            event, data = await _receive(websocket)
            if event == "ping":
                await connection.send("pong", {})
            elif event == "authenticate":
                await _authenticate(connection, registry, data)
            else:
                await connection.send("error", {"message": f"Unknown event '{event}'."})
    except WebSocketDisconnect:
        pass
    finally:
        await registry.unbind(connection)
        logger.info("Socket %s disconnected (user %s)", connection.id, connection.user_id)
