"""
OrderFlow — Real-time connection registry

In-memory user_id → connections map, one per process, never persisted.
Every read and write of the map happens under an asyncio.Lock; sends happen
outside the lock on a snapshot so a slow socket never blocks connect/disconnect.
"""
import asyncio
import logging
import uuid
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class JSONSocket(Protocol):
    async def send_json(self, data: Any) -> None: ...


class Connection:
    """One socket. ``user_id`` is None until the authenticate handshake succeeds."""

    def __init__(self, socket: JSONSocket):
        self.id = uuid.uuid4().hex
        self.socket = socket
        self.user_id: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    async def send(self, event: str, data: dict[str, Any]) -> None:
        await self.socket.send_json({"event": event, "data": data})

    def __repr__(self) -> str:
        return f"<Connection id={self.id} user={self.user_id}>"


class ConnectionRegistry:
    def __init__(self):
        self._lock = asyncio.Lock()
        self._by_user: dict[str, dict[str, Connection]] = {}

    async def bind(self, connection: Connection, user_id: str) -> None:
        async with self._lock:
            if connection.user_id and connection.user_id != user_id:
                self._discard(connection)
            connection.user_id = user_id
            self._by_user.setdefault(user_id, {})[connection.id] = connection
        logger.info("Connection %s bound to user %s", connection.id, user_id)

    async def unbind(self, connection: Connection) -> None:
        async with self._lock:
            self._discard(connection)

    def _discard(self, connection: Connection) -> None:
        if connection.user_id is None:
            return
        bucket = self._by_user.get(connection.user_id)
        if bucket is not None:
            bucket.pop(connection.id, None)
            if not bucket:
                del self._by_user[connection.user_id]

    async def connections_for(self, user_id: str) -> list[Connection]:
        async with self._lock:
            return list(self._by_user.get(user_id, {}).values())

    async def is_online(self, user_id: str) -> bool:
        async with self._lock:
            return user_id in self._by_user

    async def connection_count(self, user_id: str | None = None) -> int:
        async with self._lock:
            if user_id is not None:
                return len(self._by_user.get(user_id, {}))
            return sum(len(bucket) for bucket in self._by_user.values())

    async def send_to_user(self, user_id: str, event: str, data: dict[str, Any]) -> int:
        """
        Best-effort push to every authenticated connection of ``user_id``.
        Returns how many sends succeeded; dead connections are unbound.
        """
        delivered = 0
        for connection in await self.connections_for(user_id):
            try:
                await connection.send(event, data)
                delivered += 1
            except Exception as exc:
                logger.info("Live push to %r failed (%s); unbinding", connection, exc)
                await self.unbind(connection)
        return delivered


_registry: ConnectionRegistry | None = None


def get_registry() -> ConnectionRegistry:
    global _registry
    if _registry is None:
        _registry = ConnectionRegistry()
    return _registry
