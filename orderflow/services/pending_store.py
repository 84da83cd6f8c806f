"""
OrderFlow — Pending-notification store (Redis)

One capped list per user at notifications:{user_id}, newest first.
LPUSH + LTRIM + EXPIRE run in a single MULTI/EXEC so concurrent appends for
the same user never drop each other's entries.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from orderflow.core.config import get_settings
from orderflow.core.errors import ConflictError

settings = get_settings()
logger = logging.getLogger(__name__)

PENDING_KEY = "notifications:{user_id}"
MARK_READ_ATTEMPTS = 5


def _key(user_id: str) -> str:
    return PENDING_KEY.format(user_id=user_id)


class PendingNotificationStore:
    def __init__(
        self,
        redis: aioredis.Redis,
        max_entries: int | None = None,
        ttl_seconds: int | None = None,
    ):
        self.redis = redis
        self.max_entries = max_entries or settings.PENDING_NOTIFICATIONS_MAX
        self.ttl_seconds = ttl_seconds or settings.PENDING_NOTIFICATIONS_TTL_SECONDS

    async def append(self, user_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Record an unseen event for ``user_id``. Raises on Redis failure."""
        record = dict(payload)
        record.setdefault("id", f"notif_{uuid.uuid4().hex[:12]}")
        record.setdefault("timestamp", datetime.now(tz=timezone.utc).isoformat())
        record.setdefault("read", False)

        key = _key(user_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lpush(key, json.dumps(record))
            pipe.ltrim(key, 0, self.max_entries - 1)
            pipe.expire(key, self.ttl_seconds)
            await pipe.execute()
        return record

    async def count(self, user_id: str) -> int:
        return int(await self.redis.llen(_key(user_id)))

    async def has_pending(self, user_id: str) -> bool:
        return await self.count(user_id) > 0

    async def list(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        raw = await self.redis.lrange(_key(user_id), 0, max(limit, 1) - 1)
        out = []
        for entry in raw:
            try:
                out.append(json.loads(entry))
            except ValueError:
                logger.warning("Dropping unparseable pending notification for %s", user_id)
        return out

    async def clear(self, user_id: str) -> None:
        await self.redis.delete(_key(user_id))

    async def mark_read(self, user_id: str, notification_id: str) -> dict[str, Any] | None:
        """
        Set ``read`` on one stored payload. Returns the updated payload, or
        None when the id is not (or no longer) in the user's list. The list is
        WATCHed so an append that shifts the entries forces a re-scan.
        """
        key = _key(user_id)
        for _ in range(MARK_READ_ATTEMPTS):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    entries = await pipe.lrange(key, 0, -1)
                    for index, entry in enumerate(entries):
                        try:
                            record = json.loads(entry)
                        except ValueError:
                            continue
                        if record.get("id") == notification_id:
                            break
                    else:
                        return None
                    record["read"] = True
                    pipe.multi()
                    pipe.lset(key, index, json.dumps(record))
                    await pipe.execute()
                    return record
                except WatchError:
                    logger.info("Pending list of %s changed during mark_read, retrying", user_id)
        raise ConflictError("Notifications changed concurrently. Please retry.")
