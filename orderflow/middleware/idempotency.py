"""
OrderFlow — Idempotency-Key handling for order placement

A checkout retried with the same Idempotency-Key must not place a second order.
The first 2xx response to POST /orders is stored in Redis under the caller's
identity and key, together with a fingerprint of the request body:

  - same key, same body  → stored response replayed (X-Idempotency-Replay: true)
  - same key, other body → 409, nothing is executed
  - no key               → request passes through untouched
"""
import hashlib
import json
import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from orderflow.core.config import get_settings
from orderflow.core.redis_client import get_redis
from orderflow.schemas.common import fail

settings = get_settings()
logger = logging.getLogger(__name__)

ORDER_PLACEMENT_PATHS = {"/orders", "/orders/"}
REPLAY_HEADER = "X-Idempotency-Replay"


def _is_order_placement(request: Request) -> bool:
    return request.method == "POST" and request.url.path in ORDER_PLACEMENT_PATHS


def _caller(request: Request) -> str:
    claims = getattr(request.state, "user", None) or {}
    return str(claims.get("sub", "anonymous"))


def _fingerprint(body: bytes) -> str:
    return hashlib.sha256(body).hexdigest()


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """Runs after JWTAuthMiddleware, so request.state.user is already set."""

    async def dispatch(self, request: Request, call_next) -> Response:
        idem_key = request.headers.get("Idempotency-Key")
        if not idem_key or not _is_order_placement(request):
            return await call_next(request)

        redis = get_redis()
        cache_key = f"idempotent:order:{_caller(request)}:{idem_key}"
        fingerprint = _fingerprint(await request.body())

        stored = await redis.get(cache_key)
        if stored:
            entry = json.loads(stored)
            if entry["fingerprint"] != fingerprint:
                logger.info("Idempotency-Key %s reused with a different order by %s", idem_key, _caller(request))
                return JSONResponse(
                    status_code=409,
                    content=fail("Idempotency-Key was already used for a different order."),
                )
            return JSONResponse(
                content=entry["body"],
                status_code=entry["status_code"],
                headers={REPLAY_HEADER: "true"},
            )

        response = await call_next(request)
        raw = b"".join([chunk async for chunk in response.body_iterator])

        if 200 <= response.status_code < 300:
            await redis.setex(
                cache_key,
                settings.IDEMPOTENCY_KEY_TTL_SECONDS,
                json.dumps({
                    "fingerprint": fingerprint,
                    "status_code": response.status_code,
                    "body": json.loads(raw),
                }),
            )

        return Response(
            content=raw,
            status_code=response.status_code,
            media_type=response.media_type,
            headers=dict(response.headers),
        )
