"""
OrderFlow — Health endpoint

Probes the two stores every order operation depends on (Redis and the order
database) and reports how many sockets this process is serving.
"""
import asyncio
import logging
from typing import Awaitable, Callable

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from orderflow.core.config import get_settings
from orderflow.core.redis_client import ping_redis
from orderflow.db.database import engine
from orderflow.realtime.registry import get_registry

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


async def _ping_database() -> None:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def _check_dependency(name: str, check: Callable[[], Awaitable[object]]) -> str:
    try:
        await asyncio.wait_for(check(), timeout=settings.HEALTH_CHECK_TIMEOUT)
    except Exception as exc:
        logger.warning("Health check %s failed: %s", name, exc)
        return f"error: {str(exc)[:100]}"
    return "ok"


@router.get("/health")
async def health_check():
    dependencies = {
        "redis": await _check_dependency("redis", ping_redis),
        "database": await _check_dependency("database", _ping_database),
    }
    healthy = all(state == "ok" for state in dependencies.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "success": healthy,
            "status": "healthy" if healthy else "degraded",
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "dependencies": dependencies,
            "live_connections": await get_registry().connection_count(),
        },
    )
