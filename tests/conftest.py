"""
Shared fixtures.

The app runs in-process through httpx's ASGI transport against SQLite
(aiosqlite) and fakeredis, so no Postgres or Redis container is needed.
Environment must be set before anything under orderflow is imported.
"""
import os
import tempfile
import uuid

_DB_PATH = os.path.join(tempfile.gettempdir(), f"orderflow-test-{uuid.uuid4().hex[:8]}.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["METRICS_ENABLED"] = "false"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["OPT_LOCK_BASE_DELAY_MS"] = "1"
os.environ["OPT_LOCK_JITTER_MS"] = "1"

import fakeredis  # noqa: E402
import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from orderflow.core import redis_client as redis_module  # noqa: E402
from orderflow.db.database import AsyncSessionLocal, Base, engine  # noqa: E402
from orderflow.main import app  # noqa: E402
from orderflow.models.restaurant import MenuItem, Restaurant  # noqa: E402
from orderflow.realtime import registry as registry_module  # noqa: E402

from helpers import OTHER_OWNER, OWNER  # noqa: E402


@pytest_asyncio.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    redis_module._redis_client = client
    yield client
    await client.flushall()
    await client.aclose()
    redis_module._redis_client = None


@pytest.fixture
def registry():
    fresh = registry_module.ConnectionRegistry()
    registry_module._registry = fresh
    yield fresh
    registry_module._registry = None


@pytest_asyncio.fixture
async def database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest_asyncio.fixture
async def db(database):
    async with AsyncSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def menu(database):
    """'r1' (burger 500, pizza 1000, soup unavailable), 'r2' (sushi 800), 'r-closed' (inactive)."""
    async with AsyncSessionLocal() as session:
        session.add_all([
            Restaurant(id="r1", name="Chez Foufou", owner_id=OWNER),
            Restaurant(id="r2", name="Sushi Bar", owner_id=OTHER_OWNER),
            Restaurant(id="r-closed", name="Closed", owner_id=OWNER, is_active=False),
        ])
        await session.flush()
        session.add_all([
            MenuItem(id="burger", restaurant_id="r1", name="Burger", price=500),
            MenuItem(id="pizza", restaurant_id="r1", name="Pizza", price=1000),
            MenuItem(id="soup", restaurant_id="r1", name="Soup", price=300, is_available=False),
            MenuItem(id="sushi", restaurant_id="r2", name="Sushi", price=800),
        ])
        await session.commit()
    return {"restaurant_id": "r1"}


@pytest_asyncio.fixture
async def client(menu, redis, registry):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
