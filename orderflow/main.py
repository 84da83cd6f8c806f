"""
OrderFlow — FastAPI application entrypoint
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from orderflow.core.config import get_settings
from orderflow.core.errors import OrderFlowError
from orderflow.core.redis_client import close_redis
from orderflow.db.database import engine, Base
from orderflow.middleware.auth import JWTAuthMiddleware
from orderflow.middleware.idempotency import IdempotencyMiddleware
from orderflow.schemas.common import fail
from orderflow.api import health, notifications, orders, realtime
import orderflow.models  # noqa: F401  (register tables on Base.metadata)

settings = get_settings()
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create tables (Alembic handles migrations in production)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    # Shutdown
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="OrderFlow Order Service",
    description="Order lifecycle, delivery matching and real-time order notifications.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
)

# ── CORS ──────────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last added runs first: auth is checked before an idempotent replay is served
app.add_middleware(IdempotencyMiddleware)
app.add_middleware(JWTAuthMiddleware)

# ── Prometheus Metrics ────────────────────────────────────────────────────────
if settings.METRICS_ENABLED:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")


# ── Error envelope ────────────────────────────────────────────────────────────
@app.exception_handler(OrderFlowError)
async def orderflow_error_handler(request: Request, exc: OrderFlowError):
    return JSONResponse(status_code=exc.status_code, content=fail(exc.message))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=fail(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=fail("Invalid request.", jsonable_encoder(exc.errors())),
    )


# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(orders.router)
app.include_router(notifications.router)
app.include_router(realtime.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {"service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION}
