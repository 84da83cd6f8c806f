"""
OrderFlow — Configuration
All settings are read from environment variables (or .env file).
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    SERVICE_NAME: str = "order-service"
    SERVICE_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str = "CHANGE_ME_IN_PRODUCTION"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # ── PostgreSQL (Order DB) ─────────────────────────────────
    POSTGRES_HOST: str = "order-db"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "order_db"
    POSTGRES_USER: str = "order_user"
    POSTGRES_PASSWORD: str = "order_pass"
    DATABASE_URL: str | None = None

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # ── Redis (pending notifications, pub/sub, idempotency) ───
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── Notifications ─────────────────────────────────────────
    PENDING_NOTIFICATIONS_MAX: int = 50
    PENDING_NOTIFICATIONS_TTL_SECONDS: int = 7 * 24 * 60 * 60
    SSE_KEEPALIVE_INTERVAL_SECONDS: int = 15
    SSE_RETRY_MILLISECONDS: int = 3000
    WS_AUTH_TIMEOUT_SECONDS: float = 10.0

    # ── Orders ────────────────────────────────────────────────
    ESTIMATED_DELIVERY_MINUTES: int = 30
    DEFAULT_PAGE_SIZE: int = 10
    MAX_PAGE_SIZE: int = 50

    # ── Optimistic locking (conditional status writes) ───────
    OPT_LOCK_MAX_RETRIES: int = 3
    OPT_LOCK_BASE_DELAY_MS: int = 10
    OPT_LOCK_MAX_DELAY_MS: int = 200
    OPT_LOCK_JITTER_MS: int = 10

    # ── Idempotency ───────────────────────────────────────────
    IDEMPOTENCY_KEY_TTL_SECONDS: int = 86400

    # ── Observability ─────────────────────────────────────────
    METRICS_ENABLED: bool = True
    HEALTH_CHECK_TIMEOUT: float = 5.0


@lru_cache()
def get_settings() -> Settings:
    return Settings()
