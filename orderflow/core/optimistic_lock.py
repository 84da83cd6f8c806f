"""
OrderFlow — Retry wrapper for conditional order writes

Status changes are written as UPDATE orders ... WHERE status = <status we read>.
If another request moved the order in between, the update matches no row and
the writer raises StaleDataError. Re-running the whole read-check-write then
evaluates the transition table against the order's new status, so the caller
ends up with the error that fits the current state (or succeeds).
"""
import asyncio
import functools
import logging
import random

from orderflow.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class StaleDataError(Exception):
    """The order row changed between our read and our conditional update."""


def backoff_delay(attempt: int) -> float:
    """Seconds to wait before retry number ``attempt`` (1-based)."""
    exp_ms = min(settings.OPT_LOCK_BASE_DELAY_MS * 2 ** attempt, settings.OPT_LOCK_MAX_DELAY_MS)
    return (exp_ms + random.uniform(0, settings.OPT_LOCK_JITTER_MS)) / 1000.0


def with_optimistic_retry(max_attempts: int | None = None):
    """
    Re-run an async read-check-write on StaleDataError, at most
    ``max_attempts`` times (OPT_LOCK_MAX_RETRIES by default). The last
    StaleDataError is re-raised for the caller to turn into a 409.
    """
    attempts = max_attempts or settings.OPT_LOCK_MAX_RETRIES

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except StaleDataError as exc:
                    if attempt >= attempts:
                        logger.error("%s still stale after %d attempts: %s", func.__name__, attempts, exc)
                        raise
                    delay = backoff_delay(attempt)
                    logger.warning("%s lost a write race (attempt %d/%d), retrying in %.3fs",
                                   func.__name__, attempt, attempts, delay)
                    await asyncio.sleep(delay)
                    attempt += 1
        return wrapper
    return decorator
