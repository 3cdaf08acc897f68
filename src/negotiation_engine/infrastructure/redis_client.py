"""Redis client for webhook idempotency keys and health checks.

Usage:
    from negotiation_engine.infrastructure.redis_client import init_redis, close_redis

    redis = await init_redis()
    await redis.set("key", "value", ex=3600)
"""

from __future__ import annotations

import redis.asyncio as aioredis

from negotiation_engine.config import get_settings
from negotiation_engine.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_optional_redis() -> aioredis.Redis | None:
    """Return the Redis client, or None when Redis was unavailable at startup."""
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


async def check_idempotency(redis: aioredis.Redis, key: str) -> bool:
    """Return True if ``key`` was already marked as processed."""
    return bool(await redis.exists(f"idempotency:{key}"))


async def set_idempotency(redis: aioredis.Redis, key: str, value: str = "1") -> None:
    """Mark an idempotency key as processed with a TTL."""
    settings = get_settings()
    await redis.set(
        f"idempotency:{key}",
        value,
        ex=settings.redis_idempotency_ttl_seconds,
    )
