"""Redis client for payment deduplication and notification publishing.

Usage:
    from visa_escrow.infrastructure.redis_client import init_redis, close_redis

    redis = await init_redis()
    dedup = RedisPaymentDeduplicator(redis, ttl_seconds=86400)
    if not await dedup.claim("pay_123"):
        ...  # already processed
"""

from __future__ import annotations

import redis.asyncio as aioredis

from visa_escrow.config import get_settings
from visa_escrow.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None

PAYMENT_KEY_PREFIX = "payment_ref:"


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


class RedisPaymentDeduplicator:
    """Claims payment references with ``SET NX EX`` so each is processed once.

    This is the fast path only. The unique constraint on
    escrow_accounts.payment_reference remains the authoritative guard.
    """

    def __init__(self, redis: aioredis.Redis, ttl_seconds: int) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    async def claim(self, reference: str) -> bool:
        """Return True if this call claimed ``reference``, False if it was taken."""
        claimed = await self._redis.set(f"{PAYMENT_KEY_PREFIX}{reference}", "1", nx=True, ex=self._ttl)
        return bool(claimed)

    async def release(self, reference: str) -> None:
        """Drop a claim whose funding attempt failed, so a retry can proceed."""
        await self._redis.delete(f"{PAYMENT_KEY_PREFIX}{reference}")
