"""Tests for the Redis payment deduplicator."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from visa_escrow.infrastructure.redis_client import RedisPaymentDeduplicator


class TestRedisPaymentDeduplicator:
    @pytest.mark.asyncio
    async def test_claim_uses_set_nx_with_ttl(self) -> None:
        redis = AsyncMock()
        redis.set.return_value = True
        dedup = RedisPaymentDeduplicator(redis, ttl_seconds=600)

        assert await dedup.claim("pi_abc") is True
        redis.set.assert_awaited_once_with("payment_ref:pi_abc", "1", nx=True, ex=600)

    @pytest.mark.asyncio
    async def test_taken_reference(self) -> None:
        redis = AsyncMock()
        redis.set.return_value = None
        assert await RedisPaymentDeduplicator(redis, ttl_seconds=600).claim("pi_abc") is False

    @pytest.mark.asyncio
    async def test_release_deletes_key(self) -> None:
        redis = AsyncMock()
        await RedisPaymentDeduplicator(redis, ttl_seconds=600).release("pi_abc")
        redis.delete.assert_awaited_once_with("payment_ref:pi_abc")
