"""Tests for the per-case lock registry."""

from __future__ import annotations

import asyncio
import uuid

import pytest

from visa_escrow.domain.exceptions import ConcurrentModificationError
from visa_escrow.services.locks import CaseLockRegistry


class TestCaseLockRegistry:
    @pytest.mark.asyncio
    async def test_same_case_is_serialized(self) -> None:
        locks = CaseLockRegistry(timeout_seconds=1.0)
        case_id = uuid.uuid4()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold(case_id):
                order.append(f"{name}:in")
                await asyncio.sleep(0.01)
                order.append(f"{name}:out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order == ["a:in", "a:out", "b:in", "b:out"]

    @pytest.mark.asyncio
    async def test_different_cases_do_not_block(self) -> None:
        locks = CaseLockRegistry(timeout_seconds=0.05)
        async with locks.hold(uuid.uuid4()):
            async with locks.hold(uuid.uuid4()):
                pass

    @pytest.mark.asyncio
    async def test_timeout_raises_retriable_conflict(self) -> None:
        locks = CaseLockRegistry(timeout_seconds=0.05)
        case_id = uuid.uuid4()
        async with locks.hold(case_id):
            with pytest.raises(ConcurrentModificationError) as exc_info:
                async with locks.hold(case_id):
                    pass
        assert exc_info.value.retriable is True

    @pytest.mark.asyncio
    async def test_lock_released_after_error(self) -> None:
        locks = CaseLockRegistry(timeout_seconds=0.05)
        case_id = uuid.uuid4()
        with pytest.raises(RuntimeError):
            async with locks.hold(case_id):
                raise RuntimeError("boom")
        async with locks.hold(case_id):
            pass
