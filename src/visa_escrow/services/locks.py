"""Per-case serialization of workflow operations.

Every composite operation on a case runs while holding that case's lock,
so two requests against the same case never interleave inside one
process. Requests against different cases share nothing and run in
parallel. Cross-process safety comes from SELECT ... FOR UPDATE and the
cases.version column.
"""

from __future__ import annotations

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from visa_escrow.domain.exceptions import ConcurrentModificationError
from visa_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from collections.abc import AsyncIterator

logger = get_logger(__name__)


class CaseLockRegistry:
    """Hands out one asyncio.Lock per case identifier.

    Locks live only while someone holds or waits on them.
    """

    def __init__(self, timeout_seconds: float = 5.0) -> None:
        self._timeout = timeout_seconds
        self._locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, key: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: uuid.UUID) -> AsyncIterator[None]:
        """Serialize on ``key``.

        Raises ConcurrentModificationError if the lock is not acquired
        within the configured timeout.
        """
        lock = self._lock_for(key)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._timeout)
        except TimeoutError as err:
            logger.warning("case_lock.timeout", key=str(key), timeout=self._timeout)
            raise ConcurrentModificationError(str(key)) from err
        try:
            yield
        finally:
            lock.release()
