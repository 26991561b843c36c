"""Per-identity locks so two runs for the same subject never overlap.

LocalIdentityLocks serializes within one process. RedisIdentityLocks uses a
Redis lock so runs are serialized across workers too.

Usage:
    async with locks.hold(identity.lock_key):
        ...
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from typing import Protocol

from redis.exceptions import LockError

logger = logging.getLogger(__name__)


class IdentityLocks(Protocol):
    def hold(self, key: str) -> contextlib.AbstractAsyncContextManager[None]: ...


class LocalIdentityLocks:
    """asyncio.Lock per key, dropped once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class RedisIdentityLocks:
    """Redis-backed lock per key. `timeout` bounds how long a crashed holder blocks others."""

    def __init__(self, redis: object, timeout: float = 600.0, prefix: str = "deletion-lock") -> None:
        self._redis = redis
        self._timeout = timeout
        self._prefix = prefix

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        name = f"{self._prefix}:{key}"
        lock = self._redis.lock(name, timeout=self._timeout)  # type: ignore[attr-defined]
        await lock.acquire()
        logger.debug("Acquired %s", name)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Expired mid-run; the work under the lock has already finished.
                logger.warning("Lock %s expired after %ss before release", name, self._timeout)
