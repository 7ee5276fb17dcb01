"""Distributed lock providers.

Locks are only used as de-duplication guards: acquisition never blocks, and a
lease (TTL in seconds) bounds how long a crashed holder can keep the lock.
"""

from __future__ import annotations

import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import LockError

from repository_service.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class LockHandle:
    name: str
    token: str
    lock: Any = None


class LockProvider(ABC):
    """Non-blocking, lease-based lock provider."""

    @abstractmethod
    async def acquire(self, name: str, ttl: float) -> Optional[LockHandle]:
        """Try to take ``name`` for ``ttl`` seconds; ``None`` if already held."""

    @abstractmethod
    async def release(self, handle: LockHandle) -> None:
        """Release a lock previously returned by ``acquire``."""

    @abstractmethod
    async def is_locked(self, name: str) -> bool:
        """Whether someone currently holds ``name``."""

    async def try_using(self, name: str, work: Callable[[], Awaitable[Any]], ttl: float) -> bool:
        """Run ``work`` while holding ``name``; return ``False`` without running it if held."""
        handle = await self.acquire(name, ttl)
        if handle is None:
            return False
        try:
            await work()
        finally:
            await self.release(handle)
        return True


class RedisLockProvider(LockProvider):
    """Lock provider backed by redis-py's ``Lock`` (SET NX PX + token check)."""

    def __init__(self, url: str, *, prefix: str = "lock:", client: Optional[redis.Redis] = None) -> None:
        self._prefix = prefix
        self._client = client or redis.from_url(url, decode_responses=True)

    def _format_key(self, name: str) -> str:
        return f"{self._prefix}{name}"

    async def acquire(self, name: str, ttl: float) -> Optional[LockHandle]:
        lock = self._client.lock(self._format_key(name), timeout=ttl, blocking=False)
        if not await lock.acquire():
            return None
        token = lock.local.token
        if isinstance(token, bytes):
            token = token.decode()
        return LockHandle(name=name, token=token, lock=lock)

    async def release(self, handle: LockHandle) -> None:
        try:
            await handle.lock.release()
        except LockError as e:
            # Bail expiré ou verrou repris par un autre détenteur
            logger.warning(f"Lock {handle.name} could not be released: {e}")

    async def is_locked(self, name: str) -> bool:
        return bool(await self._client.exists(self._format_key(name)))

    async def close(self) -> None:
        await self._client.close()


class InMemoryLockProvider(LockProvider):
    """Process-local lock provider with the same lease semantics."""

    def __init__(self) -> None:
        self._locks: Dict[str, Tuple[str, float]] = {}

    def _purge(self, name: str) -> None:
        held = self._locks.get(name)
        if held is not None and held[1] <= time.monotonic():
            self._locks.pop(name, None)

    async def acquire(self, name: str, ttl: float) -> Optional[LockHandle]:
        self._purge(name)
        if name in self._locks:
            return None
        token = uuid.uuid4().hex
        self._locks[name] = (token, time.monotonic() + ttl)
        return LockHandle(name=name, token=token)

    async def release(self, handle: LockHandle) -> None:
        held = self._locks.get(handle.name)
        if held is not None and held[0] == handle.token:
            self._locks.pop(handle.name, None)

    async def is_locked(self, name: str) -> bool:
        self._purge(name)
        return name in self._locks
