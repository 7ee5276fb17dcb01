"""Cache clients used to store query results.

The production backend is Redis (``redis.asyncio``); values are serialised
to JSON so arbitrary Python structures can be stored. ``InMemoryCacheClient``
offers the same interface for single-process deployments and tests, and
``NullCacheClient`` is the explicit "cache disabled" marker.
"""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Tuple

import redis.asyncio as redis


class CacheClient(ABC):
    """Asynchronous key/value cache with optional TTL (seconds)."""

    enabled = True

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value or ``None``."""

    async def get_all(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Return the cached values found among ``keys``."""
        found = {}
        for key in keys:
            value = await self.get(key)
            if value is not None:
                found[key] = value
        return found

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store ``value`` under ``key``."""

    @abstractmethod
    async def remove_all(self, keys: Iterable[str]) -> int:
        """Remove ``keys`` and return how many entries were deleted."""

    @abstractmethod
    async def add_to_set(self, key: str, members: Iterable[str], ttl: int) -> None:
        """Atomically add ``members`` to the set at ``key``; the TTL is only ever extended."""

    @abstractmethod
    async def get_set(self, key: str) -> List[str]:
        """Members of the set at ``key`` (empty when missing)."""

    async def remove(self, key: str) -> int:
        return await self.remove_all([key])

    @abstractmethod
    async def remove_by_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``."""

    async def close(self) -> None:
        return None


class RedisCacheClient(CacheClient):
    """Asynchronous Redis cache helper."""

    def __init__(self, url: str, *, prefix: str = "cache:", client: Optional[redis.Redis] = None) -> None:
        self._prefix = prefix
        self._client = client or redis.from_url(url, decode_responses=True)

    def _format_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._client.get(self._format_key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw

    async def get_all(self, keys: Iterable[str]) -> Dict[str, Any]:
        keys = list(keys)
        if not keys:
            return {}
        raws = await self._client.mget([self._format_key(k) for k in keys])
        found = {}
        for key, raw in zip(keys, raws):
            if raw is None:
                continue
            try:
                found[key] = json.loads(raw)
            except json.JSONDecodeError:
                found[key] = raw
        return found

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        await self._client.set(self._format_key(key), json.dumps(value, default=str), ex=ttl)

    async def add_to_set(self, key: str, members: Iterable[str], ttl: int) -> None:
        members = list(members)
        if not members:
            return
        name = self._format_key(key)
        await self._client.sadd(name, *members)
        if await self._client.ttl(name) < ttl:
            await self._client.expire(name, ttl)

    async def get_set(self, key: str) -> List[str]:
        return sorted(await self._client.smembers(self._format_key(key)))

    async def remove_all(self, keys: Iterable[str]) -> int:
        formatted = [self._format_key(k) for k in keys]
        if not formatted:
            return 0
        return await self._client.delete(*formatted)

    async def remove_by_prefix(self, prefix: str) -> int:
        removed = 0
        async for key in self._client.scan_iter(match=f"{self._format_key(prefix)}*"):
            removed += await self._client.delete(key)
        return removed

    async def close(self) -> None:
        await self._client.close()


class InMemoryCacheClient(CacheClient):
    """In-process cache with TTL support.

    Values are stored in a dictionary together with an optional expiry
    timestamp. Values go through a JSON round trip so that callers observe the
    same behaviour as with the Redis backend.
    """

    def __init__(self) -> None:
        self._store: Dict[str, Tuple[Optional[float], str]] = {}

    def _live(self, key: str) -> Optional[Tuple[Optional[float], str]]:
        item = self._store.get(key)
        if not item:
            return None
        if item[0] is not None and item[0] < time.time():
            self._store.pop(key, None)
            return None
        return item

    async def get(self, key: str) -> Optional[Any]:
        item = self._live(key)
        return json.loads(item[1]) if item else None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = time.time() + ttl if ttl is not None else None
        self._store[key] = (expires_at, json.dumps(value, default=str))

    async def add_to_set(self, key: str, members: Iterable[str], ttl: int) -> None:
        # No await between read and write, so the update is atomic on the event loop
        item = self._live(key)
        current = set(json.loads(item[1])) if item else set()
        current.update(members)
        expires_at = time.time() + ttl
        if item is not None:
            expires_at = None if item[0] is None else max(item[0], expires_at)
        self._store[key] = (expires_at, json.dumps(sorted(current)))

    async def get_set(self, key: str) -> List[str]:
        item = self._live(key)
        return json.loads(item[1]) if item else []

    async def remove_all(self, keys: Iterable[str]) -> int:
        removed = 0
        for key in keys:
            if self._store.pop(key, None) is not None:
                removed += 1
        return removed

    async def remove_by_prefix(self, prefix: str) -> int:
        keys = [key for key in self._store if key.startswith(prefix)]
        return await self.remove_all(keys)

    def keys(self) -> List[str]:
        return list(self._store)


class NullCacheClient(CacheClient):
    """Disabled cache: every read is a miss, every write is dropped."""

    enabled = False

    async def get(self, key: str) -> Optional[Any]:
        return None

    async def get_all(self, keys: Iterable[str]) -> Dict[str, Any]:
        return {}

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        return None

    async def add_to_set(self, key: str, members: Iterable[str], ttl: int) -> None:
        return None

    async def get_set(self, key: str) -> List[str]:
        return []

    async def remove_all(self, keys: Iterable[str]) -> int:
        return 0

    async def remove_by_prefix(self, prefix: str) -> int:
        return 0


class ScopedCacheClient(CacheClient):
    """Prefixes every key with ``scope:`` so repositories share one backend."""

    def __init__(self, client: CacheClient, scope: str) -> None:
        self.client = client
        self.scope = scope
        self.enabled = client.enabled

    def _scoped(self, key: str) -> str:
        return f"{self.scope}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        return await self.client.get(self._scoped(key))

    async def get_all(self, keys: Iterable[str]) -> Dict[str, Any]:
        keys = list(keys)
        found = await self.client.get_all([self._scoped(k) for k in keys])
        return {k: found[self._scoped(k)] for k in keys if self._scoped(k) in found}

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        await self.client.set(self._scoped(key), value, ttl)

    async def add_to_set(self, key: str, members: Iterable[str], ttl: int) -> None:
        await self.client.add_to_set(self._scoped(key), members, ttl)

    async def get_set(self, key: str) -> List[str]:
        return await self.client.get_set(self._scoped(key))

    async def remove_all(self, keys: Iterable[str]) -> int:
        return await self.client.remove_all([self._scoped(k) for k in keys])

    async def remove_by_prefix(self, prefix: str = "") -> int:
        return await self.client.remove_by_prefix(self._scoped(prefix))
