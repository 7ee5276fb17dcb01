"""Work item queues used to hand reindex jobs over to an external worker."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

from repository_service.models.indexes import ReindexWorkItem
from repository_service.utils.logging import get_logger

logger = get_logger(__name__)


class WorkItemQueue(ABC):
    """Fire-and-forget queue of JSON work items."""

    @abstractmethod
    async def enqueue(self, item: ReindexWorkItem) -> None:
        """Append ``item`` to the queue."""


class RedisWorkItemQueue(WorkItemQueue):
    """Redis list queue: producers RPUSH, the worker BLPOPs."""

    def __init__(self, url: str, *, queue_name: str, client: Optional[redis.Redis] = None) -> None:
        self.queue_name = queue_name
        self._client = client or redis.from_url(url, decode_responses=True)

    async def enqueue(self, item: ReindexWorkItem) -> None:
        payload = json.dumps({"type": type(item).__name__, "data": item.to_dict()})
        length = await self._client.rpush(self.queue_name, payload)
        logger.info(f"Work item enqueued on {self.queue_name} (length={length})")

    async def close(self) -> None:
        await self._client.close()


class InMemoryWorkItemQueue(WorkItemQueue):
    """Process-local queue, mostly useful for tests and local runs."""

    def __init__(self) -> None:
        self.items: List[Dict[str, Any]] = []

    async def enqueue(self, item: ReindexWorkItem) -> None:
        self.items.append({"type": type(item).__name__, "data": item.to_dict()})

    def __len__(self) -> int:
        return len(self.items)
