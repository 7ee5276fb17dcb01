"""
Clients externes du Repository Service
(Elasticsearch, cache, verrou distribué, file de travail)
"""

from dataclasses import dataclass
from typing import Optional

from repository_service.config import Settings, settings as default_settings
from repository_service.utils.logging import get_logger
from .base_client import BaseClient, ClientStatus
from .cache_client import (
    CacheClient,
    InMemoryCacheClient,
    NullCacheClient,
    RedisCacheClient,
    ScopedCacheClient,
)
from .elasticsearch_client import ElasticsearchClient, StoreResponse, create_default_client
from .lock_provider import InMemoryLockProvider, LockHandle, LockProvider, RedisLockProvider
from .work_queue import InMemoryWorkItemQueue, RedisWorkItemQueue, WorkItemQueue

logger = get_logger(__name__)


@dataclass
class ServiceClients:
    """Ensemble des collaborateurs externes utilisés par le service"""
    store: ElasticsearchClient
    cache: Optional[CacheClient]
    lock_provider: LockProvider
    work_queue: WorkItemQueue

    async def close(self) -> None:
        await self.store.close()
        for client in (self.cache, self.lock_provider, self.work_queue):
            close = getattr(client, "close", None)
            if close is not None:
                await close()


def create_clients(config: Optional[Settings] = None) -> ServiceClients:
    """
    Construit les clients à partir de la configuration.

    Sans Redis configuré, le cache est désactivé et verrou/file passent en
    implémentations mémoire (mono-processus).
    """
    config = config or default_settings
    store = ElasticsearchClient(**config.get_elasticsearch_config())

    if config.redis_configured:
        cache = RedisCacheClient(config.REDIS_URL, prefix=config.CACHE_PREFIX) if config.CACHE_ENABLED else None
        lock_provider = RedisLockProvider(config.REDIS_URL)
        work_queue = RedisWorkItemQueue(config.REDIS_URL, queue_name=config.REINDEX_QUEUE_NAME)
    else:
        logger.warning("Redis not configured: query cache disabled, in-memory lock provider and queue in use")
        cache = None
        lock_provider = InMemoryLockProvider()
        work_queue = InMemoryWorkItemQueue()

    return ServiceClients(store=store, cache=cache, lock_provider=lock_provider, work_queue=work_queue)


__all__ = [
    "BaseClient",
    "ClientStatus",
    "CacheClient",
    "InMemoryCacheClient",
    "NullCacheClient",
    "RedisCacheClient",
    "ScopedCacheClient",
    "ElasticsearchClient",
    "StoreResponse",
    "create_default_client",
    "InMemoryLockProvider",
    "LockHandle",
    "LockProvider",
    "RedisLockProvider",
    "InMemoryWorkItemQueue",
    "RedisWorkItemQueue",
    "WorkItemQueue",
    "ServiceClients",
    "create_clients",
]
