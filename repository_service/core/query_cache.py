"""
Cache des requêtes et des documents
===================================

Stocke les résultats de requêtes sous la clé déclarée par la requête
(``[prefix:]cache_key[:suffix]``) et les documents par identifiant.

Chaque résultat mis en cache est référencé dans un index inverse par
identifiant de document : invalider un document supprime aussi les résultats de
requête qui le contenaient. Cet index est un ensemble de clés par document, mis
à jour par ajout atomique (SADD côté Redis). Le vidage complet du scope
(``clear``) n'est jamais implicite.

Le cache reste best-effort : une erreur du backend est journalisée et traitée
comme un miss (lecture) ou ignorée (écriture).
"""

from typing import Any, Dict, Iterable, List, Optional

from repository_service.clients.cache_client import CacheClient, NullCacheClient, ScopedCacheClient
from repository_service.models.queries import as_cacheable
from repository_service.utils.logging import get_logger

logger = get_logger(__name__)

ID_PREFIX = "id"
DOCUMENT_KEYS_PREFIX = "doc-keys"


class QueryCache:
    """Cache d'un repository, isolé par ``scope``."""

    def __init__(self, client: Optional[CacheClient], scope: str):
        self.scope = scope
        backend = client if client is not None else NullCacheClient()
        self._client: CacheClient = ScopedCacheClient(backend, scope) if scope else backend
        self._hits = 0
        self._misses = 0
        self._errors = 0

    @property
    def is_enabled(self) -> bool:
        return self._client.enabled

    def disable(self) -> None:
        """Coupe le cache pour la suite de la vie de l'instance."""
        self._client = NullCacheClient()

    # === CLÉS ===

    @staticmethod
    def build_key(query: Any, prefix: Optional[str] = None, suffix: Optional[str] = None) -> Optional[str]:
        """Clé ``[prefix:]cache_key[:suffix]`` ou ``None`` si la requête n'est pas cacheable."""
        options = as_cacheable(query)
        if options is None or not options.should_use_cache():
            return None
        key = options.cache_key
        if prefix:
            key = f"{prefix}:{key}"
        if suffix:
            key = f"{key}:{suffix}"
        return key

    @staticmethod
    def _id_key(id: str) -> str:
        return f"{ID_PREFIX}:{id}"

    @staticmethod
    def _document_keys_key(id: str) -> str:
        return f"{DOCUMENT_KEYS_PREFIX}:{id}"

    # === REQUÊTES ===

    async def get(self, query: Any, prefix: Optional[str] = None, suffix: Optional[str] = None) -> Optional[Any]:
        if not self.is_enabled:
            return None
        key = self.build_key(query, prefix, suffix)
        if key is None:
            return None
        return await self._get(key)

    async def set(
        self,
        query: Any,
        value: Any,
        prefix: Optional[str] = None,
        suffix: Optional[str] = None,
        document_ids: Iterable[str] = (),
    ) -> Optional[str]:
        """Stocke ``value`` pour la requête ; retourne la clé utilisée (``None`` si non cacheable)."""
        if not self.is_enabled:
            return None
        key = self.build_key(query, prefix, suffix)
        if key is None:
            return None

        ttl = as_cacheable(query).get_cache_expiration()
        try:
            await self._client.set(key, value, ttl)
            for id in {str(i) for i in document_ids if i is not None}:
                await self._client.add_to_set(self._document_keys_key(id), [key], ttl)
        except Exception as e:
            self._errors += 1
            logger.warning(f"Écriture cache impossible pour {key}: {e}")
        return key

    # === DOCUMENTS ===

    async def get_by_id(self, id: str) -> Optional[Any]:
        if not self.is_enabled:
            return None
        return await self._get(self._id_key(id))

    async def set_by_id(self, id: str, value: Any, ttl: Optional[int] = None) -> None:
        if not self.is_enabled:
            return
        try:
            await self._client.set(self._id_key(id), value, ttl)
        except Exception as e:
            self._errors += 1
            logger.warning(f"Écriture cache impossible pour le document {id}: {e}")

    async def get_many(self, ids: Iterable[str]) -> Dict[str, Any]:
        """Documents trouvés en cache, indexés par identifiant."""
        ids = list(ids)
        if not self.is_enabled or not ids:
            return {}
        try:
            found = await self._client.get_all([self._id_key(id) for id in ids])
        except Exception as e:
            self._errors += 1
            logger.warning(f"Lecture cache impossible: {e}")
            self._misses += len(ids)
            return {}

        result = {id: found[self._id_key(id)] for id in ids if self._id_key(id) in found}
        self._hits += len(result)
        self._misses += len(ids) - len(result)
        return result

    # === INVALIDATION ===

    async def invalidate(self, ids: Iterable[str]) -> int:
        """Supprime les documents et tous les résultats de requête qui les référencent."""
        ids = [str(id) for id in ids if id is not None]
        if not self.is_enabled or not ids:
            return 0

        keys: List[str] = []
        try:
            for id in ids:
                keys.append(self._id_key(id))
                keys.append(self._document_keys_key(id))
                keys.extend(await self._client.get_set(self._document_keys_key(id)))
        except Exception as e:
            self._errors += 1
            logger.warning(f"Lecture de l'index inverse impossible: {e}")

        return await self.invalidate_keys(keys)

    async def invalidate_keys(self, keys: Iterable[str]) -> int:
        keys = list(dict.fromkeys(keys))
        if not self.is_enabled or not keys:
            return 0
        try:
            removed = await self._client.remove_all(keys)
        except Exception as e:
            self._errors += 1
            logger.warning(f"Invalidation cache impossible: {e}")
            return 0
        logger.debug(f"Cache {self.scope}: {removed} entrée(s) invalidée(s)")
        return removed

    async def clear(self) -> int:
        """Vide tout le scope du cache."""
        if not self.is_enabled:
            return 0
        try:
            removed = await self._client.remove_by_prefix("")
        except Exception as e:
            self._errors += 1
            logger.warning(f"Vidage du cache {self.scope} impossible: {e}")
            return 0
        logger.info(f"Cache {self.scope} vidé ({removed} entrées)")
        return removed

    # === INTERNE ===

    async def _get(self, key: str) -> Optional[Any]:
        try:
            value = await self._client.get(key)
        except Exception as e:
            self._errors += 1
            self._misses += 1
            logger.warning(f"Lecture cache impossible pour {key}: {e}")
            return None
        if value is None:
            self._misses += 1
        else:
            self._hits += 1
        return value

    def get_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "scope": self.scope,
            "enabled": self.is_enabled,
            "hits": self._hits,
            "misses": self._misses,
            "errors": self._errors,
            "hit_rate": self._hits / total if total else 0.0,
        }
