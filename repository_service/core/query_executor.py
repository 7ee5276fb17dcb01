"""
QueryExecutor - Repository en lecture seule
===========================================

Exécute les requêtes contre Elasticsearch avec :
- cache des résultats (clé fournie par la requête, suffixe = numéro de page)
- pagination par limite (sur-lecture d'un document pour calculer ``has_more``)
- pagination par curseur (scroll, jamais mise en cache)
- continuation explicite pour lire la page suivante
- lecture par identifiant(s), comptage, existence et facettes
- statistiques numériques (voir ``StatsMixin``)

Toute réponse non valide du store lève ``StoreRequestError`` : aucun résultat
partiel n'est renvoyé.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Type, Union

from pydantic import BaseModel

from repository_service.clients.cache_client import CacheClient
from repository_service.clients.elasticsearch_client import StoreResponse
from repository_service.config import Settings
from repository_service.config import settings as default_settings
from repository_service.models.queries import (
    FacetField,
    PagingOptions,
    Query,
    SortField,
    as_facetable,
    as_pageable,
    get_indices,
)
from repository_service.models.results import Continuation, FacetResult, FindResults
from repository_service.utils.logging import get_logger
from .exceptions import NotSupportedError, StoreRequestError, ValidationError
from .query_builder import QueryBuilder, get_total_hits
from .query_cache import QueryCache
from .stats import StatsMixin

logger = get_logger(__name__)

COUNT_CACHE_PREFIX = "count"
EXISTS_CACHE_PREFIX = "exists"
FIND_ONE_CACHE_PREFIX = "one"


class QueryExecutor(StatsMixin):
    """Base des repositories en lecture seule."""

    def __init__(
        self,
        store,
        cache_client: Optional[CacheClient] = None,
        *,
        index: str,
        document_model: Optional[Type[BaseModel]] = None,
        id_field: str = "id",
        has_identity: bool = True,
        allowed_facet_fields: Sequence[str] = (),
        timestamp_field: Optional[str] = None,
        cache_scope: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.index = index
        self.document_model = document_model
        self.id_field = id_field
        self.has_identity = has_identity
        self.allowed_facet_fields = tuple(allowed_facet_fields)
        self.settings = settings or default_settings
        self.timestamp_field = timestamp_field or self.settings.DEFAULT_TIMESTAMP_FIELD
        self.query_builder = QueryBuilder(id_field=id_field, default_facet_size=self.settings.DEFAULT_TERMS_SIZE)

        scope = cache_scope or (document_model.__name__.lower() if document_model else index)
        if cache_client is not None and not self.settings.CACHE_ENABLED:
            cache_client = None
        self.cache = QueryCache(cache_client, scope)

    # === CACHE ===

    @property
    def is_cache_enabled(self) -> bool:
        return self.cache.is_enabled

    def disable_cache(self) -> None:
        self.cache.disable()

    def get_additional_cache_keys(self, documents: Sequence[Any]) -> List[str]:
        """Clés de cache supplémentaires à invalider avec ``documents`` (à surcharger)."""
        return []

    async def invalidate_cache(self, documents: Union[Any, Sequence[Any]]) -> int:
        if not self.is_cache_enabled:
            return 0
        if documents is None:
            return 0
        if isinstance(documents, (BaseModel, dict)):
            documents = [documents]
        documents = list(documents)

        removed = 0
        if self.has_identity:
            ids = [self.get_document_id(doc) for doc in documents]
            removed += await self.cache.invalidate([id for id in ids if id])

        additional = self.get_additional_cache_keys(documents)
        if additional:
            removed += await self.cache.invalidate_keys(additional)
        return removed

    async def invalidate_cache_by_ids(self, ids: Iterable[str]) -> int:
        if not self.is_cache_enabled:
            return 0
        return await self.cache.invalidate([id for id in ids if id])

    # === DOCUMENTS ===

    def get_document_id(self, document: Any) -> Optional[str]:
        if isinstance(document, dict):
            value = document.get(self.id_field)
        else:
            value = getattr(document, self.id_field, None)
        return str(value) if value is not None else None

    def _to_document(self, source: Optional[Dict[str, Any]], id: Optional[str] = None) -> Any:
        source = dict(source or {})
        if self.has_identity and id is not None:
            source.setdefault(self.id_field, id)
        if self.document_model is not None:
            return self.document_model.model_validate(source)
        return source

    def _hits_to_documents(self, body: Dict[str, Any]) -> List[Any]:
        hits = (body.get("hits") or {}).get("hits") or []
        return [self._to_document(hit.get("_source"), hit.get("_id")) for hit in hits]

    def _cache_ids(self, documents: Iterable[Any]) -> List[str]:
        if not self.has_identity:
            return []
        return [id for id in (self.get_document_id(doc) for doc in documents) if id]

    # === STORE ===

    def get_indices(self, query: Any) -> Union[str, List[str]]:
        """Index ciblés : ceux nommés par la requête, sinon l'alias du repository."""
        return get_indices(query) or self.index

    def get_index_by_id(self, id: str) -> str:
        return self.index

    @staticmethod
    def _ensure_valid(response: StoreResponse, message: Optional[str] = None) -> StoreResponse:
        if not response.is_valid:
            raise StoreRequestError.from_response(response, message)
        return response

    async def _search(
        self, query: Any, body: Dict[str, Any], *, scroll: Optional[str] = None, message: Optional[str] = None
    ) -> Dict[str, Any]:
        response = await self.store.search(self.get_indices(query), body, scroll=scroll, ignore_unavailable=True)
        return self._ensure_valid(response, message).body or {}

    # === FIND ===

    async def find(self, query: Query) -> FindResults:
        if query is None:
            raise ValidationError("query is required", field="query")

        paging = as_pageable(query)
        snapshot = paging is not None and paging.use_snapshot_paging
        use_limit = paging is not None and not snapshot and paging.should_use_limit()
        allow_caching = self.is_cache_enabled and not snapshot
        cache_suffix = str(paging.page or 1) if use_limit else None

        if allow_caching:
            cached = await self.cache.get(query, suffix=cache_suffix)
            if cached is not None:
                logger.debug(f"Cache hit: scope={self.cache.scope}")
                result = FindResults.from_cache_payload(cached, self.document_model)
                result.continuation = self._continuation(query, result)
                return result

        if snapshot:
            result = await self._find_snapshot(query, paging)
        elif use_limit:
            limit = paging.get_limit()
            body = self.query_builder.build_search_body(query, size=limit + 1, from_=paging.get_skip())
            body["track_total_hits"] = True
            response = await self._search(query, body)
            documents = self._hits_to_documents(response)
            result = FindResults(
                documents=documents[:limit],
                total=get_total_hits(response),
                has_more=len(documents) > limit,
                facets=self.query_builder.parse_facets(query, response.get("aggregations")),
            )
        else:
            body = self.query_builder.build_search_body(query, size=self.settings.MAX_PAGE_LIMIT)
            body["track_total_hits"] = True
            response = await self._search(query, body)
            documents = self._hits_to_documents(response)
            total = get_total_hits(response)
            if total > len(documents):
                logger.warning(
                    f"Résultat non paginé tronqué à {len(documents)} documents sur {total} ({self.index})"
                )
            result = FindResults(
                documents=documents,
                total=total,
                has_more=total > len(documents),
                facets=self.query_builder.parse_facets(query, response.get("aggregations")),
            )

        if allow_caching:
            await self.cache.set(
                query, result.to_cache_payload(), suffix=cache_suffix, document_ids=self._cache_ids(result.documents)
            )

        result.continuation = self._continuation(query, result)
        return result

    async def _find_snapshot(self, query: Query, paging: PagingOptions) -> FindResults:
        keep_alive = self.settings.SCROLL_KEEP_ALIVE
        body = self.query_builder.build_search_body(query, size=paging.get_limit())
        body["track_total_hits"] = True
        opened = await self._search(query, body, scroll=keep_alive)

        cursor_token = opened.get("_scroll_id")
        total = get_total_hits(opened)
        documents = self._hits_to_documents(opened)

        # Curseur ouvert sans premier lot (store de type scan) : on l'avance une fois
        if not documents and total > 0 and cursor_token:
            advanced = self._ensure_valid(await self.store.scroll(cursor_token, keep_alive)).body or {}
            documents = self._hits_to_documents(advanced)
            cursor_token = advanced.get("_scroll_id") or cursor_token

        return FindResults(
            documents=documents,
            total=total,
            cursor_token=cursor_token,
            facets=self.query_builder.parse_facets(query, opened.get("aggregations")),
        )

    @staticmethod
    def _continuation(query: Any, result: FindResults) -> Continuation:
        paging = as_pageable(query)
        return Continuation(
            query=query,
            cursor_token=result.cursor_token,
            page=paging.get_page() if paging is not None else None,
            total=result.total,
        )

    async def fetch_next(self, previous: Union[FindResults, Continuation]) -> FindResults:
        """Page suivante ; la requête d'origine n'est pas modifiée."""
        continuation = previous.continuation if isinstance(previous, FindResults) else previous
        if continuation is None:
            return FindResults()

        if continuation.cursor_token:
            keep_alive = self.settings.SCROLL_KEEP_ALIVE
            response = self._ensure_valid(await self.store.scroll(continuation.cursor_token, keep_alive)).body or {}
            cursor_token = response.get("_scroll_id") or continuation.cursor_token
            documents = self._hits_to_documents(response)
            if not documents:
                # Curseur épuisé : contexte libéré, plus de continuation
                await self._clear_cursor(cursor_token)
                return FindResults(total=continuation.total)

            result = FindResults(documents=documents, total=continuation.total, cursor_token=cursor_token)
            result.continuation = Continuation(
                query=continuation.query, cursor_token=cursor_token, total=continuation.total
            )
            return result

        paging = as_pageable(continuation.query)
        if paging is None:
            return FindResults()

        current = continuation.page or paging.get_page()
        next_query = continuation.query.model_copy(deep=True)
        next_query.paging = paging.model_copy(update={"page": current + 1})
        return await self.find(next_query)

    async def _clear_cursor(self, cursor_token: str) -> None:
        response = await self.store.clear_scroll(cursor_token)
        if not response.is_valid:
            logger.warning(f"Libération du curseur impossible: {response.error_reason}")

    async def find_one(self, query: Query) -> Optional[Any]:
        if query is None:
            raise ValidationError("query is required", field="query")

        if self.is_cache_enabled:
            cached = await self.cache.get(query, prefix=FIND_ONE_CACHE_PREFIX)
            if cached is not None:
                return self._to_document(cached)

        body = self.query_builder.build_search_body(query, size=1, include_facets=False)
        documents = self._hits_to_documents(await self._search(query, body))
        document = documents[0] if documents else None

        if document is not None and self.is_cache_enabled:
            payload = document.model_dump(mode="json") if isinstance(document, BaseModel) else document
            await self.cache.set(
                query, payload, prefix=FIND_ONE_CACHE_PREFIX, document_ids=self._cache_ids([document])
            )
        return document

    async def exists(self, query: Query) -> bool:
        """
        Existence d'au moins un document.

        Le résultat en cache est rattaché au document trouvé : l'invalider supprime
        l'entrée. Un résultat négatif n'est rattaché à aucun document et expire
        avec son TTL (ou via ``get_additional_cache_keys``).
        """
        if query is None:
            raise ValidationError("query is required", field="query")

        if self.is_cache_enabled:
            cached = await self.cache.get(query, prefix=EXISTS_CACHE_PREFIX)
            if cached is not None:
                return bool(cached)

        body = self.query_builder.build_search_body(query, size=1, include_source=False, include_facets=False)
        response = await self._search(query, body)
        found = get_total_hits(response) > 0

        if self.is_cache_enabled:
            hit_ids = [hit.get("_id") for hit in (response.get("hits") or {}).get("hits") or []]
            document_ids = hit_ids if self.has_identity else []
            await self.cache.set(query, found, prefix=EXISTS_CACHE_PREFIX, document_ids=document_ids)
        return found

    async def exists_by_id(self, id: Optional[str]) -> bool:
        if not id:
            return False
        return await self.exists(Query().with_id(id))

    async def count(self, query: Query) -> int:
        """Nombre de documents ; le cache n'est invalidé que via ``get_additional_cache_keys`` ou le TTL."""
        if query is None:
            raise ValidationError("query is required", field="query")

        if self.is_cache_enabled:
            cached = await self.cache.get(query, prefix=COUNT_CACHE_PREFIX)
            if cached is not None:
                return int(cached)

        response = await self.store.count(
            self.get_indices(query), self.query_builder.build_count_body(query), ignore_unavailable=True
        )
        total = int((self._ensure_valid(response).body or {}).get("count", 0))

        if self.is_cache_enabled:
            await self.cache.set(query, total, prefix=COUNT_CACHE_PREFIX)
        return total

    async def count_all(self) -> int:
        response = self._ensure_valid(await self.store.count(self.index))
        return int((response.body or {}).get("count", 0))

    # === PAR IDENTIFIANT ===

    async def get_by_id(self, id: Optional[str], use_cache: bool = False, expires_in: Optional[int] = None) -> Optional[Any]:
        if not id:
            return None

        if self.is_cache_enabled and use_cache:
            cached = await self.cache.get_by_id(id)
            if cached is not None:
                return self._to_document(cached)

        response = self._ensure_valid(await self.store.get(self.get_index_by_id(id), id))
        body = response.body or {}
        if response.status == 404 or not body.get("found", True):
            return None
        document = self._to_document(body.get("_source"), body.get("_id", id))

        if self.is_cache_enabled and use_cache:
            payload = document.model_dump(mode="json") if isinstance(document, BaseModel) else document
            await self.cache.set_by_id(id, payload, expires_in or self.settings.DEFAULT_CACHE_EXPIRATION_SECONDS)
        return document

    async def get_by_ids(
        self, ids: Optional[Iterable[str]], use_cache: bool = False, expires_in: Optional[int] = None
    ) -> FindResults:
        ids = list(dict.fromkeys(id for id in (ids or []) if id))
        if not ids:
            return FindResults()
        if not self.has_identity:
            raise NotSupportedError("Model type must have an identity to be fetched by ids.")

        documents: List[Any] = []
        missing = ids
        if self.is_cache_enabled and use_cache:
            cached = await self.cache.get_many(ids)
            documents.extend(self._to_document(cached[id]) for id in ids if id in cached)
            missing = [id for id in ids if id not in cached]

        if missing:
            docs = [{"_index": self.get_index_by_id(id), "_id": id} for id in missing]
            response = self._ensure_valid(await self.store.mget(docs))
            fetched = [
                self._to_document(doc.get("_source"), doc.get("_id"))
                for doc in (response.body or {}).get("docs", [])
                if doc.get("found")
            ]
            documents.extend(fetched)

            if self.is_cache_enabled and use_cache:
                ttl = expires_in or self.settings.DEFAULT_CACHE_EXPIRATION_SECONDS
                for document in fetched:
                    payload = document.model_dump(mode="json") if isinstance(document, BaseModel) else document
                    await self.cache.set_by_id(self.get_document_id(document), payload, ttl)

        return FindResults(documents=documents, total=len(documents))

    # === RACCOURCIS ===

    async def get_all(
        self, sort: Optional[Sequence[SortField]] = None, paging: Optional[PagingOptions] = None
    ) -> FindResults:
        query = Query(sort=list(sort or []), paging=paging)
        return await self.find(query)

    async def get_by_search(
        self,
        system_filter: Optional[str],
        user_filter: Optional[str] = None,
        search_query: Optional[str] = None,
        sort: Optional[Sequence[SortField]] = None,
        paging: Optional[PagingOptions] = None,
        facets: Optional[Sequence[Union[str, FacetField]]] = None,
    ) -> FindResults:
        query = (
            Query(sort=list(sort or []), paging=paging)
            .with_system_filter(system_filter)
            .with_user_filter(user_filter)
            .with_search_query(search_query)
        )
        if facets:
            query.facet_fields = [f if isinstance(f, FacetField) else FacetField(field=f) for f in facets]
        return await self.find(query)

    async def get_facets(self, query: Query) -> List[FacetResult]:
        facet_fields = as_facetable(query)
        if not facet_fields:
            raise ValidationError("Query must contain facet fields.", field="facet_fields")
        if self.allowed_facet_fields and any(f.field not in self.allowed_facet_fields for f in facet_fields):
            raise ValidationError("All facet fields must be allowed.", field="facet_fields")

        body = self.query_builder.build_search_body(query, size=0)
        response = await self._search(query, body, message="Retrieving term stats failed.")
        return self.query_builder.parse_facets(query, response.get("aggregations"))


__all__ = ["QueryExecutor"]
