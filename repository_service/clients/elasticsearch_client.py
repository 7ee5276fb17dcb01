"""
Client Elasticsearch du Repository Service
==========================================

Client HTTP (aiohttp) couvrant les opérations dont la couche d'accès aux
données a besoin : recherche, comptage, get/multi-get, scroll, alias, index et
templates d'index.

Chaque opération renvoie une ``StoreResponse`` (succès + détail d'erreur) au
lieu de lever : c'est à l'appelant de décider si l'échec est fatal. Les erreurs
réseau (timeout, connexion refusée) deviennent des réponses invalides portant
l'exception d'origine.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
from urllib.parse import quote

import aiohttp

from repository_service.config import settings
from repository_service.utils.logging import get_logger
from .base_client import BaseClient

logger = get_logger(__name__)

IndexNames = Optional[Union[str, Sequence[str]]]


@dataclass
class StoreResponse:
    """Réponse brute du store"""
    is_valid: bool
    status: int
    body: Any = None
    error: Any = None
    exception: Optional[BaseException] = None

    @property
    def found(self) -> bool:
        return self.status == 200

    @property
    def error_reason(self) -> str:
        if isinstance(self.error, dict):
            return self.error.get("reason") or self.error.get("type") or str(self.error)
        if self.error:
            return str(self.error)
        if self.exception is not None:
            return str(self.exception)
        return f"HTTP {self.status}"

    @property
    def error_type(self) -> Optional[str]:
        if isinstance(self.error, dict):
            return self.error.get("type")
        return None


def _index_path(index: IndexNames) -> str:
    if not index:
        return ""
    if isinstance(index, str):
        names = [index]
    else:
        names = list(index)
    return "/" + ",".join(quote(name, safe="*-_.") for name in names)


class ElasticsearchClient(BaseClient):
    """Client Elasticsearch asynchrone"""

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        **kwargs,
    ):
        final_url = (url or settings.ELASTICSEARCH_URL).strip()
        if not final_url.startswith(("http://", "https://")):
            raise RuntimeError(
                f"Invalid ELASTICSEARCH_URL format: {final_url}. Must start with http:// or https://"
            )

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            **kwargs.get("headers", {}),
        }
        auth = aiohttp.BasicAuth(username, password or "") if username else None

        super().__init__(
            base_url=final_url,
            service_name="elasticsearch",
            timeout=timeout if timeout is not None else settings.ELASTICSEARCH_TIMEOUT,
            headers=headers,
            auth=auth,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
        allow_statuses: Iterable[int] = (),
        operation_name: Optional[str] = None,
    ) -> StoreResponse:
        """Exécute une requête HTTP et la convertit en ``StoreResponse``"""
        url = f"{self.base_url}{path}"
        query_params = {k: str(v).lower() if isinstance(v, bool) else str(v) for k, v in (params or {}).items()}
        allowed = set(allow_statuses)

        async def _send() -> StoreResponse:
            async with self.session.request(method, url, params=query_params, json=body) as response:
                payload = None
                if method != "HEAD":
                    try:
                        payload = await response.json(content_type=None)
                    except ValueError:
                        payload = await response.text()
                ok = 200 <= response.status < 300 or response.status in allowed
                error = None
                if not ok:
                    error = payload.get("error", payload) if isinstance(payload, dict) else payload
                return StoreResponse(is_valid=ok, status=response.status, body=payload, error=error)

        try:
            result = await self.execute(_send, operation_name or f"{method} {path}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Elasticsearch {method} {path} failed: {e}")
            return StoreResponse(is_valid=False, status=0, exception=e)

        if not result.is_valid:
            logger.error(f"Elasticsearch {method} {path} returned {result.status}: {result.error_reason}")
        return result

    # === RECHERCHE ===

    async def search(
        self,
        index: IndexNames,
        body: Dict[str, Any],
        *,
        scroll: Optional[str] = None,
        ignore_unavailable: bool = True,
    ) -> StoreResponse:
        params: Dict[str, Any] = {"ignore_unavailable": ignore_unavailable}
        if scroll:
            params["scroll"] = scroll
        return await self._request(
            "POST", f"{_index_path(index)}/_search", params=params, body=body, operation_name="search"
        )

    async def scroll(self, scroll_id: str, scroll: str) -> StoreResponse:
        return await self._request(
            "POST",
            "/_search/scroll",
            body={"scroll": scroll, "scroll_id": scroll_id},
            operation_name="scroll",
        )

    async def clear_scroll(self, scroll_id: str) -> StoreResponse:
        return await self._request(
            "DELETE",
            "/_search/scroll",
            body={"scroll_id": scroll_id},
            allow_statuses=(404,),
            operation_name="clear_scroll",
        )

    async def count(
        self, index: IndexNames, body: Optional[Dict[str, Any]] = None, *, ignore_unavailable: bool = True
    ) -> StoreResponse:
        return await self._request(
            "POST",
            f"{_index_path(index)}/_count",
            params={"ignore_unavailable": ignore_unavailable},
            body=body or {"query": {"match_all": {}}},
            operation_name="count",
        )

    async def get(self, index: str, id: str) -> StoreResponse:
        return await self._request(
            "GET", f"/{quote(index)}/_doc/{quote(id, safe='')}", allow_statuses=(404,), operation_name="get"
        )

    async def mget(self, docs: List[Dict[str, Any]], index: Optional[str] = None) -> StoreResponse:
        return await self._request(
            "POST", f"{_index_path(index)}/_mget", body={"docs": docs}, operation_name="mget"
        )

    # === ALIAS ===

    async def get_alias(self, name: str) -> StoreResponse:
        """Membres de l'alias ; un alias inexistant renvoie une réponse valide vide"""
        response = await self._request("GET", f"/_alias/{quote(name)}", allow_statuses=(404,), operation_name="get_alias")
        if response.is_valid and response.status == 404:
            response.body = {}
        return response

    async def alias_exists(self, name: str) -> StoreResponse:
        return await self._request("HEAD", f"/_alias/{quote(name)}", allow_statuses=(404,), operation_name="alias_exists")

    async def update_aliases(self, actions: List[Dict[str, Any]]) -> StoreResponse:
        return await self._request("POST", "/_aliases", body={"actions": actions}, operation_name="update_aliases")

    # === INDEX ===

    async def index_exists(self, name: str) -> StoreResponse:
        return await self._request("HEAD", f"/{quote(name)}", allow_statuses=(404,), operation_name="index_exists")

    async def create_index(self, name: str, body: Optional[Dict[str, Any]] = None) -> StoreResponse:
        return await self._request("PUT", f"/{quote(name)}", body=body or {}, operation_name="create_index")

    async def delete_index(self, name: str) -> StoreResponse:
        return await self._request(
            "DELETE",
            f"/{quote(name, safe='*-_.')}",
            params={"ignore_unavailable": True},
            allow_statuses=(404,),
            operation_name="delete_index",
        )

    async def list_indices(self, pattern: str) -> StoreResponse:
        """Noms des index physiques correspondant au motif (liste vide si aucun)"""
        response = await self._request(
            "GET",
            f"/_cat/indices/{quote(pattern, safe='*-_.')}",
            params={"format": "json", "h": "index"},
            allow_statuses=(404,),
            operation_name="list_indices",
        )
        if response.is_valid:
            rows = response.body if isinstance(response.body, list) else []
            response.body = sorted(row["index"] for row in rows if "index" in row)
        return response

    # === TEMPLATES ===

    async def put_index_template(self, name: str, body: Dict[str, Any]) -> StoreResponse:
        return await self._request("PUT", f"/_index_template/{quote(name)}", body=body, operation_name="put_index_template")

    async def index_template_exists(self, name: str) -> StoreResponse:
        return await self._request(
            "HEAD", f"/_index_template/{quote(name)}", allow_statuses=(404,), operation_name="index_template_exists"
        )

    async def delete_index_template(self, name: str) -> StoreResponse:
        return await self._request(
            "DELETE", f"/_index_template/{quote(name)}", allow_statuses=(404,), operation_name="delete_index_template"
        )

    # === SANTÉ ===

    async def ping(self) -> StoreResponse:
        return await self._request("GET", "/", operation_name="ping")

    async def _perform_health_check(self) -> Dict[str, Any]:
        response = await self.ping()
        if not response.is_valid:
            return {"status": "unhealthy", "error": response.error_reason}
        body = response.body if isinstance(response.body, dict) else {}
        return {
            "status": "healthy",
            "cluster_name": body.get("cluster_name", "unknown"),
            "version": body.get("version", {}).get("number", "unknown"),
        }


def create_default_client() -> ElasticsearchClient:
    """Crée un client à partir des settings globaux"""
    config = settings.get_elasticsearch_config()
    return ElasticsearchClient(
        url=config["url"],
        timeout=config["timeout"],
        username=config.get("username"),
        password=config.get("password"),
    )


__all__ = ["ElasticsearchClient", "StoreResponse", "create_default_client"]
