"""
Configuration globale des tests du Repository Service
"""
import os

# Configuration environment variables AVANT tous les imports
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("CACHE_ENABLED", "true")
os.environ.setdefault("ELASTICSEARCH_URL", "http://localhost:9200")

from typing import Any, Dict, List, Optional

import pytest

from repository_service.clients.cache_client import InMemoryCacheClient
from repository_service.clients.elasticsearch_client import StoreResponse


# ============================================================================
# HELPERS DE RÉPONSES
# ============================================================================

def ok(body: Any = None, status: int = 200) -> StoreResponse:
    return StoreResponse(is_valid=True, status=status, body=body if body is not None else {})


def failure(status: int = 500, error: Any = None, exception: Optional[BaseException] = None) -> StoreResponse:
    return StoreResponse(
        is_valid=False,
        status=status,
        error=error if error is not None else {"type": "search_phase_execution_exception", "reason": "boom"},
        exception=exception,
    )


def hits(
    documents: List[Dict[str, Any]],
    total: Optional[int] = None,
    aggregations: Optional[Dict[str, Any]] = None,
    scroll_id: Optional[str] = None,
) -> StoreResponse:
    body: Dict[str, Any] = {
        "hits": {
            "total": {"value": len(documents) if total is None else total, "relation": "eq"},
            "hits": [{"_id": doc["id"], "_source": doc} for doc in documents],
        }
    }
    if aggregations is not None:
        body["aggregations"] = aggregations
    if scroll_id is not None:
        body["_scroll_id"] = scroll_id
    return ok(body)


# ============================================================================
# FAUX STORE
# ============================================================================

class FakeStore:
    """Store enregistrant les appels ; réponses servies dans l'ordre par méthode."""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.responses: Dict[str, List[StoreResponse]] = {}

    def queue(self, method: str, *responses: StoreResponse) -> "FakeStore":
        self.responses.setdefault(method, []).extend(responses)
        return self

    def calls_to(self, method: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["method"] == method]

    def _next(self, method: str, **kwargs) -> StoreResponse:
        self.calls.append({"method": method, **kwargs})
        queued = self.responses.get(method)
        if queued:
            return queued.pop(0)
        if method == "count":
            return ok({"count": 0})
        if method in ("search", "scroll"):
            return hits([])
        return ok({})

    async def search(self, index, body, *, scroll=None, ignore_unavailable=True):
        return self._next("search", index=index, body=body, scroll=scroll, ignore_unavailable=ignore_unavailable)

    async def scroll(self, scroll_id, scroll):
        return self._next("scroll", scroll_id=scroll_id, scroll=scroll)

    async def clear_scroll(self, scroll_id):
        return self._next("clear_scroll", scroll_id=scroll_id)

    async def count(self, index, body=None, *, ignore_unavailable=True):
        return self._next("count", index=index, body=body, ignore_unavailable=ignore_unavailable)

    async def get(self, index, id):
        return self._next("get", index=index, id=id)

    async def mget(self, docs, index=None):
        return self._next("mget", docs=docs, index=index)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def cache_client():
    return InMemoryCacheClient()
