import pytest
from pydantic import BaseModel

from conftest import failure, hits, ok
from repository_service.config import Settings
from repository_service.core.exceptions import NotSupportedError, StoreRequestError, ValidationError
from repository_service.core.query_executor import QueryExecutor
from repository_service.models.queries import PagingOptions, Query, SortField
from repository_service.models.results import Continuation, FindResults


class Employee(BaseModel):
    id: str
    name: str = ""
    company_id: str = ""
    age: int = 0


class EmployeeRepository(QueryExecutor):
    def __init__(self, store, cache_client=None, **kwargs):
        super().__init__(
            store,
            cache_client,
            index="employees",
            document_model=Employee,
            allowed_facet_fields=("company_id", "age"),
            **kwargs,
        )

    def get_additional_cache_keys(self, documents):
        return [f"count:{doc.company_id}" for doc in documents]


def _employees(count, start=0):
    return [{"id": str(i), "name": f"employee {i}", "company_id": "c1", "age": 20 + i} for i in range(start, start + count)]


# === FIND ===

@pytest.mark.asyncio
async def test_find_rejects_missing_query(store):
    repository = EmployeeRepository(store)

    with pytest.raises(ValidationError):
        await repository.find(None)
    assert store.calls == []


@pytest.mark.asyncio
async def test_find_returns_documents(store):
    store.queue("search", hits(_employees(3)))
    repository = EmployeeRepository(store)

    result = await repository.find(Query().with_filter({"term": {"company_id": "c1"}}))

    assert result.total == 3
    assert [e.id for e in result] == ["0", "1", "2"]
    assert isinstance(result.documents[0], Employee)
    call = store.calls_to("search")[0]
    assert call["index"] == "employees"
    assert call["ignore_unavailable"] is True
    assert call["body"]["query"] == {"bool": {"filter": [{"term": {"company_id": "c1"}}]}}


@pytest.mark.asyncio
async def test_find_targets_explicit_indices(store):
    repository = EmployeeRepository(store)

    await repository.find(Query().with_indices("employees-v1", "employees-v2"))

    assert store.calls_to("search")[0]["index"] == ["employees-v1", "employees-v2"]


@pytest.mark.asyncio
async def test_limit_paging_overfetches_and_sets_has_more(store):
    limit = 5
    store.queue("search", hits(_employees(limit + 1), total=limit + 5))
    repository = EmployeeRepository(store)

    result = await repository.find(Query().with_paging(page=1, limit=limit))

    assert len(result) == limit
    assert result.has_more is True
    assert result.total == limit + 5
    body = store.calls_to("search")[0]["body"]
    assert body["size"] == limit + 1


@pytest.mark.asyncio
async def test_limit_paging_last_page_has_no_more(store):
    store.queue("search", hits(_employees(3), total=8))
    repository = EmployeeRepository(store)

    result = await repository.find(Query().with_paging(page=2, limit=5))

    assert len(result) == 3
    assert result.has_more is False
    assert store.calls_to("search")[0]["body"]["from"] == 5


@pytest.mark.asyncio
async def test_store_failure_raises_store_request_error(store):
    store.queue("search", failure(status=503))
    repository = EmployeeRepository(store)

    with pytest.raises(StoreRequestError) as exc_info:
        await repository.find(Query())
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_network_failure_carries_cause(store):
    cause = ConnectionError("refused")
    store.queue("search", failure(status=0, error=None, exception=cause))
    repository = EmployeeRepository(store)

    with pytest.raises(StoreRequestError) as exc_info:
        await repository.find(Query())
    assert exc_info.value.__cause__ is cause


# === CACHE ===

@pytest.mark.asyncio
async def test_cached_query_does_not_hit_store_twice(store, cache_client):
    store.queue("search", hits(_employees(2)), hits(_employees(2)))
    repository = EmployeeRepository(store, cache_client)
    query = Query().with_cache_key("company-c1")

    first = await repository.find(query)
    second = await repository.find(query)

    assert len(store.calls_to("search")) == 1
    assert [e.id for e in second] == [e.id for e in first]
    assert isinstance(second.documents[0], Employee)
    assert second.continuation is not None


@pytest.mark.asyncio
async def test_invalidating_document_forces_store_hit(store, cache_client):
    store.queue("search", hits(_employees(2)), hits(_employees(2)))
    repository = EmployeeRepository(store, cache_client)
    query = Query().with_cache_key("company-c1")

    result = await repository.find(query)
    await repository.invalidate_cache(result.documents[0])
    await repository.find(query)

    assert len(store.calls_to("search")) == 2


@pytest.mark.asyncio
async def test_pages_are_cached_separately(store, cache_client):
    store.queue("search", hits(_employees(3), total=6), hits(_employees(3, start=3), total=6))
    repository = EmployeeRepository(store, cache_client)

    await repository.find(Query().with_cache_key("all").with_paging(page=1, limit=2))
    await repository.find(Query().with_cache_key("all").with_paging(page=2, limit=2))

    assert len(store.calls_to("search")) == 2
    assert "employee:all:1" in cache_client.keys()
    assert "employee:all:2" in cache_client.keys()


@pytest.mark.asyncio
async def test_disable_cache(store, cache_client):
    repository = EmployeeRepository(store, cache_client)
    repository.disable_cache()
    query = Query().with_cache_key("company-c1")

    await repository.find(query)
    await repository.find(query)

    assert repository.is_cache_enabled is False
    assert len(store.calls_to("search")) == 2


# === CONTINUATION ===

@pytest.mark.asyncio
async def test_fetch_next_requests_next_page_without_mutating_query(store):
    store.queue("search", hits(_employees(3), total=6), hits(_employees(3, start=3), total=6))
    repository = EmployeeRepository(store)
    query = Query().with_paging(page=1, limit=2)

    first = await repository.find(query)
    second = await repository.fetch_next(first)

    assert [e.id for e in second] == ["3", "4"]
    assert query.paging.page == 1
    assert store.calls_to("search")[1]["body"]["from"] == 2
    assert second.continuation.page == 2


@pytest.mark.asyncio
async def test_fetch_next_without_paging_returns_empty(store):
    repository = EmployeeRepository(store)

    result = await repository.fetch_next(Continuation(query=Query()))

    assert result.documents == []
    assert store.calls == []


@pytest.mark.asyncio
async def test_fetch_next_without_continuation_returns_empty(store):
    repository = EmployeeRepository(store)

    assert (await repository.fetch_next(FindResults())).documents == []


@pytest.mark.asyncio
async def test_snapshot_paging_uses_cursor_and_bypasses_cache(store, cache_client):
    store.queue("search", hits(_employees(2), total=5, scroll_id="cursor-1"))
    store.queue("scroll", hits(_employees(2, start=2), total=5, scroll_id="cursor-1"))
    repository = EmployeeRepository(store, cache_client)
    query = Query().with_cache_key("snapshot").with_paging(limit=2).with_snapshot_paging()

    first = await repository.find(query)
    second = await repository.fetch_next(first)

    assert first.cursor_token == "cursor-1"
    assert store.calls_to("search")[0]["scroll"] == "2m"
    assert [e.id for e in second] == ["2", "3"]
    assert second.total == 5
    assert store.calls_to("scroll")[0] == {"method": "scroll", "scroll_id": "cursor-1", "scroll": "2m"}
    assert cache_client.keys() == []


@pytest.mark.asyncio
async def test_snapshot_paging_advances_empty_scan_cursor(store):
    store.queue("search", hits([], total=4, scroll_id="scan-1"))
    store.queue("scroll", hits(_employees(2), total=0, scroll_id="scan-1"))
    repository = EmployeeRepository(store)

    result = await repository.find(Query().with_paging(limit=2).with_snapshot_paging())

    assert len(result) == 2
    assert result.total == 4
    assert result.cursor_token == "scan-1"


# === FIND ONE / EXISTS / COUNT ===

@pytest.mark.asyncio
async def test_find_one(store):
    store.queue("search", hits(_employees(1)))
    repository = EmployeeRepository(store)

    employee = await repository.find_one(Query().with_id("0"))

    assert employee.id == "0"
    assert store.calls_to("search")[0]["body"]["size"] == 1


@pytest.mark.asyncio
async def test_exists(store):
    store.queue("search", hits([], total=1))
    repository = EmployeeRepository(store)

    assert await repository.exists_by_id("0") is True
    body = store.calls_to("search")[0]["body"]
    assert body["size"] == 1
    assert body["_source"] is False
    assert await repository.exists_by_id("") is False


@pytest.mark.asyncio
async def test_count_is_cached_under_count_prefix(store, cache_client):
    store.queue("count", ok({"count": 12}))
    repository = EmployeeRepository(store, cache_client)
    query = Query().with_cache_key("c1")

    assert await repository.count(query) == 12
    assert await repository.count(query) == 12

    assert len(store.calls_to("count")) == 1
    assert "employee:count:c1" in cache_client.keys()


@pytest.mark.asyncio
async def test_additional_cache_keys_are_invalidated(store, cache_client):
    store.queue("count", ok({"count": 12}), ok({"count": 13}))
    repository = EmployeeRepository(store, cache_client)
    query = Query().with_cache_key("c1")

    await repository.count(query)
    await repository.invalidate_cache([Employee(id="9", company_id="c1")])

    assert await repository.count(query) == 13


@pytest.mark.asyncio
async def test_count_failure_raises(store):
    store.queue("count", failure(status=500))
    repository = EmployeeRepository(store)

    with pytest.raises(StoreRequestError):
        await repository.count(Query())


# === PAR IDENTIFIANT ===

@pytest.mark.asyncio
async def test_get_by_id_uses_cache_when_asked(store, cache_client):
    store.queue("get", ok({"_id": "7", "found": True, "_source": {"name": "Blake"}}))
    repository = EmployeeRepository(store, cache_client)

    first = await repository.get_by_id("7", use_cache=True)
    second = await repository.get_by_id("7", use_cache=True)

    assert first.id == "7"
    assert second.name == "Blake"
    assert len(store.calls_to("get")) == 1


@pytest.mark.asyncio
async def test_get_by_id_not_found(store):
    store.queue("get", ok({"_id": "7", "found": False}, status=404))
    repository = EmployeeRepository(store)

    assert await repository.get_by_id("7") is None
    assert await repository.get_by_id(None) is None


@pytest.mark.asyncio
async def test_get_by_ids_combines_cache_and_multi_get(store, cache_client):
    store.queue(
        "mget",
        ok({"docs": [{"_id": "2", "found": True, "_source": {"name": "two"}}, {"_id": "3", "found": False}]}),
    )
    repository = EmployeeRepository(store, cache_client)
    await repository.cache.set_by_id("1", {"id": "1", "name": "one"})

    result = await repository.get_by_ids(["1", "2", "3", "1"], use_cache=True)

    assert sorted(e.id for e in result) == ["1", "2"]
    assert result.total == 2
    assert [d["_id"] for d in store.calls_to("mget")[0]["docs"]] == ["2", "3"]


@pytest.mark.asyncio
async def test_get_by_ids_requires_identity(store):
    repository = QueryExecutor(store, index="logs", has_identity=False)

    with pytest.raises(NotSupportedError):
        await repository.get_by_ids(["1"])
    assert (await repository.get_by_ids([])).documents == []


# === RACCOURCIS ET FACETTES ===

@pytest.mark.asyncio
async def test_get_all_applies_sort_and_paging(store):
    repository = EmployeeRepository(store)

    await repository.get_all(sort=[SortField(field="age")], paging=PagingOptions(page=1, limit=10))

    body = store.calls_to("search")[0]["body"]
    assert body["sort"] == [{"age": {"order": "asc"}}]
    assert body["size"] == 11


@pytest.mark.asyncio
async def test_get_by_search_builds_filters(store):
    repository = EmployeeRepository(store)

    await repository.get_by_search("company_id:c1", "age:>30", "blake", facets=["age"])

    query = store.calls_to("search")[0]["body"]["query"]["bool"]
    assert query["filter"][0]["query_string"]["query"] == "company_id:c1"
    assert query["filter"][1]["query_string"]["query"] == "age:>30"
    assert query["must"][0]["query_string"]["query"] == "blake"


@pytest.mark.asyncio
async def test_get_facets(store):
    store.queue(
        "search",
        hits([], total=3, aggregations={"facet_age": {"buckets": [{"key": 30, "doc_count": 2}, {"key": 40, "doc_count": 1}]}}),
    )
    repository = EmployeeRepository(store)

    facets = await repository.get_facets(Query().with_facets("age"))

    assert facets[0].field == "age"
    assert [(t.term, t.total) for t in facets[0].terms] == [(30, 2), (40, 1)]
    assert store.calls_to("search")[0]["body"]["size"] == 0


@pytest.mark.asyncio
async def test_get_facets_validation(store):
    repository = EmployeeRepository(store)

    with pytest.raises(ValidationError):
        await repository.get_facets(Query())
    with pytest.raises(ValidationError):
        await repository.get_facets(Query().with_facets("salary"))
    assert store.calls == []


@pytest.mark.asyncio
async def test_cache_disabled_by_settings(store, cache_client):
    repository = EmployeeRepository(store, cache_client, settings=Settings(CACHE_ENABLED=False))

    assert repository.is_cache_enabled is False


@pytest.mark.asyncio
async def test_invalidate_cache_by_ids(store, cache_client):
    store.queue("search", hits(_employees(2)), hits(_employees(2)))
    repository = EmployeeRepository(store, cache_client)
    query = Query().with_cache_key("company-c1")

    await repository.find(query)
    assert await repository.invalidate_cache_by_ids(["", "1"]) > 0
    await repository.find(query)

    assert len(store.calls_to("search")) == 2


@pytest.mark.asyncio
async def test_count_all_targets_alias(store):
    store.queue("count", ok({"count": 7}))
    repository = EmployeeRepository(store)

    assert await repository.count_all() == 7
    call = store.calls_to("count")[0]
    assert call["index"] == "employees"
    assert call["body"] is None


@pytest.mark.asyncio
async def test_find_and_find_one_share_cache_key_without_collision(store, cache_client):
    store.queue("search", hits(_employees(2)), hits(_employees(1)))
    repository = EmployeeRepository(store, cache_client)
    query = Query().with_cache_key("company-c1")

    await repository.find(query)
    employee = await repository.find_one(query)
    cached = await repository.find_one(query)

    assert isinstance(employee, Employee)
    assert employee.id == "0"
    assert cached == employee
    assert len(store.calls_to("search")) == 2
    assert "employee:one:company-c1" in cache_client.keys()


@pytest.mark.asyncio
async def test_unpaged_find_flags_truncated_results(store):
    repository = EmployeeRepository(store)
    store.queue("search", hits(_employees(3), total=1500), hits(_employees(3)))

    truncated = await repository.find(Query())
    complete = await repository.find(Query())

    assert store.calls_to("search")[0]["body"]["size"] == repository.settings.MAX_PAGE_LIMIT
    assert truncated.total == 1500
    assert truncated.has_more is True
    assert complete.has_more is False


@pytest.mark.asyncio
async def test_exhausted_cursor_is_cleared(store):
    store.queue("search", hits(_employees(2), total=2, scroll_id="cursor-1"))
    store.queue("scroll", hits([], total=2, scroll_id="cursor-1"))
    repository = EmployeeRepository(store)

    first = await repository.find(Query().with_paging(limit=2).with_snapshot_paging())
    second = await repository.fetch_next(first)
    third = await repository.fetch_next(second)

    assert second.documents == []
    assert second.total == 2
    assert second.continuation is None
    assert third.documents == []
    assert store.calls_to("clear_scroll") == [{"method": "clear_scroll", "scroll_id": "cursor-1"}]
    assert len(store.calls_to("scroll")) == 1


@pytest.mark.asyncio
async def test_invalidating_document_drops_cached_exists(store, cache_client):
    store.queue("search", hits(_employees(1)), hits([], total=0))
    repository = EmployeeRepository(store, cache_client)
    query = Query().with_cache_key("has-0")

    assert await repository.exists(query) is True
    assert await repository.exists(query) is True
    await repository.invalidate_cache(Employee(id="0"))

    assert await repository.exists(query) is False
    assert len(store.calls_to("search")) == 2
