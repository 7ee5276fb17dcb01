import fnmatch

import pytest

from conftest import failure, ok
from repository_service.clients.lock_provider import InMemoryLockProvider
from repository_service.clients.work_queue import InMemoryWorkItemQueue
from repository_service.core.exceptions import StoreRequestError
from repository_service.core.index_manager import IndexLifecycleManager, parse_index_version, reindex_lock_name
from repository_service.models.indexes import IndexDescriptor, IndexKind, IndexType, ReindexWorkItem


class FakeIndexStore:
    """Store en mémoire : index physiques, alias et templates."""

    def __init__(self):
        self.indices = {}
        self.templates = {}
        self.calls = []

    def add_index(self, name, *aliases):
        self.indices[name] = set(aliases)

    def members(self, alias):
        return [name for name, aliases in self.indices.items() if alias in aliases]

    async def get_alias(self, name):
        self.calls.append(("get_alias", name))
        return ok({index: {"aliases": {name: {}}} for index in self.members(name)})

    async def index_exists(self, name):
        self.calls.append(("index_exists", name))
        return ok(status=200 if name in self.indices else 404)

    async def create_index(self, name, body):
        self.calls.append(("create_index", name, body))
        if name in self.indices:
            return failure(400, {"type": "resource_already_exists_exception", "reason": "exists"})
        self.add_index(name, *body.get("aliases", {}))
        return ok({"acknowledged": True})

    async def put_index_template(self, name, body):
        self.calls.append(("put_index_template", name, body))
        self.templates[name] = body
        return ok({"acknowledged": True})

    async def index_template_exists(self, name):
        return ok(status=200 if name in self.templates else 404)

    async def delete_index_template(self, name):
        self.calls.append(("delete_index_template", name))
        self.templates.pop(name, None)
        return ok({"acknowledged": True})

    async def list_indices(self, pattern):
        return ok(sorted(name for name in self.indices if fnmatch.fnmatch(name, pattern)))

    async def update_aliases(self, actions):
        self.calls.append(("update_aliases", actions))
        for action in actions:
            add = action["add"]
            self.indices[add["index"]].add(add["alias"])
        return ok({"acknowledged": True})

    async def delete_index(self, name):
        self.calls.append(("delete_index", name))
        for index in [i for i in self.indices if fnmatch.fnmatch(i, name)]:
            del self.indices[index]
        return ok({"acknowledged": True})


@pytest.fixture
def index_store():
    return FakeIndexStore()


@pytest.fixture
def lock_provider():
    return InMemoryLockProvider()


@pytest.fixture
def work_queue():
    return InMemoryWorkItemQueue()


@pytest.fixture
def manager(index_store, lock_provider, work_queue):
    return IndexLifecycleManager(index_store, lock_provider, work_queue, lock_ttl=30)


def _employees(version, **kwargs):
    return IndexDescriptor(alias_name="employees", version=version, **kwargs)


# === CONFIGURATION ===

@pytest.mark.asyncio
async def test_configure_creates_versioned_index_with_alias(manager, index_store, work_queue):
    enqueued = await manager.configure([_employees(1, definition={"mappings": {"properties": {}}})])

    assert enqueued == []
    assert index_store.members("employees") == ["employees-v1"]
    assert await manager.get_alias_version("employees") == 1
    create = [c for c in index_store.calls if c[0] == "create_index"][0]
    assert create[2]["mappings"] == {"properties": {}}
    assert len(work_queue) == 0


@pytest.mark.asyncio
async def test_configure_is_idempotent(manager, index_store):
    await manager.configure([_employees(1)])
    await manager.configure([_employees(1)])

    assert index_store.members("employees") == ["employees-v1"]
    assert len([c for c in index_store.calls if c[0] == "create_index"]) == 1


@pytest.mark.asyncio
async def test_configure_binds_alias_to_existing_unaliased_index(manager, index_store):
    index_store.add_index("employees-v1")

    await manager.configure([_employees(1)])

    assert index_store.members("employees") == ["employees-v1"]


@pytest.mark.asyncio
async def test_configure_enqueues_single_reindex(manager, index_store, work_queue, lock_provider):
    index_store.add_index("employees-v1", "employees")
    descriptor = _employees(
        2, types=[IndexType(name="employee"), IndexType(name="review", parent_path="employee_id")]
    )

    enqueued = await manager.configure([descriptor])

    assert len(enqueued) == 1
    item = enqueued[0]
    assert (item.old_index, item.new_index, item.alias, item.delete_old) == (
        "employees-v1",
        "employees-v2",
        "employees",
        True,
    )
    assert work_queue.items == [
        {
            "type": "ReindexWorkItem",
            "data": {
                "OldIndex": "employees-v1",
                "NewIndex": "employees-v2",
                "Alias": "employees",
                "DeleteOld": True,
                "ParentMaps": [{"Type": "review", "ParentPath": "employee_id"}],
            },
        }
    ]
    # Nouvel index créé sans l'alias, qui reste sur v1 jusqu'à la reindexation
    assert "employees-v2" in index_store.indices
    assert index_store.members("employees") == ["employees-v1"]
    assert await lock_provider.is_locked(reindex_lock_name(item)) is False


@pytest.mark.asyncio
async def test_configure_skips_reindex_when_lock_held(manager, work_queue, index_store, lock_provider):
    index_store.add_index("employees-v1", "employees")
    item = ReindexWorkItem(old_index="employees-v1", new_index="employees-v2", alias="employees")
    handle = await lock_provider.acquire(reindex_lock_name(item), ttl=60)

    enqueued = await manager.configure([_employees(2)])

    assert enqueued == []
    assert len(work_queue) == 0
    await lock_provider.release(handle)


@pytest.mark.asyncio
async def test_lock_name_is_scoped_to_alias_and_versions():
    item = ReindexWorkItem(old_index="employees-v1", new_index="employees-v2", alias="employees")

    assert reindex_lock_name(item) == "reindex:employees:employees-v1:employees-v2"
    assert IndexLifecycleManager.reindex_lock_name(item) == reindex_lock_name(item)


@pytest.mark.asyncio
async def test_no_reindex_for_unversioned_alias(manager, index_store, work_queue):
    index_store.add_index("employees-legacy", "employees")

    assert await manager.get_alias_version("employees") == -1
    assert await manager.configure([_employees(2)]) == []
    assert len(work_queue) == 0


@pytest.mark.asyncio
async def test_no_reindex_when_already_newer(manager, index_store, work_queue):
    index_store.add_index("employees-v3", "employees")

    assert await manager.configure([_employees(2)]) == []
    assert len(work_queue) == 0


@pytest.mark.asyncio
async def test_templated_index_publishes_template_and_binds_existing(manager, index_store):
    index_store.add_index("logs-v1-2024.01.01")
    index_store.add_index("logs-v1-2024.01.02")
    index_store.add_index("logs-v10-2024.01.01")
    descriptor = IndexDescriptor(
        alias_name="logs", version=1, kind=IndexKind.TEMPLATED, definition={"settings": {"number_of_shards": 1}}
    )

    await manager.configure([descriptor])

    template = index_store.templates["logs-v1"]
    assert template["index_patterns"] == ["logs-v1-*"]
    assert template["template"]["aliases"] == {"logs": {}}
    assert template["template"]["settings"] == {"number_of_shards": 1}
    assert index_store.members("logs") == ["logs-v1-2024.01.01", "logs-v1-2024.01.02"]
    assert await manager.get_alias_version("logs") == 1


@pytest.mark.asyncio
async def test_store_failure_raises(index_store, lock_provider, work_queue):
    async def broken_get_alias(name):
        return failure(500, {"type": "cluster_block_exception", "reason": "blocked"})

    index_store.get_alias = broken_get_alias
    manager = IndexLifecycleManager(index_store, lock_provider, work_queue)

    with pytest.raises(StoreRequestError):
        await manager.configure([_employees(1)])


# === SUPPRESSION ===

@pytest.mark.asyncio
async def test_delete_plain_index(manager, index_store):
    await manager.configure([_employees(1)])

    await manager.delete_indexes([_employees(1)])

    assert index_store.indices == {}


@pytest.mark.asyncio
async def test_delete_templated_indexes(manager, index_store):
    descriptor = IndexDescriptor(alias_name="logs", version=1, kind=IndexKind.TEMPLATED)
    await manager.configure([descriptor])
    index_store.add_index("logs-v1-2024.01.01", "logs")
    index_store.add_index("other")

    await manager.delete_indexes([descriptor])

    assert list(index_store.indices) == ["other"]
    assert index_store.templates == {}


@pytest.mark.asyncio
async def test_delete_missing_indexes_is_not_an_error(manager):
    await manager.delete_indexes([_employees(4)])


# === VERSION ===

@pytest.mark.parametrize(
    "index_name, expected",
    [
        ("employees-v3", 3),
        ("employees-v12", 12),
        ("employees-v2-2024.01.01", 2),
        ("employees", -1),
        ("employees-legacy", -1),
        ("employees-vx", -1),
        ("employees-v1_0", -1),
        ("employees-v+1", -1),
        ("employees-v 1", -1),
    ],
)
def test_parse_index_version(index_name, expected):
    assert parse_index_version("employees", index_name) == expected


def test_descriptor_rejects_negative_version():
    with pytest.raises(ValueError):
        _employees(-1)
