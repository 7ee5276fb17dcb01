"""
Gestion du cycle de vie des index
=================================

Chaque index logique est exposé derrière un alias stable ; l'index physique
porte la version (``{alias}-v{version}``). ``configure`` est idempotent :

1. lit les membres actuels de l'alias et en déduit la version servie
2. crée l'index (PLAIN) ou publie le template (TEMPLATED) de la version cible
3. rattache l'alias uniquement s'il n'a encore aucun membre
4. si ``1 <= version courante < version cible``, met en file une demande de
   reindexation, au plus une fois grâce au verrou
   ``reindex:{alias}:{ancien}:{nouveau}`` (aussi détenu par le job de reindexation)
"""

from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from repository_service.clients.elasticsearch_client import StoreResponse
from repository_service.clients.lock_provider import LockProvider
from repository_service.clients.work_queue import WorkItemQueue
from repository_service.config import settings
from repository_service.models.indexes import IndexDescriptor, IndexKind, ReindexWorkItem
from repository_service.utils.logging import get_logger
from .exceptions import StoreRequestError

logger = get_logger(__name__)

ALREADY_EXISTS_ERRORS = {"resource_already_exists_exception", "index_already_exists_exception"}

EnsureHandler = Callable[[IndexDescriptor, bool], Awaitable[None]]
DeleteHandler = Callable[[IndexDescriptor], Awaitable[None]]


def reindex_lock_name(item: ReindexWorkItem) -> str:
    return f"reindex:{item.alias}:{item.old_index}:{item.new_index}"


def parse_index_version(alias: str, index_name: str) -> int:
    """Version portée par le nom d'index (``-v{n}``), -1 si illisible."""
    versioned_prefix = f"{alias}-v"
    if index_name.startswith(versioned_prefix):
        # Index issus d'un template : {alias}-v{n}-{suffixe}
        version = index_name[len(versioned_prefix):].split("-", 1)[0]
    else:
        position = index_name.rfind("-")
        version = index_name[position + 2:] if position >= 0 else ""
    # int() accepterait "+1", " 1" ou "1_0"
    if not (version.isascii() and version.isdigit()):
        return -1
    return int(version)


class IndexLifecycleManager:
    """Création des index versionnés, alias et déclenchement des reindexations."""

    def __init__(
        self,
        store,
        lock_provider: LockProvider,
        work_queue: WorkItemQueue,
        *,
        lock_ttl: Optional[float] = None,
    ):
        self.store = store
        self.lock_provider = lock_provider
        self.work_queue = work_queue
        self.lock_ttl = lock_ttl if lock_ttl is not None else settings.REINDEX_LOCK_TTL_SECONDS

        self._ensure_handlers: Dict[IndexKind, EnsureHandler] = {
            IndexKind.PLAIN: self._ensure_plain_index,
            IndexKind.TEMPLATED: self._ensure_templated_index,
        }
        self._delete_handlers: Dict[IndexKind, DeleteHandler] = {
            IndexKind.PLAIN: self._delete_plain_index,
            IndexKind.TEMPLATED: self._delete_templated_index,
        }

    reindex_lock_name = staticmethod(reindex_lock_name)

    # === CONFIGURATION ===

    async def configure(self, indices: Iterable[IndexDescriptor]) -> List[ReindexWorkItem]:
        """Configure chaque index ; retourne les demandes de reindexation mises en file."""
        enqueued: List[ReindexWorkItem] = []

        for descriptor in indices:
            members = await self.get_alias_members(descriptor.alias_name)
            current_version = parse_index_version(descriptor.alias_name, members[0]) if members else -1
            logger.info(
                f"Configuring index {descriptor.alias_name}: current version {current_version}, "
                f"target version {descriptor.version}"
            )

            await self._ensure_handlers[descriptor.kind](descriptor, not members)

            # Déjà à jour, ou aucun index versionné existant à migrer
            if current_version >= descriptor.version or current_version < 1:
                continue

            item = ReindexWorkItem(
                old_index=f"{descriptor.alias_name}-v{current_version}",
                new_index=descriptor.versioned_name,
                alias=descriptor.alias_name,
                delete_old=True,
                parent_maps=descriptor.parent_maps(),
            )
            if await self._enqueue_reindex(item):
                enqueued.append(item)

        return enqueued

    async def _enqueue_reindex(self, item: ReindexWorkItem) -> bool:
        lock_name = reindex_lock_name(item)
        if await self.lock_provider.is_locked(lock_name):
            logger.info(f"Reindex {item.old_index} -> {item.new_index} already in progress, skipping")
            return False

        async def _enqueue() -> None:
            await self.work_queue.enqueue(item)

        enqueued = await self.lock_provider.try_using(lock_name, _enqueue, self.lock_ttl)
        if enqueued:
            logger.info(f"Reindex {item.old_index} -> {item.new_index} enqueued for alias {item.alias}")
        else:
            logger.info(f"Reindex {item.old_index} -> {item.new_index} locked by another process, skipping")
        return enqueued

    async def _ensure_plain_index(self, descriptor: IndexDescriptor, bind_alias: bool) -> None:
        name = descriptor.versioned_name
        exists = self._check(await self.store.index_exists(name), "index check failed")
        if exists.status == 200:
            if bind_alias:
                await self._add_alias([name], descriptor.alias_name)
            return

        body = dict(descriptor.definition)
        if bind_alias:
            body["aliases"] = {**body.get("aliases", {}), descriptor.alias_name: {}}
        response = await self.store.create_index(name, body)
        if not response.is_valid and response.error_type in ALREADY_EXISTS_ERRORS:
            logger.debug(f"Index {name} created concurrently")
            if bind_alias:
                await self._add_alias([name], descriptor.alias_name)
            return
        self._check(response, f"An error occurred creating the index {name}.")
        logger.info(f"Index {name} created")

    async def _ensure_templated_index(self, descriptor: IndexDescriptor, bind_alias: bool) -> None:
        template = dict(descriptor.definition)
        template["aliases"] = {**template.get("aliases", {}), descriptor.alias_name: {}}
        body = {"index_patterns": [descriptor.template_pattern], "template": template}
        self._check(
            await self.store.put_index_template(descriptor.versioned_name, body),
            f"An error occurred creating the template {descriptor.versioned_name}.",
        )
        logger.info(f"Index template {descriptor.versioned_name} published")

        if bind_alias:
            listed = self._check(await self.store.list_indices(descriptor.template_pattern), "index listing failed")
            if listed.body:
                await self._add_alias(listed.body, descriptor.alias_name)

    async def _add_alias(self, indices: List[str], alias: str) -> None:
        actions = [{"add": {"index": name, "alias": alias}} for name in indices]
        self._check(await self.store.update_aliases(actions), f"An error occurred creating the alias {alias}.")
        logger.info(f"Alias {alias} bound to {', '.join(indices)}")

    # === SUPPRESSION ===

    async def delete_indexes(self, indices: Iterable[IndexDescriptor]) -> None:
        for descriptor in indices:
            await self._delete_handlers[descriptor.kind](descriptor)

    async def _delete_plain_index(self, descriptor: IndexDescriptor) -> None:
        self._check(
            await self.store.delete_index(descriptor.versioned_name),
            "An error occurred deleting the indexes.",
        )

    async def _delete_templated_index(self, descriptor: IndexDescriptor) -> None:
        self._check(
            await self.store.delete_index(descriptor.template_pattern),
            "An error occurred deleting the indexes.",
        )
        exists = self._check(
            await self.store.index_template_exists(descriptor.versioned_name), "template check failed"
        )
        if exists.status == 200:
            self._check(
                await self.store.delete_index_template(descriptor.versioned_name),
                "An error occurred deleting the index template.",
            )

    # === VERSION ===

    async def get_alias_members(self, alias: str) -> List[str]:
        response = self._check(await self.store.get_alias(alias), "alias lookup failed")
        return list((response.body or {}).keys())

    async def get_alias_version(self, alias: str) -> int:
        """Version de l'index servi par l'alias, -1 si l'alias est absent ou non versionné."""
        members = await self.get_alias_members(alias)
        if not members:
            return -1
        return parse_index_version(alias, members[0])

    @staticmethod
    def _check(response: StoreResponse, message: str) -> StoreResponse:
        if not response.is_valid:
            raise StoreRequestError.from_response(response, f"{message} {response.error_reason}".strip())
        return response


__all__ = ["IndexLifecycleManager", "parse_index_version", "reindex_lock_name"]
