"""Level adapters: one per entity kind of the inventory hierarchy.

Each adapter knows its level's scope, composite key and how to resolve foreign
keys against the already reconciled mapping of its parent level.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

from pbsinventory.domain.errors import ReferentialError
from pbsinventory.domain.model import (
    Archive,
    Chunk,
    Datastore,
    FileArchive,
    Group,
    ImageArchive,
    InventoryEntity,
    MetadataEnvelope,
    Namespace,
    Snapshot,
)

from .keys import (
    archive_key,
    chunk_key,
    datastore_key,
    group_key,
    namespace_key,
    snapshot_key,
)

if TYPE_CHECKING:
    from collections.abc import Collection, Mapping, Sequence
    from datetime import datetime

    from pbsinventory.domain.ports.persistence import ReconcileStore, Relations, Scope
    from pbsinventory.domain.scan import (
        RawArchive,
        RawChunk,
        RawDatastore,
        RawGroup,
        RawNamespace,
        RawSnapshot,
    )

    from .keys import Key


def apply_field(entity: object, name: str, value: Any) -> bool:
    """Set ``name`` when ``value`` is supplied and differs; omission keeps the stored value."""

    if value is None or getattr(entity, name) == value:
        return False
    setattr(entity, name, value)
    return True


class BaseLevelAdapter[T: InventoryEntity, R](ABC):
    """Persistence verbs shared by all levels; subclasses supply scope and keys."""

    entity_type: type[T]
    key_columns: ClassVar[tuple[str, ...]]
    relations: ClassVar[Relations] = {}
    lock: ClassVar[bool] = False

    @property
    def level(self) -> str:
        return self.entity_type.LEVEL

    @property
    @abstractmethod
    def scope(self) -> Scope: ...

    def load(self, store: ReconcileStore) -> Sequence[T]:
        return store.find(
            self.entity_type, scope=self.scope, relations=self.relations, lock=self.lock
        )

    @abstractmethod
    def entity_key(self, entity: T) -> Key: ...

    @abstractmethod
    def raw_key(self, raw: R) -> Key: ...

    @abstractmethod
    def create(self, raw: R) -> T: ...

    def update(self, entity: T, raw: R) -> bool:
        _ = entity, raw
        return False

    def mark(self, entity: T, as_of: datetime, *, changed: bool) -> None:
        if entity.metadata is None:
            entity.metadata = MetadataEnvelope.new(as_of)
            return
        entity.metadata.touch(as_of, changed=changed)

    def assign_id(self, entity: T, entity_id: int) -> None:
        entity.id = entity_id

    def sweep(self, store: ReconcileStore, as_of: datetime) -> int:
        return store.sweep(self.entity_type, scope=self.scope, as_of=as_of)


class DatastoreAdapter(BaseLevelAdapter[Datastore, "RawDatastore"]):
    """Datastores of one host.

    With ``mountpoints`` the scan is partial: only those datastores may be swept and
    the relevant mapping is restricted to them.
    """

    entity_type = Datastore
    key_columns = ("host_id", "mountpoint")

    def __init__(self, host_id: int, mountpoints: Collection[str] | None = None) -> None:
        self.host_id = host_id
        self.mountpoints = (
            None if mountpoints is None else frozenset(m.rstrip("/") for m in mountpoints)
        )

    @property
    def scope(self) -> Scope:
        return {"host_id": self.host_id}

    def in_scope(self, mountpoint: str) -> bool:
        return self.mountpoints is None or mountpoint in self.mountpoints

    def entity_key(self, entity: Datastore) -> Key:
        return datastore_key(entity.host_id, entity.mountpoint)

    def raw_key(self, raw: RawDatastore) -> Key:
        return datastore_key(self.host_id, raw.mountpoint)

    def create(self, raw: RawDatastore) -> Datastore:
        return Datastore(host_id=self.host_id, name=raw.name, mountpoint=raw.mountpoint)

    def update(self, entity: Datastore, raw: RawDatastore) -> bool:
        return apply_field(entity, "name", raw.name)

    def sweep(self, store: ReconcileStore, as_of: datetime) -> int:
        scope: dict[str, Any] = dict(self.scope)
        if self.mountpoints is not None:
            scope["mountpoint"] = self.mountpoints
        return store.sweep(Datastore, scope=scope, as_of=as_of)

    def existing(self, mapping: Mapping[Key, Datastore]) -> dict[Key, Datastore]:
        return {key: entity for key, entity in mapping.items() if not entity.is_deleted}

    def relevant(self, mapping: Mapping[Key, Datastore]) -> dict[Key, Datastore]:
        if self.mountpoints is None:
            return dict(mapping)
        return {key: entity for key, entity in mapping.items() if self.in_scope(entity.mountpoint)}


class NamespaceAdapter(BaseLevelAdapter[Namespace, "RawNamespace"]):
    entity_type = Namespace
    key_columns = ("datastore_id", "path")

    def __init__(self, datastore: Datastore) -> None:
        self.datastore = datastore

    @property
    def scope(self) -> Scope:
        return {"datastore_id": self.datastore.persisted_id}

    def entity_key(self, entity: Namespace) -> Key:
        return namespace_key(entity.datastore_id, entity.path)

    def raw_key(self, raw: RawNamespace) -> Key:
        return namespace_key(self.datastore.persisted_id, raw.path)

    def create(self, raw: RawNamespace) -> Namespace:
        return Namespace(datastore_id=self.datastore.persisted_id, name=raw.name, path=raw.path)

    def wire_self_reference(self, entity: Namespace, mapping: Mapping[Key, Namespace]) -> bool:
        parent_path = entity.parent_path
        if parent_path is None:
            return False
        parent = mapping.get(namespace_key(entity.datastore_id, parent_path))
        if parent is None or parent.id is None:
            return False
        entity.parent = parent
        if entity.parent_id == parent.id:
            return False
        entity.parent_id = parent.id
        return True


class GroupAdapter(BaseLevelAdapter[Group, "RawGroup"]):
    entity_type = Group
    key_columns = ("datastore_id", "namespace_path", "backup_type", "backup_id")

    def __init__(self, datastore: Datastore, namespaces: Mapping[Key, Namespace]) -> None:
        self.datastore = datastore
        self.namespaces = namespaces

    @property
    def scope(self) -> Scope:
        return {"datastore_id": self.datastore.persisted_id}

    def entity_key(self, entity: Group) -> Key:
        return group_key(
            self.datastore.mountpoint,
            entity.namespace_path or None,
            entity.backup_type,
            entity.backup_id,
        )

    def raw_key(self, raw: RawGroup) -> Key:
        return group_key(
            self.datastore.mountpoint, raw.namespace_path, raw.backup_type, raw.backup_id
        )

    def _resolve_namespace(self, raw: RawGroup) -> Namespace | None:
        if not raw.namespace_path:
            return None
        key = namespace_key(self.datastore.persisted_id, raw.namespace_path)
        namespace = self.namespaces.get(key)
        if namespace is None:
            raise ReferentialError(self.level, key, "unknown namespace")
        return namespace

    def create(self, raw: RawGroup) -> Group:
        namespace = self._resolve_namespace(raw)
        return Group(
            datastore_id=self.datastore.persisted_id,
            namespace_id=None if namespace is None else namespace.persisted_id,
            namespace_path=raw.namespace_path or "",
            namespace=namespace,
            backup_type=raw.backup_type,
            backup_id=raw.backup_id,
        )

    def update(self, entity: Group, raw: RawGroup) -> bool:
        namespace = self._resolve_namespace(raw)
        entity.namespace = namespace
        if namespace is None:
            return False
        return apply_field(entity, "namespace_id", namespace.persisted_id)


class SnapshotAdapter(BaseLevelAdapter[Snapshot, "RawSnapshot"]):
    entity_type = Snapshot
    key_columns = ("group_id", "time")
    relations: ClassVar[Relations] = {"group": {}}

    def __init__(self, datastore: Datastore, groups: Mapping[Key, Group]) -> None:
        self.datastore = datastore
        self.groups = groups

    @property
    def scope(self) -> Scope:
        return {"datastore_id": self.datastore.persisted_id}

    def _group_key(self, group: Group | None) -> Key:
        if group is None:
            raise ReferentialError(self.level, "?", "snapshot loaded without its group")
        return group_key(
            self.datastore.mountpoint,
            group.namespace_path or None,
            group.backup_type,
            group.backup_id,
        )

    def entity_key(self, entity: Snapshot) -> Key:
        return snapshot_key(self._group_key(entity.group), entity.time)

    def raw_key(self, raw: RawSnapshot) -> Key:
        return raw.key

    def create(self, raw: RawSnapshot) -> Snapshot:
        key = raw.group.key
        group = self.groups.get(key)
        if group is None:
            raise ReferentialError(self.level, key, "unknown group")
        return Snapshot(
            datastore_id=self.datastore.persisted_id,
            group_id=group.persisted_id,
            group=group,
            time=raw.time,
        )


class ArchiveAdapter[A: Archive](BaseLevelAdapter[A, "RawArchive"]):
    """Shared rules of file and image archives; rows are locked while reconciling."""

    key_columns = ("snapshot_id", "kind", "name")
    relations: ClassVar[Relations] = {"snapshot": {"group": {}}}
    lock = True

    def __init__(self, datastore: Datastore, snapshots: Mapping[Key, Snapshot]) -> None:
        self.datastore = datastore
        self.snapshots = snapshots

    @property
    def scope(self) -> Scope:
        return {"datastore_id": self.datastore.persisted_id}

    def entity_key(self, entity: A) -> Key:
        snapshot = entity.snapshot
        if snapshot is None or snapshot.group is None:
            raise ReferentialError(self.level, entity.name, "archive loaded without its snapshot")
        group = snapshot.group
        parent = snapshot_key(
            group_key(
                self.datastore.mountpoint,
                group.namespace_path or None,
                group.backup_type,
                group.backup_id,
            ),
            snapshot.time,
        )
        return archive_key(parent, entity.kind, entity.name)

    def raw_key(self, raw: RawArchive) -> Key:
        return raw.key

    def _resolve_snapshot(self, raw: RawArchive) -> Snapshot:
        key = raw.snapshot.key
        snapshot = self.snapshots.get(key)
        if snapshot is None:
            raise ReferentialError(self.level, key, "unknown snapshot")
        return snapshot

    def create(self, raw: RawArchive) -> A:
        snapshot = self._resolve_snapshot(raw)
        entity = self.entity_type(
            datastore_id=self.datastore.persisted_id,
            snapshot_id=snapshot.persisted_id,
            snapshot=snapshot,
            name=raw.name,
        )
        self.update(entity, raw)
        return entity

    def update(self, entity: A, raw: RawArchive) -> bool:
        changed = False
        for name in ("uuid", "index_created_at", "checksum"):
            changed = apply_field(entity, name, getattr(raw, name)) or changed
        if raw.index_parsed:
            changed = apply_field(entity, "index_parsed", True) or changed
        return changed


class FileArchiveAdapter(ArchiveAdapter[FileArchive]):
    entity_type = FileArchive


class ImageArchiveAdapter(ArchiveAdapter[ImageArchive]):
    entity_type = ImageArchive

    def update(self, entity: ImageArchive, raw: RawArchive) -> bool:
        changed = super().update(entity, raw)
        changed = apply_field(entity, "size_bytes", raw.size_bytes) or changed
        return apply_field(entity, "chunk_size_bytes", raw.chunk_size_bytes) or changed


class ChunkAdapter(BaseLevelAdapter[Chunk, "RawChunk"]):
    entity_type = Chunk
    key_columns = ("datastore_id", "digest")

    def __init__(self, datastore: Datastore) -> None:
        self.datastore = datastore

    @property
    def scope(self) -> Scope:
        return {"datastore_id": self.datastore.persisted_id}

    def entity_key(self, entity: Chunk) -> Key:
        return chunk_key(entity.datastore_id, entity.digest)

    def raw_key(self, raw: RawChunk) -> Key:
        return chunk_key(self.datastore.persisted_id, raw.digest)

    def create(self, raw: RawChunk) -> Chunk:
        return Chunk(
            datastore_id=self.datastore.persisted_id,
            digest=raw.digest,
            size_bytes=raw.size_bytes,
        )

    def update(self, entity: Chunk, raw: RawChunk) -> bool:
        return apply_field(entity, "size_bytes", raw.size_bytes)
