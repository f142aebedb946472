"""Run every level of a scan in parent-before-child order.

Datastore -> per datastore: Namespace (+ tree wiring) -> Group -> Snapshot ->
Chunk -> {FileArchive, ImageArchive} -> archive/chunk links.
"""

from __future__ import annotations

from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from pbsinventory.domain.errors import InventoryError, ReferentialError
from pbsinventory.domain.model import Chunk
from pbsinventory.domain.scan import ParsedScan

from .archive_chunks import link_archive_chunks
from .contracts import ReconcileOptions
from .engine import reconcile
from .levels import (
    ChunkAdapter,
    DatastoreAdapter,
    FileArchiveAdapter,
    GroupAdapter,
    ImageArchiveAdapter,
    NamespaceAdapter,
    SnapshotAdapter,
)
from .namespace_tree import wire_namespace_parents

if TYPE_CHECKING:
    from collections.abc import Collection, Iterator, Mapping
    from datetime import datetime

    from pbsinventory.domain.model import (
        Archive,
        Datastore,
        FileArchive,
        ImageArchive,
        InventoryEntity,
    )
    from pbsinventory.domain.ports.persistence import InventoryStore

    from .keys import Key
    from .levels import ArchiveAdapter

log = getLogger(__name__)


@dataclass(slots=True)
class SyncReport:
    """Live entities per level after the scan, plus archive/chunk link changes."""

    as_of: datetime
    levels: Counter[str] = field(default_factory=Counter)
    links_inserted: int = 0
    links_updated: int = 0
    links_removed: int = 0

    def record(self, level: str, mapping: Mapping[Key, InventoryEntity]) -> None:
        self.levels[level] += sum(1 for entity in mapping.values() if not entity.is_deleted)


@contextmanager
def _stage(level: str, datastore: Datastore | None = None) -> Iterator[None]:
    try:
        yield
    except InventoryError as exc:
        where = f" of datastore {datastore.mountpoint}" if datastore is not None else ""
        exc.add_note(f"while reconciling level {level!r}{where}")
        raise


def _existed_before(entity: InventoryEntity, as_of: datetime) -> bool:
    return entity.metadata is not None and entity.metadata.created_at < as_of


def _live[T: InventoryEntity](mapping: Mapping[Key, T]) -> list[T]:
    return [entity for entity in mapping.values() if not entity.is_deleted]


def synchronize(
    store: InventoryStore,
    scan: ParsedScan,
    *,
    host_id: int,
    as_of: datetime,
    mountpoints: Collection[str] | None = None,
) -> SyncReport:
    """Reconcile a whole scan against ``store``.

    ``mountpoints`` marks a partial scan of a host: datastores outside it are
    neither swept nor descended into, and a scan that observed one of them is
    rejected. The caller owns the transaction.
    """

    report = SyncReport(as_of=as_of)
    datastore_adapter = DatastoreAdapter(host_id, mountpoints)
    for raw in scan.datastores:
        if not datastore_adapter.in_scope(raw.mountpoint):
            raise ReferentialError(
                datastore_adapter.level, raw.mountpoint, "outside the scanned mountpoints"
            )
    with _stage(datastore_adapter.level):
        datastores = reconcile(
            store,
            scan.datastores,
            as_of,
            datastore_adapter,
            ReconcileOptions(filter_existing=True, filter_relevant=True),
        )
    report.record(datastore_adapter.level, datastores)

    by_mountpoint = {datastore.mountpoint: datastore for datastore in datastores.values()}
    discovered = [raw.mountpoint for raw in scan.datastores]
    if len(discovered) == 1 and discovered == list(by_mountpoint):
        _sync_datastore(store, by_mountpoint[discovered[0]], scan, as_of, report)
        return report

    partitions = scan.partition()
    for mountpoint in partitions:
        if mountpoint not in by_mountpoint:
            raise ReferentialError(datastore_adapter.level, mountpoint, "undiscovered datastore")
    for mountpoint, datastore in by_mountpoint.items():
        part = partitions.get(mountpoint) or ParsedScan(
            datastores=[], chunks=None if scan.chunks is None else []
        )
        _sync_datastore(store, datastore, part, as_of, report)
    return report


def _sync_datastore(
    store: InventoryStore,
    datastore: Datastore,
    scan: ParsedScan,
    as_of: datetime,
    report: SyncReport,
) -> None:
    log.debug("Reconciling datastore %s (id=%s)", datastore.mountpoint, datastore.id)

    namespace_adapter = NamespaceAdapter(datastore)
    with _stage(namespace_adapter.level, datastore):
        namespaces = reconcile(store, scan.namespaces, as_of, namespace_adapter)
        rewired = wire_namespace_parents(_live(namespaces))
        if rewired:
            for namespace in rewired:
                namespace_adapter.mark(
                    namespace, as_of, changed=_existed_before(namespace, as_of)
                )
            store.upsert_many(
                namespace_adapter.entity_type,
                rewired,
                conflict_columns=namespace_adapter.key_columns,
            )
    report.record(namespace_adapter.level, namespaces)

    group_adapter = GroupAdapter(datastore, namespaces)
    with _stage(group_adapter.level, datastore):
        groups = reconcile(store, scan.groups, as_of, group_adapter)
    report.record(group_adapter.level, groups)

    snapshot_adapter = SnapshotAdapter(datastore, groups)
    with _stage(snapshot_adapter.level, datastore):
        snapshots = reconcile(store, scan.snapshots, as_of, snapshot_adapter)
    report.record(snapshot_adapter.level, snapshots)

    chunks_by_digest: dict[str, Chunk] | None = None
    if scan.chunks is not None:
        chunk_adapter = ChunkAdapter(datastore)
        with _stage(chunk_adapter.level, datastore):
            chunks = reconcile(store, scan.chunks, as_of, chunk_adapter)
        report.record(chunk_adapter.level, chunks)
        chunks_by_digest = {chunk.digest: chunk for chunk in _live(chunks)}

    archive_adapters: list[ArchiveAdapter[FileArchive] | ArchiveAdapter[ImageArchive]] = [
        FileArchiveAdapter(datastore, snapshots),
        ImageArchiveAdapter(datastore, snapshots),
    ]
    raw_archives = (scan.file_archives, scan.image_archives)
    archives: dict[Key, Archive] = {}
    for adapter, raws in zip(archive_adapters, raw_archives, strict=True):
        with _stage(adapter.level, datastore):
            mapping = reconcile(store, raws, as_of, adapter)
        report.record(adapter.level, mapping)
        archives.update(mapping)

    if scan.index_digests:
        with _stage("archive_chunk", datastore):
            _link_chunks(store, datastore, scan, as_of, report, archives, chunks_by_digest)

    if scan.chunks is not None:
        with _stage("chunk", datastore):
            flipped = store.refresh_unused_chunks(datastore.persisted_id)
        log.debug("Flipped unused flag of %d chunks in %s", flipped, datastore.mountpoint)


def _link_chunks(
    store: InventoryStore,
    datastore: Datastore,
    scan: ParsedScan,
    as_of: datetime,
    report: SyncReport,
    archives: Mapping[Key, Archive],
    chunks_by_digest: Mapping[str, Chunk] | None,
) -> None:
    if chunks_by_digest is None:
        stored = store.find(Chunk, scope={"datastore_id": datastore.persisted_id})
        if not stored:
            log.debug("No chunks known for %s, skipping chunk links", datastore.mountpoint)
            return
        chunks_by_digest = {chunk.digest: chunk for chunk in stored if not chunk.is_deleted}

    links = link_archive_chunks(
        store,
        archives=archives,
        chunks_by_digest=chunks_by_digest,
        index_digests=scan.index_digests,
    )
    adapters = (FileArchiveAdapter(datastore, {}), ImageArchiveAdapter(datastore, {}))
    for adapter in adapters:
        flagged = [a for a in links.flagged if isinstance(a, adapter.entity_type)]
        if not flagged:
            continue
        for archive in flagged:
            adapter.mark(archive, as_of, changed=_existed_before(archive, as_of))
        store.upsert_many(adapter.entity_type, flagged, conflict_columns=adapter.key_columns)
    report.links_inserted += links.inserted
    report.links_updated += links.updated
    report.links_removed += links.removed
