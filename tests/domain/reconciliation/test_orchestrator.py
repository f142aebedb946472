from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from pbsinventory.domain.errors import ReferentialError
from pbsinventory.domain.model import (
    BackupType,
    Chunk,
    Datastore,
    FileArchive,
    Group,
    ImageArchive,
    Namespace,
    Snapshot,
)
from pbsinventory.domain.reconciliation.orchestrator import synchronize
from pbsinventory.domain.scan import ParsedScan, RawDatastore, RawGroup, build_scan
from tests.helpers.index_files import digest, dynamic_index, fixed_index
from tests.helpers.memory_store import MemoryStore

T1 = datetime(2024, 2, 1, tzinfo=UTC)
T2 = T1 + timedelta(days=1)

IMAGE = "/mnt/ds1/ns/a/ns/b/vm/100/2024-01-01T00:00:00Z/drive-scsi0.img.fidx"
ROOT_FILE = "/mnt/ds1/vm/100/2024-01-02T00:00:00Z/root.pxar.didx"
CT_FILE = "/mnt/ds2/ct/7/2024-01-01T00:00:00Z/root.pxar.didx"

BLOBS = {
    IMAGE: fixed_index([digest(1), digest(2), digest(1)], size=3, chunk_size=1),
    ROOT_FILE: dynamic_index([(1, digest(1))]),
    CT_FILE: dynamic_index([(5, digest(3))]),
}


def _chunk_path(mountpoint: str, seed: int) -> str:
    value = digest(seed)
    return f"{mountpoint}/.chunks/{value[:4]}/{value}"


def _live[T](rows: dict[int, T]) -> list[T]:
    return [row for row in rows.values() if not row.is_deleted]  # type: ignore[attr-defined]


def test_full_scan_populates_every_level() -> None:
    store = MemoryStore()
    scan = build_scan(
        [IMAGE, ROOT_FILE, CT_FILE],
        index_blobs=BLOBS,
        chunk_listing=[
            (_chunk_path("/mnt/ds1", 1), 10),
            (_chunk_path("/mnt/ds1", 2), 20),
            (_chunk_path("/mnt/ds2", 4), 40),
        ],
    )

    report = synchronize(store, scan, host_id=1, as_of=T1)

    assert dict(report.levels) == {
        "datastore": 2,
        "namespace": 2,
        "group": 3,
        "snapshot": 3,
        "chunk": 3,
        "file_archive": 2,
        "image_archive": 1,
    }
    assert report.links_inserted == 3

    namespaces = {row.path: row for row in store.table(Namespace).values()}
    assert namespaces["a/b"].parent_id == namespaces["a"].id
    groups = store.table(Group).values()
    assert sorted(group.namespace_path for group in groups) == ["", "", "a/b"]

    chunk_ids = {row.digest: row.id for row in store.table(Chunk).values()}
    (image,) = store.table(ImageArchive).values()
    assert image.size_bytes == 3
    assert store.links[(image.persisted_id, chunk_ids[digest(1)])] == 2
    assert store.links[(image.persisted_id, chunk_ids[digest(2)])] == 1

    files = {row.datastore_id: row for row in store.table(FileArchive).values()}
    datastores = {row.mountpoint: row.persisted_id for row in store.table(Datastore).values()}
    assert not files[datastores["/mnt/ds1"]].missing_chunks
    assert files[datastores["/mnt/ds2"]].missing_chunks


def test_vanished_snapshot_is_swept_with_its_archives() -> None:
    store = MemoryStore()
    synchronize(store, build_scan([IMAGE, ROOT_FILE]), host_id=1, as_of=T1)

    report = synchronize(store, build_scan([IMAGE]), host_id=1, as_of=T2)

    assert report.levels["group"] == 1
    assert report.levels["snapshot"] == 1
    assert report.levels["file_archive"] == 0
    assert len(_live(store.table(Snapshot))) == 1
    (archive,) = store.table(FileArchive).values()
    assert archive.metadata is not None
    assert archive.metadata.deleted_at == T2


def test_identical_rescan_keeps_versions() -> None:
    store = MemoryStore()
    scan = build_scan([IMAGE, ROOT_FILE], index_blobs=BLOBS)
    synchronize(store, scan, host_id=1, as_of=T1)

    synchronize(store, scan, host_id=1, as_of=T2)

    for rows in store.rows.values():
        for row in rows.values():
            assert row.metadata is not None
            assert row.metadata.version == 1
            assert row.metadata.updated_at == T2


def test_stored_chunks_are_linked_when_chunks_are_not_listed() -> None:
    store = MemoryStore()
    listing = [(_chunk_path("/mnt/ds1", 1), None), (_chunk_path("/mnt/ds1", 2), None)]
    synchronize(store, build_scan([IMAGE], chunk_listing=listing), host_id=1, as_of=T1)

    report = synchronize(store, build_scan([IMAGE], index_blobs=BLOBS), host_id=1, as_of=T2)

    assert report.links_inserted == 2
    assert "chunk" not in report.levels
    assert len(_live(store.table(Chunk))) == 2


def test_archive_losing_a_chunk_is_flagged_with_a_version_bump() -> None:
    store = MemoryStore()
    blobs = {CT_FILE: BLOBS[CT_FILE]}
    synchronize(
        store,
        build_scan([CT_FILE], index_blobs=blobs, chunk_listing=[(_chunk_path("/mnt/ds2", 3), 1)]),
        host_id=1,
        as_of=T1,
    )
    (archive,) = store.table(FileArchive).values()
    assert not archive.missing_chunks

    report = synchronize(
        store,
        build_scan([CT_FILE], index_blobs=blobs, chunk_listing=[(_chunk_path("/mnt/ds2", 4), 1)]),
        host_id=1,
        as_of=T2,
    )

    (archive,) = store.table(FileArchive).values()
    assert archive.missing_chunks
    assert archive.metadata is not None
    assert archive.metadata.version == 2
    assert report.links_removed == 1


def test_partial_scan_leaves_other_datastores_alone() -> None:
    store = MemoryStore()
    synchronize(store, build_scan([IMAGE, CT_FILE]), host_id=1, as_of=T1)

    synchronize(
        store,
        build_scan([], mountpoints=["/mnt/ds1"]),
        host_id=1,
        as_of=T2,
        mountpoints=["/mnt/ds1"],
    )

    datastores = {row.mountpoint: row for row in store.table(Datastore).values()}
    assert not datastores["/mnt/ds1"].is_deleted
    assert not datastores["/mnt/ds2"].is_deleted
    snapshots = {row.datastore_id: row for row in store.table(Snapshot).values()}
    assert snapshots[datastores["/mnt/ds1"].persisted_id].is_deleted
    assert not snapshots[datastores["/mnt/ds2"].persisted_id].is_deleted


def test_empty_chunk_listing_flags_archives_and_drops_their_links() -> None:
    store = MemoryStore()
    blobs = {CT_FILE: BLOBS[CT_FILE]}
    synchronize(
        store,
        build_scan([CT_FILE], index_blobs=blobs, chunk_listing=[(_chunk_path("/mnt/ds2", 3), 1)]),
        host_id=1,
        as_of=T1,
    )

    report = synchronize(
        store,
        build_scan([CT_FILE], index_blobs=blobs, chunk_listing=[]),
        host_id=1,
        as_of=T2,
    )

    (archive,) = store.table(FileArchive).values()
    assert archive.missing_chunks
    assert report.links_removed == 1
    assert not store.links
    assert not _live(store.table(Chunk))


def test_archive_of_an_empty_chunk_store_is_flagged_on_first_scan() -> None:
    store = MemoryStore()
    scan = build_scan([CT_FILE], index_blobs={CT_FILE: BLOBS[CT_FILE]}, chunk_listing=[])
    assert scan.chunks == []

    synchronize(store, scan, host_id=1, as_of=T1)

    (archive,) = store.table(FileArchive).values()
    assert archive.missing_chunks


def test_partial_scan_rejects_datastores_outside_its_mountpoints() -> None:
    store = MemoryStore()
    scan = build_scan([ROOT_FILE, CT_FILE])

    with pytest.raises(ReferentialError, match="outside the scanned mountpoints"):
        synchronize(store, scan, host_id=1, as_of=T1, mountpoints=["/mnt/ds1"])

    assert not store.table(Datastore)
    assert not store.table(Group)


def test_records_of_unreconciled_datastore_are_rejected() -> None:
    scan = ParsedScan(
        datastores=[RawDatastore("/mnt/ds1", "ds1"), RawDatastore("/mnt/ds2", "ds2")],
        groups=[RawGroup("/mnt/ds3", None, BackupType.HOST, "h")],
    )

    with pytest.raises(ReferentialError, match="undiscovered datastore"):
        synchronize(
            MemoryStore(), scan, host_id=1, as_of=T1, mountpoints=["/mnt/ds1", "/mnt/ds2"]
        )


def test_failures_carry_the_level_and_datastore() -> None:
    scan = ParsedScan(
        datastores=[RawDatastore("/mnt/ds1", "ds1")],
        groups=[RawGroup("/mnt/ds1", "a", BackupType.VM, "1")],
    )

    with pytest.raises(ReferentialError) as excinfo:
        synchronize(MemoryStore(), scan, host_id=1, as_of=T1)

    assert "while reconciling level 'group' of datastore /mnt/ds1" in excinfo.value.__notes__
