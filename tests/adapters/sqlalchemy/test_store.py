from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import select

from pbsinventory.adapters.sqlalchemy.mappings import archive_table
from pbsinventory.domain.model import (
    ArchiveChunk,
    BackupType,
    Chunk,
    Datastore,
    FileArchive,
    Group,
    ImageArchive,
    MetadataEnvelope,
    Snapshot,
)

if TYPE_CHECKING:
    from pbsinventory.adapters.sqlalchemy.store import SqlAlchemyInventoryStore

T1 = datetime(2024, 3, 1, tzinfo=UTC)
T2 = T1 + timedelta(hours=1)


def _datastore(store: SqlAlchemyInventoryStore) -> Datastore:
    datastore = Datastore(
        host_id=1, name="ds", mountpoint="/mnt/ds", metadata=MetadataEnvelope.new(T1)
    )
    (datastore.id,) = store.insert_many(Datastore, [datastore])
    return datastore


def _snapshot(store: SqlAlchemyInventoryStore, datastore_id: int) -> Snapshot:
    group = Group(
        datastore_id=datastore_id,
        backup_type=BackupType.VM,
        backup_id="100",
        metadata=MetadataEnvelope.new(T1),
    )
    (group.id,) = store.insert_many(Group, [group])
    snapshot = Snapshot(
        datastore_id=datastore_id, group_id=group.id, time=T1, metadata=MetadataEnvelope.new(T1)
    )
    (snapshot.id,) = store.insert_many(Snapshot, [snapshot])
    return snapshot


def _chunks(store: SqlAlchemyInventoryStore, datastore_id: int, count: int) -> list[Chunk]:
    chunks = [
        Chunk(
            datastore_id=datastore_id,
            digest=f"{seed:064x}",
            size_bytes=seed,
            metadata=MetadataEnvelope.new(T1),
        )
        for seed in range(count)
    ]
    for chunk, chunk_id in zip(chunks, store.insert_many(Chunk, chunks), strict=True):
        chunk.id = chunk_id
    return chunks


def test_insert_many_returns_ids_in_input_order(sqlite_store: SqlAlchemyInventoryStore) -> None:
    datastore = _datastore(sqlite_store)

    chunks = _chunks(sqlite_store, datastore.persisted_id, 5)

    found = sqlite_store.find(Chunk, scope={"datastore_id": datastore.persisted_id})
    by_id = {chunk.id: chunk for chunk in found}
    assert len(by_id) == 5
    for chunk in chunks:
        assert by_id[chunk.id].digest == chunk.digest
        assert by_id[chunk.id].size_bytes == chunk.size_bytes


def test_find_round_trips_envelope_in_utc(sqlite_store: SqlAlchemyInventoryStore) -> None:
    _datastore(sqlite_store)

    (found,) = sqlite_store.find(Datastore, scope={"host_id": 1})

    assert found.metadata == MetadataEnvelope(created_at=T1, updated_at=T1)
    assert found.metadata.created_at.tzinfo is not None


def test_find_accepts_collections_in_scope(sqlite_store: SqlAlchemyInventoryStore) -> None:
    datastore = _datastore(sqlite_store)
    chunks = _chunks(sqlite_store, datastore.persisted_id, 4)

    found = sqlite_store.find(Chunk, scope={"digest": [chunks[0].digest, chunks[3].digest]})

    assert sorted(chunk.digest for chunk in found) == [chunks[0].digest, chunks[3].digest]


def test_archive_kinds_share_a_table_but_not_results(
    sqlite_store: SqlAlchemyInventoryStore,
) -> None:
    datastore = _datastore(sqlite_store)
    snapshot = _snapshot(sqlite_store, datastore.persisted_id)
    common = {"datastore_id": datastore.persisted_id, "snapshot_id": snapshot.persisted_id}
    sqlite_store.insert_many(
        FileArchive, [FileArchive(**common, name="root.pxar", metadata=MetadataEnvelope.new(T1))]
    )
    sqlite_store.insert_many(
        ImageArchive,
        [
            ImageArchive(
                **common, name="drive.img", size_bytes=10, metadata=MetadataEnvelope.new(T1)
            )
        ],
    )

    scope = {"datastore_id": datastore.persisted_id}
    (file_archive,) = sqlite_store.find(FileArchive, scope=scope)
    (image_archive,) = sqlite_store.find(ImageArchive, scope=scope)

    assert file_archive.name == "root.pxar"
    assert image_archive.name == "drive.img"
    assert image_archive.size_bytes == 10
    kinds = sqlite_store.connection.execute(select(archive_table.c.kind)).scalars().all()
    assert sorted(kinds) == ["file", "image"]


def test_find_hydrates_nested_relations(sqlite_store: SqlAlchemyInventoryStore) -> None:
    datastore = _datastore(sqlite_store)
    snapshot = _snapshot(sqlite_store, datastore.persisted_id)
    archive = FileArchive(
        datastore_id=datastore.persisted_id,
        snapshot_id=snapshot.persisted_id,
        name="root.pxar",
        metadata=MetadataEnvelope.new(T1),
    )
    sqlite_store.insert_many(FileArchive, [archive])

    (found,) = sqlite_store.find(
        FileArchive,
        scope={"datastore_id": datastore.persisted_id},
        relations={"snapshot": {"group": {}}},
        lock=True,
    )

    assert found.snapshot is not None
    assert found.snapshot.id == snapshot.id
    assert found.snapshot.group is not None
    assert found.snapshot.group.backup_id == "100"


def test_upsert_many_updates_by_conflict_columns(sqlite_store: SqlAlchemyInventoryStore) -> None:
    datastore = _datastore(sqlite_store)
    (chunk,) = _chunks(sqlite_store, datastore.persisted_id, 1)
    fresh = Chunk(
        datastore_id=datastore.persisted_id,
        digest=f"{9:064x}",
        metadata=MetadataEnvelope.new(T2),
    )
    chunk.size_bytes = 99
    chunk.metadata = MetadataEnvelope(created_at=T2, updated_at=T2, version=2)

    sqlite_store.upsert_many(Chunk, [chunk, fresh], conflict_columns=("datastore_id", "digest"))

    found = {c.digest: c for c in sqlite_store.find(Chunk, scope={"datastore_id": datastore.id})}
    updated = found[chunk.digest]
    assert updated.id == chunk.id
    assert updated.size_bytes == 99
    assert updated.metadata is not None
    assert updated.metadata.created_at == T1
    assert updated.metadata.version == 2
    assert found[fresh.digest].metadata is not None


def test_sweep_marks_only_stale_live_rows(sqlite_store: SqlAlchemyInventoryStore) -> None:
    datastore = _datastore(sqlite_store)
    chunks = _chunks(sqlite_store, datastore.persisted_id, 3)
    chunks[0].metadata = MetadataEnvelope(created_at=T1, updated_at=T2)
    sqlite_store.upsert_many(Chunk, chunks[:1], conflict_columns=("datastore_id", "digest"))

    assert sqlite_store.sweep(Chunk, scope={"datastore_id": datastore.id}, as_of=T2) == 2
    assert sqlite_store.sweep(Chunk, scope={"datastore_id": datastore.id}, as_of=T2) == 0

    found = {c.id: c for c in sqlite_store.find(Chunk, scope={"datastore_id": datastore.id})}
    assert not found[chunks[0].id].is_deleted
    assert found[chunks[1].id].is_deleted
    assert found[chunks[2].id].metadata.deleted_at == T2  # type: ignore[union-attr]


def test_writing_unstamped_entity_fails(sqlite_store: SqlAlchemyInventoryStore) -> None:
    with pytest.raises(ValueError, match="without metadata"):
        sqlite_store.insert_many(Datastore, [Datastore(host_id=1, name="ds", mountpoint="/")])


def _unused(store: SqlAlchemyInventoryStore, datastore_id: int) -> dict[int | None, bool]:
    return {c.id: c.unused for c in store.find(Chunk, scope={"datastore_id": datastore_id})}


def test_archive_chunk_links_and_unused_flags(sqlite_store: SqlAlchemyInventoryStore) -> None:
    datastore = _datastore(sqlite_store)
    snapshot = _snapshot(sqlite_store, datastore.persisted_id)
    archive = FileArchive(
        datastore_id=datastore.persisted_id,
        snapshot_id=snapshot.persisted_id,
        name="root.pxar",
        metadata=MetadataEnvelope.new(T1),
    )
    (archive_id,) = sqlite_store.insert_many(FileArchive, [archive])
    chunks = _chunks(sqlite_store, datastore.persisted_id, 3)
    ids = [chunk.persisted_id for chunk in chunks]

    sqlite_store.upsert_archive_chunks(
        [ArchiveChunk(archive_id, ids[0], 1), ArchiveChunk(archive_id, ids[1], 2)]
    )
    sqlite_store.upsert_archive_chunks([ArchiveChunk(archive_id, ids[1], 5)])

    links = {link.chunk_id: link.count for link in sqlite_store.find_archive_chunks([archive_id])}
    assert links == {ids[0]: 1, ids[1]: 5}

    assert sqlite_store.refresh_unused_chunks(datastore.persisted_id) == 1
    assert _unused(sqlite_store, datastore.persisted_id) == {
        ids[0]: False,
        ids[1]: False,
        ids[2]: True,
    }

    assert sqlite_store.delete_archive_chunks([(archive_id, ids[0]), (archive_id, ids[2])]) == 1
    assert sqlite_store.refresh_unused_chunks(datastore.persisted_id) == 1
    assert sqlite_store.refresh_unused_chunks(datastore.persisted_id) == 0
    assert _unused(sqlite_store, datastore.persisted_id) == {
        ids[0]: True,
        ids[1]: False,
        ids[2]: True,
    }
