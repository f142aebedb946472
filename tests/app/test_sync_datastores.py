from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Literal

from pbsinventory.app import sync_datastores
from pbsinventory.domain.model import Datastore, FileArchive
from tests.helpers.index_files import digest, dynamic_index
from tests.helpers.memory_store import MemoryStore

if TYPE_CHECKING:
    from types import TracebackType

WHEN = datetime(2024, 1, 1, tzinfo=UTC)
INDEX = "/srv/ds1/host/web/2023-12-31T00:00:00Z/etc.pxar.didx"
CHUNK = f"/srv/ds1/.chunks/0000/{digest(1)}"


@dataclass
class FakeSource:
    index_files: dict[str, bytes]
    chunk_files: dict[str, int] = field(default_factory=dict)
    reads: list[str] = field(default_factory=list)

    def list_index_files(self, mountpoint: str) -> bytes:
        return b"".join(
            path.encode() + b"\0" for path in self.index_files if path.startswith(mountpoint)
        )

    def list_chunk_files(self, mountpoint: str) -> bytes:
        return b"".join(
            path.encode() + b"\0" + str(size).encode() + b"\0\0"
            for path, size in self.chunk_files.items()
            if path.startswith(mountpoint)
        )

    def read_file(self, path: str) -> bytes:
        self.reads.append(path)
        return self.index_files[path]


class FakeUnitOfWork:
    def __init__(self, store: MemoryStore) -> None:
        self.store = store
        self.committed = False
        self.rolled_back = False

    def __enter__(self) -> FakeUnitOfWork:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if exc_type is not None:
            self.rollback()
        return False

    def commit(self) -> None:
        self.committed = True

    def rollback(self) -> None:
        self.rolled_back = True


def test_sync_datastores_reads_indices_and_commits() -> None:
    store = MemoryStore()
    uow = FakeUnitOfWork(store)
    source = FakeSource({INDEX: dynamic_index([(1, digest(1))])}, {CHUNK: 5})

    report = sync_datastores(
        ["/srv/ds1"],
        host_id=4,
        source=source,
        unit_of_work_factory=lambda: uow,
        include_chunks=True,
        as_of=WHEN,
    )

    assert uow.committed
    assert source.reads == [INDEX]
    assert report.as_of == WHEN
    assert report.levels["chunk"] == 1
    assert report.links_inserted == 1
    (datastore,) = store.table(Datastore).values()
    assert (datastore.host_id, datastore.name) == (4, "ds1")
    (archive,) = store.table(FileArchive).values()
    assert archive.index_parsed


def test_sync_datastores_can_skip_index_contents() -> None:
    source = FakeSource({INDEX: b"never read"})
    store = MemoryStore()

    report = sync_datastores(
        ["/srv/ds1"],
        host_id=4,
        source=source,
        unit_of_work_factory=lambda: FakeUnitOfWork(store),
        read_indices=False,
    )

    assert source.reads == []
    assert "chunk" not in report.levels
    (archive,) = store.table(FileArchive).values()
    assert not archive.index_parsed


def test_empty_datastore_is_still_inventoried() -> None:
    store = MemoryStore()

    report = sync_datastores(
        ["/srv/empty"],
        host_id=4,
        source=FakeSource({}),
        unit_of_work_factory=lambda: FakeUnitOfWork(store),
        as_of=WHEN,
    )

    assert report.levels["datastore"] == 1
    (datastore,) = store.table(Datastore).values()
    assert datastore.mountpoint == "/srv/empty"
