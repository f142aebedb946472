"""Entities of the backup inventory hierarchy.

Datastore -> Namespace tree -> Group -> Snapshot -> Archive, plus content-addressed
chunks and the archive/chunk reference counts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar

from .base import InventoryEntity
from .enums import ArchiveKind

if TYPE_CHECKING:
    from datetime import datetime

    from .enums import BackupType


@dataclass(eq=False, kw_only=True)
class Datastore(InventoryEntity):
    LEVEL: ClassVar[str] = "datastore"

    host_id: int
    name: str
    mountpoint: str


@dataclass(eq=False, kw_only=True)
class Namespace(InventoryEntity):
    """Node of a per-datastore tree; ``path`` is the slash-joined chain of names."""

    LEVEL: ClassVar[str] = "namespace"

    datastore_id: int
    name: str
    path: str
    parent_id: int | None = None
    parent: Namespace | None = None

    @property
    def parent_path(self) -> str | None:
        head, sep, _ = self.path.rpartition("/")
        return head if sep else None


@dataclass(eq=False, kw_only=True)
class Group(InventoryEntity):
    """Backup job identity.

    ``namespace_path`` mirrors the namespace's path with ``""`` standing for the
    datastore root, so identity columns are never NULL.
    """

    LEVEL: ClassVar[str] = "group"

    datastore_id: int
    backup_type: BackupType
    backup_id: str
    namespace_id: int | None = None
    namespace_path: str = ""
    namespace: Namespace | None = None


@dataclass(eq=False, kw_only=True)
class Snapshot(InventoryEntity):
    LEVEL: ClassVar[str] = "snapshot"

    datastore_id: int
    group_id: int
    time: datetime
    group: Group | None = None


@dataclass(eq=False, kw_only=True)
class Archive(InventoryEntity):
    """Common shape of file and image archives; header fields stay unset until read."""

    KIND: ClassVar[ArchiveKind]

    datastore_id: int
    snapshot_id: int
    name: str
    uuid: str | None = None
    index_created_at: datetime | None = None
    checksum: str | None = None
    index_parsed: bool = False
    missing_chunks: bool = False
    snapshot: Snapshot | None = None

    @property
    def kind(self) -> ArchiveKind:
        return self.KIND


@dataclass(eq=False, kw_only=True)
class FileArchive(Archive):
    LEVEL: ClassVar[str] = "file_archive"
    KIND: ClassVar[ArchiveKind] = ArchiveKind.FILE


@dataclass(eq=False, kw_only=True)
class ImageArchive(Archive):
    LEVEL: ClassVar[str] = "image_archive"
    KIND: ClassVar[ArchiveKind] = ArchiveKind.IMAGE

    size_bytes: int | None = None
    chunk_size_bytes: int | None = None


@dataclass(eq=False, kw_only=True)
class Chunk(InventoryEntity):
    LEVEL: ClassVar[str] = "chunk"

    datastore_id: int
    digest: str
    size_bytes: int | None = None
    unused: bool = False


@dataclass(slots=True)
class ArchiveChunk:
    """Reference count of one chunk inside one archive's index."""

    archive_id: int
    chunk_id: int
    count: int


ARCHIVE_TYPES: dict[ArchiveKind, type[Archive]] = {
    ArchiveKind.FILE: FileArchive,
    ArchiveKind.IMAGE: ImageArchive,
}
