"""Turn discovered paths and index blobs into per-level raw records."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from pbsinventory.domain.errors import IndexDecodeError, PathGrammarError
from pbsinventory.domain.index_codec import FixedIndex, decode_index
from pbsinventory.domain.model import ArchiveKind, IndexVariant
from pbsinventory.domain.paths import (
    datastore_name,
    parse_chunk_path,
    parse_index_path,
    resolve_mountpoint,
)
from pbsinventory.domain.reconciliation.keys import archive_key, group_key, snapshot_key

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence
    from datetime import datetime

    from pbsinventory.domain.model import BackupType
    from pbsinventory.domain.paths import IndexPath
    from pbsinventory.domain.reconciliation.keys import Key

log = getLogger(__name__)

_VARIANT_BY_KIND = {ArchiveKind.IMAGE: IndexVariant.FIXED, ArchiveKind.FILE: IndexVariant.DYNAMIC}


@dataclass(frozen=True, slots=True)
class RawDatastore:
    mountpoint: str
    name: str


@dataclass(frozen=True, slots=True)
class RawNamespace:
    mountpoint: str
    path: str

    @property
    def name(self) -> str:
        return self.path.rpartition("/")[2]


@dataclass(frozen=True, slots=True)
class RawGroup:
    mountpoint: str
    namespace_path: str | None
    backup_type: BackupType
    backup_id: str

    @property
    def key(self) -> Key:
        return group_key(self.mountpoint, self.namespace_path, self.backup_type, self.backup_id)


@dataclass(frozen=True, slots=True)
class RawSnapshot:
    group: RawGroup
    time: datetime

    @property
    def mountpoint(self) -> str:
        return self.group.mountpoint

    @property
    def key(self) -> Key:
        return snapshot_key(self.group.key, self.time)


@dataclass(frozen=True, slots=True, kw_only=True)
class RawArchive:
    """An observed archive; header fields are ``None`` when the index was not read."""

    snapshot: RawSnapshot
    kind: ArchiveKind
    name: str
    uuid: str | None = None
    index_created_at: datetime | None = None
    checksum: str | None = None
    size_bytes: int | None = None
    chunk_size_bytes: int | None = None

    @property
    def mountpoint(self) -> str:
        return self.snapshot.mountpoint

    @property
    def index_parsed(self) -> bool:
        return self.checksum is not None

    @property
    def key(self) -> Key:
        return archive_key(self.snapshot.key, self.kind, self.name)


@dataclass(frozen=True, slots=True)
class RawChunk:
    mountpoint: str
    digest: str
    size_bytes: int | None = None


@dataclass(slots=True)
class ParsedScan:
    """Deduplicated raw records of one scan, ordered parents first.

    ``chunks`` is ``None`` when the chunk store was not listed, which is not the same
    as an empty chunk store. ``index_digests`` maps archive keys to the digest list
    of their decoded index.
    """

    datastores: list[RawDatastore] = field(default_factory=list)
    namespaces: list[RawNamespace] = field(default_factory=list)
    groups: list[RawGroup] = field(default_factory=list)
    snapshots: list[RawSnapshot] = field(default_factory=list)
    file_archives: list[RawArchive] = field(default_factory=list)
    image_archives: list[RawArchive] = field(default_factory=list)
    chunks: list[RawChunk] | None = None
    index_digests: dict[Key, tuple[str, ...]] = field(default_factory=dict)

    def partition(self) -> dict[str, ParsedScan]:
        """Split every level below datastore by declared mountpoint."""

        parts = {
            datastore.mountpoint: ParsedScan(
                datastores=[datastore], chunks=None if self.chunks is None else []
            )
            for datastore in self.datastores
        }

        def part(mountpoint: str) -> ParsedScan:
            try:
                return parts[mountpoint]
            except KeyError:
                parts[mountpoint] = ParsedScan(chunks=None if self.chunks is None else [])
                return parts[mountpoint]

        for namespace in self.namespaces:
            part(namespace.mountpoint).namespaces.append(namespace)
        for group in self.groups:
            part(group.mountpoint).groups.append(group)
        for snapshot in self.snapshots:
            part(snapshot.mountpoint).snapshots.append(snapshot)
        for archive in self.file_archives:
            part(archive.mountpoint).file_archives.append(archive)
        for archive in self.image_archives:
            part(archive.mountpoint).image_archives.append(archive)
        for chunk in self.chunks or ():
            chunks = part(chunk.mountpoint).chunks
            if chunks is not None:
                chunks.append(chunk)
        archives = {a.key: a for a in (*self.file_archives, *self.image_archives)}
        for key, digests in self.index_digests.items():
            part(archives[key].mountpoint).index_digests[key] = digests
        return parts


def _namespace_prefixes(namespace: tuple[str, ...]) -> Iterable[str]:
    for depth in range(1, len(namespace) + 1):
        yield "/".join(namespace[:depth])


def _archive_record(
    parsed: IndexPath, snapshot: RawSnapshot, blob: bytes | None, path: str
) -> tuple[RawArchive, tuple[str, ...] | None]:
    if blob is None:
        return RawArchive(snapshot=snapshot, kind=parsed.kind, name=parsed.name), None

    index = decode_index(blob, path)
    expected = _VARIANT_BY_KIND[parsed.kind]
    if index.variant is not expected:
        raise IndexDecodeError(
            f"{parsed.extension} file holds a {index.variant} index", path=path
        )
    header = index.header
    if isinstance(index, FixedIndex):
        record = RawArchive(
            snapshot=snapshot,
            kind=parsed.kind,
            name=parsed.name,
            uuid=header.uuid,
            index_created_at=header.created_at,
            checksum=header.checksum,
            size_bytes=index.size_bytes,
            chunk_size_bytes=index.chunk_size_bytes,
        )
    else:
        record = RawArchive(
            snapshot=snapshot,
            kind=parsed.kind,
            name=parsed.name,
            uuid=header.uuid,
            index_created_at=header.created_at,
            checksum=header.checksum,
        )
    return record, index.digests


def build_scan(
    index_paths: Iterable[str],
    *,
    mountpoints: Sequence[str] | None = None,
    chunk_listing: Iterable[tuple[str, int | None]] | None = None,
    index_blobs: Mapping[str, bytes] | None = None,
) -> ParsedScan:
    """Parse discovered paths into the raw records of every level.

    With ``mountpoints`` each path is attributed to the longest mountpoint containing
    it and every mountpoint yields a datastore record even when it holds no index
    files; without, mountpoints are inferred from the paths. Namespaces are closed
    under prefixes so every ancestor of a namespace is its own record.
    """

    blobs = index_blobs or {}
    datastores: dict[str, RawDatastore] = {}
    namespaces: dict[RawNamespace, None] = {}
    groups: dict[RawGroup, None] = {}
    snapshots: dict[RawSnapshot, None] = {}
    archives: dict[Key, RawArchive] = {}
    digests: dict[Key, tuple[str, ...]] = {}

    for mountpoint in mountpoints or ():
        normalized = mountpoint.rstrip("/")
        datastores[normalized] = RawDatastore(normalized, datastore_name(normalized))

    for path in sorted(set(index_paths)):
        known = resolve_mountpoint(path, mountpoints) if mountpoints else None
        parsed = parse_index_path(path, known)
        if parsed.mountpoint is None:
            raise PathGrammarError("index path carries no datastore mountpoint", path=path)
        mountpoint = parsed.mountpoint
        datastores.setdefault(mountpoint, RawDatastore(mountpoint, datastore_name(mountpoint)))
        for prefix in _namespace_prefixes(parsed.namespace):
            namespaces.setdefault(RawNamespace(mountpoint, prefix))

        group = RawGroup(mountpoint, parsed.namespace_path, parsed.backup_type, parsed.backup_id)
        groups.setdefault(group)
        snapshot = RawSnapshot(group, parsed.time)
        snapshots.setdefault(snapshot)

        record, archive_digests = _archive_record(parsed, snapshot, blobs.get(path), path)
        archives[record.key] = record
        if archive_digests is not None:
            digests[record.key] = archive_digests

    chunks: list[RawChunk] | None = None
    if chunk_listing is not None:
        seen: dict[tuple[str, str], RawChunk] = {}
        for path, size in chunk_listing:
            known = resolve_mountpoint(path, mountpoints) if mountpoints else None
            parsed_chunk = parse_chunk_path(path, known)
            if parsed_chunk.mountpoint is None:
                raise PathGrammarError("chunk path carries no datastore mountpoint", path=path)
            seen[(parsed_chunk.mountpoint, parsed_chunk.digest)] = RawChunk(
                parsed_chunk.mountpoint, parsed_chunk.digest, size
            )
        chunks = list(seen.values())

    scan = ParsedScan(
        datastores=list(datastores.values()),
        namespaces=list(namespaces),
        groups=list(groups),
        snapshots=list(snapshots),
        file_archives=[a for a in archives.values() if a.kind is ArchiveKind.FILE],
        image_archives=[a for a in archives.values() if a.kind is ArchiveKind.IMAGE],
        chunks=chunks,
        index_digests=digests,
    )
    log.debug(
        "Parsed scan: datastores=%d namespaces=%d groups=%d snapshots=%d archives=%d",
        len(scan.datastores),
        len(scan.namespaces),
        len(scan.groups),
        len(scan.snapshots),
        len(archives),
    )
    return scan
