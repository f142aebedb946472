"""Grammar for index and chunk paths as reported by datastore discovery.

Index files live at::

    <mountpoint>/[ns/<name>/...]<type>/<backup-id>/<YYYY-MM-DDTHH:MM:SSZ>/<archive>.<ext>

and chunks at ``<mountpoint>/.chunks/<4 hex>/<sha256 hex>``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Final

from pbsinventory.domain.errors import PathGrammarError
from pbsinventory.domain.model import ArchiveKind, BackupType

if TYPE_CHECKING:
    from collections.abc import Sequence

FIXED_INDEX_EXTENSION: Final[str] = "fidx"
DYNAMIC_INDEX_EXTENSION: Final[str] = "didx"
ARCHIVE_KIND_BY_EXTENSION: Final[dict[str, ArchiveKind]] = {
    FIXED_INDEX_EXTENSION: ArchiveKind.IMAGE,
    DYNAMIC_INDEX_EXTENSION: ArchiveKind.FILE,
}
EXTENSION_BY_ARCHIVE_KIND: Final[dict[ArchiveKind, str]] = {
    kind: extension for extension, kind in ARCHIVE_KIND_BY_EXTENSION.items()
}
TIMESTAMP_FORMAT: Final[str] = "%Y-%m-%dT%H:%M:%SZ"

_INDEX_TAIL = (
    r"(?P<namespace>(?:ns/[^/]+/)*)"
    r"(?P<type>vm|ct|host)/"
    r"(?P<backup_id>[^/]+)/"
    r"(?P<timestamp>\d{4}-\d\d-\d\dT\d\d:\d\d:\d\dZ)/"
    r"(?P<name>[^/]+)\.(?P<extension>[^./]+)$"
)
INDEX_PATH_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(?:(?P<mountpoint>.*?)/)?" + _INDEX_TAIL
)
_INDEX_RELATIVE_PATTERN: Final[re.Pattern[str]] = re.compile(_INDEX_TAIL)

_CHUNK_TAIL = r"\.chunks/(?P<bucket>[0-9a-fA-F]{4})/(?P<digest>[0-9a-fA-F]{64})$"
CHUNK_PATH_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(?:(?P<mountpoint>.*)/)?" + _CHUNK_TAIL
)
_CHUNK_RELATIVE_PATTERN: Final[re.Pattern[str]] = re.compile(_CHUNK_TAIL)


@dataclass(frozen=True, slots=True, kw_only=True)
class IndexPath:
    """Captured groups of an index path; ``format_index_path`` inverts the parse."""

    mountpoint: str | None
    namespace: tuple[str, ...]
    backup_type: BackupType
    backup_id: str
    timestamp: str
    name: str
    extension: str

    @property
    def namespace_path(self) -> str | None:
        return "/".join(self.namespace) if self.namespace else None

    @property
    def time(self) -> datetime:
        return parse_timestamp(self.timestamp)

    @property
    def kind(self) -> ArchiveKind:
        return ARCHIVE_KIND_BY_EXTENSION[self.extension]

    @property
    def datastore_name(self) -> str | None:
        if self.mountpoint is None:
            return None
        return datastore_name(self.mountpoint)


@dataclass(frozen=True, slots=True, kw_only=True)
class ChunkPath:
    mountpoint: str | None
    digest: str


def datastore_name(mountpoint: str) -> str:
    """The datastore is named after the last component of its mountpoint."""
    return mountpoint.rstrip("/").rpartition("/")[2] or mountpoint


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=UTC)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(TIMESTAMP_FORMAT)


def _match(
    path: str,
    mountpoint: str | None,
    pattern: re.Pattern[str],
    relative: re.Pattern[str],
    what: str,
) -> tuple[re.Match[str], str | None]:
    if mountpoint is None:
        match = pattern.match(path)
        if match is None:
            raise PathGrammarError(f"not a valid {what} path", path=path)
        return match, match.group("mountpoint")

    prefix = mountpoint.rstrip("/") + "/"
    if not path.startswith(prefix):
        raise PathGrammarError(f"{what} path is outside mountpoint {mountpoint!r}", path=path)
    match = relative.match(path, len(prefix))
    if match is None:
        raise PathGrammarError(f"not a valid {what} path", path=path)
    return match, prefix[:-1]


def parse_index_path(path: str, mountpoint: str | None = None) -> IndexPath:
    """Parse an index path.

    When ``mountpoint`` is given the path must live below it and the remainder is
    matched on its own; otherwise the mountpoint is inferred as the shortest prefix
    that lets the rest of the path match.
    """

    match, resolved_mountpoint = _match(
        path, mountpoint, INDEX_PATH_PATTERN, _INDEX_RELATIVE_PATTERN, "index"
    )
    extension = match.group("extension")
    if extension not in ARCHIVE_KIND_BY_EXTENSION:
        raise PathGrammarError(f"unknown archive extension {extension!r}", path=path)
    timestamp = match.group("timestamp")
    try:
        parse_timestamp(timestamp)
    except ValueError as exc:
        raise PathGrammarError(f"invalid snapshot timestamp {timestamp!r}", path=path) from exc

    # "ns/a/ns/b/" -> ("a", "b")
    namespace = tuple(match.group("namespace").split("/")[1::2])
    return IndexPath(
        mountpoint=resolved_mountpoint,
        namespace=namespace,
        backup_type=BackupType(match.group("type")),
        backup_id=match.group("backup_id"),
        timestamp=timestamp,
        name=match.group("name"),
        extension=extension,
    )


def format_index_path(parsed: IndexPath) -> str:
    namespace = "".join(f"ns/{segment}/" for segment in parsed.namespace)
    tail = (
        f"{namespace}{parsed.backup_type}/{parsed.backup_id}/{parsed.timestamp}/"
        f"{parsed.name}.{parsed.extension}"
    )
    if parsed.mountpoint is None:
        return tail
    return f"{parsed.mountpoint}/{tail}"


def archive_index_path(
    *,
    mountpoint: str,
    namespace_path: str | None,
    backup_type: BackupType,
    backup_id: str,
    time: datetime,
    name: str,
    kind: ArchiveKind,
) -> str:
    """Rebuild the on-disk location of a persisted archive's index file."""

    return format_index_path(
        IndexPath(
            mountpoint=mountpoint.rstrip("/"),
            namespace=tuple(namespace_path.split("/")) if namespace_path else (),
            backup_type=backup_type,
            backup_id=backup_id,
            timestamp=format_timestamp(time),
            name=name,
            extension=EXTENSION_BY_ARCHIVE_KIND[kind],
        )
    )


def parse_chunk_path(path: str, mountpoint: str | None = None) -> ChunkPath:
    match, resolved_mountpoint = _match(
        path, mountpoint, CHUNK_PATH_PATTERN, _CHUNK_RELATIVE_PATTERN, "chunk"
    )
    bucket = match.group("bucket").lower()
    digest = match.group("digest").lower()
    if not digest.startswith(bucket):
        raise PathGrammarError(f"chunk is stored outside its bucket {bucket!r}", path=path)
    return ChunkPath(mountpoint=resolved_mountpoint, digest=digest)


def resolve_mountpoint(path: str, mountpoints: Sequence[str]) -> str:
    """Return the longest known mountpoint containing ``path``."""

    best: str | None = None
    for candidate in mountpoints:
        prefix = candidate.rstrip("/") + "/"
        if path.startswith(prefix) and (best is None or len(candidate) > len(best)):
            best = candidate
    if best is None:
        raise PathGrammarError("path is not below any scanned mountpoint", path=path)
    return best


def _decode_path(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise PathGrammarError("path is not valid UTF-8", path=repr(raw)) from exc


def split_nul_list(data: bytes) -> list[str]:
    """Split ``find -print0`` output into paths."""
    return [_decode_path(item) for item in data.split(b"\0") if item]


def parse_chunk_listing(data: bytes) -> list[tuple[str, int | None]]:
    """Split ``find -printf '%p\\0%s\\0\\0'`` output into (path, size) pairs.

    A record without a size field yields ``None`` for the size.
    """

    entries: list[tuple[str, int | None]] = []
    for record in data.split(b"\0\0"):
        if not record.strip(b"\0"):
            continue
        raw_path, _, raw_size = record.strip(b"\0").partition(b"\0")
        path = _decode_path(raw_path)
        size: int | None = None
        if raw_size:
            try:
                size = int(raw_size)
            except ValueError as exc:
                raise PathGrammarError(f"invalid chunk size {raw_size!r}", path=path) from exc
        entries.append((path, size))
    return entries
