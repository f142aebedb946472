"""Decoder for fixed (``.fidx``) and dynamic (``.didx``) index files.

Layout, little-endian throughout::

    [0, 8)      magic
    [8, 24)     uuid
    [24, 32)    creation time, signed seconds since epoch
    [32, 64)    checksum
    [64, 80)    fixed only: total size, chunk size (unsigned)
    [80, 4096)  padding
    [4096, ..)  record table: 32-byte digests (fixed) or
                u64 offset + 32-byte digest (dynamic)
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final
from uuid import UUID

from pbsinventory.domain.errors import IndexDecodeError
from pbsinventory.domain.model import IndexVariant

FIXED_INDEX_MAGIC: Final[bytes] = bytes.fromhex("2f7f41ed91fd0fcd")
DYNAMIC_INDEX_MAGIC: Final[bytes] = bytes.fromhex("1c914ea519bab3cd")
HEADER_SIZE: Final[int] = 4096
DIGEST_SIZE: Final[int] = 32

_HEADER = struct.Struct("<8s16sq32s")
_FIXED_SIZES = struct.Struct("<QQ")
_DYNAMIC_RECORD = struct.Struct("<Q32s")

_VARIANT_BY_MAGIC: Final[dict[bytes, IndexVariant]] = {
    FIXED_INDEX_MAGIC: IndexVariant.FIXED,
    DYNAMIC_INDEX_MAGIC: IndexVariant.DYNAMIC,
}
MAGIC_BY_VARIANT: Final[dict[IndexVariant, bytes]] = {
    variant: magic for magic, variant in _VARIANT_BY_MAGIC.items()
}


@dataclass(frozen=True, slots=True, kw_only=True)
class IndexHeader:
    variant: IndexVariant
    magic: str
    uuid: str
    created_at: datetime
    checksum: str


@dataclass(frozen=True, slots=True, kw_only=True)
class FixedIndex:
    header: IndexHeader
    size_bytes: int
    chunk_size_bytes: int
    digests: tuple[str, ...]

    @property
    def variant(self) -> IndexVariant:
        return IndexVariant.FIXED


@dataclass(frozen=True, slots=True, kw_only=True)
class DynamicIndex:
    header: IndexHeader
    offsets: tuple[int, ...]
    digests: tuple[str, ...]

    @property
    def variant(self) -> IndexVariant:
        return IndexVariant.DYNAMIC


type Index = FixedIndex | DynamicIndex


def decode_index(data: bytes, path: str | None = None) -> Index:
    """Decode an index file; any structural problem raises ``IndexDecodeError``."""

    if len(data) < HEADER_SIZE:
        raise IndexDecodeError(
            f"truncated header: {len(data)} bytes, expected at least {HEADER_SIZE}", path=path
        )

    magic, raw_uuid, created, checksum = _HEADER.unpack_from(data, 0)
    variant = _VARIANT_BY_MAGIC.get(magic)
    if variant is None:
        raise IndexDecodeError(f"unknown magic number {magic.hex()}", path=path)

    try:
        created_at = datetime.fromtimestamp(created, UTC)
    except (OverflowError, OSError, ValueError) as exc:
        raise IndexDecodeError(f"creation time {created} out of range", path=path) from exc

    header = IndexHeader(
        variant=variant,
        magic=magic.hex(),
        uuid=str(UUID(bytes=raw_uuid)),
        created_at=created_at,
        checksum=checksum.hex(),
    )
    table = memoryview(data)[HEADER_SIZE:]

    if variant is IndexVariant.FIXED:
        size_bytes, chunk_size_bytes = _FIXED_SIZES.unpack_from(data, _HEADER.size)
        _check_alignment(len(table), DIGEST_SIZE, path)
        digests = tuple(
            table[start : start + DIGEST_SIZE].hex()
            for start in range(0, len(table), DIGEST_SIZE)
        )
        return FixedIndex(
            header=header,
            size_bytes=size_bytes,
            chunk_size_bytes=chunk_size_bytes,
            digests=digests,
        )

    _check_alignment(len(table), _DYNAMIC_RECORD.size, path)
    offsets: list[int] = []
    dynamic_digests: list[str] = []
    for offset, digest in _DYNAMIC_RECORD.iter_unpack(table):
        offsets.append(offset)
        dynamic_digests.append(digest.hex())
    return DynamicIndex(header=header, offsets=tuple(offsets), digests=tuple(dynamic_digests))


def _check_alignment(length: int, record_size: int, path: str | None) -> None:
    if length % record_size:
        raise IndexDecodeError(
            f"record table of {length} bytes is not a multiple of {record_size}", path=path
        )
