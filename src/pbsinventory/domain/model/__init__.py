"""Public domain model surface."""

from __future__ import annotations

from pbsinventory.domain.model.base import ENVELOPE_FIELDS, InventoryEntity, MetadataEnvelope
from pbsinventory.domain.model.enums import ArchiveKind, BackupType, IndexVariant
from pbsinventory.domain.model.inventory import (
    ARCHIVE_TYPES,
    Archive,
    ArchiveChunk,
    Chunk,
    Datastore,
    FileArchive,
    Group,
    ImageArchive,
    Namespace,
    Snapshot,
)

__all__ = [  # noqa: RUF022
    # base
    "ENVELOPE_FIELDS",
    "InventoryEntity",
    "MetadataEnvelope",
    # enums
    "ArchiveKind",
    "BackupType",
    "IndexVariant",
    # hierarchy
    "Datastore",
    "Namespace",
    "Group",
    "Snapshot",
    "Archive",
    "FileArchive",
    "ImageArchive",
    "ARCHIVE_TYPES",
    # storage
    "Chunk",
    "ArchiveChunk",
]
