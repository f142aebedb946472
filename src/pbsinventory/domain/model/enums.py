"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class BackupType(StrEnum):
    VM = "vm"
    CT = "ct"
    HOST = "host"


class ArchiveKind(StrEnum):
    FILE = "file"
    IMAGE = "image"


class IndexVariant(StrEnum):
    """Index file layout, selected by the magic number."""

    FIXED = "fixed"
    DYNAMIC = "dynamic"
