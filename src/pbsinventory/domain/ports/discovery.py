"""Ports for discovering datastore contents."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class DiscoverySource(Protocol):
    """Byte-level view of a datastore, as a remote ``find`` would report it."""

    def list_index_files(self, mountpoint: str) -> bytes:
        """NUL-separated absolute paths of ``*.fidx``/``*.didx`` files."""
        ...

    def list_chunk_files(self, mountpoint: str) -> bytes:
        """``path\\0size\\0\\0`` records for every file below ``.chunks``."""
        ...

    def read_file(self, path: str) -> bytes: ...
