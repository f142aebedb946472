"""Discovery of datastores reachable on the local filesystem."""

from __future__ import annotations

import os
from logging import getLogger
from pathlib import Path
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Iterator

log = getLogger(__name__)

CHUNK_DIR: Final[str] = ".chunks"
INDEX_SUFFIXES: Final[frozenset[str]] = frozenset({".fidx", ".didx"})


class LocalDiscoverySource:
    """Produces the same NUL-separated listings a remote ``find`` run would.

    Paths are reported as ``<mountpoint>/<relative path>`` with the mountpoint
    exactly as given, so they parse back against it.
    """

    def _walk(self, root: Path) -> Iterator[tuple[Path, list[str], list[str]]]:
        for directory, subdirs, files in os.walk(root):
            subdirs.sort()
            yield Path(directory), subdirs, sorted(files)

    def list_index_files(self, mountpoint: str) -> bytes:
        root = Path(mountpoint)
        found: list[bytes] = []
        for directory, subdirs, files in self._walk(root):
            if directory == root and CHUNK_DIR in subdirs:
                subdirs.remove(CHUNK_DIR)
            for name in files:
                if Path(name).suffix in INDEX_SUFFIXES:
                    found.append(os.fsencode(self._report(mountpoint, root, directory / name)))
        log.debug("Found %d index files below %s", len(found), mountpoint)
        return b"".join(path + b"\0" for path in found)

    def list_chunk_files(self, mountpoint: str) -> bytes:
        root = Path(mountpoint)
        chunk_root = root / CHUNK_DIR
        if not chunk_root.is_dir():
            return b""
        records: list[bytes] = []
        for directory, _subdirs, files in self._walk(chunk_root):
            for name in files:
                path = directory / name
                size = path.stat().st_size
                reported = os.fsencode(self._report(mountpoint, root, path))
                records.append(reported + b"\0" + str(size).encode() + b"\0\0")
        log.debug("Found %d chunk files below %s", len(records), mountpoint)
        return b"".join(records)

    def read_file(self, path: str) -> bytes:
        return Path(path).read_bytes()

    @staticmethod
    def _report(mountpoint: str, root: Path, path: Path) -> str:
        return f"{mountpoint.rstrip('/')}/{path.relative_to(root).as_posix()}"
