from __future__ import annotations

from typing import TYPE_CHECKING

from pbsinventory.adapters.filesystem import LocalDiscoverySource
from pbsinventory.domain.paths import parse_chunk_listing, parse_index_path, split_nul_list
from tests.helpers.index_files import digest, dynamic_index, fixed_index, write_chunk, write_index

if TYPE_CHECKING:
    from pathlib import Path


def test_index_files_are_listed_below_the_mountpoint(tmp_path: Path) -> None:
    root = tmp_path / "ds1"
    write_index(root, "vm/100/2024-01-01T00:00:00Z/drive-scsi0.img.fidx", fixed_index([]))
    write_index(root, "ns/a/ct/7/2024-01-01T00:00:00Z/root.pxar.didx", dynamic_index([]))
    write_index(root, "vm/100/2024-01-01T00:00:00Z/index.json.blob", b"{}")
    write_chunk(root, digest(1))
    mountpoint = f"{root}/"

    paths = split_nul_list(LocalDiscoverySource().list_index_files(mountpoint))

    assert paths == [
        f"{root}/ns/a/ct/7/2024-01-01T00:00:00Z/root.pxar.didx",
        f"{root}/vm/100/2024-01-01T00:00:00Z/drive-scsi0.img.fidx",
    ]
    parsed = parse_index_path(paths[0], mountpoint)
    assert parsed.mountpoint == str(root)
    assert parsed.namespace == ("a",)


def test_chunk_listing_reports_sizes(tmp_path: Path) -> None:
    root = tmp_path / "ds1"
    write_chunk(root, digest(1), size=7)
    write_chunk(root, digest(2), size=0)

    listing = parse_chunk_listing(LocalDiscoverySource().list_chunk_files(str(root)))

    assert listing == [
        (f"{root}/.chunks/0000/{digest(1)}", 7),
        (f"{root}/.chunks/0000/{digest(2)}", 0),
    ]


def test_missing_chunk_store_lists_nothing(tmp_path: Path) -> None:
    assert LocalDiscoverySource().list_chunk_files(str(tmp_path)) == b""


def test_read_file_returns_raw_bytes(tmp_path: Path) -> None:
    path = write_index(tmp_path, "vm/1/2024-01-01T00:00:00Z/a.img.fidx", b"payload")

    assert LocalDiscoverySource().read_file(path) == b"payload"
