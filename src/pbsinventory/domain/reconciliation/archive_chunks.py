"""Reference counts between archives and the chunks their indices list."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from pbsinventory.domain.errors import ReferentialError
from pbsinventory.domain.model import ArchiveChunk

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from pbsinventory.domain.model import Archive, Chunk
    from pbsinventory.domain.ports.persistence import ArchiveChunkStore

    from .keys import Key

log = getLogger(__name__)


@dataclass(slots=True)
class LinkResult:
    inserted: int = 0
    updated: int = 0
    removed: int = 0
    flagged: list[Archive] = field(default_factory=list)


def link_archive_chunks(
    store: ArchiveChunkStore,
    *,
    archives: Mapping[Key, Archive],
    chunks_by_digest: Mapping[str, Chunk],
    index_digests: Mapping[Key, Sequence[str]],
) -> LinkResult:
    """Bring the archive/chunk rows of every decoded archive in line with its index.

    Digests without a known chunk set ``missing_chunks`` on their archive. Archives
    whose flag flipped are returned in ``flagged`` for the caller to persist.
    """

    result = LinkResult()
    desired: dict[tuple[int, int], int] = {}
    linked_ids: set[int] = set()
    for key, digests in index_digests.items():
        archive = archives.get(key)
        if archive is None:
            raise ReferentialError("archive_chunk", key, "unknown archive")
        archive_id = archive.persisted_id
        linked_ids.add(archive_id)
        missing = False
        for digest, count in Counter(digests).items():
            chunk = chunks_by_digest.get(digest)
            if chunk is None:
                missing = True
                continue
            desired[(archive_id, chunk.persisted_id)] = count
        if archive.missing_chunks != missing:
            archive.missing_chunks = missing
            result.flagged.append(archive)

    if not linked_ids:
        return result

    existing = {
        (link.archive_id, link.chunk_id): link.count
        for link in store.find_archive_chunks(linked_ids)
    }
    writes: list[ArchiveChunk] = []
    for pair, count in desired.items():
        current = existing.get(pair)
        if current == count:
            continue
        if current is None:
            result.inserted += 1
        else:
            result.updated += 1
        writes.append(ArchiveChunk(archive_id=pair[0], chunk_id=pair[1], count=count))
    if writes:
        store.upsert_archive_chunks(writes)

    stale = [pair for pair in existing if pair not in desired]
    if stale:
        result.removed = store.delete_archive_chunks(stale)

    log.info(
        "Linked chunks of %d archives: inserted=%d updated=%d removed=%d flagged=%d",
        len(linked_ids),
        result.inserted,
        result.updated,
        result.removed,
        len(result.flagged),
    )
    return result
