"""Ports for persisting the inventory graph."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable, Mapping, Sequence
    from datetime import datetime

    from pbsinventory.domain.model import ArchiveChunk, InventoryEntity

# Column name -> value, or a collection of accepted values.
type Scope = Mapping[str, Any]
# Relation name -> relations to load on the related entity.
type Relations = Mapping[str, Relations]


@runtime_checkable
class ReconcileStore(Protocol):
    """Persistence verbs the reconciliation engine relies on.

    Implementations run every call inside the caller's transaction; none of them
    commit.
    """

    def find[T: InventoryEntity](
        self,
        entity_type: type[T],
        *,
        scope: Scope,
        relations: Relations | None = None,
        lock: bool = False,
    ) -> list[T]:
        """Return every entity in ``scope``, soft-deleted ones included."""
        ...

    def insert_many[T: InventoryEntity](
        self, entity_type: type[T], entities: Sequence[T]
    ) -> list[int]:
        """Insert ``entities`` and return their new ids in input order."""
        ...

    def upsert_many[T: InventoryEntity](
        self,
        entity_type: type[T],
        entities: Sequence[T],
        *,
        conflict_columns: Sequence[str],
    ) -> None:
        """Insert or, on a ``conflict_columns`` collision, overwrite the stored row."""
        ...

    def sweep[T: InventoryEntity](
        self, entity_type: type[T], *, scope: Scope, as_of: datetime
    ) -> int:
        """Soft-delete live rows in ``scope`` last touched strictly before ``as_of``."""
        ...


@runtime_checkable
class ArchiveChunkStore(Protocol):
    """Persistence of archive/chunk reference counts."""

    def find_archive_chunks(self, archive_ids: Collection[int]) -> list[ArchiveChunk]: ...

    def upsert_archive_chunks(self, links: Sequence[ArchiveChunk]) -> None: ...

    def delete_archive_chunks(self, pairs: Iterable[tuple[int, int]]) -> int: ...

    def refresh_unused_chunks(self, datastore_id: int) -> int:
        """Flag chunks referenced by no live archive as unused; return flipped rows."""
        ...


@runtime_checkable
class InventoryStore(ReconcileStore, ArchiveChunkStore, Protocol):
    """Everything a full scan needs from persistence."""
