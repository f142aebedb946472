"""Capability interfaces between the reconciliation engine and level adapters."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from datetime import datetime

    from pbsinventory.domain.model import InventoryEntity
    from pbsinventory.domain.ports.persistence import ReconcileStore

    from .keys import Key


@dataclass(frozen=True, slots=True)
class ReconcileOptions:
    """Optional narrowing of the mapping returned by ``reconcile``."""

    filter_existing: bool = False
    filter_relevant: bool = False


@runtime_checkable
class LevelAdapter[T: InventoryEntity, R](Protocol):
    """Per-level rules the engine needs; the engine never inspects entity kinds."""

    @property
    def level(self) -> str: ...

    @property
    def entity_type(self) -> type[T]: ...

    @property
    def key_columns(self) -> Sequence[str]:
        """Unique columns used as the upsert conflict target."""
        ...

    def load(self, store: ReconcileStore) -> Sequence[T]: ...

    def entity_key(self, entity: T) -> Key: ...

    def raw_key(self, raw: R) -> Key: ...

    def create(self, raw: R) -> T: ...

    def update(self, entity: T, raw: R) -> bool:
        """Apply ``raw`` onto ``entity``; return whether a stored value changed."""
        ...

    def mark(self, entity: T, as_of: datetime, *, changed: bool) -> None: ...

    def assign_id(self, entity: T, entity_id: int) -> None: ...

    def sweep(self, store: ReconcileStore, as_of: datetime) -> int: ...


@runtime_checkable
class SelfReferencing[T](Protocol):
    """Adapters whose entities point at entities of the same level."""

    def wire_self_reference(self, entity: T, mapping: Mapping[Key, T]) -> bool:
        """Fill the self-referencing foreign key; return whether it changed."""
        ...


@runtime_checkable
class ResultFilter[T](Protocol):
    """Adapters able to narrow the mapping handed to the next level."""

    def existing(self, mapping: Mapping[Key, T]) -> dict[Key, T]: ...

    def relevant(self, mapping: Mapping[Key, T]) -> dict[Key, T]: ...
