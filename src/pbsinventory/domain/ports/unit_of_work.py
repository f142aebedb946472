"""Unit-of-work abstraction around one scan's transaction."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from types import TracebackType

    from pbsinventory.domain.ports.persistence import InventoryStore


@runtime_checkable
class InventoryUnitOfWork(Protocol):
    """Transaction boundary exposing the inventory store."""

    @property
    def store(self) -> InventoryStore: ...

    def __enter__(self) -> InventoryUnitOfWork: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...
