"""Domain port definitions for adapters."""

from __future__ import annotations

from .discovery import DiscoverySource
from .persistence import ArchiveChunkStore, InventoryStore, ReconcileStore, Relations, Scope
from .unit_of_work import InventoryUnitOfWork

__all__ = [
    "ArchiveChunkStore",
    "DiscoverySource",
    "InventoryStore",
    "InventoryUnitOfWork",
    "ReconcileStore",
    "Relations",
    "Scope",
]
