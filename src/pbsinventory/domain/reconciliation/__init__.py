"""Key-indexed reconciliation of observed records against persisted entities."""

from __future__ import annotations

from .contracts import LevelAdapter, ReconcileOptions, ResultFilter, SelfReferencing
from .engine import ReconcileStats, reconcile
from .keys import Key, make_key

__all__ = [
    "Key",
    "LevelAdapter",
    "ReconcileOptions",
    "ReconcileStats",
    "ResultFilter",
    "SelfReferencing",
    "make_key",
    "reconcile",
]
