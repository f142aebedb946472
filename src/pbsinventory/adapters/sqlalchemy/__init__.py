"""SQLAlchemy adapter package for pbsinventory."""

from __future__ import annotations

from .mappings import ENTITY_TABLES, create_all_tables, metadata
from .store import SqlAlchemyInventoryStore

__all__ = [
    "ENTITY_TABLES",
    "SqlAlchemyInventoryStore",
    "create_all_tables",
    "metadata",
]
