"""
Base building blocks:
storage identity and the soft-delete/version metadata envelope.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from datetime import datetime

ENVELOPE_FIELDS: tuple[str, ...] = ("created_at", "updated_at", "deleted_at", "version")


@dataclass(slots=True, kw_only=True)
class MetadataEnvelope:
    """Lifecycle stamps shared by every reconciled entity."""

    created_at: datetime
    updated_at: datetime
    deleted_at: datetime | None = None
    version: int = 1

    @classmethod
    def new(cls, at: datetime) -> MetadataEnvelope:
        return cls(created_at=at, updated_at=at)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def touch(self, at: datetime, *, changed: bool) -> bool:
        """Record an observation at ``at``; return whether it revived the entity.

        The version moves at most once per observation, on change or revival.
        """

        revived = self.deleted_at is not None
        self.updated_at = at
        self.deleted_at = None
        if changed or revived:
            self.version += 1
        return revived

    def mark_deleted(self, at: datetime) -> None:
        if self.deleted_at is None:
            self.deleted_at = at


@dataclass(eq=False, kw_only=True)
class InventoryEntity:
    """A persisted node of the inventory graph.

    ``id`` stays ``None`` until the store assigns one; reconciliation identifies
    entities by composite key, never by id.
    """

    id: int | None = None
    metadata: MetadataEnvelope | None = None

    # class-level level name; subclasses must override
    LEVEL: ClassVar[str]

    @property
    def level(self) -> str:
        return self.LEVEL

    @property
    def persisted_id(self) -> int:
        if self.id is None:
            raise ValueError(f"{self.LEVEL} entity has not been persisted yet")
        return self.id

    @property
    def is_deleted(self) -> bool:
        return self.metadata is not None and self.metadata.is_deleted
