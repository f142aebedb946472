"""SQLAlchemy table metadata for the inventory graph.

Entities stay plain dataclasses; the store translates between rows and entities
through ``ENTITY_TABLES`` instead of ORM instrumentation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Dialect,
    Enum,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    TypeDecorator,
    UniqueConstraint,
    false,
)

from pbsinventory.domain.model import (
    ArchiveKind,
    BackupType,
    Chunk,
    Datastore,
    FileArchive,
    Group,
    ImageArchive,
    InventoryEntity,
    Namespace,
    Snapshot,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


def _value_enum(enum_type: type[StrEnum]) -> Enum:
    return Enum(
        enum_type,
        native_enum=False,
        values_callable=lambda members: [member.value for member in members],
    )


metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_label)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)


def _envelope_columns() -> list[Column[Any]]:
    return [
        Column("created_at", UTCDateTime(), nullable=False),
        Column("updated_at", UTCDateTime(), nullable=False),
        Column("deleted_at", UTCDateTime(), nullable=True),
        Column("version", Integer, nullable=False, default=1),
    ]


# Core tables -----------------------------------------------------------------

datastore_table = Table(
    "datastore",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("host_id", Integer, nullable=False),
    Column("name", String, nullable=False),
    Column("mountpoint", String, nullable=False),
    *_envelope_columns(),
    UniqueConstraint("host_id", "mountpoint", name="uq_datastore_identity"),
)

namespace_table = Table(
    "namespace",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "datastore_id", Integer, ForeignKey("datastore.id", ondelete="CASCADE"), nullable=False
    ),
    Column("parent_id", Integer, ForeignKey("namespace.id"), nullable=True),
    Column("name", String, nullable=False),
    Column("path", String, nullable=False),
    *_envelope_columns(),
    UniqueConstraint("datastore_id", "path", name="uq_namespace_identity"),
)

group_table = Table(
    "backup_group",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "datastore_id", Integer, ForeignKey("datastore.id", ondelete="CASCADE"), nullable=False
    ),
    Column("namespace_id", Integer, ForeignKey("namespace.id"), nullable=True),
    # "" is the datastore root; keeps the identity constraint free of NULLs
    Column("namespace_path", String, nullable=False, default=""),
    Column("backup_type", _value_enum(BackupType), nullable=False),
    Column("backup_id", String, nullable=False),
    *_envelope_columns(),
    UniqueConstraint(
        "datastore_id",
        "namespace_path",
        "backup_type",
        "backup_id",
        name="uq_backup_group_identity",
    ),
)

snapshot_table = Table(
    "snapshot",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "datastore_id", Integer, ForeignKey("datastore.id", ondelete="CASCADE"), nullable=False
    ),
    Column(
        "group_id", Integer, ForeignKey("backup_group.id", ondelete="CASCADE"), nullable=False
    ),
    Column("time", UTCDateTime(), nullable=False),
    *_envelope_columns(),
    UniqueConstraint("group_id", "time", name="uq_snapshot_identity"),
    Index("ix_snapshot_datastore", "datastore_id"),
)

archive_table = Table(
    "archive",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "datastore_id", Integer, ForeignKey("datastore.id", ondelete="CASCADE"), nullable=False
    ),
    Column(
        "snapshot_id", Integer, ForeignKey("snapshot.id", ondelete="CASCADE"), nullable=False
    ),
    Column("kind", _value_enum(ArchiveKind), nullable=False),
    Column("name", String, nullable=False),
    Column("uuid", String(36), nullable=True),
    Column("index_created_at", UTCDateTime(), nullable=True),
    Column("checksum", String(64), nullable=True),
    Column("size_bytes", BigInteger, nullable=True),
    Column("chunk_size_bytes", BigInteger, nullable=True),
    Column("index_parsed", Boolean, nullable=False, default=False, server_default=false()),
    Column("missing_chunks", Boolean, nullable=False, default=False, server_default=false()),
    *_envelope_columns(),
    UniqueConstraint("snapshot_id", "kind", "name", name="uq_archive_identity"),
    Index("ix_archive_datastore_kind", "datastore_id", "kind"),
)

chunk_table = Table(
    "chunk",
    metadata,
    Column("id", Integer, primary_key=True),
    Column(
        "datastore_id", Integer, ForeignKey("datastore.id", ondelete="CASCADE"), nullable=False
    ),
    Column("digest", String(64), nullable=False),
    Column("size_bytes", BigInteger, nullable=True),
    Column("unused", Boolean, nullable=False, default=False, server_default=false()),
    *_envelope_columns(),
    UniqueConstraint("datastore_id", "digest", name="uq_chunk_identity"),
)

archive_chunk_table = Table(
    "archive_chunk",
    metadata,
    Column(
        "archive_id", Integer, ForeignKey("archive.id", ondelete="CASCADE"), primary_key=True
    ),
    Column("chunk_id", Integer, ForeignKey("chunk.id", ondelete="CASCADE"), primary_key=True),
    Column("count", Integer, nullable=False),
    Index("ix_archive_chunk_chunk", "chunk_id"),
)


@dataclass(frozen=True, slots=True)
class EntityTable:
    """Where an entity type lives; ``discriminator`` pins rows of a shared table."""

    table: Table
    discriminator: tuple[str, Any] | None = None


ENTITY_TABLES: Final[dict[type[InventoryEntity], EntityTable]] = {
    Datastore: EntityTable(datastore_table),
    Namespace: EntityTable(namespace_table),
    Group: EntityTable(group_table),
    Snapshot: EntityTable(snapshot_table),
    FileArchive: EntityTable(archive_table, ("kind", ArchiveKind.FILE)),
    ImageArchive: EntityTable(archive_table, ("kind", ArchiveKind.IMAGE)),
    Chunk: EntityTable(chunk_table),
}

# relation attribute -> entity type it points at, through "<relation>_id"
RELATION_TARGETS: Final[dict[str, type[InventoryEntity]]] = {
    "parent": Namespace,
    "namespace": Namespace,
    "group": Group,
    "snapshot": Snapshot,
}


def entity_table(entity_type: type[InventoryEntity]) -> EntityTable:
    try:
        return ENTITY_TABLES[entity_type]
    except KeyError as exc:
        raise TypeError(f"{entity_type.__name__} is not a persisted entity type") from exc


def create_all_tables(engine: Engine) -> None:
    """Create tables without migrations; for throwaway databases."""

    log.info("Creating inventory tables")
    metadata.create_all(engine)
