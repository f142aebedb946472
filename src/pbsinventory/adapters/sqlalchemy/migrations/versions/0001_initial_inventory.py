"""Initial inventory schema.

Revision ID: 0001_initial_inventory
Revises:
Create Date: 2026-10-18 09:00:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_initial_inventory"
down_revision = None
branch_labels = None
depends_on = None


def _envelope() -> list[sa.Column[object]]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "datastore",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("host_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("mountpoint", sa.String(), nullable=False),
        *_envelope(),
        sa.PrimaryKeyConstraint("id", name="pk_datastore"),
        sa.UniqueConstraint("host_id", "mountpoint", name="uq_datastore_identity"),
    )
    op.create_table(
        "namespace",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("datastore_id", sa.Integer(), nullable=False),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("path", sa.String(), nullable=False),
        *_envelope(),
        sa.ForeignKeyConstraint(
            ["datastore_id"],
            ["datastore.id"],
            name="fk_namespace_datastore_id_datastore",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["parent_id"], ["namespace.id"], name="fk_namespace_parent_id_namespace"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_namespace"),
        sa.UniqueConstraint("datastore_id", "path", name="uq_namespace_identity"),
    )
    op.create_table(
        "backup_group",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("datastore_id", sa.Integer(), nullable=False),
        sa.Column("namespace_id", sa.Integer(), nullable=True),
        sa.Column("namespace_path", sa.String(), nullable=False),
        sa.Column("backup_type", sa.Enum("vm", "ct", "host", native_enum=False), nullable=False),
        sa.Column("backup_id", sa.String(), nullable=False),
        *_envelope(),
        sa.ForeignKeyConstraint(
            ["datastore_id"],
            ["datastore.id"],
            name="fk_backup_group_datastore_id_datastore",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["namespace_id"], ["namespace.id"], name="fk_backup_group_namespace_id_namespace"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_backup_group"),
        sa.UniqueConstraint(
            "datastore_id",
            "namespace_path",
            "backup_type",
            "backup_id",
            name="uq_backup_group_identity",
        ),
    )
    op.create_table(
        "snapshot",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("datastore_id", sa.Integer(), nullable=False),
        sa.Column("group_id", sa.Integer(), nullable=False),
        sa.Column("time", sa.DateTime(timezone=True), nullable=False),
        *_envelope(),
        sa.ForeignKeyConstraint(
            ["datastore_id"],
            ["datastore.id"],
            name="fk_snapshot_datastore_id_datastore",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["group_id"],
            ["backup_group.id"],
            name="fk_snapshot_group_id_backup_group",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_snapshot"),
        sa.UniqueConstraint("group_id", "time", name="uq_snapshot_identity"),
    )
    op.create_index("ix_snapshot_datastore", "snapshot", ["datastore_id"])
    op.create_table(
        "archive",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("datastore_id", sa.Integer(), nullable=False),
        sa.Column("snapshot_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.Enum("file", "image", native_enum=False), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("uuid", sa.String(length=36), nullable=True),
        sa.Column("index_created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checksum", sa.String(length=64), nullable=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("chunk_size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("index_parsed", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("missing_chunks", sa.Boolean(), server_default=sa.false(), nullable=False),
        *_envelope(),
        sa.ForeignKeyConstraint(
            ["datastore_id"],
            ["datastore.id"],
            name="fk_archive_datastore_id_datastore",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["snapshot_id"],
            ["snapshot.id"],
            name="fk_archive_snapshot_id_snapshot",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_archive"),
        sa.UniqueConstraint("snapshot_id", "kind", "name", name="uq_archive_identity"),
    )
    op.create_index("ix_archive_datastore_kind", "archive", ["datastore_id", "kind"])
    op.create_table(
        "chunk",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("datastore_id", sa.Integer(), nullable=False),
        sa.Column("digest", sa.String(length=64), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("unused", sa.Boolean(), server_default=sa.false(), nullable=False),
        *_envelope(),
        sa.ForeignKeyConstraint(
            ["datastore_id"],
            ["datastore.id"],
            name="fk_chunk_datastore_id_datastore",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_chunk"),
        sa.UniqueConstraint("datastore_id", "digest", name="uq_chunk_identity"),
    )
    op.create_table(
        "archive_chunk",
        sa.Column("archive_id", sa.Integer(), nullable=False),
        sa.Column("chunk_id", sa.Integer(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(
            ["archive_id"],
            ["archive.id"],
            name="fk_archive_chunk_archive_id_archive",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["chunk_id"],
            ["chunk.id"],
            name="fk_archive_chunk_chunk_id_chunk",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("archive_id", "chunk_id", name="pk_archive_chunk"),
    )
    op.create_index("ix_archive_chunk_chunk", "archive_chunk", ["chunk_id"])


def downgrade() -> None:
    op.drop_index("ix_archive_chunk_chunk", table_name="archive_chunk")
    op.drop_table("archive_chunk")
    op.drop_table("chunk")
    op.drop_index("ix_archive_datastore_kind", table_name="archive")
    op.drop_table("archive")
    op.drop_index("ix_snapshot_datastore", table_name="snapshot")
    op.drop_table("snapshot")
    op.drop_table("backup_group")
    op.drop_table("namespace")
    op.drop_table("datastore")
