"""SQLAlchemy Core implementation of the inventory store port."""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import fields
from itertools import batched
from logging import getLogger
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, insert, select, tuple_, update
from sqlalchemy.dialects import postgresql, sqlite

from pbsinventory.config.sync import DEFAULT_BATCH_SIZE
from pbsinventory.domain.model import ENVELOPE_FIELDS, ArchiveChunk, MetadataEnvelope

from .mappings import (
    RELATION_TARGETS,
    archive_chunk_table,
    archive_table,
    chunk_table,
    entity_table,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from datetime import datetime

    from sqlalchemy import ColumnElement, Connection, RowMapping, Table
    from sqlalchemy.orm import Session

    from pbsinventory.domain.model import InventoryEntity
    from pbsinventory.domain.ports.persistence import Relations, Scope

    from .mappings import EntityTable

log = getLogger(__name__)

_UPSERT_DIALECTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


class SqlAlchemyInventoryStore:
    """Runs every statement on the session's connection; committing is the caller's job."""

    def __init__(self, session: Session, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.session = session
        self.batch_size = batch_size

    @property
    def connection(self) -> Connection:
        return self.session.connection()

    # Reading -------------------------------------------------------------------

    def _where(self, spec: EntityTable, scope: Scope) -> list[ColumnElement[bool]]:
        table = spec.table
        clauses: list[ColumnElement[bool]] = []
        for name, value in scope.items():
            column = table.c[name]
            if isinstance(value, Collection) and not isinstance(value, str):
                clauses.append(column.in_(list(value)))
            else:
                clauses.append(column == value)
        if spec.discriminator is not None:
            name, value = spec.discriminator
            clauses.append(table.c[name] == value)
        return clauses

    def _to_entity[T: InventoryEntity](self, entity_type: type[T], row: RowMapping) -> T:
        names = {field.name for field in fields(entity_type)}
        values = {
            key: value
            for key, value in row.items()
            if key in names and key not in ENVELOPE_FIELDS
        }
        envelope = MetadataEnvelope(**{name: row[name] for name in ENVELOPE_FIELDS})
        return entity_type(**values, metadata=envelope)

    def _select[T: InventoryEntity](
        self, entity_type: type[T], scope: Scope, *, lock: bool
    ) -> list[T]:
        spec = entity_table(entity_type)
        stmt = select(spec.table).where(*self._where(spec, scope))
        if lock:
            stmt = stmt.with_for_update()
        rows = self.connection.execute(stmt).mappings().all()
        return [self._to_entity(entity_type, row) for row in rows]

    def find[T: InventoryEntity](
        self,
        entity_type: type[T],
        *,
        scope: Scope,
        relations: Relations | None = None,
        lock: bool = False,
    ) -> list[T]:
        entities = self._select(entity_type, scope, lock=lock)
        self._load_relations(entities, relations or {}, lock=lock)
        return entities

    def _find_by_ids[T: InventoryEntity](
        self, entity_type: type[T], ids: Collection[int], *, lock: bool
    ) -> list[T]:
        found: list[T] = []
        for batch in batched(sorted(ids), self.batch_size):
            found.extend(self._select(entity_type, {"id": batch}, lock=lock))
        return found

    def _load_relations(
        self, entities: Sequence[InventoryEntity], relations: Relations, *, lock: bool
    ) -> None:
        for name, nested in relations.items():
            target_type = RELATION_TARGETS[name]
            foreign_key = f"{name}_id"
            ids = {
                value for entity in entities if (value := getattr(entity, foreign_key)) is not None
            }
            targets = self._find_by_ids(target_type, ids, lock=lock) if ids else []
            self._load_relations(targets, nested, lock=lock)
            by_id = {target.id: target for target in targets}
            for entity in entities:
                setattr(entity, name, by_id.get(getattr(entity, foreign_key)))

    # Writing -------------------------------------------------------------------

    def _to_row(self, spec: EntityTable, entity: InventoryEntity) -> dict[str, Any]:
        envelope = entity.metadata
        if envelope is None:
            raise ValueError(f"{entity.level} entity written without metadata")
        row: dict[str, Any] = {}
        for column in spec.table.columns:
            name = column.name
            if name == "id":
                continue
            if name in ENVELOPE_FIELDS:
                row[name] = getattr(envelope, name)
            elif spec.discriminator is not None and name == spec.discriminator[0]:
                row[name] = spec.discriminator[1]
            else:
                row[name] = getattr(entity, name, None)
        return row

    def insert_many[T: InventoryEntity](
        self, entity_type: type[T], entities: Sequence[T]
    ) -> list[int]:
        spec = entity_table(entity_type)
        table = spec.table
        stmt = insert(table).returning(table.c.id, sort_by_parameter_order=True)
        ids: list[int] = []
        for batch in batched(entities, self.batch_size):
            rows = [self._to_row(spec, entity) for entity in batch]
            ids.extend(self.connection.execute(stmt, rows).scalars().all())
        log.debug("Inserted %d %s rows", len(ids), table.name)
        return ids

    def _upsert_statement(
        self, table: Table, conflict_columns: Sequence[str], update_columns: Sequence[str]
    ) -> Any:
        dialect = self.connection.dialect.name
        try:
            dialect_insert = _UPSERT_DIALECTS[dialect]
        except KeyError as exc:
            raise NotImplementedError(f"Upserts are not supported on {dialect}") from exc
        stmt = dialect_insert(table)
        return stmt.on_conflict_do_update(
            index_elements=list(conflict_columns),
            set_={name: stmt.excluded[name] for name in update_columns},
        )

    def upsert_many[T: InventoryEntity](
        self,
        entity_type: type[T],
        entities: Sequence[T],
        *,
        conflict_columns: Sequence[str],
    ) -> None:
        spec = entity_table(entity_type)
        table = spec.table
        keep = {"id", "created_at", *conflict_columns}
        update_columns = [column.name for column in table.columns if column.name not in keep]
        stmt = self._upsert_statement(table, conflict_columns, update_columns)
        for batch in batched(entities, self.batch_size):
            self.connection.execute(stmt, [self._to_row(spec, entity) for entity in batch])
        log.debug("Upserted %d %s rows", len(entities), table.name)

    def sweep[T: InventoryEntity](
        self, entity_type: type[T], *, scope: Scope, as_of: datetime
    ) -> int:
        spec = entity_table(entity_type)
        table = spec.table
        stmt = (
            update(table)
            .where(
                *self._where(spec, scope),
                table.c.updated_at < as_of,
                table.c.deleted_at.is_(None),
            )
            .values(deleted_at=as_of)
        )
        swept = self.connection.execute(stmt).rowcount
        log.debug("Swept %d %s rows", swept, table.name)
        return swept

    # Archive/chunk links -------------------------------------------------------

    def find_archive_chunks(self, archive_ids: Collection[int]) -> list[ArchiveChunk]:
        links: list[ArchiveChunk] = []
        table = archive_chunk_table
        for batch in batched(sorted(archive_ids), self.batch_size):
            rows = self.connection.execute(select(table).where(table.c.archive_id.in_(batch)))
            links.extend(
                ArchiveChunk(archive_id=row.archive_id, chunk_id=row.chunk_id, count=row.count)
                for row in rows
            )
        return links

    def upsert_archive_chunks(self, links: Sequence[ArchiveChunk]) -> None:
        stmt = self._upsert_statement(archive_chunk_table, ("archive_id", "chunk_id"), ("count",))
        for batch in batched(links, self.batch_size):
            self.connection.execute(
                stmt,
                [
                    {"archive_id": link.archive_id, "chunk_id": link.chunk_id, "count": link.count}
                    for link in batch
                ],
            )

    def delete_archive_chunks(self, pairs: Iterable[tuple[int, int]]) -> int:
        table = archive_chunk_table
        removed = 0
        for batch in batched(pairs, self.batch_size):
            stmt = delete(table).where(tuple_(table.c.archive_id, table.c.chunk_id).in_(batch))
            removed += self.connection.execute(stmt).rowcount
        return removed

    def refresh_unused_chunks(self, datastore_id: int) -> int:
        referenced = (
            select(archive_chunk_table.c.chunk_id)
            .join(archive_table, archive_table.c.id == archive_chunk_table.c.archive_id)
            .where(archive_table.c.deleted_at.is_(None))
        )
        in_datastore = chunk_table.c.datastore_id == datastore_id
        now_unused = (
            update(chunk_table)
            .where(
                in_datastore,
                chunk_table.c.unused.is_(False),
                chunk_table.c.id.not_in(referenced),
            )
            .values(unused=True)
        )
        now_used = (
            update(chunk_table)
            .where(
                in_datastore,
                chunk_table.c.unused.is_(True),
                chunk_table.c.id.in_(referenced),
            )
            .values(unused=False)
        )
        flipped = self.connection.execute(now_unused).rowcount
        flipped += self.connection.execute(now_used).rowcount
        return flipped
