"""Generic per-level reconciliation.

One call merges the raw records observed for a level into the persisted entities
of that level: load, key-indexed diff, batch insert, self-reference wiring,
batch upsert, sweep. Levels differ only through their adapter.
"""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from pbsinventory.domain.errors import ConsistencyError

from .contracts import ReconcileOptions, ResultFilter, SelfReferencing

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from pbsinventory.domain.model import InventoryEntity
    from pbsinventory.domain.ports.persistence import ReconcileStore

    from .contracts import LevelAdapter
    from .keys import Key

log = getLogger(__name__)

DEFAULT_OPTIONS = ReconcileOptions()


@dataclass(slots=True)
class ReconcileStats:
    level: str
    loaded: int = 0
    observed: int = 0
    inserted: int = 0
    updated: int = 0
    changed: int = 0
    revived: int = 0
    swept: int = 0


def reconcile[T: InventoryEntity, R](
    store: ReconcileStore,
    raws: Iterable[R],
    as_of: datetime,
    adapter: LevelAdapter[T, R],
    options: ReconcileOptions = DEFAULT_OPTIONS,
) -> dict[Key, T]:
    """Reconcile one level and return its key -> entity mapping.

    The mapping holds every entity of the adapter's scope, including the ones
    swept by this call, unless ``options`` asks the adapter to narrow it. Raw
    records sharing a key are folded into one observation.
    """

    stats = ReconcileStats(level=adapter.level)
    mapping: dict[Key, T] = {}
    for entity in adapter.load(store):
        mapping[adapter.entity_key(entity)] = entity
    stats.loaded = len(mapping)

    observed: dict[Key, list[R]] = {}
    for raw in raws:
        observed.setdefault(adapter.raw_key(raw), []).append(raw)
    stats.observed = len(observed)

    inserts: list[T] = []
    updates: list[T] = []
    for key, records in observed.items():
        entity = mapping.get(key)
        if entity is None:
            entity = adapter.create(records[0])
            for raw in records[1:]:
                adapter.update(entity, raw)
            adapter.mark(entity, as_of, changed=False)
            mapping[key] = entity
            inserts.append(entity)
            continue

        changed = False
        for raw in records:
            changed = adapter.update(entity, raw) or changed
        if entity.is_deleted:
            stats.revived += 1
        if changed:
            stats.changed += 1
        adapter.mark(entity, as_of, changed=changed)
        updates.append(entity)

    if inserts:
        ids = store.insert_many(adapter.entity_type, inserts)
        if len(ids) != len(inserts):
            raise ConsistencyError(adapter.level, expected=len(inserts), actual=len(ids))
        for entity, entity_id in zip(inserts, ids, strict=True):
            adapter.assign_id(entity, entity_id)
    stats.inserted = len(inserts)

    if isinstance(adapter, SelfReferencing):
        wired = [entity for entity in inserts if adapter.wire_self_reference(entity, mapping)]
        updates.extend(wired)

    if updates:
        store.upsert_many(adapter.entity_type, updates, conflict_columns=adapter.key_columns)
    stats.updated = len(updates)

    stats.swept = adapter.sweep(store, as_of)
    for key, entity in mapping.items():
        if key in observed or entity.metadata is None:
            continue
        if entity.metadata.updated_at < as_of:
            entity.metadata.mark_deleted(as_of)

    log.info(
        "Reconciled %s: loaded=%d observed=%d inserted=%d updated=%d changed=%d "
        "revived=%d swept=%d",
        stats.level,
        stats.loaded,
        stats.observed,
        stats.inserted,
        stats.updated,
        stats.changed,
        stats.revived,
        stats.swept,
    )

    if isinstance(adapter, ResultFilter):
        if options.filter_existing:
            mapping = adapter.existing(mapping)
        if options.filter_relevant:
            mapping = adapter.relevant(mapping)
    return mapping
