"""Composite reconciliation keys.

A key identifies an entity by its ancestor chain plus local discriminators, so it
exists before the store assigns an id. Keys are opaque: compare them for equality
only.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from typing import NewType

Key = NewType("Key", str)

type KeyPart = str | int | datetime | Enum | None


def _normalize(part: KeyPart) -> str | int | None:
    if part is None:
        return None
    if isinstance(part, Enum):
        return str(part.value)
    if isinstance(part, datetime):
        value = part if part.tzinfo else part.replace(tzinfo=UTC)
        return value.astimezone(UTC).isoformat()
    return part


def make_key(*parts: KeyPart) -> Key:
    """Join ``parts`` into a key.

    Parts are JSON-encoded as an array, so separators inside a part are escaped and
    ``None`` stays distinct from the string ``"null"``. Nested keys are strings and
    are quoted like any other part.
    """

    normalized = [_normalize(part) for part in parts]
    return Key(json.dumps(normalized, separators=(",", ":"), ensure_ascii=False))


def datastore_key(host_id: int, mountpoint: str) -> Key:
    return make_key(host_id, mountpoint)


def namespace_key(datastore_id: int, path: str) -> Key:
    return make_key(datastore_id, path)


def group_key(
    mountpoint: str, namespace_path: str | None, backup_type: Enum, backup_id: str
) -> Key:
    return make_key(mountpoint, namespace_path or None, backup_type, backup_id)


def snapshot_key(group: Key, time: datetime) -> Key:
    return make_key(group, time)


def archive_key(snapshot: Key, kind: Enum, name: str) -> Key:
    return make_key(snapshot, kind, name)


def chunk_key(datastore_id: int, digest: str) -> Key:
    return make_key(datastore_id, digest.lower())
