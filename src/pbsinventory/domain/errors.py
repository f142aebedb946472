"""Failure taxonomy for the discovery-to-reconciliation pipeline.

None of these are recovered inside the domain; they propagate to the unit of work,
which rolls the scan back.
"""

from __future__ import annotations


class InventoryError(Exception):
    """Base class for all inventory failures."""


class IndexDecodeError(InventoryError):
    """Malformed index file: truncated buffer, unknown magic or misaligned table."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class PathGrammarError(InventoryError):
    """A discovered path does not match the expected layout."""

    def __init__(self, message: str, *, path: str) -> None:
        self.path = path
        super().__init__(f"{message}: {path!r}")


class ReferentialError(InventoryError):
    """A raw record names a parent that its parent level did not produce."""

    def __init__(self, level: str, key: str, message: str = "unknown parent") -> None:
        self.level = level
        self.key = key
        super().__init__(f"[{level}] {message}: {key}")


class NamespaceTreeError(ReferentialError):
    """The namespace set of a datastore is not closed under path prefixes."""

    def __init__(self, path: str, parent_path: str) -> None:
        self.path = path
        self.parent_path = parent_path
        super().__init__("namespace", path, f"ancestor {parent_path!r} was not reconciled")


class ConsistencyError(InventoryError):
    """The persistence collaborator broke its contract (e.g. a short RETURNING set)."""

    def __init__(self, level: str, *, expected: int, actual: int) -> None:
        self.level = level
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"[{level}] batch insert returned {actual} ids for {expected} records"
        )
