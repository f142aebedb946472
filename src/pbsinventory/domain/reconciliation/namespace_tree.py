"""Parent wiring for a datastore's namespace tree."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pbsinventory.domain.errors import NamespaceTreeError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from pbsinventory.domain.model import Namespace


def wire_namespace_parents(namespaces: Iterable[Namespace]) -> list[Namespace]:
    """Point every namespace at the namespace one path segment shorter.

    Nodes are visited by ascending path length, so an ancestor is always seen before
    its descendants; a missing ancestor means the set was not prefix-closed and
    raises ``NamespaceTreeError``. Returns the namespaces whose parent id changed.
    """

    processed: dict[str, Namespace] = {}
    changed: list[Namespace] = []
    for namespace in sorted(namespaces, key=lambda node: (len(node.path), node.path)):
        parent_path = namespace.parent_path
        parent: Namespace | None = None
        if parent_path is not None:
            parent = processed.get(parent_path)
            if parent is None:
                raise NamespaceTreeError(namespace.path, parent_path)
        parent_id = None if parent is None else parent.persisted_id
        namespace.parent = parent
        if namespace.parent_id != parent_id:
            namespace.parent_id = parent_id
            changed.append(namespace)
        processed[namespace.path] = namespace
    return changed
