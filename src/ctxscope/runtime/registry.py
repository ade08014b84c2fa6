"""
Scope store registry.

Owns one Store (a mapping from ContextKey to the live context value) per scope
root. Roots are fully independent and every operation is keyed by root id, so
no cross-root locking is needed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterator, Mapping, Optional

from ctxscope.config.logging_config import get_logger

if TYPE_CHECKING:
    from ctxscope.runtime.keys import ContextKey

log = get_logger(__name__)

Store = Dict["ContextKey[Any]", Any]


class ScopeStoreRegistry:
    """Maps scope root ids to their Stores."""

    def __init__(self) -> None:
        self._stores: Dict[int, Store] = {}

    def create_root(self, root_id: int, initial: Optional[Mapping["ContextKey[Any]", Any]] = None) -> Store:
        """
        Create the Store for a new scope root.

        Args:
            root_id: Id of the unit anchoring the scope.
            initial: Optional key/value pairs to seed the Store with.

        Returns:
            The new Store. Values are referenced, not copied.

        Raises:
            ValueError: If a Store already exists for ``root_id``.
        """
        if root_id in self._stores:
            raise ValueError(f"Scope root {root_id} already has a store")
        store: Store = dict(initial) if initial else {}
        self._stores[root_id] = store
        return store

    def get_store(self, root_id: int) -> Optional[Store]:
        return self._stores.get(root_id)

    def delete_root(self, root_id: int) -> bool:
        """Delete a root's Store. Returns False if it was already gone."""
        store = self._stores.pop(root_id, None)
        if store is None:
            return False
        log.debug("Released store for scope root %s", root_id)
        return True

    def root_ids(self) -> list[int]:
        return list(self._stores)

    def __contains__(self, root_id: object) -> bool:
        return root_id in self._stores

    def __len__(self) -> int:
        return len(self._stores)

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._stores))
