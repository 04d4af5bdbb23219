"""
Identifier allocation for catalog entities.

Identifiers come from a named counter incremented atomically by the document
store, so writers in different processes never receive the same value.

Invariants:
    - Identifiers are positive integers
    - Each allocator instance returns strictly increasing values
    - A failing store call propagates; no identifier is synthesized locally
"""

from __future__ import annotations

import logging

from .base import DocumentStore, StoreError

logger = logging.getLogger(__name__)


class IdAllocator:
    """Issues unique entity identifiers from a store counter.

    All entity kinds of a catalog share one counter, so an identifier also
    identifies the entity across collections.

    Example:
        >>> allocator = IdAllocator(store)
        >>> await allocator.next()
        1
    """

    def __init__(self, store: DocumentStore, counter: str = "catalog") -> None:
        self._store = store
        self._counter = counter
        self._last = 0

    @property
    def counter(self) -> str:
        return self._counter

    async def next(self) -> int:
        """Allocate the next identifier.

        Raises:
            StoreError: If the store fails or returns a value that is not
                greater than the previously allocated one
        """
        value = await self._store.next_id(self._counter)
        if value <= 0 or value <= self._last:
            raise StoreError(
                f"Counter '{self._counter}' returned {value} after {self._last}; "
                "refusing to hand out a duplicate identifier"
            )
        self._last = value
        logger.debug("Allocated identifier", extra={"counter": self._counter, "id": value})
        return value
