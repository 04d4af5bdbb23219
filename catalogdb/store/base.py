"""
Base protocol and errors for the document store.

The catalog core talks to its storage through the DocumentStore protocol.
Filters, update mutations and aggregation pipelines are plain dictionaries in
the store's native operator language ($and, $or, $eq, $in, $elemMatch,
$set, $push, $addToSet, $pull, $unwind, $group, ...), so the query compiler
can be tested without a database.

Invariants:
    - Every document carries an integer "_id" unique within its collection
    - update() is atomic per call and returns the number of documents changed
    - Duplicate-key violations are reported as DuplicateKeyError, never as a
      generic failure
    - Lock contention past the configured deadline raises StoreTimeoutError

How to change safely:
    - Protocol changes require updating all implementations
    - New operators must be added to catalogdb.store.matcher first
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

Document = dict[str, Any]
Filter = Mapping[str, Any]
SortSpec = Sequence[tuple[str, int]]

ASCENDING = 1
DESCENDING = -1


class StoreError(Exception):
    """Base exception for document store operations."""

    pass


class DuplicateKeyError(StoreError):
    """Insert or update violated a unique index or primary key."""

    def __init__(self, collection: str, message: str) -> None:
        super().__init__(f"Duplicate key in '{collection}': {message}")
        self.collection = collection


class StoreUnavailableError(StoreError):
    """Store could not be reached or failed at the transport level."""

    pass


class StoreTimeoutError(StoreError):
    """Store did not answer within the configured deadline."""

    pass


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for document store backends.

    Example:
        >>> store = SqliteDocumentStore("/var/lib/catalogdb/catalog.db")
        >>> await store.initialize()
        >>> await store.insert("cohort", {"_id": 1, "name": "ALL"})
        >>> await store.count("cohort", {"name": {"$eq": "ALL"}})
        1
    """

    async def ensure_unique_index(
        self,
        collection: str,
        name: str,
        fields: Sequence[str],
        exclude: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        """Declare a unique key, ignoring documents whose field holds an excluded value."""
        ...

    async def insert(self, collection: str, document: Document) -> None:
        """Insert one document.

        Raises:
            DuplicateKeyError: If "_id" or a unique index collides
        """
        ...

    async def find(
        self,
        collection: str,
        filter: Filter,
        projection: Mapping[str, int] | None = None,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Document]:
        """Return the documents matching a filter."""
        ...

    def iter_find(
        self,
        collection: str,
        filter: Filter,
        projection: Mapping[str, int] | None = None,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> AsyncIterator[Document]:
        """Stream matching documents; the cursor is closed on every exit path."""
        ...

    async def update(self, collection: str, filter: Filter, mutation: Mapping[str, Any]) -> int:
        """Apply a mutation to every matching document.

        Returns:
            Number of documents actually modified
        """
        ...

    async def count(self, collection: str, filter: Filter) -> int:
        """Count matching documents."""
        ...

    async def aggregate(self, collection: str, pipeline: Sequence[Mapping[str, Any]]) -> list[Document]:
        """Run an aggregation pipeline."""
        ...

    async def distinct(self, collection: str, field: str, filter: Filter) -> list[Any]:
        """Distinct values of a field among matching documents."""
        ...

    async def next_id(self, counter: str) -> int:
        """Atomically increment and return a named counter."""
        ...
