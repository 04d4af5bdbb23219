"""
Document store layer for CatalogDB.

This package contains:
- base: DocumentStore protocol and store errors
- matcher: Evaluation of filters, mutations and pipelines
- sqlite_store: SQLite-backed DocumentStore
- ids: Identifier allocation over the store's atomic counter
"""

from .base import (
    ASCENDING,
    DESCENDING,
    Document,
    DocumentStore,
    DuplicateKeyError,
    Filter,
    StoreError,
    StoreTimeoutError,
    StoreUnavailableError,
)
from .ids import IdAllocator
from .sqlite_store import SqliteDocumentStore

__all__ = [
    "ASCENDING",
    "DESCENDING",
    "Document",
    "DocumentStore",
    "DuplicateKeyError",
    "Filter",
    "IdAllocator",
    "SqliteDocumentStore",
    "StoreError",
    "StoreTimeoutError",
    "StoreUnavailableError",
]
