"""
CatalogDB - entity-query compiler and permission engine for a metadata catalog.

CatalogDB stores biomedical catalog entities (cohorts, samples) as documents
and provides:
- Loosely typed queries ("name": "A,B", "nattributes.age": ">20") compiled
  into store filters, including annotation sub-queries
- Permission entries that keep each member in exactly one entry
- A soft-delete lifecycle with guarded transitions
- Unique identifiers from an atomic store counter

Architecture:
    Caller -> EntityAdaptor -> Filter compiler -> DocumentStore (SQLite)
                            -> ACL engine ----^
                            -> IdAllocator ---^

Package layout:
- store/: DocumentStore protocol, SQLite backend, filter matcher, ids
- query/: Query model, param tables, value parsing, compiler
- lifecycle: Status states and the delete guard
- acl: Permission merge engine
- adaptors/: Entity kinds
- directory: Study/principal and variable-set collaborators
- catalog: Wiring from Settings
"""

from ._version import __version__

__all__ = ["__version__"]
