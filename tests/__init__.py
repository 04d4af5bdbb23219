"""
CatalogDB Test Suite.

This package contains:
- unit/: Unit tests (no database)
- integration/: Integration tests (SQLite catalog in a temporary directory)
"""
