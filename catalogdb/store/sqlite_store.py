"""
SQLite-backed document store for CatalogDB.

This module manages the catalog database file that stores:
- Documents of every entity collection as JSON bodies
- Named counters used for identifier allocation
- Unique expression indexes declared by the entity adaptors

Filters are evaluated inside SQLite through a registered deterministic
function (catalog_match) backed by catalogdb.store.matcher, so counting,
sorting, skipping and limiting happen in the database and cursors stream.

Invariants:
    - One row per (collection, doc_id); doc_id mirrors the body's "_id"
    - Every update runs in a BEGIN IMMEDIATE transaction: the read of the
      matching documents and the write-back are atomic
    - Counters are incremented under the same write lock, so next_id is
      unique and increasing across processes sharing the file
    - Unique index violations surface as DuplicateKeyError

How to change safely:
    - Schema migrations must be backward compatible
    - New index kinds must use deterministic SQL functions only
    - Use transactions for all read-modify-write operations

Table schema:
    documents:
        - collection TEXT
        - doc_id INTEGER
        - body TEXT (JSON)
        - PRIMARY KEY (collection, doc_id)

    counters:
        - name TEXT PRIMARY KEY
        - value INTEGER
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from collections.abc import AsyncIterator, Iterator, Mapping, Sequence
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from typing import Any

from . import matcher
from .base import (
    Document,
    DuplicateKeyError,
    Filter,
    SortSpec,
    StoreError,
    StoreTimeoutError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_FIELD_PATH = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


@lru_cache(maxsize=512)
def _parse_filter(filter_json: str) -> dict[str, Any]:
    return json.loads(filter_json)


def _catalog_match(body: str, filter_json: str) -> int:
    return int(matcher.matches(json.loads(body), _parse_filter(filter_json)))


def _json_path(path: str) -> str:
    if not _FIELD_PATH.match(path):
        raise StoreError(f"Invalid field path: {path!r}")
    return "$." + path


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class SqliteDocumentStore:
    """SQLite implementation of the DocumentStore protocol.

    Thread safety:
        Each operation opens its own connection. SQLite serializes writers
        and the busy timeout bounds how long a caller waits for the lock.

    Example:
        >>> store = SqliteDocumentStore("/var/lib/catalogdb/catalog.db")
        >>> await store.initialize()
        >>> await store.insert("cohort", {"_id": 1, "name": "ALL"})
        >>> docs = await store.find("cohort", {"name": {"$eq": "ALL"}})
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str | Path,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the document store.

        Args:
            db_path: SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: How long a call waits on a locked database
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection and close it on every exit path."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open catalog database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row

        try:
            with self._translate_errors("connect"):
                conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
                conn.execute(f"PRAGMA cache_size = {int(self.cache_size_pages)}")
                if self.wal_mode:
                    conn.execute("PRAGMA journal_mode = WAL")
                conn.execute("PRAGMA synchronous = NORMAL")
                conn.create_function("catalog_match", 2, _catalog_match, deterministic=True)

            yield conn
        finally:
            conn.close()

    @contextmanager
    def _translate_errors(self, operation: str, collection: str = "") -> Iterator[None]:
        try:
            yield
        except sqlite3.IntegrityError as e:
            if "UNIQUE constraint failed" in str(e):
                raise DuplicateKeyError(collection, str(e)) from e
            raise StoreError(f"{operation} failed: {e}") from e
        except sqlite3.OperationalError as e:
            message = str(e).lower()
            if "locked" in message or "busy" in message:
                raise StoreTimeoutError(
                    f"{operation} timed out after {self.busy_timeout_ms}ms: {e}"
                ) from e
            if "user-defined function raised exception" in message:
                raise StoreError(f"{operation} failed evaluating filter: {e}") from e
            raise StoreUnavailableError(f"{operation} failed: {e}") from e
        except sqlite3.DatabaseError as e:
            raise StoreUnavailableError(f"{operation} failed: {e}") from e

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            -- Schema version tracking
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            -- Entity documents
            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                doc_id INTEGER NOT NULL,
                body TEXT NOT NULL DEFAULT '{}',
                PRIMARY KEY (collection, doc_id)
            );

            -- Atomic counters for identifier allocation
            CREATE TABLE IF NOT EXISTS counters (
                name TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            );

            -- Record schema version
            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        with self._get_connection() as conn:
            with self._translate_errors("initialize"):
                self._create_schema(conn)
        logger.info(f"Initialized catalog database: {self.db_path}")

    async def ensure_unique_index(
        self,
        collection: str,
        name: str,
        fields: Sequence[str],
        exclude: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        """Declare a unique index over document fields.

        Args:
            collection: Collection the index applies to
            name: Index name, unique within the collection
            fields: Field paths forming the unique key
            exclude: Documents whose field value is one of the listed values
                are left out of the index (e.g. {"status.name": ["DELETED"]})
        """
        if not _IDENTIFIER.match(collection) or not _IDENTIFIER.match(name):
            raise StoreError(f"Invalid index identifier: {collection}.{name}")
        columns = ", ".join(f"json_extract(body, {_quote(_json_path(f))})" for f in fields)
        where = [f"collection = {_quote(collection)}"]
        for path, values in (exclude or {}).items():
            listed = ", ".join(_quote(str(v)) for v in values)
            where.append(f"json_extract(body, {_quote(_json_path(path))}) NOT IN ({listed})")

        with self._get_connection() as conn:
            with self._translate_errors("ensure_unique_index", collection):
                conn.execute(
                    f'CREATE UNIQUE INDEX IF NOT EXISTS "uq_{collection}_{name}" '
                    f"ON documents({columns}) WHERE {' AND '.join(where)}"
                )

        logger.debug(
            "Ensured unique index",
            extra={"collection": collection, "index": name, "fields": list(fields)},
        )

    async def insert(self, collection: str, document: Document) -> None:
        doc_id = document.get("_id")
        if not isinstance(doc_id, int) or isinstance(doc_id, bool):
            raise StoreError(f"Document in '{collection}' needs an integer '_id'")

        with self._get_connection() as conn:
            with self._translate_errors("insert", collection):
                conn.execute(
                    "INSERT INTO documents (collection, doc_id, body) VALUES (?, ?, ?)",
                    (collection, doc_id, json.dumps(document)),
                )

        logger.debug("Inserted document", extra={"collection": collection, "doc_id": doc_id})

    def _select(
        self,
        columns: str,
        collection: str,
        filter: Filter,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> tuple[str, list[Any]]:
        matcher.check_filter(filter)
        sql = f"SELECT {columns} FROM documents WHERE collection = ?"
        params: list[Any] = [collection]
        if filter:
            sql += " AND catalog_match(body, ?)"
            params.append(json.dumps(filter, sort_keys=True))

        order = []
        for path, direction in sort or ():
            order.append(f"json_extract(body, ?) {'DESC' if direction < 0 else 'ASC'}")
            params.append(_json_path(path))
        order.append("doc_id ASC")
        sql += " ORDER BY " + ", ".join(order)

        if limit is not None or skip:
            sql += " LIMIT ? OFFSET ?"
            params.extend([-1 if limit is None else limit, skip])
        return sql, params

    async def find(
        self,
        collection: str,
        filter: Filter,
        projection: Mapping[str, int] | None = None,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Document]:
        sql, params = self._select("body", collection, filter, sort, skip, limit)

        with self._get_connection() as conn:
            with self._translate_errors("find", collection):
                rows = conn.execute(sql, params).fetchall()

        return [matcher.project(json.loads(row["body"]), projection) for row in rows]

    async def iter_find(
        self,
        collection: str,
        filter: Filter,
        projection: Mapping[str, int] | None = None,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> AsyncIterator[Document]:
        sql, params = self._select("body", collection, filter, sort, skip, limit)

        with self._get_connection() as conn:
            with self._translate_errors("iter_find", collection):
                cursor = conn.execute(sql, params)
            try:
                while True:
                    with self._translate_errors("iter_find", collection):
                        row = cursor.fetchone()
                    if row is None:
                        break
                    yield matcher.project(json.loads(row["body"]), projection)
            finally:
                cursor.close()

    async def count(self, collection: str, filter: Filter) -> int:
        sql, params = self._select("COUNT(*)", collection, filter)
        # COUNT(*) with ORDER BY is valid but useless; strip it.
        sql = sql.split(" ORDER BY ")[0]
        params = params[: 2 if filter else 1]

        with self._get_connection() as conn:
            with self._translate_errors("count", collection):
                return conn.execute(sql, params).fetchone()[0]

    async def update(self, collection: str, filter: Filter, mutation: Mapping[str, Any]) -> int:
        sql, params = self._select("doc_id, body", collection, filter)
        modified = 0

        with self._get_connection() as conn:
            with self._translate_errors("update", collection):
                conn.execute("BEGIN IMMEDIATE")
            try:
                with self._translate_errors("update", collection):
                    rows = conn.execute(sql, params).fetchall()
                    for row in rows:
                        before = json.loads(row["body"])
                        after = matcher.apply_update(before, mutation, filter)
                        if after == before:
                            continue
                        conn.execute(
                            "UPDATE documents SET body = ? WHERE collection = ? AND doc_id = ?",
                            (json.dumps(after), collection, row["doc_id"]),
                        )
                        modified += 1
                    conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.debug(
            "Updated documents",
            extra={"collection": collection, "matched": len(rows), "modified": modified},
        )
        return modified

    async def aggregate(self, collection: str, pipeline: Sequence[Mapping[str, Any]]) -> list[Document]:
        stages = list(pipeline)
        # A leading $match is pushed down into SQL.
        first_match: Filter = {}
        if stages and "$match" in stages[0]:
            first_match = stages.pop(0)["$match"]
        docs = await self.find(collection, first_match)
        return matcher.run_pipeline(docs, stages)

    async def distinct(self, collection: str, field: str, filter: Filter) -> list[Any]:
        docs = await self.find(collection, filter, projection={field: 1})
        return matcher.distinct_values(docs, field)

    async def next_id(self, counter: str) -> int:
        with self._get_connection() as conn:
            with self._translate_errors("next_id"):
                conn.execute("BEGIN IMMEDIATE")
            try:
                with self._translate_errors("next_id"):
                    conn.execute(
                        "INSERT OR IGNORE INTO counters (name, value) VALUES (?, 0)", (counter,)
                    )
                    conn.execute("UPDATE counters SET value = value + 1 WHERE name = ?", (counter,))
                    value = conn.execute(
                        "SELECT value FROM counters WHERE name = ?", (counter,)
                    ).fetchone()[0]
                    conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return value
