"""
Generic entity adaptor.

An EntityAdaptor exposes the catalog operations of one entity kind on top of
the document store. It composes:

- the filter compiler (catalogdb.query.compiler) to turn Queries into store
  filters, fetching the referenced variable set when annotation keys appear
- the lifecycle rules (catalogdb.lifecycle) for default visibility and the
  delete guard
- the ACL merge engine (catalogdb.acl) for permission changes
- the identifier allocator (catalogdb.store.ids) for new entities

Concrete kinds (cohorts, samples) declare their collection, param table,
permission enum, entity dataclass and updatable fields as class attributes.

Invariants:
    - Validation (unknown keys, mistyped values, missing related entities)
      happens before any store mutation
    - Identifier and owning study are assigned on create and never updated
    - Status only changes through delete(); it is not an updatable field
    - Batch operations stop at the first failing item and report it

How to change safely:
    - New updatable fields need a FieldType; add one here before using it
    - Keep every store call inside the timed helpers so slow queries are logged
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Generic, TypeVar

from ..acl import AclEngine, PermissionEntry
from ..directory import EntityExistence, StudyDirectory, VariableSetProvider
from ..errors import (
    AlreadyDeleted,
    AlreadyExists,
    BatchOperationError,
    CatalogError,
    InvalidFieldValue,
    NotFound,
)
from ..lifecycle import (
    STATUS_KEY,
    HIDDEN_STATUSES,
    Status,
    any_status_query,
    check_transition,
    reject_remove,
    reject_restore,
    status_document,
    status_patch,
    timestamp,
)
from ..query.compiler import compile_filter, needs_variables, referenced_variable_set
from ..query.model import Query, QueryOptions, QueryResult, Stopwatch
from ..query.params import ParamTable
from ..store.base import ASCENDING, DESCENDING, DocumentStore, DuplicateKeyError, StoreError
from ..store.ids import IdAllocator

logger = logging.getLogger(__name__)

E = TypeVar("E")

QueryLike = Mapping[str, Any]


class FieldType(Enum):
    """Declared type of an updatable field."""

    STRING = "string"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ENUM = "enum"
    ID_LIST = "id_list"
    MAP = "map"


@dataclass(frozen=True)
class UpdatableField:
    """A field that create() and update() accept.

    Attributes:
        key: Public field key (also the storage path)
        type: Declared type used to validate values
        enum: Enum class for ENUM fields
        related: Entity kind referenced by ID_LIST fields, checked for
            existence through the adaptor's related collaborators
    """

    key: str
    type: FieldType
    enum: type[Enum] | None = None
    related: str | None = None


class EntityAdaptor(Generic[E]):
    """Catalog operations for one entity kind.

    Subclasses set the class attributes below and may override
    ``to_document`` / ``from_document`` hooks through ``entity_type``.

    Example:
        >>> cohorts = CohortAdaptor(store, allocator, directory, variable_sets)
        >>> await cohorts.initialize()
        >>> cohort = await cohorts.create(1, Cohort(name="ALL"))
        >>> result = await cohorts.search(Query({"studyId": 1, "name": "ALL"}))
    """

    entity_name: ClassVar[str]
    collection: ClassVar[str]
    params: ClassVar[ParamTable]
    permission_type: ClassVar[type[Enum]]
    entity_type: ClassVar[type]
    updatable: ClassVar[tuple[UpdatableField, ...]] = ()

    def __init__(
        self,
        store: DocumentStore,
        allocator: IdAllocator,
        directory: StudyDirectory,
        variable_sets: VariableSetProvider,
        related: Mapping[str, EntityExistence] | None = None,
        slow_query_ms: int = 1000,
    ) -> None:
        """Initialize the adaptor.

        Args:
            store: Document store holding the entity collection
            allocator: Identifier allocator shared by all entity kinds
            directory: Study and principal lookup
            variable_sets: Annotation schema lookup
            related: Existence checks for entity kinds referenced by
                ID_LIST fields, keyed by entity name
            slow_query_ms: Operations slower than this are logged as warnings
        """
        self.store = store
        self.allocator = allocator
        self.directory = directory
        self.variable_sets = variable_sets
        self.related = dict(related or {})
        self.slow_query_ms = slow_query_ms
        self.acl = AclEngine(store, self.collection, self.params, directory, self.permission_type)

        missing = [f.related for f in self.updatable if f.related and f.related not in self.related]
        if missing:
            raise ValueError(f"{self.entity_name} adaptor needs existence checks for {missing}")
        untyped = [f.key for f in self.updatable if f.type == FieldType.ENUM and f.enum is None]
        if untyped:
            raise ValueError(f"{self.entity_name} adaptor declares ENUM fields without an enum: {untyped}")

    async def initialize(self) -> None:
        """Declare the store indexes of the collection."""
        await self.store.ensure_unique_index(
            self.collection,
            "study_name",
            ["_studyId", "name"],
            exclude={STATUS_KEY: [s.value for s in HIDDEN_STATUSES]},
        )

    # --- helpers -----------------------------------------------------------

    def _log_operation(self, operation: str, stopwatch: Stopwatch, **context: Any) -> int:
        elapsed = stopwatch.elapsed_ms()
        extra = {"entity": self.entity_name, "operation": operation, "elapsed_ms": elapsed, **context}
        if elapsed > self.slow_query_ms:
            logger.warning("Slow catalog operation", extra=extra)
        else:
            logger.debug("Catalog operation", extra=extra)
        return elapsed

    async def _filter(self, query: QueryLike) -> dict[str, Any]:
        """Compile a query, typing annotation keys by the referenced variable set."""
        query = query if isinstance(query, Query) else Query(query)
        variables = None
        if needs_variables(query, self.params):
            variable_set_id = referenced_variable_set(query)
            if variable_set_id is not None:
                variable_set = await self.variable_sets.get_variable_set(variable_set_id)
                variables = variable_set.variable_map()
        return compile_filter(query, self.params, variables)

    def _find_options(self, options: QueryOptions | None) -> dict[str, Any]:
        if options is None:
            return {}
        projection = None
        if options.include:
            projection = {self.params.storage_path(key): 1 for key in options.include}
        elif options.exclude:
            projection = {self.params.storage_path(key): 0 for key in options.exclude}
        sort = None
        if options.sort:
            direction = ASCENDING if options.ascending else DESCENDING
            sort = [(self.params.storage_path(options.sort), direction)]
        if options.limit is not None and options.limit < 0:
            raise InvalidFieldValue("limit", options.limit, "must not be negative")
        if options.skip < 0:
            raise InvalidFieldValue("skip", options.skip, "must not be negative")
        return {"projection": projection, "sort": sort, "skip": options.skip, "limit": options.limit}

    def _to_entity(self, doc: dict[str, Any]) -> E:
        return self.entity_type.from_document(doc)

    async def _current_status(self, entity_id: int) -> str:
        docs = await self.store.find(
            self.collection,
            await self._filter(any_status_query(Query({"id": entity_id}))),
            projection={STATUS_KEY: 1},
        )
        if not docs:
            raise NotFound(self.entity_name, entity_id)
        return docs[0].get("status", {}).get("name", Status.ACTIVE.value)

    async def _validate_fields(self, values: Mapping[str, Any]) -> dict[str, Any]:
        """Validate updatable fields and return them keyed by storage path.

        Keys that are not updatable are dropped.
        """
        accepted: dict[str, Any] = {}
        for declared in self.updatable:
            if declared.key in values:
                accepted[self.params.storage_path(declared.key)] = await self._coerce(declared, values[declared.key])

        dropped = [key for key in values if key not in {declared.key for declared in self.updatable}]
        if dropped:
            logger.debug(
                "Ignoring fields that cannot be updated",
                extra={"entity": self.entity_name, "fields": dropped},
            )
        return accepted

    async def _coerce(self, declared: UpdatableField, value: Any) -> Any:
        if declared.type == FieldType.STRING:
            if not isinstance(value, str):
                raise InvalidFieldValue(declared.key, value, "expected a string")
            return value

        if declared.type == FieldType.INTEGER:
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidFieldValue(declared.key, value, "expected an integer")
            return value

        if declared.type == FieldType.BOOLEAN:
            if not isinstance(value, bool):
                raise InvalidFieldValue(declared.key, value, "expected a boolean")
            return value

        if declared.type == FieldType.ENUM:
            token = value.value if isinstance(value, declared.enum) else str(value).strip().upper()
            allowed = [member.value for member in declared.enum]
            if token not in allowed:
                raise InvalidFieldValue(declared.key, value, f"expected one of {allowed}")
            return token

        if declared.type == FieldType.ID_LIST:
            if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
                raise InvalidFieldValue(declared.key, value, "expected a list of identifiers")
            ids = list(dict.fromkeys(value))
            if any(isinstance(i, bool) or not isinstance(i, int) for i in ids):
                raise InvalidFieldValue(declared.key, value, "identifiers must be integers")
            checker = self.related[declared.related] if declared.related else None
            for related_id in ids:
                if checker is not None and not await checker.exists(related_id):
                    raise NotFound(declared.related, related_id)
            return ids

        if declared.type == FieldType.MAP:
            if not isinstance(value, Mapping):
                raise InvalidFieldValue(declared.key, value, "expected a map")
            return dict(value)

        raise InvalidFieldValue(declared.key, value, f"unsupported field type {declared.type.value}")

    async def _check_name_available(self, study_id: int, name: str, exclude_id: int | None = None) -> None:
        # Names are matched literally; operator syntax does not apply here.
        clauses: list[dict[str, Any]] = [
            {self.params.storage_path("studyId"): study_id},
            {self.params.storage_path("name"): name},
            {STATUS_KEY: {"$nin": [s.value for s in HIDDEN_STATUSES]}},
        ]
        if exclude_id is not None:
            clauses.append({self.params.storage_path("id"): {"$ne": exclude_id}})
        if await self.store.count(self.collection, {"$and": clauses}) > 0:
            raise AlreadyExists(self.entity_name, "name", name)

    def _duplicate(self, error: DuplicateKeyError, entity_id: int, name: Any) -> AlreadyExists:
        if "doc_id" in str(error):
            return AlreadyExists(self.entity_name, "id", entity_id)
        return AlreadyExists(self.entity_name, "name", name)

    # --- create / read -------------------------------------------------------

    async def create(self, study_id: int, entity: E) -> E:
        """Insert a new entity into a study.

        The entity starts ACTIVE. Supplied permission entries are validated
        and merged so that each member holds a single entry.

        Returns:
            The stored entity with its new identifier

        Raises:
            NotFound: Study or a referenced entity does not exist
            InvalidFieldValue: A field has the wrong type
            InvalidPermission: A permission entry names an unknown permission
            PrincipalNotFound: A permission entry names an unknown member
            AlreadyExists: The name is taken in the study
        """
        stopwatch = Stopwatch()
        if not await self.directory.study_exists(study_id):
            raise NotFound("Study", study_id)

        doc = entity.to_document()
        name = doc.get("name")
        if not isinstance(name, str) or not name.strip():
            raise InvalidFieldValue("name", name, "a non-empty name is required")
        fields = {f.key: doc[f.key] for f in self.updatable if f.key in doc}
        doc.update(await self._validate_fields(fields))
        acls = await self.acl.initial_entries(study_id, entity.acls)
        await self._check_name_available(study_id, name)

        entity_id = await self.allocator.next()
        doc["_id"] = entity_id
        doc["_studyId"] = study_id
        doc["status"] = status_document(Status.ACTIVE)
        doc["acls"] = [entry.to_dict() for entry in acls]
        doc["creationDate"] = doc.get("creationDate") or timestamp()[:14]

        try:
            await self.store.insert(self.collection, doc)
        except DuplicateKeyError as e:
            raise self._duplicate(e, entity_id, name) from e

        self._log_operation("create", stopwatch, id=entity_id, study_id=study_id)
        return await self.get_by_id(entity_id)

    async def get_by_id(self, entity_id: int, options: QueryOptions | None = None) -> E:
        """Fetch a visible entity.

        Raises:
            NotFound: No ACTIVE entity has this identifier
        """
        result = await self.search(Query({"id": entity_id}), options)
        entity = result.first()
        if entity is None:
            raise NotFound(self.entity_name, entity_id)
        return entity

    async def get_all(self, study_id: int, options: QueryOptions | None = None) -> QueryResult[E]:
        """All visible entities of a study."""
        return await self.search(Query({"studyId": study_id}), options)

    async def get_study_id(self, entity_id: int) -> int:
        """Owning study of a visible entity.

        Raises:
            NotFound: No ACTIVE entity has this identifier
        """
        docs = await self.store.find(
            self.collection, await self._filter(Query({"id": entity_id})), projection={"_studyId": 1}
        )
        if not docs:
            raise NotFound(self.entity_name, entity_id)
        return docs[0]["_studyId"]

    async def exists(self, entity_id: int) -> bool:
        """Whether an entity with this identifier exists, whatever its status."""
        flt = await self._filter(any_status_query(Query({"id": entity_id})))
        return await self.store.count(self.collection, flt) > 0

    async def search(self, query: QueryLike, options: QueryOptions | None = None) -> QueryResult[E]:
        """Entities matching a query.

        Returns:
            QueryResult whose num_total_results counts matches before
            skip and limit are applied
        """
        stopwatch = Stopwatch()
        flt = await self._filter(query)
        find_options = self._find_options(options)
        docs = await self.store.find(self.collection, flt, **find_options)
        if find_options.get("skip") or find_options.get("limit") is not None:
            total = await self.store.count(self.collection, flt)
        else:
            total = len(docs)

        elapsed = self._log_operation("search", stopwatch, results=len(docs))
        return QueryResult(
            id=f"search {self.entity_name.lower()}",
            results=[self._to_entity(doc) for doc in docs],
            num_total_results=total,
            db_time_ms=elapsed,
        )

    async def count(self, query: QueryLike) -> int:
        stopwatch = Stopwatch()
        total = await self.store.count(self.collection, await self._filter(query))
        self._log_operation("count", stopwatch, count=total)
        return total

    async def distinct(self, query: QueryLike, field: str) -> list[Any]:
        """Distinct values of a field among matching entities."""
        stopwatch = Stopwatch()
        values = await self.store.distinct(
            self.collection, self.params.storage_path(field), await self._filter(query)
        )
        self._log_operation("distinct", stopwatch, field=field)
        return values

    async def iterate(self, query: QueryLike, options: QueryOptions | None = None) -> AsyncIterator[E]:
        """Stream matching entities.

        The store cursor is closed on every exit path, including an early
        aclose() by the caller.
        """
        flt = await self._filter(query)
        cursor = self.store.iter_find(self.collection, flt, **self._find_options(options))
        async with aclosing(cursor) as docs:
            async for doc in docs:
                yield self._to_entity(doc)

    async def for_each(
        self,
        query: QueryLike,
        action: Callable[[E], Awaitable[Any] | Any],
        options: QueryOptions | None = None,
    ) -> int:
        """Apply an action to every matching entity.

        Returns:
            Number of entities the action was applied to
        """
        applied = 0
        async with aclosing(self.iterate(query, options)) as entities:
            async for entity in entities:
                result = action(entity)
                if inspect.isawaitable(result):
                    await result
                applied += 1
        return applied

    # --- update ------------------------------------------------------------

    async def update(self, entity_id: int, patch: Mapping[str, Any]) -> E:
        """Apply a partial update to one visible entity.

        Fields that are not updatable are dropped.

        Returns:
            The updated entity

        Raises:
            NotFound: Entity or a referenced entity does not exist
            InvalidFieldValue: A field has the wrong type
            AlreadyExists: The new name is taken in the study
        """
        stopwatch = Stopwatch()
        study_id = await self.get_study_id(entity_id)
        changes = await self._validate_fields(patch)
        if "name" in changes:
            await self._check_name_available(study_id, changes["name"], exclude_id=entity_id)

        if changes:
            flt = await self._filter(Query({"id": entity_id}))
            try:
                await self.store.update(self.collection, flt, {"$set": changes})
            except DuplicateKeyError as e:
                raise self._duplicate(e, entity_id, changes.get("name")) from e

        self._log_operation("update", stopwatch, id=entity_id, fields=sorted(changes))
        return await self.get_by_id(entity_id)

    async def update_by_query(self, query: QueryLike, patch: Mapping[str, Any]) -> int:
        """Apply a partial update to every matching entity.

        Returns:
            Number of entities modified
        """
        stopwatch = Stopwatch()
        flt = await self._filter(query)
        changes = await self._validate_fields(patch)
        if not changes:
            return 0

        try:
            modified = await self.store.update(self.collection, flt, {"$set": changes})
        except DuplicateKeyError as e:
            raise AlreadyExists(self.entity_name, "name", changes.get("name")) from e

        self._log_operation("update_by_query", stopwatch, modified=modified, fields=sorted(changes))
        return modified

    # --- lifecycle ---------------------------------------------------------

    async def delete(self, entity_id: int, message: str = "") -> E:
        """Soft-delete an ACTIVE entity.

        Returns:
            The entity in DELETED status

        Raises:
            NotFound: No entity has this identifier
            AlreadyDeleted: The entity is DELETED or REMOVED; its status is
                left unchanged
        """
        stopwatch = Stopwatch()
        current = await self._current_status(entity_id)
        check_transition(self.entity_name, entity_id, current, Status.DELETED)

        # The update only matches while the entity is still visible.
        flt = await self._filter(Query({"id": entity_id}))
        modified = await self.store.update(
            self.collection, flt, {"$set": status_patch(Status.DELETED, message)}
        )
        if modified == 0:
            raise AlreadyDeleted(self.entity_name, entity_id, await self._current_status(entity_id))

        self._log_operation("delete", stopwatch, id=entity_id)
        result = await self.search(Query({"id": entity_id, STATUS_KEY: Status.DELETED.value}))
        return result.results[0]

    async def delete_by_query(self, query: QueryLike, message: str = "") -> int:
        """Soft-delete every ACTIVE entity matching a query, one by one.

        Returns:
            Number of entities deleted

        Raises:
            BatchOperationError: An entity failed to delete; the entities
                before it stay deleted
        """
        selected = (query if isinstance(query, Query) else Query(query)).append(
            STATUS_KEY, Status.ACTIVE.value
        )
        docs = await self.store.find(self.collection, await self._filter(selected), projection={"_id": 1})

        processed: list[int] = []
        for doc in docs:
            entity_id = doc["_id"]
            try:
                await self.delete(entity_id, message)
            except (CatalogError, StoreError) as e:
                raise BatchOperationError(
                    f"delete {self.entity_name.lower()}", selected.to_dict(), entity_id, processed, e
                ) from e
            processed.append(entity_id)

        logger.info(
            "Deleted entities by query",
            extra={"entity": self.entity_name, "count": len(processed)},
        )
        return len(processed)

    async def remove(self, entity_id: int) -> None:
        reject_remove(self.entity_name)

    async def remove_by_query(self, query: QueryLike) -> None:
        reject_remove(self.entity_name)

    async def restore(self, query: QueryLike) -> None:
        reject_restore(self.entity_name)

    # --- permissions -------------------------------------------------------

    async def grant_acl(
        self, entity_id: int, permissions: Sequence[str | Enum], members: Sequence[str]
    ) -> list[PermissionEntry]:
        """Give members exactly these permissions; see AclEngine.grant."""
        return await self.acl.grant(entity_id, permissions, members)

    async def revoke_acl(self, entity_id: int, members: Sequence[str]) -> None:
        """Remove members from the entity's permission entries; see AclEngine.revoke."""
        await self.acl.revoke(entity_id, members)

    async def lookup_acl(
        self, entity_id: int, members: Sequence[str] | None = None
    ) -> list[PermissionEntry]:
        """Permission entries holding any of the members (all entries when None).

        Raises:
            NotFound: No visible entity has this identifier
        """
        await self.get_study_id(entity_id)
        return await self.acl.lookup(entity_id, members)

    # --- aggregation -------------------------------------------------------

    async def group_by(self, query: QueryLike, fields: str | Sequence[str]) -> list[dict[str, Any]]:
        """Group matching entities by one or more fields.

        Returns:
            One dict per group: {"_id": {field: value, ...}, "count": n,
            "ids": [...]}, largest groups first
        """
        stopwatch = Stopwatch()
        keys = [fields] if isinstance(fields, str) else list(fields)
        if not keys:
            raise InvalidFieldValue("fields", fields, "name at least one field")
        group_id = {key: f"${self.params.storage_path(key)}" for key in keys}
        pipeline = [
            {"$match": await self._filter(query)},
            {"$group": {"_id": group_id, "count": {"$sum": 1}, "ids": {"$push": "$_id"}}},
            {"$sort": {"count": DESCENDING}},
        ]
        groups = await self.store.aggregate(self.collection, pipeline)
        self._log_operation("group_by", stopwatch, fields=keys, groups=len(groups))
        return groups

    async def rank(
        self, query: QueryLike, field: str, n: int, ascending: bool = False
    ) -> list[dict[str, Any]]:
        """The ``n`` most (or least) frequent values of a field.

        List-valued fields are unwound so each element counts once.

        Returns:
            [{"_id": value, "count": n}, ...]
        """
        if n <= 0:
            raise InvalidFieldValue("n", n, "must be positive")
        stopwatch = Stopwatch()
        param, path = self.params.resolve(field)
        pipeline: list[dict[str, Any]] = [{"$match": await self._filter(query)}]
        if param.multi:
            pipeline.append({"$unwind": f"${path}"})
        pipeline += [
            {"$group": {"_id": f"${path}", "count": {"$sum": 1}}},
            {"$sort": {"count": ASCENDING if ascending else DESCENDING}},
            {"$limit": n},
        ]
        ranked = await self.store.aggregate(self.collection, pipeline)
        self._log_operation("rank", stopwatch, field=field, n=n)
        return ranked
