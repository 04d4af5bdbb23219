"""
Query parameter descriptors.

Every query key an entity kind accepts is described by a QueryParam: the
storage path it addresses, the kind of value it holds and the compiler
strategy that turns a value expression into a filter.

Invariants:
    - Keys are unique within a ParamTable
    - Only nested params (attribute maps, annotations) accept dotted sub-keys
    - Storage paths are internal; callers only ever see keys

How to change safely:
    - Adding a key is backward compatible; renaming one is not
    - A new Strategy needs a matching entry in compiler.STRATEGIES
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from ..errors import UnknownQueryParam


class ValueKind(Enum):
    """How a query operand is typed before comparison."""

    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    ENUM = "enum"
    DATE = "date"

    @property
    def numeric(self) -> bool:
        return self in (ValueKind.INTEGER, ValueKind.DECIMAL)


class Strategy(Enum):
    """Compiler strategy tags."""

    DIRECT = "direct"
    ID_ALIAS = "id_alias"
    ATTRIBUTE_MAP = "attribute_map"
    ANNOTATION = "annotation"
    ANNOTATION_SET_ID = "annotation_set_id"
    VARIABLE_SET_ID = "variable_set_id"


@dataclass(frozen=True)
class QueryParam:
    """Descriptor of one query key.

    Attributes:
        key: Public query key
        path: Storage path (relative to an annotation set for annotation params)
        kind: Value kind used to type operands
        strategy: Compiler strategy
        multi: The stored field is a list; matching uses "any of" semantics
        allowed: Allowed values for ENUM params
        nested: Dotted sub-keys (key.sub) address into the stored map
        description: Human readable description
    """

    key: str
    path: str
    kind: ValueKind = ValueKind.STRING
    strategy: Strategy = Strategy.DIRECT
    multi: bool = False
    allowed: tuple[str, ...] = ()
    nested: bool = False
    description: str = ""


class ParamTable:
    """Lookup of the QueryParams accepted by one entity kind.

    Example:
        >>> table = ParamTable("Cohort", [QueryParam("name", "name")])
        >>> param, path = table.resolve("name")
    """

    def __init__(
        self,
        entity: str,
        params: Iterable[QueryParam],
        annotation_sets_path: str = "annotationSets",
    ) -> None:
        self.entity = entity
        self.annotation_sets_path = annotation_sets_path
        self._params: dict[str, QueryParam] = {}
        for param in params:
            if param.key in self._params:
                raise ValueError(f"Duplicate query param '{param.key}' for {entity}")
            self._params[param.key] = param

    def __contains__(self, key: object) -> bool:
        return key in self._params

    def __iter__(self):
        return iter(self._params.values())

    def get(self, key: str) -> QueryParam | None:
        return self._params.get(key)

    def resolve(self, key: str) -> tuple[QueryParam, str]:
        """Resolve a query key to its param and full storage path.

        The exact key is tried first, then its root segment; a dotted suffix
        is kept for storage addressing ("nattributes.age" -> "attributes.age").

        Raises:
            UnknownQueryParam: If neither the key nor its root is known, or the
                root param does not accept sub-keys
        """
        param = self._params.get(key)
        if param is not None:
            return param, param.path

        root, _, suffix = key.partition(".")
        param = self._params.get(root)
        if param is None or not suffix or not param.nested:
            raise UnknownQueryParam(key, self.entity)
        return param, f"{param.path}.{suffix}"

    def storage_path(self, key: str) -> str:
        return self.resolve(key)[1]
