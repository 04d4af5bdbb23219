"""
Collaborators consumed by the catalog core.

The core does not own studies, users or annotation schemas. It consumes them
through these protocols:
- StudyDirectory: study existence and principal (user/group) resolution
- VariableSetProvider: read-only annotation schema lookup
- EntityExistence: existence checks for related entities (id-list fields)

In-memory implementations are provided for tests and local development.

Invariants:
    - resolve_principals either returns every requested member or raises
    - Variable sets are immutable once published

How to change safely:
    - Protocol changes require updating all implementations
    - Keep the in-memory implementations behaviourally identical to the
      production directory for the methods they implement
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, runtime_checkable

from .errors import NotFound, PrincipalNotFound
from .query.params import ValueKind

logger = logging.getLogger(__name__)

ANONYMOUS = "*"
GROUP_PREFIX = "@"


class VariableType(Enum):
    """Annotation variable types."""

    BOOLEAN = "BOOLEAN"
    CATEGORICAL = "CATEGORICAL"
    INTEGER = "INTEGER"
    DOUBLE = "DOUBLE"
    TEXT = "TEXT"
    STRING = "STRING"
    OBJECT = "OBJECT"


_VALUE_KINDS = {
    VariableType.BOOLEAN: ValueKind.BOOLEAN,
    VariableType.CATEGORICAL: ValueKind.ENUM,
    VariableType.INTEGER: ValueKind.INTEGER,
    VariableType.DOUBLE: ValueKind.DECIMAL,
    VariableType.TEXT: ValueKind.STRING,
    VariableType.STRING: ValueKind.STRING,
}


@dataclass(frozen=True)
class Variable:
    """One annotation variable.

    Attributes:
        id: Variable identifier, the key inside an annotation set
        type: Variable type
        allowed_values: Permitted values for CATEGORICAL variables
    """

    id: str
    type: VariableType
    allowed_values: tuple[str, ...] = ()

    @property
    def value_kind(self) -> ValueKind | None:
        """Query value kind, or None for variables that cannot be queried."""
        return _VALUE_KINDS.get(self.type)


@dataclass(frozen=True)
class VariableSet:
    """Annotation schema referenced by annotation sets."""

    id: int
    name: str
    variables: tuple[Variable, ...] = ()

    def variable_map(self) -> dict[str, Variable]:
        return {variable.id: variable for variable in self.variables}


@runtime_checkable
class StudyDirectory(Protocol):
    """Study and principal lookup."""

    async def study_exists(self, study_id: int) -> bool: ...

    async def resolve_principals(self, study_id: int, members: Sequence[str]) -> list[str]:
        """Validate members against the study.

        Raises:
            PrincipalNotFound: If any member is not a user or group of the study
        """
        ...


@runtime_checkable
class VariableSetProvider(Protocol):
    """Annotation schema lookup."""

    async def get_variable_set(self, variable_set_id: int) -> VariableSet:
        """Raises NotFound if the variable set does not exist."""
        ...


@runtime_checkable
class EntityExistence(Protocol):
    """Existence check for entities referenced by id-list fields."""

    async def exists(self, entity_id: int) -> bool: ...


@dataclass
class _Study:
    users: set[str] = field(default_factory=set)
    groups: dict[str, set[str]] = field(default_factory=dict)


class InMemoryStudyDirectory:
    """In-memory StudyDirectory for tests and local development.

    Members are user ids, group ids prefixed with "@", or "*" for anonymous
    access.

    Example:
        >>> directory = InMemoryStudyDirectory()
        >>> directory.add_study(1, users=["alice", "bob"], groups={"@admins": ["alice"]})
        >>> await directory.resolve_principals(1, ["bob", "@admins"])
        ['bob', '@admins']
    """

    def __init__(self) -> None:
        self._studies: dict[int, _Study] = {}

    def add_study(
        self,
        study_id: int,
        users: Iterable[str] = (),
        groups: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        study = self._studies.setdefault(study_id, _Study())
        study.users.update(users)
        for group, group_users in (groups or {}).items():
            if not group.startswith(GROUP_PREFIX):
                raise ValueError(f"Group ids must start with '{GROUP_PREFIX}': {group}")
            study.groups.setdefault(group, set()).update(group_users)

    async def study_exists(self, study_id: int) -> bool:
        return study_id in self._studies

    async def resolve_principals(self, study_id: int, members: Sequence[str]) -> list[str]:
        study = self._studies.get(study_id)
        if study is None:
            raise NotFound("Study", study_id)

        missing = [
            member
            for member in members
            if member != ANONYMOUS and member not in study.users and member not in study.groups
        ]
        if missing:
            raise PrincipalNotFound(study_id, missing)
        return list(dict.fromkeys(members))


class InMemoryVariableSetProvider:
    """In-memory VariableSetProvider for tests and local development."""

    def __init__(self, variable_sets: Iterable[VariableSet] = ()) -> None:
        self._sets = {vs.id: vs for vs in variable_sets}
        self.lookups = 0

    def add(self, variable_set: VariableSet) -> None:
        self._sets[variable_set.id] = variable_set

    async def get_variable_set(self, variable_set_id: int) -> VariableSet:
        self.lookups += 1
        variable_set = self._sets.get(variable_set_id)
        if variable_set is None:
            raise NotFound("VariableSet", variable_set_id)
        return variable_set
