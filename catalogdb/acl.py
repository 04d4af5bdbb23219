"""
Permission (ACL) merge engine for catalog entities.

Each entity document carries a list of permission entries:

    "acls": [
        {"permissions": ["VIEW", "UPDATE"], "members": ["alice", "@analysts"]},
        {"permissions": ["VIEW"], "members": ["bob"]},
    ]

This module computes the store mutations needed to grant or revoke a
permission set for a set of members, and reads back the entries that concern
given members.

Invariants:
    - A member appears in the members of at most one entry per entity
    - Granting supersedes any previous entry of the same member
    - One entry per distinct permission set; grants coalesce into it
    - Entries left without members are swept away
    - Permission lists are stored in the entity kind's declaration order, so
      set equality is list equality in the store

Concurrency:
    Every change is a single conditional update. Two grants touching the same
    member are independent updates; the last one to commit wins.

How to change safely:
    - New permission tokens must be appended to the entity's permission enum
    - Keep the member validation before the first store mutation
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .directory import StudyDirectory
from .errors import AclUpdateFailed, InvalidFieldValue, InvalidPermission, NotFound
from .query.compiler import compile_filter
from .query.model import Query
from .query.params import ParamTable
from .store.base import DocumentStore

logger = logging.getLogger(__name__)

ACLS_PATH = "acls"


@dataclass(frozen=True)
class PermissionEntry:
    """Permission set granted to a set of members.

    Attributes:
        permissions: Permission tokens, in declaration order
        members: User ids, "@group" ids or "*"
    """

    permissions: tuple[str, ...]
    members: tuple[str, ...]

    def to_dict(self) -> dict[str, list[str]]:
        """Convert to dictionary for storage."""
        return {"permissions": list(self.permissions), "members": list(self.members)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PermissionEntry:
        """Create from dictionary."""
        return cls(
            permissions=tuple(data.get("permissions", ())),
            members=tuple(data.get("members", ())),
        )


def normalize_permissions(permissions: Iterable[str | Enum], permission_type: type[Enum]) -> list[str]:
    """Validate permission tokens and order them as the enum declares them.

    Raises:
        InvalidPermission: If a token is not a member of ``permission_type``
    """
    valid = {p.name: p for p in permission_type}
    requested = set()
    for token in permissions:
        name = token.name if isinstance(token, permission_type) else str(token).strip().upper()
        if name not in valid:
            raise InvalidPermission(str(token), list(valid))
        requested.add(name)
    return [p.value for p in permission_type if p.name in requested]


def _unique_members(members: Sequence[str]) -> list[str]:
    if isinstance(members, str):
        members = [members]
    unique = list(dict.fromkeys(m.strip() for m in members))
    if not unique or any(not m for m in unique):
        raise InvalidFieldValue("members", members, "expected one or more non-empty member ids")
    return unique


class AclEngine:
    """Grants, revokes and looks up permission entries of one entity kind.

    Thread safety:
        The engine holds no state besides its collaborators and is safe to
        share between concurrent callers.

    Example:
        >>> engine = AclEngine(store, "cohort", COHORT_PARAMS, directory, CohortPermission)
        >>> await engine.grant(7, ["VIEW"], ["alice"])
        [PermissionEntry(permissions=('VIEW',), members=('alice',))]
    """

    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        params: ParamTable,
        directory: StudyDirectory,
        permission_type: type[Enum],
    ) -> None:
        self.store = store
        self.collection = collection
        self.params = params
        self.directory = directory
        self.permission_type = permission_type

    def _id_filter(self, entity_id: int) -> dict[str, Any]:
        return compile_filter(Query({"id": entity_id}), self.params)

    async def _study_of(self, entity_id: int) -> int:
        study_path = self.params.storage_path("studyId")
        docs = await self.store.find(
            self.collection, self._id_filter(entity_id), projection={study_path: 1}
        )
        if not docs:
            raise NotFound(self.params.entity, entity_id)
        return docs[0][study_path]

    async def _validate_members(self, entity_id: int, members: Sequence[str]) -> list[str]:
        unique = _unique_members(members)
        study_id = await self._study_of(entity_id)
        return await self.directory.resolve_principals(study_id, unique)

    async def initial_entries(
        self, study_id: int, entries: Iterable[PermissionEntry]
    ) -> list[PermissionEntry]:
        """Validate the entries of an entity that is about to be created.

        Entries with the same permission set are merged, in first-seen order.

        Raises:
            InvalidPermission: Unknown permission token
            InvalidFieldValue: An entry has no members, or a member appears
                in two entries with different permission sets
            PrincipalNotFound: A member is not part of the study
        """
        merged: dict[tuple[str, ...], list[str]] = {}
        owner: dict[str, tuple[str, ...]] = {}
        for entry in entries:
            permission_set = tuple(normalize_permissions(entry.permissions, self.permission_type))
            members = await self.directory.resolve_principals(study_id, _unique_members(entry.members))
            for member in members:
                previous = owner.setdefault(member, permission_set)
                if previous != permission_set:
                    raise InvalidFieldValue(
                        ACLS_PATH, member, "member appears in more than one permission entry"
                    )
            target = merged.setdefault(permission_set, [])
            target.extend(m for m in members if m not in target)
        return [PermissionEntry(permissions, tuple(members)) for permissions, members in merged.items()]

    async def entries(self, entity_id: int) -> list[PermissionEntry]:
        """All permission entries of an entity."""
        docs = await self.store.find(
            self.collection, self._id_filter(entity_id), projection={ACLS_PATH: 1}
        )
        if not docs:
            raise NotFound(self.params.entity, entity_id)
        return [PermissionEntry.from_dict(entry) for entry in docs[0].get(ACLS_PATH, [])]

    async def lookup(self, entity_id: int, members: Sequence[str] | None = None) -> list[PermissionEntry]:
        """Entries of an entity that contain any of ``members``.

        Returns:
            Matching entries (all entries when ``members`` is None); an empty
            list when none overlap
        """
        pipeline: list[dict[str, Any]] = [
            {"$match": self._id_filter(entity_id)},
            {"$unwind": f"${ACLS_PATH}"},
        ]
        if members is not None:
            pipeline.append({"$match": {f"{ACLS_PATH}.members": {"$in": list(members)}}})
        pipeline.append({"$project": {"_id": 1, ACLS_PATH: 1}})

        docs = await self.store.aggregate(self.collection, pipeline)
        return [PermissionEntry.from_dict(doc[ACLS_PATH]) for doc in docs]

    async def grant(
        self,
        entity_id: int,
        permissions: Iterable[str | Enum],
        members: Sequence[str],
    ) -> list[PermissionEntry]:
        """Give ``members`` exactly ``permissions`` on an entity.

        Members holding another entry are moved out of it first. The members
        join the entry with the same permission set if there is one, else a
        new entry is appended.

        Returns:
            The entity's permission entries after the change

        Raises:
            InvalidPermission: Unknown permission token
            NotFound: Entity does not exist or is not visible
            PrincipalNotFound: A member is not part of the entity's study
            AclUpdateFailed: The store modified no document
        """
        permission_list = normalize_permissions(permissions, self.permission_type)
        validated = await self._validate_members(entity_id, members)

        requested = set(validated)
        existing = await self.lookup(entity_id, validated)
        overlapping = [m for entry in existing for m in entry.members if m in requested]
        if overlapping:
            await self._pull_members(entity_id, overlapping)

        id_filter = self._id_filter(entity_id)
        same_set = {
            "$and": [id_filter, {ACLS_PATH: {"$elemMatch": {"permissions": permission_list}}}]
        }
        if await self.store.count(self.collection, same_set) > 0:
            modified = await self.store.update(
                self.collection,
                same_set,
                {"$addToSet": {f"{ACLS_PATH}.$.members": {"$each": validated}}},
            )
        else:
            entry = PermissionEntry(tuple(permission_list), tuple(validated))
            modified = await self.store.update(
                self.collection, id_filter, {"$push": {ACLS_PATH: entry.to_dict()}}
            )

        if modified == 0:
            raise AclUpdateFailed(f"grant {self.params.entity.lower()} permissions", entity_id)

        logger.info(
            "Granted permissions",
            extra={
                "entity": self.params.entity,
                "id": entity_id,
                "permissions": permission_list,
                "members": validated,
                "superseded": overlapping,
            },
        )
        return await self.entries(entity_id)

    async def revoke(self, entity_id: int, members: Sequence[str]) -> None:
        """Remove ``members`` from whichever entry holds them.

        Members are revoked one at a time. If the store fails on one member,
        the members before it stay revoked and AclUpdateFailed names the
        failing one.

        Raises:
            NotFound: Entity does not exist or is not visible
            PrincipalNotFound: A member is not part of the entity's study
            AclUpdateFailed: A member was held by an entry but the store
                modified no document
        """
        validated = await self._validate_members(entity_id, members)
        await self._pull_members(entity_id, validated)

        logger.info(
            "Revoked permissions",
            extra={"entity": self.params.entity, "id": entity_id, "members": validated},
        )

    async def _pull_members(self, entity_id: int, members: Sequence[str]) -> None:
        id_filter = self._id_filter(entity_id)

        for member in members:
            holding = {"$and": [id_filter, {ACLS_PATH: {"$elemMatch": {"members": member}}}]}
            if await self.store.count(self.collection, holding) == 0:
                logger.debug(
                    "Member holds no permission entry",
                    extra={"entity": self.params.entity, "id": entity_id, "member": member},
                )
                continue
            modified = await self.store.update(
                self.collection, holding, {"$pull": {f"{ACLS_PATH}.$.members": member}}
            )
            if modified == 0:
                raise AclUpdateFailed(
                    f"revoke {self.params.entity.lower()} permissions", entity_id, member
                )

        # Sweep entries left without members.
        empty = {"$and": [id_filter, {f"{ACLS_PATH}.members": {"$exists": True, "$eq": []}}]}
        await self.store.update(self.collection, empty, {"$pull": {ACLS_PATH: {"members": []}}})
