"""
Entity status lifecycle.

States:
    ACTIVE -> DELETED -> REMOVED
    DELETED -> ACTIVE (restore)

Every read and write sees only ACTIVE entities unless the query constrains
status itself. Deleting requires the entity to be ACTIVE. Removal and restore
are declared transitions that the catalog does not implement yet; asking for
them raises UnsupportedOperation.

Invariants:
    - status.name and status.date are always written in the same $set
    - default_visibility never mutates its argument
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import AlreadyDeleted, UnsupportedOperation
from .query.model import Query

logger = logging.getLogger(__name__)

STATUS_KEY = "status.name"
STATUS_DATE_KEY = "status.date"
STATUS_MESSAGE_KEY = "status.message"


class Status(Enum):
    """Entity lifecycle states."""

    ACTIVE = "ACTIVE"
    DELETED = "DELETED"
    REMOVED = "REMOVED"


HIDDEN_STATUSES = (Status.DELETED, Status.REMOVED)

TRANSITIONS: dict[tuple[Status, Status], bool] = {
    (Status.ACTIVE, Status.DELETED): True,
    (Status.DELETED, Status.REMOVED): False,
    (Status.DELETED, Status.ACTIVE): False,
}
"""Declared transitions mapped to whether the catalog implements them."""


def timestamp(moment: datetime | None = None) -> str:
    """Catalog timestamp with millisecond precision: yyyyMMddHHmmssSSS."""
    moment = moment or datetime.now(timezone.utc)
    return moment.strftime("%Y%m%d%H%M%S") + f"{moment.microsecond // 1000:03d}"


def has_status_constraint(query: Query) -> bool:
    return STATUS_KEY in query


def default_visibility(query: Query) -> Query:
    """Hide deleted and removed entities unless the query constrains status.

    Returns:
        The query itself when it already constrains status, otherwise a new
        query with ``status.name != DELETED; != REMOVED``
    """
    if has_status_constraint(query):
        return query
    return query.append(STATUS_KEY, ";".join(f"!={s.value}" for s in HIDDEN_STATUSES))


def hidden_status_query(query: Query) -> Query:
    """Select only deleted or removed entities."""
    return query.append(STATUS_KEY, ",".join(s.value for s in HIDDEN_STATUSES))


def any_status_query(query: Query) -> Query:
    """Select entities regardless of status."""
    return query.append(STATUS_KEY, ",".join(s.value for s in Status))


def status_document(status: Status = Status.ACTIVE, message: str = "") -> dict[str, Any]:
    return {"name": status.value, "date": timestamp(), "message": message}


def status_patch(status: Status, message: str = "") -> dict[str, Any]:
    """$set fields that move an entity to ``status``."""
    return {
        STATUS_KEY: status.value,
        STATUS_DATE_KEY: timestamp(),
        STATUS_MESSAGE_KEY: message,
    }


def check_transition(entity: str, entity_id: int, current: str, target: Status) -> None:
    """Validate a status transition.

    Raises:
        AlreadyDeleted: Deleting an entity that is DELETED or REMOVED
        UnsupportedOperation: Transition declared but not implemented, or
            not declared at all
    """
    if target == Status.DELETED and current in (s.value for s in HIDDEN_STATUSES):
        raise AlreadyDeleted(entity, entity_id, current)

    try:
        source = Status(current)
    except ValueError:
        raise UnsupportedOperation(f"{entity.lower()} status change from '{current}'") from None

    implemented = TRANSITIONS.get((source, target))
    if not implemented:
        raise UnsupportedOperation(
            f"{entity.lower()} status change {source.value} -> {target.value}"
        )


def reject_remove(entity: str) -> None:
    """Hard deletion is not supported."""
    raise UnsupportedOperation(f"remove {entity.lower()}")


def reject_restore(entity: str) -> None:
    """Restoring deleted entities is not supported."""
    raise UnsupportedOperation(f"restore {entity.lower()}")
