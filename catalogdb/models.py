"""
Data classes shared by the catalog entity kinds.

Each entity kind (catalogdb.adaptors.cohort, catalogdb.adaptors.sample)
defines its own entity dataclass built from these parts. Entities convert to
and from store documents with to_document() / from_document().

Document layout common to every kind:

    {
        "_id": 7,
        "_studyId": 2,
        "name": "ALL",
        "creationDate": "20240301120000",
        "status": {"name": "ACTIVE", "date": "20240301120000123", "message": ""},
        "acls": [{"permissions": ["VIEW"], "members": ["alice"]}],
        "annotationSets": [{"id": "as1", "variableSetId": 3, "annotations": {...}}],
        "attributes": {...},
    }

Invariants:
    - from_document() accepts partial documents (projections) and fills
      defaults for missing fields
    - "_id" and "_studyId" are never produced by to_document(); the adaptor
      assigns them
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .acl import PermissionEntry


@dataclass
class StatusInfo:
    """Lifecycle status of an entity.

    Attributes:
        name: Status name (ACTIVE, DELETED, REMOVED)
        date: Time of the last status change, yyyyMMddHHmmssSSS
        message: Optional reason
    """

    name: str = "ACTIVE"
    date: str = ""
    message: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "date": self.date, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> StatusInfo:
        data = data or {}
        return cls(
            name=data.get("name", "ACTIVE"),
            date=data.get("date", ""),
            message=data.get("message", ""),
        )


@dataclass
class AnnotationSet:
    """Values of one variable set attached to an entity.

    Attributes:
        id: Annotation set identifier, unique within the entity
        variable_set_id: Variable set the annotations conform to
        annotations: Variable id -> value
    """

    id: str
    variable_set_id: int
    annotations: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "variableSetId": self.variable_set_id,
            "annotations": dict(self.annotations),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnnotationSet:
        return cls(
            id=data.get("id", ""),
            variable_set_id=data.get("variableSetId", 0),
            annotations=dict(data.get("annotations", {})),
        )


@dataclass
class EntityCommon:
    """Fields every catalog entity carries, populated by the adaptor."""

    id: int | None = None
    study_id: int | None = None
    creation_date: str = ""
    status: StatusInfo = field(default_factory=StatusInfo)
    acls: list[PermissionEntry] = field(default_factory=list)
    annotation_sets: list[AnnotationSet] = field(default_factory=list)
    attributes: dict[str, Any] = field(default_factory=dict)

    def common_document(self) -> dict[str, Any]:
        return {
            "creationDate": self.creation_date,
            "status": self.status.to_dict(),
            "acls": [entry.to_dict() for entry in self.acls],
            "annotationSets": [a.to_dict() for a in self.annotation_sets],
            "attributes": dict(self.attributes),
        }

    @staticmethod
    def common_fields(doc: dict[str, Any]) -> dict[str, Any]:
        """Constructor keyword arguments for the common fields of a document."""
        return {
            "id": doc.get("_id"),
            "study_id": doc.get("_studyId"),
            "creation_date": doc.get("creationDate", ""),
            "status": StatusInfo.from_dict(doc.get("status")),
            "acls": [PermissionEntry.from_dict(e) for e in doc.get("acls", [])],
            "annotation_sets": [AnnotationSet.from_dict(a) for a in doc.get("annotationSets", [])],
            "attributes": dict(doc.get("attributes", {})),
        }
