"""
Cohort entity kind.

A cohort is a named set of samples of one study (case/control sets, families,
time series, ...). Cohorts reference samples by identifier; every referenced
sample must exist when the cohort is created or updated.

Query keys accepted for cohorts are listed in COHORT_PARAMS.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..lifecycle import STATUS_DATE_KEY, STATUS_KEY, STATUS_MESSAGE_KEY, Status
from ..models import EntityCommon
from ..query.params import ParamTable, QueryParam, Strategy, ValueKind
from .base import EntityAdaptor, FieldType, UpdatableField

SAMPLE = "Sample"


class CohortType(Enum):
    """Kinds of cohorts."""

    CASE_CONTROL = "CASE_CONTROL"
    CASE_SET = "CASE_SET"
    CONTROL_SET = "CONTROL_SET"
    PAIRED = "PAIRED"
    PAIRED_TUMOR = "PAIRED_TUMOR"
    FAMILY = "FAMILY"
    TRIO = "TRIO"
    COLLECTION = "COLLECTION"
    TIME_SERIES = "TIME_SERIES"


class CohortPermission(Enum):
    """Permissions grantable on a cohort, in declaration order."""

    VIEW = "VIEW"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    SHARE = "SHARE"
    VIEW_ANNOTATIONS = "VIEW_ANNOTATIONS"
    CREATE_ANNOTATIONS = "CREATE_ANNOTATIONS"
    UPDATE_ANNOTATIONS = "UPDATE_ANNOTATIONS"
    DELETE_ANNOTATIONS = "DELETE_ANNOTATIONS"


COHORT_PARAMS = ParamTable(
    "Cohort",
    [
        QueryParam("id", "_id", ValueKind.INTEGER, Strategy.ID_ALIAS, description="Cohort id"),
        QueryParam("studyId", "_studyId", ValueKind.INTEGER, Strategy.ID_ALIAS, description="Study id"),
        QueryParam("name", "name", description="Cohort name"),
        QueryParam("description", "description"),
        QueryParam("creationDate", "creationDate", ValueKind.DATE),
        QueryParam(
            "type",
            "type",
            ValueKind.ENUM,
            allowed=tuple(t.value for t in CohortType),
            description="Cohort type",
        ),
        QueryParam(
            STATUS_KEY,
            STATUS_KEY,
            ValueKind.ENUM,
            allowed=tuple(s.value for s in Status),
            description="Lifecycle status",
        ),
        QueryParam(STATUS_DATE_KEY, STATUS_DATE_KEY, ValueKind.DATE),
        QueryParam(STATUS_MESSAGE_KEY, STATUS_MESSAGE_KEY),
        QueryParam("samples", "samples", ValueKind.INTEGER, multi=True, description="Sample ids"),
        QueryParam("acls.members", "acls.members", multi=True),
        QueryParam("acls.permissions", "acls.permissions", multi=True),
        QueryParam("annotationSetId", "id", strategy=Strategy.ANNOTATION_SET_ID),
        QueryParam("variableSetId", "variableSetId", ValueKind.INTEGER, Strategy.VARIABLE_SET_ID),
        QueryParam("annotation", "annotations", strategy=Strategy.ANNOTATION, nested=True),
        QueryParam("attributes", "attributes", strategy=Strategy.ATTRIBUTE_MAP, nested=True),
        QueryParam(
            "nattributes", "attributes", ValueKind.DECIMAL, Strategy.ATTRIBUTE_MAP, nested=True
        ),
        QueryParam(
            "battributes", "attributes", ValueKind.BOOLEAN, Strategy.ATTRIBUTE_MAP, nested=True
        ),
        QueryParam("stats", "stats", ValueKind.DECIMAL, Strategy.ATTRIBUTE_MAP, nested=True),
    ],
)


@dataclass
class Cohort(EntityCommon):
    """A cohort of samples.

    Attributes:
        name: Unique within the study among non-deleted cohorts
        type: CohortType value
        description: Free text
        samples: Identifiers of member samples
        stats: Numeric statistics computed over the cohort
    """

    name: str = ""
    type: str = CohortType.COLLECTION.value
    description: str = ""
    samples: list[int] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        doc = self.common_document()
        doc.update(
            {
                "name": self.name,
                "type": self.type,
                "description": self.description,
                "samples": list(self.samples),
                "stats": dict(self.stats),
            }
        )
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Cohort:
        return cls(
            name=doc.get("name", ""),
            type=doc.get("type", CohortType.COLLECTION.value),
            description=doc.get("description", ""),
            samples=list(doc.get("samples", [])),
            stats=dict(doc.get("stats", {})),
            **cls.common_fields(doc),
        )


class CohortAdaptor(EntityAdaptor[Cohort]):
    """Catalog operations on cohorts.

    Requires an existence check for samples:

        >>> cohorts = CohortAdaptor(store, allocator, directory, variable_sets,
        ...                         related={"Sample": samples})
    """

    entity_name = "Cohort"
    collection = "cohort"
    params = COHORT_PARAMS
    permission_type = CohortPermission
    entity_type = Cohort
    updatable = (
        UpdatableField("name", FieldType.STRING),
        UpdatableField("description", FieldType.STRING),
        UpdatableField("creationDate", FieldType.STRING),
        UpdatableField("type", FieldType.ENUM, enum=CohortType),
        UpdatableField("samples", FieldType.ID_LIST, related=SAMPLE),
        UpdatableField("attributes", FieldType.MAP),
        UpdatableField("stats", FieldType.MAP),
    )
