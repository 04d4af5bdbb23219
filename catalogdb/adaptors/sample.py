"""
Sample entity kind.

Samples are the biological specimens cohorts group together. The sample
adaptor doubles as the existence check cohorts use for their ``samples``
field.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..lifecycle import STATUS_DATE_KEY, STATUS_KEY, Status
from ..models import EntityCommon
from ..query.params import ParamTable, QueryParam, Strategy, ValueKind
from .base import EntityAdaptor, FieldType, UpdatableField


class SamplePermission(Enum):
    """Permissions grantable on a sample, in declaration order."""

    VIEW = "VIEW"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    SHARE = "SHARE"
    VIEW_ANNOTATIONS = "VIEW_ANNOTATIONS"
    CREATE_ANNOTATIONS = "CREATE_ANNOTATIONS"
    UPDATE_ANNOTATIONS = "UPDATE_ANNOTATIONS"
    DELETE_ANNOTATIONS = "DELETE_ANNOTATIONS"


SAMPLE_PARAMS = ParamTable(
    "Sample",
    [
        QueryParam("id", "_id", ValueKind.INTEGER, Strategy.ID_ALIAS),
        QueryParam("studyId", "_studyId", ValueKind.INTEGER, Strategy.ID_ALIAS),
        QueryParam("name", "name"),
        QueryParam("source", "source"),
        QueryParam("description", "description"),
        QueryParam("individualId", "individualId", ValueKind.INTEGER),
        QueryParam("somatic", "somatic", ValueKind.BOOLEAN),
        QueryParam("type", "type"),
        QueryParam("creationDate", "creationDate", ValueKind.DATE),
        QueryParam(STATUS_KEY, STATUS_KEY, ValueKind.ENUM, allowed=tuple(s.value for s in Status)),
        QueryParam(STATUS_DATE_KEY, STATUS_DATE_KEY, ValueKind.DATE),
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
    ],
)


@dataclass
class Sample(EntityCommon):
    """A biological sample.

    Attributes:
        name: Unique within the study among non-deleted samples
        source: Where the sample came from
        description: Free text
        individual_id: Individual the sample was taken from, 0 if unknown
        type: Free-form sample type (e.g. "blood")
        somatic: Whether the sample is somatic tissue
    """

    name: str = ""
    source: str = ""
    description: str = ""
    individual_id: int = 0
    type: str = ""
    somatic: bool = False

    def to_document(self) -> dict[str, Any]:
        doc = self.common_document()
        doc.update(
            {
                "name": self.name,
                "source": self.source,
                "description": self.description,
                "individualId": self.individual_id,
                "type": self.type,
                "somatic": self.somatic,
            }
        )
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> Sample:
        return cls(
            name=doc.get("name", ""),
            source=doc.get("source", ""),
            description=doc.get("description", ""),
            individual_id=doc.get("individualId", 0),
            type=doc.get("type", ""),
            somatic=doc.get("somatic", False),
            **cls.common_fields(doc),
        )


class SampleAdaptor(EntityAdaptor[Sample]):
    """Catalog operations on samples."""

    entity_name = "Sample"
    collection = "sample"
    params = SAMPLE_PARAMS
    permission_type = SamplePermission
    entity_type = Sample
    updatable = (
        UpdatableField("name", FieldType.STRING),
        UpdatableField("source", FieldType.STRING),
        UpdatableField("description", FieldType.STRING),
        UpdatableField("individualId", FieldType.INTEGER),
        UpdatableField("type", FieldType.STRING),
        UpdatableField("somatic", FieldType.BOOLEAN),
        UpdatableField("creationDate", FieldType.STRING),
        UpdatableField("attributes", FieldType.MAP),
    )
