"""
Entity adaptors.

This package contains:
- base: EntityAdaptor with the operations shared by every entity kind
- cohort: Cohorts (sets of samples)
- sample: Samples
"""

from .base import EntityAdaptor, FieldType, UpdatableField
from .cohort import COHORT_PARAMS, Cohort, CohortAdaptor, CohortPermission, CohortType
from .sample import SAMPLE_PARAMS, Sample, SampleAdaptor, SamplePermission

__all__ = [
    "COHORT_PARAMS",
    "Cohort",
    "CohortAdaptor",
    "CohortPermission",
    "CohortType",
    "EntityAdaptor",
    "FieldType",
    "SAMPLE_PARAMS",
    "Sample",
    "SampleAdaptor",
    "SamplePermission",
    "UpdatableField",
]
