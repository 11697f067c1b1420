"""Donor aggregate, entity accessor and completion stats."""

from .entities import (
    Biomarker,
    ClinicalInfo,
    CompletionStats,
    Donor,
    FollowUp,
    PrimaryDiagnosis,
    Sample,
    SchemaMetadata,
    Specimen,
    Therapy,
    Treatment,
)
from .accessor import (
    find_clinical_object,
    get_clinical_entities,
    get_clinical_objects,
    get_single_clinical_info,
)
from .stats import RecalculateFlags, recalc_donor_stats, recalculate

__all__ = [
    "Biomarker",
    "ClinicalInfo",
    "CompletionStats",
    "Donor",
    "FollowUp",
    "PrimaryDiagnosis",
    "Sample",
    "SchemaMetadata",
    "Specimen",
    "Therapy",
    "Treatment",
    "find_clinical_object",
    "get_clinical_entities",
    "get_clinical_objects",
    "get_single_clinical_info",
    "RecalculateFlags",
    "recalc_donor_stats",
    "recalculate",
]
