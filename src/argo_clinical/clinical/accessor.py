"""Entity accessor: the one way to read entities out of a donor.

Validation, migration checks and completion stats all read donors through
these functions. A structurally absent entity yields an empty list, never an
exception.
"""

from typing import Any, Dict, List, Optional

from ..config.constants import (
    BIOMARKER,
    CLINICAL_UNIQUE_IDENTIFIERS,
    DONOR,
    FOLLOW_UP,
    PRIMARY_DIAGNOSIS,
    SPECIMEN,
    SUBMITTER_SPECIMEN_ID,
    TREATMENT,
    is_therapy_entity,
)
from .entities import ClinicalInfo, Donor, Specimen


def get_clinical_objects(donor: Donor, entity_name: str) -> List[Any]:
    """
    Return the entity objects of one type held by a donor.

    Args:
        donor: Donor aggregate.
        entity_name: Clinical entity name (donor, specimen, treatment, a therapy type...).

    Returns:
        List of entity objects; the donor itself for ``donor``.
    """
    if entity_name == DONOR:
        return [donor]
    if entity_name == SPECIMEN:
        return list(donor.specimens)
    if entity_name == PRIMARY_DIAGNOSIS:
        return [donor.primary_diagnosis] if donor.primary_diagnosis else []
    if entity_name == TREATMENT:
        return list(donor.treatments)
    if entity_name == FOLLOW_UP:
        return list(donor.follow_ups)
    if entity_name == BIOMARKER:
        return list(donor.biomarkers)
    if is_therapy_entity(entity_name):
        return [
            therapy
            for treatment in donor.treatments
            for therapy in treatment.therapies
            if therapy.therapy_type == entity_name
        ]
    return []


def get_clinical_entities(donor: Donor, entity_name: str) -> List[ClinicalInfo]:
    """Return the non-empty clinical info payloads of one entity type."""
    return [
        obj.clinical_info
        for obj in get_clinical_objects(donor, entity_name)
        if obj.clinical_info
    ]


def _matches(clinical_info: ClinicalInfo, constraints: Dict[str, Any]) -> bool:
    return all(clinical_info.get(name) == value for name, value in constraints.items())


def unique_id_constraints(entity_name: str, record: Dict[str, Any]) -> Dict[str, Any]:
    """Natural key values of ``record`` for an entity type."""
    return {name: record.get(name) for name in CLINICAL_UNIQUE_IDENTIFIERS.get(entity_name, [])}


def find_clinical_object(donor: Donor, entity_name: str, record: Dict[str, Any]) -> Optional[Any]:
    """
    Find the entity object a record refers to, by the entity's natural key.

    Specimens are matched on their registered submitter id because their
    clinical info may still be empty.
    """
    if entity_name == DONOR:
        return donor
    if entity_name == SPECIMEN:
        return find_specimen(donor, record.get(SUBMITTER_SPECIMEN_ID))

    constraints = unique_id_constraints(entity_name, record)
    if not constraints:
        return None
    for obj in get_clinical_objects(donor, entity_name):
        if obj.clinical_info and _matches(obj.clinical_info, constraints):
            return obj
    return None


def find_specimen(donor: Donor, submitter_id: Optional[str]) -> Optional[Specimen]:
    if submitter_id is None:
        return None
    return donor.get_specimen(submitter_id)


def get_single_clinical_info(
    donor: Donor, entity_name: str, record: Dict[str, Any]
) -> Optional[ClinicalInfo]:
    """Stored clinical info for the entity a record refers to, if any."""
    obj = find_clinical_object(donor, entity_name, record)
    if obj is None:
        return None
    return obj.clinical_info
