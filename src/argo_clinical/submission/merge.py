"""Merge engine: fold submitted clinical records into donor aggregates.

Merging is copy-on-write. ``merge_records_into_donor`` never touches the donor
it is given; it works on a deep copy and returns it. The same function builds
the virtual "candidate donor" during validation and the real one at commit.
"""

import copy
from typing import Any, Dict, List, Optional

from ..clinical.accessor import find_clinical_object
from ..clinical.entities import (
    Biomarker,
    ClinicalInfo,
    Donor,
    FollowUp,
    PrimaryDiagnosis,
    Therapy,
    Treatment,
)
from ..clinical.stats import update_donor_stats_from_submission_commit
from ..config.constants import (
    BIOMARKER,
    DONOR,
    FOLLOW_UP,
    MERGE_ORDER,
    PRIMARY_DIAGNOSIS,
    RECORD_INDEX,
    SPECIMEN,
    SUBMITTER_DONOR_ID,
    SUBMITTER_FOLLOW_UP_ID,
    SUBMITTER_SPECIMEN_ID,
    SUBMITTER_TREATMENT_ID,
    TREATMENT,
    TREATMENT_TYPE,
    TREATMENT_TYPE_BY_THERAPY,
    is_therapy_entity,
)
from ..config.logging_config import get_logger
from ..errors import StateConflictError
from .entities import (
    ActiveClinicalSubmission,
    ClinicalSubmissionRecordsByDonorIdMap,
    SubmittedClinicalRecord,
    SubmittedClinicalRecordsMap,
)

logger = get_logger("submission.merge")


def as_list(value: Any) -> List[Any]:
    """Normalise a possibly-array field value to a list."""
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def to_clinical_info(record: SubmittedClinicalRecord) -> ClinicalInfo:
    """Strip the row-number pseudo field from a submitted record."""
    return {k: v for k, v in record.items() if k != RECORD_INDEX}


def therapy_allowed_for(therapy_type: str, treatment_types: List[Any]) -> bool:
    return TREATMENT_TYPE_BY_THERAPY.get(therapy_type) in treatment_types


def therapies_removed_by(treatment: Treatment, new_treatment_types: List[Any]) -> List[str]:
    """Therapy types a treatment would lose if its treatment_type became ``new_treatment_types``."""
    removed = []
    for therapy in treatment.therapies:
        if not therapy_allowed_for(therapy.therapy_type, new_treatment_types):
            if therapy.therapy_type not in removed:
                removed.append(therapy.therapy_type)
    return removed


def find_treatment(donor: Donor, treatment_submitter_id: Optional[str]) -> Optional[Treatment]:
    for treatment in donor.treatments:
        if treatment.clinical_info.get(SUBMITTER_TREATMENT_ID) == treatment_submitter_id:
            return treatment
    return None


# =============================================================================
# Per-entity merge steps (operate on the working copy)
# =============================================================================


def _merge_donor(donor: Donor, record: SubmittedClinicalRecord) -> None:
    donor.clinical_info = to_clinical_info(record)


def _merge_primary_diagnosis(donor: Donor, record: SubmittedClinicalRecord) -> None:
    if donor.primary_diagnosis is None:
        donor.primary_diagnosis = PrimaryDiagnosis()
    donor.primary_diagnosis.clinical_info = to_clinical_info(record)


def _merge_specimen(donor: Donor, record: SubmittedClinicalRecord) -> None:
    specimen = donor.get_specimen(record.get(SUBMITTER_SPECIMEN_ID))
    if specimen is None:
        # specimens only come from registration
        return
    specimen.clinical_info = to_clinical_info(record)


def _merge_treatment(donor: Donor, record: SubmittedClinicalRecord) -> None:
    info = to_clinical_info(record)
    treatment = find_treatment(donor, record.get(SUBMITTER_TREATMENT_ID))
    if treatment is None:
        donor.treatments.append(Treatment(clinical_info=info))
        return
    treatment.clinical_info = info
    new_types = as_list(info.get(TREATMENT_TYPE))
    treatment.therapies = [
        t for t in treatment.therapies if therapy_allowed_for(t.therapy_type, new_types)
    ]


def _merge_therapy(
    donor: Donor,
    therapy_type: str,
    record: SubmittedClinicalRecord,
    create_dummy_treatment_if_missing: bool,
) -> None:
    treatment_id = record.get(SUBMITTER_TREATMENT_ID)
    treatment = find_treatment(donor, treatment_id)
    if treatment is None:
        if not create_dummy_treatment_if_missing:
            return
        treatment = Treatment(
            clinical_info={
                SUBMITTER_DONOR_ID: donor.submitter_id,
                SUBMITTER_TREATMENT_ID: treatment_id,
            }
        )
        donor.treatments.append(treatment)

    info = to_clinical_info(record)
    holder = Donor(
        submitter_id=donor.submitter_id,
        program_id=donor.program_id,
        gender=donor.gender,
        schema_metadata=donor.schema_metadata,
        treatments=[treatment],
    )
    existing = find_clinical_object(holder, therapy_type, record)
    if existing is not None:
        existing.clinical_info = info
    else:
        treatment.therapies.append(Therapy(therapy_type=therapy_type, clinical_info=info))


def _merge_follow_up(donor: Donor, record: SubmittedClinicalRecord) -> None:
    info = to_clinical_info(record)
    for follow_up in donor.follow_ups:
        if follow_up.clinical_info.get(SUBMITTER_FOLLOW_UP_ID) == record.get(
            SUBMITTER_FOLLOW_UP_ID
        ):
            follow_up.clinical_info = info
            return
    donor.follow_ups.append(FollowUp(clinical_info=info))


def _merge_biomarker(donor: Donor, record: SubmittedClinicalRecord) -> None:
    existing = find_clinical_object(donor, BIOMARKER, record)
    if existing is not None:
        existing.clinical_info = to_clinical_info(record)
        return
    donor.biomarkers.append(Biomarker(clinical_info=to_clinical_info(record)))


def _merge_entity_records(
    donor: Donor,
    entity_type: str,
    records: List[SubmittedClinicalRecord],
    create_dummy_treatment_if_missing: bool,
) -> None:
    for record in records:
        if entity_type == DONOR:
            _merge_donor(donor, record)
        elif entity_type == PRIMARY_DIAGNOSIS:
            _merge_primary_diagnosis(donor, record)
        elif entity_type == SPECIMEN:
            _merge_specimen(donor, record)
        elif entity_type == TREATMENT:
            _merge_treatment(donor, record)
        elif is_therapy_entity(entity_type):
            _merge_therapy(donor, entity_type, record, create_dummy_treatment_if_missing)
        elif entity_type == FOLLOW_UP:
            _merge_follow_up(donor, record)
        elif entity_type == BIOMARKER:
            _merge_biomarker(donor, record)


def merge_records_into_donor(
    donor: Donor,
    records_map: SubmittedClinicalRecordsMap,
    create_dummy_treatment_if_missing: bool = False,
) -> Donor:
    """
    Return a copy of ``donor`` with the submitted records applied.

    Args:
        donor: Stored donor; left unchanged.
        records_map: Submitted rows of this donor grouped by entity type.
        create_dummy_treatment_if_missing: Append a placeholder treatment for
            therapy rows whose treatment is not on the donor. Without it such
            rows are skipped.

    Returns:
        New Donor instance.
    """
    merged = copy.deepcopy(donor)
    for entity_type in MERGE_ORDER:
        records = records_map.get(entity_type)
        if records:
            _merge_entity_records(merged, entity_type, records, create_dummy_treatment_if_missing)
    return merged


def group_records_by_donor(
    clinical_entities: Dict[str, List[SubmittedClinicalRecord]],
) -> ClinicalSubmissionRecordsByDonorIdMap:
    """Regroup ``entity type -> rows`` into ``donor id -> entity type -> rows``."""
    by_donor: ClinicalSubmissionRecordsByDonorIdMap = {}
    for entity_type, records in clinical_entities.items():
        for index, record in enumerate(records):
            row = dict(record)
            row.setdefault(RECORD_INDEX, index)
            donor_id = row.get(SUBMITTER_DONOR_ID)
            by_donor.setdefault(donor_id, {}).setdefault(entity_type, []).append(row)
    return by_donor


def merge_active_submission_with_donors(
    submission: ActiveClinicalSubmission, donors: List[Donor]
) -> List[Donor]:
    """
    Apply a staged submission to the stored donors it names.

    Completion stats are updated for every committed entity type.

    Raises:
        StateConflictError: If the submission names a donor that is not registered.
    """
    donors_by_id = {d.submitter_id: d for d in donors}
    staged = {k: v.records for k, v in submission.clinical_entities.items()}
    updated: List[Donor] = []

    for donor_id, records_map in group_records_by_donor(staged).items():
        donor = donors_by_id.get(donor_id)
        if donor is None:
            raise StateConflictError(
                f"Donor {donor_id} in submission for {submission.program_id} is not registered"
            )
        merged = merge_records_into_donor(donor, records_map)
        for entity_type in records_map:
            merged = update_donor_stats_from_submission_commit(merged, entity_type)
        updated.append(merged)

    logger.info(f"Merged submission for {submission.program_id} into {len(updated)} donors")
    return updated
