"""Clinical submission validation.

Batch level: schema processing, natural key uniqueness and program id checks
for the rows of one entity type.

Donor level: rows are grouped per donor and merged into a candidate donor
(stored donor + batch). Entity specific checks then run against the candidate
and every row is classified as new, updated, unchanged or erroneous.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..clinical.accessor import get_single_clinical_info
from ..clinical.entities import Donor, Specimen
from ..config.constants import (
    BIOMARKER,
    CLINICAL_TUMOUR_STAGING_SYSTEM,
    CLINICAL_UNIQUE_IDENTIFIERS,
    DECEASED,
    DONOR,
    FOLLOW_UP,
    INTERVAL_OF_FOLLOWUP,
    LOST_TO_FOLLOWUP_AFTER_CLINICAL_EVENT_ID,
    NORMAL,
    OPTIONAL_TUMOUR_SPECIMEN_FIELDS,
    PATHOLOGICAL_TUMOUR_STAGING_SYSTEM,
    PRIMARY_DIAGNOSIS,
    PROGRAM_ID,
    RECORD_INDEX,
    REGISTRATION,
    SPECIMEN,
    SPECIMEN_ACQUISITION_INTERVAL,
    SUBMITTER_DONOR_ID,
    SUBMITTER_FOLLOW_UP_ID,
    SUBMITTER_PRIMARY_DIAGNOSIS_ID,
    SUBMITTER_SPECIMEN_ID,
    SUBMITTER_TREATMENT_ID,
    SURGERY,
    SURGERY_TYPE,
    SURVIVAL_TIME,
    THERAPY_ENTITIES,
    TREATMENT,
    TREATMENT_DURATION,
    TREATMENT_START_INTERVAL,
    TREATMENT_TYPE,
    TUMOUR,
    TUMOUR_NORMAL_DESIGNATION,
    TUMOUR_ONLY_SPECIMEN_FIELDS,
    VITAL_STATUS,
    get_entity_submitter_id_field,
)
from ..config.logging_config import get_logger
from ..dictionary.entities import SchemasDictionary, SchemaValidationError
from ..dictionary.processor import is_empty, process, to_raw_string
from ..errors import InvalidArgumentError
from .entities import (
    ClinicalEntityValidationResult,
    ClinicalSubmissionRecordsByDonorIdMap,
    ClinicalTypeValidateResult,
    DataValidationErrors,
    ModificationType,
    RecordValidationResult,
    SubmissionValidationError,
    SubmissionValidationUpdate,
    SubmittedClinicalRecord,
    SubmittedClinicalRecordsMap,
)
from .error_messages import validation_error_message
from .merge import as_list, find_treatment, merge_records_into_donor, therapy_allowed_for
from .program_exceptions import ProgramException, apply_program_exceptions

logger = get_logger("submission.clinical_validation")

Errors = List[SubmissionValidationError]


@dataclass
class BatchValidationResult:
    """Schema-processed rows of one entity type plus every error found."""

    errors: Errors = field(default_factory=list)
    processed_records: List[SubmittedClinicalRecord] = field(default_factory=list)


@dataclass
class ValidationContext:
    """What a per-entity validator can see besides its own row."""

    existing_donor: Donor
    merged_donor: Donor
    submitted_records: SubmittedClinicalRecordsMap
    donor_finder: Any = None


# =============================================================================
# Error builders
# =============================================================================


def build_submission_error(
    record: SubmittedClinicalRecord,
    error_type: DataValidationErrors,
    field_name: str,
    info: Optional[Dict[str, Any]] = None,
) -> SubmissionValidationError:
    """Build an error for a clinical row; info carries the donor id and offending value."""
    index = record.get(RECORD_INDEX, 0)
    error_info = {
        **(info or {}),
        "donorSubmitterId": record.get(SUBMITTER_DONOR_ID),
        "value": record.get(field_name),
    }
    error_data = {"fieldName": field_name, "index": index, "info": error_info}
    return SubmissionValidationError(
        type=error_type.value,
        field_name=field_name,
        index=index,
        info=error_info,
        message=validation_error_message(error_type.value, error_data),
    )


def from_schema_error(
    error: SchemaValidationError, record: Dict[str, Any]
) -> SubmissionValidationError:
    """Lift a schema processing error into the submission error shape."""
    info = {
        **error.info,
        "donorSubmitterId": record.get(SUBMITTER_DONOR_ID),
        "value": record.get(error.field_name),
    }
    return SubmissionValidationError(
        type=error.error_type.value,
        field_name=error.field_name,
        index=error.index,
        info=info,
        message=error.message,
    )


# =============================================================================
# Batch checks
# =============================================================================


def check_unique_records(
    entity_type: str,
    records: List[Dict[str, Any]],
    use_all_record_values: bool = False,
) -> Errors:
    """
    Flag rows that share an entity's natural key within one batch.

    Entities without a natural key are compared on all their values. Every
    flagged row lists the other rows it collides with.

    Raises:
        InvalidArgumentError: For registration rows, which have their own checks.
    """
    if entity_type == REGISTRATION:
        raise InvalidArgumentError("Registration rows are checked by registration validation")

    unique_id_names = CLINICAL_UNIQUE_IDENTIFIERS.get(entity_type, [])
    if not unique_id_names:
        use_all_record_values = True

    rows_by_key: Dict[Tuple[str, ...], List[int]] = {}
    for index, record in enumerate(records):
        if use_all_record_values:
            key = tuple(sorted(f"{k}={to_raw_string(v)}" for k, v in record.items()))
        else:
            key = tuple(to_raw_string(record.get(name)) for name in unique_id_names)
        if all(part.strip() == "" for part in key):
            # a missing id is already reported by the schema check
            continue
        rows_by_key.setdefault(key, []).append(index)

    field_name = unique_id_names[0] if len(unique_id_names) == 1 else SUBMITTER_DONOR_ID
    errors: Errors = []
    for rows in rows_by_key.values():
        if len(rows) < 2:
            continue
        for row in rows:
            errors.append(
                build_submission_error(
                    {**records[row], RECORD_INDEX: row},
                    DataValidationErrors.FOUND_IDENTICAL_IDS,
                    field_name,
                    {
                        "conflictingRows": [r for r in rows if r != row],
                        "useAllRecordValues": use_all_record_values,
                        "uniqueIdNames": list(unique_id_names),
                    },
                )
            )
    errors.sort(key=lambda e: e.index)
    return errors


def using_invalid_program_id(
    index: int, record: Dict[str, Any], expected_program: str
) -> Errors:
    program_id = record.get(PROGRAM_ID)
    if not program_id or program_id == expected_program:
        return []
    info = {
        "value": program_id,
        "donorSubmitterId": record.get(SUBMITTER_DONOR_ID),
        "expectedProgram": expected_program,
    }
    return [
        SubmissionValidationError(
            type=DataValidationErrors.INVALID_PROGRAM_ID.value,
            field_name=PROGRAM_ID,
            index=index,
            info=info,
            message=validation_error_message(DataValidationErrors.INVALID_PROGRAM_ID.value),
        )
    ]


def validate_batch(
    entity_type: str,
    records: List[Dict[str, Any]],
    program_id: str,
    schema: SchemasDictionary,
    exceptions: Optional[List[ProgramException]] = None,
) -> BatchValidationResult:
    """
    Schema-validate the rows of one clinical file.

    Args:
        entity_type: Entity schema the rows belong to.
        records: Raw rows (field name -> raw string).
        program_id: Program the rows are submitted to.
        schema: Dictionary version to validate against.
        exceptions: Program exceptions; schema errors on excepted values are dropped.

    Returns:
        BatchValidationResult with all errors and the converted rows, each
        tagged with its row number.
    """
    result = BatchValidationResult(errors=check_unique_records(entity_type, records))
    for index, record in enumerate(records):
        processed = process(schema, entity_type, record, index)
        schema_errors = apply_program_exceptions(
            exceptions or [],
            entity_type,
            record,
            processed.processed_record,
            processed.validation_errors,
        )
        result.errors.extend(from_schema_error(e, record) for e in schema_errors)
        result.errors.extend(using_invalid_program_id(index, record, program_id))
        result.processed_records.append({**processed.processed_record, RECORD_INDEX: index})

    if result.errors:
        logger.debug(f"{entity_type} batch for {program_id}: {len(result.errors)} errors")
    return result


# =============================================================================
# Shared cross-record checks
# =============================================================================


def check_clinical_entity_doesnt_belong_to_other_donor(
    entity_type: str, record: SubmittedClinicalRecord, context: ValidationContext
) -> Errors:
    finder = context.donor_finder
    if finder is None:
        return []
    id_field = get_entity_submitter_id_field(entity_type)
    owner = finder.find_by_clinical_entity_submitter_id(
        context.existing_donor.program_id, entity_type, record.get(id_field)
    )
    if owner is None or owner.submitter_id == record.get(SUBMITTER_DONOR_ID):
        return []
    return [
        build_submission_error(
            record,
            DataValidationErrors.CLINICAL_ENTITY_BELONGS_TO_OTHER_DONOR,
            id_field,
            {"otherDonorSubmitterId": owner.submitter_id, "clinicalType": entity_type},
        )
    ]


def check_related_entity_exists(
    parent_entity: str,
    record: SubmittedClinicalRecord,
    child_entity: str,
    merged_donor: Donor,
    required: bool,
) -> Errors:
    """Check that a reference (e.g. submitter_primary_diagnosis_id) resolves on the donor."""
    id_field = get_entity_submitter_id_field(parent_entity)
    value = record.get(id_field)
    if is_empty(value) and not required:
        return []

    error = build_submission_error(
        record,
        DataValidationErrors.RELATED_ENTITY_MISSING_OR_CONFLICTING,
        id_field,
        {
            "fieldName": id_field,
            "childEntity": child_entity,
            "parentEntity": parent_entity,
        },
    )
    if is_empty(value):
        return [error]
    if get_single_clinical_info(merged_donor, parent_entity, {id_field: value}) is None:
        return [error]
    return []


# =============================================================================
# Per-entity validators
# =============================================================================

ValidatorOutput = Tuple[Errors, Errors]


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or is_empty(value):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _is_deceased(vital_status: Any) -> bool:
    return str(vital_status or "").strip().lower() == DECEASED.lower()


def _check_survival_time(record: SubmittedClinicalRecord, donor: Donor) -> Errors:
    """Deceased donors cannot have survived less than any specimen's acquisition interval."""
    survival_time = _as_number(record.get(SURVIVAL_TIME))
    if not _is_deceased(record.get(VITAL_STATUS)) or survival_time is None:
        return []

    conflicting = []
    for specimen in donor.specimens:
        interval = _as_number(specimen.clinical_info.get(SPECIMEN_ACQUISITION_INTERVAL))
        if interval is not None and survival_time < interval:
            conflicting.append(specimen.submitter_id)

    if not conflicting:
        return []
    return [
        build_submission_error(
            record,
            DataValidationErrors.CONFLICTING_TIME_INTERVAL,
            SURVIVAL_TIME,
            {"conflictingSpecimenSubmitterIds": conflicting},
        )
    ]


def _treatment_end(clinical_info: Dict[str, Any]) -> float:
    start = _as_number(clinical_info.get(TREATMENT_START_INTERVAL)) or 0.0
    duration = _as_number(clinical_info.get(TREATMENT_DURATION)) or 0.0
    return start + duration


def _clinical_event_interval(donor: Donor, event_id: Any) -> Optional[float]:
    """
    Interval at which the donor's clinical event ``event_id`` ended.

    Primary diagnoses count as interval 0, follow ups use interval_of_followup
    and treatments their start interval plus duration.

    Returns:
        The interval, or None when no event of the donor has that submitter id.
    """
    diagnosis = donor.primary_diagnosis
    if diagnosis and diagnosis.clinical_info.get(SUBMITTER_PRIMARY_DIAGNOSIS_ID) == event_id:
        return 0.0
    for follow_up in donor.follow_ups:
        if follow_up.clinical_info.get(SUBMITTER_FOLLOW_UP_ID) == event_id:
            return _as_number(follow_up.clinical_info.get(INTERVAL_OF_FOLLOWUP)) or 0.0
    treatment = find_treatment(donor, event_id)
    if treatment is not None:
        return _treatment_end(treatment.clinical_info)
    return None


def _check_lost_to_follow_up(record: SubmittedClinicalRecord, donor: Donor) -> Errors:
    event_id = record.get(LOST_TO_FOLLOWUP_AFTER_CLINICAL_EVENT_ID)
    if is_empty(event_id):
        return []

    interval = _clinical_event_interval(donor, event_id)
    if interval is None:
        return [
            build_submission_error(
                record,
                DataValidationErrors.INVALID_LOST_TO_FOLLOW_UP_ID,
                LOST_TO_FOLLOWUP_AFTER_CLINICAL_EVENT_ID,
                {LOST_TO_FOLLOWUP_AFTER_CLINICAL_EVENT_ID: event_id},
            )
        ]

    for treatment in donor.treatments:
        if treatment.clinical_info and _treatment_end(treatment.clinical_info) > interval:
            return [
                build_submission_error(
                    record,
                    DataValidationErrors.INVALID_SUBMISSION_AFTER_LOST_TO_FOLLOW_UP,
                    LOST_TO_FOLLOWUP_AFTER_CLINICAL_EVENT_ID,
                    {
                        LOST_TO_FOLLOWUP_AFTER_CLINICAL_EVENT_ID: event_id,
                        INTERVAL_OF_FOLLOWUP: interval,
                        SUBMITTER_TREATMENT_ID: treatment.clinical_info.get(
                            SUBMITTER_TREATMENT_ID
                        ),
                    },
                )
            ]
    return []


def validate_donor(record: SubmittedClinicalRecord, context: ValidationContext) -> ValidatorOutput:
    errors = _check_survival_time(record, context.merged_donor)
    errors.extend(_check_lost_to_follow_up(record, context.merged_donor))
    return errors, []


def _check_tumour_normal_fields(specimen: Specimen, record: SubmittedClinicalRecord) -> Errors:
    info = {
        "submitter_specimen_id": record.get(SUBMITTER_SPECIMEN_ID),
        "referenceSchema": REGISTRATION,
        "variableRequirement": {
            "fieldName": TUMOUR_NORMAL_DESIGNATION,
            "fieldValue": specimen.tumour_normal_designation,
        },
    }
    if specimen.tumour_normal_designation == TUMOUR:
        return [
            build_submission_error(
                record, DataValidationErrors.MISSING_VARIABLE_REQUIREMENT, name, info
            )
            for name in TUMOUR_ONLY_SPECIMEN_FIELDS
            if is_empty(record.get(name))
        ]
    if specimen.tumour_normal_designation == NORMAL:
        return [
            build_submission_error(
                record, DataValidationErrors.FORBIDDEN_PROVIDED_VARIABLE_REQUIREMENT, name, info
            )
            for name in TUMOUR_ONLY_SPECIMEN_FIELDS + OPTIONAL_TUMOUR_SPECIMEN_FIELDS
            if not is_empty(record.get(name))
        ]
    return []


def _donor_time_fields(
    record: SubmittedClinicalRecord, donor: Donor
) -> Tuple[Optional[Tuple[str, Optional[float]]], Errors]:
    """Vital status and survival time of the candidate donor, or a NOT_ENOUGH_INFO error."""
    donor_info = donor.clinical_info or {}
    vital_status = donor_info.get(VITAL_STATUS) or ""
    survival_time = _as_number(donor_info.get(SURVIVAL_TIME))

    missing = []
    if not donor_info:
        missing = [VITAL_STATUS, SURVIVAL_TIME]
    else:
        if is_empty(vital_status):
            missing.append(VITAL_STATUS)
        if _is_deceased(vital_status) and survival_time is None:
            missing.append(SURVIVAL_TIME)

    if missing:
        return None, [
            build_submission_error(
                record,
                DataValidationErrors.NOT_ENOUGH_INFO_TO_VALIDATE,
                SPECIMEN_ACQUISITION_INTERVAL,
                {"missingField": [f"{DONOR}.{name}" for name in missing]},
            )
        ]
    return (vital_status, survival_time), []


def validate_specimen(
    record: SubmittedClinicalRecord, context: ValidationContext
) -> ValidatorOutput:
    specimen = context.existing_donor.get_specimen(record.get(SUBMITTER_SPECIMEN_ID))
    if specimen is None:
        return [
            build_submission_error(
                record, DataValidationErrors.ID_NOT_REGISTERED, SUBMITTER_SPECIMEN_ID
            )
        ], []

    errors = _check_tumour_normal_fields(specimen, record)
    errors.extend(
        check_related_entity_exists(
            PRIMARY_DIAGNOSIS, record, SPECIMEN, context.merged_donor, required=False
        )
    )

    donor_data, info_errors = _donor_time_fields(record, context.merged_donor)
    errors.extend(info_errors)
    if donor_data is not None:
        vital_status, survival_time = donor_data
        interval = _as_number(record.get(SPECIMEN_ACQUISITION_INTERVAL))
        if (
            _is_deceased(vital_status)
            and survival_time is not None
            and interval is not None
            and survival_time < interval
        ):
            errors.append(
                build_submission_error(
                    record,
                    DataValidationErrors.CONFLICTING_TIME_INTERVAL,
                    SPECIMEN_ACQUISITION_INTERVAL,
                )
            )
    return errors, []


def _check_tnm_staging(record: SubmittedClinicalRecord, donor: Donor) -> Errors:
    """Tumour specimens of a diagnosis need pathological staging unless the diagnosis is staged."""
    diagnosis_id = record.get(SUBMITTER_PRIMARY_DIAGNOSIS_ID)
    if is_empty(diagnosis_id) or not is_empty(record.get(CLINICAL_TUMOUR_STAGING_SYSTEM)):
        return []

    unstaged = [
        specimen.submitter_id
        for specimen in donor.specimens
        if specimen.tumour_normal_designation == TUMOUR
        and specimen.clinical_info.get(SUBMITTER_PRIMARY_DIAGNOSIS_ID) == diagnosis_id
        and is_empty(specimen.clinical_info.get(PATHOLOGICAL_TUMOUR_STAGING_SYSTEM))
    ]
    if not unstaged:
        return []
    return [
        build_submission_error(
            record,
            DataValidationErrors.TNM_STAGING_FIELDS_MISSING,
            CLINICAL_TUMOUR_STAGING_SYSTEM,
            {
                SUBMITTER_PRIMARY_DIAGNOSIS_ID: diagnosis_id,
                "specimenSubmitterIds": unstaged,
            },
        )
    ]


def validate_primary_diagnosis(
    record: SubmittedClinicalRecord, context: ValidationContext
) -> ValidatorOutput:
    errors: Errors = []
    if get_single_clinical_info(context.existing_donor, PRIMARY_DIAGNOSIS, record) is None:
        errors.extend(
            check_clinical_entity_doesnt_belong_to_other_donor(PRIMARY_DIAGNOSIS, record, context)
        )
    errors.extend(_check_tnm_staging(record, context.merged_donor))
    return errors, []


def validate_follow_up(
    record: SubmittedClinicalRecord, context: ValidationContext
) -> ValidatorOutput:
    errors = check_related_entity_exists(
        PRIMARY_DIAGNOSIS, record, FOLLOW_UP, context.merged_donor, required=False
    )
    errors.extend(
        check_related_entity_exists(
            TREATMENT, record, FOLLOW_UP, context.merged_donor, required=False
        )
    )
    if get_single_clinical_info(context.existing_donor, FOLLOW_UP, record) is None:
        errors.extend(
            check_clinical_entity_doesnt_belong_to_other_donor(FOLLOW_UP, record, context)
        )
    return errors, []


def validate_treatment(
    record: SubmittedClinicalRecord, context: ValidationContext
) -> ValidatorOutput:
    errors: Errors = []
    warnings: Errors = []
    stored = find_treatment(context.existing_donor, record.get(SUBMITTER_TREATMENT_ID))

    if stored is None:
        errors.extend(
            check_clinical_entity_doesnt_belong_to_other_donor(TREATMENT, record, context)
        )

    treatment_types = as_list(record.get(TREATMENT_TYPE))
    if not errors:
        merged = find_treatment(context.merged_donor, record.get(SUBMITTER_TREATMENT_ID))
        present = {t.therapy_type for t in merged.therapies} if merged else set()
        for therapy_type in THERAPY_ENTITIES:
            if therapy_allowed_for(therapy_type, treatment_types) and therapy_type not in present:
                errors.append(
                    build_submission_error(
                        record,
                        DataValidationErrors.MISSING_THERAPY_DATA,
                        TREATMENT_TYPE,
                        {"therapyType": therapy_type},
                    )
                )

    errors.extend(
        check_related_entity_exists(
            PRIMARY_DIAGNOSIS, record, TREATMENT, context.merged_donor, required=False
        )
    )

    if stored is not None:
        old_types = as_list(stored.clinical_info.get(TREATMENT_TYPE))
        if sorted(map(str, old_types)) != sorted(map(str, treatment_types)):
            deleted = [
                t.therapy_type
                for t in stored.therapies
                if not therapy_allowed_for(t.therapy_type, treatment_types)
            ]
            warnings.append(
                build_submission_error(
                    record,
                    DataValidationErrors.DELETING_THERAPY,
                    TREATMENT_TYPE,
                    {"oldValue": old_types, "deletedTherapies": sorted(set(deleted))},
                )
            )
    return errors, warnings


def _same_value(a: Any, b: Any) -> bool:
    return to_raw_string(a) == to_raw_string(b)


def _check_surgery_specimen(record: SubmittedClinicalRecord, donor: Donor) -> Errors:
    """
    A specimen is linked to at most one surgery.

    Surgeries sharing a treatment must also agree on surgery_type.
    """
    treatment_id = record.get(SUBMITTER_TREATMENT_ID)
    specimen_id = record.get(SUBMITTER_SPECIMEN_ID)
    for treatment in donor.treatments:
        for therapy in treatment.therapies:
            if therapy.therapy_type != SURGERY:
                continue
            info = therapy.clinical_info
            same_treatment = _same_value(info.get(SUBMITTER_TREATMENT_ID), treatment_id)
            same_specimen = _same_value(info.get(SUBMITTER_SPECIMEN_ID), specimen_id)
            if same_treatment and same_specimen:
                # the row itself
                continue
            specimen_reused = same_specimen and not is_empty(specimen_id)
            type_mismatch = same_treatment and not _same_value(
                info.get(SURGERY_TYPE), record.get(SURGERY_TYPE)
            )
            if specimen_reused or type_mismatch:
                return [
                    build_submission_error(
                        record,
                        DataValidationErrors.DUPLICATE_SUBMITTER_SPECIMEN_ID_IN_SURGERY,
                        SUBMITTER_SPECIMEN_ID,
                        {"conflictingTreatmentId": info.get(SUBMITTER_TREATMENT_ID)},
                    )
                ]
    return []


def _therapy_validator(therapy_type: str) -> Callable[..., ValidatorOutput]:
    def validate_therapy(
        record: SubmittedClinicalRecord, context: ValidationContext
    ) -> ValidatorOutput:
        treatment = find_treatment(context.merged_donor, record.get(SUBMITTER_TREATMENT_ID))
        if treatment is None or not treatment.clinical_info:
            return [
                build_submission_error(
                    record, DataValidationErrors.TREATMENT_ID_NOT_FOUND, SUBMITTER_TREATMENT_ID
                )
            ], []

        errors: Errors = []
        treatment_types = as_list(treatment.clinical_info.get(TREATMENT_TYPE))
        if not therapy_allowed_for(therapy_type, treatment_types):
            errors.append(
                build_submission_error(
                    record,
                    DataValidationErrors.INCOMPATIBLE_PARENT_TREATMENT_TYPE,
                    SUBMITTER_TREATMENT_ID,
                    {TREATMENT_TYPE: treatment_types, "therapyType": therapy_type},
                )
            )
        if therapy_type == SURGERY:
            errors.extend(_check_surgery_specimen(record, context.merged_donor))
        return errors, []

    return validate_therapy


def validate_biomarker(
    record: SubmittedClinicalRecord, context: ValidationContext
) -> ValidatorOutput:
    """Every clinical event a biomarker names must exist on the donor."""
    errors: Errors = []
    for parent_entity in (PRIMARY_DIAGNOSIS, SPECIMEN, TREATMENT, FOLLOW_UP):
        errors.extend(
            check_related_entity_exists(
                parent_entity, record, BIOMARKER, context.merged_donor, required=False
            )
        )
    return errors, []


VALIDATORS: Dict[str, Callable[[SubmittedClinicalRecord, ValidationContext], ValidatorOutput]] = {
    DONOR: validate_donor,
    SPECIMEN: validate_specimen,
    PRIMARY_DIAGNOSIS: validate_primary_diagnosis,
    TREATMENT: validate_treatment,
    FOLLOW_UP: validate_follow_up,
    BIOMARKER: validate_biomarker,
    **{therapy: _therapy_validator(therapy) for therapy in THERAPY_ENTITIES},
}


# =============================================================================
# Row classification
# =============================================================================


def get_submission_updates(
    stored_info: Dict[str, Any], record: SubmittedClinicalRecord
) -> List[SubmissionValidationUpdate]:
    """Changed fields of a row against the stored clinical info."""
    updates = []
    for field_name, new_value in record.items():
        old_value = stored_info.get(field_name)
        if field_name == RECORD_INDEX or (is_empty(old_value) and is_empty(new_value)):
            continue
        if old_value != new_value:
            updates.append(
                SubmissionValidationUpdate(
                    field_name=field_name,
                    index=record.get(RECORD_INDEX, 0),
                    donor_submitter_id=record.get(SUBMITTER_DONOR_ID, ""),
                    new_value=to_raw_string(new_value),
                    old_value=to_raw_string(old_value),
                )
            )
    return updates


def build_record_validation_result(
    record: SubmittedClinicalRecord,
    errors: Errors,
    warnings: Errors,
    existing_donor: Donor,
    entity_type: str,
) -> RecordValidationResult:
    index = record.get(RECORD_INDEX, 0)
    if errors:
        return RecordValidationResult(
            status=ModificationType.ERRORS_FOUND, index=index, errors=errors, warnings=warnings
        )

    stored_info = get_single_clinical_info(existing_donor, entity_type, record)
    if not stored_info:
        return RecordValidationResult(status=ModificationType.NEW, index=index, warnings=warnings)

    updates = get_submission_updates(stored_info, record)
    if not updates:
        return RecordValidationResult(
            status=ModificationType.NO_UPDATE, index=index, warnings=warnings
        )
    return RecordValidationResult(
        status=ModificationType.UPDATED, index=index, updates=updates, warnings=warnings
    )


def build_clinical_validation_result(
    results: List[RecordValidationResult],
) -> ClinicalEntityValidationResult:
    aggregated = ClinicalEntityValidationResult()
    for result in results:
        aggregated.stats[result.status.value].append(result.index)
        aggregated.data_warnings.extend(result.warnings)
        if result.status == ModificationType.UPDATED:
            aggregated.data_updates.extend(result.updates)
        elif result.status == ModificationType.ERRORS_FOUND:
            aggregated.data_errors.extend(result.errors)
    return aggregated


# =============================================================================
# Entry point
# =============================================================================


def _not_registered_results(
    records_map: SubmittedClinicalRecordsMap,
) -> Dict[str, List[RecordValidationResult]]:
    results: Dict[str, List[RecordValidationResult]] = {}
    for entity_type, records in records_map.items():
        results[entity_type] = [
            RecordValidationResult(
                status=ModificationType.ERRORS_FOUND,
                index=record.get(RECORD_INDEX, 0),
                errors=[
                    build_submission_error(
                        record, DataValidationErrors.ID_NOT_REGISTERED, SUBMITTER_DONOR_ID
                    )
                ],
            )
            for record in records
        ]
    return results


def validate_submission_data(
    records_by_donor: ClinicalSubmissionRecordsByDonorIdMap,
    existing_donors: Dict[str, Donor],
    donor_finder: Any = None,
) -> ClinicalTypeValidateResult:
    """
    Validate schema-clean clinical rows against the stored donors.

    Args:
        records_by_donor: Rows grouped by donor submitter id, then entity type.
        existing_donors: Stored donors keyed by submitter id.
        donor_finder: Object with ``find_by_clinical_entity_submitter_id(program_id,
            entity_type, submitter_id)`` used for program-wide ownership checks.
            When None those checks are skipped.

    Returns:
        Per entity type validation result. Entity types without rows are omitted.
    """
    per_type: Dict[str, List[RecordValidationResult]] = {}

    for donor_id, records_map in records_by_donor.items():
        existing = existing_donors.get(donor_id)
        if existing is None:
            for entity_type, results in _not_registered_results(records_map).items():
                per_type.setdefault(entity_type, []).extend(results)
            continue

        merged = merge_records_into_donor(existing, records_map)
        context = ValidationContext(
            existing_donor=existing,
            merged_donor=merged,
            submitted_records=records_map,
            donor_finder=donor_finder,
        )
        for entity_type, records in records_map.items():
            validator = VALIDATORS.get(entity_type)
            for record in records:
                errors, warnings = validator(record, context) if validator else ([], [])
                per_type.setdefault(entity_type, []).append(
                    build_record_validation_result(record, errors, warnings, existing, entity_type)
                )

    return {
        entity_type: build_clinical_validation_result(results)
        for entity_type, results in per_type.items()
        if results
    }


def merge_and_validate_submission(
    existing_donors: Dict[str, Donor],
    records_by_donor: ClinicalSubmissionRecordsByDonorIdMap,
    donor_finder: Any = None,
) -> ClinicalTypeValidateResult:
    """Merge each donor's rows into a candidate donor and validate them."""
    return validate_submission_data(records_by_donor, existing_donors, donor_finder)

