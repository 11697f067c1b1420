"""User-facing messages for cross-record validation errors."""

from typing import Any, Callable, Dict


def _list(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


def _found_identical_ids(data: Dict[str, Any]) -> str:
    info = data.get("info", {})
    if info.get("useAllRecordValues"):
        return "This row is identical to another row"
    names = ", ".join(info.get("uniqueIdNames") or [])
    return (
        f"You are trying to submit the same [{names}] in multiple rows. "
        f"[{names}] can only be submitted once per file."
    )


def _related_entity(data: Dict[str, Any]) -> str:
    info = data.get("info", {})
    field, child, parent = info.get("fieldName"), info.get("childEntity"), info.get("parentEntity")
    return (
        f"[{field}] value in [{child}] file requires a matching [{field}] in [{parent}] data. "
        f"Check that it belongs to the same [submitter_donor_id] = {info.get('donorSubmitterId')}. "
        f"It could have been previously submitted for a different donor, or if it's new in this "
        f"submission, it's either missing in [{parent}] file or this [{field}] is associated with "
        f"different [submitter_donor_id] in the [{parent}] file."
    )


def _variable_requirement(verb: str) -> Callable[[Dict[str, Any]], str]:
    def render(data: Dict[str, Any]) -> str:
        requirement = data.get("info", {}).get("variableRequirement", {})
        return (
            f"{data.get('fieldName')} {verb} when the {requirement.get('fieldName')} "
            f"is {requirement.get('fieldValue')}."
        )

    return render


ERROR_MESSAGES: Dict[str, Callable[[Dict[str, Any]], str]] = {
    "NEW_DONOR_CONFLICT": lambda d: (
        "You are trying to register the same donor twice with different genders."
    ),
    "SAMPLE_BELONGS_TO_OTHER_SPECIMEN": lambda d: (
        "Samples can only be registered to a single specimen. This sample has already been "
        f"registered to specimen {d['info'].get('otherSpecimenSubmitterId')}. Please correct "
        "your file or contact DCC to update the registered data."
    ),
    "SPECIMEN_BELONGS_TO_OTHER_DONOR": lambda d: (
        "Specimens can only be registered to a single donor. This specimen has already been "
        f"registered to donor {d['info'].get('otherDonorSubmitterId')}. Please correct your "
        "file or contact DCC to update the registered data."
    ),
    "INVALID_PROGRAM_ID": lambda d: (
        "Program ID does not match. Please include the correct Program ID."
    ),
    "MUTATING_EXISTING_DATA": lambda d: (
        "The value does not match the previously registered value of "
        f"{d['info'].get('originalValue')}. Please correct your file or contact DCC to update "
        "the registered data."
    ),
    "NEW_SAMPLE_ATTR_CONFLICT": lambda d: (
        "You are trying to register the same sample with different sample types."
    ),
    "NEW_SPECIMEN_ATTR_CONFLICT": lambda d: (
        "You are trying to register the same specimen with different values."
    ),
    "NEW_SPECIMEN_ID_CONFLICT": lambda d: (
        "You are trying to register the same sample to multiple donors. Specimens can only be "
        "registered to a single donor."
    ),
    "NEW_SAMPLE_ID_CONFLICT": lambda d: (
        "You are trying to register the same sample either with multiple donors, specimens or "
        "rows. Samples can only be registered once to a single donor and specimen."
    ),
    "ID_NOT_REGISTERED": lambda d: (
        f"{d['info'].get('value')} has not yet been registered. Please register samples before "
        "submitting clinical data for this identifier."
    ),
    "CONFLICTING_TIME_INTERVAL": lambda d: (
        "survival_time cannot be less than Specimen specimen_acquisition_interval."
    ),
    "RELATED_ENTITY_MISSING_OR_CONFLICTING": _related_entity,
    "NOT_ENOUGH_INFO_TO_VALIDATE": lambda d: (
        f"[{d.get('fieldName')}] requires [{'], ['.join(d['info'].get('missingField', []))}] in "
        "order to complete validation.  Please upload data for all fields in this clinical data "
        "submission."
    ),
    "FOUND_IDENTICAL_IDS": _found_identical_ids,
    "CLINICAL_ENTITY_BELONGS_TO_OTHER_DONOR": lambda d: (
        f"This {str(d['info'].get('clinicalType', '')).replace('_', ' ')} has already been "
        f"associated to donor {d['info'].get('otherDonorSubmitterId')}. Please correct your file."
    ),
    "MISSING_THERAPY_DATA": lambda d: (
        f"Treatments of type [{_list(d['info'].get('value'))}] need a corresponding "
        f"[{d['info'].get('therapyType')}] record."
    ),
    "INCOMPATIBLE_PARENT_TREATMENT_TYPE": lambda d: (
        f"[{str(d['info'].get('therapyType', '')).replace('_', ' ').title()}] records can not "
        f"be submitted for treatment types of [{_list(d['info'].get('treatment_type'))}]."
    ),
    "TREATMENT_ID_NOT_FOUND": lambda d: (
        "Treatment and treatment_type files are required to be initialized together. Please "
        "upload a corresponding treatment file in this submission."
    ),
    "MISSING_VARIABLE_REQUIREMENT": _variable_requirement("must be provided"),
    "FORBIDDEN_PROVIDED_VARIABLE_REQUIREMENT": _variable_requirement("should not be provided"),
    "DELETING_THERAPY": lambda d: (
        "The previous treatment_type value of this treatment was "
        f"[{_list(d['info'].get('oldValue'))}]. Changing it will delete the therapy records "
        f"that no longer match: [{_list(d['info'].get('deletedTherapies'))}]."
    ),
    "TNM_STAGING_FIELDS_MISSING": lambda d: (
        "Tumour specimens "
        f"[{_list(d['info'].get('specimenSubmitterIds'))}] of primary diagnosis "
        f"{d['info'].get('submitter_primary_diagnosis_id')} have no "
        "pathological_tumour_staging_system, so clinical_tumour_staging_system must be "
        "provided."
    ),
    "DUPLICATE_SUBMITTER_SPECIMEN_ID_IN_SURGERY": lambda d: (
        "A specimen can only be linked to one surgery, and all surgeries of a treatment must "
        f"share one surgery_type. This row conflicts with treatment "
        f"{d['info'].get('conflictingTreatmentId')}."
    ),
    "INVALID_LOST_TO_FOLLOW_UP_ID": lambda d: (
        f"The identifier {d['info'].get('lost_to_followup_after_clinical_event_id')} does not "
        "match any primary diagnosis, treatment or follow up submitted for this donor."
    ),
    "INVALID_SUBMISSION_AFTER_LOST_TO_FOLLOW_UP": lambda d: (
        f"Treatment {d['info'].get('submitter_treatment_id')} ends after the donor was lost to "
        f"follow up at interval {d['info'].get('interval_of_followup')}."
    ),
}


def validation_error_message(error_type: str, error_data: Dict[str, Any] = None) -> str:
    """
    Render the message for a validation error.

    Args:
        error_type: Error tag.
        error_data: Dict with ``fieldName``, ``index`` and ``info``.

    Returns:
        The message; the error type itself when no template exists.
    """
    render = ERROR_MESSAGES.get(error_type)
    if render is None:
        return error_type
    return render(error_data or {"info": {}})
