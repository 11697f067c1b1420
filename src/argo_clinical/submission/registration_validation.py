"""Registration validation: donor/specimen/sample identity checks.

Every row is checked against the registered population of the program and
against the other rows of the batch. All rows are checked; no row's errors
stop another row from being validated. Conflicts inside the batch list every
other row involved, so if row A names row B, row B names row A.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..clinical.entities import Donor, Sample, Specimen
from ..config.constants import (
    GENDER,
    PROGRAM_ID,
    SAMPLE_TYPE,
    SPECIMEN_TISSUE_SOURCE,
    SPECIMEN_TYPE,
    SUBMITTER_DONOR_ID,
    SUBMITTER_SAMPLE_ID,
    SUBMITTER_SPECIMEN_ID,
    TUMOUR_NORMAL_DESIGNATION,
)
from ..config.logging_config import get_logger
from .entities import (
    CreateRegistrationRecord,
    DataValidationErrors,
    RegistrationStats,
    SubmissionValidationError,
    ValidationResult,
)
from .error_messages import validation_error_message

logger = get_logger("submission.registration_validation")

# Registration column -> attribute of CreateRegistrationRecord
FIELD_TO_ATTRIBUTE: Dict[str, str] = {
    PROGRAM_ID: "program_id",
    SUBMITTER_DONOR_ID: "donor_submitter_id",
    GENDER: "gender",
    SUBMITTER_SPECIMEN_ID: "specimen_submitter_id",
    SPECIMEN_TISSUE_SOURCE: "specimen_tissue_source",
    TUMOUR_NORMAL_DESIGNATION: "tumour_normal_designation",
    SPECIMEN_TYPE: "specimen_type",
    SUBMITTER_SAMPLE_ID: "sample_submitter_id",
    SAMPLE_TYPE: "sample_type",
}

SPECIMEN_ATTRIBUTE_FIELDS = [SPECIMEN_TISSUE_SOURCE, TUMOUR_NORMAL_DESIGNATION, SPECIMEN_TYPE]

IdToIndexMap = Dict[str, List[int]]


@dataclass
class RegisteredPopulation:
    """Lookup indexes over the donors already registered in a program."""

    donors_by_submitter_id: Dict[str, Donor] = field(default_factory=dict)
    donors_by_specimen_id: Dict[str, Donor] = field(default_factory=dict)
    donors_by_sample_id: Dict[str, Donor] = field(default_factory=dict)

    @classmethod
    def from_donors(cls, donors: List[Donor]) -> "RegisteredPopulation":
        population = cls()
        for donor in donors:
            population.donors_by_submitter_id[donor.submitter_id] = donor
            for specimen in donor.specimens:
                population.donors_by_specimen_id[specimen.submitter_id] = donor
                for sample in specimen.samples:
                    population.donors_by_sample_id[sample.submitter_id] = donor
        return population

    def find_specimen(self, specimen_id: str) -> Optional[Specimen]:
        donor = self.donors_by_specimen_id.get(specimen_id)
        return donor.get_specimen(specimen_id) if donor else None

    def find_sample(self, sample_id: str) -> Optional[tuple]:
        """Return (specimen, sample) for a registered sample id."""
        donor = self.donors_by_sample_id.get(sample_id)
        if donor is None:
            return None
        for specimen in donor.specimens:
            for sample in specimen.samples:
                if sample.submitter_id == sample_id:
                    return specimen, sample
        return None


def _value_of(record: CreateRegistrationRecord, field_name: str) -> Any:
    return getattr(record, FIELD_TO_ATTRIBUTE[field_name])


def build_registration_error(
    record: CreateRegistrationRecord,
    error_type: DataValidationErrors,
    field_name: str,
    index: int,
    info: Optional[Dict[str, Any]] = None,
) -> SubmissionValidationError:
    """Build a registration error; info always names the row's identifiers."""
    error_info = {
        **(info or {}),
        "donorSubmitterId": record.donor_submitter_id,
        "specimenSubmitterId": record.specimen_submitter_id,
        "sampleSubmitterId": record.sample_submitter_id,
        "value": _value_of(record, field_name),
    }
    error_data = {"fieldName": field_name, "index": index, "info": error_info}
    return SubmissionValidationError(
        type=error_type.value,
        field_name=field_name,
        index=index,
        info=error_info,
        message=validation_error_message(error_type.value, error_data),
    )


# =============================================================================
# Row vs registered data
# =============================================================================


def using_invalid_program_id(
    index: int, record: CreateRegistrationRecord, expected_program: str
) -> List[SubmissionValidationError]:
    if record.program_id and record.program_id != expected_program:
        return [
            build_registration_error(
                record,
                DataValidationErrors.INVALID_PROGRAM_ID,
                PROGRAM_ID,
                index,
                {"expectedProgram": expected_program},
            )
        ]
    return []


def _mutation_error(
    record: CreateRegistrationRecord, field_name: str, index: int, original: Any
) -> SubmissionValidationError:
    return build_registration_error(
        record,
        DataValidationErrors.MUTATING_EXISTING_DATA,
        field_name,
        index,
        {"originalValue": original},
    )


def mutating_existing_data(
    index: int, record: CreateRegistrationRecord, population: RegisteredPopulation
) -> List[SubmissionValidationError]:
    """Detect attempts to change already-registered donor/specimen/sample attributes."""
    errors: List[SubmissionValidationError] = []
    existing_donor = population.donors_by_submitter_id.get(record.donor_submitter_id)
    existing_specimen: Optional[Specimen] = None

    if existing_donor is not None:
        if existing_donor.gender != record.gender:
            errors.append(_mutation_error(record, GENDER, index, existing_donor.gender))
        existing_specimen = existing_donor.get_specimen(record.specimen_submitter_id)

    # mutations are reported even when the specimen belongs to another donor
    if existing_specimen is None:
        existing_specimen = population.find_specimen(record.specimen_submitter_id)

    if existing_specimen is not None:
        for field_name in SPECIMEN_ATTRIBUTE_FIELDS:
            original = getattr(existing_specimen, FIELD_TO_ATTRIBUTE[field_name])
            if original != _value_of(record, field_name):
                errors.append(_mutation_error(record, field_name, index, original))

    found = population.find_sample(record.sample_submitter_id)
    if found is not None:
        sample: Sample = found[1]
        if sample.sample_type != record.sample_type:
            errors.append(_mutation_error(record, SAMPLE_TYPE, index, sample.sample_type))

    return errors


def specimen_belongs_to_other_donor(
    index: int, record: CreateRegistrationRecord, population: RegisteredPopulation
) -> List[SubmissionValidationError]:
    owner = population.donors_by_specimen_id.get(record.specimen_submitter_id)
    if owner is None or owner.submitter_id == record.donor_submitter_id:
        return []
    return [
        build_registration_error(
            record,
            DataValidationErrors.SPECIMEN_BELONGS_TO_OTHER_DONOR,
            SUBMITTER_SPECIMEN_ID,
            index,
            {"otherDonorSubmitterId": owner.submitter_id},
        )
    ]


def sample_belongs_to_another_specimen(
    index: int, record: CreateRegistrationRecord, population: RegisteredPopulation
) -> List[SubmissionValidationError]:
    found = population.find_sample(record.sample_submitter_id)
    if found is None:
        return []
    specimen = found[0]
    if specimen.submitter_id == record.specimen_submitter_id:
        return []
    return [
        build_registration_error(
            record,
            DataValidationErrors.SAMPLE_BELONGS_TO_OTHER_SPECIMEN,
            SUBMITTER_SAMPLE_ID,
            index,
            {"otherSpecimenSubmitterId": specimen.submitter_id},
        )
    ]


# =============================================================================
# Row vs other rows in the batch
# =============================================================================


def conflicting_new_donor(
    index: int,
    record: CreateRegistrationRecord,
    records: List[CreateRegistrationRecord],
    donor_rows: IdToIndexMap,
) -> List[SubmissionValidationError]:
    conflicting = [
        row
        for row in donor_rows[record.donor_submitter_id]
        if row != index and records[row].gender != record.gender
    ]
    if not conflicting:
        return []
    return [
        build_registration_error(
            record,
            DataValidationErrors.NEW_DONOR_CONFLICT,
            GENDER,
            index,
            {"conflictingRows": conflicting},
        )
    ]


def conflicting_new_specimen(
    index: int,
    record: CreateRegistrationRecord,
    records: List[CreateRegistrationRecord],
    specimen_rows: IdToIndexMap,
) -> List[SubmissionValidationError]:
    errors: List[SubmissionValidationError] = []
    other_donor_rows: List[int] = []
    attribute_conflicts: Dict[str, List[int]] = {f: [] for f in SPECIMEN_ATTRIBUTE_FIELDS}

    for row in specimen_rows[record.specimen_submitter_id]:
        if row == index:
            continue
        other = records[row]
        if other.donor_submitter_id == record.donor_submitter_id:
            for field_name in SPECIMEN_ATTRIBUTE_FIELDS:
                if _value_of(other, field_name) != _value_of(record, field_name):
                    attribute_conflicts[field_name].append(row)
        else:
            other_donor_rows.append(row)

    if other_donor_rows:
        errors.append(
            build_registration_error(
                record,
                DataValidationErrors.NEW_SPECIMEN_ID_CONFLICT,
                SUBMITTER_SPECIMEN_ID,
                index,
                {"conflictingRows": other_donor_rows},
            )
        )
    for field_name, rows in attribute_conflicts.items():
        if rows:
            errors.append(
                build_registration_error(
                    record,
                    DataValidationErrors.NEW_SPECIMEN_ATTR_CONFLICT,
                    field_name,
                    index,
                    {"conflictingRows": rows},
                )
            )
    return errors


def conflicting_new_sample(
    index: int,
    record: CreateRegistrationRecord,
    records: List[CreateRegistrationRecord],
    sample_rows: IdToIndexMap,
) -> List[SubmissionValidationError]:
    errors: List[SubmissionValidationError] = []
    id_conflicts: List[int] = []
    type_conflicts: List[int] = []

    for row in sample_rows[record.sample_submitter_id]:
        if row == index:
            continue
        other = records[row]
        same_parents = (
            other.donor_submitter_id == record.donor_submitter_id
            and other.specimen_submitter_id == record.specimen_submitter_id
        )
        if same_parents and other.sample_type != record.sample_type:
            type_conflicts.append(row)
        else:
            # exact duplicate row, or the same sample under another donor/specimen
            id_conflicts.append(row)

    if id_conflicts:
        errors.append(
            build_registration_error(
                record,
                DataValidationErrors.NEW_SAMPLE_ID_CONFLICT,
                SUBMITTER_SAMPLE_ID,
                index,
                {"conflictingRows": id_conflicts},
            )
        )
    if type_conflicts:
        errors.append(
            build_registration_error(
                record,
                DataValidationErrors.NEW_SAMPLE_ATTR_CONFLICT,
                SAMPLE_TYPE,
                index,
                {"conflictingRows": type_conflicts},
            )
        )
    return errors


def _index_rows(records: List[CreateRegistrationRecord], attribute: str) -> IdToIndexMap:
    rows: IdToIndexMap = {}
    for index, record in enumerate(records):
        rows.setdefault(getattr(record, attribute), []).append(index)
    return rows


def validate_registration_data(
    program_id: str,
    records: List[CreateRegistrationRecord],
    existing_donors: List[Donor],
) -> ValidationResult:
    """
    Validate a registration batch against the program's registered donors.

    Args:
        program_id: Program the batch is submitted to.
        records: Schema-clean registration rows.
        existing_donors: All donors registered in the program.

    Returns:
        ValidationResult holding every error found across all rows.
    """
    population = RegisteredPopulation.from_donors(existing_donors)
    donor_rows = _index_rows(records, "donor_submitter_id")
    specimen_rows = _index_rows(records, "specimen_submitter_id")
    sample_rows = _index_rows(records, "sample_submitter_id")

    errors: List[SubmissionValidationError] = []
    for index, record in enumerate(records):
        errors.extend(using_invalid_program_id(index, record, program_id))

        # row vs registered data
        errors.extend(mutating_existing_data(index, record, population))
        errors.extend(specimen_belongs_to_other_donor(index, record, population))
        errors.extend(sample_belongs_to_another_specimen(index, record, population))

        # row vs other rows of the batch
        if record.donor_submitter_id not in population.donors_by_submitter_id:
            errors.extend(conflicting_new_donor(index, record, records, donor_rows))
        if record.specimen_submitter_id not in population.donors_by_specimen_id:
            errors.extend(conflicting_new_specimen(index, record, records, specimen_rows))
        if record.sample_submitter_id not in population.donors_by_sample_id:
            errors.extend(conflicting_new_sample(index, record, records, sample_rows))

    if errors:
        logger.info(f"Registration for {program_id}: {len(errors)} errors in {len(records)} rows")
    return ValidationResult(errors=errors)


def _add_row(stat: Dict[str, List[int]], submitter_id: str, index: int) -> None:
    stat.setdefault(submitter_id, []).append(index)


def calculate_registration_stats(
    records: List[CreateRegistrationRecord], existing_donors: List[Donor]
) -> RegistrationStats:
    """Classify rows as new donor/specimen/sample or already registered."""
    donors = {d.submitter_id: d for d in existing_donors}
    stats = RegistrationStats()

    for index, record in enumerate(records):
        donor = donors.get(record.donor_submitter_id)
        if donor is None:
            _add_row(stats.new_donor_ids, record.donor_submitter_id, index)
            _add_row(stats.new_specimen_ids, record.specimen_submitter_id, index)
            _add_row(stats.new_sample_ids, record.sample_submitter_id, index)
            continue

        specimen = donor.get_specimen(record.specimen_submitter_id)
        if specimen is None:
            _add_row(stats.new_specimen_ids, record.specimen_submitter_id, index)
            _add_row(stats.new_sample_ids, record.sample_submitter_id, index)
            continue

        if any(s.submitter_id == record.sample_submitter_id for s in specimen.samples):
            _add_row(stats.already_registered, record.sample_submitter_id, index)
        else:
            _add_row(stats.new_sample_ids, record.sample_submitter_id, index)

    return stats