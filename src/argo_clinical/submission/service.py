"""Submission service: registration and clinical submission workflows.

Staged data lives in the active registration/submission tables until it is
committed into donor documents. Every write to an active submission goes
through its version token, so a concurrent writer gets StateConflictError
instead of silently overwriting.
"""

import copy
from datetime import datetime
from typing import Any, Dict, List, Optional

import duckdb

from ..clinical.entities import Donor, Sample, SchemaMetadata, Specimen
from ..clinical.stats import recalc_donor_stats, update_donor_stats_from_registration_commit
from ..config.constants import REGISTRATION, SUBMITTER_DONOR_ID
from ..config.logging_config import get_logger
from ..database.repositories import (
    ConfigRepository,
    DonorRepository,
    ProgramExceptionRepository,
    RegistrationRepository,
    SubmissionRepository,
)
from ..dictionary.entities import SchemasDictionary
from ..dictionary.manager import DictionaryManager
from ..dictionary.processor import process, stringify_record
from ..errors import InvalidArgumentError, NotFoundError, StateConflictError
from ..migration.revalidation import is_donor_valid_against
from .clinical_validation import (
    from_schema_error,
    validate_batch,
    validate_submission_data,
)
from .entities import (
    ActiveClinicalSubmission,
    ActiveRegistration,
    CreateRegistrationRecord,
    CreateRegistrationResult,
    CreateSubmissionResult,
    ModificationType,
    SavedClinicalEntity,
    SubmissionState,
    SubmissionValidationError,
    ValidateSubmissionResult,
)
from .merge import (
    group_records_by_donor,
    merge_active_submission_with_donors,
    to_clinical_info,
)
from .program_exceptions import ProgramException, check_program_exceptions
from .registration_validation import (
    calculate_registration_stats,
    using_invalid_program_id,
    validate_registration_data,
)

logger = get_logger("submission.service")

ALL_ENTITIES = "all"


def _clear_stats(entities: Dict[str, SavedClinicalEntity]) -> Dict[str, SavedClinicalEntity]:
    """Copy staged entities dropping their previous validation output."""
    cleared = {}
    for entity_type, entity in entities.items():
        fresh = copy.deepcopy(entity)
        fresh.data_errors = []
        fresh.data_warnings = []
        fresh.data_updates = []
        fresh.stats = {m.value: [] for m in ModificationType}
        cleared[entity_type] = fresh
    return cleared


def _new_donor(program_id: str, record: CreateRegistrationRecord, schema_version: str) -> Donor:
    return Donor(
        submitter_id=record.donor_submitter_id,
        program_id=program_id,
        gender=record.gender,
        schema_metadata=SchemaMetadata(
            last_valid_schema_version=schema_version,
            original_schema_version=schema_version,
            is_valid=True,
        ),
    )


def _new_specimen(record: CreateRegistrationRecord) -> Specimen:
    return Specimen(
        submitter_id=record.specimen_submitter_id,
        specimen_tissue_source=record.specimen_tissue_source,
        tumour_normal_designation=record.tumour_normal_designation,
        specimen_type=record.specimen_type,
    )


def add_registration_records_to_donor(
    donor: Donor, records: List[CreateRegistrationRecord]
) -> Donor:
    """Return a copy of ``donor`` extended with the registered specimens and samples."""
    updated = copy.deepcopy(donor)
    for record in records:
        specimen = updated.get_specimen(record.specimen_submitter_id)
        if specimen is None:
            specimen = _new_specimen(record)
            updated.specimens.append(specimen)
        if not any(s.submitter_id == record.sample_submitter_id for s in specimen.samples):
            specimen.samples.append(
                Sample(submitter_id=record.sample_submitter_id, sample_type=record.sample_type)
            )
    return updated


class SubmissionService:
    """Registration and clinical submission operations for all programs."""

    def __init__(self, conn: duckdb.DuckDBPyConnection, dictionary_manager: DictionaryManager):
        """
        Initialize the service.

        Args:
            conn: Open DuckDB connection holding the clinical store.
            dictionary_manager: Handle to the current dictionary.
        """
        self.dictionary_manager = dictionary_manager
        self.donors = DonorRepository(conn)
        self.submissions = SubmissionRepository(conn)
        self.registrations = RegistrationRepository(conn)
        self.program_exceptions = ProgramExceptionRepository(conn)
        self.settings = ConfigRepository(conn)

    def _ensure_submissions_enabled(self) -> None:
        if self.settings.is_submission_disabled():
            raise StateConflictError(
                "Submissions are disabled while a dictionary migration is running"
            )

    # =========================================================================
    # Registration
    # =========================================================================

    def create_registration(
        self,
        program_id: str,
        creator: str,
        batch_name: str,
        records: List[Dict[str, Any]],
    ) -> CreateRegistrationResult:
        """
        Validate a sample registration file and stage it for the program.

        Schema errors stop before the cross-record checks run. A staged
        registration replaces any earlier one for the program.

        Args:
            program_id: Program the file is submitted to.
            creator: User submitting the file.
            batch_name: File name.
            records: Raw rows (field name -> raw string).

        Returns:
            CreateRegistrationResult; ``registration`` is set only on success.

        Raises:
            StateConflictError: If another writer staged a registration for the
                program while this one was being validated.
        """
        self._ensure_submissions_enabled()
        dictionary = self.dictionary_manager.get_current()
        previous = self.registrations.find_by_program_id(program_id)

        errors: List[SubmissionValidationError] = []
        registration_records: List[CreateRegistrationRecord] = []
        for index, raw in enumerate(records):
            result = process(dictionary, REGISTRATION, raw, index)
            errors.extend(from_schema_error(e, raw) for e in result.validation_errors)
            record = CreateRegistrationRecord.from_record(result.processed_record)
            errors.extend(using_invalid_program_id(index, record, program_id))
            registration_records.append(record)

        if errors:
            logger.info(f"Found {len(errors)} schema errors in registration for {program_id}")
            return CreateRegistrationResult(registration=None, successful=False, errors=errors)

        existing = self.donors.find_by_program(program_id)
        validation = validate_registration_data(program_id, registration_records, existing)
        if validation.errors:
            return CreateRegistrationResult(
                registration=None, successful=False, errors=validation.errors
            )

        registration = ActiveRegistration(
            program_id=program_id,
            creator=creator,
            batch_name=batch_name,
            schema_version=dictionary.version,
            records=registration_records,
            stats=calculate_registration_stats(registration_records, existing),
        )
        if previous is None:
            saved = self.registrations.create(registration)
        else:
            saved = self.registrations.replace_with_version(
                program_id, previous.version, registration
            )
        logger.info(f"Staged registration {saved.id} for {program_id} ({len(records)} rows)")
        return CreateRegistrationResult(registration=saved, successful=True)

    def find_registration(self, program_id: str) -> Optional[ActiveRegistration]:
        return self.registrations.find_by_program_id(program_id)

    def delete_registration(self, registration_id: str, program_id: str) -> None:
        registration = self.registrations.find_by_id(registration_id)
        if registration is None or registration.program_id != program_id:
            raise NotFoundError(f"No registration with id {registration_id} found")
        self.registrations.delete(registration_id)

    def commit_registration(self, registration_id: str, program_id: str) -> List[str]:
        """
        Create or extend donors from a staged registration.

        Returns:
            Submitter ids of the newly registered samples.

        Raises:
            NotFoundError: If the registration does not exist for the program.
            StateConflictError: If submissions are disabled.
        """
        self._ensure_submissions_enabled()
        registration = self.registrations.find_by_id(registration_id)
        if registration is None or registration.program_id != program_id:
            raise NotFoundError(f"No registration with id {registration_id} found")

        records_by_donor: Dict[str, List[CreateRegistrationRecord]] = {}
        for record in registration.records:
            records_by_donor.setdefault(record.donor_submitter_id, []).append(record)

        existing = self.donors.find_by_program_and_submitter_ids(
            program_id, list(records_by_donor.keys())
        )
        to_save: List[Donor] = []
        for donor_id, records in records_by_donor.items():
            donor = existing.get(donor_id)
            if donor is None:
                donor = _new_donor(program_id, records[0], registration.schema_version)
                to_save.append(add_registration_records_to_donor(donor, records))
                continue
            merged = add_registration_records_to_donor(donor, records)
            to_save.append(update_donor_stats_from_registration_commit(merged))

        self.donors.save_many(to_save)
        self.registrations.delete(registration_id)
        logger.info(f"Committed registration {registration_id}: {len(to_save)} donors saved")
        return list(registration.stats.new_sample_ids.keys())

    # =========================================================================
    # Program exceptions
    # =========================================================================

    def set_program_exceptions(
        self, program_id: str, exceptions: List[Dict[str, Any]]
    ) -> List[ProgramException]:
        """
        Replace the core field exceptions granted to a program.

        Args:
            program_id: Program the exceptions apply to.
            exceptions: Rows with ``schema``, ``core_field`` and ``exception_value``.

        Raises:
            InvalidArgumentError: If a row names an unknown schema or an exception
                value outside the allowed set.
        """
        dictionary = self.dictionary_manager.get_current()
        parsed = [
            ProgramException(
                program_id=program_id,
                schema=row.get("schema", ""),
                core_field=row.get("core_field", ""),
                exception_value=row.get("exception_value", ""),
            )
            for row in exceptions
        ]
        check_program_exceptions(parsed)
        for exception in parsed:
            if dictionary.get_schema(exception.schema) is None:
                raise InvalidArgumentError(
                    f"Schema {exception.schema} is not in dictionary version "
                    f"{dictionary.version}"
                )
        self.program_exceptions.replace(program_id, parsed)
        return parsed

    def get_program_exceptions(self, program_id: str) -> List[ProgramException]:
        return self.program_exceptions.find(program_id)

    def delete_program_exceptions(self, program_id: str) -> None:
        if not self.program_exceptions.delete(program_id):
            raise NotFoundError(f"Program {program_id} has no exceptions")

    # =========================================================================
    # Clinical submission
    # =========================================================================

    def find_submission(self, program_id: str) -> Optional[ActiveClinicalSubmission]:
        return self.submissions.find_by_program_id(program_id)

    def find_active_submissions(self) -> List[ActiveClinicalSubmission]:
        return self.submissions.find_all()

    def _get_with_version(self, program_id: str, version: str) -> ActiveClinicalSubmission:
        submission = self.submissions.find_by_program_id(program_id)
        if submission is None or submission.version != version:
            raise NotFoundError(
                f"No active submission found with programId: {program_id} & version: {version}"
            )
        return submission

    def _save_or_delete_empty(
        self, program_id: str, version: str, submission: ActiveClinicalSubmission
    ) -> Optional[ActiveClinicalSubmission]:
        """An active submission without staged entities is removed rather than kept."""
        if not submission.clinical_entities:
            self.submissions.delete(program_id, version)
            return None
        return self.submissions.update_with_version(program_id, version, submission)

    def upload_clinical_batches(
        self,
        program_id: str,
        updater: str,
        batches: Dict[str, Dict[str, Any]],
    ) -> CreateSubmissionResult:
        """
        Schema-validate clinical files and stage the clean ones.

        Args:
            program_id: Program the files belong to.
            updater: User uploading.
            batches: ``entity type -> {"records", "batch_name", "creator"}``.

        Returns:
            CreateSubmissionResult. Entity types with schema errors are not
            staged and any previously staged rows of that type are dropped.
        """
        self._ensure_submissions_enabled()
        dictionary = self.dictionary_manager.get_current()

        submission = self.submissions.find_by_program_id(program_id)
        if submission is None:
            submission = self.submissions.create(
                ActiveClinicalSubmission(
                    program_id=program_id, state=SubmissionState.OPEN, updated_by=updater
                )
            )

        batch_errors: List[Dict[str, Any]] = []
        schema_errors: Dict[str, List[SubmissionValidationError]] = {}
        entities = _clear_stats(submission.clinical_entities)
        created_at = datetime.now().isoformat()
        exceptions = self.program_exceptions.find(program_id)

        for entity_type, batch in batches.items():
            if entity_type == REGISTRATION or dictionary.get_schema(entity_type) is None:
                batch_errors.append(
                    {
                        "type": "INVALID_FILE_NAME",
                        "batchNames": [batch.get("batch_name", "")],
                        "message": f"{entity_type} is not a clinical file type",
                    }
                )
                continue

            result = validate_batch(
                entity_type, batch.get("records", []), program_id, dictionary, exceptions
            )
            if result.errors:
                schema_errors[entity_type] = result.errors
                entities.pop(entity_type, None)
                continue

            entities[entity_type] = SavedClinicalEntity(
                batch_name=batch.get("batch_name", ""),
                creator=batch.get("creator", updater),
                records=result.processed_records,
                created_at=created_at,
            )

        updated = ActiveClinicalSubmission(
            id=submission.id,
            version=submission.version,
            program_id=program_id,
            state=SubmissionState.OPEN,
            updated_by=updater,
            clinical_entities=entities,
        )
        saved = self._save_or_delete_empty(program_id, submission.version, updated)
        return CreateSubmissionResult(
            submission=saved,
            successful=not schema_errors and not batch_errors,
            schema_errors=schema_errors,
            batch_errors=batch_errors,
        )

    def clear_submission(
        self, program_id: str, version: str, updater: str, entity_type: str = ALL_ENTITIES
    ) -> Optional[ActiveClinicalSubmission]:
        """Drop one staged entity type (or all of them) from the active submission."""
        submission = self.submissions.find_by_program_id(program_id)
        if submission is None:
            raise NotFoundError(f"No active submission data found for program {program_id}")
        if submission.version != version:
            raise InvalidArgumentError(
                "Version provided does not match the latest submission version for this program"
            )
        if submission.state == SubmissionState.PENDING_APPROVAL:
            raise StateConflictError(
                "Active submission is in PENDING_APPROVAL state and cannot be modified"
            )

        remaining = {}
        if entity_type != ALL_ENTITIES:
            cleared = _clear_stats(submission.clinical_entities)
            remaining = {k: v for k, v in cleared.items() if k != entity_type}
        submission.clinical_entities = remaining
        submission.state = SubmissionState.OPEN
        submission.updated_by = updater
        return self._save_or_delete_empty(program_id, version, submission)

    def validate_active_submission(
        self, program_id: str, version: str, updater: str
    ) -> ValidateSubmissionResult:
        """
        Run the cross-record validation over every staged entity.

        The submission becomes VALID or INVALID. Submissions that are not OPEN
        are returned unchanged.

        Raises:
            NotFoundError: If no submission exists at ``version``.
        """
        submission = self._get_with_version(program_id, version)
        if submission.state != SubmissionState.OPEN or not submission.clinical_entities:
            return ValidateSubmissionResult(submission=submission, successful=True)

        staged = {k: v.records for k, v in submission.clinical_entities.items()}
        records_by_donor = group_records_by_donor(staged)
        existing = self.donors.find_by_program_and_submitter_ids(
            program_id, [d for d in records_by_donor if d]
        )
        results = validate_submission_data(records_by_donor, existing, self.donors)

        invalid = False
        entities = copy.deepcopy(submission.clinical_entities)
        for entity_type, result in results.items():
            entity = entities[entity_type]
            entity.stats = result.stats
            entity.data_errors = result.data_errors
            entity.data_updates = result.data_updates
            entity.data_warnings = result.data_warnings
            invalid = invalid or result.has_errors

        submission.clinical_entities = entities
        submission.state = SubmissionState.INVALID if invalid else SubmissionState.VALID
        submission.updated_by = updater
        updated = self.submissions.update_with_version(program_id, version, submission)
        logger.info(f"Validated submission for {program_id}: {updated.state.value}")
        return ValidateSubmissionResult(submission=updated, successful=not invalid)

    def reopen_submission(
        self, program_id: str, version: str, updater: str
    ) -> ActiveClinicalSubmission:
        submission = self._get_with_version(program_id, version)
        if submission.state != SubmissionState.PENDING_APPROVAL:
            raise StateConflictError(
                "Active submission does not have state PENDING_APPROVAL and cannot be reopened"
            )
        submission.clinical_entities = _clear_stats(submission.clinical_entities)
        submission.state = SubmissionState.OPEN
        submission.updated_by = updater
        return self.submissions.update_with_version(program_id, version, submission)

    def revalidate_submission(
        self, program_id: str, schema: SchemasDictionary, dry_run: bool = False
    ) -> CreateSubmissionResult:
        """
        Re-run schema processing of the staged rows against ``schema``.

        A submission with any failing entity becomes INVALID_BY_MIGRATION and
        keeps the errors on that entity. Dry runs return the result unsaved.

        Raises:
            NotFoundError: If the program has no active submission.
        """
        submission = self.submissions.find_by_program_id(program_id)
        if submission is None:
            raise NotFoundError(f"No active submission to revalidate for {program_id}")

        entities = copy.deepcopy(submission.clinical_entities)
        exceptions = self.program_exceptions.find(program_id)
        schema_errors: Dict[str, List[SubmissionValidationError]] = {}
        for entity_type, entity in entities.items():
            records = [stringify_record(to_clinical_info(r)) for r in entity.records]
            result = validate_batch(entity_type, records, program_id, schema, exceptions)
            if result.errors:
                schema_errors[entity_type] = result.errors
                entity.schema_errors = result.errors

        revalidated = copy.deepcopy(submission)
        revalidated.clinical_entities = entities
        if schema_errors:
            revalidated.state = SubmissionState.INVALID_BY_MIGRATION

        successful = not schema_errors
        if dry_run:
            return CreateSubmissionResult(
                submission=revalidated, successful=successful, schema_errors=schema_errors
            )

        updated = self.submissions.update_with_version(
            program_id, submission.version, revalidated
        )
        return CreateSubmissionResult(
            submission=updated, successful=successful, schema_errors=schema_errors
        )

    def commit_submission(
        self, program_id: str, version: str, updater: str
    ) -> Optional[ActiveClinicalSubmission]:
        """
        Commit a VALID submission into the donor documents.

        A submission holding UPDATED rows is moved to PENDING_APPROVAL instead
        and returned; otherwise it is merged, saved and removed (returns None).

        Raises:
            NotFoundError: If there is no active submission.
            InvalidArgumentError: If ``version`` is stale.
            StateConflictError: If submissions are disabled or the submission is not VALID.
        """
        self._ensure_submissions_enabled()
        submission = self.submissions.find_by_program_id(program_id)
        if submission is None:
            raise NotFoundError(f"No active submission data found for program {program_id}")
        if submission.version != version:
            raise InvalidArgumentError(
                "Version provided does not match the latest submission version for this program"
            )
        if submission.state != SubmissionState.VALID:
            raise StateConflictError(
                "Active submission does not have state VALID and cannot be committed"
            )

        if self._has_updates(submission):
            submission.state = SubmissionState.PENDING_APPROVAL
            submission.updated_by = updater
            return self.submissions.update_with_version(program_id, version, submission)

        self._perform_commit(submission)
        return None

    def approve_submission(self, program_id: str, version: str) -> None:
        """Commit a submission that is waiting for approval."""
        self._ensure_submissions_enabled()
        submission = self._get_with_version(program_id, version)
        if submission.state != SubmissionState.PENDING_APPROVAL:
            raise StateConflictError(
                "Active submission does not have state PENDING_APPROVAL and cannot be approved"
            )
        self._perform_commit(submission)

    @staticmethod
    def _has_updates(submission: ActiveClinicalSubmission) -> bool:
        return any(
            entity.stats.get(ModificationType.UPDATED.value)
            for entity in submission.clinical_entities.values()
        )

    def _perform_commit(self, submission: ActiveClinicalSubmission) -> None:
        donor_ids = {
            record.get(SUBMITTER_DONOR_ID)
            for entity in submission.clinical_entities.values()
            for record in entity.records
        }
        donors = self.donors.find_by_program_and_submitter_ids(
            submission.program_id, [d for d in donor_ids if d]
        )
        if not donors:
            raise StateConflictError(
                "Donors for this submission cannot be found in the clinical database"
            )

        updated = merge_active_submission_with_donors(submission, list(donors.values()))

        dictionary = self.dictionary_manager.get_current()
        for donor in updated:
            # a committed fix can bring an invalid donor back in line
            if not donor.schema_metadata.is_valid and is_donor_valid_against(donor, dictionary):
                logger.info(f"Donor {donor.submitter_id} is now valid")
                donor.schema_metadata.is_valid = True
                donor.schema_metadata.last_valid_schema_version = dictionary.version

        self.donors.save_many(updated)
        self.submissions.delete(submission.program_id, submission.version)
        logger.info(
            f"Committed submission for {submission.program_id}: {len(updated)} donors updated"
        )

    # =========================================================================
    # Donor stats
    # =========================================================================

    def recalc_donor_stats(
        self, program_id: str, submitter_id: str, override: Optional[Dict[str, float]] = None
    ) -> Donor:
        """
        Recalculate (or administratively override) a donor's completion stats.

        Raises:
            NotFoundError: If the donor does not exist.
            InvalidArgumentError: If the override map is invalid.
        """
        donor = self.donors.find_by_program_and_submitter_id(program_id, submitter_id)
        if donor is None:
            raise NotFoundError(f"Donor {submitter_id} not found in program {program_id}")
        return self.donors.update(recalc_donor_stats(donor, override))
