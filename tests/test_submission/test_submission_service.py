"""Tests for the registration and clinical submission workflows."""

import pytest

from argo_clinical.database.repositories import ConfigRepository, DonorRepository
from argo_clinical.errors import InvalidArgumentError, NotFoundError, StateConflictError
from argo_clinical.submission.entities import SubmissionState
from argo_clinical.submission.service import SubmissionService

PROGRAM = "TEST-CA"


@pytest.fixture
def service(db, dictionary_manager):
    return SubmissionService(db, dictionary_manager)


@pytest.fixture
def registered(service, registration_row):
    """Register DO-1 with a normal and a tumour specimen."""
    rows = [
        registration_row("DO-1", "DO-1-SP-N", "DO-1-SA-N"),
        registration_row(
            "DO-1",
            "DO-1-SP-T",
            "DO-1-SA-T",
            tumour_normal_designation="Tumour",
            specimen_type="Primary tumour",
        ),
    ]
    result = service.create_registration(PROGRAM, "tester", "sample_registration.tsv", rows)
    service.commit_registration(result.registration.id, PROGRAM)
    return rows


def _donor_batch(*rows):
    return {"donor": {"records": list(rows), "batch_name": "donor.tsv", "creator": "tester"}}


def _donor_row(donor_id="DO-1", **fields):
    return {"program_id": PROGRAM, "submitter_donor_id": donor_id, **fields}


def _upload_and_validate(service, batches):
    uploaded = service.upload_clinical_batches(PROGRAM, "tester", batches)
    assert uploaded.successful
    return service.validate_active_submission(PROGRAM, uploaded.submission.version, "tester")


class TestRegistration:
    """Tests for staging and committing sample registrations."""

    def test_commit_creates_donor(self, service, db, registration_row):
        rows = [
            registration_row("DO-1", "DO-1-SP-N", "DO-1-SA-N"),
            registration_row("DO-1", "DO-1-SP-N", "DO-1-SA-N2"),
        ]

        result = service.create_registration(PROGRAM, "tester", "reg.tsv", rows)

        assert result.successful
        assert result.registration.stats.new_donor_ids == {"DO-1": [0, 1]}
        assert service.find_registration(PROGRAM).id == result.registration.id

        new_samples = service.commit_registration(result.registration.id, PROGRAM)

        assert new_samples == ["DO-1-SA-N", "DO-1-SA-N2"]
        donor = DonorRepository(db).find_by_program_and_submitter_id(PROGRAM, "DO-1")
        assert donor.gender == "Female"
        assert [s.submitter_id for s in donor.specimens[0].samples] == ["DO-1-SA-N", "DO-1-SA-N2"]
        assert donor.schema_metadata.original_schema_version == "1.0"
        assert service.find_registration(PROGRAM) is None

    def test_reregistration_is_idempotent(self, service, db, registered):
        result = service.create_registration(PROGRAM, "tester", "reg.tsv", registered)

        assert result.successful
        assert result.registration.stats.already_registered == {
            "DO-1-SA-N": [0],
            "DO-1-SA-T": [1],
        }
        assert service.commit_registration(result.registration.id, PROGRAM) == []
        donor = DonorRepository(db).find_by_program_and_submitter_id(PROGRAM, "DO-1")
        assert len(donor.specimens) == 2

    def test_schema_errors_are_not_staged(self, service, registration_row):
        row = registration_row()
        del row["gender"]

        result = service.create_registration(PROGRAM, "tester", "reg.tsv", [row])

        assert not result.successful
        assert result.registration is None
        assert [(e.type, e.field_name) for e in result.errors] == [
            ("MISSING_REQUIRED_FIELD", "gender")
        ]
        assert service.find_registration(PROGRAM) is None

    def test_mutating_registered_donor(self, service, registered, registration_row):
        row = registration_row("DO-1", "DO-1-SP-N", "DO-1-SA-N", gender="Male")

        result = service.create_registration(PROGRAM, "tester", "reg.tsv", [row])

        assert [e.type for e in result.errors] == ["MUTATING_EXISTING_DATA"]

    def test_commit_unknown_registration(self, service):
        with pytest.raises(NotFoundError):
            service.commit_registration("missing", PROGRAM)

    def test_delete_registration(self, service, registration_row):
        result = service.create_registration(PROGRAM, "tester", "reg.tsv", [registration_row()])

        with pytest.raises(NotFoundError):
            service.delete_registration(result.registration.id, "OTHER-CA")
        service.delete_registration(result.registration.id, PROGRAM)

        assert service.find_registration(PROGRAM) is None

    def test_restaging_replaces_registration(self, service, registration_row):
        first = service.create_registration(PROGRAM, "tester", "one.tsv", [registration_row()])

        second = service.create_registration(PROGRAM, "tester", "two.tsv", [registration_row()])

        assert second.successful
        staged = service.find_registration(PROGRAM)
        assert staged.id == second.registration.id != first.registration.id
        assert staged.batch_name == "two.tsv"

    def test_registration_staged_concurrently(self, service, registration_row, monkeypatch):
        """Test that a registration staged between read and write is not overwritten."""
        service.create_registration(PROGRAM, "tester", "one.tsv", [registration_row()])
        monkeypatch.setattr(service.registrations, "find_by_program_id", lambda program_id: None)

        with pytest.raises(StateConflictError):
            service.create_registration(PROGRAM, "tester", "two.tsv", [registration_row()])

        monkeypatch.undo()
        assert service.find_registration(PROGRAM).batch_name == "one.tsv"

    def test_disabled_submissions(self, service, db, registration_row):
        ConfigRepository(db).set_submission_disabled(True)

        with pytest.raises(StateConflictError):
            service.create_registration(PROGRAM, "tester", "reg.tsv", [registration_row()])


class TestClinicalSubmission:
    """Tests for the upload, validate and commit lifecycle."""

    def test_commit_new_data(self, service, db, registered):
        validated = _upload_and_validate(service, _donor_batch(_donor_row(vital_status="Alive")))

        assert validated.successful
        assert validated.submission.state == SubmissionState.VALID
        assert validated.submission.clinical_entities["donor"].stats["new"] == [0]

        committed = service.commit_submission(
            PROGRAM, validated.submission.version, "tester"
        )

        assert committed is None
        assert service.find_submission(PROGRAM) is None
        donor = DonorRepository(db).find_by_program_and_submitter_id(PROGRAM, "DO-1")
        assert donor.clinical_info["vital_status"] == "Alive"
        assert donor.completion_stats.core_completion["donor"] == 1.0

    def test_updates_need_approval(self, service, db, registered):
        first = _upload_and_validate(service, _donor_batch(_donor_row(vital_status="Alive")))
        service.commit_submission(PROGRAM, first.submission.version, "tester")

        validated = _upload_and_validate(
            service, _donor_batch(_donor_row(vital_status="Deceased", survival_time="100"))
        )
        assert validated.submission.clinical_entities["donor"].stats["updated"] == [0]

        pending = service.commit_submission(PROGRAM, validated.submission.version, "tester")

        assert pending.state == SubmissionState.PENDING_APPROVAL
        donors = DonorRepository(db)
        assert donors.find_by_program_and_submitter_id(PROGRAM, "DO-1").clinical_info[
            "vital_status"
        ] == "Alive"

        service.approve_submission(PROGRAM, pending.version)

        donor = donors.find_by_program_and_submitter_id(PROGRAM, "DO-1")
        assert donor.clinical_info["vital_status"] == "Deceased"
        assert donor.clinical_info["survival_time"] == 100
        assert service.find_submission(PROGRAM) is None

    def test_reopen_pending_submission(self, service, registered):
        first = _upload_and_validate(service, _donor_batch(_donor_row(vital_status="Alive")))
        service.commit_submission(PROGRAM, first.submission.version, "tester")
        validated = _upload_and_validate(
            service, _donor_batch(_donor_row(vital_status="Deceased", survival_time="100"))
        )
        pending = service.commit_submission(PROGRAM, validated.submission.version, "tester")

        reopened = service.reopen_submission(PROGRAM, pending.version, "tester")

        assert reopened.state == SubmissionState.OPEN
        assert reopened.clinical_entities["donor"].stats["updated"] == []

    def test_unregistered_donor_is_invalid(self, service, registered):
        validated = _upload_and_validate(
            service, _donor_batch(_donor_row("DO-9", vital_status="Alive"))
        )

        assert not validated.successful
        assert validated.submission.state == SubmissionState.INVALID
        entity = validated.submission.clinical_entities["donor"]
        assert [e.type for e in entity.data_errors] == ["ID_NOT_REGISTERED"]

        with pytest.raises(StateConflictError):
            service.commit_submission(PROGRAM, validated.submission.version, "tester")

    def test_stale_version(self, service, registered):
        validated = _upload_and_validate(service, _donor_batch(_donor_row(vital_status="Alive")))

        with pytest.raises(InvalidArgumentError):
            service.commit_submission(PROGRAM, "stale", "tester")
        with pytest.raises(NotFoundError):
            service.validate_active_submission(PROGRAM, "stale", "tester")
        assert service.find_submission(PROGRAM).version == validated.submission.version

    def test_schema_errors_are_not_staged(self, service, registered):
        result = service.upload_clinical_batches(
            PROGRAM, "tester", _donor_batch(_donor_row(vital_status="Unknown"))
        )

        assert not result.successful
        assert [e.type for e in result.schema_errors["donor"]] == ["INVALID_ENUM_VALUE"]
        assert result.submission is None

    def test_invalid_file_name(self, service, registered):
        batches = {
            "exposure": {"records": [], "batch_name": "exposure.tsv", "creator": "tester"},
            **_donor_batch(_donor_row(vital_status="Alive")),
        }

        result = service.upload_clinical_batches(PROGRAM, "tester", batches)

        assert not result.successful
        assert result.batch_errors[0]["type"] == "INVALID_FILE_NAME"
        assert result.batch_errors[0]["batchNames"] == ["exposure.tsv"]
        assert list(result.submission.clinical_entities) == ["donor"]

    def test_clear_submission(self, service, registered):
        specimen_row = _donor_row(submitter_specimen_id="DO-1-SP-N")
        batches = {
            **_donor_batch(_donor_row(vital_status="Alive")),
            "specimen": {"records": [specimen_row], "batch_name": "specimen.tsv"},
        }
        uploaded = service.upload_clinical_batches(PROGRAM, "tester", batches)

        cleared = service.clear_submission(
            PROGRAM, uploaded.submission.version, "tester", "specimen"
        )
        assert list(cleared.clinical_entities) == ["donor"]

        assert service.clear_submission(PROGRAM, cleared.version, "tester") is None
        assert service.find_submission(PROGRAM) is None

    def test_disabled_commit(self, service, db, registered):
        validated = _upload_and_validate(service, _donor_batch(_donor_row(vital_status="Alive")))
        ConfigRepository(db).set_submission_disabled(True)

        with pytest.raises(StateConflictError):
            service.commit_submission(PROGRAM, validated.submission.version, "tester")


class TestRevalidation:
    """Tests for re-checking staged rows against another dictionary version."""

    def _stage_specimen(self, service):
        row = _donor_row(submitter_specimen_id="DO-1-SP-N", specimen_acquisition_interval="5")
        batches = {"specimen": {"records": [row], "batch_name": "specimen.tsv"}}
        return service.upload_clinical_batches(PROGRAM, "tester", batches)

    def test_invalid_by_migration(self, service, registered, upgraded_dictionary):
        self._stage_specimen(service)

        result = service.revalidate_submission(PROGRAM, upgraded_dictionary)

        assert not result.successful
        assert result.submission.state == SubmissionState.INVALID_BY_MIGRATION
        [error] = result.schema_errors["specimen"]
        assert (error.type, error.field_name) == (
            "MISSING_REQUIRED_FIELD",
            "specimen_anatomic_location",
        )
        stored = service.find_submission(PROGRAM)
        assert stored.state == SubmissionState.INVALID_BY_MIGRATION
        assert stored.clinical_entities["specimen"].schema_errors[0].type == error.type

    def test_dry_run_leaves_submission(self, service, registered, upgraded_dictionary):
        staged = self._stage_specimen(service)

        result = service.revalidate_submission(PROGRAM, upgraded_dictionary, dry_run=True)

        assert result.submission.state == SubmissionState.INVALID_BY_MIGRATION
        stored = service.find_submission(PROGRAM)
        assert stored.state == SubmissionState.OPEN
        assert stored.version == staged.submission.version

    def test_still_valid(self, service, registered, base_dictionary):
        staged = self._stage_specimen(service)

        result = service.revalidate_submission(PROGRAM, base_dictionary)

        assert result.successful
        assert result.submission.state == staged.submission.state

    def test_no_submission(self, service, base_dictionary):
        with pytest.raises(NotFoundError):
            service.revalidate_submission(PROGRAM, base_dictionary)


class TestDonorStats:
    """Tests for recalculating and overriding stored donor stats."""

    def test_override(self, service, db, registered):
        donor = service.recalc_donor_stats(PROGRAM, "DO-1", {"followUps": 1.0})

        assert donor.completion_stats.core_completion["followUps"] == 1.0
        assert donor.completion_stats.overridden_core_completion == ["followUps"]
        stored = DonorRepository(db).find_by_program_and_submitter_id(PROGRAM, "DO-1")
        assert stored.completion_stats.overridden_core_completion == ["followUps"]

    def test_unknown_donor(self, service):
        with pytest.raises(NotFoundError):
            service.recalc_donor_stats(PROGRAM, "DO-404")


class TestProgramExceptions:
    """Tests for managing program exceptions and applying them on upload."""

    def test_set_get_delete(self, service):
        service.set_program_exceptions(
            PROGRAM,
            [{"schema": "donor", "core_field": "vital_status", "exception_value": "unknown"}],
        )

        [exception] = service.get_program_exceptions(PROGRAM)
        assert (exception.schema, exception.core_field) == ("donor", "vital_status")

        service.delete_program_exceptions(PROGRAM)
        assert service.get_program_exceptions(PROGRAM) == []
        with pytest.raises(NotFoundError):
            service.delete_program_exceptions(PROGRAM)

    @pytest.mark.parametrize(
        "row",
        [
            {"schema": "donor", "core_field": "vital_status", "exception_value": "Maybe"},
            {"schema": "exposure", "core_field": "tobacco", "exception_value": "Unknown"},
            {"schema": "donor", "core_field": "", "exception_value": "Unknown"},
        ],
    )
    def test_rejected_exceptions(self, service, row):
        with pytest.raises(InvalidArgumentError):
            service.set_program_exceptions(PROGRAM, [row])
        assert service.get_program_exceptions(PROGRAM) == []

    def test_upload_uses_exceptions(self, service, registered):
        service.set_program_exceptions(
            PROGRAM,
            [{"schema": "donor", "core_field": "vital_status", "exception_value": "Unknown"}],
        )

        result = service.upload_clinical_batches(
            PROGRAM, "tester", _donor_batch(_donor_row(vital_status="unknown"))
        )

        assert result.successful
        assert result.schema_errors == {}
        [record] = result.submission.clinical_entities["donor"].records
        assert record["vital_status"] == "Unknown"
