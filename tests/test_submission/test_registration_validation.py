"""Tests for sample registration identity checks."""

from argo_clinical.submission.entities import CreateRegistrationRecord, DataValidationErrors
from argo_clinical.submission.registration_validation import (
    calculate_registration_stats,
    validate_registration_data,
)

PROGRAM = "TEST-CA"


def _records(*rows):
    return [CreateRegistrationRecord.from_record(row) for row in rows]


def _errors_of(result, error_type):
    return [e for e in result.errors if e.type == error_type.value]


class TestRegisteredData:
    """Tests comparing rows with donors already registered."""

    def test_same_data_is_valid(self, make_donor, registration_row):
        """Test that re-registering identical data raises nothing."""
        records = _records(registration_row("DO-1", "DO-1-SP-N", "DO-1-SA-N"))

        result = validate_registration_data(PROGRAM, records, [make_donor("DO-1")])

        assert result.errors == []

    def test_mutating_gender_and_sample_type(self, make_donor, registration_row):
        records = _records(
            registration_row("DO-1", "DO-1-SP-N", "DO-1-SA-N", gender="Male", sample_type="RNA")
        )

        result = validate_registration_data(PROGRAM, records, [make_donor("DO-1")])

        errors = _errors_of(result, DataValidationErrors.MUTATING_EXISTING_DATA)
        assert {e.field_name for e in errors} == {"gender", "sample_type"}
        gender_error = next(e for e in errors if e.field_name == "gender")
        assert gender_error.info["originalValue"] == "Female"
        assert gender_error.info["value"] == "Male"

    def test_specimen_belongs_to_other_donor(self, make_donor, registration_row):
        records = _records(registration_row("DO-2", "DO-1-SP-N", "SA-NEW"))

        result = validate_registration_data(PROGRAM, records, [make_donor("DO-1")])

        errors = _errors_of(result, DataValidationErrors.SPECIMEN_BELONGS_TO_OTHER_DONOR)
        assert len(errors) == 1
        assert errors[0].info["otherDonorSubmitterId"] == "DO-1"

    def test_sample_belongs_to_other_specimen(self, make_donor, registration_row):
        records = _records(registration_row("DO-1", "DO-1-SP-N", "DO-1-SA-T"))

        result = validate_registration_data(PROGRAM, records, [make_donor("DO-1")])

        errors = _errors_of(result, DataValidationErrors.SAMPLE_BELONGS_TO_OTHER_SPECIMEN)
        assert errors[0].info["otherSpecimenSubmitterId"] == "DO-1-SP-T"

    def test_invalid_program_id(self, registration_row):
        records = _records(registration_row(program_id="OTHER-CA"))

        result = validate_registration_data(PROGRAM, records, [])

        errors = _errors_of(result, DataValidationErrors.INVALID_PROGRAM_ID)
        assert errors[0].info["expectedProgram"] == PROGRAM


class TestBatchConflicts:
    """Tests comparing rows of the same batch; conflicts are reported on both rows."""

    def test_new_donor_gender_conflict(self, registration_row):
        records = _records(
            registration_row("DO-1", "SP-1", "SA-1"),
            registration_row("DO-1", "SP-2", "SA-2", gender="Male"),
        )

        result = validate_registration_data(PROGRAM, records, [])

        errors = _errors_of(result, DataValidationErrors.NEW_DONOR_CONFLICT)
        assert sorted((e.index, e.info["conflictingRows"]) for e in errors) == [
            (0, [1]),
            (1, [0]),
        ]
        assert all(e.field_name == "gender" for e in errors)

    def test_new_sample_attribute_conflict(self, registration_row):
        records = _records(
            registration_row("DO-1", "SP-1", "SA-1"),
            registration_row("DO-1", "SP-1", "SA-1", sample_type="RNA"),
        )

        result = validate_registration_data(PROGRAM, records, [])

        errors = _errors_of(result, DataValidationErrors.NEW_SAMPLE_ATTR_CONFLICT)
        assert sorted((e.index, e.info["conflictingRows"]) for e in errors) == [
            (0, [1]),
            (1, [0]),
        ]
        assert all(e.field_name == "sample_type" for e in errors)

    def test_new_sample_id_under_two_specimens(self, registration_row):
        records = _records(
            registration_row("DO-1", "SP-1", "SA-1"),
            registration_row("DO-1", "SP-2", "SA-1"),
        )

        result = validate_registration_data(PROGRAM, records, [])

        errors = _errors_of(result, DataValidationErrors.NEW_SAMPLE_ID_CONFLICT)
        assert [e.index for e in errors] == [0, 1]

    def test_new_specimen_id_under_two_donors(self, registration_row):
        records = _records(
            registration_row("DO-1", "SP-1", "SA-1"),
            registration_row("DO-2", "SP-1", "SA-2"),
        )

        result = validate_registration_data(PROGRAM, records, [])

        errors = _errors_of(result, DataValidationErrors.NEW_SPECIMEN_ID_CONFLICT)
        assert [e.info["conflictingRows"] for e in errors] == [[1], [0]]

    def test_new_specimen_attribute_conflict(self, registration_row):
        records = _records(
            registration_row("DO-1", "SP-1", "SA-1"),
            registration_row("DO-1", "SP-1", "SA-2", tumour_normal_designation="Tumour"),
        )

        result = validate_registration_data(PROGRAM, records, [])

        errors = _errors_of(result, DataValidationErrors.NEW_SPECIMEN_ATTR_CONFLICT)
        assert [e.field_name for e in errors] == ["tumour_normal_designation"] * 2

    def test_errors_carry_row_identifiers(self, registration_row):
        records = _records(
            registration_row("DO-1", "SP-1", "SA-1"),
            registration_row("DO-1", "SP-2", "SA-2", gender="Male"),
        )

        error = validate_registration_data(PROGRAM, records, []).errors[1]

        assert error.info["donorSubmitterId"] == "DO-1"
        assert error.info["specimenSubmitterId"] == "SP-2"
        assert error.info["sampleSubmitterId"] == "SA-2"
        assert error.message


class TestRegistrationStats:
    """Tests for classifying rows as new or already registered."""

    def test_stats(self, make_donor, registration_row):
        records = _records(
            registration_row("DO-1", "DO-1-SP-N", "DO-1-SA-N"),
            registration_row("DO-1", "DO-1-SP-N", "DO-1-SA-N2"),
            registration_row("DO-1", "DO-1-SP-X", "DO-1-SA-X"),
            registration_row("DO-2", "DO-2-SP-N", "DO-2-SA-N"),
        )

        stats = calculate_registration_stats(records, [make_donor("DO-1")])

        assert stats.already_registered == {"DO-1-SA-N": [0]}
        assert stats.new_donor_ids == {"DO-2": [3]}
        assert stats.new_specimen_ids == {"DO-1-SP-X": [2], "DO-2-SP-N": [3]}
        assert stats.new_sample_ids == {"DO-1-SA-N2": [1], "DO-1-SA-X": [2], "DO-2-SA-N": [3]}
        assert stats.to_dict()["newDonorIds"] == [{"submitterId": "DO-2", "rowNumbers": [3]}]
