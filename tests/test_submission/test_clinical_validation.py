"""Tests for clinical submission validation."""

from unittest.mock import Mock

import pytest

from argo_clinical.clinical.entities import FollowUp, Therapy, Treatment
from argo_clinical.config.constants import TUMOUR_ONLY_SPECIMEN_FIELDS
from argo_clinical.errors import InvalidArgumentError
from argo_clinical.submission.clinical_validation import (
    check_unique_records,
    merge_and_validate_submission,
    validate_batch,
    validate_submission_data,
)
from argo_clinical.submission.entities import DataValidationErrors
from argo_clinical.submission.program_exceptions import ProgramException

PROGRAM = "TEST-CA"
ALIVE_DONOR = {"program_id": PROGRAM, "submitter_donor_id": "DO-1", "vital_status": "Alive"}


def _row(index=0, donor_id="DO-1", **fields):
    return {"program_id": PROGRAM, "submitter_donor_id": donor_id, **fields, "index": index}


def _info(**fields):
    return {"program_id": PROGRAM, "submitter_donor_id": "DO-1", **fields}


def _types(result):
    return [e.type for e in result.data_errors]


class TestBatchChecks:
    """Tests for checks on the rows of a single file."""

    def test_identical_ids_are_symmetric(self):
        records = [
            {"submitter_donor_id": "DO-1", "submitter_treatment_id": "T-1", "drug_rxnormcui": "1"},
            {"submitter_donor_id": "DO-1", "submitter_treatment_id": "T-1", "drug_rxnormcui": "2"},
            {"submitter_donor_id": "DO-1", "submitter_treatment_id": "T-1", "drug_rxnormcui": "1"},
        ]

        errors = check_unique_records("chemotherapy", records)

        assert [(e.index, e.info["conflictingRows"]) for e in errors] == [(0, [2]), (2, [0])]
        assert all(e.type == DataValidationErrors.FOUND_IDENTICAL_IDS.value for e in errors)
        assert errors[0].field_name == "submitter_donor_id"

    def test_keys_compared_field_by_field(self):
        """Test that keys whose values only match when concatenated do not collide."""
        records = [
            {"submitter_donor_id": "DO-1", "submitter_treatment_id": "T_1", "drug_rxnormcui": "23"},
            {"submitter_donor_id": "DO-1", "submitter_treatment_id": "T_12", "drug_rxnormcui": "3"},
        ]

        assert check_unique_records("chemotherapy", records) == []

    def test_single_key_field_names_the_field(self):
        records = [{"submitter_donor_id": "DO-1"}, {"submitter_donor_id": "DO-1"}]

        errors = check_unique_records("donor", records)

        assert [e.field_name for e in errors] == ["submitter_donor_id"] * 2

    def test_registration_rows_rejected(self):
        with pytest.raises(InvalidArgumentError):
            check_unique_records("sample_registration", [])

    def test_validate_batch(self, base_dictionary):
        """Test schema errors, program checks and row numbering in one batch."""
        records = [
            {"program_id": PROGRAM, "submitter_donor_id": "DO-1", "vital_status": "Alive"},
            {"program_id": PROGRAM, "submitter_donor_id": "DO-2", "vital_status": "Unknown"},
            {"program_id": "OTHER-CA", "submitter_donor_id": "DO-3", "vital_status": "Alive"},
        ]

        result = validate_batch("donor", records, PROGRAM, base_dictionary)

        assert [(e.index, e.type) for e in result.errors] == [
            (1, "INVALID_ENUM_VALUE"),
            (2, "INVALID_PROGRAM_ID"),
        ]
        assert result.errors[0].info["donorSubmitterId"] == "DO-2"
        assert [r["index"] for r in result.processed_records] == [0, 1, 2]


class TestProgramExceptions:
    """Tests for schema errors waived by program exceptions."""

    @pytest.fixture
    def exceptions(self):
        return [
            ProgramException(PROGRAM, "primary_diagnosis", "age_at_diagnosis", "Unknown"),
            ProgramException(PROGRAM, "donor", "vital_status", "Not applicable"),
        ]

    def _diagnosis(self, age):
        return {
            "program_id": PROGRAM,
            "submitter_donor_id": "DO-1",
            "submitter_primary_diagnosis_id": "PD-1",
            "age_at_diagnosis": age,
        }

    def test_exception_value_waives_type_error(self, base_dictionary, exceptions):
        records = [self._diagnosis(" unknown "), self._diagnosis("old")]

        result = validate_batch(
            "primary_diagnosis", records, PROGRAM, base_dictionary, exceptions
        )

        assert [(e.index, e.type) for e in result.errors] == [(1, "INVALID_FIELD_VALUE_TYPE")]
        assert result.processed_records[0]["age_at_diagnosis"] == "Unknown"

    def test_exception_value_waives_code_list(self, base_dictionary, exceptions):
        records = [{**ALIVE_DONOR, "vital_status": "not applicable"}]

        result = validate_batch("donor", records, PROGRAM, base_dictionary, exceptions)

        assert result.errors == []
        assert result.processed_records[0]["vital_status"] == "Not applicable"

    def test_missing_required_value_is_not_waived(self, base_dictionary, exceptions):
        records = [{**ALIVE_DONOR, "vital_status": ""}]

        result = validate_batch("donor", records, PROGRAM, base_dictionary, exceptions)

        assert [e.type for e in result.errors] == ["MISSING_REQUIRED_FIELD"]

    def test_exception_for_other_entity_does_not_apply(self, base_dictionary):
        exceptions = [ProgramException(PROGRAM, "specimen", "vital_status", "Unknown")]
        records = [{**ALIVE_DONOR, "vital_status": "Unknown"}]

        result = validate_batch("donor", records, PROGRAM, base_dictionary, exceptions)

        assert [e.type for e in result.errors] == ["INVALID_ENUM_VALUE"]


class TestDonorLevelValidation:
    """Tests for rows checked against the candidate donor."""

    def test_unregistered_donor(self):
        records = {"DO-9": {"donor": [_row(donor_id="DO-9", vital_status="Alive")]}}

        result = validate_submission_data(records, {})

        assert _types(result["donor"]) == ["ID_NOT_REGISTERED"]
        assert result["donor"].stats["errorsFound"] == [0]

    def test_new_unchanged_and_updated_rows(self, make_donor):
        donors = {
            "DO-1": make_donor("DO-1", clinical_info=ALIVE_DONOR),
            "DO-2": make_donor("DO-2"),
        }
        records = {
            "DO-1": {"donor": [_row(0, vital_status="Alive")]},
            "DO-2": {"donor": [_row(1, donor_id="DO-2", vital_status="Alive")]},
        }

        result = validate_submission_data(records, donors)["donor"]

        assert result.stats["noUpdate"] == [0]
        assert result.stats["new"] == [1]

        records = {"DO-1": {"donor": [_row(0, vital_status="Deceased", survival_time=100)]}}
        result = validate_submission_data(records, donors)["donor"]

        assert result.stats["updated"] == [0]
        updates = {u.field_name: (u.old_value, u.new_value) for u in result.data_updates}
        assert updates == {"vital_status": ("Alive", "Deceased"), "survival_time": ("", "100")}

    def test_conflicting_time_interval(self, make_donor):
        """Test that survival time shorter than a specimen interval flags both rows."""
        donors = {"DO-1": make_donor()}
        records = {
            "DO-1": {
                "donor": [_row(0, vital_status="Deceased", survival_time=10)],
                "specimen": [
                    _row(0, submitter_specimen_id="DO-1-SP-N", specimen_acquisition_interval=20)
                ],
            }
        }

        result = validate_submission_data(records, donors)

        assert _types(result["donor"]) == ["CONFLICTING_TIME_INTERVAL"]
        assert result["donor"].data_errors[0].info["conflictingSpecimenSubmitterIds"] == [
            "DO-1-SP-N"
        ]
        assert _types(result["specimen"]) == ["CONFLICTING_TIME_INTERVAL"]

    def test_merge_and_validate_entry_point(self, make_donor):
        donors = {"DO-1": make_donor()}
        records = {"DO-1": {"donor": [_row(vital_status="Alive")]}}

        result = merge_and_validate_submission(donors, records)

        assert result["donor"].stats["new"] == [0]
        assert donors["DO-1"].clinical_info == {}


class TestSpecimenValidation:
    """Tests for specimen rows."""

    def test_specimen_not_registered(self, make_donor):
        donors = {"DO-1": make_donor(clinical_info=ALIVE_DONOR)}
        records = {"DO-1": {"specimen": [_row(submitter_specimen_id="SP-404")]}}

        result = validate_submission_data(records, donors)

        assert _types(result["specimen"]) == ["ID_NOT_REGISTERED"]

    def test_tumour_specimen_missing_fields(self, make_donor):
        donors = {"DO-1": make_donor(clinical_info=ALIVE_DONOR)}
        records = {"DO-1": {"specimen": [_row(submitter_specimen_id="DO-1-SP-T")]}}

        errors = validate_submission_data(records, donors)["specimen"].data_errors

        assert {e.type for e in errors} == {"MISSING_VARIABLE_REQUIREMENT"}
        assert [e.field_name for e in errors] == TUMOUR_ONLY_SPECIMEN_FIELDS
        assert errors[0].info["variableRequirement"]["fieldValue"] == "Tumour"

    def test_normal_specimen_with_tumour_fields(self, make_donor):
        donors = {"DO-1": make_donor(clinical_info=ALIVE_DONOR)}
        records = {
            "DO-1": {"specimen": [_row(submitter_specimen_id="DO-1-SP-N", tumour_grade="G1")]}
        }

        result = validate_submission_data(records, donors)

        assert _types(result["specimen"]) == ["FORBIDDEN_PROVIDED_VARIABLE_REQUIREMENT"]
        assert result["specimen"].data_errors[0].field_name == "tumour_grade"

    def test_not_enough_donor_info(self, make_donor):
        donors = {"DO-1": make_donor()}
        records = {"DO-1": {"specimen": [_row(submitter_specimen_id="DO-1-SP-N")]}}

        errors = validate_submission_data(records, donors)["specimen"].data_errors

        assert [e.type for e in errors] == ["NOT_ENOUGH_INFO_TO_VALIDATE"]
        assert errors[0].info["missingField"] == ["donor.vital_status", "donor.survival_time"]


class TestTreatmentValidation:
    """Tests for treatments and their therapies."""

    def test_incompatible_parent_treatment_type(self, make_donor):
        donors = {"DO-1": make_donor()}
        records = {
            "DO-1": {
                "treatment": [_row(submitter_treatment_id="T_02", treatment_type=["Ablation"])],
                "chemotherapy": [_row(submitter_treatment_id="T_02", drug_rxnormcui="123")],
            }
        }

        result = validate_submission_data(records, donors)

        assert result["treatment"].stats["new"] == [0]
        assert _types(result["chemotherapy"]) == ["INCOMPATIBLE_PARENT_TREATMENT_TYPE"]
        assert result["chemotherapy"].data_errors[0].info["treatment_type"] == ["Ablation"]

    def test_missing_therapy_data(self, make_donor):
        donors = {"DO-1": make_donor()}
        records = {
            "DO-1": {
                "treatment": [
                    _row(submitter_treatment_id="T-1", treatment_type=["Chemotherapy", "Surgery"])
                ]
            }
        }

        errors = validate_submission_data(records, donors)["treatment"].data_errors

        assert [e.type for e in errors] == ["MISSING_THERAPY_DATA"] * 2
        assert [e.info["therapyType"] for e in errors] == ["chemotherapy", "surgery"]

    def test_therapy_without_treatment(self, make_donor):
        donors = {"DO-1": make_donor()}
        records = {
            "DO-1": {"chemotherapy": [_row(submitter_treatment_id="T-9", drug_rxnormcui="1")]}
        }

        result = validate_submission_data(records, donors)

        assert _types(result["chemotherapy"]) == ["TREATMENT_ID_NOT_FOUND"]

    def test_changing_treatment_type_warns(self, make_donor):
        """Test that dropping a treatment type warns about the therapies it deletes."""
        donor = make_donor()
        donor.treatments.append(
            Treatment(
                clinical_info=_info(submitter_treatment_id="T-1", treatment_type=["Chemotherapy"]),
                therapies=[
                    Therapy(
                        therapy_type="chemotherapy",
                        clinical_info=_info(submitter_treatment_id="T-1", drug_rxnormcui="1"),
                    )
                ],
            )
        )
        records = {
            "DO-1": {
                "treatment": [_row(submitter_treatment_id="T-1", treatment_type=["Surgery"])],
                "surgery": [_row(submitter_treatment_id="T-1", procedure_type="Biopsy")],
            }
        }

        result = validate_submission_data(records, {"DO-1": donor})["treatment"]

        assert result.data_errors == []
        assert result.stats["updated"] == [0]
        warning = result.data_warnings[0]
        assert warning.type == "DELETING_THERAPY"
        assert warning.info["deletedTherapies"] == ["chemotherapy"]


class TestReferences:
    """Tests for references between entities and across donors."""

    def test_follow_up_with_unknown_diagnosis(self, make_donor):
        donors = {"DO-1": make_donor()}
        records = {
            "DO-1": {
                "follow_up": [
                    _row(submitter_follow_up_id="FU-1", submitter_primary_diagnosis_id="PD-9")
                ]
            }
        }

        result = validate_submission_data(records, donors)

        assert _types(result["follow_up"]) == ["RELATED_ENTITY_MISSING_OR_CONFLICTING"]

    def test_follow_up_references_are_optional(self, make_donor):
        diagnosis = {"submitter_primary_diagnosis_id": "PD-1"}
        donors = {"DO-1": make_donor(primary_diagnosis_info=diagnosis)}
        records = {
            "DO-1": {
                "follow_up": [
                    _row(0, submitter_follow_up_id="FU-1", submitter_primary_diagnosis_id="PD-1"),
                    _row(1, submitter_follow_up_id="FU-2"),
                ]
            }
        }

        result = validate_submission_data(records, donors)

        assert result["follow_up"].stats["new"] == [0, 1]

    def test_entity_owned_by_other_donor(self, make_donor):
        finder = Mock()
        finder.find_by_clinical_entity_submitter_id.return_value = make_donor("DO-2")
        records = {
            "DO-1": {"primary_diagnosis": [_row(submitter_primary_diagnosis_id="PD-1")]}
        }

        result = validate_submission_data(records, {"DO-1": make_donor()}, donor_finder=finder)

        errors = result["primary_diagnosis"].data_errors
        assert [e.type for e in errors] == ["CLINICAL_ENTITY_BELONGS_TO_OTHER_DONOR"]
        assert errors[0].info["otherDonorSubmitterId"] == "DO-2"
        finder.find_by_clinical_entity_submitter_id.assert_called_once_with(
            PROGRAM, "primary_diagnosis", "PD-1"
        )


class TestDeceasedSpelling:
    """Tests that vital status comparisons ignore case."""

    def test_specimen_checked_against_lowercase_status(self, make_donor):
        donor_info = _info(vital_status="deceased", survival_time=10)
        donors = {"DO-1": make_donor(clinical_info=donor_info)}
        records = {
            "DO-1": {
                "specimen": [
                    _row(submitter_specimen_id="DO-1-SP-N", specimen_acquisition_interval=20)
                ]
            }
        }

        result = validate_submission_data(records, donors)

        assert _types(result["specimen"]) == ["CONFLICTING_TIME_INTERVAL"]

    def test_donor_row_in_upper_case(self, make_donor):
        specimen = _info(submitter_specimen_id="DO-1-SP-N", specimen_acquisition_interval=20)
        donors = {"DO-1": make_donor(specimen_info=specimen)}
        records = {"DO-1": {"donor": [_row(vital_status="DECEASED", survival_time=10)]}}

        result = validate_submission_data(records, donors)

        assert _types(result["donor"]) == ["CONFLICTING_TIME_INTERVAL"]


class TestLostToFollowUp:
    """Tests for donors lost to follow up after a clinical event."""

    def _records(self, event_id, treatments):
        return {
            "DO-1": {
                "donor": [
                    _row(vital_status="Alive", lost_to_followup_after_clinical_event_id=event_id)
                ],
                "follow_up": [_row(submitter_follow_up_id="FU-1", interval_of_followup=100)],
                "treatment": [
                    _row(
                        i,
                        submitter_treatment_id=treatment_id,
                        treatment_type=["Ablation"],
                        treatment_start_interval=start,
                        treatment_duration=duration,
                    )
                    for i, (treatment_id, start, duration) in enumerate(treatments)
                ],
            }
        }

    def test_unknown_clinical_event(self, make_donor):
        records = self._records("FU-9", [])

        result = validate_submission_data(records, {"DO-1": make_donor()})

        assert _types(result["donor"]) == ["INVALID_LOST_TO_FOLLOW_UP_ID"]
        error = result["donor"].data_errors[0]
        assert error.field_name == "lost_to_followup_after_clinical_event_id"

    def test_treatment_ending_after_follow_up(self, make_donor):
        records = self._records("FU-1", [("T-1", 90, 30)])

        result = validate_submission_data(records, {"DO-1": make_donor()})

        assert _types(result["donor"]) == ["INVALID_SUBMISSION_AFTER_LOST_TO_FOLLOW_UP"]
        info = result["donor"].data_errors[0].info
        assert info["submitter_treatment_id"] == "T-1"
        assert info["interval_of_followup"] == 100

    def test_treatment_ending_before_follow_up(self, make_donor):
        records = self._records("FU-1", [("T-1", 70, 30)])

        result = validate_submission_data(records, {"DO-1": make_donor()})

        assert result["donor"].data_errors == []

    def test_stored_follow_up_event(self, make_donor):
        donor = make_donor()
        donor.follow_ups.append(
            FollowUp(clinical_info=_info(submitter_follow_up_id="FU-5", interval_of_followup=10))
        )
        records = {
            "DO-1": {
                "donor": [
                    _row(vital_status="Alive", lost_to_followup_after_clinical_event_id="FU-5")
                ]
            }
        }

        result = validate_submission_data(records, {"DO-1": donor})

        assert result["donor"].data_errors == []
        assert result["donor"].stats["new"] == [0]

    def test_treatment_as_clinical_event(self, make_donor):
        """Test that a treatment event ends at its start interval plus duration."""
        records = self._records("T-1", [("T-1", 20, 30), ("T-2", 60, 10)])

        result = validate_submission_data(records, {"DO-1": make_donor()})

        errors = result["donor"].data_errors
        assert [e.type for e in errors] == ["INVALID_SUBMISSION_AFTER_LOST_TO_FOLLOW_UP"]
        assert errors[0].info["submitter_treatment_id"] == "T-2"
        assert errors[0].info["interval_of_followup"] == 50


class TestTnmStaging:
    """Tests for staging of primary diagnoses with tumour specimens."""

    @pytest.fixture
    def donor(self, make_donor):
        donor = make_donor()
        donor.specimens[1].clinical_info = _info(
            submitter_specimen_id="DO-1-SP-T", submitter_primary_diagnosis_id="PD-1"
        )
        return donor

    def test_unstaged_diagnosis_and_specimen(self, donor):
        records = {"DO-1": {"primary_diagnosis": [_row(submitter_primary_diagnosis_id="PD-1")]}}

        result = validate_submission_data(records, {"DO-1": donor})

        errors = result["primary_diagnosis"].data_errors
        assert [e.type for e in errors] == ["TNM_STAGING_FIELDS_MISSING"]
        assert errors[0].field_name == "clinical_tumour_staging_system"
        assert errors[0].info["specimenSubmitterIds"] == ["DO-1-SP-T"]

    def test_clinically_staged_diagnosis(self, donor):
        row = _row(submitter_primary_diagnosis_id="PD-1", clinical_tumour_staging_system="AJCC")
        records = {"DO-1": {"primary_diagnosis": [row]}}

        result = validate_submission_data(records, {"DO-1": donor})

        assert result["primary_diagnosis"].data_errors == []

    def test_pathologically_staged_specimen(self, donor):
        donor.specimens[1].clinical_info["pathological_tumour_staging_system"] = "AJCC"
        records = {"DO-1": {"primary_diagnosis": [_row(submitter_primary_diagnosis_id="PD-1")]}}

        result = validate_submission_data(records, {"DO-1": donor})

        assert result["primary_diagnosis"].data_errors == []


class TestSurgerySpecimens:
    """Tests for specimens shared between surgeries."""

    def _records(self, *surgeries):
        treatment_ids = sorted({treatment_id for treatment_id, _, _ in surgeries})
        return {
            "DO-1": {
                "treatment": [
                    _row(i, submitter_treatment_id=treatment_id, treatment_type=["Surgery"])
                    for i, treatment_id in enumerate(treatment_ids)
                ],
                "surgery": [
                    _row(
                        i,
                        submitter_treatment_id=treatment_id,
                        submitter_specimen_id=specimen_id,
                        surgery_type=surgery_type,
                    )
                    for i, (treatment_id, specimen_id, surgery_type) in enumerate(surgeries)
                ],
            }
        }

    def test_specimen_in_two_treatments(self, make_donor):
        records = self._records(
            ("T-1", "DO-1-SP-T", "Biopsy"), ("T-2", "DO-1-SP-T", "Biopsy")
        )

        result = validate_submission_data(records, {"DO-1": make_donor()})

        errors = result["surgery"].data_errors
        assert [e.type for e in errors] == ["DUPLICATE_SUBMITTER_SPECIMEN_ID_IN_SURGERY"] * 2
        assert [e.info["conflictingTreatmentId"] for e in errors] == ["T-2", "T-1"]

    def test_surgery_types_differ_within_treatment(self, make_donor):
        records = self._records(
            ("T-1", "DO-1-SP-N", "Biopsy"), ("T-1", "DO-1-SP-T", "Resection")
        )

        result = validate_submission_data(records, {"DO-1": make_donor()})

        assert _types(result["surgery"]) == ["DUPLICATE_SUBMITTER_SPECIMEN_ID_IN_SURGERY"] * 2

    def test_one_treatment_several_specimens(self, make_donor):
        records = self._records(("T-1", "DO-1-SP-N", "Biopsy"), ("T-1", "DO-1-SP-T", "Biopsy"))

        result = validate_submission_data(records, {"DO-1": make_donor()})

        assert result["surgery"].data_errors == []
        assert result["surgery"].stats["new"] == [0, 1]


class TestBiomarkerValidation:
    """Tests for biomarker references to other clinical events."""

    def test_unknown_follow_up(self, make_donor):
        records = {"DO-1": {"biomarker": [_row(submitter_follow_up_id="FU-9", test_interval=5)]}}

        result = validate_submission_data(records, {"DO-1": make_donor()})

        errors = result["biomarker"].data_errors
        assert [e.type for e in errors] == ["RELATED_ENTITY_MISSING_OR_CONFLICTING"]
        assert errors[0].info["parentEntity"] == "follow_up"

    def test_registered_specimen(self, make_donor):
        records = {
            "DO-1": {"biomarker": [_row(submitter_specimen_id="DO-1-SP-N", test_interval=5)]}
        }

        result = validate_submission_data(records, {"DO-1": make_donor()})

        assert result["biomarker"].data_errors == []
        assert result["biomarker"].stats["new"] == [0]
