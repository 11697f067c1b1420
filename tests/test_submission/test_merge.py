"""Tests for folding submitted records into donors."""

import pytest

from argo_clinical.clinical.entities import FollowUp, Therapy, Treatment
from argo_clinical.errors import StateConflictError
from argo_clinical.submission.entities import (
    ActiveClinicalSubmission,
    SavedClinicalEntity,
    SubmissionState,
)
from argo_clinical.submission.merge import (
    group_records_by_donor,
    merge_active_submission_with_donors,
    merge_records_into_donor,
    therapies_removed_by,
)

PROGRAM = "TEST-CA"


def _row(index=0, donor_id="DO-1", **fields):
    return {"program_id": PROGRAM, "submitter_donor_id": donor_id, **fields, "index": index}


def _chemo_treatment():
    ids = {"submitter_donor_id": "DO-1", "submitter_treatment_id": "T-1"}
    return Treatment(
        clinical_info={**ids, "treatment_type": ["Chemotherapy", "Surgery"]},
        therapies=[
            Therapy(therapy_type="chemotherapy", clinical_info={**ids, "drug_rxnormcui": "1"}),
            Therapy(therapy_type="surgery", clinical_info=dict(ids)),
        ],
    )


class TestMergeRecordsIntoDonor:
    """Tests for the copy-on-write merge."""

    def test_input_donor_untouched(self, make_donor):
        donor = make_donor()

        merged = merge_records_into_donor(
            donor,
            {
                "donor": [_row(vital_status="Alive")],
                "specimen": [
                    _row(submitter_specimen_id="DO-1-SP-N", specimen_acquisition_interval=3)
                ],
            },
        )

        assert merged is not donor
        assert donor.clinical_info == {}
        assert donor.specimens[0].clinical_info == {}
        assert merged.clinical_info["vital_status"] == "Alive"
        assert "index" not in merged.clinical_info
        assert merged.specimens[0].clinical_info["specimen_acquisition_interval"] == 3

    def test_unregistered_specimen_ignored(self, make_donor):
        merged = merge_records_into_donor(
            make_donor(), {"specimen": [_row(submitter_specimen_id="SP-404")]}
        )

        assert [s.submitter_id for s in merged.specimens] == ["DO-1-SP-N", "DO-1-SP-T"]
        assert all(not s.clinical_info for s in merged.specimens)

    def test_primary_diagnosis_single_slot(self, make_donor):
        donor = make_donor(primary_diagnosis_info={"submitter_primary_diagnosis_id": "PD-1"})

        merged = merge_records_into_donor(
            donor, {"primary_diagnosis": [_row(submitter_primary_diagnosis_id="PD-2")]}
        )

        assert merged.primary_diagnosis.clinical_info["submitter_primary_diagnosis_id"] == "PD-2"

    def test_treatment_type_change_drops_therapies(self, make_donor):
        donor = make_donor()
        donor.treatments.append(_chemo_treatment())

        merged = merge_records_into_donor(
            donor, {"treatment": [_row(submitter_treatment_id="T-1", treatment_type=["Surgery"])]}
        )

        therapies = merged.treatments[0].therapies
        assert [t.therapy_type for t in therapies] == ["surgery"]
        assert len(donor.treatments[0].therapies) == 2

    def test_therapy_updates_by_natural_key(self, make_donor):
        donor = make_donor()
        donor.treatments.append(_chemo_treatment())

        merged = merge_records_into_donor(
            donor,
            {
                "chemotherapy": [
                    _row(0, submitter_treatment_id="T-1", drug_rxnormcui="1", drug_name="a"),
                    _row(1, submitter_treatment_id="T-1", drug_rxnormcui="2", drug_name="b"),
                ]
            },
        )

        chemo = [t for t in merged.treatments[0].therapies if t.therapy_type == "chemotherapy"]
        assert [t.clinical_info["drug_name"] for t in chemo] == ["a", "b"]

    def test_therapy_without_treatment(self, make_donor):
        """Test that orphan therapies are skipped unless a placeholder is requested."""
        radiation = _row(submitter_treatment_id="T-9", radiation_therapy_modality="X")
        records = {"radiation": [radiation]}

        assert merge_records_into_donor(make_donor(), records).treatments == []

        merged = merge_records_into_donor(
            make_donor(), records, create_dummy_treatment_if_missing=True
        )
        assert merged.treatments[0].clinical_info == {
            "submitter_donor_id": "DO-1",
            "submitter_treatment_id": "T-9",
        }
        assert merged.treatments[0].therapies[0].therapy_type == "radiation"

    def test_follow_up_replaced_in_place(self, make_donor):
        donor = make_donor()
        donor.follow_ups = [
            FollowUp(clinical_info={"submitter_follow_up_id": "FU-1", "interval_of_followup": 1}),
            FollowUp(clinical_info={"submitter_follow_up_id": "FU-2", "interval_of_followup": 2}),
        ]

        merged = merge_records_into_donor(
            donor, {"follow_up": [_row(submitter_follow_up_id="FU-1", interval_of_followup=9)]}
        )

        assert [f.clinical_info["interval_of_followup"] for f in merged.follow_ups] == [9, 2]

    def test_biomarkers_by_natural_key(self, make_donor):
        """Test that a biomarker is matched on all its references and its test interval."""
        donor = make_donor()
        first = merge_records_into_donor(
            donor,
            {"biomarker": [_row(submitter_specimen_id="DO-1-SP-T", test_interval=5, ca125=1)]},
        )

        merged = merge_records_into_donor(
            first,
            {
                "biomarker": [
                    _row(0, submitter_specimen_id="DO-1-SP-T", test_interval=5, ca125=7),
                    _row(1, submitter_specimen_id="DO-1-SP-T", test_interval=9, ca125=2),
                ]
            },
        )

        assert donor.biomarkers == []
        assert [b.clinical_info["ca125"] for b in merged.biomarkers] == [7, 2]

    def test_therapies_removed_by(self):
        assert therapies_removed_by(_chemo_treatment(), ["Surgery"]) == ["chemotherapy"]
        assert therapies_removed_by(_chemo_treatment(), ["Chemotherapy", "Surgery"]) == []


class TestMergeActiveSubmission:
    """Tests for applying a staged submission at commit."""

    def _submission(self, records_by_entity):
        return ActiveClinicalSubmission(
            program_id=PROGRAM,
            state=SubmissionState.VALID,
            updated_by="tester",
            clinical_entities={
                entity: SavedClinicalEntity(
                    batch_name=f"{entity}.tsv", creator="tester", records=rows
                )
                for entity, rows in records_by_entity.items()
            },
        )

    def test_group_records_by_donor(self):
        grouped = group_records_by_donor(
            {"donor": [{"submitter_donor_id": "DO-1"}, {"submitter_donor_id": "DO-2"}]}
        )

        assert grouped == {
            "DO-1": {"donor": [{"submitter_donor_id": "DO-1", "index": 0}]},
            "DO-2": {"donor": [{"submitter_donor_id": "DO-2", "index": 1}]},
        }

    def test_merge_updates_stats(self, make_donor):
        submission = self._submission({"donor": [_row(vital_status="Alive")]})

        donors = [make_donor(), make_donor("DO-2")]

        [updated] = merge_active_submission_with_donors(submission, donors)

        assert updated.submitter_id == "DO-1"
        assert updated.completion_stats.core_completion["donor"] == 1.0

    def test_unregistered_donor(self, make_donor):
        submission = self._submission({"donor": [_row(donor_id="DO-9", vital_status="Alive")]})

        with pytest.raises(StateConflictError):
            merge_active_submission_with_donors(submission, [make_donor()])
