"""Pytest configuration and fixtures for the clinical submission tests."""

import copy

import duckdb
import pytest

from argo_clinical.clinical.entities import (
    CompletionStats,
    Donor,
    PrimaryDiagnosis,
    Sample,
    SchemaMetadata,
    Specimen,
)
from argo_clinical.config.constants import (
    OPTIONAL_TUMOUR_SPECIMEN_FIELDS,
    TUMOUR_ONLY_SPECIMEN_FIELDS,
)
from argo_clinical.database.repositories import ConfigRepository
from argo_clinical.database.schema import initialize_database
from argo_clinical.dictionary.client import InMemorySchemaProvider
from argo_clinical.dictionary.entities import SchemasDictionary
from argo_clinical.dictionary.manager import DictionaryManager

DICTIONARY_NAME = "ARGO Clinical Submission"
PROGRAM = "TEST-CA"

TREATMENT_TYPES = [
    "Chemotherapy",
    "Radiation therapy",
    "Hormonal therapy",
    "Immunotherapy",
    "Surgery",
    "Ablation",
    "No treatment",
]


def _field(
    name,
    value_type="string",
    required=False,
    code_list=None,
    is_array=False,
    core=False,
    range_=None,
):
    definition = {"name": name, "valueType": value_type, "description": ""}
    restrictions = {}
    if required:
        restrictions["required"] = True
    if code_list:
        restrictions["codeList"] = code_list
    if range_:
        restrictions["range"] = range_
    if restrictions:
        definition["restrictions"] = restrictions
    if is_array:
        definition["isArray"] = True
    if core:
        definition["meta"] = {"core": True}
    return definition


def _ids(*names):
    fields = [_field("program_id", required=True), _field("submitter_donor_id", required=True)]
    for name in names:
        fields.append(_field(name, required=True))
    return fields


def _drug_therapy(name):
    return {
        "name": name,
        "fields": _ids("submitter_treatment_id", "drug_rxnormcui") + [_field("drug_name")],
    }


def base_dictionary_data():
    """Wire-format dictionary covering every entity the services read."""
    return {
        "name": DICTIONARY_NAME,
        "version": "1.0",
        "schemas": [
            {
                "name": "sample_registration",
                "fields": [
                    _field("program_id", required=True),
                    _field("submitter_donor_id", required=True),
                    _field("gender", required=True, code_list=["Male", "Female", "Other"]),
                    _field("submitter_specimen_id", required=True),
                    _field("specimen_tissue_source", required=True),
                    _field(
                        "tumour_normal_designation", required=True, code_list=["Normal", "Tumour"]
                    ),
                    _field("specimen_type", required=True),
                    _field("submitter_sample_id", required=True),
                    _field("sample_type", required=True),
                ],
            },
            {
                "name": "donor",
                "fields": [
                    _field("program_id", required=True),
                    _field("submitter_donor_id", required=True),
                    _field(
                        "vital_status", required=True, code_list=["Alive", "Deceased"], core=True
                    ),
                    _field("survival_time", value_type="integer"),
                    _field("cause_of_death"),
                    _field("lost_to_followup_after_clinical_event_id"),
                ],
            },
            {
                "name": "specimen",
                "fields": _ids("submitter_specimen_id")
                + [
                    _field("submitter_primary_diagnosis_id"),
                    _field("specimen_acquisition_interval", value_type="integer", core=True),
                ]
                + [_field(name) for name in TUMOUR_ONLY_SPECIMEN_FIELDS]
                + [_field(name) for name in OPTIONAL_TUMOUR_SPECIMEN_FIELDS],
            },
            {
                "name": "primary_diagnosis",
                "fields": _ids("submitter_primary_diagnosis_id")
                + [
                    _field("age_at_diagnosis", value_type="integer", core=True),
                    _field("cancer_type_code"),
                    _field("clinical_tumour_staging_system"),
                ],
            },
            {
                "name": "treatment",
                "fields": _ids("submitter_treatment_id")
                + [
                    _field("submitter_primary_diagnosis_id"),
                    _field(
                        "treatment_type",
                        required=True,
                        code_list=TREATMENT_TYPES,
                        is_array=True,
                        core=True,
                    ),
                    _field("treatment_start_interval", value_type="integer"),
                    _field("treatment_duration", value_type="integer"),
                ],
            },
            _drug_therapy("chemotherapy"),
            _drug_therapy("hormone_therapy"),
            _drug_therapy("immunotherapy"),
            {
                "name": "radiation",
                "fields": _ids("submitter_treatment_id", "radiation_therapy_modality"),
            },
            {
                "name": "surgery",
                "fields": _ids("submitter_treatment_id")
                + [
                    _field("submitter_specimen_id"),
                    _field("procedure_type"),
                    _field("surgery_type"),
                ],
            },
            {
                "name": "follow_up",
                "fields": _ids("submitter_follow_up_id")
                + [
                    _field("submitter_primary_diagnosis_id"),
                    _field("submitter_treatment_id"),
                    _field("interval_of_followup", value_type="integer", core=True),
                ],
            },
            {
                "name": "biomarker",
                "fields": _ids()
                + [
                    _field("submitter_specimen_id"),
                    _field("submitter_primary_diagnosis_id"),
                    _field("submitter_treatment_id"),
                    _field("submitter_follow_up_id"),
                    _field("test_interval", value_type="integer"),
                    _field("ca125", value_type="integer"),
                ],
            },
        ],
    }


def _schema(data, name):
    return next(s for s in data["schemas"] if s["name"] == name)


def _schema_field(data, entity, field_name):
    return next(f for f in _schema(data, entity)["fields"] if f["name"] == field_name)


def upgraded_dictionary_data():
    """1.0 plus a required core specimen field and a tighter diagnosis age range."""
    data = copy.deepcopy(base_dictionary_data())
    data["version"] = "2.0"
    _schema(data, "specimen")["fields"].append(
        _field("specimen_anatomic_location", required=True, core=True)
    )
    age = _schema_field(data, "primary_diagnosis", "age_at_diagnosis")
    age["restrictions"] = {"range": {"min": 18}}
    return data


def broken_dictionary_data():
    """2.0 without the Deceased vital status the validators depend on."""
    data = copy.deepcopy(upgraded_dictionary_data())
    data["version"] = "3.0"
    vital_status = _schema_field(data, "donor", "vital_status")
    vital_status["restrictions"]["codeList"] = ["Alive"]
    return data


@pytest.fixture
def base_dictionary():
    return SchemasDictionary.from_dict(base_dictionary_data())


@pytest.fixture
def upgraded_dictionary():
    return SchemasDictionary.from_dict(upgraded_dictionary_data())


@pytest.fixture
def broken_dictionary():
    return SchemasDictionary.from_dict(broken_dictionary_data())


@pytest.fixture
def schema_provider(base_dictionary, upgraded_dictionary, broken_dictionary):
    return InMemorySchemaProvider([base_dictionary, upgraded_dictionary, broken_dictionary])


@pytest.fixture
def db():
    """In-memory clinical store with all tables created."""
    conn = duckdb.connect(":memory:")
    initialize_database(conn)
    yield conn
    conn.close()


@pytest.fixture
def dictionary_manager(db, schema_provider):
    """Dictionary manager with 1.0 loaded as the current version."""
    manager = DictionaryManager(schema_provider, ConfigRepository(db), DICTIONARY_NAME)
    manager.load_and_save_version("1.0")
    return manager


@pytest.fixture
def make_donor():
    """Build a donor with a normal and a tumour specimen (one sample each)."""

    def _make(
        submitter_id="DO-1",
        program_id=PROGRAM,
        schema_version="1.0",
        clinical_info=None,
        specimen_info=None,
        primary_diagnosis_info=None,
        completion_stats=None,
    ):
        donor = Donor(
            submitter_id=submitter_id,
            program_id=program_id,
            gender="Female",
            schema_metadata=SchemaMetadata(
                last_valid_schema_version=schema_version,
                original_schema_version=schema_version,
            ),
            specimens=[
                Specimen(
                    submitter_id=f"{submitter_id}-SP-N",
                    specimen_tissue_source="Blood",
                    tumour_normal_designation="Normal",
                    specimen_type="Normal",
                    samples=[Sample(submitter_id=f"{submitter_id}-SA-N", sample_type="DNA")],
                    clinical_info=dict(specimen_info or {}),
                ),
                Specimen(
                    submitter_id=f"{submitter_id}-SP-T",
                    specimen_tissue_source="Solid tissue",
                    tumour_normal_designation="Tumour",
                    specimen_type="Primary tumour",
                    samples=[Sample(submitter_id=f"{submitter_id}-SA-T", sample_type="DNA")],
                ),
            ],
            clinical_info=dict(clinical_info or {}),
            completion_stats=completion_stats,
        )
        if primary_diagnosis_info:
            donor.primary_diagnosis = PrimaryDiagnosis(clinical_info=dict(primary_diagnosis_info))
        return donor

    return _make


@pytest.fixture
def complete_stats():
    """Stats of a donor whose core entities are all complete."""
    return CompletionStats(
        core_completion={
            "donor": 1.0,
            "specimens": 1.0,
            "primaryDiagnosis": 1.0,
            "followUps": 1.0,
            "treatments": 1.0,
        },
        core_completion_percentage=1.0,
        core_completion_date="2024-01-01",
    )


@pytest.fixture
def registration_row():
    """Build one raw sample registration row."""

    def _row(donor="DO-1", specimen="SP-1", sample="SA-1", **overrides):
        row = {
            "program_id": PROGRAM,
            "submitter_donor_id": donor,
            "gender": "Female",
            "submitter_specimen_id": specimen,
            "specimen_tissue_source": "Blood",
            "tumour_normal_designation": "Normal",
            "specimen_type": "Normal",
            "submitter_sample_id": sample,
            "sample_type": "DNA",
        }
        row.update(overrides)
        return row

    return _row
