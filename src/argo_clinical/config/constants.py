"""Constants shared by validation, merge, stats and migration code.

Entity and field names listed here are the ones the code reads directly.
They are not a full copy of the data dictionary.
"""

from typing import Dict, List

# =============================================================================
# Clinical entity (schema) names
# =============================================================================

REGISTRATION = "sample_registration"
DONOR = "donor"
SPECIMEN = "specimen"
PRIMARY_DIAGNOSIS = "primary_diagnosis"
TREATMENT = "treatment"
FOLLOW_UP = "follow_up"
CHEMOTHERAPY = "chemotherapy"
RADIATION = "radiation"
HORMONE_THERAPY = "hormone_therapy"
IMMUNOTHERAPY = "immunotherapy"
SURGERY = "surgery"
BIOMARKER = "biomarker"

THERAPY_ENTITIES: List[str] = [
    CHEMOTHERAPY,
    RADIATION,
    HORMONE_THERAPY,
    IMMUNOTHERAPY,
    SURGERY,
]

CLINICAL_ENTITIES: List[str] = [
    DONOR,
    SPECIMEN,
    PRIMARY_DIAGNOSIS,
    TREATMENT,
    *THERAPY_ENTITIES,
    FOLLOW_UP,
    BIOMARKER,
]

# Order in which submitted records are folded into a donor.
MERGE_ORDER: List[str] = [
    DONOR,
    PRIMARY_DIAGNOSIS,
    SPECIMEN,
    TREATMENT,
    *THERAPY_ENTITIES,
    FOLLOW_UP,
    BIOMARKER,
]

# =============================================================================
# Field names
# =============================================================================

PROGRAM_ID = "program_id"
SUBMITTER_DONOR_ID = "submitter_donor_id"
SUBMITTER_SPECIMEN_ID = "submitter_specimen_id"
SUBMITTER_SAMPLE_ID = "submitter_sample_id"
SUBMITTER_PRIMARY_DIAGNOSIS_ID = "submitter_primary_diagnosis_id"
SUBMITTER_TREATMENT_ID = "submitter_treatment_id"
SUBMITTER_FOLLOW_UP_ID = "submitter_follow_up_id"

GENDER = "gender"
SPECIMEN_TISSUE_SOURCE = "specimen_tissue_source"
TUMOUR_NORMAL_DESIGNATION = "tumour_normal_designation"
SPECIMEN_TYPE = "specimen_type"
SAMPLE_TYPE = "sample_type"

VITAL_STATUS = "vital_status"
SURVIVAL_TIME = "survival_time"
SPECIMEN_ACQUISITION_INTERVAL = "specimen_acquisition_interval"
TREATMENT_TYPE = "treatment_type"
DRUG_RXNORMCUI = "drug_rxnormcui"
RADIATION_THERAPY_MODALITY = "radiation_therapy_modality"
SURGERY_TYPE = "surgery_type"
TEST_INTERVAL = "test_interval"

CLINICAL_TUMOUR_STAGING_SYSTEM = "clinical_tumour_staging_system"
PATHOLOGICAL_TUMOUR_STAGING_SYSTEM = "pathological_tumour_staging_system"

LOST_TO_FOLLOWUP_AFTER_CLINICAL_EVENT_ID = "lost_to_followup_after_clinical_event_id"
INTERVAL_OF_FOLLOWUP = "interval_of_followup"
TREATMENT_START_INTERVAL = "treatment_start_interval"
TREATMENT_DURATION = "treatment_duration"

# Pseudo-field carrying the row number of a submitted record
RECORD_INDEX = "index"

# Natural key of each clinical entity within a donor
CLINICAL_UNIQUE_IDENTIFIERS: Dict[str, List[str]] = {
    DONOR: [SUBMITTER_DONOR_ID],
    SPECIMEN: [SUBMITTER_SPECIMEN_ID],
    PRIMARY_DIAGNOSIS: [SUBMITTER_PRIMARY_DIAGNOSIS_ID],
    TREATMENT: [SUBMITTER_TREATMENT_ID],
    FOLLOW_UP: [SUBMITTER_FOLLOW_UP_ID],
    CHEMOTHERAPY: [SUBMITTER_DONOR_ID, SUBMITTER_TREATMENT_ID, DRUG_RXNORMCUI],
    HORMONE_THERAPY: [SUBMITTER_DONOR_ID, SUBMITTER_TREATMENT_ID, DRUG_RXNORMCUI],
    IMMUNOTHERAPY: [SUBMITTER_DONOR_ID, SUBMITTER_TREATMENT_ID, DRUG_RXNORMCUI],
    RADIATION: [SUBMITTER_DONOR_ID, SUBMITTER_TREATMENT_ID, RADIATION_THERAPY_MODALITY],
    SURGERY: [SUBMITTER_DONOR_ID, SUBMITTER_TREATMENT_ID, SUBMITTER_SPECIMEN_ID],
    BIOMARKER: [
        SUBMITTER_DONOR_ID,
        SUBMITTER_SPECIMEN_ID,
        SUBMITTER_PRIMARY_DIAGNOSIS_ID,
        SUBMITTER_TREATMENT_ID,
        SUBMITTER_FOLLOW_UP_ID,
        TEST_INTERVAL,
    ],
}

# Fields the validators read; a new dictionary must keep them
ENTITY_CODE_FIELDS: Dict[str, List[str]] = {
    DONOR: [SUBMITTER_DONOR_ID, VITAL_STATUS, SURVIVAL_TIME],
    SPECIMEN: [SUBMITTER_DONOR_ID, SUBMITTER_SPECIMEN_ID, SPECIMEN_ACQUISITION_INTERVAL],
    PRIMARY_DIAGNOSIS: [SUBMITTER_DONOR_ID, SUBMITTER_PRIMARY_DIAGNOSIS_ID],
    TREATMENT: [SUBMITTER_DONOR_ID, SUBMITTER_TREATMENT_ID, TREATMENT_TYPE],
    FOLLOW_UP: [SUBMITTER_DONOR_ID, SUBMITTER_FOLLOW_UP_ID],
    CHEMOTHERAPY: [SUBMITTER_DONOR_ID, SUBMITTER_TREATMENT_ID, DRUG_RXNORMCUI],
    HORMONE_THERAPY: [SUBMITTER_DONOR_ID, SUBMITTER_TREATMENT_ID, DRUG_RXNORMCUI],
    IMMUNOTHERAPY: [SUBMITTER_DONOR_ID, SUBMITTER_TREATMENT_ID, DRUG_RXNORMCUI],
    RADIATION: [SUBMITTER_DONOR_ID, SUBMITTER_TREATMENT_ID, RADIATION_THERAPY_MODALITY],
    SURGERY: [SUBMITTER_DONOR_ID, SUBMITTER_TREATMENT_ID],
}

# Specimen fields required for tumour specimens and forbidden for normal ones
TUMOUR_ONLY_SPECIMEN_FIELDS: List[str] = [
    "pathological_tumour_staging_system",
    "pathological_stage_group",
    "tumour_grading_system",
    "tumour_grade",
    "percent_tumour_cells",
    "percent_proliferating_cells",
    "percent_stromal_cells",
    "percent_necrosis",
    "percent_inflammatory_tissue",
    "tumour_histological_type",
    "reference_pathology_confirmed",
]

OPTIONAL_TUMOUR_SPECIMEN_FIELDS: List[str] = [
    "pathological_t_category",
    "pathological_n_category",
    "pathological_m_category",
]

# =============================================================================
# Code list values the validators depend on
# =============================================================================

DECEASED = "Deceased"
TUMOUR = "Tumour"
NORMAL = "Normal"

TREATMENT_TYPE_BY_THERAPY: Dict[str, str] = {
    CHEMOTHERAPY: "Chemotherapy",
    RADIATION: "Radiation therapy",
    HORMONE_THERAPY: "Hormonal therapy",
    IMMUNOTHERAPY: "Immunotherapy",
    SURGERY: "Surgery",
}

KNOWN_FIELD_CODE_LISTS: Dict[str, Dict[str, List[str]]] = {
    DONOR: {VITAL_STATUS: [DECEASED]},
    TREATMENT: {TREATMENT_TYPE: list(TREATMENT_TYPE_BY_THERAPY.values())},
}

# Values a program may be granted in place of a core field's regular values
PROGRAM_EXCEPTION_VALUES: List[str] = ["Unknown", "Missing", "Not applicable"]

# =============================================================================
# Completion stats
# =============================================================================

CORE_COMPLETION_FIELD_BY_ENTITY: Dict[str, str] = {
    DONOR: "donor",
    SPECIMEN: "specimens",
    PRIMARY_DIAGNOSIS: "primaryDiagnosis",
    FOLLOW_UP: "followUps",
    TREATMENT: "treatments",
}

CORE_ENTITIES: List[str] = list(CORE_COMPLETION_FIELD_BY_ENTITY.keys())


def get_entity_submitter_id_field(entity_name: str) -> str:
    """Return the submitter id column name for an entity."""
    return f"submitter_{entity_name}_id"


def is_therapy_entity(entity_name: str) -> bool:
    """Check whether an entity name is one of the therapy types."""
    return entity_name in TREATMENT_TYPE_BY_THERAPY
