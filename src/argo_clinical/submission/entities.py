"""Submission-side types: validation results, staged submissions and registrations."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

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

# A cleaned clinical row: converted field values plus "index" (row number)
SubmittedClinicalRecord = Dict[str, Any]
# entity type -> rows of that type
SubmittedClinicalRecordsMap = Dict[str, List[SubmittedClinicalRecord]]
# submitter donor id -> rows grouped by entity type
ClinicalSubmissionRecordsByDonorIdMap = Dict[str, SubmittedClinicalRecordsMap]


class DataValidationErrors(str, Enum):
    """Cross-record and referential error tags."""

    DELETING_THERAPY = "DELETING_THERAPY"
    MUTATING_EXISTING_DATA = "MUTATING_EXISTING_DATA"
    SAMPLE_BELONGS_TO_OTHER_SPECIMEN = "SAMPLE_BELONGS_TO_OTHER_SPECIMEN"
    SPECIMEN_BELONGS_TO_OTHER_DONOR = "SPECIMEN_BELONGS_TO_OTHER_DONOR"
    NEW_SPECIMEN_ATTR_CONFLICT = "NEW_SPECIMEN_ATTR_CONFLICT"
    NEW_SAMPLE_ATTR_CONFLICT = "NEW_SAMPLE_ATTR_CONFLICT"
    NEW_DONOR_CONFLICT = "NEW_DONOR_CONFLICT"
    INVALID_PROGRAM_ID = "INVALID_PROGRAM_ID"
    NEW_SPECIMEN_ID_CONFLICT = "NEW_SPECIMEN_ID_CONFLICT"
    NEW_SAMPLE_ID_CONFLICT = "NEW_SAMPLE_ID_CONFLICT"
    ID_NOT_REGISTERED = "ID_NOT_REGISTERED"
    CONFLICTING_TIME_INTERVAL = "CONFLICTING_TIME_INTERVAL"
    NOT_ENOUGH_INFO_TO_VALIDATE = "NOT_ENOUGH_INFO_TO_VALIDATE"
    RELATED_ENTITY_MISSING_OR_CONFLICTING = "RELATED_ENTITY_MISSING_OR_CONFLICTING"
    FOUND_IDENTICAL_IDS = "FOUND_IDENTICAL_IDS"
    MISSING_THERAPY_DATA = "MISSING_THERAPY_DATA"
    INCOMPATIBLE_PARENT_TREATMENT_TYPE = "INCOMPATIBLE_PARENT_TREATMENT_TYPE"
    TREATMENT_ID_NOT_FOUND = "TREATMENT_ID_NOT_FOUND"
    CLINICAL_ENTITY_BELONGS_TO_OTHER_DONOR = "CLINICAL_ENTITY_BELONGS_TO_OTHER_DONOR"
    MISSING_VARIABLE_REQUIREMENT = "MISSING_VARIABLE_REQUIREMENT"
    FORBIDDEN_PROVIDED_VARIABLE_REQUIREMENT = "FORBIDDEN_PROVIDED_VARIABLE_REQUIREMENT"
    TNM_STAGING_FIELDS_MISSING = "TNM_STAGING_FIELDS_MISSING"
    DUPLICATE_SUBMITTER_SPECIMEN_ID_IN_SURGERY = "DUPLICATE_SUBMITTER_SPECIMEN_ID_IN_SURGERY"
    INVALID_LOST_TO_FOLLOW_UP_ID = "INVALID_LOST_TO_FOLLOW_UP_ID"
    INVALID_SUBMISSION_AFTER_LOST_TO_FOLLOW_UP = "INVALID_SUBMISSION_AFTER_LOST_TO_FOLLOW_UP"


class ModificationType(str, Enum):
    """Classification of one validated clinical row."""

    NEW = "new"
    UPDATED = "updated"
    NO_UPDATE = "noUpdate"
    ERRORS_FOUND = "errorsFound"


class SubmissionState(str, Enum):
    OPEN = "OPEN"
    VALID = "VALID"
    INVALID = "INVALID"
    INVALID_BY_MIGRATION = "INVALID_BY_MIGRATION"
    PENDING_APPROVAL = "PENDING_APPROVAL"


@dataclass
class SubmissionValidationError:
    """A schema or cross-record problem tied to one submitted row.

    ``type`` is either a DataValidationErrors value or a schema error type.
    """

    type: str
    field_name: str
    index: int
    message: str
    info: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "fieldName": self.field_name,
            "index": self.index,
            "info": self.info,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubmissionValidationError":
        return cls(
            type=data["type"],
            field_name=data["fieldName"],
            index=data["index"],
            message=data.get("message", ""),
            info=dict(data.get("info") or {}),
        )


@dataclass
class SubmissionValidationUpdate:
    """One changed field of an UPDATED row, with values rendered as strings."""

    field_name: str
    index: int
    donor_submitter_id: str
    new_value: str
    old_value: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fieldName": self.field_name,
            "index": self.index,
            "info": {
                "donorSubmitterId": self.donor_submitter_id,
                "newValue": self.new_value,
                "oldValue": self.old_value,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubmissionValidationUpdate":
        info = data.get("info") or {}
        return cls(
            field_name=data["fieldName"],
            index=data["index"],
            donor_submitter_id=info.get("donorSubmitterId", ""),
            new_value=info.get("newValue", ""),
            old_value=info.get("oldValue", ""),
        )


@dataclass
class RecordValidationResult:
    status: ModificationType
    index: int
    errors: List[SubmissionValidationError] = field(default_factory=list)
    updates: List[SubmissionValidationUpdate] = field(default_factory=list)
    warnings: List[SubmissionValidationError] = field(default_factory=list)


@dataclass
class ClinicalEntityValidationResult:
    """Aggregated validation outcome for all rows of one entity type."""

    stats: Dict[str, List[int]] = field(
        default_factory=lambda: {m.value: [] for m in ModificationType}
    )
    data_errors: List[SubmissionValidationError] = field(default_factory=list)
    data_updates: List[SubmissionValidationUpdate] = field(default_factory=list)
    data_warnings: List[SubmissionValidationError] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.data_errors)


ClinicalTypeValidateResult = Dict[str, ClinicalEntityValidationResult]


@dataclass
class ValidationResult:
    """Errors produced by a registration validation run."""

    errors: List[SubmissionValidationError] = field(default_factory=list)


# =============================================================================
# Registration
# =============================================================================


@dataclass
class CreateRegistrationRecord:
    """A schema-clean sample registration row."""

    program_id: str
    donor_submitter_id: str
    gender: str
    specimen_submitter_id: str
    specimen_tissue_source: str
    tumour_normal_designation: str
    specimen_type: str
    sample_submitter_id: str
    sample_type: str

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "CreateRegistrationRecord":
        return cls(
            program_id=record.get(PROGRAM_ID) or "",
            donor_submitter_id=record.get(SUBMITTER_DONOR_ID) or "",
            gender=record.get(GENDER) or "",
            specimen_submitter_id=record.get(SUBMITTER_SPECIMEN_ID) or "",
            specimen_tissue_source=record.get(SPECIMEN_TISSUE_SOURCE) or "",
            tumour_normal_designation=record.get(TUMOUR_NORMAL_DESIGNATION) or "",
            specimen_type=record.get(SPECIMEN_TYPE) or "",
            sample_submitter_id=record.get(SUBMITTER_SAMPLE_ID) or "",
            sample_type=record.get(SAMPLE_TYPE) or "",
        )

    def to_record(self) -> Dict[str, str]:
        return {
            PROGRAM_ID: self.program_id,
            SUBMITTER_DONOR_ID: self.donor_submitter_id,
            GENDER: self.gender,
            SUBMITTER_SPECIMEN_ID: self.specimen_submitter_id,
            SPECIMEN_TISSUE_SOURCE: self.specimen_tissue_source,
            TUMOUR_NORMAL_DESIGNATION: self.tumour_normal_designation,
            SPECIMEN_TYPE: self.specimen_type,
            SUBMITTER_SAMPLE_ID: self.sample_submitter_id,
            SAMPLE_TYPE: self.sample_type,
        }


# submitter id -> row numbers, in first-seen order
RegistrationStat = Dict[str, List[int]]


@dataclass
class RegistrationStats:
    new_donor_ids: RegistrationStat = field(default_factory=dict)
    new_specimen_ids: RegistrationStat = field(default_factory=dict)
    new_sample_ids: RegistrationStat = field(default_factory=dict)
    already_registered: RegistrationStat = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        def as_list(stat: RegistrationStat) -> List[Dict[str, Any]]:
            return [{"submitterId": k, "rowNumbers": list(v)} for k, v in stat.items()]

        return {
            "newDonorIds": as_list(self.new_donor_ids),
            "newSpecimenIds": as_list(self.new_specimen_ids),
            "newSampleIds": as_list(self.new_sample_ids),
            "alreadyRegistered": as_list(self.already_registered),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistrationStats":
        def as_map(entries: List[Dict[str, Any]]) -> RegistrationStat:
            return {e["submitterId"]: list(e["rowNumbers"]) for e in entries or []}

        return cls(
            new_donor_ids=as_map(data.get("newDonorIds")),
            new_specimen_ids=as_map(data.get("newSpecimenIds")),
            new_sample_ids=as_map(data.get("newSampleIds")),
            already_registered=as_map(data.get("alreadyRegistered")),
        )


@dataclass
class ActiveRegistration:
    """A validated registration batch waiting to be committed."""

    program_id: str
    creator: str
    batch_name: str
    schema_version: str
    records: List[CreateRegistrationRecord] = field(default_factory=list)
    stats: RegistrationStats = field(default_factory=RegistrationStats)
    id: Optional[str] = None
    version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "program_id": self.program_id,
            "creator": self.creator,
            "batch_name": self.batch_name,
            "schema_version": self.schema_version,
            "records": [r.to_record() for r in self.records],
            "stats": self.stats.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActiveRegistration":
        return cls(
            id=data.get("id"),
            version=data.get("version"),
            program_id=data["program_id"],
            creator=data.get("creator", ""),
            batch_name=data.get("batch_name", ""),
            schema_version=data.get("schema_version", ""),
            records=[CreateRegistrationRecord.from_record(r) for r in data.get("records", [])],
            stats=RegistrationStats.from_dict(data.get("stats") or {}),
        )


# =============================================================================
# Clinical submission
# =============================================================================


@dataclass
class SavedClinicalEntity:
    """Staged rows of one entity type plus their latest validation output."""

    batch_name: str
    creator: str
    records: List[Dict[str, Any]] = field(default_factory=list)
    schema_errors: List[SubmissionValidationError] = field(default_factory=list)
    data_errors: List[SubmissionValidationError] = field(default_factory=list)
    data_warnings: List[SubmissionValidationError] = field(default_factory=list)
    data_updates: List[SubmissionValidationUpdate] = field(default_factory=list)
    stats: Dict[str, List[int]] = field(
        default_factory=lambda: {m.value: [] for m in ModificationType}
    )
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_name": self.batch_name,
            "creator": self.creator,
            "records": [dict(r) for r in self.records],
            "schema_errors": [e.to_dict() for e in self.schema_errors],
            "data_errors": [e.to_dict() for e in self.data_errors],
            "data_warnings": [e.to_dict() for e in self.data_warnings],
            "data_updates": [u.to_dict() for u in self.data_updates],
            "stats": {k: list(v) for k, v in self.stats.items()},
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SavedClinicalEntity":
        return cls(
            batch_name=data.get("batch_name", ""),
            creator=data.get("creator", ""),
            records=[dict(r) for r in data.get("records", [])],
            schema_errors=[
                SubmissionValidationError.from_dict(e) for e in data.get("schema_errors", [])
            ],
            data_errors=[
                SubmissionValidationError.from_dict(e) for e in data.get("data_errors", [])
            ],
            data_warnings=[
                SubmissionValidationError.from_dict(e) for e in data.get("data_warnings", [])
            ],
            data_updates=[
                SubmissionValidationUpdate.from_dict(u) for u in data.get("data_updates", [])
            ],
            stats={k: list(v) for k, v in (data.get("stats") or {}).items()}
            or {m.value: [] for m in ModificationType},
            created_at=data.get("created_at"),
        )


@dataclass
class ActiveClinicalSubmission:
    """Program-scoped staging area for clinical records not yet committed."""

    program_id: str
    state: SubmissionState
    updated_by: str
    clinical_entities: Dict[str, SavedClinicalEntity] = field(default_factory=dict)
    id: Optional[str] = None
    version: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "program_id": self.program_id,
            "state": self.state.value,
            "updated_by": self.updated_by,
            "updated_at": self.updated_at,
            "clinical_entities": {k: v.to_dict() for k, v in self.clinical_entities.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActiveClinicalSubmission":
        return cls(
            id=data.get("id"),
            version=data.get("version"),
            program_id=data["program_id"],
            state=SubmissionState(data["state"]),
            updated_by=data.get("updated_by", ""),
            updated_at=data.get("updated_at"),
            clinical_entities={
                k: SavedClinicalEntity.from_dict(v)
                for k, v in (data.get("clinical_entities") or {}).items()
            },
        )


# =============================================================================
# Service results
# =============================================================================


@dataclass
class CreateRegistrationResult:
    registration: Optional[ActiveRegistration]
    successful: bool
    errors: List[SubmissionValidationError] = field(default_factory=list)


@dataclass
class CreateSubmissionResult:
    """Outcome of uploading or re-checking clinical files.

    ``schema_errors`` maps entity type to the rows' schema errors; entity types
    listed there were not staged.
    """

    submission: Optional[ActiveClinicalSubmission]
    successful: bool
    schema_errors: Dict[str, List[SubmissionValidationError]] = field(default_factory=dict)
    batch_errors: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ValidateSubmissionResult:
    submission: ActiveClinicalSubmission
    successful: bool
