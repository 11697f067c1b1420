"""Donor aggregate and its nested clinical entities.

A donor is stored as one document. ``to_dict``/``from_dict`` define that
document shape; clinical info payloads are open field maps and are copied
through as-is.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

ClinicalInfo = Dict[str, Any]


@dataclass
class Sample:
    submitter_id: str
    sample_type: str
    sample_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Sample":
        return cls(
            submitter_id=data["submitter_id"],
            sample_type=data.get("sample_type", ""),
            sample_id=data.get("sample_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "submitter_id": self.submitter_id,
            "sample_type": self.sample_type,
            "sample_id": self.sample_id,
        }


@dataclass
class Specimen:
    submitter_id: str
    specimen_tissue_source: str = ""
    tumour_normal_designation: str = ""
    specimen_type: str = ""
    samples: List[Sample] = field(default_factory=list)
    clinical_info: ClinicalInfo = field(default_factory=dict)
    specimen_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Specimen":
        return cls(
            submitter_id=data["submitter_id"],
            specimen_tissue_source=data.get("specimen_tissue_source", ""),
            tumour_normal_designation=data.get("tumour_normal_designation", ""),
            specimen_type=data.get("specimen_type", ""),
            samples=[Sample.from_dict(s) for s in data.get("samples", [])],
            clinical_info=dict(data.get("clinical_info") or {}),
            specimen_id=data.get("specimen_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "submitter_id": self.submitter_id,
            "specimen_tissue_source": self.specimen_tissue_source,
            "tumour_normal_designation": self.tumour_normal_designation,
            "specimen_type": self.specimen_type,
            "samples": [s.to_dict() for s in self.samples],
            "clinical_info": dict(self.clinical_info),
            "specimen_id": self.specimen_id,
        }


@dataclass
class Therapy:
    therapy_type: str
    clinical_info: ClinicalInfo = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Therapy":
        return cls(
            therapy_type=data["therapy_type"],
            clinical_info=dict(data.get("clinical_info") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"therapy_type": self.therapy_type, "clinical_info": dict(self.clinical_info)}


@dataclass
class Treatment:
    clinical_info: ClinicalInfo = field(default_factory=dict)
    therapies: List[Therapy] = field(default_factory=list)
    treatment_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Treatment":
        return cls(
            clinical_info=dict(data.get("clinical_info") or {}),
            therapies=[Therapy.from_dict(t) for t in data.get("therapies", [])],
            treatment_id=data.get("treatment_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clinical_info": dict(self.clinical_info),
            "therapies": [t.to_dict() for t in self.therapies],
            "treatment_id": self.treatment_id,
        }


@dataclass
class FollowUp:
    clinical_info: ClinicalInfo = field(default_factory=dict)
    follow_up_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FollowUp":
        return cls(
            clinical_info=dict(data.get("clinical_info") or {}),
            follow_up_id=data.get("follow_up_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"clinical_info": dict(self.clinical_info), "follow_up_id": self.follow_up_id}


@dataclass
class Biomarker:
    """Test result that can point at any of the donor's clinical events."""

    clinical_info: ClinicalInfo = field(default_factory=dict)
    biomarker_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Biomarker":
        return cls(
            clinical_info=dict(data.get("clinical_info") or {}),
            biomarker_id=data.get("biomarker_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"clinical_info": dict(self.clinical_info), "biomarker_id": self.biomarker_id}


@dataclass
class PrimaryDiagnosis:
    clinical_info: ClinicalInfo = field(default_factory=dict)
    primary_diagnosis_id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrimaryDiagnosis":
        return cls(
            clinical_info=dict(data.get("clinical_info") or {}),
            primary_diagnosis_id=data.get("primary_diagnosis_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clinical_info": dict(self.clinical_info),
            "primary_diagnosis_id": self.primary_diagnosis_id,
        }


@dataclass
class CompletionStats:
    """Core completeness fractions keyed by core stat name."""

    core_completion: Dict[str, float] = field(default_factory=dict)
    overridden_core_completion: List[str] = field(default_factory=list)
    core_completion_percentage: float = 0.0
    core_completion_date: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompletionStats":
        return cls(
            core_completion=dict(data.get("core_completion") or {}),
            overridden_core_completion=list(data.get("overridden_core_completion") or []),
            core_completion_percentage=data.get("core_completion_percentage", 0.0),
            core_completion_date=data.get("core_completion_date"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "core_completion": dict(self.core_completion),
            "overridden_core_completion": list(self.overridden_core_completion),
            "core_completion_percentage": self.core_completion_percentage,
            "core_completion_date": self.core_completion_date,
        }


@dataclass
class SchemaMetadata:
    """Which dictionary version the donor's clinical info was validated against."""

    last_valid_schema_version: str
    original_schema_version: str
    is_valid: bool = True
    last_migration_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaMetadata":
        return cls(
            last_valid_schema_version=data["last_valid_schema_version"],
            original_schema_version=data["original_schema_version"],
            is_valid=bool(data.get("is_valid", True)),
            last_migration_id=data.get("last_migration_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_valid_schema_version": self.last_valid_schema_version,
            "original_schema_version": self.original_schema_version,
            "is_valid": self.is_valid,
            "last_migration_id": self.last_migration_id,
        }


@dataclass
class Donor:
    """Root clinical aggregate for one research subject."""

    submitter_id: str
    program_id: str
    gender: str
    schema_metadata: SchemaMetadata
    donor_id: Optional[int] = None
    specimens: List[Specimen] = field(default_factory=list)
    clinical_info: ClinicalInfo = field(default_factory=dict)
    primary_diagnosis: Optional[PrimaryDiagnosis] = None
    follow_ups: List[FollowUp] = field(default_factory=list)
    treatments: List[Treatment] = field(default_factory=list)
    biomarkers: List[Biomarker] = field(default_factory=list)
    completion_stats: Optional[CompletionStats] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def get_specimen(self, submitter_id: str) -> Optional[Specimen]:
        for specimen in self.specimens:
            if specimen.submitter_id == submitter_id:
                return specimen
        return None

    def touch(self) -> None:
        now = datetime.now().isoformat()
        if self.created_at is None:
            self.created_at = now
        self.updated_at = now

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Donor":
        primary_diagnosis = data.get("primary_diagnosis")
        completion_stats = data.get("completion_stats")
        return cls(
            submitter_id=data["submitter_id"],
            program_id=data["program_id"],
            gender=data.get("gender", ""),
            schema_metadata=SchemaMetadata.from_dict(data["schema_metadata"]),
            donor_id=data.get("donor_id"),
            specimens=[Specimen.from_dict(s) for s in data.get("specimens", [])],
            clinical_info=dict(data.get("clinical_info") or {}),
            primary_diagnosis=(
                PrimaryDiagnosis.from_dict(primary_diagnosis) if primary_diagnosis else None
            ),
            follow_ups=[FollowUp.from_dict(f) for f in data.get("follow_ups", [])],
            treatments=[Treatment.from_dict(t) for t in data.get("treatments", [])],
            biomarkers=[Biomarker.from_dict(b) for b in data.get("biomarkers", [])],
            completion_stats=(
                CompletionStats.from_dict(completion_stats) if completion_stats else None
            ),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "donor_id": self.donor_id,
            "submitter_id": self.submitter_id,
            "program_id": self.program_id,
            "gender": self.gender,
            "schema_metadata": self.schema_metadata.to_dict(),
            "specimens": [s.to_dict() for s in self.specimens],
            "clinical_info": dict(self.clinical_info),
            "primary_diagnosis": (
                self.primary_diagnosis.to_dict() if self.primary_diagnosis else None
            ),
            "follow_ups": [f.to_dict() for f in self.follow_ups],
            "treatments": [t.to_dict() for t in self.treatments],
            "biomarkers": [b.to_dict() for b in self.biomarkers],
            "completion_stats": (
                self.completion_stats.to_dict() if self.completion_stats else None
            ),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
