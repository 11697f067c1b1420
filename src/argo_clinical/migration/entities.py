"""Dictionary migration run record."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class MigrationState(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class MigrationStage(str, Enum):
    SUBMITTED = "SUBMITTED"
    ANALYZED = "ANALYZED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class MigrationStats:
    total_processed: int = 0
    valid_documents_count: int = 0
    invalid_documents_count: int = 0

    def add(self, valid: int, invalid: int) -> None:
        self.valid_documents_count += valid
        self.invalid_documents_count += invalid
        self.total_processed += valid + invalid

    def to_dict(self) -> Dict[str, int]:
        return {
            "total_processed": self.total_processed,
            "valid_documents_count": self.valid_documents_count,
            "invalid_documents_count": self.invalid_documents_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationStats":
        return cls(
            total_processed=data.get("total_processed", 0),
            valid_documents_count=data.get("valid_documents_count", 0),
            invalid_documents_count=data.get("invalid_documents_count", 0),
        )


@dataclass
class DictionaryMigration:
    """
    One run that re-validates stored donors and open submissions against a
    new dictionary version.

    ``invalid_donors_errors`` entries look like
    ``{"donor_id", "submitter_donor_id", "program_id", "errors": [{entity: [errors]}]}``;
    ``checked_submissions`` and ``invalid_submissions`` entries are
    ``{"program_id", "id"}``.
    """

    from_version: str
    to_version: str
    created_by: str
    state: MigrationState = MigrationState.OPEN
    stage: MigrationStage = MigrationStage.SUBMITTED
    dry_run: bool = False
    stats: MigrationStats = field(default_factory=MigrationStats)
    invalid_donors_errors: List[Dict[str, Any]] = field(default_factory=list)
    checked_submissions: List[Dict[str, Any]] = field(default_factory=list)
    invalid_submissions: List[Dict[str, Any]] = field(default_factory=list)
    programs_with_donor_updates: List[str] = field(default_factory=list)
    analysis: Optional[Dict[str, Any]] = None
    new_schema_errors: Optional[Dict[str, Any]] = None
    id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.state == MigrationState.OPEN

    def submission_checked(self, program_id: str, submission_id: str) -> bool:
        return any(
            c["program_id"] == program_id and c["id"] == submission_id
            for c in self.checked_submissions
        )

    def add_program_with_updates(self, program_id: str) -> None:
        if program_id not in self.programs_with_donor_updates:
            self.programs_with_donor_updates.append(program_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from_version": self.from_version,
            "to_version": self.to_version,
            "created_by": self.created_by,
            "state": self.state.value,
            "stage": self.stage.value,
            "dry_run": self.dry_run,
            "stats": self.stats.to_dict(),
            "invalid_donors_errors": list(self.invalid_donors_errors),
            "checked_submissions": list(self.checked_submissions),
            "invalid_submissions": list(self.invalid_submissions),
            "programs_with_donor_updates": list(self.programs_with_donor_updates),
            "analysis": self.analysis,
            "new_schema_errors": self.new_schema_errors,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DictionaryMigration":
        return cls(
            id=data.get("id"),
            from_version=data["from_version"],
            to_version=data["to_version"],
            created_by=data.get("created_by", ""),
            state=MigrationState(data["state"]),
            stage=MigrationStage(data["stage"]),
            dry_run=bool(data.get("dry_run", False)),
            stats=MigrationStats.from_dict(data.get("stats") or {}),
            invalid_donors_errors=list(data.get("invalid_donors_errors") or []),
            checked_submissions=list(data.get("checked_submissions") or []),
            invalid_submissions=list(data.get("invalid_submissions") or []),
            programs_with_donor_updates=list(data.get("programs_with_donor_updates") or []),
            analysis=data.get("analysis"),
            new_schema_errors=data.get("new_schema_errors"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )
