"""Document repositories over DuckDB.

Each repository takes an open DuckDB connection. Every storage failure is
re-raised as ``PersistenceError`` naming the operation that failed.
"""

import json
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

import duckdb

from ..clinical.entities import Donor
from ..config.constants import (
    FOLLOW_UP,
    PRIMARY_DIAGNOSIS,
    SPECIMEN,
    SUBMITTER_FOLLOW_UP_ID,
    SUBMITTER_PRIMARY_DIAGNOSIS_ID,
    SUBMITTER_TREATMENT_ID,
    TREATMENT,
)
from ..config.logging_config import get_logger
from ..errors import PersistenceError, StateConflictError
from ..migration.entities import DictionaryMigration, MigrationStage, MigrationState
from ..submission.entities import ActiveClinicalSubmission, ActiveRegistration
from ..submission.program_exceptions import ProgramException

logger = get_logger("database.repositories")

SAMPLE = "sample"


@contextmanager
def persistence(operation: str) -> Iterator[None]:
    """Translate DuckDB errors into PersistenceError."""
    try:
        yield
    except duckdb.Error as e:
        logger.error(f"Database error during {operation}: {e}")
        raise PersistenceError(operation, e) from e


def _dumps(document: Dict[str, Any]) -> str:
    return json.dumps(document, default=str)


def _loads(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict):
        return value
    return json.loads(value)


def _now() -> str:
    return datetime.now().isoformat()


def new_version() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Donors
# =============================================================================


def donor_identifiers(donor: Donor) -> List[Tuple[str, str]]:
    """(entity type, submitter id) pairs a donor owns program-wide."""
    identifiers: List[Tuple[str, str]] = []
    for specimen in donor.specimens:
        identifiers.append((SPECIMEN, specimen.submitter_id))
        identifiers.extend((SAMPLE, sample.submitter_id) for sample in specimen.samples)
    if donor.primary_diagnosis is not None:
        pd_id = donor.primary_diagnosis.clinical_info.get(SUBMITTER_PRIMARY_DIAGNOSIS_ID)
        if pd_id:
            identifiers.append((PRIMARY_DIAGNOSIS, pd_id))
    for treatment in donor.treatments:
        treatment_id = treatment.clinical_info.get(SUBMITTER_TREATMENT_ID)
        if treatment_id:
            identifiers.append((TREATMENT, treatment_id))
    for follow_up in donor.follow_ups:
        follow_up_id = follow_up.clinical_info.get(SUBMITTER_FOLLOW_UP_ID)
        if follow_up_id:
            identifiers.append((FOLLOW_UP, follow_up_id))
    return identifiers


class DonorRepository:
    """Stores donor aggregates, one JSON document per donor."""

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn

    def _fetch(self, query: str, parameters: Optional[list] = None) -> List[Donor]:
        rows = self.conn.execute(query, parameters or []).fetchall()
        return [Donor.from_dict(_loads(row[0])) for row in rows]

    def find_by_program_and_submitter_id(
        self, program_id: str, submitter_id: str
    ) -> Optional[Donor]:
        with persistence("find donor"):
            donors = self._fetch(
                "SELECT document FROM donors WHERE program_id = ? AND submitter_id = ?",
                [program_id, submitter_id],
            )
        return donors[0] if donors else None

    def find_by_program_and_submitter_ids(
        self, program_id: str, submitter_ids: List[str]
    ) -> Dict[str, Donor]:
        if not submitter_ids:
            return {}
        placeholders = ", ".join("?" for _ in submitter_ids)
        with persistence("find donors by submitter ids"):
            donors = self._fetch(
                f"SELECT document FROM donors WHERE program_id = ? "
                f"AND submitter_id IN ({placeholders})",
                [program_id, *submitter_ids],
            )
        return {d.submitter_id: d for d in donors}

    def find_by_program(self, program_id: str) -> List[Donor]:
        with persistence("find donors by program"):
            return self._fetch(
                "SELECT document FROM donors WHERE program_id = ? ORDER BY donor_id",
                [program_id],
            )

    def find_by_clinical_entity_submitter_id(
        self, program_id: str, entity_type: str, submitter_id: Optional[str]
    ) -> Optional[Donor]:
        """Donor owning a specimen/sample/diagnosis/treatment/follow-up submitter id."""
        if not submitter_id:
            return None
        with persistence("find donor by entity id"):
            donors = self._fetch(
                """
                SELECT d.document FROM donors d
                JOIN donor_identifiers i ON i.donor_id = d.donor_id
                WHERE i.program_id = ? AND i.entity_type = ? AND i.submitter_id = ?
                ORDER BY d.donor_id
                LIMIT 1
                """,
                [program_id, entity_type, submitter_id],
            )
        return donors[0] if donors else None

    def find_page_not_migrated(self, migration_id: str, limit: int) -> List[Donor]:
        """Next page of donors not yet tagged with ``migration_id``, in donor id order."""
        with persistence("fetch migration page"):
            return self._fetch(
                """
                SELECT document FROM donors
                WHERE last_migration_id IS DISTINCT FROM ?
                ORDER BY donor_id
                LIMIT ?
                """,
                [migration_id, limit],
            )

    def count(self, program_id: Optional[str] = None) -> int:
        with persistence("count donors"):
            if program_id is None:
                result = self.conn.execute("SELECT COUNT(*) FROM donors").fetchone()
            else:
                result = self.conn.execute(
                    "SELECT COUNT(*) FROM donors WHERE program_id = ?", [program_id]
                ).fetchone()
        return result[0] if result else 0

    def create(self, donor: Donor) -> Donor:
        """Insert a new donor, assigning its donor_id."""
        with persistence("create donor"):
            donor_id = self.conn.execute("SELECT nextval('donor_id_seq')").fetchone()[0]
            donor.donor_id = donor_id
            donor.touch()
            self.conn.execute(
                """
                INSERT INTO donors
                    (donor_id, program_id, submitter_id, is_valid, last_migration_id, document)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    donor_id,
                    donor.program_id,
                    donor.submitter_id,
                    donor.schema_metadata.is_valid,
                    donor.schema_metadata.last_migration_id,
                    _dumps(donor.to_dict()),
                ],
            )
            self._write_identifiers(donor)
        return donor

    def update(self, donor: Donor) -> Donor:
        if donor.donor_id is None:
            return self.create(donor)
        with persistence("update donor"):
            donor.touch()
            self.conn.execute(
                """
                UPDATE donors
                SET is_valid = ?, last_migration_id = ?, document = ?,
                    updated_at = CURRENT_TIMESTAMP
                WHERE donor_id = ?
                """,
                [
                    donor.schema_metadata.is_valid,
                    donor.schema_metadata.last_migration_id,
                    _dumps(donor.to_dict()),
                    donor.donor_id,
                ],
            )
            self._write_identifiers(donor)
        return donor

    def save_many(self, donors: List[Donor]) -> List[Donor]:
        """Create or update several donors in one transaction."""
        with persistence("save donors"):
            self.conn.begin()
            try:
                saved = [self.update(donor) for donor in donors]
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise
        return saved

    def _write_identifiers(self, donor: Donor) -> None:
        self.conn.execute("DELETE FROM donor_identifiers WHERE donor_id = ?", [donor.donor_id])
        rows = [
            [donor.program_id, entity_type, submitter_id, donor.donor_id]
            for entity_type, submitter_id in donor_identifiers(donor)
        ]
        if rows:
            self.conn.executemany(
                "INSERT INTO donor_identifiers (program_id, entity_type, submitter_id, donor_id) "
                "VALUES (?, ?, ?, ?)",
                rows,
            )


# =============================================================================
# Migrations
# =============================================================================


class MigrationRepository:
    """Stores DictionaryMigration documents."""

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn

    def _fetch(self, query: str, parameters: Optional[list] = None) -> List[DictionaryMigration]:
        rows = self.conn.execute(query, parameters or []).fetchall()
        return [DictionaryMigration.from_dict(_loads(row[0])) for row in rows]

    def _insert(self, migration: DictionaryMigration) -> None:
        self.conn.execute(
            """
            INSERT INTO migrations
                (id, state, stage, dry_run, from_version, to_version, document)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                migration.id,
                migration.state.value,
                migration.stage.value,
                migration.dry_run,
                migration.from_version,
                migration.to_version,
                _dumps(migration.to_dict()),
            ],
        )

    def create(self, migration: DictionaryMigration) -> DictionaryMigration:
        """
        Persist a new OPEN migration.

        The open-migration check and the insert run in one transaction.

        Raises:
            StateConflictError: If another migration is still OPEN.
        """
        migration.id = migration.id or str(uuid.uuid4())
        migration.created_at = migration.updated_at = _now()
        with persistence("create migration"):
            self.conn.begin()
            try:
                open_count = self.conn.execute(
                    "SELECT COUNT(*) FROM migrations WHERE state = ?", [MigrationState.OPEN.value]
                ).fetchone()[0]
                if open_count > 0:
                    raise StateConflictError("A migration is already open")
                self._insert(migration)
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise
        logger.info(f"Created migration {migration.id}")
        return migration

    def update(self, migration: DictionaryMigration) -> DictionaryMigration:
        migration.updated_at = _now()
        with persistence("update migration"):
            self.conn.execute(
                """
                UPDATE migrations
                SET state = ?, stage = ?, document = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                [
                    migration.state.value,
                    migration.stage.value,
                    _dumps(migration.to_dict()),
                    migration.id,
                ],
            )
        return migration

    def save_page(
        self, migration: DictionaryMigration, donors: List[Donor]
    ) -> DictionaryMigration:
        """
        Save a page of checked donors and the migration's progress together.

        Either both writes land or neither does, so a resumed migration never
        skips donors whose results were not counted.
        """
        donor_repo = DonorRepository(self.conn)
        with persistence("save migration page"):
            self.conn.begin()
            try:
                for donor in donors:
                    donor_repo.update(donor)
                migration = self.update(migration)
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise
        return migration

    def get_by_id(self, migration_id: str) -> Optional[DictionaryMigration]:
        with persistence("get migration"):
            found = self._fetch("SELECT document FROM migrations WHERE id = ?", [migration_id])
        return found[0] if found else None

    def get_by_state(self, state: MigrationState) -> List[DictionaryMigration]:
        with persistence("get migrations by state"):
            return self._fetch(
                "SELECT document FROM migrations WHERE state = ? ORDER BY created_at",
                [state.value],
            )

    def get_open(self) -> Optional[DictionaryMigration]:
        open_migrations = self.get_by_state(MigrationState.OPEN)
        return open_migrations[0] if open_migrations else None

    def get_all(self) -> List[DictionaryMigration]:
        with persistence("list migrations"):
            return self._fetch("SELECT document FROM migrations ORDER BY created_at DESC")

    def get_latest_successful(self) -> Optional[DictionaryMigration]:
        """Most recent COMPLETED migration that was not a dry run."""
        with persistence("get latest migration"):
            found = self._fetch(
                """
                SELECT document FROM migrations
                WHERE stage = ? AND dry_run = FALSE
                ORDER BY updated_at DESC
                LIMIT 1
                """,
                [MigrationStage.COMPLETED.value],
            )
        return found[0] if found else None


# =============================================================================
# Staging areas
# =============================================================================


class SubmissionRepository:
    """Active clinical submissions, one per program, with version tokens."""

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn

    def find_by_program_id(self, program_id: str) -> Optional[ActiveClinicalSubmission]:
        with persistence("find active submission"):
            row = self.conn.execute(
                "SELECT document FROM active_submissions WHERE program_id = ?", [program_id]
            ).fetchone()
        return ActiveClinicalSubmission.from_dict(_loads(row[0])) if row else None

    def find_all(self) -> List[ActiveClinicalSubmission]:
        with persistence("list active submissions"):
            rows = self.conn.execute(
                "SELECT document FROM active_submissions ORDER BY program_id"
            ).fetchall()
        return [ActiveClinicalSubmission.from_dict(_loads(row[0])) for row in rows]

    def create(self, submission: ActiveClinicalSubmission) -> ActiveClinicalSubmission:
        """Insert a submission for a program that has none."""
        submission.id = submission.id or str(uuid.uuid4())
        submission.version = new_version()
        submission.updated_at = _now()
        with persistence("create active submission"):
            self.conn.execute(
                """
                INSERT INTO active_submissions (program_id, id, version, state, document)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    submission.program_id,
                    submission.id,
                    submission.version,
                    submission.state.value,
                    _dumps(submission.to_dict()),
                ],
            )
        return submission

    def update_with_version(
        self, program_id: str, version: str, submission: ActiveClinicalSubmission
    ) -> ActiveClinicalSubmission:
        """
        Replace the program's submission if it is still at ``version``.

        Raises:
            StateConflictError: If the stored version differs (or it is gone).
        """
        previous = submission.version
        submission.version = new_version()
        submission.updated_at = _now()
        with persistence("update active submission"):
            updated = self.conn.execute(
                """
                UPDATE active_submissions
                SET version = ?, state = ?, document = ?, updated_at = CURRENT_TIMESTAMP
                WHERE program_id = ? AND version = ?
                RETURNING program_id
                """,
                [
                    submission.version,
                    submission.state.value,
                    _dumps(submission.to_dict()),
                    program_id,
                    version,
                ],
            ).fetchall()
        if not updated:
            submission.version = previous
            raise StateConflictError(
                f"Active submission for {program_id} was modified by another writer"
            )
        return submission

    def delete(self, program_id: str, version: Optional[str] = None) -> None:
        with persistence("delete active submission"):
            if version is None:
                self.conn.execute(
                    "DELETE FROM active_submissions WHERE program_id = ?", [program_id]
                )
                return
            deleted = self.conn.execute(
                "DELETE FROM active_submissions WHERE program_id = ? AND version = ? "
                "RETURNING program_id",
                [program_id, version],
            ).fetchall()
        if not deleted:
            raise StateConflictError(
                f"Active submission for {program_id} was modified by another writer"
            )


class RegistrationRepository:
    """Active registrations, one per program."""

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn

    def find_by_program_id(self, program_id: str) -> Optional[ActiveRegistration]:
        with persistence("find active registration"):
            row = self.conn.execute(
                "SELECT document FROM active_registrations WHERE program_id = ?", [program_id]
            ).fetchone()
        return ActiveRegistration.from_dict(_loads(row[0])) if row else None

    def find_by_id(self, registration_id: str) -> Optional[ActiveRegistration]:
        with persistence("find active registration"):
            row = self.conn.execute(
                "SELECT document FROM active_registrations WHERE id = ?", [registration_id]
            ).fetchone()
        return ActiveRegistration.from_dict(_loads(row[0])) if row else None

    def create(self, registration: ActiveRegistration) -> ActiveRegistration:
        """
        Store a registration for a program that has none.

        Raises:
            StateConflictError: If the program already has an active registration.
        """
        registration.id = str(uuid.uuid4())
        registration.version = new_version()
        try:
            with persistence("create active registration"):
                self.conn.execute(
                    """
                    INSERT INTO active_registrations (program_id, id, version, document)
                    VALUES (?, ?, ?, ?)
                    """,
                    [
                        registration.program_id,
                        registration.id,
                        registration.version,
                        _dumps(registration.to_dict()),
                    ],
                )
        except PersistenceError as e:
            if isinstance(e.cause, duckdb.ConstraintException):
                raise StateConflictError(
                    f"Active registration for {registration.program_id} was created by "
                    "another writer"
                ) from e
            raise
        return registration

    def replace_with_version(
        self, program_id: str, version: str, registration: ActiveRegistration
    ) -> ActiveRegistration:
        """
        Replace the program's registration if it is still at ``version``.

        Raises:
            StateConflictError: If the stored version differs (or it is gone).
        """
        registration.id = str(uuid.uuid4())
        registration.version = new_version()
        with persistence("replace active registration"):
            updated = self.conn.execute(
                """
                UPDATE active_registrations
                SET id = ?, version = ?, document = ?, updated_at = CURRENT_TIMESTAMP
                WHERE program_id = ? AND version = ?
                RETURNING program_id
                """,
                [
                    registration.id,
                    registration.version,
                    _dumps(registration.to_dict()),
                    program_id,
                    version,
                ],
            ).fetchall()
        if not updated:
            raise StateConflictError(
                f"Active registration for {program_id} was modified by another writer"
            )
        return registration

    def delete(self, registration_id: str) -> None:
        with persistence("delete active registration"):
            self.conn.execute("DELETE FROM active_registrations WHERE id = ?", [registration_id])


class ProgramExceptionRepository:
    """Core field exceptions granted to programs."""

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn

    def find(self, program_id: str) -> List[ProgramException]:
        with persistence("find program exceptions"):
            rows = self.conn.execute(
                """
                SELECT program_id, schema_name, core_field, exception_value
                FROM program_exceptions
                WHERE program_id = ?
                ORDER BY schema_name, core_field
                """,
                [program_id],
            ).fetchall()
        return [
            ProgramException(
                program_id=row[0], schema=row[1], core_field=row[2], exception_value=row[3]
            )
            for row in rows
        ]

    def replace(self, program_id: str, exceptions: List[ProgramException]) -> None:
        """Swap the program's whole exception set in one transaction."""
        with persistence("replace program exceptions"):
            self.conn.begin()
            try:
                self.conn.execute(
                    "DELETE FROM program_exceptions WHERE program_id = ?", [program_id]
                )
                if exceptions:
                    self.conn.executemany(
                        """
                        INSERT INTO program_exceptions
                            (program_id, schema_name, core_field, exception_value)
                        VALUES (?, ?, ?, ?)
                        """,
                        [
                            [program_id, e.schema, e.core_field, e.exception_value]
                            for e in exceptions
                        ],
                    )
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise
        logger.info(f"Stored {len(exceptions)} exceptions for {program_id}")

    def delete(self, program_id: str) -> int:
        with persistence("delete program exceptions"):
            deleted = self.conn.execute(
                "DELETE FROM program_exceptions WHERE program_id = ? RETURNING program_id",
                [program_id],
            ).fetchall()
        return len(deleted)


# =============================================================================
# Persisted configuration
# =============================================================================


class ConfigRepository:
    """Key/value settings: submission lock and current dictionary version."""

    SUBMISSION_DISABLED = "submission_disabled"
    DICTIONARY_NAME = "dictionary_name"
    DICTIONARY_VERSION = "dictionary_version"

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn

    def get(self, key: str) -> Optional[str]:
        with persistence(f"read setting {key}"):
            row = self.conn.execute(
                "SELECT value FROM app_settings WHERE key = ?", [key]
            ).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: Optional[str]) -> None:
        with persistence(f"write setting {key}"):
            self.conn.execute(
                """
                INSERT OR REPLACE INTO app_settings (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                """,
                [key, value],
            )

    def is_submission_disabled(self) -> bool:
        return self.get(self.SUBMISSION_DISABLED) == "true"

    def set_submission_disabled(self, disabled: bool) -> None:
        self.set(self.SUBMISSION_DISABLED, "true" if disabled else "false")
        logger.info(f"Submissions {'disabled' if disabled else 'enabled'}")

    def get_dictionary_version(self) -> Optional[str]:
        return self.get(self.DICTIONARY_VERSION)

    def get_dictionary_name(self) -> Optional[str]:
        return self.get(self.DICTIONARY_NAME)

    def set_dictionary_version(self, name: str, version: str) -> None:
        self.set(self.DICTIONARY_NAME, name)
        self.set(self.DICTIONARY_VERSION, version)
