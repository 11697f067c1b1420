"""Dictionary migration orchestrator.

A migration moves the program data onto a new dictionary version:

1. the target version is fetched and verified (abort as FAILED otherwise);
2. submissions are disabled and in-flight commits get a moment to drain;
3. donors are swept page by page, each page tagged with the migration id;
4. open submissions are re-checked against the target version;
5. the migration is closed and, unless it is a dry run, the target becomes
   the current dictionary. Submissions are enabled again.

At most one migration is OPEN at a time. Because swept donors and checked
submissions are recorded as the run goes, an interrupted run is resumed by
simply running it again.
"""

import copy
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

import duckdb

from ..clinical.accessor import get_clinical_entities
from ..clinical.entities import Donor
from ..clinical.stats import (
    recalculate_donor_stats_hold_overridden,
    set_invalid_core_entity_stats_for_migration,
)
from ..config import config
from ..config.logging_config import get_logger
from ..database.repositories import ConfigRepository, DonorRepository, MigrationRepository
from ..dictionary.entities import SchemasDictionary
from ..dictionary.manager import DictionaryManager
from ..errors import NotFoundError, SchemaFetchError, StateConflictError
from ..submission.entities import SubmissionState
from ..submission.service import SubmissionService
from .changes import (
    breaking_change_fields_by_entity,
    find_entities_with_breaking_changes,
    find_entities_with_core_designation_changes,
    verify_new_schema,
)
from .entities import DictionaryMigration, MigrationStage, MigrationState
from .revalidation import errors_to_dict, revalidate_donor_entities

logger = get_logger("migration.manager")

ProgressCallback = Callable[[DictionaryMigration], None]

FETCH_FAILED_MESSAGE = (
    "couldn't load new schema, check if the version is correct and try again, "
    "if problem persists check the logs"
)


class MigrationTask:
    """Handle on a migration running in the background."""

    def __init__(self, migration_id: str, future: Future):
        self.migration_id = migration_id
        self._future = future
        future.add_done_callback(self._log_failure)

    def _log_failure(self, future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.error(
                f"Migration {self.migration_id} stopped: {error}. "
                f"It stays OPEN and can be resumed."
            )

    @property
    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> DictionaryMigration:
        """Wait for the run; re-raises whatever stopped it."""
        return self._future.result(timeout=timeout)


class MigrationManager:
    """Submits, runs, resumes and reports dictionary migrations."""

    def __init__(
        self,
        conn: duckdb.DuckDBPyConnection,
        dictionary_manager: DictionaryManager,
        page_size: Optional[int] = None,
        drain_seconds: Optional[float] = None,
    ):
        """
        Initialize the manager.

        Args:
            conn: Open DuckDB connection holding the clinical store.
            dictionary_manager: Handle to the current dictionary.
            page_size: Donors per sweep page. Defaults to config.
            drain_seconds: Wait after disabling submissions. Defaults to config.
        """
        self.conn = conn
        self.dictionary_manager = dictionary_manager
        self.page_size = page_size or config.migration.page_size
        self.drain_seconds = (
            config.migration.submission_drain_seconds if drain_seconds is None else drain_seconds
        )
        self.migrations = MigrationRepository(conn)
        self.donors = DonorRepository(conn)
        self.settings = ConfigRepository(conn)
        self.submission_service = SubmissionService(conn, dictionary_manager)
        self._executor: Optional[ThreadPoolExecutor] = None
        self.task: Optional[MigrationTask] = None

    # =========================================================================
    # Public operations
    # =========================================================================

    def submit_migration(
        self,
        from_version: str,
        to_version: str,
        initiator: str,
        dry_run: bool = False,
        sync: bool = False,
        progress: Optional[ProgressCallback] = None,
    ) -> DictionaryMigration:
        """
        Open a new migration and start it.

        Dry runs always run synchronously.

        Args:
            from_version: Dictionary version the data is on.
            to_version: Target dictionary version.
            initiator: Who asked for the migration.
            dry_run: Record what would change without changing donors.
            sync: Wait for the run to finish.
            progress: Called with the migration after every persisted page.

        Returns:
            The closed migration for sync runs, otherwise the just-started one.

        Raises:
            StateConflictError: If a migration is already open.
        """
        if self.migrations.get_open() is not None:
            raise StateConflictError("A migration is already active")

        migration = self.migrations.create(
            DictionaryMigration(
                from_version=from_version,
                to_version=to_version,
                created_by=initiator,
                dry_run=dry_run,
            )
        )
        logger.info(
            f"Submitted migration {migration.id}: {from_version} -> {to_version} "
            f"(dry run: {dry_run}) by {initiator}"
        )
        return self._run_sync_or_async(migration, sync or migration.dry_run, progress)

    def dry_run_schema_upgrade(self, to_version: str, initiator: str) -> DictionaryMigration:
        """Dry-run a migration from the current dictionary version to ``to_version``."""
        current = self.dictionary_manager.get_current_version()
        return self.submit_migration(current, to_version, initiator, dry_run=True)

    def resume_migration(
        self, sync: bool = False, progress: Optional[ProgressCallback] = None
    ) -> DictionaryMigration:
        """
        Continue the open migration from where it stopped.

        Raises:
            NotFoundError: If no migration is open.
        """
        migration = self.migrations.get_open()
        if migration is None:
            raise NotFoundError("No active migration found")
        logger.info(f"Resuming migration {migration.id}")
        return self._run_sync_or_async(migration, sync or migration.dry_run, progress)

    def get_migration(self, migration_id: Optional[str] = None) -> List[DictionaryMigration]:
        """All migrations (newest first), or the one with ``migration_id``."""
        if not migration_id:
            return self.migrations.get_all()
        migration = self.migrations.get_by_id(migration_id)
        if migration is None:
            raise NotFoundError(f"No migration with id {migration_id}")
        return [migration]

    def probe_upgrade(self, from_version: str, to_version: str) -> Dict[str, Any]:
        """Change analysis between two versions plus the fields that can invalidate data."""
        analysis = self.dictionary_manager.analyze_changes(from_version, to_version)
        return {
            "analysis": analysis.to_dict(),
            "breakingChangeFields": breaking_change_fields_by_entity(analysis),
        }

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    # =========================================================================
    # Run
    # =========================================================================

    def _run_sync_or_async(
        self,
        migration: DictionaryMigration,
        sync: bool,
        progress: Optional[ProgressCallback],
    ) -> DictionaryMigration:
        try:
            new_schema = self.dictionary_manager.fetch(migration.to_version)
        except SchemaFetchError as e:
            logger.error(f"Migration {migration.id}: {e}")
            return self._abort(migration, error_message=FETCH_FAILED_MESSAGE)

        try:
            problems = self._verify_new_schema(migration, new_schema)
        except SchemaFetchError as e:
            logger.error(f"Migration {migration.id}: {e}")
            return self._abort(migration, error_message=str(e))
        if problems:
            return self._abort(migration, new_schema_errors=problems)

        self.settings.set_submission_disabled(True)
        time.sleep(self.drain_seconds)

        if sync:
            return self._run_migration(migration, new_schema, progress)

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="migration")
        future = self._executor.submit(self._run_in_background, migration, new_schema, progress)
        self.task = MigrationTask(migration.id, future)
        return migration

    def _run_in_background(
        self,
        migration: DictionaryMigration,
        new_schema: SchemasDictionary,
        progress: Optional[ProgressCallback],
    ) -> DictionaryMigration:
        # DuckDB connections are not shared across threads; the worker gets its own cursor
        cursor = self.conn.cursor()
        try:
            worker = MigrationManager(
                cursor,
                DictionaryManager(
                    self.dictionary_manager.provider,
                    ConfigRepository(cursor),
                    self.dictionary_manager.name,
                ),
                page_size=self.page_size,
                drain_seconds=0,
            )
            return worker._run_migration(migration, new_schema, progress)
        finally:
            cursor.close()

    def _verify_new_schema(
        self, migration: DictionaryMigration, new_schema: SchemasDictionary
    ) -> Dict[str, Any]:
        current_version = self.dictionary_manager.get_current_version()
        current = self.dictionary_manager.get_current()
        analysis = self.dictionary_manager.analyze_changes(current_version, new_schema.version)
        problems = verify_new_schema(current, new_schema, analysis)
        if not problems:
            migration.analysis = analysis.to_dict()
            migration.stage = MigrationStage.ANALYZED
            self.migrations.update(migration)
        return problems

    def _run_migration(
        self,
        migration: DictionaryMigration,
        new_schema: SchemasDictionary,
        progress: Optional[ProgressCallback] = None,
    ) -> DictionaryMigration:
        migration = copy.deepcopy(migration)
        migration.stage = MigrationStage.IN_PROGRESS
        self.migrations.update(migration)

        migration = self._check_donor_documents(migration, new_schema, progress)
        migration = self._revalidate_open_submissions(migration, new_schema)

        to_close = self.migrations.get_by_id(migration.id)
        if to_close is None:
            raise NotFoundError(f"Migration {migration.id} disappeared while running")
        to_close.state = MigrationState.CLOSED
        to_close.stage = MigrationStage.COMPLETED
        closed = self.migrations.update(to_close)

        if not migration.dry_run:
            self.dictionary_manager.load_and_save_version(new_schema.version)
            for program_id in migration.programs_with_donor_updates:
                logger.info(f"Program {program_id} has donor updates from migration {migration.id}")

        self.settings.set_submission_disabled(False)
        logger.info(
            f"Migration {closed.id} completed: {closed.stats.total_processed} donors checked, "
            f"{closed.stats.invalid_documents_count} invalid"
        )
        return closed

    def _abort(
        self,
        migration: DictionaryMigration,
        new_schema_errors: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> DictionaryMigration:
        failed = copy.deepcopy(migration)
        failed.stage = MigrationStage.FAILED
        failed.state = MigrationState.CLOSED
        if new_schema_errors:
            failed.new_schema_errors = new_schema_errors
        elif error_message:
            failed.new_schema_errors = {"message": error_message}
        updated = self.migrations.update(failed)
        self.settings.set_submission_disabled(False)
        logger.error(f"Migration {migration.id} aborted: {failed.new_schema_errors}")
        return updated

    # =========================================================================
    # Donor sweep
    # =========================================================================

    def _check_donor_documents(
        self,
        migration: DictionaryMigration,
        new_schema: SchemasDictionary,
        progress: Optional[ProgressCallback],
    ) -> DictionaryMigration:
        breaking_cache: Dict[str, List[str]] = {}
        core_cache: Dict[str, List[str]] = {}

        while True:
            donors = self.donors.find_page_not_migrated(migration.id, self.page_size)
            if not donors:
                break

            valid_count = 0
            invalid_count = 0
            to_save: List[Donor] = []
            for donor in donors:
                versions_key = self._update_caches(donor, new_schema, breaking_cache, core_cache)
                errors = revalidate_donor_entities(
                    donor, new_schema, breaking_cache[versions_key]
                )
                if errors:
                    updated = self._mark_invalid(donor, errors, migration)
                    migration.invalid_donors_errors.append(
                        {
                            "donor_id": donor.donor_id,
                            "submitter_donor_id": donor.submitter_id,
                            "program_id": donor.program_id,
                            "errors": errors_to_dict(errors),
                        }
                    )
                    invalid_count += 1
                else:
                    updated = self._mark_valid(
                        donor, core_cache[versions_key], migration, new_schema.version
                    )
                    valid_count += 1

                if self._program_is_updated(donor, updated):
                    migration.add_program_with_updates(donor.program_id)
                to_save.append(updated)

            migration.stats.add(valid_count, invalid_count)
            migration = self.migrations.save_page(migration, to_save)
            logger.debug(
                f"Migration {migration.id}: page of {len(donors)} donors, "
                f"{invalid_count} invalid, {migration.stats.total_processed} processed"
            )
            if progress is not None:
                progress(migration)

        return migration

    def _update_caches(
        self,
        donor: Donor,
        new_schema: SchemasDictionary,
        breaking_cache: Dict[str, List[str]],
        core_cache: Dict[str, List[str]],
    ) -> str:
        from_version = donor.schema_metadata.last_valid_schema_version
        versions_key = f"{from_version}->{new_schema.version}"
        if versions_key not in breaking_cache or versions_key not in core_cache:
            logger.debug(f"No cached analysis for versions {versions_key}")
            analysis = self.dictionary_manager.analyze_changes(from_version, new_schema.version)
            breaking_cache[versions_key] = find_entities_with_breaking_changes(analysis)
            core_cache[versions_key] = find_entities_with_core_designation_changes(analysis)
        return versions_key

    @staticmethod
    def _mark_invalid(
        donor: Donor, errors: List[Dict[str, Any]], migration: DictionaryMigration
    ) -> Donor:
        if migration.dry_run:
            updated = copy.deepcopy(donor)
        else:
            invalid_entities = [entity for entry in errors for entity in entry]
            updated = set_invalid_core_entity_stats_for_migration(donor, invalid_entities)
            updated.schema_metadata.is_valid = False
            logger.info(
                f"Donor {donor.submitter_id} ({donor.program_id}) is invalid under "
                f"{migration.to_version}: {invalid_entities}"
            )
        updated.schema_metadata.last_migration_id = migration.id
        return updated

    @staticmethod
    def _mark_valid(
        donor: Donor,
        core_changed_entities: List[str],
        migration: DictionaryMigration,
        new_version: str,
    ) -> Donor:
        if migration.dry_run:
            updated = copy.deepcopy(donor)
        else:
            needs_recalculation = (
                donor.completion_stats is None
                or not donor.schema_metadata.is_valid
                or any(get_clinical_entities(donor, e) for e in core_changed_entities)
            )
            if needs_recalculation:
                updated = recalculate_donor_stats_hold_overridden(donor)
            else:
                updated = copy.deepcopy(donor)
            updated.schema_metadata.is_valid = True
            updated.schema_metadata.last_valid_schema_version = new_version
        updated.schema_metadata.last_migration_id = migration.id
        return updated

    @staticmethod
    def _program_is_updated(before: Donor, after: Donor) -> bool:
        before_stats = before.completion_stats.to_dict() if before.completion_stats else None
        after_stats = after.completion_stats.to_dict() if after.completion_stats else None
        return (
            before.schema_metadata.is_valid != after.schema_metadata.is_valid
            or before_stats != after_stats
        )

    # =========================================================================
    # Submission sweep
    # =========================================================================

    def _revalidate_open_submissions(
        self, migration: DictionaryMigration, new_schema: SchemasDictionary
    ) -> DictionaryMigration:
        skipped_states = (SubmissionState.INVALID, SubmissionState.INVALID_BY_MIGRATION)
        for submission in self.submission_service.find_active_submissions():
            if submission.state in skipped_states:
                continue
            if migration.submission_checked(submission.program_id, submission.id):
                continue

            entry = {"program_id": submission.program_id, "id": submission.id}
            migration.checked_submissions.append(entry)
            result = self.submission_service.revalidate_submission(
                submission.program_id, new_schema, migration.dry_run
            )
            if (
                result.submission is not None
                and result.submission.state == SubmissionState.INVALID_BY_MIGRATION
            ):
                migration.invalid_submissions.append(entry)
                logger.info(
                    f"Submission for {submission.program_id} is invalid under "
                    f"{new_schema.version}"
                )
            migration = self.migrations.update(migration)
        return migration
