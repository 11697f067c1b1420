"""Dictionary migration: change classification, donor re-checks and state.

The orchestrator lives in ``migration.manager``.
"""

from .entities import DictionaryMigration, MigrationStage, MigrationState, MigrationStats
from .changes import (
    breaking_change_fields_by_entity,
    find_entities_with_breaking_changes,
    find_entities_with_core_designation_changes,
    find_invalidating_changes_fields,
    verify_new_schema,
)
from .revalidation import is_donor_valid_against, revalidate_donor_entities

__all__ = [
    "DictionaryMigration",
    "MigrationStage",
    "MigrationState",
    "MigrationStats",
    "breaking_change_fields_by_entity",
    "find_entities_with_breaking_changes",
    "find_entities_with_core_designation_changes",
    "find_invalidating_changes_fields",
    "verify_new_schema",
    "is_donor_valid_against",
    "revalidate_donor_entities",
]
