"""Database module for the clinical store."""

from .connection import get_connection, get_memory_connection, DatabaseConnection
from .schema import (
    initialize_database,
    create_all_tables,
    create_all_indexes,
    get_schema_version,
    get_table_counts,
)
from .repositories import (
    ConfigRepository,
    DonorRepository,
    MigrationRepository,
    RegistrationRepository,
    SubmissionRepository,
    ProgramExceptionRepository,
)

__all__ = [
    "get_connection",
    "get_memory_connection",
    "DatabaseConnection",
    "initialize_database",
    "create_all_tables",
    "create_all_indexes",
    "get_schema_version",
    "get_table_counts",
    "ConfigRepository",
    "DonorRepository",
    "MigrationRepository",
    "RegistrationRepository",
    "SubmissionRepository",
    "ProgramExceptionRepository",
]
