"""DuckDB schema definitions for the clinical store.

Aggregates (donors, migrations, staging submissions and registrations) are
stored as JSON documents. Only the columns that queries filter or sort on are
lifted out of the document.
"""

from typing import Optional
import duckdb

from ..config.logging_config import get_logger

logger = get_logger("schema")

SCHEMA_VERSION = "1.0"

# =============================================================================
# CONSTRAINT NOTES
# =============================================================================
# - donors: (program_id, submitter_id) is unique.
# - donor_identifiers: one row per specimen/sample/clinical entity submitter id
#   held by a donor; rebuilt whenever the donor is saved. A submitter id may be
#   listed once per (program_id, entity_type).
# - active_submissions / active_registrations: at most one per program.
# - program_exceptions: one exception value per (program, schema, core field).
# - migrations: at most one row has state = 'OPEN'. Enforced inside the
#   MigrationRepository.create transaction, not by a constraint.
# =============================================================================

CREATE_DONORS = """
CREATE TABLE IF NOT EXISTS donors (
    donor_id INTEGER PRIMARY KEY,
    program_id VARCHAR NOT NULL,
    submitter_id VARCHAR NOT NULL,
    is_valid BOOLEAN DEFAULT TRUE,
    last_migration_id VARCHAR,
    document JSON NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (program_id, submitter_id)
)
"""

CREATE_DONOR_IDENTIFIERS = """
CREATE TABLE IF NOT EXISTS donor_identifiers (
    program_id VARCHAR NOT NULL,
    entity_type VARCHAR NOT NULL,
    submitter_id VARCHAR NOT NULL,
    donor_id INTEGER NOT NULL
)
"""

CREATE_MIGRATIONS = """
CREATE TABLE IF NOT EXISTS migrations (
    id VARCHAR PRIMARY KEY,
    state VARCHAR NOT NULL CHECK (state IN ('OPEN', 'CLOSED')),
    stage VARCHAR NOT NULL,
    dry_run BOOLEAN DEFAULT FALSE,
    from_version VARCHAR,
    to_version VARCHAR,
    document JSON NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""

CREATE_ACTIVE_SUBMISSIONS = """
CREATE TABLE IF NOT EXISTS active_submissions (
    program_id VARCHAR PRIMARY KEY,
    id VARCHAR NOT NULL,
    version VARCHAR NOT NULL,
    state VARCHAR NOT NULL,
    document JSON NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""

CREATE_ACTIVE_REGISTRATIONS = """
CREATE TABLE IF NOT EXISTS active_registrations (
    program_id VARCHAR PRIMARY KEY,
    id VARCHAR NOT NULL,
    version VARCHAR NOT NULL,
    document JSON NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""

CREATE_APP_SETTINGS = """
CREATE TABLE IF NOT EXISTS app_settings (
    key VARCHAR PRIMARY KEY,
    value VARCHAR,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""

CREATE_PROGRAM_EXCEPTIONS = """
CREATE TABLE IF NOT EXISTS program_exceptions (
    program_id VARCHAR NOT NULL,
    schema_name VARCHAR NOT NULL,
    core_field VARCHAR NOT NULL,
    exception_value VARCHAR NOT NULL,
    PRIMARY KEY (program_id, schema_name, core_field)
)
"""

CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_donors_program ON donors(program_id)",
    "CREATE INDEX IF NOT EXISTS idx_identifiers_lookup "
    "ON donor_identifiers(program_id, entity_type, submitter_id)",
    "CREATE INDEX IF NOT EXISTS idx_identifiers_donor ON donor_identifiers(donor_id)",
]

TABLES = [
    ("donors", CREATE_DONORS),
    ("donor_identifiers", CREATE_DONOR_IDENTIFIERS),
    ("migrations", CREATE_MIGRATIONS),
    ("active_submissions", CREATE_ACTIVE_SUBMISSIONS),
    ("active_registrations", CREATE_ACTIVE_REGISTRATIONS),
    ("app_settings", CREATE_APP_SETTINGS),
    ("program_exceptions", CREATE_PROGRAM_EXCEPTIONS),
]


def create_all_tables(conn: duckdb.DuckDBPyConnection) -> None:
    """
    Create all database tables.

    Args:
        conn: DuckDB connection.
    """
    conn.execute("CREATE SEQUENCE IF NOT EXISTS donor_id_seq START 1")

    for table_name, create_sql in TABLES:
        try:
            conn.execute(create_sql)
            logger.debug(f"Created table: {table_name}")
        except duckdb.Error as e:
            logger.error(f"Error creating table {table_name}: {e}")
            raise


def create_all_indexes(conn: duckdb.DuckDBPyConnection) -> None:
    for index_sql in CREATE_INDEXES:
        conn.execute(index_sql)
    logger.debug(f"Created {len(CREATE_INDEXES)} indexes")


def initialize_database(conn: duckdb.DuckDBPyConnection) -> None:
    """
    Initialize the database with all tables and indexes.

    Args:
        conn: DuckDB connection.
    """
    logger.info("Initializing database schema...")
    create_all_tables(conn)
    create_all_indexes(conn)
    conn.execute(
        "INSERT OR REPLACE INTO app_settings (key, value) VALUES ('schema_version', ?)",
        [SCHEMA_VERSION],
    )
    logger.info("Database initialization complete")


def get_schema_version(conn: duckdb.DuckDBPyConnection) -> Optional[str]:
    """
    Get the current schema version.

    Returns:
        Schema version string or None when the database is not initialized.
    """
    try:
        result = conn.execute(
            "SELECT value FROM app_settings WHERE key = 'schema_version'"
        ).fetchone()
        return result[0] if result else None
    except duckdb.CatalogException:
        return None


def get_table_counts(conn: duckdb.DuckDBPyConnection) -> dict:
    """
    Get row counts for all tables.

    Returns:
        Dictionary mapping table names to row counts.
    """
    counts = {}
    for table, _ in TABLES:
        result = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
        counts[table] = result[0] if result else 0
    return counts
