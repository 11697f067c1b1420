"""DuckDB connection management for the clinical store."""

import duckdb
from pathlib import Path
from typing import Optional
from contextlib import contextmanager

from ..config import config
from ..config.logging_config import get_logger

logger = get_logger("database")


class DatabaseConnection:
    """Manages DuckDB database connections."""

    def __init__(self, db_path: Optional[Path] = None, read_only: bool = False):
        """
        Initialize database connection manager.

        Args:
            db_path: Path to database file. Defaults to config setting.
            read_only: Open database in read-only mode.
        """
        self.db_path = db_path or config.database.path
        self.read_only = read_only
        self._connection: Optional[duckdb.DuckDBPyConnection] = None

    def connect(self) -> duckdb.DuckDBPyConnection:
        """
        Establish connection to the database.

        Returns:
            DuckDB connection object.
        """
        if self._connection is not None:
            return self._connection

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = duckdb.connect(str(self.db_path), read_only=self.read_only)
        self._configure_connection()

        logger.info(f"Connected to database: {self.db_path}")
        return self._connection

    def _configure_connection(self) -> None:
        if self._connection is None:
            return

        self._connection.execute(f"SET memory_limit = '{config.database.memory_limit}'")
        if config.database.threads > 0:
            self._connection.execute(f"SET threads = {config.database.threads}")

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """Get the current connection, establishing if needed."""
        if self._connection is None:
            return self.connect()
        return self._connection

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


@contextmanager
def get_connection(
    db_path: Optional[Path] = None, read_only: bool = False
) -> duckdb.DuckDBPyConnection:
    """
    Context manager for database connections.

    Args:
        db_path: Path to database file.
        read_only: Open in read-only mode.

    Yields:
        DuckDB connection object.

    Example:
        with get_connection() as conn:
            donors = DonorRepository(conn).count()
    """
    db = DatabaseConnection(db_path, read_only)
    try:
        yield db.connect()
    finally:
        db.close()


def get_memory_connection() -> duckdb.DuckDBPyConnection:
    """
    Get an in-memory database connection for testing.

    Returns:
        In-memory DuckDB connection.
    """
    return duckdb.connect(":memory:")
