"""Application settings and configuration."""

from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent


@dataclass
class DatabaseConfig:
    """Database configuration settings."""

    path: Path = field(
        default_factory=lambda: Path(
            os.getenv("CLINICAL_DB_PATH", str(PROJECT_ROOT / "data" / "clinical.duckdb"))
        )
    )
    read_only: bool = False
    memory_limit: str = field(
        default_factory=lambda: os.getenv("CLINICAL_DB_MEMORY_LIMIT", "2GB")
    )
    threads: int = field(
        default_factory=lambda: int(os.getenv("CLINICAL_DB_THREADS", "-1"))
    )


@dataclass
class DictionaryConfig:
    """Data dictionary (schema service) settings."""

    name: str = field(
        default_factory=lambda: os.getenv("DICTIONARY_NAME", "ARGO Clinical Submission")
    )
    url: Optional[str] = field(default_factory=lambda: os.getenv("DICTIONARY_URL"))
    request_timeout: int = field(
        default_factory=lambda: int(os.getenv("DICTIONARY_TIMEOUT_SECONDS", "5"))
    )
    retry_attempts: int = 5


@dataclass
class MigrationConfig:
    """Dictionary migration settings."""

    page_size: int = field(
        default_factory=lambda: int(os.getenv("MIGRATION_PAGE_SIZE", "20"))
    )
    submission_drain_seconds: float = field(
        default_factory=lambda: float(os.getenv("SUBMISSION_DRAIN_SECONDS", "2"))
    )


@dataclass
class AppConfig:
    """Application configuration settings."""

    name: str = field(default_factory=lambda: os.getenv("APP_NAME", "ARGO Clinical"))
    version: str = field(default_factory=lambda: os.getenv("APP_VERSION", "1.0.0"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_file: Optional[Path] = field(
        default_factory=lambda: Path(os.environ["LOG_FILE"]) if os.getenv("LOG_FILE") else None
    )
    debug: bool = field(
        default_factory=lambda: os.getenv("DEBUG", "false").lower() in ("1", "true", "yes")
    )


@dataclass
class Config:
    """Main configuration container."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    dictionary: DictionaryConfig = field(default_factory=DictionaryConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    app: AppConfig = field(default_factory=AppConfig)

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        self.database.path.parent.mkdir(parents=True, exist_ok=True)


# Global config instance
config = Config()
