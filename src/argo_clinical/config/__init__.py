"""Configuration package for the clinical submission services."""

from .settings import (
    config,
    Config,
    DatabaseConfig,
    DictionaryConfig,
    MigrationConfig,
    AppConfig,
)
from .logging_config import setup_logging, get_logger

__all__ = [
    "config",
    "Config",
    "DatabaseConfig",
    "DictionaryConfig",
    "MigrationConfig",
    "AppConfig",
    "setup_logging",
    "get_logger",
]
