"""Dictionary manager: an explicit handle to the active dictionary version.

The active version is persisted (see ``database.repositories.ConfigRepository``)
so every service instance sees the same one. Fetched versions are cached per
manager instance.
"""

from typing import Dict, Optional, Tuple

from ..config import config
from ..config.logging_config import get_logger
from ..errors import SchemaFetchError
from .change_analyzer import analyze_changes
from .client import SchemaProvider
from .entities import ChangeAnalysis, SchemasDictionary, SchemasDictionaryDiffs

logger = get_logger("dictionary.manager")


class DictionaryManager:
    """Loads dictionary versions and tracks which one is current."""

    def __init__(self, provider: SchemaProvider, config_repo, name: Optional[str] = None):
        """
        Initialize the manager.

        Args:
            provider: Where dictionaries and diffs are fetched from.
            config_repo: Persisted configuration store holding the current version.
            name: Dictionary name. Defaults to config.
        """
        self.provider = provider
        self.config_repo = config_repo
        self.name = name or config.dictionary.name
        self._cache: Dict[str, SchemasDictionary] = {}
        self._diff_cache: Dict[Tuple[str, str], SchemasDictionaryDiffs] = {}

    def fetch(self, version: str) -> SchemasDictionary:
        """Fetch a dictionary version, using the cache when possible."""
        if version not in self._cache:
            logger.info(f"Fetching dictionary {self.name} version {version}")
            self._cache[version] = self.provider.fetch(self.name, version)
        return self._cache[version]

    def get_current_version(self) -> Optional[str]:
        return self.config_repo.get_dictionary_version()

    def get_current(self) -> SchemasDictionary:
        """Return the dictionary currently used for submissions.

        Raises:
            SchemaFetchError: If no version has been loaded yet.
        """
        version = self.get_current_version()
        if not version:
            raise SchemaFetchError("No current dictionary version has been loaded")
        return self.fetch(version)

    def load_and_save_version(self, version: str) -> SchemasDictionary:
        """Fetch ``version`` and persist it as the current dictionary."""
        dictionary = self.fetch(version)
        self.config_repo.set_dictionary_version(self.name, dictionary.version)
        logger.info(f"Current dictionary is now {self.name} {dictionary.version}")
        return dictionary

    def get_diff(self, from_version: str, to_version: str) -> SchemasDictionaryDiffs:
        key = (from_version, to_version)
        if key not in self._diff_cache:
            self._diff_cache[key] = self.provider.diff(self.name, from_version, to_version)
        return self._diff_cache[key]

    def analyze_changes(self, from_version: str, to_version: str) -> ChangeAnalysis:
        """Analyze the changes between two versions of this dictionary."""
        return analyze_changes(self.get_diff(from_version, to_version))
