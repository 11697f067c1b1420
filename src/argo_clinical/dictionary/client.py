"""Schema providers: where dictionary versions and diffs come from.

Three providers share one interface:

* ``RestSchemaProvider`` talks to the dictionary service over HTTP.
* ``FileSchemaProvider`` reads a YAML/JSON file of dictionaries (used for
  local runs and tests, selected with a ``file://`` URL).
* ``InMemorySchemaProvider`` holds dictionaries registered in code.

The file and in-memory providers compute diffs locally.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
import yaml
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import config
from ..config.logging_config import get_logger
from ..errors import SchemaFetchError
from .change_analyzer import compute_diff
from .entities import FieldDiff, SchemasDictionary, SchemasDictionaryDiffs

logger = get_logger("dictionary.client")

FILE_URL_PREFIX = "file://"


class SchemaProvider(ABC):
    """Source of versioned dictionaries and diffs between them."""

    @abstractmethod
    def fetch(self, name: str, version: str) -> SchemasDictionary:
        """Return dictionary ``name`` at ``version``.

        Raises:
            SchemaFetchError: If the version cannot be obtained.
        """

    @abstractmethod
    def diff(self, name: str, from_version: str, to_version: str) -> SchemasDictionaryDiffs:
        """Return the field-level diff between two versions."""


class InMemorySchemaProvider(SchemaProvider):
    """Provider backed by dictionaries held in memory."""

    def __init__(self, dictionaries: Optional[List[SchemasDictionary]] = None):
        self._dictionaries: Dict[tuple, SchemasDictionary] = {}
        for dictionary in dictionaries or []:
            self.add(dictionary)

    def add(self, dictionary: SchemasDictionary) -> None:
        self._dictionaries[(dictionary.name, dictionary.version)] = dictionary

    def versions(self, name: str) -> List[str]:
        return [v for (n, v) in self._dictionaries if n == name]

    def fetch(self, name: str, version: str) -> SchemasDictionary:
        dictionary = self._dictionaries.get((name, version))
        if dictionary is None:
            raise SchemaFetchError(f"Dictionary {name} version {version} not found")
        return dictionary

    def diff(self, name: str, from_version: str, to_version: str) -> SchemasDictionaryDiffs:
        return compute_diff(self.fetch(name, from_version), self.fetch(name, to_version))


class FileSchemaProvider(InMemorySchemaProvider):
    """Provider reading ``{"dictionaries": [...]}`` from a YAML or JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        super().__init__(self._load())

    def _load(self) -> List[SchemasDictionary]:
        if not self.path.exists():
            raise SchemaFetchError(f"Dictionary file not found: {self.path}")
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                content = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise SchemaFetchError(f"Error parsing {self.path}: {e}") from e

        entries = content.get("dictionaries")
        if not isinstance(entries, list):
            raise SchemaFetchError(
                f"{self.path} is not structured correctly, expected a 'dictionaries' list"
            )
        dictionaries = [SchemasDictionary.from_dict(d) for d in entries]
        logger.info(f"Loaded {len(dictionaries)} dictionaries from {self.path}")
        return dictionaries


class RestSchemaProvider(SchemaProvider):
    """Provider calling the dictionary service REST API."""

    def __init__(self, base_url: str, timeout: Optional[int] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or config.dictionary.request_timeout
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    @retry(
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(requests.RequestException),
        reraise=True,
    )
    def _get_json(self, path: str, params: Dict[str, str]) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug(f"GET {url} {params}")
        response = self.session.get(url, params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def fetch(self, name: str, version: str) -> SchemasDictionary:
        try:
            body = self._get_json("/dictionaries", {"name": name, "version": version})
        except requests.RequestException as e:
            logger.error(f"Failed to fetch dictionary {name} {version}: {e}")
            raise SchemaFetchError(f"Failed to get dictionary {name} version {version}") from e

        if not body:
            raise SchemaFetchError(f"Dictionary {name} version {version} not found")
        return SchemasDictionary.from_dict(body[0])

    def diff(self, name: str, from_version: str, to_version: str) -> SchemasDictionaryDiffs:
        try:
            body = self._get_json(
                "/diff", {"name": name, "left": from_version, "right": to_version}
            )
        except requests.RequestException as e:
            logger.error(f"Failed to fetch diff {from_version} -> {to_version}: {e}")
            raise SchemaFetchError(
                f"Failed to get diff for {name} {from_version} -> {to_version}"
            ) from e
        return parse_diff_response(body)


def parse_diff_response(entries: List[Any]) -> SchemasDictionaryDiffs:
    """Convert the service's ``[[path, {left, right, diff}], ...]`` payload."""
    result: SchemasDictionaryDiffs = {}
    for entry in entries or []:
        path, body = entry[0], entry[1]
        if body:
            result[path] = FieldDiff(
                before=body.get("left"), after=body.get("right"), diff=body.get("diff") or {}
            )
    return result


def create_schema_provider(url: Optional[str] = None) -> SchemaProvider:
    """
    Build a provider for a configured dictionary URL.

    Args:
        url: ``file://`` path or HTTP base URL. Defaults to config.

    Returns:
        A SchemaProvider.
    """
    url = url or config.dictionary.url
    if not url:
        raise SchemaFetchError("Please configure a valid dictionary url (DICTIONARY_URL)")
    if url.startswith(FILE_URL_PREFIX):
        return FileSchemaProvider(Path(url[len(FILE_URL_PREFIX):]))
    return RestSchemaProvider(url)
