"""Tests for schema providers and the dictionary manager."""

from unittest.mock import Mock

import pytest
import requests
import yaml
from tenacity import wait_none

from argo_clinical.config import config
from argo_clinical.database.repositories import ConfigRepository
from argo_clinical.dictionary.client import (
    FileSchemaProvider,
    InMemorySchemaProvider,
    RestSchemaProvider,
    create_schema_provider,
    parse_diff_response,
)
from argo_clinical.dictionary.manager import DictionaryManager
from argo_clinical.errors import SchemaFetchError

NAME = "ARGO Clinical Submission"


@pytest.fixture
def dictionary_file(tmp_path, base_dictionary, upgraded_dictionary):
    path = tmp_path / "dictionaries.yaml"
    with open(path, "w") as f:
        yaml.safe_dump(
            {"dictionaries": [base_dictionary.to_dict(), upgraded_dictionary.to_dict()]}, f
        )
    return path


class TestFileSchemaProvider:
    """Tests for the file-backed provider."""

    def test_fetch(self, dictionary_file, base_dictionary):
        provider = FileSchemaProvider(dictionary_file)

        assert provider.fetch(NAME, "1.0") == base_dictionary
        assert sorted(provider.versions(NAME)) == ["1.0", "2.0"]

    def test_unknown_version(self, dictionary_file):
        with pytest.raises(SchemaFetchError):
            FileSchemaProvider(dictionary_file).fetch(NAME, "9.9")

    def test_local_diff(self, dictionary_file):
        diffs = FileSchemaProvider(dictionary_file).diff(NAME, "1.0", "2.0")

        assert "specimen.specimen_anatomic_location" in diffs

    def test_missing_file(self, tmp_path):
        with pytest.raises(SchemaFetchError, match="not found"):
            FileSchemaProvider(tmp_path / "nope.yaml")

    def test_wrong_structure(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("schemas: []\n")

        with pytest.raises(SchemaFetchError, match="not structured correctly"):
            FileSchemaProvider(path)


class TestCreateSchemaProvider:
    """Tests for choosing a provider from a URL."""

    def test_file_url(self, dictionary_file):
        provider = create_schema_provider(f"file://{dictionary_file}")

        assert isinstance(provider, FileSchemaProvider)

    def test_http_url(self):
        provider = create_schema_provider("http://lectern.local/")

        assert isinstance(provider, RestSchemaProvider)
        assert provider.base_url == "http://lectern.local"

    def test_missing_url(self, monkeypatch):
        monkeypatch.setattr(config.dictionary, "url", None)

        with pytest.raises(SchemaFetchError):
            create_schema_provider(None)


class TestRestSchemaProvider:
    """Tests for the HTTP provider with a mocked session."""

    def test_fetch(self, base_dictionary):
        provider = RestSchemaProvider("http://lectern.local")
        provider.session = Mock()
        provider.session.get.return_value.json.return_value = [base_dictionary.to_dict()]

        dictionary = provider.fetch(NAME, "1.0")

        assert dictionary == base_dictionary
        _, kwargs = provider.session.get.call_args
        assert kwargs["params"] == {"name": NAME, "version": "1.0"}

    def test_fetch_empty_body(self):
        provider = RestSchemaProvider("http://lectern.local")
        provider.session = Mock()
        provider.session.get.return_value.json.return_value = []

        with pytest.raises(SchemaFetchError, match="not found"):
            provider.fetch(NAME, "1.0")

    def test_fetch_retries_then_fails(self, monkeypatch):
        """Test that connection errors are retried and then surfaced as fetch errors."""
        monkeypatch.setattr(RestSchemaProvider._get_json.retry, "wait", wait_none())
        provider = RestSchemaProvider("http://lectern.local")
        provider.session = Mock()
        provider.session.get.side_effect = requests.ConnectionError("down")

        with pytest.raises(SchemaFetchError):
            provider.fetch(NAME, "1.0")
        assert provider.session.get.call_count == 5

    def test_parse_diff_response(self):
        entries = [
            [
                "donor.vital_status",
                {
                    "left": {"name": "vital_status"},
                    "right": {"name": "vital_status", "isArray": True},
                    "diff": {"isArray": {"type": "created", "data": True}},
                },
            ],
            ["donor.cause_of_death", None],
        ]

        diffs = parse_diff_response(entries)

        assert list(diffs) == ["donor.vital_status"]
        assert diffs["donor.vital_status"].after["isArray"] is True


class TestDictionaryManager:
    """Tests for tracking the current dictionary version."""

    def test_no_current_version(self, db, schema_provider):
        manager = DictionaryManager(schema_provider, ConfigRepository(db), NAME)

        assert manager.get_current_version() is None
        with pytest.raises(SchemaFetchError):
            manager.get_current()

    def test_load_and_save_version(self, db, schema_provider):
        manager = DictionaryManager(schema_provider, ConfigRepository(db), NAME)

        manager.load_and_save_version("2.0")

        assert manager.get_current().version == "2.0"
        other = DictionaryManager(schema_provider, ConfigRepository(db), NAME)
        assert other.get_current_version() == "2.0"

    def test_fetch_is_cached(self, db, base_dictionary):
        provider = Mock(wraps=InMemorySchemaProvider([base_dictionary]))
        manager = DictionaryManager(provider, ConfigRepository(db), NAME)

        manager.fetch("1.0")
        manager.fetch("1.0")

        assert provider.fetch.call_count == 1

    def test_analyze_changes(self, dictionary_manager):
        analysis = dictionary_manager.analyze_changes("1.0", "2.0")

        assert analysis.added_fields[0].name == "specimen.specimen_anatomic_location"
