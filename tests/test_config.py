"""
Unit tests for configuration loading and validation.

Tests strict validation and defaults for the ledger config.
"""

import logging
import os
import tempfile
from unittest.mock import patch

import pytest
import yaml

from garage_ledger.config.loader import (
    CONFIG_ENV_VAR,
    DebtsConfig,
    InventoryConfig,
    LedgerConfig,
    load_ledger_config,
    resolve_config,
)
from garage_ledger.storage.db import DEFAULT_DB_PATH


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a full configuration loads correctly."""
        config_data = {
            "database": {"path": "/var/lib/garage/ledger.db"},
            "inventory": {"low_stock_threshold": 3, "top_value_parts": 5},
            "debts": {"include_settled": True, "page_size": 20},
            "concurrency": {"max_retries": 5},
            "logging": {"level": "debug"},
        }

        config = load_ledger_config(self._write_config(config_data))

        assert config.database_path == "/var/lib/garage/ledger.db"
        assert config.inventory == InventoryConfig(low_stock_threshold=3, top_value_parts=5)
        assert config.debts == DebtsConfig(include_settled=True, page_size=20)
        assert config.max_retries == 5
        assert config.log_level == "DEBUG"
        assert config.logging_level == logging.DEBUG

    def test_missing_sections_keep_defaults(self):
        """Test that a partial configuration fills in defaults."""
        config = load_ledger_config(self._write_config({"inventory": {"low_stock_threshold": 8}}))

        assert config.database_path == DEFAULT_DB_PATH
        assert config.inventory.low_stock_threshold == 8
        assert config.inventory.top_value_parts == 10
        assert config.debts == DebtsConfig()
        assert config.max_retries == 3

    def test_empty_file_gives_defaults(self):
        """Test that an empty file is a default configuration."""
        path = os.path.join(self.temp_dir, "empty.yaml")
        open(path, 'w').close()

        assert load_ledger_config(path) == LedgerConfig()

    def test_missing_file_raises_error(self):
        """Test that missing config file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_ledger_config(os.path.join(self.temp_dir, "nope.yaml"))

    def test_unknown_section_raises_error(self):
        """Test that unknown sections are rejected."""
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_ledger_config(self._write_config({"budget": {"daily": 1}}))

    def test_unknown_key_raises_error(self):
        """Test that unknown keys inside a section are rejected."""
        with pytest.raises(ValueError, match="Unknown keys in debts"):
            load_ledger_config(self._write_config({"debts": {"page": 2}}))

    def test_non_mapping_raises_error(self):
        with pytest.raises(ValueError):
            load_ledger_config(self._write_config(["database"]))

    def test_invalid_values_raise_error(self):
        """Test that wrongly typed or out-of-range values are rejected."""
        invalid = [
            {"inventory": {"low_stock_threshold": "five"}},
            {"inventory": {"top_value_parts": 0}},
            {"debts": {"include_settled": "yes"}},
            {"debts": {"page_size": True}},
            {"concurrency": {"max_retries": 0}},
            {"logging": {"level": "chatty"}},
            {"database": {"path": ""}},
            {"database": "ledger.db"},
        ]
        for index, config_data in enumerate(invalid):
            path = self._write_config(config_data, f"invalid_{index}.yaml")
            with pytest.raises(ValueError):
                load_ledger_config(path)

    def test_invalid_yaml_raises_error(self):
        path = os.path.join(self.temp_dir, "broken.yaml")
        with open(path, 'w', encoding='utf-8') as f:
            f.write("database: [unclosed\n")

        with pytest.raises(yaml.YAMLError):
            load_ledger_config(path)


class TestResolveConfig:
    """Config discovery from the argument or the environment."""

    def test_defaults_without_path(self):
        with patch.dict(os.environ, {}, clear=True):
            assert resolve_config() == LedgerConfig()

    def test_environment_variable_is_used(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, "ledger.yaml")
            with open(path, 'w', encoding='utf-8') as f:
                yaml.dump({"concurrency": {"max_retries": 7}}, f)

            with patch.dict(os.environ, {CONFIG_ENV_VAR: path}):
                assert resolve_config().max_retries == 7

    def test_explicit_path_wins(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            path = os.path.join(temp_dir, "ledger.yaml")
            with open(path, 'w', encoding='utf-8') as f:
                yaml.dump({"concurrency": {"max_retries": 2}}, f)

            with patch.dict(os.environ, {CONFIG_ENV_VAR: "/does/not/exist.yaml"}):
                assert resolve_config(path).max_retries == 2
