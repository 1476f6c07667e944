"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for business and storage config.
"""

import os
import tempfile

import pytest
import yaml

from offline_books.config.loader import (
    DEFAULT_CONFIG,
    DEFAULT_DB_PATH,
    BusinessConfig,
    StorageConfig,
    load_config,
    load_config_or_default,
)


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
        """Test that a valid configuration loads correctly."""
        config_data = {
            "business": {
                "name": "Green Acres Lawn",
                "sales_tax_rate": 0.0725,
                "address": "12 Main St",
                "email": "office@greenacres.example",
            },
            "storage": {
                "db_path": "/var/lib/books/books.db"
            }
        }

        config = load_config(self._write_config(config_data))

        assert config.business.name == "Green Acres Lawn"
        assert config.business.sales_tax_rate == 0.0725
        assert config.business.address == "12 Main St"
        assert config.business.email == "office@greenacres.example"
        assert config.business.phone == ""
        assert config.storage.db_path == "/var/lib/books/books.db"

    def test_config_without_storage_uses_default_path(self):
        """Test that the storage section is optional."""
        config_data = {"business": {"name": "Solo", "sales_tax_rate": 0}}

        config = load_config(self._write_config(config_data))

        assert config.storage == StorageConfig()
        assert config.storage.db_path == DEFAULT_DB_PATH
        assert config.business.sales_tax_rate == 0.0

    def test_numeric_contact_fields_become_strings(self):
        """Test that unquoted phone numbers are read as text."""
        config_data = {"business": {"name": "Solo", "sales_tax_rate": 0.06, "phone": 2702229613}}

        config = load_config(self._write_config(config_data))

        assert config.business.phone == "2702229613"

    def test_missing_file_raises(self):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_config(os.path.join(self.temp_dir, "nope.yaml"))

    def test_empty_file_raises(self):
        """Test that an empty file is rejected."""
        config_path = os.path.join(self.temp_dir, "empty.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("")

        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_config(config_path)

    def test_invalid_yaml_raises(self):
        """Test that malformed YAML raises YAMLError."""
        config_path = os.path.join(self.temp_dir, "bad.yaml")
        with open(config_path, 'w', encoding='utf-8') as f:
            f.write("business: [unclosed\n")

        with pytest.raises(yaml.YAMLError, match="Invalid YAML"):
            load_config(config_path)

    def test_non_mapping_raises(self):
        """Test that a top-level list is rejected."""
        with pytest.raises(ValueError, match="Configuration must be a mapping"):
            load_config(self._write_config(["business"]))

    def test_unknown_top_level_key_raises(self):
        """Test that unknown top-level keys are rejected."""
        config_data = {
            "business": {"name": "Solo", "sales_tax_rate": 0.06},
            "printer": {"model": "x"}
        }
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_config(self._write_config(config_data))

    def test_missing_business_raises(self):
        """Test that the business section is required."""
        with pytest.raises(ValueError, match="Missing required 'business' section"):
            load_config(self._write_config({"storage": {"db_path": "x.db"}}))

    def test_misspelled_tax_key_raises(self):
        """Test that a typo in the tax rate key is not silently ignored."""
        config_data = {"business": {"name": "Solo", "sales_tax": 0.06}}
        with pytest.raises(ValueError, match="Unknown business keys"):
            load_config(self._write_config(config_data))

    def test_missing_tax_rate_raises(self):
        """Test that the tax rate is required."""
        with pytest.raises(ValueError, match="Missing required 'sales_tax_rate'"):
            load_config(self._write_config({"business": {"name": "Solo"}}))

    @pytest.mark.parametrize("rate", ["six percent", True, -0.01, 6])
    def test_invalid_tax_rate_raises(self, rate):
        """Test that the tax rate must be a fraction between 0 and 1."""
        config_data = {"business": {"name": "Solo", "sales_tax_rate": rate}}
        with pytest.raises(ValueError, match="sales_tax_rate"):
            load_config(self._write_config(config_data))

    def test_unknown_storage_key_raises(self):
        """Test that storage keys are validated."""
        config_data = {
            "business": {"name": "Solo", "sales_tax_rate": 0.06},
            "storage": {"path": "x.db"}
        }
        with pytest.raises(ValueError, match="Unknown storage keys"):
            load_config(self._write_config(config_data))

    def test_default_when_no_path(self):
        """Test the fallback used when no config file is given."""
        assert load_config_or_default(None) is DEFAULT_CONFIG
        assert DEFAULT_CONFIG.business.sales_tax_rate == 0.06


class TestBusinessConfig:
    """Test BusinessConfig validation."""

    def test_bounds_inclusive(self):
        """Test that 0 and 1 are both valid rates."""
        assert BusinessConfig(name="A", sales_tax_rate=0).sales_tax_rate == 0
        assert BusinessConfig(name="A", sales_tax_rate=1).sales_tax_rate == 1

    def test_name_required(self):
        """Test that the business name cannot be empty."""
        with pytest.raises(ValueError, match="business name is required"):
            BusinessConfig(name="", sales_tax_rate=0.06)

    def test_as_dict(self):
        """Test the serializable view."""
        business = BusinessConfig(name="A", sales_tax_rate=0.06, ein="12-3")
        assert business.as_dict() == {
            "name": "A",
            "sales_tax_rate": 0.06,
            "address": "",
            "phone": "",
            "website": "",
            "email": "",
            "ein": "12-3",
        }
