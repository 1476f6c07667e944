"""
Configuration management and loading.

Business details (including the sales tax rate frozen onto new invoices) and
storage settings, read from a YAML file.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_DB_PATH = "offline_books.db"


@dataclass(frozen=True)
class BusinessConfig:
    """Business identity printed on documents, plus the sales tax rate."""
    name: str
    sales_tax_rate: float
    address: str = ""
    phone: str = ""
    website: str = ""
    email: str = ""
    ein: str = ""

    def __post_init__(self):
        """Validate the tax rate is a fraction in [0, 1]."""
        if not self.name:
            raise ValueError("business name is required")
        if isinstance(self.sales_tax_rate, bool) or not isinstance(self.sales_tax_rate, (int, float)):
            raise ValueError("sales_tax_rate must be a number")
        if not 0 <= self.sales_tax_rate <= 1:
            raise ValueError("sales_tax_rate must be between 0 and 1")

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StorageConfig:
    """Where the local database lives."""
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        if not self.db_path:
            raise ValueError("db_path must not be empty")


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    business: BusinessConfig
    storage: StorageConfig = field(default_factory=StorageConfig)


DEFAULT_BUSINESS = BusinessConfig(
    name="Owensboro Mowing Company",
    address="Owensboro, Kentucky 42303",
    phone="270.222.9613 or 270.499.7758",
    website="owensboromowingcompany.com",
    ein="93-2058075",
    sales_tax_rate=0.06,
)

DEFAULT_CONFIG = AppConfig(business=DEFAULT_BUSINESS)


def load_config(path: str) -> AppConfig:
    """Load and validate application configuration from a YAML file.

    Strict validation: unknown keys are rejected so that a typo in the tax
    rate key cannot silently fall back to a default.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {'business', 'storage'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    if 'business' not in raw_config:
        raise ValueError("Missing required 'business' section")
    business = _parse_business(raw_config['business'])

    storage = StorageConfig()
    if raw_config.get('storage') is not None:
        storage = _parse_storage(raw_config['storage'])

    return AppConfig(business=business, storage=storage)


def load_config_or_default(path: Optional[str]) -> AppConfig:
    """Load ``path`` when given, otherwise return the built-in defaults."""
    if path is None:
        return DEFAULT_CONFIG
    return load_config(path)


def _parse_business(data: Any) -> BusinessConfig:
    """Parse and validate the business section.

    Raises:
        ValueError: If the section is invalid
    """
    if not isinstance(data, dict):
        raise ValueError("'business' must be a dictionary")

    optional_keys = {'address', 'phone', 'website', 'email', 'ein'}
    allowed_keys = {'name', 'sales_tax_rate'} | optional_keys
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown business keys: {unknown_keys}")

    if 'name' not in data:
        raise ValueError("Missing required 'name' in business")
    if not isinstance(data['name'], str):
        raise ValueError("'name' in business must be a string")

    if 'sales_tax_rate' not in data:
        raise ValueError("Missing required 'sales_tax_rate' in business")
    rate = data['sales_tax_rate']
    if isinstance(rate, bool) or not isinstance(rate, (int, float)):
        raise ValueError("'sales_tax_rate' in business must be a number")

    extras = {}
    for key in optional_keys:
        value = data.get(key)
        if value is None:
            continue
        # YAML reads unquoted phone numbers and EINs as numbers
        extras[key] = str(value)

    return BusinessConfig(name=data['name'], sales_tax_rate=float(rate), **extras)


def _parse_storage(data: Any) -> StorageConfig:
    if not isinstance(data, dict):
        raise ValueError("'storage' must be a dictionary")

    unknown_keys = set(data.keys()) - {'db_path'}
    if unknown_keys:
        raise ValueError(f"Unknown storage keys: {unknown_keys}")

    db_path = data.get('db_path', DEFAULT_DB_PATH)
    if not isinstance(db_path, str):
        raise ValueError("'db_path' in storage must be a string")
    return StorageConfig(db_path=db_path)
