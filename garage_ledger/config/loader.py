"""
Configuration management and loading.

Handles application settings read from a YAML file.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml

from garage_ledger.storage.db import DEFAULT_DB_PATH

CONFIG_ENV_VAR = "GARAGE_LEDGER_CONFIG"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class InventoryConfig:
    """Thresholds for the inventory screens."""
    low_stock_threshold: int = 5
    top_value_parts: int = 10

    def __post_init__(self):
        """Validate thresholds."""
        if self.low_stock_threshold < 0:
            raise ValueError("low_stock_threshold must be >= 0")
        if self.top_value_parts <= 0:
            raise ValueError("top_value_parts must be > 0")


@dataclass(frozen=True)
class DebtsConfig:
    """Defaults for the debt listing."""
    include_settled: bool = False
    page_size: int = 50

    def __post_init__(self):
        if self.page_size <= 0:
            raise ValueError("page_size must be > 0")


@dataclass(frozen=True)
class LedgerConfig:
    """Complete ledger configuration."""
    database_path: str = DEFAULT_DB_PATH
    inventory: InventoryConfig = field(default_factory=InventoryConfig)
    debts: DebtsConfig = field(default_factory=DebtsConfig)
    max_retries: int = 3
    log_level: str = "INFO"

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log level must be one of: {list(LOG_LEVELS)}")

    @property
    def logging_level(self) -> int:
        return getattr(logging, self.log_level)


_ALLOWED_KEYS = {
    "database": {"path"},
    "inventory": {"low_stock_threshold", "top_value_parts"},
    "debts": {"include_settled", "page_size"},
    "concurrency": {"max_retries"},
    "logging": {"level"},
}


def load_ledger_config(path: str) -> LedgerConfig:
    """Load and validate ledger configuration from YAML file.

    Every section is optional; anything missing keeps its default.
    Unknown sections or keys are errors rather than being ignored.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated LedgerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Ledger config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return LedgerConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping of sections")

    unknown_keys = set(raw_config.keys()) - set(_ALLOWED_KEYS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {name: _section(raw_config, name) for name in _ALLOWED_KEYS}

    database_path = sections["database"].get("path", DEFAULT_DB_PATH)
    if not isinstance(database_path, str) or not database_path.strip():
        raise ValueError("'database.path' must be a non-empty string")

    inventory_data = sections["inventory"]
    inventory = InventoryConfig(
        low_stock_threshold=_int(inventory_data, "low_stock_threshold", "inventory", 5),
        top_value_parts=_int(inventory_data, "top_value_parts", "inventory", 10),
    )

    debts_data = sections["debts"]
    include_settled = debts_data.get("include_settled", False)
    if not isinstance(include_settled, bool):
        raise ValueError("'debts.include_settled' must be true or false")
    debts = DebtsConfig(
        include_settled=include_settled,
        page_size=_int(debts_data, "page_size", "debts", 50),
    )

    level = sections["logging"].get("level", "INFO")
    if not isinstance(level, str):
        raise ValueError("'logging.level' must be a string")

    return LedgerConfig(
        database_path=database_path,
        inventory=inventory,
        debts=debts,
        max_retries=_int(sections["concurrency"], "max_retries", "concurrency", 3),
        log_level=level.upper(),
    )


def resolve_config(path: Optional[str] = None) -> LedgerConfig:
    """Load the config named by ``path`` or $GARAGE_LEDGER_CONFIG, else defaults."""
    path = path or os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return LedgerConfig()
    return load_ledger_config(path)


def _section(raw_config: Dict, name: str) -> Dict:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - _ALLOWED_KEYS[name]
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _int(data: Dict, key: str, path: str, default: int) -> int:
    value = data.get(key, default)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' in {path} must be an integer")
    return value
