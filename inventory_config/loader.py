"""
Configuration Loader (``inventory_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``inventory_config.schema`` dataclasses.  The single public entry point for
runtime config is ``inventory_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown keys are rejected; a typo never silently falls back to a default.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``config_id`` / ``version``  -> ``KeyError`` propagates.
* Out-of-range or unknown values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from inventory_config.schema import (
    ConcurrencyConfig,
    DatabaseConfig,
    InventoryConfig,
    LoggingConfig,
    ReconciliationConfig,
)

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _parse_section(cls: type, name: str, data: Any) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"Section '{name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in section '{name}': {sorted(unknown)}")
    return cls(**data)


def validate_config(config: InventoryConfig) -> list[str]:
    """Return every problem with ``config``; empty when valid."""
    errors: list[str] = []
    db = config.database
    if not db.url:
        errors.append("database.url is required")
    if db.pool_size < 1:
        errors.append("database.pool_size must be >= 1")
    if db.max_overflow < 0:
        errors.append("database.max_overflow must be >= 0")
    if db.pool_timeout <= 0:
        errors.append("database.pool_timeout must be > 0")
    if db.sqlite_busy_timeout_ms < 0:
        errors.append("database.sqlite_busy_timeout_ms must be >= 0")

    cc = config.concurrency
    if cc.lock_timeout_seconds <= 0:
        errors.append("concurrency.lock_timeout_seconds must be > 0")
    if cc.statement_timeout_ms is not None and cc.statement_timeout_ms <= 0:
        errors.append("concurrency.statement_timeout_ms must be > 0 when set")

    if config.logging.level.upper() not in _LOG_LEVELS:
        errors.append(f"logging.level must be one of {sorted(_LOG_LEVELS)}")
    return errors


def parse_config(data: dict[str, Any]) -> InventoryConfig:
    """
    Parse and validate an InventoryConfig from a dict.

    Raises:
        KeyError: ``config_id`` or ``version`` is missing.
        ValueError: unknown keys or invalid values.
    """
    top_level = {"config_id", "version", "database", "concurrency", "logging", "reconciliation"}
    unknown = set(data) - top_level
    if unknown:
        raise ValueError(f"Unknown top-level keys: {sorted(unknown)}")

    config = InventoryConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        database=_parse_section(DatabaseConfig, "database", data.get("database")),
        concurrency=_parse_section(ConcurrencyConfig, "concurrency", data.get("concurrency")),
        logging=_parse_section(LoggingConfig, "logging", data.get("logging")),
        reconciliation=_parse_section(
            ReconciliationConfig, "reconciliation", data.get("reconciliation")
        ),
        checksum=compute_checksum(data),
    )

    errors = validate_config(config)
    if errors:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )
    return config


def log_level(config: InventoryConfig) -> int:
    """The ``logging`` module level for ``config.logging.level``."""
    return getattr(logging, config.logging.level.upper())
