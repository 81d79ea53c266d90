"""
InventoryConfig schema.

Runtime settings for the inventory kernel, parsed from a YAML configuration
set by the loader.  Every section is a frozen dataclass; defaults here are
the values used when a key is absent from the YAML.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """Engine settings passed to ``init_engine_from_config``."""

    url: str = "sqlite:///inventory.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    sqlite_busy_timeout_ms: int = 30000


@dataclass(frozen=True)
class ConcurrencyConfig:
    """Transaction-boundary timeouts."""

    lock_timeout_seconds: float = 10.0
    statement_timeout_ms: int | None = None  # PostgreSQL only


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class ReconciliationConfig:
    persist_drift_reports: bool = True


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InventoryConfig:
    """A loaded, validated configuration set."""

    config_id: str
    version: int
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    checksum: str = ""
