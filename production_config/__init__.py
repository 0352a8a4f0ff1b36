"""
Production Configuration (``production_config``).

Public API
----------
``get_active_config()``
    The runtime entry point.  Reads the YAML path from the
    ``PRODUCTION_KERNEL_CONFIG`` environment variable (defaults when unset)
    and lets ``DATABASE_URL`` override ``database.url``.

``load_config(path)``
    Parse one YAML file.  No environment lookups.

Architecture position
---------------------
**Config layer** -- consumed by ``ProductionTracker.from_config``.  Depends
only on ``production_kernel.domain`` enums; no services, no database.

Guarantees
----------
* The returned ``KernelConfig`` is frozen and fully validated.
* A ``PRODUCTION_CONFIG_TRACE`` log entry is emitted on every call to
  ``get_active_config``.
"""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path

from production_config.loader import load_yaml_file, parse_config
from production_config.schema import (
    BulkConfig,
    DatabaseConfig,
    KernelConfig,
    LedgerConfig,
    LoggingConfig,
)
from production_kernel.logging_config import get_logger

__all__ = [
    "BulkConfig",
    "CONFIG_PATH_ENV",
    "DATABASE_URL_ENV",
    "DatabaseConfig",
    "KernelConfig",
    "LedgerConfig",
    "LoggingConfig",
    "get_active_config",
    "load_config",
    "parse_config",
]

CONFIG_PATH_ENV = "PRODUCTION_KERNEL_CONFIG"
DATABASE_URL_ENV = "DATABASE_URL"

_logger = get_logger("config")


def load_config(path: str | Path) -> KernelConfig:
    """Load and validate a single YAML configuration file."""
    path = Path(path)
    return parse_config(load_yaml_file(path), source_path=str(path))


def get_active_config() -> KernelConfig:
    """The ONLY runtime configuration entrypoint.

    Raises:
        FileNotFoundError: ``PRODUCTION_KERNEL_CONFIG`` names a missing file.
        ValueError: the document fails validation.
    """
    path = os.environ.get(CONFIG_PATH_ENV)
    config = load_config(path) if path else KernelConfig()

    url = os.environ.get(DATABASE_URL_ENV)
    if url:
        config = replace(config, database=replace(config.database, url=url))

    _logger.info(
        "PRODUCTION_CONFIG_TRACE",
        extra={
            "trace_type": "PRODUCTION_CONFIG_TRACE",
            "source_path": config.source_path,
            "database_url_from_env": bool(url),
            "produced_source": config.ledger.produced_source.value,
            "counted_stage": config.ledger.counted_stage.value,
            "bulk_max_workers": config.bulk.max_workers,
        },
    )
    return config
