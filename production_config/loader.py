"""
Configuration Loader (``production_config.loader``).

Responsibility
--------------
Loads a YAML document and parses it into the typed
``production_config.schema`` dataclasses.  The runtime entry point is
``production_config.get_active_config()``; tests call ``parse_config``
directly with literal dicts.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key  -> ``ValueError`` naming the key.
* Wrongly typed value  -> ``ValueError`` naming the key.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from production_config.schema import (
    BulkConfig,
    DatabaseConfig,
    KernelConfig,
    LedgerConfig,
    LoggingConfig,
)
from production_kernel.domain.values import ProducedSource, ProductionStage

_SECTIONS = ("database", "ledger", "bulk", "logging")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Postconditions:
        - Returns a ``dict`` (possibly empty if the YAML is empty).
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


def _section(data: dict[str, Any], name: str, allowed: tuple[str, ...]) -> dict[str, Any]:
    raw = data.get(name) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{name}: must be a mapping")
    unknown = sorted(set(raw) - set(allowed))
    if unknown:
        raise ValueError(f"{name}: unknown key(s) {', '.join(unknown)}")
    return raw


def _int(section: str, key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{section}.{key} must be an integer, got {value!r}")
    return value


def _bool(section: str, key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{section}.{key} must be true or false, got {value!r}")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    raw = _section(data, "database", ("url", "echo", "pool_size", "max_overflow"))
    kwargs: dict[str, Any] = {}
    if "url" in raw:
        if not isinstance(raw["url"], str):
            raise ValueError(f"database.url must be a string, got {raw['url']!r}")
        kwargs["url"] = raw["url"]
    if "echo" in raw:
        kwargs["echo"] = _bool("database", "echo", raw["echo"])
    for key in ("pool_size", "max_overflow"):
        if key in raw:
            kwargs[key] = _int("database", key, raw[key])
    return DatabaseConfig(**kwargs)


def parse_ledger(data: dict[str, Any]) -> LedgerConfig:
    raw = _section(
        data, "ledger", ("produced_source", "counted_stage", "default_timeout_seconds")
    )
    kwargs: dict[str, Any] = {}
    if "produced_source" in raw:
        try:
            kwargs["produced_source"] = ProducedSource(str(raw["produced_source"]).lower())
        except ValueError:
            allowed = ", ".join(s.value for s in ProducedSource)
            raise ValueError(
                f"ledger.produced_source must be one of {allowed}, "
                f"got {raw['produced_source']!r}"
            ) from None
    if "counted_stage" in raw:
        try:
            kwargs["counted_stage"] = ProductionStage(str(raw["counted_stage"]).upper())
        except ValueError:
            raise ValueError(
                f"ledger.counted_stage is not a production stage: {raw['counted_stage']!r}"
            ) from None
    if "default_timeout_seconds" in raw:
        value = raw["default_timeout_seconds"]
        if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
            raise ValueError(
                f"ledger.default_timeout_seconds must be a number or null, got {value!r}"
            )
        kwargs["default_timeout_seconds"] = float(value) if value is not None else None
    return LedgerConfig(**kwargs)


def parse_bulk(data: dict[str, Any]) -> BulkConfig:
    raw = _section(data, "bulk", ("max_workers",))
    if "max_workers" in raw:
        return BulkConfig(max_workers=_int("bulk", "max_workers", raw["max_workers"]))
    return BulkConfig()


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    raw = _section(data, "logging", ("level",))
    if "level" in raw:
        return LoggingConfig(level=str(raw["level"]).upper())
    return LoggingConfig()


def parse_config(data: dict[str, Any], source_path: str | None = None) -> KernelConfig:
    """Parse a whole document into a KernelConfig."""
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"unknown configuration section(s) {', '.join(unknown)}")
    return KernelConfig(
        database=parse_database(data),
        ledger=parse_ledger(data),
        bulk=parse_bulk(data),
        logging=parse_logging(data),
        source_path=source_path,
    )
