"""
KernelConfig schema.

Frozen dataclasses describing everything the production kernel reads at
start-up.  YAML documents are parsed into these types by the loader; the
tracker composition root consumes them.

Every field has a default, so an empty document (or no document at all)
yields a working in-process configuration backed by in-memory SQLite.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from production_kernel.domain.values import ProducedSource, ProductionStage

# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """Engine settings passed to ``production_kernel.db.build_engine``."""

    url: str = "sqlite://"
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("database.url must not be empty")
        if self.pool_size < 1:
            raise ValueError(f"database.pool_size must be >= 1, got {self.pool_size}")
        if self.max_overflow < 0:
            raise ValueError(
                f"database.max_overflow must be >= 0, got {self.max_overflow}"
            )


# ---------------------------------------------------------------------------
# Ledger and reconciliation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerConfig:
    """
    Where ``total_produced`` comes from, and how long a delta may wait.

    produced_source:
        ``target_events`` -- hourly_production carried on target events.
        ``production_entries`` -- output_qty of ``counted_stage`` entries.
    default_timeout_seconds:
        Per-delta lock wait; None waits indefinitely.
    """

    produced_source: ProducedSource = ProducedSource.TARGET_EVENTS
    counted_stage: ProductionStage = ProductionStage.SEWING
    default_timeout_seconds: float | None = 10.0

    def __post_init__(self) -> None:
        if self.default_timeout_seconds is not None and self.default_timeout_seconds <= 0:
            raise ValueError(
                "ledger.default_timeout_seconds must be positive, "
                f"got {self.default_timeout_seconds}"
            )

    @property
    def targets_carry_production(self) -> bool:
        return self.produced_source == ProducedSource.TARGET_EVENTS


@dataclass(frozen=True)
class BulkConfig:
    """Bulk deletion fan-out across styles."""

    max_workers: int = 4

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ValueError(f"bulk.max_workers must be >= 1, got {self.max_workers}")


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self) -> None:
        if self.level not in _LEVELS:
            raise ValueError(
                f"logging.level must be one of {', '.join(_LEVELS)}, got {self.level!r}"
            )


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KernelConfig:
    """The complete runtime configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    bulk: BulkConfig = field(default_factory=BulkConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source_path: str | None = None  # YAML file this was loaded from, if any
