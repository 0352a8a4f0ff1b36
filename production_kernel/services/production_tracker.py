"""
production_kernel.services.production_tracker -- Facade and DI container.

Responsibility:
    Creates every kernel service exactly once, wires them to one set of
    repositories, and exposes the public operations: targets, production
    entries, assignments, balances and reports.

Architecture position:
    Services -- the top of the kernel.  Callers (an HTTP layer, a CLI,
    tests) talk to the tracker only; no service constructs another.

Invariants enforced:
    - One ReconciliationEngine per tracker: every ledger write goes
      through the same BalanceLedger, so per-style serialization and
      idempotency hold across targets, entries and bulk deletes.
    - The produced source is fixed at construction.  When production
      entries feed ``total_produced``, target deltas carry no production.

Usage:
    tracker = ProductionTracker.from_config(get_active_config())
    tracker.create_target({
        "line_code": "L1", "style_code": "ST001", "date": "2024-03-01",
        "line_target": 300, "hourly_production": 0,
    })
    tracker.get_balance("ST001")
    # {"total_target": 300, "total_produced": 0, "current_balance": 300, ...}
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from production_config.schema import KernelConfig, LedgerConfig
from production_kernel.db.engine import build_engine, create_tables, make_session_factory
from production_kernel.domain.calendar import DateRange, parse_calendar_day
from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.domain.validation import parse_stage
from production_kernel.domain.values import (
    BulkDeleteReport,
    EntryWriteResult,
    ProductionEntry,
    ProductionStage,
    ProductionSummary,
    RollupReport,
    StyleAssignment,
    StyleBalance,
    TargetEvent,
    TargetReport,
    TargetWriteResult,
)
from production_kernel.exceptions import ValidationError
from production_kernel.logging_config import configure_logging, get_logger
from production_kernel.repositories.base import (
    AssignmentRepository,
    LedgerRepository,
    ProductionEntryRepository,
    TargetRepository,
)
from production_kernel.repositories.memory import (
    InMemoryAssignmentRepository,
    InMemoryLedgerRepository,
    InMemoryProductionEntryRepository,
    InMemoryTargetRepository,
)
from production_kernel.repositories.sqlalchemy import (
    SqlAssignmentRepository,
    SqlLedgerRepository,
    SqlProductionEntryRepository,
    SqlTargetRepository,
)
from production_kernel.selectors.rollup_selector import DailyRollupAggregator
from production_kernel.services.assignment_service import AssignmentService
from production_kernel.services.bulk_reconciliation import BulkReconciliationCoordinator
from production_kernel.services.ledger_service import BalanceLedger
from production_kernel.services.production_entry_service import ProductionEntryService
from production_kernel.services.reconciliation_engine import ReconciliationEngine
from production_kernel.services.target_service import TargetService

logger = get_logger("services.tracker")


class ProductionTracker:
    """
    Public entry point of the production kernel.

    Args:
        targets, entries, assignments, ledger: Repositories.  All four must
            share one backing store for reports to agree with the ledger.
        config: Kernel configuration; only ``ledger`` and ``bulk`` are read
            here (storage is already built by the caller).
        clock: Time source for timestamps; SystemClock by default.
    """

    def __init__(
        self,
        *,
        targets: TargetRepository,
        entries: ProductionEntryRepository,
        assignments: AssignmentRepository,
        ledger: LedgerRepository,
        config: KernelConfig | None = None,
        clock: Clock | None = None,
    ):
        self._config = config or KernelConfig()
        self._clock = clock or SystemClock()
        self._engine: Engine | None = None

        ledger_config: LedgerConfig = self._config.ledger
        timeout = ledger_config.default_timeout_seconds
        include_production = ledger_config.targets_carry_production

        self._ledger = BalanceLedger(ledger, self._clock, default_timeout=timeout)
        self._reconciliation = ReconciliationEngine(self._ledger)
        self._target_service = TargetService(
            targets,
            self._reconciliation,
            self._clock,
            include_production=include_production,
        )
        self._entry_service = ProductionEntryService(
            entries,
            self._reconciliation,
            self._clock,
            produced_source=ledger_config.produced_source,
            counted_stage=ledger_config.counted_stage,
        )
        self._bulk = BulkReconciliationCoordinator(
            targets,
            self._reconciliation,
            include_production=include_production,
            max_workers=self._config.bulk.max_workers,
        )
        self._assignment_service = AssignmentService(assignments)
        self._aggregator = DailyRollupAggregator(entries, targets)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def in_memory(
        cls,
        clock: Clock | None = None,
        config: KernelConfig | None = None,
    ) -> ProductionTracker:
        """A tracker over fresh in-memory repositories."""
        return cls(
            targets=InMemoryTargetRepository(),
            entries=InMemoryProductionEntryRepository(),
            assignments=InMemoryAssignmentRepository(),
            ledger=InMemoryLedgerRepository(),
            config=config,
            clock=clock,
        )

    @classmethod
    def from_session_factory(
        cls,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        config: KernelConfig | None = None,
    ) -> ProductionTracker:
        """A tracker whose repositories open sessions from ``session_factory``."""
        return cls(
            targets=SqlTargetRepository(session_factory),
            entries=SqlProductionEntryRepository(session_factory),
            assignments=SqlAssignmentRepository(session_factory),
            ledger=SqlLedgerRepository(session_factory),
            config=config,
            clock=clock,
        )

    @classmethod
    def from_config(
        cls,
        config: KernelConfig,
        clock: Clock | None = None,
        *,
        create_schema: bool = True,
    ) -> ProductionTracker:
        """
        Build engine, schema and tracker from a KernelConfig.

        Also configures the production_kernel logger hierarchy at the
        configured level (a no-op if logging was configured already).
        """
        configure_logging(level=config.logging.level)
        db = config.database
        engine = build_engine(
            db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
        )
        if create_schema:
            create_tables(engine)
        tracker = cls.from_session_factory(make_session_factory(engine), clock, config)
        tracker._engine = engine
        logger.info(
            "tracker_started",
            extra={
                "dialect": engine.dialect.name,
                "produced_source": config.ledger.produced_source.value,
                "max_workers": config.bulk.max_workers,
            },
        )
        return tracker

    def close(self) -> None:
        """Dispose the engine this tracker created, if any."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    @property
    def config(self) -> KernelConfig:
        return self._config

    @property
    def ledger(self) -> BalanceLedger:
        return self._ledger

    @property
    def reconciliation(self) -> ReconciliationEngine:
        return self._reconciliation

    @property
    def aggregator(self) -> DailyRollupAggregator:
        return self._aggregator

    # ------------------------------------------------------------------
    # Targets
    # ------------------------------------------------------------------

    def create_target(
        self, payload: Mapping[str, Any], actor_id: str | None = None
    ) -> TargetWriteResult:
        """
        Record a target and apply its delta.

        Raises:
            ValidationError: malformed payload; nothing is written.
        """
        return self._target_service.create(payload, actor_id)

    def delete_target(self, target_id: str) -> TargetWriteResult:
        """
        Reverse a target's delta, then delete it.

        Raises:
            TargetNotFoundError: unknown id.
        """
        return self._target_service.delete(target_id)

    def update_target(
        self,
        target_id: str,
        changes: Mapping[str, Any],
        actor_id: str | None = None,
    ) -> TargetWriteResult:
        """Replace a target; the result carries the new target (new id)."""
        return self._target_service.update(target_id, changes, actor_id)

    def get_target(self, target_id: str) -> TargetEvent:
        return self._target_service.get(target_id)

    def list_targets(
        self,
        start: object,
        end: object | None = None,
        line_code: str | None = None,
        style_code: str | None = None,
    ) -> list[TargetEvent]:
        return self._target_service.list(_range(start, end), line_code, style_code)

    def bulk_delete_targets(
        self,
        request: Mapping[str, Any] | Iterable[str],
        actor_id: str | None = None,
    ) -> BulkDeleteReport:
        """
        Reverse and delete many targets.

        ``request`` is either ``{"ids": [...]}`` or the id list itself.
        """
        if isinstance(request, Mapping):
            if "ids" not in request:
                raise ValidationError.single("ids", "is required")
            ids = request["ids"]
        else:
            ids = request
        return self._bulk.delete_targets(ids, actor_id)

    # ------------------------------------------------------------------
    # Production entries
    # ------------------------------------------------------------------

    def add_production_entry(self, payload: Mapping[str, Any]) -> EntryWriteResult:
        """
        Raises:
            ValidationError: malformed payload.
            DuplicateProductionEntryError: the (day, hour, line, style, stage)
                slot already has an entry.
        """
        return self._entry_service.add(payload)

    def correct_production_entry(
        self, entry_id: str, quantities: Mapping[str, Any]
    ) -> EntryWriteResult:
        return self._entry_service.correct(entry_id, quantities)

    def delete_production_entry(self, entry_id: str) -> EntryWriteResult:
        return self._entry_service.delete(entry_id)

    def get_production_entry(self, entry_id: str) -> ProductionEntry:
        return self._entry_service.get(entry_id)

    def list_production_entries(
        self,
        start: object,
        end: object | None = None,
        line_code: str | None = None,
        style_code: str | None = None,
        stage: ProductionStage | str | None = None,
    ) -> list[ProductionEntry]:
        return self._entry_service.list(
            _range(start, end),
            line_code,
            style_code,
            parse_stage(stage) if stage is not None else None,
        )

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def get_balance(self, style_code: str) -> dict[str, Any]:
        """
        Current balance of a style.  Unknown styles report all zeros and
        ``last_updated`` None.
        """
        if not isinstance(style_code, str) or not style_code.strip():
            raise ValidationError.single("style_code", "is required")
        balance = self._ledger.get(style_code.strip())
        data = balance.to_dict()
        del data["style_code"]
        return data

    def list_balances(self) -> list[StyleBalance]:
        return self._ledger.list_balances()

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def create_assignment(self, payload: Mapping[str, Any]) -> StyleAssignment:
        return self._assignment_service.create(payload)

    def list_active_assignments(
        self, day: object, line_code: str | None = None
    ) -> list[StyleAssignment]:
        return self._assignment_service.list_active(day, line_code)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def get_daily_rollup(
        self,
        day: object,
        line: str | None = None,
        style: str | None = None,
        stage: ProductionStage | str | None = None,
        group_by: Iterable[str] | None = None,
    ) -> RollupReport:
        return self._aggregator.daily_rollup(day, line, style, stage, group_by)

    def get_rollup(
        self,
        start: object,
        end: object,
        filters: Mapping[str, Any] | None = None,
        group_by: Iterable[str] | None = None,
    ) -> RollupReport:
        return self._aggregator.rollup(_range(start, end), filters, group_by)

    def get_summary(
        self,
        start: object,
        end: object,
        filters: Mapping[str, Any] | None = None,
    ) -> ProductionSummary:
        return self._aggregator.summary(_range(start, end), filters)

    def get_daily_target_report(
        self,
        day: object,
        stage: ProductionStage | str | None = None,
        line_code: str | None = None,
    ) -> TargetReport:
        return self._aggregator.daily_target_report(day, stage, line_code)


def _range(start: object, end: object | None) -> DateRange:
    first = parse_calendar_day(start, "start")
    return DateRange(start=first, end=parse_calendar_day(end, "end") if end is not None else first)
