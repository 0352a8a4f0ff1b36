"""
Domain values for the production kernel.

Frozen dataclasses and enums only. ZERO I/O. Repositories translate between
these and their storage representation; services and selectors exchange
only these.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


# =============================================================================
# Enums
# =============================================================================


class ProductionStage(str, Enum):
    """Floor stage a production entry is recorded against."""

    CUTTING = "CUTTING"
    SEWING = "SEWING"
    FINISHING = "FINISHING"


class DeltaDirection(str, Enum):
    """APPLY adds a delta's magnitudes to the ledger, REVERSE subtracts them."""

    APPLY = "APPLY"
    REVERSE = "REVERSE"


class ProducedSource(str, Enum):
    """Which event stream is the canonical source of total_produced."""

    TARGET_EVENTS = "target_events"
    PRODUCTION_ENTRIES = "production_entries"


class ReconciliationStatus(str, Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"


class BulkItemStatus(str, Enum):
    RECONCILED = "reconciled"
    NOT_FOUND = "not_found"  # no-op attempt; counted as reconciled
    FAILED = "failed"


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class TargetEvent:
    """
    A planning decision: line ``line_code`` should make ``line_target``
    pieces of ``style_code`` on ``calendar_day``.

    Immutable. Changes are modelled as delete + create with a new id.
    """

    id: str
    line_code: str
    style_code: str
    calendar_day: str
    line_target: int
    hourly_production: int
    created_at: datetime
    in_time: str | None = None
    out_time: str | None = None
    created_by: str | None = None


@dataclass(frozen=True)
class ProductionEntry:
    """Counts recorded for one (day, hour, line, style, stage) slot."""

    id: str
    calendar_day: str
    hour_index: int
    line_code: str
    style_code: str
    stage: ProductionStage
    input_qty: int = 0
    output_qty: int = 0
    defect_qty: int = 0
    rework_qty: int = 0
    notes: str | None = None
    revision: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def slot(self) -> tuple[str, int, str, str, str]:
        return (
            self.calendar_day,
            self.hour_index,
            self.line_code,
            self.style_code,
            self.stage.value,
        )


@dataclass(frozen=True)
class StyleAssignment:
    """A window during which ``style_code`` runs on ``line_code``."""

    id: str
    line_code: str
    style_code: str
    start_day: str
    end_day: str | None = None  # open-ended when None
    target_per_hour: int | None = None

    def overlaps(self, start_day: str, end_day: str | None) -> bool:
        own_end = self.end_day or "9999-12-31"
        other_end = end_day or "9999-12-31"
        return self.start_day <= other_end and start_day <= own_end

    def is_active_on(self, day: str) -> bool:
        return self.start_day <= day and (self.end_day is None or day <= self.end_day)


# =============================================================================
# Ledger
# =============================================================================


@dataclass(frozen=True)
class StyleBalance:
    """
    Ledger row for one style.

    Always satisfies current_balance == total_target - total_produced.
    ``version`` increases by one on every persisted write.
    """

    style_code: str
    total_target: int = 0
    total_produced: int = 0
    current_balance: int = 0
    last_updated: datetime | None = None
    version: int = 0

    @classmethod
    def zero(cls, style_code: str) -> StyleBalance:
        return cls(style_code=style_code)

    def with_totals(
        self, total_target: int, total_produced: int, at: datetime
    ) -> StyleBalance:
        """Return a copy with new totals and a recomputed balance."""
        return replace(
            self,
            total_target=total_target,
            total_produced=total_produced,
            current_balance=total_target - total_produced,
            last_updated=at,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "style_code": self.style_code,
            "total_target": self.total_target,
            "total_produced": self.total_produced,
            "current_balance": self.current_balance,
            "last_updated": self.last_updated,
        }


@dataclass(frozen=True)
class BalanceDelta:
    """
    Signed ledger adjustment derived from one event.

    ``target_delta`` and ``produced_delta`` are non-negative magnitudes;
    ``direction`` supplies the sign.
    """

    event_id: str
    style_code: str
    target_delta: int
    produced_delta: int
    direction: DeltaDirection
    calendar_day: str | None = None

    @property
    def key(self) -> DeltaKey:
        return DeltaKey(event_id=self.event_id, direction=self.direction)

    @property
    def sign(self) -> int:
        return 1 if self.direction == DeltaDirection.APPLY else -1

    @classmethod
    def for_target(
        cls,
        target: TargetEvent,
        direction: DeltaDirection,
        include_production: bool = True,
    ) -> BalanceDelta:
        return cls(
            event_id=target.id,
            style_code=target.style_code,
            target_delta=target.line_target,
            produced_delta=target.hourly_production if include_production else 0,
            direction=direction,
            calendar_day=target.calendar_day,
        )

    @classmethod
    def for_entry(
        cls, entry: ProductionEntry, direction: DeltaDirection
    ) -> BalanceDelta:
        return cls(
            event_id=entry.id,
            style_code=entry.style_code,
            target_delta=0,
            produced_delta=entry.output_qty,
            direction=direction,
            calendar_day=entry.calendar_day,
        )

    @classmethod
    def for_correction(
        cls,
        before: ProductionEntry,
        after: ProductionEntry,
        correction_id: str,
    ) -> BalanceDelta | None:
        """
        Net output change of an in-place correction, or None if output is
        unchanged.  Each correction is its own event.
        """
        diff = after.output_qty - before.output_qty
        if diff == 0:
            return None
        return cls(
            event_id=f"{before.id}:{correction_id}",
            style_code=before.style_code,
            target_delta=0,
            produced_delta=abs(diff),
            direction=DeltaDirection.APPLY if diff > 0 else DeltaDirection.REVERSE,
            calendar_day=before.calendar_day,
        )

    def inverse(self) -> BalanceDelta:
        """Same magnitudes and event, opposite direction."""
        flipped = (
            DeltaDirection.REVERSE
            if self.direction == DeltaDirection.APPLY
            else DeltaDirection.APPLY
        )
        return replace(self, direction=flipped)


@dataclass(frozen=True)
class DeltaKey:
    """Idempotency key of a delta: one application per (event, direction)."""

    event_id: str
    direction: DeltaDirection


@dataclass(frozen=True)
class ReconciliationWarning:
    """
    Non-fatal condition raised while reconciling.

    Codes:
        FIELD_CLAMPED   -- a REVERSE delta would have taken a total below
                           zero; the total was clamped at zero.
        OVERPRODUCTION  -- total_produced exceeds total_target after the write.
    """

    code: str
    style_code: str
    event_id: str
    message: str
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LedgerWrite:
    """Outcome of one BalanceLedger.apply_atomic call."""

    balance: StyleBalance
    skipped: bool = False


@dataclass(frozen=True)
class ReconciliationResult:
    """
    Outcome of ReconciliationEngine.apply.

    ``moved_target`` and ``moved_produced`` are the magnitudes the write
    actually moved each total by.  They equal the delta's magnitudes unless
    a REVERSE was clamped at zero, and are 0 when the delta was skipped.
    """

    delta: BalanceDelta
    status: ReconciliationStatus
    balance: StyleBalance
    warnings: tuple[ReconciliationWarning, ...] = ()
    moved_target: int = 0
    moved_produced: int = 0

    @property
    def applied(self) -> bool:
        return self.status == ReconciliationStatus.APPLIED

    def compensating_delta(self) -> BalanceDelta:
        """Undo exactly what this write moved: inverse direction, post-clamp magnitudes."""
        return replace(
            self.delta.inverse(),
            target_delta=self.moved_target,
            produced_delta=self.moved_produced,
        )


# =============================================================================
# Service results
# =============================================================================


@dataclass(frozen=True)
class TargetWriteResult:
    """A created or deleted target and the ledger outcome of that change."""

    target: TargetEvent
    reconciliation: ReconciliationResult


@dataclass(frozen=True)
class EntryWriteResult:
    """
    A written production entry.  ``reconciliation`` is None when the entry
    does not feed the ledger (or a correction left output unchanged).
    """

    entry: ProductionEntry
    reconciliation: ReconciliationResult | None = None


# =============================================================================
# Bulk
# =============================================================================


@dataclass(frozen=True)
class BulkItemResult:
    """Per-id outcome inside a bulk delete."""

    item_index: int
    target_id: str
    status: BulkItemStatus
    style_code: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    warnings: tuple[ReconciliationWarning, ...] = ()


@dataclass(frozen=True)
class BulkDeleteReport:
    """
    Result of a bulk target delete.

    ``reconciled_count`` counts reconciliation attempts that did not fail
    (ids that no longer exist count as no-op attempts); ``deleted_count`` is
    the number of event rows actually removed. The two may differ.
    """

    reconciled_count: int
    deleted_count: int
    errors: tuple[dict[str, str], ...]
    items: tuple[BulkItemResult, ...] = ()
    batch_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reconciledCount": self.reconciled_count,
            "deletedCount": self.deleted_count,
            "errors": [dict(e) for e in self.errors],
        }


# =============================================================================
# Rollups
# =============================================================================


@dataclass(frozen=True)
class RollupTotals:
    """Summed quantities and derived rates for one group of entries."""

    input_qty: int = 0
    output_qty: int = 0
    defect_qty: int = 0
    rework_qty: int = 0
    entry_count: int = 0
    efficiency: Decimal = Decimal("0.00")
    defect_rate: Decimal = Decimal("0.00")
    rework_rate: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class RollupCell:
    """
    One group of a rollup. ``key`` maps each grouped dimension name to its
    value; dimensions not grouped on are absent.
    """

    key: tuple[tuple[str, str], ...]
    totals: RollupTotals

    def dimension(self, name: str) -> str | None:
        return dict(self.key).get(name)


@dataclass(frozen=True)
class RollupReport:
    start: str
    end: str
    group_by: tuple[str, ...]
    cells: tuple[RollupCell, ...]
    totals: RollupTotals
    filters: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class TargetReportRow:
    """
    Hour-by-hour output of one (line, style) on one day.

    ``target_id`` is None for output recorded without a target; its
    ``line_target`` is then 0.  ``hourly_output`` lists every shift label in
    shift order; output outside the shift is in ``unmapped_output``.
    """

    target_id: str | None
    line_code: str
    style_code: str
    line_target: int
    hourly_output: tuple[tuple[str, int], ...]
    total_output: int
    unmapped_output: int
    achievement: Decimal
    average_per_hour: Decimal


@dataclass(frozen=True)
class TargetReport:
    """
    One day's target report: the rows plus day totals.

    ``line_count`` counts rows (one per line and style).  ``average_per_hour``
    is the mean of the rows' averages; it and ``achievement`` are 0.00 for a
    day with no rows.
    """

    calendar_day: str
    rows: tuple[TargetReportRow, ...]
    line_count: int
    total_target: int
    total_output: int
    achievement: Decimal
    average_per_hour: Decimal


@dataclass(frozen=True)
class ProductionSummary:
    """Totals over a date range with per-line, per-style and per-day cells."""

    start: str
    end: str
    totals: RollupTotals
    by_line: tuple[RollupCell, ...]
    by_style: tuple[RollupCell, ...]
    by_day: tuple[RollupCell, ...]
    filters: tuple[tuple[str, str], ...] = ()
