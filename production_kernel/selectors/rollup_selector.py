"""
Module: production_kernel.selectors.rollup_selector
Responsibility: Daily production reports recomputed from raw entries.
Architecture position: Kernel > Selectors.  Reads through repositories and
    delegates arithmetic to domain/rollup.py.

Invariants enforced:
    - Read-only: never writes, never reads the balance ledger, never caches.
      Every call recomputes from source rows, so two calls over the same
      data return equal reports.
    - An empty match is a valid report: no cells and all-zero totals.

Performance:
    O(rows in range) per call.  Callers needing a running total per style
    use the ledger instead.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from production_kernel.domain.calendar import DateRange, parse_calendar_day
from production_kernel.domain.rollup import (
    DIM_DATE,
    DIM_LINE,
    DIM_STYLE,
    compute_rollup,
    compute_target_report,
    normalize_group_by,
)
from production_kernel.domain.validation import canonical_field, parse_stage
from production_kernel.domain.values import (
    ProductionEntry,
    ProductionStage,
    ProductionSummary,
    RollupReport,
    TargetReport,
)
from production_kernel.exceptions import ValidationError
from production_kernel.logging_config import get_logger
from production_kernel.repositories.base import (
    ProductionEntryRepository,
    TargetRepository,
)

logger = get_logger("selectors.rollup")

_FILTER_FIELDS = ("line_code", "style_code", "stage")
_FILTER_ALIASES = {"line": "line_code", "style": "style_code"}


class EntryFilters:
    """Optional (line, style, stage) restriction on a report."""

    __slots__ = ("line_code", "style_code", "stage")

    def __init__(
        self,
        line_code: str | None = None,
        style_code: str | None = None,
        stage: ProductionStage | None = None,
    ):
        self.line_code = line_code
        self.style_code = style_code
        self.stage = stage

    @classmethod
    def from_mapping(cls, filters: Mapping[str, Any] | None) -> EntryFilters:
        if not filters:
            return cls()
        values: dict[str, Any] = {}
        for key, value in filters.items():
            name = _FILTER_ALIASES.get(key, canonical_field(key))
            if name not in _FILTER_FIELDS:
                raise ValidationError.single(
                    "filters", f"unknown filter {key!r}; allowed line, style, stage"
                )
            if value is not None:
                values[name] = value
        if "stage" in values:
            values["stage"] = parse_stage(values["stage"])
        return cls(**values)

    def as_pairs(self) -> tuple[tuple[str, str], ...]:
        pairs = []
        if self.line_code is not None:
            pairs.append(("line_code", self.line_code))
        if self.style_code is not None:
            pairs.append(("style_code", self.style_code))
        if self.stage is not None:
            pairs.append(("stage", self.stage.value))
        return tuple(pairs)


class DailyRollupAggregator:
    """
    Grouped production sums and rates over a date range.

    Contract:
        Reads entries (and, for the target report, targets) through the
        injected repositories and returns frozen report values.

    Non-goals:
        - Does NOT read or reconcile the balance ledger.
    """

    def __init__(
        self,
        entries: ProductionEntryRepository,
        targets: TargetRepository | None = None,
    ):
        self._entries = entries
        self._targets = targets

    def _fetch(self, date_range: DateRange, filters: EntryFilters) -> list[ProductionEntry]:
        return self._entries.list_by_date_range(
            date_range,
            line_code=filters.line_code,
            style_code=filters.style_code,
            stage=filters.stage,
        )

    def rollup(
        self,
        date_range: DateRange,
        filters: Mapping[str, Any] | None = None,
        group_by: Iterable[str] | None = None,
    ) -> RollupReport:
        """
        Group entries in ``date_range`` by ``group_by`` (default: every
        dimension) and sum their quantities.
        """
        dimensions = normalize_group_by(group_by)
        parsed = EntryFilters.from_mapping(filters)
        entries = self._fetch(date_range, parsed)
        cells, totals = compute_rollup(entries, dimensions)

        logger.debug(
            "rollup_computed",
            extra={
                "start": date_range.start,
                "end": date_range.end,
                "group_by": list(dimensions),
                "entry_count": totals.entry_count,
                "cell_count": len(cells),
            },
        )
        return RollupReport(
            start=date_range.start,
            end=date_range.end,
            group_by=dimensions,
            cells=cells,
            totals=totals,
            filters=parsed.as_pairs(),
        )

    def daily_rollup(
        self,
        day: object,
        line_code: str | None = None,
        style_code: str | None = None,
        stage: ProductionStage | str | None = None,
        group_by: Iterable[str] | None = None,
    ) -> RollupReport:
        filters = {"line_code": line_code, "style_code": style_code, "stage": stage}
        return self.rollup(DateRange.single_day(day), filters, group_by)

    def summary(
        self,
        date_range: DateRange,
        filters: Mapping[str, Any] | None = None,
    ) -> ProductionSummary:
        """Totals plus per-line, per-style and per-day breakdowns."""
        parsed = EntryFilters.from_mapping(filters)
        entries = self._fetch(date_range, parsed)
        by_line, totals = compute_rollup(entries, (DIM_LINE,))
        by_style, _ = compute_rollup(entries, (DIM_STYLE,))
        by_day, _ = compute_rollup(entries, (DIM_DATE,))
        return ProductionSummary(
            start=date_range.start,
            end=date_range.end,
            totals=totals,
            by_line=by_line,
            by_style=by_style,
            by_day=by_day,
            filters=parsed.as_pairs(),
        )

    def daily_target_report(
        self,
        day: object,
        stage: ProductionStage | str | None = None,
        line_code: str | None = None,
    ) -> TargetReport:
        """
        Each target of ``day`` with its output per shift hour, plus day totals.

        Output of every stage counts unless ``stage`` is given.
        """
        if self._targets is None:
            raise RuntimeError("daily_target_report requires a target repository")
        date_range = DateRange.single_day(parse_calendar_day(day))
        parsed = EntryFilters(
            line_code=line_code,
            stage=parse_stage(stage) if stage is not None else None,
        )
        targets = self._targets.list_by_date_range(date_range, line_code=line_code)
        return compute_target_report(
            date_range.start, targets, self._fetch(date_range, parsed)
        )
