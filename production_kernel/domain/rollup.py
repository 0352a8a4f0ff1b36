"""
Rollup computation -- pure functional core for daily production reports.

ZERO I/O. ``compute_rollup`` takes already-fetched production entries and
returns grouped sums with derived rates. The same entries always produce
the same report: groups are sorted by key and rates are Decimals quantized
to two places, so repeated calls are bit-identical.

Rates:
    efficiency  = output / input * 100    (0 when input == 0)
    defect_rate = defect / output * 100   (0 when output == 0)
    rework_rate = rework / output * 100   (0 when output == 0)
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from production_kernel.domain.hours import (
    SHIFT_HOURS,
    UNMAPPED_LABEL,
    label_for,
    label_sort_key,
    ordered_labels,
)
from production_kernel.domain.values import (
    ProductionEntry,
    RollupCell,
    RollupTotals,
    TargetEvent,
    TargetReport,
    TargetReportRow,
)
from production_kernel.exceptions import ValidationError

DIM_DATE = "date"
DIM_LINE = "line"
DIM_STYLE = "style"
DIM_STAGE = "stage"
DIM_HOUR = "hour"

ALL_DIMENSIONS: tuple[str, ...] = (DIM_DATE, DIM_LINE, DIM_STYLE, DIM_STAGE, DIM_HOUR)

_TWO_PLACES = Decimal("0.01")
_HUNDRED = Decimal(100)


def rate(numerator: int, denominator: int) -> Decimal:
    """Percentage rounded half-up to 0.01; 0.00 when the denominator is 0."""
    if denominator == 0:
        return Decimal("0.00")
    return (Decimal(numerator) * _HUNDRED / Decimal(denominator)).quantize(
        _TWO_PLACES, rounding=ROUND_HALF_UP
    )


def normalize_group_by(group_by: Iterable[str] | None) -> tuple[str, ...]:
    """Validate dimension names and return them in canonical order."""
    if group_by is None:
        return ALL_DIMENSIONS
    requested = set(group_by)
    unknown = requested - set(ALL_DIMENSIONS)
    if unknown:
        raise ValidationError.single(
            "group_by",
            f"unknown dimension(s) {sorted(unknown)}; allowed {list(ALL_DIMENSIONS)}",
        )
    return tuple(d for d in ALL_DIMENSIONS if d in requested)


def _dimension_value(entry: ProductionEntry, dimension: str) -> str:
    if dimension == DIM_DATE:
        return entry.calendar_day
    if dimension == DIM_LINE:
        return entry.line_code
    if dimension == DIM_STYLE:
        return entry.style_code
    if dimension == DIM_STAGE:
        return entry.stage.value
    return label_for(entry.hour_index)


def _sort_key(key: tuple[tuple[str, str], ...]) -> tuple:
    parts: list = []
    for dimension, value in key:
        if dimension == DIM_HOUR:
            parts.append((label_sort_key(value), value))
        else:
            parts.append((0, value))
    return tuple(parts)


class _Accumulator:
    __slots__ = ("input_qty", "output_qty", "defect_qty", "rework_qty", "entry_count")

    def __init__(self) -> None:
        self.input_qty = 0
        self.output_qty = 0
        self.defect_qty = 0
        self.rework_qty = 0
        self.entry_count = 0

    def add(self, entry: ProductionEntry) -> None:
        self.input_qty += entry.input_qty
        self.output_qty += entry.output_qty
        self.defect_qty += entry.defect_qty
        self.rework_qty += entry.rework_qty
        self.entry_count += 1

    def totals(self) -> RollupTotals:
        return RollupTotals(
            input_qty=self.input_qty,
            output_qty=self.output_qty,
            defect_qty=self.defect_qty,
            rework_qty=self.rework_qty,
            entry_count=self.entry_count,
            efficiency=rate(self.output_qty, self.input_qty),
            defect_rate=rate(self.defect_qty, self.output_qty),
            rework_rate=rate(self.rework_qty, self.output_qty),
        )


def compute_rollup(
    entries: Iterable[ProductionEntry],
    group_by: Iterable[str] | None = None,
) -> tuple[tuple[RollupCell, ...], RollupTotals]:
    """
    Group ``entries`` by ``group_by`` and sum quantities per group.

    Returns:
        (cells sorted by key, grand totals over all entries). With no
        entries the cells are empty and the totals are all zero.
    """
    dimensions = normalize_group_by(group_by)
    groups: dict[tuple[tuple[str, str], ...], _Accumulator] = {}
    grand = _Accumulator()

    for entry in entries:
        key = tuple((d, _dimension_value(entry, d)) for d in dimensions)
        acc = groups.get(key)
        if acc is None:
            acc = groups[key] = _Accumulator()
        acc.add(entry)
        grand.add(entry)

    cells = tuple(
        RollupCell(key=key, totals=groups[key].totals())
        for key in sorted(groups, key=_sort_key)
    )
    return cells, grand.totals()


def _per_hour(total: int) -> Decimal:
    return (Decimal(total) / Decimal(len(SHIFT_HOURS))).quantize(
        _TWO_PLACES, rounding=ROUND_HALF_UP
    )


def compute_target_report(
    calendar_day: str,
    targets: Iterable[TargetEvent],
    entries: Iterable[ProductionEntry],
) -> TargetReport:
    """
    Lay out one day's output per shift hour for each target, with day totals.

    Every target gets a row with the output of entries on the same line and
    style.  Output on a (line, style) with no target gets its own row with
    ``target_id=None``.  Rows are ordered by line, then style.
    """
    output: dict[tuple[str, str], dict[str, int]] = {}
    for entry in entries:
        hours = output.setdefault((entry.line_code, entry.style_code), {})
        label = label_for(entry.hour_index)
        hours[label] = hours.get(label, 0) + entry.output_qty

    def row(target_id, line_code, style_code, line_target) -> TargetReportRow:
        hours = output.get((line_code, style_code), {})
        hourly = tuple((label, hours.get(label, 0)) for label in ordered_labels())
        total = sum(qty for _, qty in hourly)
        return TargetReportRow(
            target_id=target_id,
            line_code=line_code,
            style_code=style_code,
            line_target=line_target,
            hourly_output=hourly,
            total_output=total,
            unmapped_output=hours.get(UNMAPPED_LABEL, 0),
            achievement=rate(total, line_target),
            average_per_hour=_per_hour(total),
        )

    rows = []
    targeted: set[tuple[str, str]] = set()
    for target in targets:
        targeted.add((target.line_code, target.style_code))
        rows.append(row(target.id, target.line_code, target.style_code, target.line_target))
    for line_code, style_code in output:
        if (line_code, style_code) not in targeted:
            rows.append(row(None, line_code, style_code, 0))

    rows.sort(key=lambda r: (r.line_code, r.style_code, r.target_id or ""))
    total_target = sum(r.line_target for r in rows)
    total_output = sum(r.total_output for r in rows)
    average = (
        sum((r.average_per_hour for r in rows), Decimal(0)) / len(rows)
        if rows
        else Decimal(0)
    )
    return TargetReport(
        calendar_day=calendar_day,
        rows=tuple(rows),
        line_count=len(rows),
        total_target=total_target,
        total_output=total_output,
        achievement=rate(total_output, total_target),
        average_per_hour=average.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP),
    )
