"""
Input validation for target, production-entry and assignment payloads.

Pure functions. Each ``validate_*`` collects every field error it finds and
raises a single ValidationError, so callers see the complete list at once.
No mutation is attempted on invalid input.

Payload keys may be snake_case (``line_code``) or the camelCase names used
by the floor application (``lineCode``, ``lineNo``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from production_kernel.domain.calendar import parse_calendar_day
from production_kernel.domain.values import BalanceDelta, ProductionStage
from production_kernel.exceptions import ValidationError

_ALIASES: dict[str, tuple[str, ...]] = {
    "line_code": ("line_code", "lineCode", "lineNo", "line_id", "lineId"),
    "style_code": ("style_code", "styleCode", "styleNo", "style_id", "styleId"),
    "date": ("date", "calendar_day", "calendarDay"),
    "line_target": ("line_target", "lineTarget"),
    "hourly_production": ("hourly_production", "hourlyProduction"),
    "in_time": ("in_time", "inTime"),
    "out_time": ("out_time", "outTime"),
    "hour_index": ("hour_index", "hourIndex"),
    "stage": ("stage",),
    "input_qty": ("input_qty", "inputQty"),
    "output_qty": ("output_qty", "outputQty"),
    "defect_qty": ("defect_qty", "defectQty"),
    "rework_qty": ("rework_qty", "reworkQty"),
    "notes": ("notes",),
    "start_day": ("start_day", "startDate", "start_date"),
    "end_day": ("end_day", "endDate", "end_date"),
    "target_per_hour": ("target_per_hour", "targetPerHour"),
}

QUANTITY_FIELDS = ("input_qty", "output_qty", "defect_qty", "rework_qty")


def canonical_field(key: str) -> str:
    """Canonical snake_case name for a payload key or any of its aliases."""
    for name, aliases in _ALIASES.items():
        if key in aliases:
            return name
    return key


def _pick(payload: Mapping[str, Any], name: str) -> Any:
    for alias in _ALIASES.get(name, (name,)):
        if alias in payload and payload[alias] is not None:
            return payload[alias]
    return None


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class _Collector:
    def __init__(self) -> None:
        self.errors: list[dict] = []

    def add(self, field: str, message: str) -> None:
        self.errors.append({"field": field, "message": message})

    def required_text(self, payload: Mapping[str, Any], name: str) -> str | None:
        value = _pick(payload, name)
        if value is None or (isinstance(value, str) and not value.strip()):
            self.add(name, "is required")
            return None
        if not isinstance(value, str):
            self.add(name, "must be a string")
            return None
        return value.strip()

    def day(self, payload: Mapping[str, Any], name: str, required: bool = True) -> str | None:
        value = _pick(payload, name)
        if value is None:
            if required:
                self.add(name, "is required")
            return None
        try:
            return parse_calendar_day(value, name)
        except ValidationError as exc:
            self.errors.extend(exc.field_errors)
            return None

    def integer(
        self,
        payload: Mapping[str, Any],
        name: str,
        *,
        minimum: int,
        required: bool,
        default: int | None = None,
    ) -> int | None:
        value = _pick(payload, name)
        if value is None:
            if required:
                self.add(name, "is required")
            return default
        if not _is_int(value):
            self.add(name, "must be an integer")
            return None
        if value < minimum:
            self.add(name, f"must be >= {minimum}")
            return None
        return value

    def raise_if_any(self) -> None:
        if self.errors:
            raise ValidationError(self.errors)


@dataclass(frozen=True)
class TargetInput:
    line_code: str
    style_code: str
    calendar_day: str
    line_target: int
    hourly_production: int
    in_time: str | None = None
    out_time: str | None = None


@dataclass(frozen=True)
class EntryInput:
    calendar_day: str
    hour_index: int
    line_code: str
    style_code: str
    stage: ProductionStage
    input_qty: int
    output_qty: int
    defect_qty: int
    rework_qty: int
    notes: str | None = None


@dataclass(frozen=True)
class AssignmentInput:
    line_code: str
    style_code: str
    start_day: str
    end_day: str | None
    target_per_hour: int | None


def validate_target(payload: Mapping[str, Any]) -> TargetInput:
    """Validate a target creation payload."""
    c = _Collector()
    line_code = c.required_text(payload, "line_code")
    style_code = c.required_text(payload, "style_code")
    day = c.day(payload, "date")
    line_target = c.integer(payload, "line_target", minimum=1, required=True)
    hourly = c.integer(
        payload, "hourly_production", minimum=0, required=False, default=0
    )
    c.raise_if_any()
    return TargetInput(
        line_code=line_code,
        style_code=style_code,
        calendar_day=day,
        line_target=line_target,
        hourly_production=hourly,
        in_time=_pick(payload, "in_time"),
        out_time=_pick(payload, "out_time"),
    )


def parse_stage(value: Any, field: str = "stage") -> ProductionStage:
    if isinstance(value, ProductionStage):
        return value
    if isinstance(value, str):
        try:
            return ProductionStage(value.upper())
        except ValueError:
            pass
    allowed = ", ".join(s.value for s in ProductionStage)
    raise ValidationError.single(field, f"must be one of {allowed}")


def validate_entry(payload: Mapping[str, Any]) -> EntryInput:
    """Validate a production entry creation payload."""
    c = _Collector()
    day = c.day(payload, "date")
    hour = _pick(payload, "hour_index")
    if hour is None:
        c.add("hour_index", "is required")
    elif not _is_int(hour) or not 0 <= hour <= 23:
        c.add("hour_index", "must be an integer between 0 and 23")
        hour = None
    line_code = c.required_text(payload, "line_code")
    style_code = c.required_text(payload, "style_code")

    stage = None
    raw_stage = _pick(payload, "stage")
    if raw_stage is None:
        c.add("stage", "is required")
    else:
        try:
            stage = parse_stage(raw_stage)
        except ValidationError as exc:
            c.errors.extend(exc.field_errors)

    quantities = {
        name: c.integer(payload, name, minimum=0, required=False, default=0)
        for name in QUANTITY_FIELDS
    }
    c.raise_if_any()
    return EntryInput(
        calendar_day=day,
        hour_index=hour,
        line_code=line_code,
        style_code=style_code,
        stage=stage,
        notes=_pick(payload, "notes"),
        **quantities,
    )


def validate_quantity_changes(payload: Mapping[str, Any]) -> dict[str, Any]:
    """
    Validate an in-place correction. Only quantity fields and notes may be
    present; identity fields are rejected.
    """
    c = _Collector()
    for identity in ("date", "hour_index", "line_code", "style_code", "stage"):
        if _pick(payload, identity) is not None:
            c.add(identity, "is immutable once the entry is recorded")
    changes: dict[str, Any] = {}
    for name in QUANTITY_FIELDS:
        value = c.integer(payload, name, minimum=0, required=False)
        if value is not None:
            changes[name] = value
    notes = _pick(payload, "notes")
    if notes is not None:
        changes["notes"] = notes
    c.raise_if_any()
    return changes


def validate_assignment(payload: Mapping[str, Any]) -> AssignmentInput:
    c = _Collector()
    line_code = c.required_text(payload, "line_code")
    style_code = c.required_text(payload, "style_code")
    start = c.day(payload, "start_day")
    end = c.day(payload, "end_day", required=False)
    per_hour = c.integer(payload, "target_per_hour", minimum=0, required=False)
    if start is not None and end is not None and end < start:
        c.add("end_day", "must not be before start_day")
    c.raise_if_any()
    return AssignmentInput(
        line_code=line_code,
        style_code=style_code,
        start_day=start,
        end_day=end,
        target_per_hour=per_hour,
    )


def validate_delta(delta: BalanceDelta) -> None:
    """Deltas carry non-negative magnitudes and a non-empty style and id."""
    c = _Collector()
    if not delta.event_id:
        c.add("event_id", "is required")
    if not delta.style_code:
        c.add("style_code", "is required")
    for name in ("target_delta", "produced_delta"):
        value = getattr(delta, name)
        if not _is_int(value):
            c.add(name, "must be an integer")
        elif value < 0:
            c.add(name, "must be a non-negative magnitude; direction carries the sign")
    c.raise_if_any()
