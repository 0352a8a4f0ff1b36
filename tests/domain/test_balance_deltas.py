"""Tests for BalanceDelta construction and StyleBalance arithmetic."""

from datetime import datetime, timezone

from production_kernel.domain.values import (
    BalanceDelta,
    BulkDeleteReport,
    DeltaDirection,
    DeltaKey,
    ProductionEntry,
    ProductionStage,
    StyleBalance,
    TargetEvent,
)

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def _target(**overrides) -> TargetEvent:
    fields = dict(
        id="t-1",
        line_code="L1",
        style_code="ST001",
        calendar_day="2024-03-01",
        line_target=300,
        hourly_production=20,
        created_at=NOW,
    )
    fields.update(overrides)
    return TargetEvent(**fields)


def _entry(**overrides) -> ProductionEntry:
    fields = dict(
        id="e-1",
        calendar_day="2024-03-01",
        hour_index=9,
        line_code="L1",
        style_code="ST001",
        stage=ProductionStage.SEWING,
        output_qty=40,
    )
    fields.update(overrides)
    return ProductionEntry(**fields)


class TestForTarget:
    def test_carries_stored_calendar_day(self):
        delta = BalanceDelta.for_target(_target(calendar_day="2024-02-29"), DeltaDirection.REVERSE)
        assert delta.calendar_day == "2024-02-29"
        assert delta.key == DeltaKey("t-1", DeltaDirection.REVERSE)
        assert delta.sign == -1

    def test_production_excluded_when_entries_feed_the_ledger(self):
        delta = BalanceDelta.for_target(_target(), DeltaDirection.APPLY, include_production=False)
        assert (delta.target_delta, delta.produced_delta) == (300, 0)

    def test_apply_and_reverse_have_distinct_keys(self):
        target = _target()
        apply = BalanceDelta.for_target(target, DeltaDirection.APPLY)
        reverse = BalanceDelta.for_target(target, DeltaDirection.REVERSE)
        assert apply.key != reverse.key


class TestForEntry:
    def test_keyed_by_entry_id(self):
        delta = BalanceDelta.for_entry(_entry(), DeltaDirection.APPLY)
        assert delta.event_id == "e-1"
        assert (delta.target_delta, delta.produced_delta) == (0, 40)


class TestForCorrection:
    def test_increase_is_apply_of_the_difference(self):
        delta = BalanceDelta.for_correction(_entry(), _entry(output_qty=55), "c-1")
        assert delta.direction is DeltaDirection.APPLY
        assert delta.produced_delta == 15
        assert delta.event_id == "e-1:c-1"

    def test_decrease_is_reverse_of_the_difference(self):
        delta = BalanceDelta.for_correction(_entry(), _entry(output_qty=10), "c-2")
        assert delta.direction is DeltaDirection.REVERSE
        assert delta.produced_delta == 30

    def test_unchanged_output_yields_none(self):
        assert BalanceDelta.for_correction(_entry(), _entry(defect_qty=3), "c-3") is None

    def test_inverse_flips_direction_only(self):
        delta = BalanceDelta.for_correction(_entry(), _entry(output_qty=55), "c-1")
        inverse = delta.inverse()
        assert inverse.direction is DeltaDirection.REVERSE
        assert inverse.event_id == delta.event_id
        assert inverse.produced_delta == delta.produced_delta
        assert inverse.inverse() == delta


class TestStyleBalance:
    def test_zero(self):
        balance = StyleBalance.zero("ST001")
        assert balance.to_dict() == {
            "style_code": "ST001",
            "total_target": 0,
            "total_produced": 0,
            "current_balance": 0,
            "last_updated": None,
        }

    def test_with_totals_recomputes_balance(self):
        balance = StyleBalance.zero("ST001").with_totals(300, 120, NOW)
        assert balance.current_balance == 180
        assert balance.last_updated == NOW


class TestBulkDeleteReport:
    def test_to_dict_uses_wire_names(self):
        report = BulkDeleteReport(
            reconciled_count=3,
            deleted_count=2,
            errors=({"id": "x", "code": "TARGET_NOT_FOUND", "reason": "Target not found: x"},),
        )
        assert report.to_dict() == {
            "reconciledCount": 3,
            "deletedCount": 2,
            "errors": [{"id": "x", "code": "TARGET_NOT_FOUND", "reason": "Target not found: x"}],
        }
