"""
Tests for production entries through the ProductionTracker.

Covers:
- add_production_entry(): slot uniqueness, ledger feed by produced source
- correct_production_entry(): net delta, revision check, compensation
- delete_production_entry(): REVERSE of the deleted output, revision check
- Entries never touch the ledger when targets are the produced source
"""

import pytest

from production_kernel.domain.values import (
    BalanceDelta,
    DeltaDirection,
    ProductionStage,
    ReconciliationStatus,
)
from production_kernel.exceptions import (
    DuplicateProductionEntryError,
    ProductionEntryNotFoundError,
    StaleProductionEntryError,
    ValidationError,
)
from tests.conftest import make_entry_payload, make_target_payload


def _balance(tracker, style="ST001"):
    b = tracker.get_balance(style)
    return b["total_target"], b["total_produced"], b["current_balance"]


class TestAddEntry:
    def test_entries_feed_total_produced(self, entry_tracker):
        entry_tracker.create_target(make_target_payload(line_target=300, hourly_production=999))
        for hour, output in ((8, 60), (9, 70), (10, 70)):
            entry_tracker.add_production_entry(make_entry_payload(hour_index=hour, output_qty=output))

        # hourly_production on the target is ignored in this mode
        assert _balance(entry_tracker) == (300, 200, 100)

    def test_only_counted_stage_feeds_ledger(self, entry_tracker):
        entry_tracker.create_target(make_target_payload(line_target=300))
        cutting = entry_tracker.add_production_entry(make_entry_payload(stage="CUTTING", output_qty=90))
        sewing = entry_tracker.add_production_entry(make_entry_payload(stage="SEWING", output_qty=40))

        assert cutting.reconciliation is None
        assert sewing.reconciliation.status is ReconciliationStatus.APPLIED
        assert _balance(entry_tracker) == (300, 40, 260)

    def test_target_source_leaves_ledger_alone(self, tracker, ledger_repo):
        result = tracker.add_production_entry(make_entry_payload(output_qty=40))
        assert result.reconciliation is None
        assert ledger_repo.list() == []

    def test_duplicate_slot(self, entry_tracker):
        entry_tracker.add_production_entry(make_entry_payload(output_qty=40))
        with pytest.raises(DuplicateProductionEntryError) as exc_info:
            entry_tracker.add_production_entry(make_entry_payload(output_qty=99))
        assert exc_info.value.code == "DUPLICATE_PRODUCTION_ENTRY"
        assert exc_info.value.slot == ("2024-03-01", 8, "L1", "ST001", "SEWING")
        assert _balance(entry_tracker) == (0, 40, -40)

    def test_same_hour_other_stage_is_a_different_slot(self, entry_tracker):
        entry_tracker.add_production_entry(make_entry_payload(stage="SEWING"))
        entry_tracker.add_production_entry(make_entry_payload(stage="FINISHING"))
        entries = entry_tracker.list_production_entries("2024-03-01")
        assert [e.stage for e in entries] == [ProductionStage.FINISHING, ProductionStage.SEWING]

    def test_failed_delta_removes_entry(self, entry_tracker, ledger_repo):
        def fail(style_code):
            raise RuntimeError("ledger unavailable")

        ledger_repo.before_commit = fail
        with pytest.raises(RuntimeError):
            entry_tracker.add_production_entry(make_entry_payload())
        assert entry_tracker.list_production_entries("2024-03-01") == []

    def test_invalid_payload(self, entry_tracker):
        with pytest.raises(ValidationError):
            entry_tracker.add_production_entry(make_entry_payload(hour_index=30))


class TestCorrectEntry:
    def test_increase_applies_difference(self, entry_tracker):
        entry_tracker.create_target(make_target_payload(line_target=300))
        added = entry_tracker.add_production_entry(make_entry_payload(output_qty=40))

        corrected = entry_tracker.correct_production_entry(added.entry.id, {"output_qty": 55})

        assert corrected.entry.output_qty == 55
        assert corrected.entry.revision == 2
        assert corrected.reconciliation.delta.produced_delta == 15
        assert _balance(entry_tracker) == (300, 55, 245)

    def test_decrease_reverses_difference(self, entry_tracker):
        added = entry_tracker.add_production_entry(make_entry_payload(output_qty=40))
        entry_tracker.correct_production_entry(added.entry.id, {"outputQty": 25})
        assert _balance(entry_tracker)[1] == 25

    def test_repeated_corrections_each_apply(self, entry_tracker):
        added = entry_tracker.add_production_entry(make_entry_payload(output_qty=40))
        entry_tracker.correct_production_entry(added.entry.id, {"output_qty": 50})
        entry_tracker.correct_production_entry(added.entry.id, {"output_qty": 40})
        entry_tracker.correct_production_entry(added.entry.id, {"output_qty": 50})
        assert _balance(entry_tracker)[1] == 50

    def test_non_output_change_touches_no_ledger(self, entry_tracker):
        added = entry_tracker.add_production_entry(make_entry_payload(output_qty=40))
        result = entry_tracker.correct_production_entry(added.entry.id, {"defect_qty": 5, "notes": "recount"})
        assert result.reconciliation is None
        assert result.entry.defect_qty == 5
        assert result.entry.notes == "recount"

    def test_identity_fields_rejected(self, entry_tracker):
        added = entry_tracker.add_production_entry(make_entry_payload())
        with pytest.raises(ValidationError):
            entry_tracker.correct_production_entry(added.entry.id, {"stage": "FINISHING"})

    def test_empty_correction_rejected(self, entry_tracker):
        added = entry_tracker.add_production_entry(make_entry_payload())
        with pytest.raises(ValidationError):
            entry_tracker.correct_production_entry(added.entry.id, {})

    def test_unknown_entry(self, entry_tracker):
        with pytest.raises(ProductionEntryNotFoundError):
            entry_tracker.correct_production_entry("missing", {"output_qty": 1})

    def test_stale_revision_inverts_delta(self, entry_tracker, entry_repo, clock, captured_logs):
        added = entry_tracker.add_production_entry(make_entry_payload(output_qty=40))

        # Another writer corrects the row between our read and our update
        real_update = entry_repo.update_quantities

        def racing_update(entry_id, changes, at, expected_revision=None):
            real_update(entry_id, {"notes": "concurrent"}, at)
            return real_update(entry_id, changes, at, expected_revision=expected_revision)

        entry_repo.update_quantities = racing_update
        with pytest.raises(StaleProductionEntryError):
            entry_tracker.correct_production_entry(added.entry.id, {"output_qty": 90})

        assert _balance(entry_tracker)[1] == 40
        assert entry_tracker.get_production_entry(added.entry.id).output_qty == 40
        assert "production_entry_correction_compensated" in [r["message"] for r in captured_logs()]

    def test_compensation_undoes_only_the_clamped_amount(self, entry_tracker, entry_repo):
        added = entry_tracker.add_production_entry(make_entry_payload(output_qty=50))
        # A manual adjustment leaves less produced than the entry holds
        entry_tracker.reconciliation.apply(
            BalanceDelta("adjust-1", "ST001", 0, 30, DeltaDirection.REVERSE)
        )
        assert _balance(entry_tracker)[1] == 20

        def stale_update(entry_id, changes, at, expected_revision=None):
            raise StaleProductionEntryError(entry_id, expected_revision)

        entry_repo.update_quantities = stale_update
        with pytest.raises(StaleProductionEntryError):
            entry_tracker.correct_production_entry(added.entry.id, {"output_qty": 0})

        # The REVERSE of 50 moved total_produced by 20 only; undo exactly that
        assert _balance(entry_tracker)[1] == 20


class TestDeleteEntry:
    def test_delete_reverses_current_output(self, entry_tracker):
        entry_tracker.create_target(make_target_payload(line_target=300))
        added = entry_tracker.add_production_entry(make_entry_payload(output_qty=40))
        entry_tracker.correct_production_entry(added.entry.id, {"output_qty": 70})

        result = entry_tracker.delete_production_entry(added.entry.id)

        assert result.reconciliation.delta.produced_delta == 70
        assert _balance(entry_tracker) == (300, 0, 300)
        with pytest.raises(ProductionEntryNotFoundError):
            entry_tracker.get_production_entry(added.entry.id)

    def test_slot_reusable_after_delete(self, entry_tracker):
        added = entry_tracker.add_production_entry(make_entry_payload(output_qty=40))
        entry_tracker.delete_production_entry(added.entry.id)
        entry_tracker.add_production_entry(make_entry_payload(output_qty=30))
        assert _balance(entry_tracker)[1] == 30

    def test_unknown_entry(self, entry_tracker):
        with pytest.raises(ProductionEntryNotFoundError):
            entry_tracker.delete_production_entry("missing")

    def test_correction_between_read_and_delete(self, entry_tracker, entry_repo):
        added = entry_tracker.add_production_entry(make_entry_payload(output_qty=50))
        real_delete = entry_repo.delete

        def racing_delete(entry_id, expected_revision=None):
            entry_repo.delete = real_delete
            entry_tracker.correct_production_entry(entry_id, {"output_qty": 80})
            return real_delete(entry_id, expected_revision=expected_revision)

        entry_repo.delete = racing_delete
        with pytest.raises(StaleProductionEntryError):
            entry_tracker.delete_production_entry(added.entry.id)

        assert _balance(entry_tracker)[1] == 80
        assert entry_tracker.get_production_entry(added.entry.id).output_qty == 80

        result = entry_tracker.delete_production_entry(added.entry.id)
        assert result.reconciliation.delta.produced_delta == 80
        assert _balance(entry_tracker)[1] == 0

    def test_failed_reverse_restores_entry(self, entry_tracker, ledger_repo, captured_logs):
        added = entry_tracker.add_production_entry(make_entry_payload(output_qty=40))

        def fail(style_code):
            raise RuntimeError("ledger unavailable")

        ledger_repo.before_commit = fail
        with pytest.raises(RuntimeError):
            entry_tracker.delete_production_entry(added.entry.id)
        ledger_repo.before_commit = None

        assert entry_tracker.get_production_entry(added.entry.id).output_qty == 40
        assert _balance(entry_tracker)[1] == 40
        assert "production_entry_delete_compensated" in [r["message"] for r in captured_logs()]
