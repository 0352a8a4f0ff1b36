"""
Tests for BulkReconciliationCoordinator via ProductionTracker.bulk_delete_targets.

Covers:
- Missing ids reported as TARGET_NOT_FOUND and counted as reconciled
- Per-item isolation: one failing style does not affect the others
- Failed reversals are not deleted; re-running converges
- Request normalization: duplicates, blanks, {"ids": [...]} envelope
- Cross-style parallelism keeps per-style totals exact
"""

import threading

import pytest

from production_kernel.domain.values import BulkItemStatus
from production_kernel.exceptions import ValidationError
from production_kernel.repositories.memory import InMemoryLedgerRepository
from production_kernel.services.bulk_reconciliation import UNHANDLED_EXCEPTION, normalize_ids
from production_kernel.services.production_tracker import ProductionTracker
from tests.conftest import TEST_ACTOR_ID, make_target_payload


class TestNormalizeIds:
    def test_deduplicates_in_order(self):
        assert normalize_ids(["b", "a", "b", " a "]) == ["b", "a"]

    @pytest.mark.parametrize("ids", [[], None, "t-1", ["ok", ""], ["ok", 7]])
    def test_rejects_bad_input(self, ids):
        with pytest.raises(ValidationError):
            normalize_ids(ids)


class TestBulkDelete:
    def test_two_existing_one_missing(self, tracker):
        a = tracker.create_target(make_target_payload(line_code="L1", line_target=100)).target
        b = tracker.create_target(make_target_payload(line_code="L2", line_target=150)).target

        report = tracker.bulk_delete_targets({"ids": [a.id, b.id, "ghost"]})

        assert report.reconciled_count == 3
        assert report.deleted_count == 2
        assert report.errors == ({"id": "ghost", "code": "TARGET_NOT_FOUND", "reason": "Target not found: ghost"},)
        assert tracker.get_balance("ST001")["total_target"] == 0
        assert tracker.list_targets("2024-03-01") == []

    def test_items_follow_request_order(self, tracker):
        ids = [
            tracker.create_target(make_target_payload(style_code=style)).target.id
            for style in ("ST003", "ST001", "ST002")
        ]
        report = tracker.bulk_delete_targets(["missing"] + ids)
        assert [item.target_id for item in report.items] == ["missing"] + ids
        assert [item.item_index for item in report.items] == [0, 1, 2, 3]
        assert report.items[0].status is BulkItemStatus.NOT_FOUND
        assert all(item.status is BulkItemStatus.RECONCILED for item in report.items[1:])

    def test_duplicate_ids_processed_once(self, tracker):
        target = tracker.create_target(make_target_payload(line_target=100)).target
        tracker.create_target(make_target_payload(line_code="L2", line_target=40))

        report = tracker.bulk_delete_targets([target.id, target.id])

        assert len(report.items) == 1
        assert report.deleted_count == 1
        assert tracker.get_balance("ST001")["total_target"] == 40

    def test_missing_envelope_key(self, tracker):
        with pytest.raises(ValidationError):
            tracker.bulk_delete_targets({"targets": ["x"]})

    def test_failed_style_is_isolated(self, clock, target_repo, entry_repo, assignment_repo):
        def fail_st002(style_code):
            if style_code == "ST002":
                raise RuntimeError("row lock lost")

        ledger = InMemoryLedgerRepository()
        tracker = ProductionTracker(
            targets=target_repo,
            entries=entry_repo,
            assignments=assignment_repo,
            ledger=ledger,
            clock=clock,
        )
        ok = tracker.create_target(make_target_payload(style_code="ST001", line_target=100)).target
        bad = tracker.create_target(make_target_payload(style_code="ST002", line_target=200)).target
        ledger.before_commit = fail_st002

        report = tracker.bulk_delete_targets([ok.id, bad.id], actor_id=TEST_ACTOR_ID)

        assert report.reconciled_count == 1
        assert report.deleted_count == 1
        assert [e["id"] for e in report.errors] == [bad.id]
        assert report.errors[0]["code"] == UNHANDLED_EXCEPTION
        failed = report.items[1]
        assert failed.status is BulkItemStatus.FAILED
        assert failed.style_code == "ST002"

        # The failed target keeps its record and its ledger effect
        assert tracker.get_target(bad.id) == bad
        assert tracker.get_balance("ST002")["total_target"] == 200
        assert tracker.get_balance("ST001")["total_target"] == 0

        # Once storage recovers the same request converges
        ledger.before_commit = None
        retry = tracker.bulk_delete_targets([ok.id, bad.id])
        assert retry.deleted_count == 1
        assert tracker.get_balance("ST002")["total_target"] == 0

    def test_summary_logged(self, tracker, captured_logs):
        target = tracker.create_target(make_target_payload()).target
        report = tracker.bulk_delete_targets([target.id, "ghost"], actor_id=TEST_ACTOR_ID)

        done = [r for r in captured_logs() if r["message"] == "bulk_delete_completed"]
        assert len(done) == 1
        assert done[0]["batch_id"] == report.batch_id
        assert done[0]["actor_id"] == TEST_ACTOR_ID
        assert done[0]["reconciled_count"] == 2
        assert done[0]["deleted_count"] == 1
        assert done[0]["not_found"] == 1

    def test_styles_run_on_worker_threads(self, clock, target_repo, entry_repo, assignment_repo):
        seen: dict[str, str] = {}
        lock = threading.Lock()

        def record(style_code):
            with lock:
                seen.setdefault(style_code, threading.current_thread().name)

        ledger = InMemoryLedgerRepository()
        tracker = ProductionTracker(
            targets=target_repo,
            entries=entry_repo,
            assignments=assignment_repo,
            ledger=ledger,
            clock=clock,
        )
        ids = []
        for n in range(8):
            for line in ("L1", "L2", "L3"):
                ids.append(
                    tracker.create_target(
                        make_target_payload(style_code=f"ST{n:03d}", line_code=line, line_target=10 + n)
                    ).target.id
                )
        ledger.before_commit = record

        report = tracker.bulk_delete_targets(ids)

        assert report.reconciled_count == report.deleted_count == len(ids)
        assert all(name.startswith("bulk-reconcile") for name in seen.values())
        assert all(b.total_target == 0 for b in tracker.list_balances())
