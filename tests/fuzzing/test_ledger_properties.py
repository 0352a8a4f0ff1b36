"""
Property-based tests for the balance ledger and rollups.

Properties:
- After any sequence of creates and deletes, every ledger row satisfies
  current_balance = total_target - total_produced with both totals >= 0.
- Deleting every created target returns every style to zero.
- Applying the same delta many times changes the ledger once.
- Creation order never changes the final totals.
- Rollup cells partition the filtered entries: cell totals sum to the
  report totals for any grouping.
"""

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from production_kernel.domain.clock import DeterministicClock
from production_kernel.domain.hours import label_for
from production_kernel.domain.values import (
    BalanceDelta,
    DeltaDirection,
    ProductionStage,
)
from production_kernel.services.production_tracker import ProductionTracker
from tests.conftest import make_entry_payload, make_target_payload

STYLES = ("ST001", "ST002", "ST003")
LINES = ("L1", "L2")

FUZZ_SETTINGS = settings(
    max_examples=60,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)


def _tracker() -> ProductionTracker:
    return ProductionTracker.in_memory(DeterministicClock())


targets = st.fixed_dictionaries(
    {
        "style_code": st.sampled_from(STYLES),
        "line_code": st.sampled_from(LINES),
        "line_target": st.integers(min_value=1, max_value=5_000),
        "hourly_production": st.integers(min_value=0, max_value=6_000),
    }
)

# (create payload, delete afterwards?)
operations = st.lists(st.tuples(targets, st.booleans()), min_size=1, max_size=25)


class TestBalanceIdentity:
    @FUZZ_SETTINGS
    @given(ops=operations)
    def test_identity_after_any_sequence(self, ops):
        tracker = _tracker()
        for payload, delete in ops:
            target = tracker.create_target(make_target_payload(**payload)).target
            if delete:
                tracker.delete_target(target.id)

        for balance in tracker.list_balances():
            assert balance.total_target >= 0
            assert balance.total_produced >= 0
            assert balance.current_balance == balance.total_target - balance.total_produced

    @FUZZ_SETTINGS
    @given(ops=operations)
    def test_totals_match_live_targets(self, ops):
        tracker = _tracker()
        live: dict[str, list[tuple[int, int]]] = {}
        for payload, delete in ops:
            target = tracker.create_target(make_target_payload(**payload)).target
            if delete:
                tracker.delete_target(target.id)
            else:
                live.setdefault(target.style_code, []).append(
                    (target.line_target, target.hourly_production)
                )

        for style in STYLES:
            rows = live.get(style, [])
            balance = tracker.get_balance(style)
            assert balance["total_target"] == sum(t for t, _ in rows)
            assert balance["total_produced"] == sum(p for _, p in rows)


class TestInverseLaw:
    @FUZZ_SETTINGS
    @given(payloads=st.lists(targets, min_size=1, max_size=20))
    def test_delete_everything_returns_to_zero(self, payloads):
        tracker = _tracker()
        ids = [tracker.create_target(make_target_payload(**p)).target.id for p in payloads]

        report = tracker.bulk_delete_targets(ids)

        assert report.deleted_count == len(ids)
        for balance in tracker.list_balances():
            assert (balance.total_target, balance.total_produced, balance.current_balance) == (0, 0, 0)


class TestIdempotence:
    @FUZZ_SETTINGS
    @given(
        target_delta=st.integers(min_value=0, max_value=10_000),
        produced_delta=st.integers(min_value=0, max_value=10_000),
        repeats=st.integers(min_value=1, max_value=6),
    )
    def test_repeated_delta_applies_once(self, target_delta, produced_delta, repeats):
        tracker = _tracker()
        delta = BalanceDelta("evt-1", "ST001", target_delta, produced_delta, DeltaDirection.APPLY)

        for _ in range(repeats):
            tracker.reconciliation.apply(delta)

        balance = tracker.get_balance("ST001")
        assert balance["total_target"] == target_delta
        assert balance["total_produced"] == produced_delta


class TestOrderIndependence:
    @FUZZ_SETTINGS
    @given(data=st.data(), payloads=st.lists(targets, min_size=2, max_size=12))
    def test_permuted_creates_reach_same_totals(self, data, payloads):
        shuffled = data.draw(st.permutations(payloads))

        first, second = _tracker(), _tracker()
        for p in payloads:
            first.create_target(make_target_payload(**p))
        for p in shuffled:
            second.create_target(make_target_payload(**p))

        assert [b.to_dict() for b in first.list_balances()] == [
            b.to_dict() for b in second.list_balances()
        ]


entries = st.lists(
    st.fixed_dictionaries(
        {
            "hour_index": st.integers(min_value=0, max_value=23),
            "line_code": st.sampled_from(LINES),
            "style_code": st.sampled_from(STYLES),
            "stage": st.sampled_from([s.value for s in ProductionStage]),
            "input_qty": st.integers(min_value=0, max_value=500),
            "output_qty": st.integers(min_value=0, max_value=500),
            "defect_qty": st.integers(min_value=0, max_value=50),
            "rework_qty": st.integers(min_value=0, max_value=50),
        }
    ),
    max_size=30,
    unique_by=lambda e: (e["hour_index"], e["line_code"], e["style_code"], e["stage"]),
)

dimensions = st.lists(
    st.sampled_from(["date", "line", "style", "stage", "hour"]),
    min_size=1,
    max_size=5,
    unique=True,
)


class TestRollupPartition:
    @FUZZ_SETTINGS
    @given(rows=entries, group_by=dimensions)
    def test_cells_sum_to_totals(self, rows, group_by):
        tracker = _tracker()
        for row in rows:
            tracker.add_production_entry(make_entry_payload(**row))

        report = tracker.get_daily_rollup("2024-03-01", group_by=group_by)

        for field in ("input_qty", "output_qty", "defect_qty", "rework_qty", "entry_count"):
            assert sum(getattr(c.totals, field) for c in report.cells) == getattr(report.totals, field)
        assert report.totals.entry_count == len(rows)
        assert report.totals.output_qty == sum(r["output_qty"] for r in rows)

    @FUZZ_SETTINGS
    @given(rows=entries)
    def test_hour_cells_use_shift_labels(self, rows):
        tracker = _tracker()
        for row in rows:
            tracker.add_production_entry(make_entry_payload(**row))

        report = tracker.get_daily_rollup("2024-03-01", group_by=["hour"])

        assert {c.dimension("hour") for c in report.cells} == {label_for(r["hour_index"]) for r in rows}
