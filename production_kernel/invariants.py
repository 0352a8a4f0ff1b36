"""
Kernel Invariants Contract.

These invariants are structural law for the balance ledger. No configuration
option may turn them off. This module declares them; enforcement lives in
BalanceLedger (balance identity, non-negative totals), the ledger
repositories (per-style serialization, delta idempotency) and the target
service (calendar-day fidelity).
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    BALANCE_IDENTITY = "balance_identity"
    """current_balance == total_target - total_produced on every ledger row,
    after every write. Checked by BalanceLedger before persisting and by a
    DB check constraint."""

    NON_NEGATIVE_TOTALS = "non_negative_totals"
    """total_target and total_produced never go below zero. REVERSE deltas
    clamp at zero and raise a ReconciliationWarning instead."""

    DELTA_IDEMPOTENCY = "delta_idempotency"
    """A delta identified by (event_id, direction) changes the ledger at
    most once. Enforced inside the ledger transaction and by a unique
    constraint on applied_deltas."""

    PER_STYLE_SERIALIZATION = "per_style_serialization"
    """Two deltas for the same style_code never interleave (row lock or
    per-style mutex). Distinct styles are independent."""

    CALENDAR_DAY_FIDELITY = "calendar_day_fidelity"
    """A target's calendar day is the exact "YYYY-MM-DD" string given at
    creation. Reverse deltas reuse that string; it is never re-derived from
    a timezone-converted timestamp."""


# All invariants as a frozenset for programmatic checks.
ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)
