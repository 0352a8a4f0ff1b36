"""
ReconciliationEngine -- applies balance deltas to the ledger.

Responsibility:
    Turns one BalanceDelta into a ledger mutation: add (APPLY) or subtract
    (REVERSE) the delta's magnitudes, clamp at zero, recompute the balance.
    Everything else (locking, idempotency, atomic persistence) is the
    ledger's job.

Architecture position:
    Kernel > Services.  Called by the target, production-entry and bulk
    services.  It never reads or writes event records.

Rules:
    - A REVERSE that would take total_target or total_produced below zero
      clamps that field at zero.  The write proceeds and the result carries
      a FIELD_CLAMPED warning.
    - A write leaving total_produced > total_target carries an
      OVERPRODUCTION warning.  Overproduction is a business reality, not
      an error.
    - A delta whose (event_id, direction) is already recorded is skipped
      with status ALREADY_APPLIED.
    - Warnings are logged only after the write commits.

Failure modes:
    - ValidationError: malformed delta (negative magnitude, missing id).
    - ReconciliationTimeoutError / PersistenceError from the ledger; the
      delta is not applied.
"""

from __future__ import annotations

from production_kernel.domain.validation import validate_delta
from production_kernel.domain.values import (
    BalanceDelta,
    ReconciliationResult,
    ReconciliationStatus,
    ReconciliationWarning,
    StyleBalance,
)
from production_kernel.logging_config import LogContext, get_logger
from production_kernel.services.ledger_service import BalanceLedger

logger = get_logger("services.reconciliation")

FIELD_CLAMPED = "FIELD_CLAMPED"
OVERPRODUCTION = "OVERPRODUCTION"


def _apply_delta(
    balance: StyleBalance,
    delta: BalanceDelta,
    warnings: list[ReconciliationWarning],
) -> StyleBalance:
    totals = {
        "total_target": balance.total_target + delta.sign * delta.target_delta,
        "total_produced": balance.total_produced + delta.sign * delta.produced_delta,
    }
    for name, value in totals.items():
        if value < 0:
            warnings.append(
                ReconciliationWarning(
                    code=FIELD_CLAMPED,
                    style_code=delta.style_code,
                    event_id=delta.event_id,
                    message=f"{name} would be {value}; clamped at 0",
                    detail={"field": name, "attempted": value},
                )
            )
            totals[name] = 0

    updated = balance.with_totals(
        totals["total_target"], totals["total_produced"], balance.last_updated
    )
    if updated.total_produced > updated.total_target:
        warnings.append(
            ReconciliationWarning(
                code=OVERPRODUCTION,
                style_code=delta.style_code,
                event_id=delta.event_id,
                message=(
                    f"total_produced {updated.total_produced} exceeds "
                    f"total_target {updated.total_target}"
                ),
                detail={
                    "total_target": updated.total_target,
                    "total_produced": updated.total_produced,
                },
            )
        )
    return updated


class ReconciliationEngine:
    """
    Applies deltas to a BalanceLedger.

    Usage:
        engine = ReconciliationEngine(ledger)
        result = engine.apply(BalanceDelta.for_target(target, DeltaDirection.APPLY))
        if result.warnings:
            ...
    """

    def __init__(self, ledger: BalanceLedger):
        self._ledger = ledger

    @property
    def ledger(self) -> BalanceLedger:
        return self._ledger

    def apply(self, delta: BalanceDelta, timeout: float | None = None) -> ReconciliationResult:
        validate_delta(delta)
        warnings: list[ReconciliationWarning] = []
        moved = {"total_target": 0, "total_produced": 0}

        def mutation(balance: StyleBalance) -> StyleBalance:
            # The ledger runs the mutation once per transaction
            warnings.clear()
            updated = _apply_delta(balance, delta, warnings)
            for name in moved:
                moved[name] = abs(getattr(updated, name) - getattr(balance, name))
            return updated

        with LogContext.bind_delta(delta):
            write = self._ledger.apply_atomic(
                delta.style_code, mutation, delta=delta, timeout=timeout
            )

            if write.skipped:
                logger.info("delta_skipped_already_applied", extra={"delta_key": delta.key})
                return ReconciliationResult(
                    delta=delta,
                    status=ReconciliationStatus.ALREADY_APPLIED,
                    balance=write.balance,
                )

            for warning in warnings:
                logger.warning("reconciliation_warning", extra={"warning": warning})
            logger.info("delta_applied", extra={"delta": delta, "balance": write.balance})

        return ReconciliationResult(
            delta=delta,
            status=ReconciliationStatus.APPLIED,
            balance=write.balance,
            warnings=tuple(warnings),
            moved_target=moved["total_target"],
            moved_produced=moved["total_produced"],
        )
