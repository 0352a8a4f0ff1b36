"""
TargetService -- create, delete and replace planned targets.

Every operation keeps the target event log and the ledger in step:

    create  persist event -> APPLY delta.  If the delta fails, the event is
            removed again and the error propagates, so an event never exists
            without its ledger effect.
    delete  read event -> REVERSE delta (using the stored calendar_day) ->
            remove event.  If the removal fails, retrying converges: the
            REVERSE is skipped as already applied.
    update  validate the merged payload, then delete + create with a new id.
            The ledger sees two clean deltas, never a diff.  If the create
            fails, the old values are re-created under another fresh id.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from production_kernel.domain.calendar import DateRange
from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.domain.validation import (
    TargetInput,
    canonical_field,
    validate_target,
)
from production_kernel.domain.values import (
    BalanceDelta,
    DeltaDirection,
    TargetEvent,
    TargetWriteResult,
)
from production_kernel.exceptions import ProductionKernelError, TargetNotFoundError
from production_kernel.logging_config import LogContext, get_logger
from production_kernel.repositories.base import TargetRepository
from production_kernel.services.reconciliation_engine import ReconciliationEngine

logger = get_logger("services.target")


class TargetService:
    def __init__(
        self,
        targets: TargetRepository,
        engine: ReconciliationEngine,
        clock: Clock | None = None,
        *,
        include_production: bool = True,
        timeout: float | None = None,
    ):
        self._targets = targets
        self._engine = engine
        self._clock = clock or SystemClock()
        self._include_production = include_production
        self._timeout = timeout

    def _delta(self, target: TargetEvent, direction: DeltaDirection) -> BalanceDelta:
        return BalanceDelta.for_target(
            target, direction, include_production=self._include_production
        )

    def get(self, target_id: str) -> TargetEvent:
        target = self._targets.get(target_id)
        if target is None:
            raise TargetNotFoundError(target_id)
        return target

    def list(
        self,
        date_range: DateRange,
        line_code: str | None = None,
        style_code: str | None = None,
    ) -> list[TargetEvent]:
        return self._targets.list_by_date_range(date_range, line_code, style_code)

    def create(
        self, payload: Mapping[str, Any], actor_id: str | None = None
    ) -> TargetWriteResult:
        return self._create(validate_target(payload), actor_id)

    def _create(self, data: TargetInput, actor_id: str | None) -> TargetWriteResult:
        target = TargetEvent(
            id=str(uuid4()),
            line_code=data.line_code,
            style_code=data.style_code,
            calendar_day=data.calendar_day,
            line_target=data.line_target,
            hourly_production=data.hourly_production,
            created_at=self._clock.now(),
            in_time=data.in_time,
            out_time=data.out_time,
            created_by=actor_id,
        )

        with LogContext.bind(event_id=target.id, style_code=target.style_code, actor_id=actor_id):
            self._targets.add(target)
            try:
                result = self._engine.apply(
                    self._delta(target, DeltaDirection.APPLY), timeout=self._timeout
                )
            except Exception as exc:
                self._compensate_create(target, exc)
                raise

            logger.info(
                "target_created",
                extra={
                    "line_code": target.line_code,
                    "calendar_day": target.calendar_day,
                    "line_target": target.line_target,
                    "hourly_production": target.hourly_production,
                },
            )
        return TargetWriteResult(target=target, reconciliation=result)

    def _compensate_create(self, target: TargetEvent, cause: Exception) -> None:
        logger.warning(
            "target_create_compensated",
            extra={"error_code": getattr(cause, "code", None), "error": str(cause)},
        )
        try:
            self._targets.delete(target.id)
        except ProductionKernelError:
            # The caller sees the reconciliation failure, not this one
            logger.exception("target_compensation_failed")

    def delete(self, target_id: str) -> TargetWriteResult:
        target = self.get(target_id)
        with LogContext.bind(event_id=target.id, style_code=target.style_code):
            result = self._engine.apply(
                self._delta(target, DeltaDirection.REVERSE), timeout=self._timeout
            )
            self._targets.delete(target.id)
            logger.info("target_deleted", extra={"calendar_day": target.calendar_day})
        return TargetWriteResult(target=target, reconciliation=result)

    def update(
        self,
        target_id: str,
        changes: Mapping[str, Any],
        actor_id: str | None = None,
    ) -> TargetWriteResult:
        """
        Replace a target: the old event is deleted and a new one (new id)
        created from the old fields overlaid with ``changes``.
        """
        existing = self.get(target_id)
        merged: dict[str, Any] = {
            "line_code": existing.line_code,
            "style_code": existing.style_code,
            "date": existing.calendar_day,
            "line_target": existing.line_target,
            "hourly_production": existing.hourly_production,
            "in_time": existing.in_time,
            "out_time": existing.out_time,
        }
        merged.update({canonical_field(key): value for key, value in changes.items()})
        data = validate_target(merged)

        self.delete(existing.id)
        try:
            created = self._create(data, actor_id)
        except Exception as exc:
            self._restore(existing, exc)
            raise
        logger.info(
            "target_replaced",
            extra={"previous_id": existing.id, "new_id": created.target.id},
        )
        return created

    def _restore(self, previous: TargetEvent, cause: Exception) -> None:
        # The old id's APPLY is already recorded, so the values come back
        # under a fresh id.
        try:
            restored = self._create(
                TargetInput(
                    line_code=previous.line_code,
                    style_code=previous.style_code,
                    calendar_day=previous.calendar_day,
                    line_target=previous.line_target,
                    hourly_production=previous.hourly_production,
                    in_time=previous.in_time,
                    out_time=previous.out_time,
                ),
                previous.created_by,
            )
        except Exception:
            logger.exception("target_restore_failed", extra={"previous_id": previous.id})
            return
        logger.warning(
            "target_update_restored",
            extra={
                "previous_id": previous.id,
                "restored_id": restored.target.id,
                "error_code": getattr(cause, "code", None),
            },
        )
