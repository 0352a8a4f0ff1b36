"""
ProductionEntryService -- record, correct and delete hourly entries.

Entries are unique per (day, hour, line, style, stage).  When the ledger's
produced quantity comes from production entries, entries of the counted
stage feed ``total_produced``:

    add      persist entry -> APPLY output_qty (keyed by entry id).  A failed
             delta removes the entry again.
    correct  APPLY/REVERSE the net output change (keyed by a fresh correction
             id) -> update the row if it is still at the revision read.  A
             failed row update undoes what the delta actually moved.
    delete   delete the row if it is still at the revision read -> REVERSE
             the deleted output_qty.  A failed delta restores the row.

Entries of other stages, and all entries when targets are the produced
source, never touch the ledger.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import Any
from uuid import uuid4

from production_kernel.domain.calendar import DateRange
from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.domain.validation import validate_entry, validate_quantity_changes
from production_kernel.domain.values import (
    BalanceDelta,
    DeltaDirection,
    EntryWriteResult,
    ProducedSource,
    ProductionEntry,
    ProductionStage,
    ReconciliationResult,
)
from production_kernel.exceptions import (
    ProductionEntryNotFoundError,
    ProductionKernelError,
    ValidationError,
)
from production_kernel.logging_config import LogContext, get_logger
from production_kernel.repositories.base import ProductionEntryRepository
from production_kernel.services.reconciliation_engine import ReconciliationEngine

logger = get_logger("services.production_entry")


class ProductionEntryService:
    def __init__(
        self,
        entries: ProductionEntryRepository,
        engine: ReconciliationEngine,
        clock: Clock | None = None,
        *,
        produced_source: ProducedSource = ProducedSource.TARGET_EVENTS,
        counted_stage: ProductionStage = ProductionStage.SEWING,
        timeout: float | None = None,
    ):
        self._entries = entries
        self._engine = engine
        self._clock = clock or SystemClock()
        self._produced_source = produced_source
        self._counted_stage = counted_stage
        self._timeout = timeout

    def feeds_ledger(self, entry: ProductionEntry) -> bool:
        return (
            self._produced_source == ProducedSource.PRODUCTION_ENTRIES
            and entry.stage == self._counted_stage
        )

    def _apply(self, delta: BalanceDelta) -> ReconciliationResult:
        return self._engine.apply(delta, timeout=self._timeout)

    def get(self, entry_id: str) -> ProductionEntry:
        entry = self._entries.get(entry_id)
        if entry is None:
            raise ProductionEntryNotFoundError(entry_id)
        return entry

    def list(
        self,
        date_range: DateRange,
        line_code: str | None = None,
        style_code: str | None = None,
        stage: ProductionStage | None = None,
    ) -> list[ProductionEntry]:
        return self._entries.list_by_date_range(date_range, line_code, style_code, stage)

    def add(self, payload: Mapping[str, Any]) -> EntryWriteResult:
        data = validate_entry(payload)
        now = self._clock.now()
        entry = ProductionEntry(
            id=str(uuid4()),
            calendar_day=data.calendar_day,
            hour_index=data.hour_index,
            line_code=data.line_code,
            style_code=data.style_code,
            stage=data.stage,
            input_qty=data.input_qty,
            output_qty=data.output_qty,
            defect_qty=data.defect_qty,
            rework_qty=data.rework_qty,
            notes=data.notes,
            created_at=now,
            updated_at=now,
        )

        with LogContext.bind(event_id=entry.id, style_code=entry.style_code):
            self._entries.add(entry)
            result = None
            if self.feeds_ledger(entry):
                try:
                    result = self._apply(BalanceDelta.for_entry(entry, DeltaDirection.APPLY))
                except Exception:
                    logger.warning("production_entry_add_compensated")
                    self._entries.delete(entry.id)
                    raise
            logger.info(
                "production_entry_recorded",
                extra={
                    "calendar_day": entry.calendar_day,
                    "hour_index": entry.hour_index,
                    "line_code": entry.line_code,
                    "stage": entry.stage.value,
                    "output_qty": entry.output_qty,
                },
            )
        return EntryWriteResult(entry=entry, reconciliation=result)

    def correct(self, entry_id: str, payload: Mapping[str, Any]) -> EntryWriteResult:
        """
        Correct quantities and/or notes of an existing entry in place.

        Raises:
            ValidationError: identity fields present, or nothing to change.
            ProductionEntryNotFoundError: unknown entry.
            StaleProductionEntryError: the entry changed concurrently.
        """
        changes = validate_quantity_changes(payload)
        if not changes:
            raise ValidationError.single("payload", "no correctable fields given")

        before = self.get(entry_id)
        predicted = replace(before, **changes)
        delta = (
            BalanceDelta.for_correction(before, predicted, str(uuid4()))
            if self.feeds_ledger(before)
            else None
        )

        with LogContext.bind(event_id=entry_id, style_code=before.style_code):
            result = self._apply(delta) if delta is not None else None
            try:
                updated = self._entries.update_quantities(
                    entry_id, changes, self._clock.now(), expected_revision=before.revision
                )
                if updated is None:
                    raise ProductionEntryNotFoundError(entry_id)
            except ProductionKernelError:
                if result is not None and result.applied:
                    logger.warning("production_entry_correction_compensated")
                    self._apply(result.compensating_delta())
                raise

            _, after = updated
            logger.info(
                "production_entry_corrected",
                extra={
                    "revision": after.revision,
                    "fields": sorted(changes),
                    "output_before": before.output_qty,
                    "output_after": after.output_qty,
                },
            )
        return EntryWriteResult(entry=after, reconciliation=result)

    def delete(self, entry_id: str) -> EntryWriteResult:
        """
        Delete an entry and reverse the output it held when deleted.

        Raises:
            ProductionEntryNotFoundError: unknown entry.
            StaleProductionEntryError: the entry was corrected after it was
                read; nothing is deleted or reversed.
        """
        read = self.get(entry_id)
        with LogContext.bind(event_id=read.id, style_code=read.style_code):
            entry = self._entries.delete(read.id, expected_revision=read.revision)
            if entry is None:
                raise ProductionEntryNotFoundError(entry_id)
            result = None
            if self.feeds_ledger(entry):
                try:
                    result = self._apply(BalanceDelta.for_entry(entry, DeltaDirection.REVERSE))
                except Exception:
                    logger.warning("production_entry_delete_compensated")
                    self._entries.add(entry)
                    raise
            logger.info(
                "production_entry_deleted",
                extra={"calendar_day": entry.calendar_day, "output_qty": entry.output_qty},
            )
        return EntryWriteResult(entry=entry, reconciliation=result)
