"""
BulkReconciliationCoordinator -- reverse and delete many targets at once.

Contract:
    ``delete_targets(ids)`` reads every target BEFORE anything is deleted,
    applies one REVERSE delta per target using the target's stored
    calendar_day string, then deletes the records whose reversal succeeded.

Guarantees:
    - Per-item isolation: one item's failure is recorded on its
      BulkItemResult and never aborts the batch or the other items.
    - Nothing is silently dropped: every requested id (after de-duplication)
      gets exactly one item result; ids that do not exist are NOT_FOUND and
      appear in ``errors`` with code TARGET_NOT_FOUND.
    - Per-style ordering: deltas for one style_code run sequentially in
      request order; distinct styles run concurrently on a thread pool.
    - A target whose reversal FAILED is not deleted, so the event log and
      the ledger never disagree.  Re-running the batch converges: reversals
      that already committed are skipped as ALREADY_APPLIED.

Counting:
    reconciled_count = reversed items + NOT_FOUND items (a missing id is a
    no-op reconciliation attempt).  deleted_count = rows actually removed.
"""

from __future__ import annotations

import contextvars
import time
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from uuid import uuid4

from production_kernel.domain.values import (
    BalanceDelta,
    BulkDeleteReport,
    BulkItemResult,
    BulkItemStatus,
    DeltaDirection,
    TargetEvent,
)
from production_kernel.exceptions import (
    ProductionKernelError,
    TargetNotFoundError,
    ValidationError,
)
from production_kernel.logging_config import LogContext, get_logger
from production_kernel.repositories.base import TargetRepository
from production_kernel.services.reconciliation_engine import ReconciliationEngine

logger = get_logger("services.bulk")

UNHANDLED_EXCEPTION = "UNHANDLED_EXCEPTION"


def normalize_ids(target_ids: Iterable[object]) -> list[str]:
    """De-duplicate ids keeping first-seen order; reject empty or blank input."""
    if target_ids is None or isinstance(target_ids, (str, bytes)):
        raise ValidationError.single("ids", "must be a list of target ids")
    ids: list[str] = []
    seen: set[str] = set()
    for raw in target_ids:
        if not isinstance(raw, str) or not raw.strip():
            raise ValidationError.single("ids", f"invalid target id {raw!r}")
        tid = raw.strip()
        if tid not in seen:
            seen.add(tid)
            ids.append(tid)
    if not ids:
        raise ValidationError.single("ids", "at least one target id is required")
    return ids


class BulkReconciliationCoordinator:
    """
    Orchestrates REVERSE deltas for a batch of target deletions.

    Args:
        targets: Target event repository.
        engine: Reconciliation engine applying the deltas.
        include_production: Whether target deltas carry hourly_production
            (False when production entries are the produced source).
        max_workers: Upper bound on concurrently processed styles.
        timeout: Per-delta timeout in seconds (None = engine default).
    """

    def __init__(
        self,
        targets: TargetRepository,
        engine: ReconciliationEngine,
        *,
        include_production: bool = True,
        max_workers: int = 4,
        timeout: float | None = None,
    ):
        self._targets = targets
        self._engine = engine
        self._include_production = include_production
        self._max_workers = max(1, max_workers)
        self._timeout = timeout

    def delete_targets(
        self, target_ids: Iterable[object], actor_id: str | None = None
    ) -> BulkDeleteReport:
        ids = normalize_ids(target_ids)
        batch_id = str(uuid4())
        start = time.monotonic()

        with LogContext.bind(batch_id=batch_id, actor_id=actor_id):
            logger.info("bulk_delete_started", extra={"requested": len(ids)})

            # Read everything first; nothing is deleted until all reversals ran
            found = self._targets.get_many(ids)

            results: dict[int, BulkItemResult] = {}
            by_style: dict[str, list[tuple[int, TargetEvent]]] = {}
            for index, tid in enumerate(ids):
                target = found.get(tid)
                if target is None:
                    results[index] = BulkItemResult(
                        item_index=index,
                        target_id=tid,
                        status=BulkItemStatus.NOT_FOUND,
                        error_code=TargetNotFoundError.code,
                        error_message=f"Target not found: {tid}",
                    )
                    continue
                by_style.setdefault(target.style_code, []).append((index, target))

            for item in self._run_groups(list(by_style.values())):
                results[item.item_index] = item

            items = tuple(results[i] for i in sorted(results))
            reconciled_ids = [i.target_id for i in items if i.status == BulkItemStatus.RECONCILED]
            deleted_count = self._targets.delete_many(reconciled_ids)

            errors = tuple(
                {"id": i.target_id, "code": i.error_code, "reason": i.error_message}
                for i in items
                if i.status != BulkItemStatus.RECONCILED
            )
            report = BulkDeleteReport(
                reconciled_count=sum(
                    1 for i in items if i.status != BulkItemStatus.FAILED
                ),
                deleted_count=deleted_count,
                errors=errors,
                items=items,
                batch_id=batch_id,
            )

            logger.info(
                "bulk_delete_completed",
                extra={
                    "requested": len(ids),
                    "reconciled_count": report.reconciled_count,
                    "deleted_count": report.deleted_count,
                    "failed": sum(1 for i in items if i.status == BulkItemStatus.FAILED),
                    "not_found": sum(1 for i in items if i.status == BulkItemStatus.NOT_FOUND),
                    "duration_ms": int((time.monotonic() - start) * 1000),
                },
            )
        return report

    def _run_groups(
        self, groups: list[list[tuple[int, TargetEvent]]]
    ) -> list[BulkItemResult]:
        workers = min(self._max_workers, len(groups))
        if workers <= 1:
            return [item for group in groups for item in self._reverse_group(group)]

        out: list[BulkItemResult] = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bulk-reconcile") as pool:
            # Each worker gets a copy of the caller's log context
            futures = [
                pool.submit(contextvars.copy_context().run, self._reverse_group, group)
                for group in groups
            ]
            for future in futures:
                out.extend(future.result())
        return out

    def _reverse_group(self, group: list[tuple[int, TargetEvent]]) -> list[BulkItemResult]:
        return [self._reverse_one(index, target) for index, target in group]

    def _reverse_one(self, index: int, target: TargetEvent) -> BulkItemResult:
        delta = BalanceDelta.for_target(
            target, DeltaDirection.REVERSE, include_production=self._include_production
        )
        try:
            result = self._engine.apply(delta, timeout=self._timeout)
        except ProductionKernelError as exc:
            logger.warning(
                "bulk_item_failed",
                extra={
                    "item_index": index,
                    "target_id": target.id,
                    "error_code": exc.code,
                    "error": str(exc),
                },
            )
            return BulkItemResult(
                item_index=index,
                target_id=target.id,
                status=BulkItemStatus.FAILED,
                style_code=target.style_code,
                error_code=exc.code,
                error_message=str(exc),
            )
        except Exception as exc:
            logger.exception(
                "bulk_item_failed",
                extra={"item_index": index, "target_id": target.id},
            )
            return BulkItemResult(
                item_index=index,
                target_id=target.id,
                status=BulkItemStatus.FAILED,
                style_code=target.style_code,
                error_code=UNHANDLED_EXCEPTION,
                error_message=str(exc),
            )

        return BulkItemResult(
            item_index=index,
            target_id=target.id,
            status=BulkItemStatus.RECONCILED,
            style_code=target.style_code,
            warnings=result.warnings,
        )
