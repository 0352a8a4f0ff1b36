"""
In-memory repositories.

Thread-safe implementations of the repository interfaces for tests and for
embedding the kernel without a database.  Stored values are frozen
dataclasses, so a reader always sees a whole row: a write replaces the
object, it never mutates it.

Ledger serialization uses one ``threading.Lock`` per style_code.  Writes
are staged inside the unit of work and published only when the transaction
exits cleanly, so a failed or timed-out transaction leaves no trace.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime

from production_kernel.domain.calendar import DateRange
from production_kernel.domain.values import (
    BalanceDelta,
    DeltaKey,
    ProductionEntry,
    ProductionStage,
    StyleAssignment,
    StyleBalance,
    TargetEvent,
)
from production_kernel.exceptions import (
    DuplicateProductionEntryError,
    OverlappingAssignmentError,
    ReconciliationTimeoutError,
    StaleProductionEntryError,
)
from production_kernel.logging_config import get_logger
from production_kernel.repositories.base import (
    AssignmentRepository,
    Deadline,
    LedgerRepository,
    LedgerUnitOfWork,
    ProductionEntryRepository,
    TargetRepository,
)

logger = get_logger("repositories.memory")


def _matches(value, wanted) -> bool:
    return wanted is None or value == wanted


class InMemoryTargetRepository(TargetRepository):
    def __init__(self) -> None:
        self._rows: dict[str, TargetEvent] = {}
        self._lock = threading.Lock()

    def add(self, target: TargetEvent) -> TargetEvent:
        with self._lock:
            self._rows[target.id] = target
        return target

    def get(self, target_id: str) -> TargetEvent | None:
        return self._rows.get(target_id)

    def get_many(self, target_ids: Iterable[str]) -> dict[str, TargetEvent]:
        with self._lock:
            return {tid: self._rows[tid] for tid in target_ids if tid in self._rows}

    def delete(self, target_id: str) -> bool:
        with self._lock:
            return self._rows.pop(target_id, None) is not None

    def delete_many(self, target_ids: Iterable[str]) -> int:
        with self._lock:
            return sum(
                1 for tid in set(target_ids) if self._rows.pop(tid, None) is not None
            )

    def list_by_date_range(
        self,
        date_range: DateRange,
        line_code: str | None = None,
        style_code: str | None = None,
    ) -> list[TargetEvent]:
        with self._lock:
            rows = list(self._rows.values())
        return sorted(
            (
                t
                for t in rows
                if date_range.contains(t.calendar_day)
                and _matches(t.line_code, line_code)
                and _matches(t.style_code, style_code)
            ),
            key=lambda t: (t.calendar_day, t.line_code, t.style_code, t.created_at, t.id),
        )


class InMemoryProductionEntryRepository(ProductionEntryRepository):
    def __init__(self) -> None:
        self._rows: dict[str, ProductionEntry] = {}
        self._slots: dict[tuple, str] = {}
        self._lock = threading.Lock()

    def add(self, entry: ProductionEntry) -> ProductionEntry:
        with self._lock:
            if entry.slot in self._slots:
                raise DuplicateProductionEntryError(*entry.slot)
            self._rows[entry.id] = entry
            self._slots[entry.slot] = entry.id
        return entry

    def get(self, entry_id: str) -> ProductionEntry | None:
        return self._rows.get(entry_id)

    def update_quantities(
        self,
        entry_id: str,
        changes: dict,
        at: datetime,
        expected_revision: int | None = None,
    ) -> tuple[ProductionEntry, ProductionEntry] | None:
        with self._lock:
            before = self._rows.get(entry_id)
            if before is None:
                return None
            if expected_revision is not None and before.revision != expected_revision:
                raise StaleProductionEntryError(entry_id, expected_revision)
            after = replace(before, revision=before.revision + 1, updated_at=at, **changes)
            self._rows[entry_id] = after
        return before, after

    def delete(
        self, entry_id: str, expected_revision: int | None = None
    ) -> ProductionEntry | None:
        with self._lock:
            entry = self._rows.get(entry_id)
            if entry is None:
                return None
            if expected_revision is not None and entry.revision != expected_revision:
                raise StaleProductionEntryError(entry_id, expected_revision)
            del self._rows[entry_id]
            self._slots.pop(entry.slot, None)
        return entry

    def list_by_date_range(
        self,
        date_range: DateRange,
        line_code: str | None = None,
        style_code: str | None = None,
        stage: ProductionStage | None = None,
    ) -> list[ProductionEntry]:
        with self._lock:
            rows = list(self._rows.values())
        return sorted(
            (
                e
                for e in rows
                if date_range.contains(e.calendar_day)
                and _matches(e.line_code, line_code)
                and _matches(e.style_code, style_code)
                and _matches(e.stage, stage)
            ),
            key=lambda e: e.slot,
        )


class InMemoryAssignmentRepository(AssignmentRepository):
    def __init__(self) -> None:
        self._rows: dict[str, StyleAssignment] = {}
        self._lock = threading.Lock()

    def add_exclusive(self, assignment: StyleAssignment) -> StyleAssignment:
        with self._lock:
            for existing in self._rows.values():
                if (
                    existing.line_code == assignment.line_code
                    and existing.style_code == assignment.style_code
                    and existing.overlaps(assignment.start_day, assignment.end_day)
                ):
                    raise OverlappingAssignmentError(
                        assignment.line_code, assignment.style_code, existing.id
                    )
            self._rows[assignment.id] = assignment
        return assignment

    def list_active(self, day: str, line_code: str | None = None) -> list[StyleAssignment]:
        with self._lock:
            rows = list(self._rows.values())
        return sorted(
            (a for a in rows if a.is_active_on(day) and _matches(a.line_code, line_code)),
            key=lambda a: (a.line_code, a.style_code, a.start_day),
        )


class _MemoryUnitOfWork(LedgerUnitOfWork):
    def __init__(self, repo: InMemoryLedgerRepository, style_code: str):
        self._repo = repo
        self.style_code = style_code
        self.balance = repo._rows.get(style_code) or StyleBalance.zero(style_code)
        self.staged_balance: StyleBalance | None = None
        self.staged_delta: BalanceDelta | None = None

    def is_applied(self, key: DeltaKey) -> bool:
        return key in self._repo._applied

    def save(self, balance: StyleBalance, delta: BalanceDelta | None, at: datetime) -> StyleBalance:
        self.staged_balance = replace(balance, last_updated=at, version=self.balance.version + 1)
        self.staged_delta = delta
        return self.staged_balance


class InMemoryLedgerRepository(LedgerRepository):
    """
    Ledger rows and applied-delta keys held in dicts.

    Args:
        before_commit: Optional hook called with the style_code just before a
            transaction publishes its writes.  Tests use it to inject storage
            failures or delays; an exception from it aborts the transaction.
    """

    def __init__(self, before_commit: Callable[[str], None] | None = None) -> None:
        self._rows: dict[str, StyleBalance] = {}
        self._applied: set[DeltaKey] = set()
        self._style_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self.before_commit = before_commit

    def _lock_for(self, style_code: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._style_locks.get(style_code)
            if lock is None:
                lock = self._style_locks[style_code] = threading.Lock()
            return lock

    def get(self, style_code: str) -> StyleBalance | None:
        return self._rows.get(style_code)

    def list(self, style_code: str | None = None) -> list[StyleBalance]:
        rows = list(self._rows.values())
        return sorted(
            (r for r in rows if _matches(r.style_code, style_code)),
            key=lambda r: r.style_code,
        )

    def applied_keys(self) -> frozenset[DeltaKey]:
        """Snapshot of recorded delta keys (test inspection)."""
        return frozenset(self._applied)

    @contextmanager
    def transaction(self, style_code: str, deadline: Deadline) -> Iterator[LedgerUnitOfWork]:
        lock = self._lock_for(style_code)
        remaining = deadline.remaining()
        acquired = lock.acquire() if remaining is None else lock.acquire(timeout=remaining)
        if not acquired:
            logger.warning(
                "ledger_lock_timeout",
                extra={"style_code": style_code, "timeout_seconds": deadline.timeout},
            )
            raise ReconciliationTimeoutError(style_code, deadline.timeout)
        try:
            uow = _MemoryUnitOfWork(self, style_code)
            yield uow
            if uow.staged_balance is None:
                return
            if self.before_commit is not None:
                self.before_commit(style_code)
            deadline.check(style_code)
            self._rows[style_code] = uow.staged_balance
            if uow.staged_delta is not None:
                self._applied.add(uow.staged_delta.key)
        finally:
            lock.release()
