"""
Repository interfaces.

The kernel reaches storage only through these interfaces. Services and
selectors receive concrete repositories through their constructors, so a
test can hand them the in-memory implementations and assert on the ledger
directly, while production wiring hands them the SQLAlchemy ones.

Contract shared by all implementations:
    - Every method returns domain values (production_kernel.domain.values),
      never ORM instances.
    - Storage failures surface as PersistenceError.
    - ``LedgerRepository.transaction`` is the only way to change a
      StyleBalance row. It serializes callers per style_code and commits
      the row and its delta key together or not at all.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from contextlib import AbstractContextManager
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
from production_kernel.exceptions import ReconciliationTimeoutError


class Deadline:
    """Monotonic deadline for a caller-supplied timeout (None = unbounded)."""

    def __init__(self, timeout: float | None):
        self.timeout = timeout
        self._expires_at = None if timeout is None else time.monotonic() + timeout

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def check(self, style_code: str) -> None:
        if self.expired():
            raise ReconciliationTimeoutError(style_code, self.timeout)


class TargetRepository(ABC):
    """Append/delete event log of target events."""

    @abstractmethod
    def add(self, target: TargetEvent) -> TargetEvent: ...

    @abstractmethod
    def get(self, target_id: str) -> TargetEvent | None: ...

    @abstractmethod
    def get_many(self, target_ids: Iterable[str]) -> dict[str, TargetEvent]:
        """Return the targets that exist, keyed by id."""

    @abstractmethod
    def delete(self, target_id: str) -> bool:
        """Delete one target. Returns False when it did not exist."""

    @abstractmethod
    def delete_many(self, target_ids: Iterable[str]) -> int:
        """Delete targets by id. Returns the number of rows removed."""

    @abstractmethod
    def list_by_date_range(
        self,
        date_range: DateRange,
        line_code: str | None = None,
        style_code: str | None = None,
    ) -> list[TargetEvent]: ...


class ProductionEntryRepository(ABC):
    """Hour-slot production entries, unique per slot."""

    @abstractmethod
    def add(self, entry: ProductionEntry) -> ProductionEntry:
        """
        Raises:
            DuplicateProductionEntryError: The slot is already recorded.
        """

    @abstractmethod
    def get(self, entry_id: str) -> ProductionEntry | None: ...

    @abstractmethod
    def update_quantities(
        self,
        entry_id: str,
        changes: dict,
        at: datetime,
        expected_revision: int | None = None,
    ) -> tuple[ProductionEntry, ProductionEntry] | None:
        """
        Apply quantity/notes changes in place and bump ``revision``.

        Returns (before, after), or None when the entry does not exist.

        Raises:
            StaleProductionEntryError: ``expected_revision`` was given and
                the stored revision differs.
        """

    @abstractmethod
    def delete(
        self, entry_id: str, expected_revision: int | None = None
    ) -> ProductionEntry | None:
        """
        Delete and return the entry, or None when it did not exist.

        Raises:
            StaleProductionEntryError: ``expected_revision`` was given and
                the stored revision differs.  The row is kept.
        """

    @abstractmethod
    def list_by_date_range(
        self,
        date_range: DateRange,
        line_code: str | None = None,
        style_code: str | None = None,
        stage: ProductionStage | None = None,
    ) -> list[ProductionEntry]: ...


class AssignmentRepository(ABC):
    """Style-to-line assignment windows."""

    @abstractmethod
    def add_exclusive(self, assignment: StyleAssignment) -> StyleAssignment:
        """
        Insert unless a window for the same (line, style) overlaps.

        Raises:
            OverlappingAssignmentError: An overlapping window exists.
        """

    @abstractmethod
    def list_active(self, day: str, line_code: str | None = None) -> list[StyleAssignment]: ...


class LedgerUnitOfWork(ABC):
    """
    One locked ledger transaction for a single style.

    ``balance`` is the current row (zero-valued if it was just created).
    Nothing is visible to other readers until the owning context manager
    exits cleanly.
    """

    balance: StyleBalance

    @abstractmethod
    def is_applied(self, key: DeltaKey) -> bool: ...

    @abstractmethod
    def save(self, balance: StyleBalance, delta: BalanceDelta | None, at: datetime) -> StyleBalance:
        """Stage the new row (and the delta key, if given) for commit."""


class LedgerRepository(ABC):
    """Storage for StyleBalance rows and the applied-delta log."""

    @abstractmethod
    def get(self, style_code: str) -> StyleBalance | None: ...

    @abstractmethod
    def list(self, style_code: str | None = None) -> list[StyleBalance]: ...

    @abstractmethod
    def transaction(
        self, style_code: str, deadline: Deadline
    ) -> AbstractContextManager[LedgerUnitOfWork]:
        """
        Open a transaction holding the style's lock.

        Raises:
            ReconciliationTimeoutError: The lock was not acquired, or the
                transaction did not reach commit, before the deadline.
            PersistenceError: Storage failed; everything was rolled back.
        """
