"""
SQLAlchemy repositories.

Each repository is built from a ``sessionmaker`` and opens one short session
per call, so instances are safe to share across threads.  Every method
commits its own work; a SQLAlchemyError is rolled back and re-raised as
PersistenceError.

Ledger locking:
    ``SELECT ... FOR UPDATE`` on the style_balances row serializes deltas
    per style on PostgreSQL.  A missing row is inserted under a SAVEPOINT;
    if a concurrent transaction wins the insert race the savepoint is rolled
    back and the row is re-selected with the lock.  On PostgreSQL the
    caller's remaining timeout is pushed down as ``SET LOCAL lock_timeout``.
    SQLite ignores FOR UPDATE; the engine opens every transaction with
    BEGIN IMMEDIATE instead, which serializes all writers.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import delete, exists, select, text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

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
    PersistenceError,
    ProductionKernelError,
    ReconciliationTimeoutError,
    StaleProductionEntryError,
)
from production_kernel.logging_config import get_logger
from production_kernel.models import (
    AppliedDeltaModel,
    ProductionEntryModel,
    StyleAssignmentModel,
    StyleBalanceModel,
    TargetEventModel,
)
from production_kernel.repositories.base import (
    AssignmentRepository,
    Deadline,
    LedgerRepository,
    LedgerUnitOfWork,
    ProductionEntryRepository,
    TargetRepository,
)

logger = get_logger("repositories.sqlalchemy")

_LOCK_NOT_AVAILABLE = "55P03"


class _SessionRepository:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except ProductionKernelError:
            session.rollback()
            raise
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(
                "persistence_failed",
                extra={"operation": operation, "error": str(exc)},
            )
            raise PersistenceError(operation, str(exc)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @property
    def _is_postgres(self) -> bool:
        return self._session_factory.kw["bind"].dialect.name == "postgresql"


class SqlTargetRepository(_SessionRepository, TargetRepository):
    def add(self, target: TargetEvent) -> TargetEvent:
        with self._session("target.add") as session:
            session.add(TargetEventModel.from_dto(target))
        return target

    def get(self, target_id: str) -> TargetEvent | None:
        with self._session("target.get") as session:
            row = session.get(TargetEventModel, target_id)
            return row.to_dto() if row is not None else None

    def get_many(self, target_ids: Iterable[str]) -> dict[str, TargetEvent]:
        ids = list(dict.fromkeys(target_ids))
        if not ids:
            return {}
        with self._session("target.get_many") as session:
            rows = session.execute(
                select(TargetEventModel).where(TargetEventModel.id.in_(ids))
            ).scalars()
            return {row.id: row.to_dto() for row in rows}

    def delete(self, target_id: str) -> bool:
        return self.delete_many([target_id]) == 1

    def delete_many(self, target_ids: Iterable[str]) -> int:
        ids = list(dict.fromkeys(target_ids))
        if not ids:
            return 0
        with self._session("target.delete_many") as session:
            result = session.execute(
                delete(TargetEventModel).where(TargetEventModel.id.in_(ids))
            )
            return result.rowcount

    def list_by_date_range(
        self,
        date_range: DateRange,
        line_code: str | None = None,
        style_code: str | None = None,
    ) -> list[TargetEvent]:
        stmt = select(TargetEventModel).where(
            TargetEventModel.calendar_day >= date_range.start,
            TargetEventModel.calendar_day <= date_range.end,
        )
        if line_code is not None:
            stmt = stmt.where(TargetEventModel.line_code == line_code)
        if style_code is not None:
            stmt = stmt.where(TargetEventModel.style_code == style_code)
        stmt = stmt.order_by(
            TargetEventModel.calendar_day,
            TargetEventModel.line_code,
            TargetEventModel.style_code,
            TargetEventModel.created_at,
            TargetEventModel.id,
        )
        with self._session("target.list") as session:
            return [row.to_dto() for row in session.execute(stmt).scalars()]


class SqlProductionEntryRepository(_SessionRepository, ProductionEntryRepository):
    def add(self, entry: ProductionEntry) -> ProductionEntry:
        try:
            with self._session("entry.add") as session:
                session.add(ProductionEntryModel.from_dto(entry))
                session.flush()
        except PersistenceError as exc:
            if isinstance(exc.__cause__, IntegrityError) and self._slot_taken(entry):
                raise DuplicateProductionEntryError(*entry.slot) from exc.__cause__
            raise
        return entry

    def _slot_taken(self, entry: ProductionEntry) -> bool:
        with self._session("entry.slot_lookup") as session:
            return session.execute(
                select(
                    exists().where(
                        ProductionEntryModel.calendar_day == entry.calendar_day,
                        ProductionEntryModel.hour_index == entry.hour_index,
                        ProductionEntryModel.line_code == entry.line_code,
                        ProductionEntryModel.style_code == entry.style_code,
                        ProductionEntryModel.stage == entry.stage,
                    )
                )
            ).scalar()

    def get(self, entry_id: str) -> ProductionEntry | None:
        with self._session("entry.get") as session:
            row = session.get(ProductionEntryModel, entry_id)
            return row.to_dto() if row is not None else None

    def update_quantities(
        self,
        entry_id: str,
        changes: dict,
        at: datetime,
        expected_revision: int | None = None,
    ) -> tuple[ProductionEntry, ProductionEntry] | None:
        with self._session("entry.update") as session:
            row = session.execute(
                select(ProductionEntryModel)
                .where(ProductionEntryModel.id == entry_id)
                .with_for_update()
            ).scalar_one_or_none()
            if row is None:
                return None
            before = row.to_dto()
            if expected_revision is not None and before.revision != expected_revision:
                raise StaleProductionEntryError(entry_id, expected_revision)
            for name, value in changes.items():
                setattr(row, name, value)
            row.revision = before.revision + 1
            row.updated_at = at
            session.flush()
            return before, row.to_dto()

    def delete(
        self, entry_id: str, expected_revision: int | None = None
    ) -> ProductionEntry | None:
        with self._session("entry.delete") as session:
            row = session.execute(
                select(ProductionEntryModel)
                .where(ProductionEntryModel.id == entry_id)
                .with_for_update()
            ).scalar_one_or_none()
            if row is None:
                return None
            entry = row.to_dto()
            if expected_revision is not None and entry.revision != expected_revision:
                raise StaleProductionEntryError(entry_id, expected_revision)
            session.delete(row)
            return entry

    def list_by_date_range(
        self,
        date_range: DateRange,
        line_code: str | None = None,
        style_code: str | None = None,
        stage: ProductionStage | None = None,
    ) -> list[ProductionEntry]:
        stmt = select(ProductionEntryModel).where(
            ProductionEntryModel.calendar_day >= date_range.start,
            ProductionEntryModel.calendar_day <= date_range.end,
        )
        if line_code is not None:
            stmt = stmt.where(ProductionEntryModel.line_code == line_code)
        if style_code is not None:
            stmt = stmt.where(ProductionEntryModel.style_code == style_code)
        if stage is not None:
            stmt = stmt.where(ProductionEntryModel.stage == stage)
        stmt = stmt.order_by(
            ProductionEntryModel.calendar_day,
            ProductionEntryModel.hour_index,
            ProductionEntryModel.line_code,
            ProductionEntryModel.style_code,
            ProductionEntryModel.stage,
        )
        with self._session("entry.list") as session:
            return [row.to_dto() for row in session.execute(stmt).scalars()]


class SqlAssignmentRepository(_SessionRepository, AssignmentRepository):
    def add_exclusive(self, assignment: StyleAssignment) -> StyleAssignment:
        with self._session("assignment.add") as session:
            # Lock the existing windows of this (line, style) pair
            existing = session.execute(
                select(StyleAssignmentModel)
                .where(
                    StyleAssignmentModel.line_code == assignment.line_code,
                    StyleAssignmentModel.style_code == assignment.style_code,
                )
                .with_for_update()
            ).scalars()
            for row in existing:
                if row.to_dto().overlaps(assignment.start_day, assignment.end_day):
                    raise OverlappingAssignmentError(
                        assignment.line_code, assignment.style_code, row.id
                    )
            session.add(StyleAssignmentModel.from_dto(assignment))
        return assignment

    def list_active(self, day: str, line_code: str | None = None) -> list[StyleAssignment]:
        stmt = select(StyleAssignmentModel).where(
            StyleAssignmentModel.start_day <= day,
            (StyleAssignmentModel.end_day.is_(None)) | (StyleAssignmentModel.end_day >= day),
        )
        if line_code is not None:
            stmt = stmt.where(StyleAssignmentModel.line_code == line_code)
        stmt = stmt.order_by(
            StyleAssignmentModel.line_code,
            StyleAssignmentModel.style_code,
            StyleAssignmentModel.start_day,
        )
        with self._session("assignment.list") as session:
            return [row.to_dto() for row in session.execute(stmt).scalars()]


class _SqlUnitOfWork(LedgerUnitOfWork):
    def __init__(self, session: Session, row: StyleBalanceModel):
        self._session = session
        self._row = row
        self.balance = row.to_dto()
        self.dirty = False

    def is_applied(self, key: DeltaKey) -> bool:
        return self._session.execute(
            select(
                exists().where(
                    AppliedDeltaModel.event_id == key.event_id,
                    AppliedDeltaModel.direction == key.direction,
                )
            )
        ).scalar()

    def save(self, balance: StyleBalance, delta: BalanceDelta | None, at: datetime) -> StyleBalance:
        row = self._row
        row.total_target = balance.total_target
        row.total_produced = balance.total_produced
        row.current_balance = balance.current_balance
        row.last_updated = at
        row.version = self.balance.version + 1
        if delta is not None:
            self._session.add(
                AppliedDeltaModel(
                    event_id=delta.event_id,
                    direction=delta.direction,
                    style_code=delta.style_code,
                    target_delta=delta.target_delta,
                    produced_delta=delta.produced_delta,
                    calendar_day=delta.calendar_day,
                    applied_at=at,
                )
            )
        self._session.flush()
        self.dirty = True
        return row.to_dto()


class SqlLedgerRepository(_SessionRepository, LedgerRepository):
    def get(self, style_code: str) -> StyleBalance | None:
        with self._session("ledger.get") as session:
            row = session.execute(
                select(StyleBalanceModel).where(StyleBalanceModel.style_code == style_code)
            ).scalar_one_or_none()
            return row.to_dto() if row is not None else None

    def list(self, style_code: str | None = None) -> list[StyleBalance]:
        stmt = select(StyleBalanceModel).order_by(StyleBalanceModel.style_code)
        if style_code is not None:
            stmt = stmt.where(StyleBalanceModel.style_code == style_code)
        with self._session("ledger.list") as session:
            return [row.to_dto() for row in session.execute(stmt).scalars()]

    def _select_locked(self, session: Session, style_code: str) -> StyleBalanceModel | None:
        return session.execute(
            select(StyleBalanceModel)
            .where(StyleBalanceModel.style_code == style_code)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _lock_row(self, session: Session, style_code: str) -> StyleBalanceModel:
        row = self._select_locked(session, style_code)
        if row is not None:
            return row

        # First delta for this style; a concurrent transaction may create the
        # row at the same time, so insert under a savepoint and retry.
        savepoint = session.begin_nested()
        try:
            row = StyleBalanceModel(
                style_code=style_code,
                total_target=0,
                total_produced=0,
                current_balance=0,
                version=0,
            )
            session.add(row)
            session.flush()
            savepoint.commit()
            logger.debug("ledger_row_created", extra={"style_code": style_code})
            return row
        except IntegrityError:
            logger.debug("ledger_row_race_retry", extra={"style_code": style_code})
            savepoint.rollback()
            session.expire_all()
            return self._select_locked(session, style_code)

    def _is_lock_timeout(self, exc: OperationalError) -> bool:
        orig = exc.orig
        code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        return code == _LOCK_NOT_AVAILABLE

    @contextmanager
    def transaction(self, style_code: str, deadline: Deadline) -> Iterator[LedgerUnitOfWork]:
        session = self._session_factory()
        try:
            remaining = deadline.remaining()
            if remaining is not None and self._is_postgres:
                millis = max(1, int(remaining * 1000))
                session.execute(text(f"SET LOCAL lock_timeout = '{millis}ms'"))
            row = self._lock_row(session, style_code)
            deadline.check(style_code)

            uow = _SqlUnitOfWork(session, row)
            yield uow

            if uow.dirty:
                deadline.check(style_code)
                session.commit()
            else:
                session.rollback()
        except ProductionKernelError:
            session.rollback()
            raise
        except OperationalError as exc:
            session.rollback()
            if self._is_lock_timeout(exc):
                logger.warning(
                    "ledger_lock_timeout",
                    extra={"style_code": style_code, "timeout_seconds": deadline.timeout},
                )
                raise ReconciliationTimeoutError(style_code, deadline.timeout) from exc
            logger.error(
                "persistence_failed",
                extra={"operation": "ledger.transaction", "error": str(exc)},
            )
            raise PersistenceError("ledger.transaction", str(exc)) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(
                "persistence_failed",
                extra={"operation": "ledger.transaction", "error": str(exc)},
            )
            raise PersistenceError("ledger.transaction", str(exc)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
