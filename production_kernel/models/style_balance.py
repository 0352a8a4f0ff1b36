"""
Module: production_kernel.models.style_balance
Responsibility: ORM persistence for the per-style balance ledger and its
    applied-delta idempotency log.
Architecture position: Kernel > Models.

Invariants enforced:
    - One ledger row per style (uq_style_balance_style).
    - current_balance = total_target - total_produced, and both totals are
      non-negative (check constraints; also verified in BalanceLedger
      before every write).
    - A delta (event_id, direction) is recorded at most once
      (uq_applied_delta_key).  The ledger row and its delta record are
      written in the same transaction.
"""

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import CALENDAR_DAY_LENGTH, Base, as_utc
from production_kernel.domain.values import DeltaDirection, StyleBalance

STYLE_CONSTRAINT = "uq_style_balance_style"
DELTA_KEY_CONSTRAINT = "uq_applied_delta_key"


class StyleBalanceModel(Base):
    """Ledger row: running target/produced totals for one style."""

    __tablename__ = "style_balances"

    __table_args__ = (
        UniqueConstraint("style_code", name=STYLE_CONSTRAINT),
        CheckConstraint("total_target >= 0", name="ck_balance_target_nonneg"),
        CheckConstraint("total_produced >= 0", name="ck_balance_produced_nonneg"),
        CheckConstraint(
            "current_balance = total_target - total_produced",
            name="ck_balance_identity",
        ),
    )

    style_code: Mapped[str] = mapped_column(String(50), nullable=False)
    total_target: Mapped[int] = mapped_column(nullable=False, default=0)
    total_produced: Mapped[int] = mapped_column(nullable=False, default=0)
    current_balance: Mapped[int] = mapped_column(nullable=False, default=0)
    last_updated: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<StyleBalance {self.style_code} target={self.total_target} "
            f"produced={self.total_produced} balance={self.current_balance}>"
        )

    def to_dto(self) -> StyleBalance:
        return StyleBalance(
            style_code=self.style_code,
            total_target=self.total_target,
            total_produced=self.total_produced,
            current_balance=self.current_balance,
            last_updated=as_utc(self.last_updated),
            version=self.version,
        )


class AppliedDeltaModel(Base):
    """Record that a delta changed the ledger.  Append-only."""

    __tablename__ = "applied_deltas"

    __table_args__ = (
        UniqueConstraint("event_id", "direction", name=DELTA_KEY_CONSTRAINT),
        Index("idx_applied_delta_style", "style_code"),
    )

    event_id: Mapped[str] = mapped_column(String(100), nullable=False)
    direction: Mapped[DeltaDirection] = mapped_column(
        Enum(DeltaDirection, name="delta_direction", native_enum=False),
        nullable=False,
    )
    style_code: Mapped[str] = mapped_column(String(50), nullable=False)
    target_delta: Mapped[int] = mapped_column(nullable=False)
    produced_delta: Mapped[int] = mapped_column(nullable=False)
    calendar_day: Mapped[str | None] = mapped_column(
        String(CALENDAR_DAY_LENGTH), nullable=True
    )
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<AppliedDelta {self.event_id}/{self.direction}>"
