"""
Module: production_kernel.models.target_event
Responsibility: ORM persistence for planned target events.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Append/delete only: UPDATE is refused by the before_update listener
      in db/immutability.py.
    - calendar_day holds the exact "YYYY-MM-DD" string given at creation.
"""

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import CALENDAR_DAY_LENGTH, Base, as_utc
from production_kernel.domain.values import TargetEvent


class TargetEventModel(Base):
    """One planned (line, style, day) target."""

    __tablename__ = "target_events"

    __table_args__ = (
        CheckConstraint("line_target > 0", name="ck_target_line_target_positive"),
        CheckConstraint(
            "hourly_production >= 0", name="ck_target_hourly_production_nonneg"
        ),
        Index("idx_target_day", "calendar_day"),
        Index("idx_target_style_day", "style_code", "calendar_day"),
        Index("idx_target_line_day", "line_code", "calendar_day"),
    )

    line_code: Mapped[str] = mapped_column(String(50), nullable=False)
    style_code: Mapped[str] = mapped_column(String(50), nullable=False)
    calendar_day: Mapped[str] = mapped_column(String(CALENDAR_DAY_LENGTH), nullable=False)
    line_target: Mapped[int] = mapped_column(Integer, nullable=False)
    hourly_production: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    in_time: Mapped[str | None] = mapped_column(String(20), nullable=True)
    out_time: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<TargetEvent {self.id} {self.style_code}@{self.calendar_day}>"

    def to_dto(self) -> TargetEvent:
        return TargetEvent(
            id=self.id,
            line_code=self.line_code,
            style_code=self.style_code,
            calendar_day=self.calendar_day,
            line_target=self.line_target,
            hourly_production=self.hourly_production,
            created_at=as_utc(self.created_at),
            in_time=self.in_time,
            out_time=self.out_time,
            created_by=self.created_by,
        )

    @classmethod
    def from_dto(cls, dto: TargetEvent) -> "TargetEventModel":
        return cls(
            id=dto.id,
            line_code=dto.line_code,
            style_code=dto.style_code,
            calendar_day=dto.calendar_day,
            line_target=dto.line_target,
            hourly_production=dto.hourly_production,
            created_at=dto.created_at,
            in_time=dto.in_time,
            out_time=dto.out_time,
            created_by=dto.created_by,
        )
