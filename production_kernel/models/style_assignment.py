"""
Module: production_kernel.models.style_assignment
Responsibility: ORM persistence for style-to-line assignment windows.
Architecture position: Kernel > Models.

Overlap between windows of the same (line, style) cannot be expressed as a
portable constraint; the assignment repository checks it under a lock.
"""

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import CALENDAR_DAY_LENGTH, TrackedBase
from production_kernel.domain.values import StyleAssignment


class StyleAssignmentModel(TrackedBase):
    __tablename__ = "style_assignments"

    __table_args__ = (
        Index("idx_assignment_line_style", "line_code", "style_code"),
        Index("idx_assignment_window", "start_day", "end_day"),
    )

    line_code: Mapped[str] = mapped_column(String(50), nullable=False)
    style_code: Mapped[str] = mapped_column(String(50), nullable=False)
    start_day: Mapped[str] = mapped_column(String(CALENDAR_DAY_LENGTH), nullable=False)
    end_day: Mapped[str | None] = mapped_column(String(CALENDAR_DAY_LENGTH), nullable=True)
    target_per_hour: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def to_dto(self) -> StyleAssignment:
        return StyleAssignment(
            id=self.id,
            line_code=self.line_code,
            style_code=self.style_code,
            start_day=self.start_day,
            end_day=self.end_day,
            target_per_hour=self.target_per_hour,
        )

    @classmethod
    def from_dto(cls, dto: StyleAssignment) -> "StyleAssignmentModel":
        return cls(
            id=dto.id,
            line_code=dto.line_code,
            style_code=dto.style_code,
            start_day=dto.start_day,
            end_day=dto.end_day,
            target_per_hour=dto.target_per_hour,
        )
