"""AssignmentService -- which style runs on which line, and when."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from production_kernel.domain.calendar import parse_calendar_day
from production_kernel.domain.validation import validate_assignment
from production_kernel.domain.values import StyleAssignment
from production_kernel.logging_config import get_logger
from production_kernel.repositories.base import AssignmentRepository

logger = get_logger("services.assignment")


class AssignmentService:
    def __init__(self, assignments: AssignmentRepository):
        self._assignments = assignments

    def create(self, payload: Mapping[str, Any]) -> StyleAssignment:
        """
        Raises:
            ValidationError: malformed payload or end before start.
            OverlappingAssignmentError: the window overlaps an existing one
                for the same line and style.
        """
        data = validate_assignment(payload)
        assignment = self._assignments.add_exclusive(
            StyleAssignment(
                id=str(uuid4()),
                line_code=data.line_code,
                style_code=data.style_code,
                start_day=data.start_day,
                end_day=data.end_day,
                target_per_hour=data.target_per_hour,
            )
        )
        logger.info(
            "assignment_created",
            extra={
                "assignment_id": assignment.id,
                "line_code": assignment.line_code,
                "style_code": assignment.style_code,
                "start_day": assignment.start_day,
                "end_day": assignment.end_day,
            },
        )
        return assignment

    def list_active(self, day: object, line_code: str | None = None) -> list[StyleAssignment]:
        return self._assignments.list_active(parse_calendar_day(day), line_code)
