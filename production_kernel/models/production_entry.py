"""
Module: production_kernel.models.production_entry
Responsibility: ORM persistence for hourly production entries.
Architecture position: Kernel > Models.

Invariants enforced:
    - One entry per (calendar_day, hour_index, line_code, style_code, stage)
      via uq_production_entry_slot.
    - Quantities are non-negative (check constraints).
    - Identity fields never change (before_update listener).
"""

from sqlalchemy import CheckConstraint, Enum, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from production_kernel.db.base import CALENDAR_DAY_LENGTH, TrackedBase, as_utc
from production_kernel.domain.values import ProductionEntry, ProductionStage

SLOT_CONSTRAINT = "uq_production_entry_slot"


class ProductionEntryModel(TrackedBase):
    """Counts for one hour slot of one stage on one line."""

    __tablename__ = "production_entries"

    __table_args__ = (
        UniqueConstraint(
            "calendar_day",
            "hour_index",
            "line_code",
            "style_code",
            "stage",
            name=SLOT_CONSTRAINT,
        ),
        CheckConstraint("hour_index >= 0 AND hour_index <= 23", name="ck_entry_hour_range"),
        CheckConstraint("input_qty >= 0", name="ck_entry_input_nonneg"),
        CheckConstraint("output_qty >= 0", name="ck_entry_output_nonneg"),
        CheckConstraint("defect_qty >= 0", name="ck_entry_defect_nonneg"),
        CheckConstraint("rework_qty >= 0", name="ck_entry_rework_nonneg"),
        Index("idx_entry_day_line", "calendar_day", "line_code"),
        Index("idx_entry_day_style", "calendar_day", "style_code"),
    )

    calendar_day: Mapped[str] = mapped_column(String(CALENDAR_DAY_LENGTH), nullable=False)
    hour_index: Mapped[int] = mapped_column(Integer, nullable=False)
    line_code: Mapped[str] = mapped_column(String(50), nullable=False)
    style_code: Mapped[str] = mapped_column(String(50), nullable=False)
    stage: Mapped[ProductionStage] = mapped_column(
        Enum(ProductionStage, name="production_stage", native_enum=False),
        nullable=False,
    )
    input_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    defect_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rework_qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return (
            f"<ProductionEntry {self.calendar_day} h{self.hour_index} "
            f"{self.line_code}/{self.style_code}/{self.stage}>"
        )

    def to_dto(self) -> ProductionEntry:
        return ProductionEntry(
            id=self.id,
            calendar_day=self.calendar_day,
            hour_index=self.hour_index,
            line_code=self.line_code,
            style_code=self.style_code,
            stage=ProductionStage(self.stage),
            input_qty=self.input_qty,
            output_qty=self.output_qty,
            defect_qty=self.defect_qty,
            rework_qty=self.rework_qty,
            notes=self.notes,
            revision=self.revision,
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
        )

    @classmethod
    def from_dto(cls, dto: ProductionEntry) -> "ProductionEntryModel":
        return cls(
            id=dto.id,
            calendar_day=dto.calendar_day,
            hour_index=dto.hour_index,
            line_code=dto.line_code,
            style_code=dto.style_code,
            stage=dto.stage,
            input_qty=dto.input_qty,
            output_qty=dto.output_qty,
            defect_qty=dto.defect_qty,
            rework_qty=dto.rework_qty,
            notes=dto.notes,
            revision=dto.revision,
            created_at=dto.created_at,
            updated_at=dto.updated_at or dto.created_at,
        )
