"""
Module: production_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.
    Provides the string-UUID primary key convention, the type annotation map
    for consistent column types, and the TrackedBase mixin for timestamps.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  ALL model files import from here.  This module MUST NOT import
    from models/, repositories/, services/, selectors/ or outer layers.

Invariants enforced:
    - Primary keys are uuid4 strings (String(36)).  Domain values carry the
      same string, so repositories never convert ids.
    - datetime columns are always timezone-aware.
    - Calendar days are stored as the exact "YYYY-MM-DD" string they were
      given; ISO strings compare in date order, so range scans still work.
"""

from datetime import UTC, datetime
from typing import ClassVar
from uuid import uuid4

from sqlalchemy import BigInteger, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

CALENDAR_DAY_LENGTH = 10  # "YYYY-MM-DD"


def new_id() -> str:
    """Generate a fresh primary key."""
    return str(uuid4())


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4 string stored as String(36).
        - datetime maps to DateTime(timezone=True).
        - int maps to BigInteger so running totals never overflow.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        int: BigInteger,
    }

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=new_id,
    )


class TrackedBase(Base):
    """
    Abstract base with creation/update timestamps.

    created_at is set on INSERT and never changes; updated_at follows every
    UPDATE.  Services pass their Clock's time explicitly; the server default
    only covers rows written outside the kernel.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
