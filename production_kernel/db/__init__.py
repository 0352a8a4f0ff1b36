"""Database layer - engine, base classes, and append-only listeners."""

from production_kernel.db.base import Base, TrackedBase, new_id
from production_kernel.db.engine import (
    build_engine,
    create_tables,
    drop_tables,
    make_session_factory,
)

__all__ = [
    "Base",
    "TrackedBase",
    "new_id",
    "build_engine",
    "create_tables",
    "drop_tables",
    "make_session_factory",
]
