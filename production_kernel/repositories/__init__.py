"""Repository interfaces and their in-memory and SQLAlchemy implementations."""

from production_kernel.repositories.base import (
    AssignmentRepository,
    Deadline,
    LedgerRepository,
    LedgerUnitOfWork,
    ProductionEntryRepository,
    TargetRepository,
)
from production_kernel.repositories.memory import (
    InMemoryAssignmentRepository,
    InMemoryLedgerRepository,
    InMemoryProductionEntryRepository,
    InMemoryTargetRepository,
)

__all__ = [
    "AssignmentRepository",
    "Deadline",
    "LedgerRepository",
    "LedgerUnitOfWork",
    "ProductionEntryRepository",
    "TargetRepository",
    "InMemoryAssignmentRepository",
    "InMemoryLedgerRepository",
    "InMemoryProductionEntryRepository",
    "InMemoryTargetRepository",
]
