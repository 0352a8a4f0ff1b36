"""ORM models for the production kernel."""

from production_kernel.models.production_entry import ProductionEntryModel
from production_kernel.models.style_assignment import StyleAssignmentModel
from production_kernel.models.style_balance import AppliedDeltaModel, StyleBalanceModel
from production_kernel.models.target_event import TargetEventModel

__all__ = [
    "AppliedDeltaModel",
    "ProductionEntryModel",
    "StyleAssignmentModel",
    "StyleBalanceModel",
    "TargetEventModel",
]
