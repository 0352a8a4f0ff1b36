"""Kernel services: ledger, reconciliation, targets, entries, bulk and the tracker."""

from production_kernel.services.assignment_service import AssignmentService
from production_kernel.services.bulk_reconciliation import BulkReconciliationCoordinator
from production_kernel.services.ledger_service import BalanceLedger, verify_balance
from production_kernel.services.production_entry_service import ProductionEntryService
from production_kernel.services.production_tracker import ProductionTracker
from production_kernel.services.reconciliation_engine import ReconciliationEngine
from production_kernel.services.target_service import TargetService

__all__ = [
    "AssignmentService",
    "BalanceLedger",
    "BulkReconciliationCoordinator",
    "ProductionEntryService",
    "ProductionTracker",
    "ReconciliationEngine",
    "TargetService",
    "verify_balance",
]
