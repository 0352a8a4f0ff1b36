"""
Typed Exception Hierarchy for the Production Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the kernel (HTTP handlers, batch jobs, tests) must react to
errors by kind, not by message text:

    try:
        tracker.add_production_entry(payload)
    except DuplicateProductionEntryError as e:
        api_response(status=409, code=e.code, slot=e.slot)

Every class carries a ``code`` class attribute (machine-readable, API-safe)
and stores its context as attributes rather than only in the message.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProductionKernelError (base)
    |
    +-- ValidationError
    |
    +-- ConflictError
    |   +-- DuplicateProductionEntryError
    |   +-- StaleProductionEntryError
    |   +-- OverlappingAssignmentError
    |
    +-- NotFoundError
    |   +-- TargetNotFoundError
    |   +-- ProductionEntryNotFoundError
    |
    +-- LedgerError
    |   +-- InvariantViolationError
    |
    +-- PersistenceError
    |
    +-- ImmutabilityViolationError
    |
    +-- ConcurrencyError
        +-- ReconciliationTimeoutError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|-----------------------------------
Validation   | VALIDATION_ERROR            | Malformed input, before mutation
Conflict     | DUPLICATE_PRODUCTION_ENTRY  | Slot (day, hour, line, style,
             |                             | stage) already recorded
             | STALE_PRODUCTION_ENTRY      | Concurrent correction of an entry
             | OVERLAPPING_ASSIGNMENT      | Style-line windows overlap
Not found    | TARGET_NOT_FOUND            | Target id does not exist
             | PRODUCTION_ENTRY_NOT_FOUND  | Entry id does not exist
Ledger       | LEDGER_INVARIANT_VIOLATION  | Mutation broke balance identity
Persistence  | PERSISTENCE_ERROR           | Storage transaction failed
Immutability | IMMUTABILITY_VIOLATION      | Update of a target event or of an
             |                             | entry identity field; ledger row
             |                             | or applied delta removed
Concurrency  | RECONCILIATION_TIMEOUT      | Lock or transaction exceeded the
             |                             | caller's timeout

A delta that references a style with no ledger row is NOT an error: the
ledger creates a zero-valued row (absence means "no prior history").

Non-fatal reconciliation conditions (clamping, overproduction) are not
exceptions; they are ``ReconciliationWarning`` values attached to results
(see production_kernel.domain.values).
===============================================================================
"""


class ProductionKernelError(Exception):
    """
    Base exception for all production kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PRODUCTION_KERNEL_ERROR"


# Validation


class ValidationError(ProductionKernelError):
    """
    Input failed validation. Raised before any mutation is attempted.

    ``field_errors`` is a list of ``{"field": ..., "message": ...}`` dicts,
    one per offending field.
    """

    code: str = "VALIDATION_ERROR"

    def __init__(self, field_errors: list[dict]):
        self.field_errors = field_errors
        summary = "; ".join(
            f"{err['field']}: {err['message']}" for err in field_errors
        )
        super().__init__(f"Validation failed: {summary}")

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([{"field": field, "message": message}])


# Conflicts


class ConflictError(ProductionKernelError):
    """Base exception for unique-key conflicts. No partial write occurs."""

    code: str = "CONFLICT"


class DuplicateProductionEntryError(ConflictError):
    """A production entry already exists for this hour slot."""

    code: str = "DUPLICATE_PRODUCTION_ENTRY"

    def __init__(
        self,
        calendar_day: str,
        hour_index: int,
        line_code: str,
        style_code: str,
        stage: str,
    ):
        self.calendar_day = calendar_day
        self.hour_index = hour_index
        self.line_code = line_code
        self.style_code = style_code
        self.stage = stage
        super().__init__(
            f"Production entry already exists for {calendar_day} hour "
            f"{hour_index}, line {line_code}, style {style_code}, stage {stage}"
        )

    @property
    def slot(self) -> tuple[str, int, str, str, str]:
        return (
            self.calendar_day,
            self.hour_index,
            self.line_code,
            self.style_code,
            self.stage,
        )


class StaleProductionEntryError(ConflictError):
    """The entry changed (or vanished) between read and correction."""

    code: str = "STALE_PRODUCTION_ENTRY"

    def __init__(self, entry_id: str, expected_revision: int):
        self.entry_id = entry_id
        self.expected_revision = expected_revision
        super().__init__(
            f"Production entry {entry_id} is no longer at revision "
            f"{expected_revision}"
        )


class OverlappingAssignmentError(ConflictError):
    """A style-line assignment window overlaps an existing one."""

    code: str = "OVERLAPPING_ASSIGNMENT"

    def __init__(self, line_code: str, style_code: str, existing_id: str):
        self.line_code = line_code
        self.style_code = style_code
        self.existing_id = existing_id
        super().__init__(
            f"Overlapping assignment exists for line {line_code} and style "
            f"{style_code} (assignment {existing_id})"
        )


# Not found


class NotFoundError(ProductionKernelError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"


class TargetNotFoundError(NotFoundError):
    """Target event with given ID was not found."""

    code: str = "TARGET_NOT_FOUND"

    def __init__(self, target_id: str):
        self.target_id = target_id
        super().__init__(f"Target not found: {target_id}")


class ProductionEntryNotFoundError(NotFoundError):
    """Production entry with given ID was not found."""

    code: str = "PRODUCTION_ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Production entry not found: {entry_id}")


# Ledger


class LedgerError(ProductionKernelError):
    """Base exception for ledger errors."""

    code: str = "LEDGER_ERROR"


class InvariantViolationError(LedgerError):
    """
    A ledger mutation produced a row that breaks the balance identity
    or drives a total below zero. The write is refused.
    """

    code: str = "LEDGER_INVARIANT_VIOLATION"

    def __init__(self, style_code: str, invariant: str, detail: str):
        self.style_code = style_code
        self.invariant = invariant
        self.detail = detail
        super().__init__(
            f"Ledger invariant '{invariant}' violated for style "
            f"{style_code}: {detail}"
        )


# Persistence


class PersistenceError(ProductionKernelError):
    """
    Underlying storage transaction failed.

    The whole transaction has been rolled back; nothing from the failed
    operation is visible.
    """

    code: str = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Persistence failure during {operation}: {reason}")


# Concurrency


class ConcurrencyError(ProductionKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ReconciliationTimeoutError(ConcurrencyError):
    """
    The caller-supplied timeout expired before the ledger transaction
    committed. The transaction was rolled back.
    """

    code: str = "RECONCILIATION_TIMEOUT"

    def __init__(self, style_code: str, timeout_seconds: float):
        self.style_code = style_code
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Reconciliation for style {style_code} exceeded "
            f"{timeout_seconds}s and was rolled back"
        )


# Immutability


class ImmutabilityViolationError(ProductionKernelError):
    """Attempted to modify or delete a record the kernel treats as append-only."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
