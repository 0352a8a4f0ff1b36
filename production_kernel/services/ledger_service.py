"""
BalanceLedger -- the per-style balance store and its single write path.

Responsibility:
    Reads StyleBalance rows and applies mutations to them atomically.
    ``apply_atomic`` is the ONLY code path that changes a ledger row.

Architecture position:
    Kernel > Services.  Called by ReconciliationEngine; reads are also
    exposed to the ProductionTracker facade.

Invariants enforced:
    BALANCE_IDENTITY    -- current_balance == total_target - total_produced
                           is verified on the mutated row before it is
                           persisted; a violating row is refused.
    NON_NEGATIVE_TOTALS -- totals below zero are refused.
    DELTA_IDEMPOTENCY   -- a delta whose key is already recorded is
                           skipped inside the locked transaction.
    PER_STYLE_SERIALIZATION -- delegated to LedgerRepository.transaction.

Failure modes:
    - InvariantViolationError: the mutation produced an invalid row.
    - ReconciliationTimeoutError: the timeout expired before commit.
    - PersistenceError: storage failed; nothing was written.
"""

from __future__ import annotations

from collections.abc import Callable

from production_kernel.domain.clock import Clock, SystemClock
from production_kernel.domain.values import BalanceDelta, LedgerWrite, StyleBalance
from production_kernel.exceptions import InvariantViolationError
from production_kernel.invariants import KernelInvariant
from production_kernel.logging_config import get_logger
from production_kernel.repositories.base import Deadline, LedgerRepository

logger = get_logger("services.ledger")

Mutation = Callable[[StyleBalance], StyleBalance]


def verify_balance(balance: StyleBalance) -> None:
    """
    Raise InvariantViolationError unless ``balance`` is a valid ledger row.
    """
    if balance.total_target < 0 or balance.total_produced < 0:
        raise InvariantViolationError(
            balance.style_code,
            KernelInvariant.NON_NEGATIVE_TOTALS.value,
            f"total_target={balance.total_target}, "
            f"total_produced={balance.total_produced}",
        )
    expected = balance.total_target - balance.total_produced
    if balance.current_balance != expected:
        raise InvariantViolationError(
            balance.style_code,
            KernelInvariant.BALANCE_IDENTITY.value,
            f"current_balance={balance.current_balance}, expected {expected}",
        )


class BalanceLedger:
    """
    Per-style ledger over a LedgerRepository.

    Contract:
        ``get`` never fails for an unknown style; it returns a zero-valued
        balance that is not persisted.  ``apply_atomic`` runs ``mutation``
        on the locked row and persists the result together with the
        delta's idempotency key, or persists nothing.

    Non-goals:
        - Does NOT compute deltas (ReconciliationEngine does).
        - Does NOT keep history; only the current row exists.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        clock: Clock | None = None,
        default_timeout: float | None = None,
    ):
        self._repository = repository
        self._clock = clock or SystemClock()
        self._default_timeout = default_timeout

    def get(self, style_code: str) -> StyleBalance:
        return self._repository.get(style_code) or StyleBalance.zero(style_code)

    def list_balances(self, style_code: str | None = None) -> list[StyleBalance]:
        return self._repository.list(style_code)

    def apply_atomic(
        self,
        style_code: str,
        mutation: Mutation,
        *,
        delta: BalanceDelta | None = None,
        timeout: float | None = None,
    ) -> LedgerWrite:
        """
        Apply ``mutation`` to the style's row inside one locked transaction.

        Args:
            style_code: Ledger row to mutate (created zero-valued if absent).
            mutation: Pure function from the current row to the new row.
            delta: When given, its (event_id, direction) key gates the write
                and is recorded with it.
            timeout: Seconds for the whole transaction; falls back to the
                ledger's default.

        Returns:
            LedgerWrite with the committed row, or the current row and
            ``skipped=True`` when the delta was already applied.
        """
        deadline = Deadline(timeout if timeout is not None else self._default_timeout)

        with self._repository.transaction(style_code, deadline) as uow:
            if delta is not None and uow.is_applied(delta.key):
                logger.debug(
                    "ledger_write_skipped",
                    extra={"style_code": style_code, "event_id": delta.event_id},
                )
                return LedgerWrite(balance=uow.balance, skipped=True)

            new_balance = mutation(uow.balance)
            if new_balance.style_code != style_code:
                raise InvariantViolationError(
                    style_code,
                    KernelInvariant.BALANCE_IDENTITY.value,
                    f"mutation returned row for {new_balance.style_code}",
                )
            verify_balance(new_balance)
            saved = uow.save(new_balance, delta, self._clock.now())

        logger.debug(
            "ledger_row_written",
            extra={
                "style_code": style_code,
                "version": saved.version,
                "current_balance": saved.current_balance,
            },
        )
        return LedgerWrite(balance=saved)
