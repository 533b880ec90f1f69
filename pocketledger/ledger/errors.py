"""Ledger engine errors."""

from uuid import UUID

from pocketledger.models.ledger import BalanceDelta


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class LedgerInconsistencyError(LedgerError):
    """
    Balances were changed but the operation did not finish.

    CRITICAL: There is no automatic rollback. applied_deltas lists exactly
    what reached the store, so the balances can be verified and fixed.
    """

    def __init__(
        self,
        operation: str,
        transaction_id: UUID,
        applied_deltas: list[BalanceDelta],
        cause: Exception,
    ):
        self.operation = operation
        self.transaction_id = transaction_id
        self.applied_deltas = list(applied_deltas)
        self.cause = cause
        touched = ", ".join(f"{delta.entity} {delta.amount:+}" for delta in applied_deltas)
        super().__init__(
            f"{operation.capitalize()} of transaction {transaction_id} failed after "
            f"balances were changed ({touched}). Please verify these balances. "
            f"Cause: {cause}"
        )
