"""
Ledger Reconciliation Engine

Keeps account and card balances consistent with the transactions that
reference them.

DESIGN DECISION: Every mutation is recorded as the exact deltas it applied.
1. create applies the planned deltas, then stores them with the transaction
2. edit reverses the RECORDED deltas, then applies the new intent's deltas
   against the balances as they are now (never one collapsed net delta)
3. delete reverses the recorded deltas and keeps a snapshot for undo
4. undo puts the record back under its original id and re-applies the
   original deltas as recorded

CRITICAL: There is no transaction spanning the balance updates and the
record write. If the store fails after a balance moved, the engine raises
LedgerInconsistencyError listing what moved and does NOT try to roll back.
"""

import time
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

from pocketledger.events.logger import EventLogger
from pocketledger.ledger.errors import LedgerInconsistencyError
from pocketledger.ledger.sign_rules import PlannedDelta, derive_deltas, inverse, plan_deltas
from pocketledger.ledger.undo import UndoSlot
from pocketledger.models.ledger import (
    BalanceDelta,
    CardRef,
    DeletedTransaction,
    Transaction,
    TransactionIntent,
    UndoResult,
)
from pocketledger.services.storage import (
    DuplicateError,
    LedgerStore,
    NotFoundError,
    StorageError,
)
from pocketledger.validation import LedgerValidator


NOTHING_TO_UNDO = "nothing to undo"


class LedgerEngine:
    """
    Create, edit, delete and undo transactions with balance bookkeeping.

    One engine per user session: the undo slot is per instance.
    """

    def __init__(
        self,
        store: LedgerStore,
        undo_window_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        event_logger: Optional[EventLogger] = None,
        validator: Optional[LedgerValidator] = None,
    ):
        self._store = store
        self._undo = UndoSlot(undo_window_seconds, clock)
        self._events = event_logger or EventLogger()
        self._validator = validator or LedgerValidator(store)

    @property
    def pending_undo(self) -> Optional[DeletedTransaction]:
        """The deleted transaction that undo() would restore, if any."""
        return self._undo.peek()

    # -------------------------------------------------------------------------
    # Delta primitives
    # -------------------------------------------------------------------------

    async def _apply(
        self,
        transaction_id: UUID,
        planned: PlannedDelta,
        correlation_id: Optional[UUID],
    ) -> BalanceDelta:
        """Apply one planned delta and return what actually changed."""
        if planned.floored:
            delta = await self._store.apply_card_payment(planned.entity.id, -planned.amount)
        else:
            await self._store.apply_delta(planned.entity, planned.amount)
            delta = BalanceDelta(entity=planned.entity, amount=planned.amount)
        self._events.delta_applied(transaction_id, delta, correlation_id)
        return delta

    async def _reverse(
        self,
        transaction_id: UUID,
        delta: BalanceDelta,
        correlation_id: Optional[UUID],
    ) -> BalanceDelta:
        """Cancel a recorded delta, restoring a reset minimum payment."""
        reversal = inverse(delta)
        await self._store.apply_delta(reversal.entity, reversal.amount)
        if delta.reset_minimum_payment and isinstance(delta.entity, CardRef):
            await self._store.restore_minimum_payment(
                delta.entity.id, delta.previous_minimum_payment
            )
        self._events.delta_reversed(transaction_id, delta, correlation_id)
        return reversal

    async def _reapply(
        self,
        transaction_id: UUID,
        delta: BalanceDelta,
        correlation_id: Optional[UUID],
    ) -> BalanceDelta:
        """Apply a recorded delta again, exactly as recorded."""
        await self._store.apply_delta(delta.entity, delta.amount)
        if delta.reset_minimum_payment and isinstance(delta.entity, CardRef):
            await self._store.restore_minimum_payment(delta.entity.id, Decimal("0.00"))
        self._events.delta_applied(transaction_id, delta, correlation_id)
        return delta

    async def _recorded_deltas(self, transaction: Transaction) -> list[BalanceDelta]:
        deltas = await self._store.get_deltas(transaction.id)
        return deltas or derive_deltas(transaction)

    def _inconsistent(
        self,
        operation: str,
        transaction_id: UUID,
        moved: list[BalanceDelta],
        error: Exception,
        correlation_id: Optional[UUID],
    ) -> LedgerInconsistencyError:
        self._events.ledger_inconsistent(operation, transaction_id, moved, str(error), correlation_id)
        return LedgerInconsistencyError(operation, transaction_id, moved, error)

    async def _load(self, transaction_id: UUID) -> Transaction:
        current = await self._store.get_transaction(transaction_id)
        if current is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return current

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def validate(self, intent: TransactionIntent) -> None:
        """
        Run the checks create() runs, without writing anything.

        Raises:
            TransactionValidationError: If create() would reject the intent
        """
        await self._validator.check(intent)

    async def create(
        self,
        intent: TransactionIntent,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Create a transaction and apply its balance deltas.

        Raises:
            TransactionValidationError: Before anything is written
            StorageError: If the store failed before any balance moved
            LedgerInconsistencyError: If it failed after one did
        """
        await self._validator.check(intent)
        transaction = Transaction.from_intent(intent)

        applied: list[BalanceDelta] = []
        try:
            for planned in plan_deltas(intent):
                applied.append(await self._apply(transaction.id, planned, correlation_id))
            await self._store.insert_transaction(transaction, applied)
        except StorageError as e:
            if not applied:
                raise
            raise self._inconsistent("create", transaction.id, applied, e, correlation_id)

        self._events.transaction_created(transaction, correlation_id)
        return transaction

    async def edit(
        self,
        old: Transaction,
        new_intent: TransactionIntent,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Replace a transaction's content, keeping its id.

        The old deltas are fully reversed before the new balances are read,
        so the card-payment floor is evaluated against the balance as if
        the old transaction had never happened.

        Raises:
            NotFoundError: If the transaction no longer exists
            TransactionValidationError: Before anything is written
            LedgerInconsistencyError: If the store failed midway
        """
        await self._validator.check(new_intent)
        current = await self._load(old.id)
        old_deltas = await self._recorded_deltas(current)

        moved: list[BalanceDelta] = []
        new_deltas: list[BalanceDelta] = []
        try:
            for delta in old_deltas:
                moved.append(await self._reverse(current.id, delta, correlation_id))
            for planned in plan_deltas(new_intent):
                delta = await self._apply(current.id, planned, correlation_id)
                new_deltas.append(delta)
                moved.append(delta)

            updated = Transaction.from_intent(
                new_intent,
                transaction_id=current.id,
                created_at=current.created_at,
            )
            updated = await self._store.update_transaction(updated, new_deltas)
        except StorageError as e:
            if not moved:
                raise
            raise self._inconsistent("edit", current.id, moved, e, correlation_id)

        self._events.transaction_updated(updated, correlation_id)
        return updated

    async def delete(
        self,
        transaction: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> DeletedTransaction:
        """
        Delete a transaction, reverse its deltas and arm the undo slot.

        A previous undo snapshot, if any, is discarded.

        Raises:
            NotFoundError: If the transaction no longer exists
            LedgerInconsistencyError: If the store failed midway
        """
        current = await self._load(transaction.id)
        deltas = await self._recorded_deltas(current)

        moved: list[BalanceDelta] = []
        try:
            for delta in deltas:
                moved.append(await self._reverse(current.id, delta, correlation_id))
            await self._store.delete_transaction(current.id)
        except StorageError as e:
            if not moved:
                raise
            raise self._inconsistent("delete", current.id, moved, e, correlation_id)

        snapshot = self._undo.hold(current, deltas)
        self._events.transaction_deleted(current, correlation_id)
        return snapshot

    async def undo(self, correlation_id: Optional[UUID] = None) -> UndoResult:
        """
        Restore the last deleted transaction if still within the window.

        The original deltas are applied again as recorded, whatever the
        balances did in the meantime. The slot is consumed either way.

        Raises:
            LedgerInconsistencyError: If the store failed midway
        """
        snapshot = self._undo.take()
        if snapshot is None:
            self._events.undo_unavailable(NOTHING_TO_UNDO)
            return UndoResult(restored=False, reason=NOTHING_TO_UNDO)

        transaction = snapshot.transaction
        if await self._store.get_transaction(transaction.id) is not None:
            reason = "transaction already exists"
            self._events.undo_unavailable(reason)
            return UndoResult(restored=False, reason=reason)

        applied: list[BalanceDelta] = []
        try:
            for delta in snapshot.deltas:
                applied.append(await self._reapply(transaction.id, delta, correlation_id))
            await self._store.insert_transaction(transaction, snapshot.deltas)
        except DuplicateError as e:
            if not applied:
                return UndoResult(restored=False, reason=str(e))
            raise self._inconsistent("undo", transaction.id, applied, e, correlation_id)
        except StorageError as e:
            if not applied:
                raise
            raise self._inconsistent("undo", transaction.id, applied, e, correlation_id)

        self._events.transaction_restored(transaction, correlation_id)
        return UndoResult(restored=True, transaction=transaction)
