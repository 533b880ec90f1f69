"""
Single-Shot Undo Slot

Holds the most recently deleted transaction for a short window.

DESIGN DECISION: Exactly one slot. A new delete replaces whatever was
held, and a successful (or failed) take empties it. Expiry uses a
monotonic clock, so wall-clock jumps cannot extend or cut the window.
"""

import time
from typing import Callable, Optional

from pocketledger.models.ledger import BalanceDelta, DeletedTransaction, Transaction


class UndoSlot:
    """Holds one DeletedTransaction until it expires or is taken."""

    def __init__(
        self,
        window_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self._clock = clock
        self._held: Optional[DeletedTransaction] = None

    def hold(self, transaction: Transaction, deltas: list[BalanceDelta]) -> DeletedTransaction:
        """Replace the slot's content with a fresh snapshot."""
        now = self._clock()
        self._held = DeletedTransaction(
            transaction=transaction,
            deltas=list(deltas),
            deleted_at=now,
            undo_expires_at=now + self.window_seconds,
        )
        return self._held

    def peek(self) -> Optional[DeletedTransaction]:
        """The held snapshot if still within its window."""
        if self._held is None:
            return None
        if self._clock() >= self._held.undo_expires_at:
            self._held = None
            return None
        return self._held

    def take(self) -> Optional[DeletedTransaction]:
        """Empty the slot, returning the snapshot if it was still valid."""
        held = self.peek()
        self._held = None
        return held

    def clear(self) -> None:
        self._held = None

    @property
    def is_available(self) -> bool:
        return self.peek() is not None
