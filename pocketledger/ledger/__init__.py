"""Ledger reconciliation package."""

from pocketledger.ledger.engine import NOTHING_TO_UNDO, LedgerEngine
from pocketledger.ledger.errors import LedgerError, LedgerInconsistencyError
from pocketledger.ledger.items import (
    BACKFILL_DEFAULT_CATEGORY,
    RECEIPT_ITEMS_STEP,
    RESCAN_MIN_CONFIDENCE,
    ItemReconciler,
)
from pocketledger.ledger.sign_rules import (
    PlannedDelta,
    derive_deltas,
    inverse,
    plan_deltas,
    sign_for,
)
from pocketledger.ledger.undo import UndoSlot

__all__ = [
    "BACKFILL_DEFAULT_CATEGORY",
    "ItemReconciler",
    "LedgerEngine",
    "LedgerError",
    "LedgerInconsistencyError",
    "NOTHING_TO_UNDO",
    "PlannedDelta",
    "RECEIPT_ITEMS_STEP",
    "RESCAN_MIN_CONFIDENCE",
    "UndoSlot",
    "derive_deltas",
    "inverse",
    "plan_deltas",
    "sign_for",
]
