"""
Data Models Package

All Pydantic models used in Pocket Ledger.
Every piece of data flowing through the system conforms to these schemas.
"""

from pocketledger.models.ledger import (
    CARD_PAYMENT_DEFAULT_CATEGORY,
    Account,
    AccountRef,
    BalanceDelta,
    CardRef,
    CreditCard,
    DeletedTransaction,
    EnrichmentOutcome,
    EnrichmentStatus,
    EntityKind,
    EntityRef,
    PaymentMethod,
    ReceiptItem,
    Transaction,
    TransactionIntent,
    TransactionType,
    UndoResult,
    parse_payment_method,
    utc_now,
)
from pocketledger.models.receipt import (
    ConfirmedDraft,
    DraftSource,
    FallbackFailureReason,
    HeuristicReport,
    ReceiptDraft,
    ReceiptItemDraft,
    ScanProgress,
    ScanResult,
    ScanSource,
    ScanState,
)
from pocketledger.models.events import (
    LedgerEvent,
    LedgerEventSeverity,
    LedgerEventType,
)

__all__ = [
    # Ledger models
    "CARD_PAYMENT_DEFAULT_CATEGORY",
    "Account",
    "AccountRef",
    "BalanceDelta",
    "CardRef",
    "CreditCard",
    "DeletedTransaction",
    "EnrichmentOutcome",
    "EnrichmentStatus",
    "EntityKind",
    "EntityRef",
    "PaymentMethod",
    "ReceiptItem",
    "Transaction",
    "TransactionIntent",
    "TransactionType",
    "UndoResult",
    "parse_payment_method",
    "utc_now",
    # Receipt models
    "ConfirmedDraft",
    "DraftSource",
    "FallbackFailureReason",
    "HeuristicReport",
    "ReceiptDraft",
    "ReceiptItemDraft",
    "ScanProgress",
    "ScanResult",
    "ScanSource",
    "ScanState",
    # Event models
    "LedgerEvent",
    "LedgerEventSeverity",
    "LedgerEventType",
]
