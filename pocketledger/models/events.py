"""
Ledger Event Models for Pocket Ledger

Every significant step of scanning and reconciliation is logged as a
structured event. Events are written to the structured log only; there is
no separate audit store.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from pocketledger.models.ledger import utc_now


class LedgerEventType(str, Enum):
    """Types of events we log."""
    # Scanning
    SCAN_STARTED = "scan_started"
    SCAN_ACCEPTED_LOCAL = "scan_accepted_local"
    SCAN_FALLBACK_STARTED = "scan_fallback_started"
    SCAN_ACCEPTED_REMOTE = "scan_accepted_remote"
    SCAN_DEGRADED = "scan_degraded"
    SCAN_FAILED = "scan_failed"
    SCAN_CANCELLED = "scan_cancelled"

    # Draft editing
    DRAFT_CONFIRMED = "draft_confirmed"
    DRAFT_CANCELLED = "draft_cancelled"

    # Ledger
    DELTA_APPLIED = "delta_applied"
    DELTA_REVERSED = "delta_reversed"
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSACTION_RESTORED = "transaction_restored"
    UNDO_UNAVAILABLE = "undo_unavailable"
    LEDGER_INCONSISTENT = "ledger_inconsistent"

    # Enrichment
    ENRICHMENT_FAILED = "enrichment_failed"


class LedgerEventSeverity(str, Enum):
    """Severity level for events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class LedgerEvent(BaseModel):
    """A single structured log event."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=utc_now)
    event_type: LedgerEventType
    severity: LedgerEventSeverity = LedgerEventSeverity.INFO
    entity_type: Optional[str] = None
    entity_id: Optional[UUID] = None
    correlation_id: Optional[UUID] = None
    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": _jsonable(self.details),
            "error_message": self.error_message,
        }


def _jsonable(value: Any) -> Any:
    """Render Decimals, UUIDs and enums so the JSON renderer accepts them."""
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    return value
