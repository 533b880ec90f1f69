"""
Receipt Scanning Models for Pocket Ledger

CRITICAL: A ReceiptDraft is PROPOSED data, NOT verified.
It lives only for one scan -> edit -> confirm cycle and is never
persisted on its own. Only the transaction created on confirmation is.
"""

from datetime import date as date_type
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from pocketledger.models.ledger import AccountRef, CardRef


# =============================================================================
# ENUMS
# =============================================================================

class DraftSource(str, Enum):
    """Which recognizer produced a draft."""
    LOCAL = "local"    # Tesseract, free
    REMOTE = "remote"  # Vision AI, paid


class ScanSource(str, Enum):
    """
    Where the final draft came from. Used ONLY for user-facing messaging.

    LOCAL_DEGRADED means the local result was doubtful, the AI fallback
    failed, and the local result was used anyway.
    """
    LOCAL = "local"
    REMOTE = "remote"
    LOCAL_DEGRADED = "local-degraded"


class ScanState(str, Enum):
    """States of one receipt scan."""
    IDLE = "idle"
    RUNNING_LOCAL_OCR = "running_local_ocr"
    EVALUATING = "evaluating"
    ACCEPTED_LOCAL = "accepted_local"
    RUNNING_REMOTE_FALLBACK = "running_remote_fallback"
    ACCEPTED_REMOTE = "accepted_remote"
    ACCEPTED_LOCAL_DEGRADED = "accepted_local_degraded"
    READY = "ready"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FallbackFailureReason(str, Enum):
    """Why the remote vision fallback did not produce a draft."""
    QUOTA_EXCEEDED = "quota_exceeded"
    PAYMENT_REQUIRED = "payment_required"
    OTHER = "other"


# =============================================================================
# DRAFT
# =============================================================================

class ReceiptItemDraft(BaseModel):
    """One line item as recognized on the receipt."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    quantity: int = Field(default=1, ge=1, le=99)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    total_price: Decimal = Field(..., ge=0)
    category: Optional[str] = None
    brand: Optional[str] = None


class ReceiptDraft(BaseModel):
    """
    Structured result of a receipt scan.

    amount may be zero when the recognizer found no total; the heuristics
    and the draft editor both refuse to go further with it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    currency: str = Field(default="TRY", min_length=3, max_length=3)
    category: str = Field(default="Diğer", max_length=100)
    description: str = Field(default="", max_length=500)
    date: Optional[date_type] = None
    confidence: int = Field(default=0, ge=0, le=100)
    items: list[ReceiptItemDraft] = Field(default_factory=list)
    source: DraftSource = DraftSource.LOCAL

    @property
    def items_total(self) -> Decimal:
        return sum((item.total_price for item in self.items), Decimal("0"))


class HeuristicReport(BaseModel):
    """
    Component scores behind the accept-local decision.

    Kept for diagnostics and logging; only can_use_local_result drives
    behavior.
    """
    model_config = ConfigDict(frozen=True)

    confidence: int
    items_with_text_ratio: float = Field(ge=0.0, le=1.0)
    line_item_sum_deviation: float = Field(ge=0.0)
    description_is_plausible: bool
    amount_is_suspiciously_large: bool
    items_look_usable: bool
    can_use_local_result: bool

    def to_log_dict(self) -> dict:
        return self.model_dump()


class ScanProgress(BaseModel):
    """Progress published while the local recognizer runs."""

    percent: int = Field(ge=0, le=100)
    status: str = ""


class ScanResult(BaseModel):
    """
    Terminal output of one scan: exactly one draft plus its source tag.
    """

    draft: ReceiptDraft
    source: ScanSource
    report: HeuristicReport
    fallback_failure: Optional[FallbackFailureReason] = None

    @property
    def notice(self) -> str:
        """Informational message for the user."""
        if self.source == ScanSource.REMOTE:
            return "Receipt scanned (AI)"
        if self.source == ScanSource.LOCAL_DEGRADED:
            return "Receipt scanned (used free OCR)"
        return "Receipt scanned (free OCR)"


class ConfirmedDraft(BaseModel):
    """A draft the user confirmed, with the chosen payment method."""

    draft: ReceiptDraft
    payment_method: AccountRef | CardRef = Field(discriminator="kind")
    image_bytes: Optional[bytes] = None
