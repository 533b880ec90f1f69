"""
Ledger Data Models for Pocket Ledger

Accounts, credit cards, transactions and the balance deltas that link them.

DESIGN DECISION: A balance is NEVER recomputed from a transaction after the
fact. Every mutation records the exact delta it applied, and reversals use
that record. This keeps edits, deletes and undos exact even when the
sign rules would give a different answer against today's balance (e.g. a
card payment that was floored at zero).

All money is Decimal. Floats never touch a balance.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


CARD_PAYMENT_DEFAULT_CATEGORY = "Kredi Kartı Ödemesi"


def utc_now() -> datetime:
    """Current UTC time, naive, as stored in the ledger database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMS
# =============================================================================

class TransactionType(str, Enum):
    """Kinds of transaction the ledger understands."""
    INCOME = "income"
    EXPENSE = "expense"
    CARD_PAYMENT = "card_payment"  # Pays down a card, optionally from an account


class EntityKind(str, Enum):
    """Entities that carry a balance."""
    ACCOUNT = "account"
    CARD = "card"


class EnrichmentStatus(str, Enum):
    """Outcome of a best-effort step (image upload, line items)."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


# =============================================================================
# ENTITY REFERENCES (payment method)
# =============================================================================

class AccountRef(BaseModel):
    """Reference to a deposit account."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["account"] = "account"
    id: UUID

    def __str__(self) -> str:
        return f"account_{self.id}"


class CardRef(BaseModel):
    """Reference to a credit card."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["card"] = "card"
    id: UUID

    def __str__(self) -> str:
        return f"card_{self.id}"


EntityRef = Annotated[Union[AccountRef, CardRef], Field(discriminator="kind")]

# A payment method is simply the entity that pays
PaymentMethod = EntityRef


def parse_payment_method(value: Union[str, AccountRef, CardRef]) -> Union[AccountRef, CardRef]:
    """
    Parse a payment method selection.

    Accepts an already-typed reference or the prefixed form used by
    selection widgets: "account_<uuid>" / "card_<uuid>".

    Raises:
        ValueError: If the value is empty, unprefixed or not a UUID
    """
    if isinstance(value, (AccountRef, CardRef)):
        return value
    if not value:
        raise ValueError("Payment method is empty")

    for prefix, ref_type in (("account_", AccountRef), ("card_", CardRef)):
        if value.startswith(prefix):
            raw_id = value[len(prefix):]
            try:
                return ref_type(id=UUID(raw_id))
            except ValueError:
                raise ValueError(f"Invalid {prefix[:-1]} id in payment method: {raw_id!r}")

    raise ValueError(f"Unknown payment method: {value!r}")


# =============================================================================
# BALANCE-CARRYING ENTITIES
# =============================================================================

class Account(BaseModel):
    """
    Deposit account.

    Balance may go negative down to the overdraft limit. Only the ledger
    engine changes it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    currency: str = Field(default="TRY", min_length=3, max_length=3)
    balance: Decimal = Field(default=Decimal("0.00"), decimal_places=2)
    overdraft_limit: Decimal = Field(default=Decimal("0.00"), ge=0)
    overdraft_interest_rate: Decimal = Field(default=Decimal("0.00"), ge=0)

    @property
    def ref(self) -> AccountRef:
        return AccountRef(id=self.id)


class CreditCard(BaseModel):
    """
    Credit card. Balance is outstanding debt.

    minimum_payment is reset to zero by the ledger engine when a card
    payment clears the debt; otherwise it belongs to the statement job.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    currency: str = Field(default="TRY", min_length=3, max_length=3)
    balance: Decimal = Field(default=Decimal("0.00"), decimal_places=2)
    limit: Decimal = Field(default=Decimal("0.00"), ge=0)
    minimum_payment: Decimal = Field(default=Decimal("0.00"), ge=0)
    due_day: int = Field(default=1, ge=1, le=31)

    @property
    def ref(self) -> CardRef:
        return CardRef(id=self.id)


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionIntent(BaseModel):
    """
    What the user wants a transaction to be.

    For income/expense, at most one of account_id / card_id is set.
    For card_payment, card_id is the card being paid (required) and
    account_id the optional funding account.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: UUID
    type: TransactionType
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    currency: str = Field(default="TRY", min_length=3, max_length=3)
    category: str = Field(default="", max_length=100)
    description: str = Field(default="", max_length=500)
    date: date
    account_id: Optional[UUID] = None
    card_id: Optional[UUID] = None
    receipt_image_url: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def validate_entities(self) -> "TransactionIntent":
        """Enforce the owning-entity rules per transaction type."""
        if self.type == TransactionType.CARD_PAYMENT:
            if self.card_id is None:
                raise ValueError("Card payment requires the card being paid")
            if not self.category:
                self.category = CARD_PAYMENT_DEFAULT_CATEGORY
        elif self.account_id is not None and self.card_id is not None:
            raise ValueError("A transaction belongs to an account or a card, not both")
        return self

    @classmethod
    def for_payment_method(
        cls,
        method: Union[AccountRef, CardRef],
        **fields,
    ) -> "TransactionIntent":
        """Build an income/expense intent owned by the given payment method."""
        if isinstance(method, AccountRef):
            return cls(account_id=method.id, card_id=None, **fields)
        return cls(account_id=None, card_id=method.id, **fields)


class Transaction(TransactionIntent):
    """A persisted transaction."""

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_intent(
        cls,
        intent: TransactionIntent,
        transaction_id: Optional[UUID] = None,
        created_at: Optional[datetime] = None,
    ) -> "Transaction":
        data = intent.model_dump()
        if transaction_id is not None:
            data["id"] = transaction_id
        if created_at is not None:
            data["created_at"] = created_at
        return cls(**data)

    def to_intent(self) -> TransactionIntent:
        return TransactionIntent(
            **self.model_dump(exclude={"id", "created_at", "updated_at"})
        )


class BalanceDelta(BaseModel):
    """
    The signed amount one transaction mutation applied to one entity.

    previous_minimum_payment is set only when a card payment brought the
    card to zero and forced its minimum payment to zero; reversing the
    delta restores that value.
    """
    model_config = ConfigDict(frozen=True)

    entity: EntityRef
    amount: Decimal
    previous_minimum_payment: Optional[Decimal] = None

    @property
    def reset_minimum_payment(self) -> bool:
        return self.previous_minimum_payment is not None


# =============================================================================
# RECEIPT LINE ITEMS
# =============================================================================

class ReceiptItem(BaseModel):
    """
    One line of a receipt attached to a transaction.

    Line items are enrichment: they never change a balance.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    transaction_id: Optional[UUID] = None
    name: str = Field(..., min_length=1, max_length=100)
    quantity: int = Field(default=1, ge=1)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    total_price: Decimal = Field(..., ge=0)
    category: Optional[str] = None
    brand: Optional[str] = None
    transaction_date: Optional[date] = None


# =============================================================================
# OPERATION RESULTS
# =============================================================================

class DeletedTransaction(BaseModel):
    """
    Snapshot kept after a delete so the delete can be undone.

    deltas are the ORIGINAL deltas of the transaction, i.e. what undo
    must apply again.
    """

    transaction: Transaction
    deltas: list[BalanceDelta] = Field(default_factory=list)
    deleted_at: float = Field(..., description="Monotonic clock reading")
    undo_expires_at: float = Field(..., description="Monotonic clock reading")


class UndoResult(BaseModel):
    """Result of an undo request. Not restoring is not an error."""

    restored: bool
    transaction: Optional[Transaction] = None
    reason: Optional[str] = None


class EnrichmentOutcome(BaseModel):
    """Typed result of a best-effort step."""

    step: str
    status: EnrichmentStatus
    count: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == EnrichmentStatus.SUCCEEDED

    @classmethod
    def skipped(cls, step: str) -> "EnrichmentOutcome":
        return cls(step=step, status=EnrichmentStatus.SKIPPED)

    @classmethod
    def failed(cls, step: str, error: Exception) -> "EnrichmentOutcome":
        return cls(step=step, status=EnrichmentStatus.FAILED, error=str(error))
