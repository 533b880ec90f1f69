"""
Two-Stage Validation

DESIGN DECISION: Validation happens before ANY persistence, in two stages:

STAGE 1 - DRAFT VALIDATION (no storage needed):
- A payment method was selected
- The amount is positive, in whole kuruş
- Missing merchant/date are reported as warnings only

STAGE 2 - LEDGER VALIDATION (needs storage):
- Every referenced account/card exists
- They belong to the transaction's user
- Currency mismatches are reported (no conversion happens)

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; errors block the operation, warnings don't.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError

from pocketledger.models.ledger import (
    AccountRef,
    CardRef,
    TransactionIntent,
    TransactionType,
)
from pocketledger.models.receipt import ReceiptDraft
from pocketledger.services.storage import LedgerStore


CENT = Decimal("0.01")


class ValidationIssue(BaseModel):
    """A single validation finding."""

    field: str
    issue_type: str = Field(description="missing, invalid_value, not_found, mismatch, suspicious")
    message: str
    severity: str = Field(default="error", description="error or warning")
    suggested_fix: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.severity == "error"


class DraftValidationError(Exception):
    """The draft cannot be confirmed."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        super().__init__("; ".join(issue.message for issue in issues if issue.is_error))


class TransactionValidationError(Exception):
    """The transaction intent is not acceptable to the ledger."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        super().__init__("; ".join(issue.message for issue in issues if issue.is_error))

    @classmethod
    def from_pydantic(cls, error: ValidationError) -> "TransactionValidationError":
        """Wrap a model validation failure raised while building an intent."""
        issues = [
            ValidationIssue(
                field=".".join(str(part) for part in err.get("loc", ())) or "transaction",
                issue_type="invalid_value",
                message=err.get("msg", "Invalid value"),
            )
            for err in error.errors()
        ]
        return cls(issues)


def validate_draft(
    draft: ReceiptDraft,
    payment_method: Optional[Union[AccountRef, CardRef]],
    today: Optional[date] = None,
) -> list[ValidationIssue]:
    """
    Stage 1: check a draft before it is confirmed.

    Returns all issues; callers decide with has_errors().
    """
    today = today or date.today()
    issues = []

    if payment_method is None:
        issues.append(ValidationIssue(
            field="payment_method",
            issue_type="missing",
            message="Select an account or card before confirming",
            suggested_fix="Choose where the money was paid from",
        ))

    if draft.amount <= 0:
        issues.append(ValidationIssue(
            field="amount",
            issue_type="invalid_value",
            message="Amount must be greater than zero",
            suggested_fix="Enter the receipt total",
        ))
    elif draft.amount != draft.amount.quantize(CENT):
        issues.append(ValidationIssue(
            field="amount",
            issue_type="invalid_value",
            message=f"Amount {draft.amount} has more than two decimal places",
            suggested_fix="Round the total to whole kuruş",
        ))

    if not draft.description.strip():
        issues.append(ValidationIssue(
            field="description",
            issue_type="missing",
            message="No merchant name was found",
            severity="warning",
        ))

    if draft.date is None:
        issues.append(ValidationIssue(
            field="date",
            issue_type="missing",
            message="No receipt date was found; today's date will be used",
            severity="warning",
        ))
    elif draft.date > today + timedelta(days=1):
        issues.append(ValidationIssue(
            field="date",
            issue_type="suspicious",
            message=f"Receipt date {draft.date.isoformat()} is in the future",
            severity="warning",
            suggested_fix="Check that the day and month were not swapped",
        ))

    return issues


def has_errors(issues: list[ValidationIssue]) -> bool:
    return any(issue.is_error for issue in issues)


class LedgerValidator:
    """
    Stage 2: check an intent against stored accounts and cards.
    """

    def __init__(self, store: LedgerStore):
        self._store = store

    async def _check_entity(
        self,
        field: str,
        kind: str,
        entity_id: UUID,
        intent: TransactionIntent,
    ) -> list[ValidationIssue]:
        if kind == "account":
            entity = await self._store.get_account(entity_id)
        else:
            entity = await self._store.get_card(entity_id)

        if entity is None:
            return [ValidationIssue(
                field=field,
                issue_type="not_found",
                message=f"{kind.capitalize()} {entity_id} does not exist",
            )]

        issues = []
        if entity.user_id != intent.user_id:
            issues.append(ValidationIssue(
                field=field,
                issue_type="mismatch",
                message=f"{kind.capitalize()} {entity_id} belongs to another user",
            ))
        if entity.currency != intent.currency:
            issues.append(ValidationIssue(
                field="currency",
                issue_type="mismatch",
                message=(
                    f"Transaction is in {intent.currency} but {kind} {entity_id} "
                    f"is in {entity.currency}; no conversion is applied"
                ),
                severity="warning",
            ))
        return issues

    async def validate(self, intent: TransactionIntent) -> list[ValidationIssue]:
        issues = []
        if intent.account_id is not None:
            issues.extend(await self._check_entity("account_id", "account", intent.account_id, intent))
        if intent.card_id is not None:
            issues.extend(await self._check_entity("card_id", "card", intent.card_id, intent))

        if (
            intent.type != TransactionType.CARD_PAYMENT
            and intent.account_id is None
            and intent.card_id is None
        ):
            issues.append(ValidationIssue(
                field="payment_method",
                issue_type="missing",
                message="Income and expense transactions must belong to an account or a card",
            ))
        return issues

    async def check(self, intent: TransactionIntent) -> list[ValidationIssue]:
        """
        Validate and raise on errors.

        Returns:
            Warnings, if any

        Raises:
            TransactionValidationError: If any error-level issue was found
        """
        issues = await self.validate(intent)
        if has_errors(issues):
            raise TransactionValidationError(issues)
        return issues
