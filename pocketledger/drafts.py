"""
Draft Editing

The user reviews and corrects a scanned draft before anything is written.

CRITICAL: Nothing here touches storage. Confirming only produces a
ConfirmedDraft; the confirmation flow decides what to persist.

Rules:
1. A payment method (account or card) must be selected to confirm
2. The amount must be positive to confirm
3. Once confirmed or cancelled, the editor is closed and cleared
"""

from datetime import date
from typing import Optional, Union
from uuid import UUID

from pydantic import ValidationError

from pocketledger.events.logger import EventLogger
from pocketledger.models.ledger import AccountRef, CardRef, parse_payment_method
from pocketledger.models.receipt import (
    ConfirmedDraft,
    ReceiptDraft,
    ScanResult,
    ScanSource,
)
from pocketledger.validation import (
    DraftValidationError,
    ValidationIssue,
    has_errors,
    validate_draft,
)


EDITABLE_FIELDS = frozenset({"amount", "currency", "category", "description", "date", "items"})


class DraftClosedError(Exception):
    """The draft was already confirmed or cancelled."""
    pass


class DraftEditor:
    """
    Holds one draft between scan and confirmation.

    Usage:
        editor = DraftEditor(scan_result, image_bytes=photo)
        editor.update(amount=Decimal("149.90"), description="Migros")
        editor.select_payment_method("account_<uuid>")
        confirmed = editor.confirm()
    """

    def __init__(
        self,
        scan_result: ScanResult,
        image_bytes: Optional[bytes] = None,
        event_logger: Optional[EventLogger] = None,
        correlation_id: Optional[UUID] = None,
    ):
        self._draft: Optional[ReceiptDraft] = scan_result.draft
        self._image_bytes = image_bytes
        self._payment_method: Optional[Union[AccountRef, CardRef]] = None
        self._closed = False
        self._events = event_logger or EventLogger()
        self._correlation_id = correlation_id
        self.source: ScanSource = scan_result.source
        self.notice: str = scan_result.notice

    @property
    def draft(self) -> Optional[ReceiptDraft]:
        return self._draft

    @property
    def payment_method(self) -> Optional[Union[AccountRef, CardRef]]:
        return self._payment_method

    @property
    def is_open(self) -> bool:
        return not self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise DraftClosedError("Draft was already confirmed or cancelled")

    def _close(self) -> None:
        self._closed = True
        self._draft = None
        self._payment_method = None
        self._image_bytes = None

    def update(self, **fields) -> ReceiptDraft:
        """
        Change draft fields. The whole draft is re-validated.

        Raises:
            DraftClosedError: After confirm/cancel
            DraftValidationError: Unknown field or invalid value
        """
        self._ensure_open()

        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise DraftValidationError([
                ValidationIssue(
                    field=name,
                    issue_type="invalid_value",
                    message=f"Field '{name}' cannot be edited",
                )
                for name in sorted(unknown)
            ])

        data = self._draft.model_dump()
        data.update(fields)
        try:
            self._draft = ReceiptDraft.model_validate(data)
        except ValidationError as e:
            raise DraftValidationError([
                ValidationIssue(
                    field=".".join(str(part) for part in err["loc"]),
                    issue_type="invalid_value",
                    message=err["msg"],
                )
                for err in e.errors()
            ])
        return self._draft

    def select_payment_method(self, method: Union[str, AccountRef, CardRef]) -> Union[AccountRef, CardRef]:
        """
        Choose the account or card that paid.

        Accepts typed references or "account_<id>" / "card_<id>".
        """
        self._ensure_open()
        try:
            self._payment_method = parse_payment_method(method)
        except ValueError as e:
            raise DraftValidationError([
                ValidationIssue(field="payment_method", issue_type="invalid_value", message=str(e))
            ])
        return self._payment_method

    def validate(self, today: Optional[date] = None) -> list[ValidationIssue]:
        """All current issues, warnings included."""
        self._ensure_open()
        return validate_draft(self._draft, self._payment_method, today)

    def confirm(self, today: Optional[date] = None) -> ConfirmedDraft:
        """
        Finish editing.

        A missing date becomes today's date.

        Raises:
            DraftClosedError: After confirm/cancel
            DraftValidationError: No payment method, or amount not positive
        """
        issues = self.validate(today)
        if has_errors(issues):
            raise DraftValidationError(issues)

        draft = self._draft
        if draft.date is None:
            draft = draft.model_copy(update={"date": today or date.today()})

        confirmed = ConfirmedDraft(
            draft=draft,
            payment_method=self._payment_method,
            image_bytes=self._image_bytes,
        )
        self._close()
        self._events.draft_confirmed(confirmed.payment_method, draft.amount, self._correlation_id)
        return confirmed

    def cancel(self) -> None:
        """Discard the draft. Nothing is persisted."""
        self._ensure_open()
        self._close()
        self._events.draft_cancelled(self._correlation_id)
