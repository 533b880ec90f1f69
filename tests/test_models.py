"""
Tests for Pocket Ledger

Test strategy:
1. Unit tests for individual components (models, rules, parsers)
2. Integration tests for flows (SQLite store, fake recognizers)
3. No real API calls in tests (use fakes)
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError

from pocketledger.models import (
    AccountRef,
    BalanceDelta,
    CardRef,
    ConfirmedDraft,
    EnrichmentOutcome,
    EnrichmentStatus,
    HeuristicReport,
    LedgerEvent,
    LedgerEventSeverity,
    LedgerEventType,
    ReceiptDraft,
    ReceiptItemDraft,
    ScanResult,
    ScanSource,
    Transaction,
    TransactionIntent,
    TransactionType,
    parse_payment_method,
    utc_now,
)
from pocketledger.models.ledger import CARD_PAYMENT_DEFAULT_CATEGORY


def _report(can_use_local: bool = True) -> HeuristicReport:
    return HeuristicReport(
        confidence=80,
        items_with_text_ratio=1.0,
        line_item_sum_deviation=0.0,
        description_is_plausible=True,
        amount_is_suspiciously_large=False,
        items_look_usable=True,
        can_use_local_result=can_use_local,
    )


class TestPaymentMethod:
    """Tests for payment method parsing."""

    def test_parses_account_prefix(self):
        """Test "account_<uuid>" becomes an AccountRef."""
        account_id = uuid4()
        ref = parse_payment_method(f"account_{account_id}")
        assert ref == AccountRef(id=account_id)
        assert ref.kind == "account"

    def test_parses_card_prefix(self):
        """Test "card_<uuid>" becomes a CardRef."""
        card_id = uuid4()
        ref = parse_payment_method(f"card_{card_id}")
        assert isinstance(ref, CardRef)
        assert ref.id == card_id

    def test_typed_reference_passes_through(self):
        """Test an existing reference is returned unchanged."""
        ref = CardRef(id=uuid4())
        assert parse_payment_method(ref) is ref

    def test_round_trips_through_str(self):
        """Test str(ref) is the form the parser accepts."""
        ref = AccountRef(id=uuid4())
        assert parse_payment_method(str(ref)) == ref

    @pytest.mark.parametrize("value", ["", "wallet_123", "account_not-a-uuid", "card_"])
    def test_rejects_invalid_values(self, value):
        """Test empty, unknown and malformed selections are rejected."""
        with pytest.raises(ValueError):
            parse_payment_method(value)


class TestTransactionIntent:
    """Tests for the transaction intent rules."""

    def test_expense_on_account(self):
        """Test a plain account expense."""
        intent = TransactionIntent(
            user_id=uuid4(),
            type=TransactionType.EXPENSE,
            amount=Decimal("150.00"),
            currency="try",
            date=date(2024, 3, 5),
            account_id=uuid4(),
        )
        assert intent.currency == "TRY"
        assert intent.card_id is None

    def test_amount_must_be_positive(self):
        """Test zero and negative amounts are rejected."""
        for amount in (Decimal("0"), Decimal("-5.00")):
            with pytest.raises(ValidationError):
                TransactionIntent(
                    user_id=uuid4(),
                    type=TransactionType.EXPENSE,
                    amount=amount,
                    date=date(2024, 3, 5),
                    account_id=uuid4(),
                )

    def test_expense_cannot_have_both_entities(self):
        """Test income/expense belongs to an account or a card, not both."""
        with pytest.raises(ValidationError, match="not both"):
            TransactionIntent(
                user_id=uuid4(),
                type=TransactionType.EXPENSE,
                amount=Decimal("10.00"),
                date=date(2024, 3, 5),
                account_id=uuid4(),
                card_id=uuid4(),
            )

    def test_card_payment_requires_card(self):
        """Test a card payment without a card is rejected."""
        with pytest.raises(ValidationError, match="card being paid"):
            TransactionIntent(
                user_id=uuid4(),
                type=TransactionType.CARD_PAYMENT,
                amount=Decimal("100.00"),
                date=date(2024, 3, 5),
                account_id=uuid4(),
            )

    def test_card_payment_default_category(self):
        """Test a card payment without category gets the default one."""
        intent = TransactionIntent(
            user_id=uuid4(),
            type=TransactionType.CARD_PAYMENT,
            amount=Decimal("100.00"),
            date=date(2024, 3, 5),
            card_id=uuid4(),
            account_id=uuid4(),
        )
        assert intent.category == CARD_PAYMENT_DEFAULT_CATEGORY

    def test_card_payment_keeps_explicit_category(self):
        """Test an explicit category is not overwritten."""
        intent = TransactionIntent(
            user_id=uuid4(),
            type=TransactionType.CARD_PAYMENT,
            amount=Decimal("100.00"),
            category="Borç",
            date=date(2024, 3, 5),
            card_id=uuid4(),
        )
        assert intent.category == "Borç"

    def test_for_payment_method_card(self):
        """Test building an intent from a card selection."""
        card_id = uuid4()
        intent = TransactionIntent.for_payment_method(
            CardRef(id=card_id),
            user_id=uuid4(),
            type=TransactionType.EXPENSE,
            amount=Decimal("42.50"),
            date=date(2024, 3, 5),
        )
        assert intent.card_id == card_id
        assert intent.account_id is None

    def test_transaction_round_trip_keeps_content(self):
        """Test Transaction.from_intent / to_intent keep the same fields."""
        intent = TransactionIntent(
            user_id=uuid4(),
            type=TransactionType.INCOME,
            amount=Decimal("2500.00"),
            description="Maaş",
            date=date(2024, 3, 1),
            account_id=uuid4(),
        )
        transaction_id = uuid4()
        txn = Transaction.from_intent(intent, transaction_id=transaction_id)
        assert txn.id == transaction_id
        assert txn.to_intent() == intent

    def test_timestamps_are_naive_utc(self):
        """Test created_at is UTC without tzinfo, as the database stores it."""
        before = datetime.now(timezone.utc).replace(tzinfo=None)
        txn = Transaction.from_intent(TransactionIntent(
            user_id=uuid4(),
            type=TransactionType.EXPENSE,
            amount=Decimal("10.00"),
            date=date(2024, 3, 1),
            account_id=uuid4(),
        ))
        assert txn.created_at.tzinfo is None
        assert before <= txn.created_at <= utc_now()


class TestBalanceDelta:
    """Tests for recorded balance deltas."""

    def test_plain_delta_did_not_reset_minimum(self):
        """Test a delta without previous minimum payment."""
        delta = BalanceDelta(entity=AccountRef(id=uuid4()), amount=Decimal("-150.00"))
        assert not delta.reset_minimum_payment

    def test_reset_delta(self):
        """Test a delta recording the minimum payment it cleared."""
        delta = BalanceDelta(
            entity=CardRef(id=uuid4()),
            amount=Decimal("-500.00"),
            previous_minimum_payment=Decimal("120.00"),
        )
        assert delta.reset_minimum_payment

    def test_entity_discriminator_from_dict(self):
        """Test deltas deserialize to the right reference type."""
        card_id = uuid4()
        delta = BalanceDelta.model_validate({
            "entity": {"kind": "card", "id": str(card_id)},
            "amount": "10.00",
        })
        assert delta.entity == CardRef(id=card_id)

    def test_delta_is_frozen(self):
        """Test a recorded delta cannot be changed."""
        delta = BalanceDelta(entity=AccountRef(id=uuid4()), amount=Decimal("1.00"))
        with pytest.raises(ValidationError):
            delta.amount = Decimal("2.00")


class TestReceiptModels:
    """Tests for receipt draft models."""

    def test_items_total(self):
        """Test items_total sums the item totals."""
        draft = ReceiptDraft(
            amount=Decimal("60.00"),
            items=[
                ReceiptItemDraft(name="Süt", total_price=Decimal("40.00")),
                ReceiptItemDraft(name="Ekmek", total_price=Decimal("20.00")),
            ],
        )
        assert draft.items_total == Decimal("60.00")

    def test_empty_draft_defaults(self):
        """Test an empty draft has zero amount and the default category."""
        draft = ReceiptDraft()
        assert draft.amount == Decimal("0.00")
        assert draft.category == "Diğer"
        assert draft.items_total == Decimal("0")

    def test_item_quantity_bounds(self):
        """Test quantity must be in 1..99."""
        with pytest.raises(ValidationError):
            ReceiptItemDraft(name="Su", quantity=0, total_price=Decimal("5"))
        with pytest.raises(ValidationError):
            ReceiptItemDraft(name="Su", quantity=100, total_price=Decimal("5"))

    @pytest.mark.parametrize("source,notice", [
        (ScanSource.LOCAL, "Receipt scanned (free OCR)"),
        (ScanSource.REMOTE, "Receipt scanned (AI)"),
        (ScanSource.LOCAL_DEGRADED, "Receipt scanned (used free OCR)"),
    ])
    def test_scan_result_notice(self, source, notice):
        """Test the user-facing notice per source."""
        result = ScanResult(draft=ReceiptDraft(), source=source, report=_report())
        assert result.notice == notice

    def test_confirmed_draft_accepts_either_reference(self):
        """Test the payment method is discriminated by kind."""
        card_id = uuid4()
        confirmed = ConfirmedDraft.model_validate({
            "draft": {"amount": "10.00"},
            "payment_method": {"kind": "card", "id": str(card_id)},
        })
        assert confirmed.payment_method == CardRef(id=card_id)


class TestEnrichmentOutcome:
    """Tests for best-effort step outcomes."""

    def test_skipped(self):
        """Test the skipped constructor."""
        outcome = EnrichmentOutcome.skipped("receipt_items")
        assert outcome.status == EnrichmentStatus.SKIPPED
        assert not outcome.succeeded

    def test_failed_keeps_error_text(self):
        """Test the failed constructor records the error message."""
        outcome = EnrichmentOutcome.failed("receipt_image", RuntimeError("boom"))
        assert outcome.status == EnrichmentStatus.FAILED
        assert outcome.error == "boom"


class TestLedgerEvents:
    """Tests for structured log events."""

    def test_to_log_dict_is_json_friendly(self):
        """Test UUIDs, Decimals and enums are rendered as strings."""
        entity_id = uuid4()
        event = LedgerEvent(
            event_type=LedgerEventType.DELTA_APPLIED,
            severity=LedgerEventSeverity.INFO,
            entity_type="transaction",
            entity_id=entity_id,
            description="Balance delta applied",
            details={
                "amount": Decimal("-150.00"),
                "entity": {"kind": "account", "id": entity_id},
                "source": ScanSource.REMOTE,
            },
        )
        data = event.to_log_dict()
        assert data["event_type"] == "delta_applied"
        assert data["severity"] == "info"
        assert data["entity_id"] == str(entity_id)
        assert data["correlation_id"] is None
        assert data["details"]["amount"] == "-150.00"
        assert data["details"]["entity"]["id"] == str(entity_id)
        assert data["details"]["source"] == "remote"

    def test_description_length_limit(self):
        """Test overly long descriptions are rejected."""
        with pytest.raises(ValidationError):
            LedgerEvent(event_type=LedgerEventType.SCAN_STARTED, description="x" * 501)
