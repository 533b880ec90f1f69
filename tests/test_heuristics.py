"""
Tests for the local OCR acceptance heuristics.

The accept/reject decision decides when the paid vision service is
called, so its boundaries are pinned here exactly.
"""

import pytest
from decimal import Decimal

from pocketledger.config import HeuristicThresholds
from pocketledger.heuristics import (
    amount_is_suspiciously_large,
    description_is_plausible,
    evaluate_extraction,
    items_with_text_ratio,
    line_item_sum_deviation,
)
from pocketledger.models import ReceiptDraft, ReceiptItemDraft

from tests.conftest import make_draft


class TestAcceptDecision:
    """Tests for can_use_local_result."""

    @pytest.mark.parametrize("amount,confidence,expected", [
        ("150.00", 60, True),       # minimum confidence is inclusive
        ("150.00", 59, False),      # below minimum
        ("0.00", 95, False),        # no total found
        ("999.99", 60, True),       # just under the large amount
        ("1000.00", 74, False),     # large and not confident enough
        ("1000.00", 75, True),      # large but confident
        ("1599.90", 70, False),     # typical dropped-digit case
        ("25000.00", 95, True),
    ])
    def test_truth_table(self, amount, confidence, expected):
        """Test the decision across its boundaries."""
        draft = make_draft(amount=Decimal(amount), confidence=confidence)
        report = evaluate_extraction(draft)
        assert report.can_use_local_result is expected

    def test_decision_ignores_diagnostic_scores(self):
        """Test bad items and a placeholder description do not reject."""
        draft = make_draft(
            description="Fiş Taraması",
            items=[ReceiptItemDraft(name="1234", total_price=Decimal("999"))],
        )
        report = evaluate_extraction(draft)
        assert not report.description_is_plausible
        assert not report.items_look_usable
        assert report.can_use_local_result

    def test_custom_thresholds(self):
        """Test thresholds are honored when overridden."""
        thresholds = HeuristicThresholds(min_confidence=90)
        draft = make_draft(confidence=80)
        assert not evaluate_extraction(draft, thresholds).can_use_local_result

    def test_evaluation_is_deterministic(self):
        """Test the same draft gives the same report."""
        draft = make_draft()
        assert evaluate_extraction(draft) == evaluate_extraction(draft)

    def test_report_carries_confidence(self):
        """Test the report echoes the draft confidence."""
        report = evaluate_extraction(make_draft(confidence=67))
        assert report.confidence == 67
        assert report.to_log_dict()["confidence"] == 67


class TestSuspiciouslyLarge:
    """Tests for the dropped-digit rule."""

    def test_boundaries(self):
        """Test the large amount is inclusive and high confidence exclusive."""
        assert amount_is_suspiciously_large(Decimal("1000"), 74)
        assert not amount_is_suspiciously_large(Decimal("1000"), 75)
        assert not amount_is_suspiciously_large(Decimal("999.99"), 50)


class TestItemScores:
    """Tests for the item diagnostics."""

    def test_ratio_without_items_is_zero(self):
        """Test a draft with no items scores zero."""
        assert items_with_text_ratio(ReceiptDraft()) == 0.0

    def test_ratio_counts_names_with_letters(self):
        """Test only names containing letters count."""
        draft = ReceiptDraft(items=[
            ReceiptItemDraft(name="Çay", total_price=Decimal("10")),
            ReceiptItemDraft(name="12.50", total_price=Decimal("12.50")),
            ReceiptItemDraft(name="ŞEKER 1KG", total_price=Decimal("30")),
            ReceiptItemDraft(name="***", total_price=Decimal("1")),
        ])
        assert items_with_text_ratio(draft) == 0.5

    def test_deviation_when_items_match(self):
        """Test matching totals deviate by zero."""
        draft = make_draft(amount=Decimal("60.00"))
        assert line_item_sum_deviation(draft) == 0.0

    def test_deviation_is_relative(self):
        """Test the gap is relative to the receipt total."""
        draft = make_draft(amount=Decimal("120.00"))
        assert line_item_sum_deviation(draft) == pytest.approx(0.5)

    def test_deviation_without_items_is_maximal(self):
        """Test missing items or total give 1.0."""
        assert line_item_sum_deviation(make_draft(items=[])) == 1.0
        assert line_item_sum_deviation(make_draft(amount=Decimal("0"))) == 1.0


class TestDescriptionPlausibility:
    """Tests for merchant name plausibility."""

    @pytest.mark.parametrize("description,expected", [
        ("Migros", True),
        ("A101", True),
        ("", False),
        (None, False),
        ("Fiş Taraması", False),
        ("ab", False),
        ("12345", False),
        ("12.03.2024", False),
    ])
    def test_plausibility(self, description, expected):
        """Test placeholder, short and digit-only names are implausible."""
        assert description_is_plausible(description) is expected
