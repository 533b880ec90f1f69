"""
Confidence Heuristics for Local OCR Results

Decides whether a Tesseract extraction is trustworthy enough to use
without paying for the vision AI.

DESIGN DECISION: Simple, deterministic rules rather than a learned model:
1. Predictable cost (we know exactly when the paid service is called)
2. Transparent to debug from logs
3. The user reviews every draft anyway

The decision itself only looks at confidence, amount and the
"suspiciously large total" rule. The other scores are computed for
diagnostics so we can tune the rules from real logs.
"""

import re
from decimal import Decimal
from typing import Optional

from pocketledger.config.settings import HeuristicThresholds
from pocketledger.models.receipt import HeuristicReport, ReceiptDraft


DEFAULT_THRESHOLDS = HeuristicThresholds()

# Latin letters plus the Turkish extended alphabet
_LETTER = re.compile(r"[A-Za-zÇĞİÖŞÜçğıöşü]")

# Descriptions made only of digits, whitespace and punctuation
_NO_LETTERS = re.compile(r"^[\d\s\W_]+$")


def items_with_text_ratio(draft: ReceiptDraft) -> float:
    """Share of items whose name has at least one letter. 0 with no items."""
    if not draft.items:
        return 0.0
    with_text = sum(1 for item in draft.items if _LETTER.search(item.name))
    return with_text / len(draft.items)


def line_item_sum_deviation(draft: ReceiptDraft) -> float:
    """
    Relative gap between the item totals and the receipt total.

    Only defined when both are positive; otherwise 1.0 (maximally deviant).
    """
    items_sum = draft.items_total
    if draft.amount > 0 and items_sum > 0:
        return float(abs(items_sum - draft.amount) / draft.amount)
    return 1.0


def description_is_plausible(
    description: Optional[str],
    placeholder: str = DEFAULT_THRESHOLDS.placeholder_description,
) -> bool:
    """A merchant name, not empty, not the placeholder, not just digits."""
    if not description:
        return False
    cleaned = description.strip()
    if cleaned == placeholder:
        return False
    if len(cleaned) < 3:
        return False
    return not _NO_LETTERS.match(cleaned)


def amount_is_suspiciously_large(
    amount: Decimal,
    confidence: int,
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
) -> bool:
    """
    Large totals read with middling confidence.

    Tesseract often invents or drops a leading digit (599.90 -> 1599.90).
    """
    return amount >= thresholds.large_amount and confidence < thresholds.high_confidence


def evaluate_extraction(
    draft: ReceiptDraft,
    thresholds: HeuristicThresholds = DEFAULT_THRESHOLDS,
) -> HeuristicReport:
    """
    Score a local extraction and decide whether to accept it.

    Pure function: no I/O, no clock, same input -> same report.
    """
    ratio = items_with_text_ratio(draft)
    suspicious = amount_is_suspiciously_large(draft.amount, draft.confidence, thresholds)

    can_use_local = (
        draft.confidence >= thresholds.min_confidence
        and draft.amount > 0
        and not suspicious
    )

    return HeuristicReport(
        confidence=draft.confidence,
        items_with_text_ratio=ratio,
        line_item_sum_deviation=line_item_sum_deviation(draft),
        description_is_plausible=description_is_plausible(
            draft.description, thresholds.placeholder_description
        ),
        amount_is_suspiciously_large=suspicious,
        items_look_usable=bool(draft.items) and ratio >= thresholds.min_items_text_ratio,
        can_use_local_result=can_use_local,
    )
