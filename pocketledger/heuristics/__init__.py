"""OCR acceptance heuristics package."""

from pocketledger.heuristics.evaluator import (
    DEFAULT_THRESHOLDS,
    amount_is_suspiciously_large,
    description_is_plausible,
    evaluate_extraction,
    items_with_text_ratio,
    line_item_sum_deviation,
)

__all__ = [
    "DEFAULT_THRESHOLDS",
    "amount_is_suspiciously_large",
    "description_is_plausible",
    "evaluate_extraction",
    "items_with_text_ratio",
    "line_item_sum_deviation",
]
