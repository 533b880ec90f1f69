"""Validation package."""

from pocketledger.validation.validator import (
    DraftValidationError,
    LedgerValidator,
    TransactionValidationError,
    ValidationIssue,
    has_errors,
    validate_draft,
)

__all__ = [
    "DraftValidationError",
    "LedgerValidator",
    "TransactionValidationError",
    "ValidationIssue",
    "has_errors",
    "validate_draft",
]
