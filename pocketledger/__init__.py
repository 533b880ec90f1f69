"""
Pocket Ledger - Source Package

Receipt ingestion and ledger reconciliation core of a personal finance
tracker: photographed receipts become expense drafts, confirmed drafts
become transactions, and every transaction keeps account and credit card
balances consistent.

DESIGN PRINCIPLES:
1. Free local OCR first, paid AI only when the local result is doubtful
2. Nothing is persisted without explicit user confirmation
3. Balances change through recorded deltas, never recomputed totals
4. Enrichment (images, line items) never rolls back financial state
"""

__version__ = "1.0.0"
__author__ = "Pocket Ledger Team"
