"""
Ledger Event Logger

DESIGN DECISION: Every scan decision and every balance mutation is logged
as a structured JSON event. This provides:
1. A trail to reconcile balances by hand after a LedgerInconsistencyError
2. Data to tune the OCR heuristics (how often do we pay for the AI?)
3. Correlation ids tying one user action's events together

The event logger:
- Writes to the structured log only (no audit table)
- Never raises: a logging failure must not break a scan or a ledger write
"""

import logging
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID, uuid4

import structlog

from pocketledger.models.events import (
    LedgerEvent,
    LedgerEventSeverity,
    LedgerEventType,
)
from pocketledger.models.ledger import (
    AccountRef,
    BalanceDelta,
    CardRef,
    Transaction,
)
from pocketledger.models.receipt import FallbackFailureReason, HeuristicReport


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(debug: bool = False) -> None:
    """Route structlog output through stdlib logging at the right level."""
    logging.basicConfig(
        format="%(message)s",
        level=logging.DEBUG if debug else logging.INFO,
    )


def _delta_details(delta: BalanceDelta) -> dict:
    details = {
        "entity": str(delta.entity),
        "amount": delta.amount,
    }
    if delta.reset_minimum_payment:
        details["previous_minimum_payment"] = delta.previous_minimum_payment
    return details


class EventLogger:
    """
    Central structured event logging.

    One instance is shared by the scan flow, the ledger engine and the
    item reconciler.
    """

    def __init__(self, logger_name: str = "pocketledger"):
        self._logger = structlog.get_logger(logger_name)

    def log(self, event: LedgerEvent) -> bool:
        """
        Log an event.

        Returns False if the log write itself failed.
        """
        try:
            log_dict = event.to_log_dict()
            severity = event.severity

            if severity == LedgerEventSeverity.CRITICAL:
                self._logger.critical("ledger_event", **log_dict)
            elif severity == LedgerEventSeverity.ERROR:
                self._logger.error("ledger_event", **log_dict)
            elif severity == LedgerEventSeverity.WARNING:
                self._logger.warning("ledger_event", **log_dict)
            elif severity == LedgerEventSeverity.DEBUG:
                self._logger.debug("ledger_event", **log_dict)
            else:
                self._logger.info("ledger_event", **log_dict)
            return True
        except Exception:
            return False

    # -------------------------------------------------------------------------
    # Scanning
    # -------------------------------------------------------------------------

    def scan_started(self, image_size: int, correlation_id: UUID) -> None:
        self.log(LedgerEvent(
            event_type=LedgerEventType.SCAN_STARTED,
            entity_type="scan",
            correlation_id=correlation_id,
            description="Receipt scan started",
            details={"image_size_bytes": image_size},
        ))

    def scan_accepted_local(self, report: HeuristicReport, correlation_id: UUID) -> None:
        self.log(LedgerEvent(
            event_type=LedgerEventType.SCAN_ACCEPTED_LOCAL,
            entity_type="scan",
            correlation_id=correlation_id,
            description=f"Local OCR accepted with confidence {report.confidence}",
            details=report.to_log_dict(),
        ))

    def scan_fallback_started(self, report: HeuristicReport, correlation_id: UUID) -> None:
        self.log(LedgerEvent(
            event_type=LedgerEventType.SCAN_FALLBACK_STARTED,
            entity_type="scan",
            correlation_id=correlation_id,
            description=f"Local OCR rejected (confidence {report.confidence}), calling vision AI",
            details=report.to_log_dict(),
        ))

    def scan_accepted_remote(self, confidence: int, correlation_id: UUID) -> None:
        self.log(LedgerEvent(
            event_type=LedgerEventType.SCAN_ACCEPTED_REMOTE,
            entity_type="scan",
            correlation_id=correlation_id,
            description="Vision AI result accepted",
            details={"confidence": confidence},
        ))

    def scan_degraded(
        self,
        reason: FallbackFailureReason,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        # Quota problems are expected operational states, not bugs
        severity = (
            LedgerEventSeverity.INFO
            if reason != FallbackFailureReason.OTHER
            else LedgerEventSeverity.WARNING
        )
        self.log(LedgerEvent(
            event_type=LedgerEventType.SCAN_DEGRADED,
            severity=severity,
            entity_type="scan",
            correlation_id=correlation_id,
            description=f"Vision AI unavailable ({reason.value}), using local OCR result",
            details={"reason": reason},
            error_message=error_message,
        ))

    def scan_failed(self, error_message: str, correlation_id: UUID) -> None:
        self.log(LedgerEvent(
            event_type=LedgerEventType.SCAN_FAILED,
            severity=LedgerEventSeverity.ERROR,
            entity_type="scan",
            correlation_id=correlation_id,
            description="Local OCR failed",
            error_message=error_message,
        ))

    def scan_cancelled(self, correlation_id: UUID) -> None:
        self.log(LedgerEvent(
            event_type=LedgerEventType.SCAN_CANCELLED,
            entity_type="scan",
            correlation_id=correlation_id,
            description="Receipt scan cancelled",
        ))

    # -------------------------------------------------------------------------
    # Drafts
    # -------------------------------------------------------------------------

    def draft_confirmed(
        self,
        payment_method: Union[AccountRef, CardRef],
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(LedgerEvent(
            event_type=LedgerEventType.DRAFT_CONFIRMED,
            entity_type="draft",
            correlation_id=correlation_id,
            description="Receipt draft confirmed",
            details={"payment_method": str(payment_method), "amount": amount},
        ))

    def draft_cancelled(self, correlation_id: Optional[UUID] = None) -> None:
        self.log(LedgerEvent(
            event_type=LedgerEventType.DRAFT_CANCELLED,
            entity_type="draft",
            correlation_id=correlation_id,
            description="Receipt draft discarded",
        ))

    # -------------------------------------------------------------------------
    # Ledger
    # -------------------------------------------------------------------------

    def delta_applied(
        self,
        transaction_id: UUID,
        delta: BalanceDelta,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(LedgerEvent(
            event_type=LedgerEventType.DELTA_APPLIED,
            severity=LedgerEventSeverity.DEBUG,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Applied {delta.amount} to {delta.entity}",
            details=_delta_details(delta),
        ))

    def delta_reversed(
        self,
        transaction_id: UUID,
        delta: BalanceDelta,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(LedgerEvent(
            event_type=LedgerEventType.DELTA_REVERSED,
            severity=LedgerEventSeverity.DEBUG,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Reversed {delta.amount} on {delta.entity}",
            details=_delta_details(delta),
        ))

    def _transaction_event(
        self,
        event_type: LedgerEventType,
        verb: str,
        transaction: Transaction,
        correlation_id: Optional[UUID],
    ) -> None:
        self.log(LedgerEvent(
            event_type=event_type,
            entity_type="transaction",
            entity_id=transaction.id,
            correlation_id=correlation_id,
            description=f"Transaction {verb}: {transaction.type.value} {transaction.amount} {transaction.currency}",
            details={
                "type": transaction.type,
                "amount": transaction.amount,
                "account_id": transaction.account_id,
                "card_id": transaction.card_id,
            },
        ))

    def transaction_created(self, transaction: Transaction, correlation_id: Optional[UUID] = None) -> None:
        self._transaction_event(LedgerEventType.TRANSACTION_CREATED, "created", transaction, correlation_id)

    def transaction_updated(self, transaction: Transaction, correlation_id: Optional[UUID] = None) -> None:
        self._transaction_event(LedgerEventType.TRANSACTION_UPDATED, "updated", transaction, correlation_id)

    def transaction_deleted(self, transaction: Transaction, correlation_id: Optional[UUID] = None) -> None:
        self._transaction_event(LedgerEventType.TRANSACTION_DELETED, "deleted", transaction, correlation_id)

    def transaction_restored(self, transaction: Transaction, correlation_id: Optional[UUID] = None) -> None:
        self._transaction_event(LedgerEventType.TRANSACTION_RESTORED, "restored", transaction, correlation_id)

    def undo_unavailable(self, reason: str) -> None:
        self.log(LedgerEvent(
            event_type=LedgerEventType.UNDO_UNAVAILABLE,
            entity_type="transaction",
            description=f"Undo not performed: {reason}",
        ))

    def ledger_inconsistent(
        self,
        operation: str,
        transaction_id: UUID,
        applied: list[BalanceDelta],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(LedgerEvent(
            event_type=LedgerEventType.LEDGER_INCONSISTENT,
            severity=LedgerEventSeverity.CRITICAL,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Balances changed but {operation} did not complete; verify balances",
            details={
                "operation": operation,
                "applied_deltas": [_delta_details(delta) for delta in applied],
            },
            error_message=error_message,
        ))

    # -------------------------------------------------------------------------
    # Enrichment
    # -------------------------------------------------------------------------

    def enrichment_failed(
        self,
        step: str,
        error_message: str,
        transaction_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        self.log(LedgerEvent(
            event_type=LedgerEventType.ENRICHMENT_FAILED,
            severity=LedgerEventSeverity.WARNING,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Best-effort step failed: {step}",
            details={"step": step},
            error_message=error_message,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a receipt scan).
    Pass it through all subsequent operations.
    """
    return uuid4()
