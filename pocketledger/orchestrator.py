"""
Main Orchestrator for Pocket Ledger

This module ties together all the components and defines the
end-to-end flows for:
1. Receipt Scan (image -> local OCR -> heuristics -> [vision AI] -> draft)
2. Receipt Confirmation (draft -> image upload -> ledger -> line items)

DESIGN DECISION: The orchestrator enforces the boundaries:
- The paid vision AI runs ONLY when the local result is rejected
- A failing vision AI never fails a scan (the local draft is used)
- Nothing persists without an explicit user confirmation
- Image and line items are best-effort; the transaction is not

This is the "glue" that ensures the system works correctly
even when individual components might behave unexpectedly.
"""

from typing import Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, ValidationError

from pocketledger.config import HeuristicThresholds, get_settings
from pocketledger.events.logger import EventLogger, create_correlation_id
from pocketledger.heuristics import evaluate_extraction
from pocketledger.ledger import ItemReconciler, LedgerEngine
from pocketledger.models.ledger import (
    EnrichmentOutcome,
    EnrichmentStatus,
    Transaction,
    TransactionIntent,
    TransactionType,
)
from pocketledger.models.receipt import (
    ConfirmedDraft,
    ReceiptDraft,
    ScanProgress,
    ScanResult,
    ScanSource,
    ScanState,
)
from pocketledger.services.image import CloudinaryReceiptStore
from pocketledger.services.ocr import (
    GeminiVisionService,
    TesseractReceiptService,
    classify_failure,
)
from pocketledger.services.storage import BlobStore, SQLAlchemyLedgerStore
from pocketledger.validation import TransactionValidationError


RECEIPT_IMAGE_STEP = "receipt_image"

_TERMINAL_STATES = frozenset({ScanState.READY, ScanState.FAILED, ScanState.CANCELLED})

_TRANSITIONS: dict[ScanState, frozenset[ScanState]] = {
    ScanState.IDLE: frozenset({ScanState.RUNNING_LOCAL_OCR}),
    ScanState.RUNNING_LOCAL_OCR: frozenset({ScanState.EVALUATING, ScanState.FAILED}),
    ScanState.EVALUATING: frozenset({ScanState.ACCEPTED_LOCAL, ScanState.RUNNING_REMOTE_FALLBACK}),
    ScanState.ACCEPTED_LOCAL: frozenset({ScanState.READY}),
    ScanState.RUNNING_REMOTE_FALLBACK: frozenset({
        ScanState.ACCEPTED_REMOTE,
        ScanState.ACCEPTED_LOCAL_DEGRADED,
    }),
    ScanState.ACCEPTED_REMOTE: frozenset({ScanState.READY}),
    ScanState.ACCEPTED_LOCAL_DEGRADED: frozenset({ScanState.READY}),
    ScanState.READY: frozenset(),
    ScanState.FAILED: frozenset(),
    ScanState.CANCELLED: frozenset(),
}


class InvalidScanTransition(Exception):
    """A scan session was asked to move to a state it cannot reach."""

    def __init__(self, current: ScanState, requested: ScanState):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move scan from {current.value} to {requested.value}")


class ScanCancelled(Exception):
    """The scan was cancelled before it produced a draft."""
    pass


class ScanSession:
    """
    State of one receipt scan.

    cancel() may be called from anywhere while the scan runs; the scan
    observes it at its next step and raises ScanCancelled.
    """

    def __init__(self, correlation_id: Optional[UUID] = None):
        self.correlation_id = correlation_id or create_correlation_id()
        self.state = ScanState.IDLE
        self.history: list[ScanState] = [ScanState.IDLE]
        self.last_progress: Optional[ScanProgress] = None
        self.result: Optional[ScanResult] = None
        self.error: Optional[Exception] = None
        self._cancel_requested = False

    def transition(self, new_state: ScanState) -> None:
        """
        Move to another state.

        CANCELLED is reachable from every non-terminal state.
        """
        allowed = _TRANSITIONS[self.state]
        if new_state == ScanState.CANCELLED and self.state not in _TERMINAL_STATES:
            allowed = allowed | {ScanState.CANCELLED}
        if new_state not in allowed:
            raise InvalidScanTransition(self.state, new_state)
        self.state = new_state
        self.history.append(new_state)

    @property
    def is_terminal(self) -> bool:
        return self.state in _TERMINAL_STATES

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> bool:
        """
        Request cancellation. Returns False once the scan has finished.
        """
        if self.is_terminal:
            return False
        self._cancel_requested = True
        if self.state == ScanState.IDLE:
            self.transition(ScanState.CANCELLED)
        return True

    def raise_if_cancelled(self) -> None:
        if self._cancel_requested:
            if self.state != ScanState.CANCELLED:
                self.transition(ScanState.CANCELLED)
            raise ScanCancelled("Receipt scan was cancelled")

    def record_progress(self, progress: ScanProgress) -> None:
        self.last_progress = progress


class ReceiptScanFlow:
    """
    Orchestrates the two-tier receipt scan.

    Flow:
    1. Local OCR (Tesseract) -> local draft, progress republished
    2. Heuristics decide whether the local draft is usable
    3. If not, the vision AI is called
       - success -> remote draft replaces the local one
       - ANY failure -> local draft is used anyway (degraded)
    4. Exactly one draft and its source tag are returned

    Local OCR failure is the only failure surfaced to the caller.
    """

    def __init__(
        self,
        local_service: Optional[TesseractReceiptService] = None,
        remote_service: Optional[GeminiVisionService] = None,
        thresholds: Optional[HeuristicThresholds] = None,
        event_logger: Optional[EventLogger] = None,
    ):
        self._local_service = local_service or TesseractReceiptService()
        self._remote_service = remote_service
        self._thresholds = thresholds or get_settings().heuristics
        self._events = event_logger or EventLogger()

    def _get_remote_service(self) -> GeminiVisionService:
        """Created on first fallback; a missing API key fails only that call."""
        if self._remote_service is None:
            self._remote_service = GeminiVisionService()
        return self._remote_service

    def new_session(self, correlation_id: Optional[UUID] = None) -> ScanSession:
        return ScanSession(correlation_id)

    def _finish(self, session: ScanSession, result: ScanResult) -> ScanResult:
        session.transition(ScanState.READY)
        session.result = result
        return result

    async def _run_remote(self, image_bytes: bytes) -> ReceiptDraft:
        return await self._get_remote_service().scan(image_bytes)

    async def scan(
        self,
        image_bytes: bytes,
        on_progress: Optional[Callable[[ScanProgress], None]] = None,
        session: Optional[ScanSession] = None,
    ) -> ScanResult:
        """
        Scan a receipt image.

        Args:
            image_bytes: Raw image as uploaded
            on_progress: Receives local OCR progress unchanged
            session: Pre-created session, to be able to cancel() it

        Returns:
            ScanResult with exactly one draft and its source

        Raises:
            RecognitionError / ImageRejectedError: Local OCR failed
            ScanCancelled: session.cancel() was called
            InvalidScanTransition: The session was already used
        """
        session = session or self.new_session()
        correlation_id = session.correlation_id
        session.raise_if_cancelled()
        session.transition(ScanState.RUNNING_LOCAL_OCR)
        self._events.scan_started(len(image_bytes), correlation_id)

        def publish(progress: ScanProgress) -> None:
            session.record_progress(progress)
            if on_progress is not None:
                on_progress(progress)
            session.raise_if_cancelled()

        try:
            local_draft = await self._local_service.scan(image_bytes, publish)
            session.raise_if_cancelled()
        except ScanCancelled:
            self._events.scan_cancelled(correlation_id)
            raise
        except Exception as e:
            session.error = e
            session.transition(ScanState.FAILED)
            self._events.scan_failed(str(e), correlation_id)
            raise

        session.transition(ScanState.EVALUATING)
        report = evaluate_extraction(local_draft, self._thresholds)

        if report.can_use_local_result:
            session.transition(ScanState.ACCEPTED_LOCAL)
            self._events.scan_accepted_local(report, correlation_id)
            return self._finish(session, ScanResult(
                draft=local_draft,
                source=ScanSource.LOCAL,
                report=report,
            ))

        session.transition(ScanState.RUNNING_REMOTE_FALLBACK)
        self._events.scan_fallback_started(report, correlation_id)

        try:
            remote_draft = await self._run_remote(image_bytes)
        except Exception as e:
            try:
                session.raise_if_cancelled()
            except ScanCancelled:
                self._events.scan_cancelled(correlation_id)
                raise
            reason = classify_failure(e)
            session.transition(ScanState.ACCEPTED_LOCAL_DEGRADED)
            self._events.scan_degraded(reason, str(e), correlation_id)
            return self._finish(session, ScanResult(
                draft=local_draft,
                source=ScanSource.LOCAL_DEGRADED,
                report=report,
                fallback_failure=reason,
            ))

        try:
            session.raise_if_cancelled()
        except ScanCancelled:
            self._events.scan_cancelled(correlation_id)
            raise

        session.transition(ScanState.ACCEPTED_REMOTE)
        self._events.scan_accepted_remote(remote_draft.confidence, correlation_id)
        return self._finish(session, ScanResult(
            draft=remote_draft,
            source=ScanSource.REMOTE,
            report=report,
        ))

    async def backfill_items(
        self,
        item_reconciler: ItemReconciler,
        user_id: UUID,
        blob_store: BlobStore,
        correlation_id: Optional[UUID] = None,
    ) -> dict[UUID, EnrichmentOutcome]:
        """
        Fill in line items for stored receipts that have none, using this
        flow's local and remote recognizers.

        Without Gemini settings the rescan runs on local OCR alone.
        """
        try:
            remote_service = self._get_remote_service()
        except ValidationError as e:
            structlog.get_logger("pocketledger").warning(
                "remote_vision_not_configured", error=str(e)
            )
            remote_service = None

        return await item_reconciler.backfill(
            user_id,
            blob_store,
            self._local_service,
            remote_service,
            correlation_id or create_correlation_id(),
        )


class ConfirmationResult(BaseModel):
    """What happened when a confirmed draft was saved."""

    transaction: Transaction
    image: EnrichmentOutcome
    items: EnrichmentOutcome


class ReceiptConfirmationFlow:
    """
    Orchestrates saving a confirmed draft.

    Flow:
    1. Validate the expense intent (nothing is written on rejection)
    2. Upload the receipt image (best-effort) and sign a long-lived URL
    3. Create the expense through the ledger engine (balances move here)
    4. Attach line items (best-effort)
    """

    def __init__(
        self,
        ledger: LedgerEngine,
        item_reconciler: ItemReconciler,
        blob_store: Optional[BlobStore] = None,
        receipt_url_ttl_seconds: Optional[int] = None,
        event_logger: Optional[EventLogger] = None,
    ):
        self._ledger = ledger
        self._items = item_reconciler
        self._blob_store = blob_store
        self._url_ttl = receipt_url_ttl_seconds or get_settings().app.receipt_url_ttl_seconds
        self._events = event_logger or EventLogger()

    async def _store_image(
        self,
        user_id: UUID,
        image_bytes: Optional[bytes],
        correlation_id: UUID,
    ) -> tuple[Optional[str], EnrichmentOutcome]:
        if not image_bytes or self._blob_store is None:
            return None, EnrichmentOutcome.skipped(RECEIPT_IMAGE_STEP)
        try:
            key = await self._blob_store.upload(user_id, image_bytes)
            url = await self._blob_store.create_temporary_url(key, self._url_ttl)
        except Exception as e:
            self._events.enrichment_failed(RECEIPT_IMAGE_STEP, str(e), correlation_id=correlation_id)
            return None, EnrichmentOutcome.failed(RECEIPT_IMAGE_STEP, e)
        return url, EnrichmentOutcome(
            step=RECEIPT_IMAGE_STEP,
            status=EnrichmentStatus.SUCCEEDED,
            count=1,
        )

    async def confirm(
        self,
        confirmed: ConfirmedDraft,
        user_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> ConfirmationResult:
        """
        Persist a confirmed receipt as an expense.

        Raises:
            TransactionValidationError: Intent rejected, nothing written
            StorageError / LedgerInconsistencyError: From the ledger engine
        """
        correlation_id = correlation_id or create_correlation_id()
        draft = confirmed.draft

        try:
            intent = TransactionIntent.for_payment_method(
                confirmed.payment_method,
                user_id=user_id,
                type=TransactionType.EXPENSE,
                amount=draft.amount,
                currency=draft.currency,
                category=draft.category,
                description=draft.description,
                date=draft.date,
            )
        except ValidationError as e:
            raise TransactionValidationError.from_pydantic(e)

        # Rejected intents must not leave an uploaded image behind
        await self._ledger.validate(intent)

        image_url, image_outcome = await self._store_image(
            user_id, confirmed.image_bytes, correlation_id
        )
        if image_url is not None:
            intent = intent.model_copy(update={"receipt_image_url": image_url})

        transaction = await self._ledger.create(intent, correlation_id)
        items_outcome = await self._items.attach(transaction, draft.items, correlation_id)

        return ConfirmationResult(
            transaction=transaction,
            image=image_outcome,
            items=items_outcome,
        )


def create_app_components(
    database_url: Optional[str] = None,
    use_blob_store: bool = True,
) -> tuple[ReceiptScanFlow, ReceiptConfirmationFlow, LedgerEngine]:
    """
    Factory function to create all application components.

    Args:
        database_url: Overrides DATABASE_URL
        use_blob_store: Whether to initialize Cloudinary storage.
                        Set to False to run without receipt images.

    Returns:
        (scan_flow, confirmation_flow, ledger_engine)
    """
    settings = get_settings()
    event_logger = EventLogger()

    store = SQLAlchemyLedgerStore(database_url)

    blob_store = None
    if use_blob_store:
        try:
            blob_store = CloudinaryReceiptStore()
        except ValidationError as e:
            # Not configured - continue without receipt images
            structlog.get_logger("pocketledger").warning(
                "blob_store_not_configured", error=str(e)
            )

    ledger = LedgerEngine(
        store,
        undo_window_seconds=settings.app.undo_window_seconds,
        event_logger=event_logger,
    )
    scan_flow = ReceiptScanFlow(event_logger=event_logger)
    confirmation_flow = ReceiptConfirmationFlow(
        ledger,
        ItemReconciler(store, event_logger),
        blob_store=blob_store,
        receipt_url_ttl_seconds=settings.app.receipt_url_ttl_seconds,
        event_logger=event_logger,
    )
    return scan_flow, confirmation_flow, ledger
