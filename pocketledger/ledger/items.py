"""
Receipt Item Reconciliation

Attaches a confirmed receipt's line items to the transaction it created,
and backfills items for older transactions that only kept the image.

IMPORTANT: Items are enrichment. They never move a balance, and failing
to store them never undoes the transaction. The outcome is returned so the
caller can tell the user the items were not saved.
"""

from typing import Any, Optional, Sequence
from uuid import UUID

from pocketledger.events.logger import EventLogger
from pocketledger.models.ledger import (
    EnrichmentOutcome,
    EnrichmentStatus,
    ReceiptItem,
    Transaction,
)
from pocketledger.models.receipt import ReceiptItemDraft
from pocketledger.services.ocr import classify_failure
from pocketledger.services.storage import BlobStore, LedgerStore


RECEIPT_ITEMS_STEP = "receipt_items"

# A rescan below this confidence also asks the vision AI
RESCAN_MIN_CONFIDENCE = 50
BACKFILL_DEFAULT_CATEGORY = "Gıda"


class ItemReconciler:
    """Best-effort persistence of receipt line items."""

    def __init__(self, store: LedgerStore, event_logger: Optional[EventLogger] = None):
        self._store = store
        self._events = event_logger or EventLogger()

    def _to_record(self, transaction: Transaction, item: ReceiptItemDraft) -> ReceiptItem:
        return ReceiptItem(
            user_id=transaction.user_id,
            transaction_id=transaction.id,
            name=item.name,
            quantity=item.quantity or 1,
            unit_price=item.unit_price,
            total_price=item.total_price,
            category=item.category,
            brand=item.brand,
            transaction_date=transaction.date,
        )

    async def attach(
        self,
        transaction: Transaction,
        items: Sequence[ReceiptItemDraft],
        correlation_id: Optional[UUID] = None,
    ) -> EnrichmentOutcome:
        """
        Persist items linked to the transaction, in one batch.

        Returns:
            skipped when there are no items, succeeded with the count, or
            failed with the error text. Never raises.
        """
        if not items:
            return EnrichmentOutcome.skipped(RECEIPT_ITEMS_STEP)

        try:
            records = [self._to_record(transaction, item) for item in items]
            count = await self._store.insert_receipt_items(records)
        except Exception as e:
            self._events.enrichment_failed(
                RECEIPT_ITEMS_STEP, str(e), transaction.id, correlation_id
            )
            return EnrichmentOutcome.failed(RECEIPT_ITEMS_STEP, e)

        return EnrichmentOutcome(
            step=RECEIPT_ITEMS_STEP,
            status=EnrichmentStatus.SUCCEEDED,
            count=count,
        )

    async def _rescan(
        self,
        image_bytes: bytes,
        local_service: Any,
        remote_service: Optional[Any],
        correlation_id: Optional[UUID],
    ) -> list[ReceiptItemDraft]:
        """Local OCR first; the vision AI only replaces a weak result that it improves."""
        draft = await local_service.scan(image_bytes)
        items = list(draft.items)

        if remote_service is not None and (not items or draft.confidence < RESCAN_MIN_CONFIDENCE):
            try:
                remote_draft = await remote_service.scan(image_bytes)
            except Exception as e:
                self._events.scan_degraded(classify_failure(e), str(e), correlation_id)
            else:
                if remote_draft.items:
                    items = list(remote_draft.items)

        return [
            item if item.category else item.model_copy(update={"category": BACKFILL_DEFAULT_CATEGORY})
            for item in items
        ]

    async def backfill(
        self,
        user_id: UUID,
        blob_store: BlobStore,
        local_service: Any,
        remote_service: Optional[Any] = None,
        correlation_id: Optional[UUID] = None,
    ) -> dict[UUID, EnrichmentOutcome]:
        """
        Rescan stored receipt images of transactions that have no items.

        Each transaction is handled on its own: a failed download or scan
        is recorded in its outcome and the next one is tried.

        Args:
            user_id: Owner of the transactions
            blob_store: Where the receipt images are fetched from
            local_service: Local recognizer, scan(image_bytes)
            remote_service: Optional vision fallback, scan(image_bytes)

        Returns:
            Outcome per transaction id

        Raises:
            StorageError: If the transactions cannot be listed
        """
        outcomes: dict[UUID, EnrichmentOutcome] = {}

        for transaction in await self._store.list_transactions_missing_items(user_id):
            try:
                image_bytes = await blob_store.download(transaction.receipt_image_url)
                items = await self._rescan(image_bytes, local_service, remote_service, correlation_id)
            except Exception as e:
                self._events.enrichment_failed(
                    RECEIPT_ITEMS_STEP, str(e), transaction.id, correlation_id
                )
                outcomes[transaction.id] = EnrichmentOutcome.failed(RECEIPT_ITEMS_STEP, e)
                continue

            if not items:
                outcomes[transaction.id] = EnrichmentOutcome(
                    step=RECEIPT_ITEMS_STEP,
                    status=EnrichmentStatus.FAILED,
                    error="No line items could be extracted",
                )
                continue

            outcomes[transaction.id] = await self.attach(transaction, items, correlation_id)

        return outcomes
