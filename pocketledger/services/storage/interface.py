"""
Abstract Storage Interface

DESIGN DECISION: The ledger engine only talks to these interfaces.
This allows us to:
1. Swap SQLite for Postgres (or a hosted API) without touching the engine
2. Inject failing stores in tests to exercise the inconsistency path
3. Keep balance arithmetic in ONE place (the engine), while the store only
   offers atomic primitives

CRITICAL: Balance changes go through apply_delta / apply_card_payment.
There is deliberately no "set balance" operation: read-modify-write
from the caller is exactly the race these primitives exist to prevent.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from pocketledger.models.ledger import (
    Account,
    AccountRef,
    BalanceDelta,
    CardRef,
    CreditCard,
    ReceiptItem,
    Transaction,
)


class LedgerStore(ABC):
    """
    Abstract interface for ledger persistence.

    Every method is a single atomic unit on the backend; nothing here
    spans two balance updates.
    """

    # -------------------------------------------------------------------------
    # Accounts and cards
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_account(self, account: Account) -> Account:
        """Insert or replace an account (setup and tests only)."""
        pass

    @abstractmethod
    async def save_card(self, card: CreditCard) -> CreditCard:
        """Insert or replace a credit card (setup and tests only)."""
        pass

    @abstractmethod
    async def get_account(self, account_id: UUID) -> Optional[Account]:
        pass

    @abstractmethod
    async def get_card(self, card_id: UUID) -> Optional[CreditCard]:
        pass

    @abstractmethod
    async def get_balance(self, entity: Union[AccountRef, CardRef]) -> Decimal:
        """
        Current balance of an account or card.

        Raises:
            NotFoundError: If the entity doesn't exist
        """
        pass

    # -------------------------------------------------------------------------
    # Atomic balance primitives
    # -------------------------------------------------------------------------

    @abstractmethod
    async def apply_delta(self, entity: Union[AccountRef, CardRef], amount: Decimal) -> Decimal:
        """
        Atomically add a signed amount to a balance.

        Returns:
            The new balance

        Raises:
            NotFoundError: If the entity doesn't exist
            StorageError: If the update fails
        """
        pass

    @abstractmethod
    async def apply_card_payment(self, card_id: UUID, amount: Decimal) -> BalanceDelta:
        """
        Pay down a card: balance becomes max(0, balance - amount).

        When the new balance is exactly zero, minimum_payment is forced to
        zero in the same update.

        Returns:
            The delta actually applied, with previous_minimum_payment set
            when the minimum payment was reset

        Raises:
            NotFoundError: If the card doesn't exist
            ConcurrentUpdateError: If the card kept changing underneath us
        """
        pass

    @abstractmethod
    async def restore_minimum_payment(self, card_id: UUID, minimum_payment: Decimal) -> None:
        """Put back a minimum payment that a card payment had reset."""
        pass

    # -------------------------------------------------------------------------
    # Transactions and their recorded deltas
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def get_deltas(self, transaction_id: UUID) -> list[BalanceDelta]:
        """Deltas recorded for a transaction, in application order."""
        pass

    @abstractmethod
    async def insert_transaction(
        self,
        transaction: Transaction,
        deltas: list[BalanceDelta],
    ) -> Transaction:
        """
        Persist a transaction and its applied deltas together.

        The transaction's own id is used, which is how undo restores a
        deleted record under its original id.

        Raises:
            DuplicateError: If the id already exists
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def update_transaction(
        self,
        transaction: Transaction,
        deltas: list[BalanceDelta],
    ) -> Transaction:
        """
        Overwrite a transaction and replace its recorded deltas.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID) -> bool:
        """
        Delete a transaction and its recorded deltas.

        Receipt items are kept; their transaction_id is cleared.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        pass

    # -------------------------------------------------------------------------
    # Receipt items
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert_receipt_items(self, items: list[ReceiptItem]) -> int:
        """Insert items in one batch. Returns the number inserted."""
        pass

    @abstractmethod
    async def list_receipt_items(self, transaction_id: UUID) -> list[ReceiptItem]:
        pass

    @abstractmethod
    async def list_transactions_missing_items(self, user_id: UUID) -> list[Transaction]:
        """
        Transactions of the user that have a receipt image but no items.

        Newest transaction date first.
        """
        pass


class BlobStore(ABC):
    """
    Abstract interface for receipt image storage.

    Images are private; callers only ever get expiring URLs.
    """

    @abstractmethod
    async def upload(self, owner_id: UUID, image_bytes: bytes) -> str:
        """
        Store an image under the owner's namespace.

        Returns:
            Storage key to pass to create_temporary_url

        Raises:
            StorageError: If the upload fails
        """
        pass

    @abstractmethod
    async def create_temporary_url(self, storage_key: str, ttl_seconds: int) -> str:
        """Signed URL valid for ttl_seconds."""
        pass

    @abstractmethod
    async def download(self, url: str) -> bytes:
        """
        Fetch an image back through a URL from create_temporary_url.

        Raises:
            StorageError: If the image cannot be fetched
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConcurrentUpdateError(StorageError):
    """Optimistic version check kept failing."""
    pass
