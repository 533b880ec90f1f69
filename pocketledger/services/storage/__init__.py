"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The ledger runs on SQLAlchemy; receipt images live in a blob store.
"""

from pocketledger.services.storage.interface import (
    BlobStore,
    ConcurrentUpdateError,
    DuplicateError,
    LedgerStore,
    NotFoundError,
    StorageError,
)
from pocketledger.services.storage.sqlalchemy_store import (
    SQLAlchemyLedgerStore,
    create_session_factory,
    from_cents,
    to_cents,
)

__all__ = [
    # Interfaces
    "BlobStore",
    "LedgerStore",
    # Exceptions
    "ConcurrentUpdateError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # SQLAlchemy implementation
    "SQLAlchemyLedgerStore",
    "create_session_factory",
    "from_cents",
    "to_cents",
]
