"""
Storage Package

Provides the abstract document store interface and its implementations.
Firestore is the production backend; the in-memory store serves tests
and local runs. The Firestore module is imported lazily so the package
works without Firebase credentials installed.
"""

from sumbook.storage.interface import (
    BatchTooLargeError,
    ConnectionError,
    DocumentSnapshot,
    DocumentStore,
    MAX_BATCH_WRITES,
    NotFoundError,
    Snapshot,
    StorageError,
    Subscription,
    WriteBatch,
    is_document_path,
    join_path,
    split_path,
)
from sumbook.storage.memory import InMemoryDocumentStore

__all__ = [
    # Interface
    "MAX_BATCH_WRITES",
    "DocumentSnapshot",
    "DocumentStore",
    "Snapshot",
    "Subscription",
    "WriteBatch",
    "is_document_path",
    "join_path",
    "split_path",
    # Exceptions
    "BatchTooLargeError",
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "InMemoryDocumentStore",
]
