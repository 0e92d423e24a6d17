"""
Abstract Document Store Interface

DESIGN DECISION: We define an abstract interface for the remote
document database. This allows us to:
1. Run against Firestore in production
2. Use an in-memory store for tests and local runs
3. Keep the ledger layer decoupled from any client library

The data is a hierarchical key space: a path with an odd number of
segments names a collection, an even number names a document
(e.g. "users/u1/stores" vs "users/u1/stores/s1").

The interface is intentionally small - it is exactly what the
ledger needs: single-document writes, atomic batches, one-shot
reads and live listeners.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional


# =============================================================================
# PATHS
# =============================================================================

def split_path(path: str) -> tuple[str, ...]:
    """Split a slash-separated path, rejecting empty segments."""
    segments = tuple(path.strip("/").split("/"))
    if not path.strip("/") or any(not s for s in segments):
        raise ValueError(f"Invalid document path: {path!r}")
    return segments


def is_document_path(path: str) -> bool:
    return len(split_path(path)) % 2 == 0


def join_path(*segments: str) -> str:
    return "/".join(s.strip("/") for s in segments)


# =============================================================================
# SNAPSHOTS
# =============================================================================

@dataclass(frozen=True)
class DocumentSnapshot:
    """One document as read from the store. `data` is None if it doesn't exist."""

    id: str
    data: Optional[dict[str, Any]] = None

    @property
    def exists(self) -> bool:
        return self.data is not None

    def to_dict(self) -> dict[str, Any]:
        return dict(self.data or {})


@dataclass(frozen=True)
class Snapshot:
    """
    Full result delivered to a listener.

    A collection listener gets every document in the collection;
    a document listener gets a single-element list.

    `from_cache` is True when the snapshot was served from a local
    cache and has not been confirmed by the server yet.
    """

    docs: list[DocumentSnapshot] = field(default_factory=list)
    from_cache: bool = False

    @property
    def empty(self) -> bool:
        return not any(doc.exists for doc in self.docs)


SnapshotCallback = Callable[[Snapshot], None]


class Subscription:
    """Handle for a live listener. Unsubscribing twice is a no-op."""

    def __init__(self, cancel: Callable[[], None]):
        self._cancel: Optional[Callable[[], None]] = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def unsubscribe(self) -> None:
        if self._cancel is not None:
            cancel, self._cancel = self._cancel, None
            cancel()


# =============================================================================
# BATCHES
# =============================================================================

# Firestore caps a commit at 500 writes; callers chunk large deletes to this size
MAX_BATCH_WRITES = 500


@dataclass(frozen=True)
class WriteOp:
    kind: str  # "set", "update" or "delete"
    path: str
    data: Optional[dict[str, Any]] = None
    merge: bool = False


class WriteBatch:
    """
    A group of writes committed together.

    Nothing is sent until DocumentStore.commit(); the store applies
    all operations or none of them.
    """

    def __init__(self):
        self._ops: list[WriteOp] = []

    def set(self, path: str, data: dict[str, Any], merge: bool = False) -> "WriteBatch":
        self._ops.append(WriteOp("set", path, dict(data), merge))
        return self

    def update(self, path: str, data: dict[str, Any]) -> "WriteBatch":
        self._ops.append(WriteOp("update", path, dict(data)))
        return self

    def delete(self, path: str) -> "WriteBatch":
        self._ops.append(WriteOp("delete", path))
        return self

    @property
    def ops(self) -> list[WriteOp]:
        return list(self._ops)

    def __len__(self) -> int:
        return len(self._ops)


# =============================================================================
# STORE
# =============================================================================

class DocumentStore(ABC):
    """
    Abstract interface for the remote document database.

    Any backend (Firestore, in-memory, ...) must implement these methods.
    """

    @abstractmethod
    def new_id(self) -> str:
        """Generate a fresh document id without a round trip."""
        pass

    @abstractmethod
    async def get(self, path: str) -> DocumentSnapshot:
        """Read one document. Missing documents come back with data=None."""
        pass

    @abstractmethod
    async def list_documents(
        self,
        collection_path: str,
        order_by: Optional[str] = None,
    ) -> list[DocumentSnapshot]:
        """Read every document of a collection, optionally ordered ascending by a field."""
        pass

    @abstractmethod
    async def set(
        self,
        path: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        """
        Create or overwrite a document.

        With merge=True only the given fields are written.
        """
        pass

    @abstractmethod
    async def update(self, path: str, data: dict[str, Any]) -> None:
        """
        Update fields of an existing document.

        Raises:
            NotFoundError: If the document doesn't exist
        """
        pass

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""
        pass

    def batch(self) -> WriteBatch:
        return WriteBatch()

    @abstractmethod
    async def commit(self, batch: WriteBatch) -> None:
        """
        Apply every write in the batch atomically.

        Raises:
            StorageError: If the batch fails; no write has been applied
        """
        pass

    @abstractmethod
    def listen(
        self,
        path: str,
        callback: SnapshotCallback,
        order_by: Optional[str] = None,
    ) -> Subscription:
        """
        Register a live listener on a collection or a single document.

        The callback receives the full current snapshot once on
        registration and again after every change under the path.
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Document not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class BatchTooLargeError(StorageError):
    """Batch exceeds the backend's limit on writes per commit."""
    pass
