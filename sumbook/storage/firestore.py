"""
Firestore Storage Implementation

DESIGN DECISION: Firestore (through the Firebase Admin SDK) is the
production document store because:
1. Its hierarchical collections map 1:1 onto our path layout
2. Live listeners push every committed change to the app
3. Batched writes give us all-or-nothing multi-document updates

TRADEOFFS:
- The Python client is blocking; calls run in a worker thread so the
  event loop keeps serving listeners while a write is in flight
- Watch callbacks arrive on a background thread; they are handed to
  the event loop that opened the listener, so ledger state is only
  ever touched from that loop
- A batch holds at most 500 writes
- The store connects when it is constructed; a missing or broken
  credentials file fails app setup instead of the first read

The implementation follows the abstract interface, so the ledger
layer never imports anything from here.
"""

import asyncio
from typing import Any, Optional

import firebase_admin
import structlog
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions
from tenacity import retry, stop_after_attempt, wait_exponential

from sumbook.config import FirebaseSettings, get_settings
from sumbook.storage.interface import (
    BatchTooLargeError,
    ConnectionError,
    DocumentSnapshot,
    DocumentStore,
    MAX_BATCH_WRITES,
    NotFoundError,
    Snapshot,
    SnapshotCallback,
    StorageError,
    Subscription,
    WriteBatch,
    is_document_path,
    split_path,
)


logger = structlog.get_logger(__name__)


class FirestoreClient:
    """
    Low-level Firestore client wrapper.

    Handles Firebase app initialization and retries the connection step.
    """

    def __init__(self, settings: Optional[FirebaseSettings] = None):
        self._client = None
        self._settings = settings or get_settings().firebase

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self):
        """
        Establish the Firestore client.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                try:
                    app = firebase_admin.get_app()
                except ValueError:
                    options = {}
                    if self._settings.project_id:
                        options["projectId"] = self._settings.project_id
                    app = firebase_admin.initialize_app(
                        credentials.Certificate(self._settings.credentials_path),
                        options or None,
                    )
                self._client = firestore.client(app)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Firebase credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Firestore: {e}")

        return self._client


class FirestoreDocumentStore(DocumentStore):
    """Firestore implementation of the document store."""

    def __init__(self, client: Optional[FirestoreClient] = None):
        self._client = client or FirestoreClient()
        # Connected here, on the caller's thread, so a retry never sleeps on the event loop
        self._db = self._client.connect()

    def _ref(self, path: str):
        if is_document_path(path):
            return self._db.document(path)
        return self._db.collection(path)

    @staticmethod
    def _to_snapshot(doc) -> DocumentSnapshot:
        return DocumentSnapshot(
            id=doc.id,
            data=doc.to_dict() if doc.exists else None,
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def new_id(self) -> str:
        # Auto ids are generated client-side; no request is made
        return self._db.collection("_ids").document().id

    async def get(self, path: str) -> DocumentSnapshot:
        try:
            doc = await asyncio.to_thread(self._db.document(path).get)
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e
        return self._to_snapshot(doc)

    async def list_documents(
        self,
        collection_path: str,
        order_by: Optional[str] = None,
    ) -> list[DocumentSnapshot]:
        query = self._db.collection(collection_path)
        if order_by:
            query = query.order_by(order_by)
        try:
            docs = await asyncio.to_thread(lambda: list(query.stream()))
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Failed to list {collection_path}: {e}") from e
        return [self._to_snapshot(doc) for doc in docs]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def set(
        self,
        path: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        try:
            await asyncio.to_thread(self._db.document(path).set, data, merge=merge)
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e

    async def update(self, path: str, data: dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._db.document(path).update, data)
        except google_exceptions.NotFound as e:
            raise NotFoundError(f"No document to update: {path}") from e
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Failed to update {path}: {e}") from e

    async def delete(self, path: str) -> None:
        try:
            await asyncio.to_thread(self._db.document(path).delete)
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Failed to delete {path}: {e}") from e

    async def commit(self, batch: WriteBatch) -> None:
        if len(batch) > MAX_BATCH_WRITES:
            raise BatchTooLargeError(
                f"Batch has {len(batch)} writes; Firestore allows {MAX_BATCH_WRITES}"
            )

        fs_batch = self._db.batch()
        for op in batch.ops:
            ref = self._db.document(op.path)
            if op.kind == "set":
                fs_batch.set(ref, op.data, merge=op.merge)
            elif op.kind == "update":
                fs_batch.update(ref, op.data)
            elif op.kind == "delete":
                fs_batch.delete(ref)
            else:
                raise ValueError(f"Unknown write kind: {op.kind}")

        try:
            await asyncio.to_thread(fs_batch.commit)
        except google_exceptions.NotFound as e:
            raise NotFoundError(f"Batch references a missing document: {e}") from e
        except google_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Failed to commit batch: {e}") from e

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def listen(
        self,
        path: str,
        callback: SnapshotCallback,
        order_by: Optional[str] = None,
    ) -> Subscription:
        """
        Attach a Firestore watch.

        Must be called from the event loop that owns the ledger state.
        """
        loop = asyncio.get_running_loop()
        document = is_document_path(path)
        doc_id = split_path(path)[-1]

        def on_snapshot(docs, changes, read_time) -> None:
            converted = [self._to_snapshot(doc) for doc in docs]
            if document and not any(doc.exists for doc in converted):
                converted = [DocumentSnapshot(id=doc_id, data=None)]
            # Watch results are always server-confirmed in the Python client
            loop.call_soon_threadsafe(callback, Snapshot(docs=converted, from_cache=False))

        ref = self._ref(path)
        if not document and order_by:
            ref = ref.order_by(order_by)
        watch = ref.on_snapshot(on_snapshot)
        logger.debug("listener_attached", path=path, order_by=order_by)

        return Subscription(watch.unsubscribe)
