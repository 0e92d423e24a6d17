"""
In-Memory Document Store

A process-local implementation of the document store interface.
Used for tests and for running the app without a Firebase project.

Semantics follow Firestore where the ledger depends on them:
- Unordered collection reads come back sorted by document id
- Ordered reads skip documents that lack the ordering field
- A batch is validated in full before any write is applied
- Listeners receive a complete snapshot after every applied change

`offline = True` simulates a client without a server connection:
snapshots are still delivered but flagged `from_cache`.
"""

import copy
import secrets
import string
from typing import Any, Optional

import structlog

from sumbook.storage.interface import (
    DocumentSnapshot,
    DocumentStore,
    NotFoundError,
    Snapshot,
    SnapshotCallback,
    Subscription,
    WriteBatch,
    WriteOp,
    is_document_path,
    split_path,
)


logger = structlog.get_logger(__name__)

_ID_ALPHABET = string.ascii_letters + string.digits


def _parent(path: str) -> str:
    return "/".join(split_path(path)[:-1])


def _doc_id(path: str) -> str:
    return split_path(path)[-1]


class _Listener:
    def __init__(
        self,
        path: str,
        callback: SnapshotCallback,
        order_by: Optional[str],
    ):
        self.path = path
        self.callback = callback
        self.order_by = order_by
        self.is_document = is_document_path(path)

    def watches(self, doc_path: str) -> bool:
        if self.is_document:
            return doc_path == self.path
        return _parent(doc_path) == self.path


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed document store with synchronous listener fan-out."""

    def __init__(self, offline: bool = False):
        self._docs: dict[str, dict[str, Any]] = {}
        self._listeners: list[_Listener] = []
        self.offline = offline
        self.commit_count = 0

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def new_id(self) -> str:
        return "".join(secrets.choice(_ID_ALPHABET) for _ in range(20))

    async def get(self, path: str) -> DocumentSnapshot:
        return self._read_document(path)

    async def list_documents(
        self,
        collection_path: str,
        order_by: Optional[str] = None,
    ) -> list[DocumentSnapshot]:
        return self._read_collection(collection_path, order_by)

    def _read_document(self, path: str) -> DocumentSnapshot:
        if not is_document_path(path):
            raise ValueError(f"Not a document path: {path}")
        data = self._docs.get(path)
        return DocumentSnapshot(
            id=_doc_id(path),
            data=copy.deepcopy(data) if data is not None else None,
        )

    def _read_collection(
        self,
        collection_path: str,
        order_by: Optional[str] = None,
    ) -> list[DocumentSnapshot]:
        if is_document_path(collection_path):
            raise ValueError(f"Not a collection path: {collection_path}")
        children = [
            (path, data)
            for path, data in self._docs.items()
            if _parent(path) == collection_path
        ]
        if order_by:
            children = [(p, d) for p, d in children if order_by in d]
            children.sort(key=lambda item: (item[1][order_by], _doc_id(item[0])))
        else:
            children.sort(key=lambda item: _doc_id(item[0]))
        return [
            DocumentSnapshot(id=_doc_id(path), data=copy.deepcopy(data))
            for path, data in children
        ]

    def snapshot_for(self, path: str, order_by: Optional[str] = None) -> Snapshot:
        """Current snapshot of a collection or document, as a listener would see it."""
        if is_document_path(path):
            docs = [self._read_document(path)]
        else:
            docs = self._read_collection(path, order_by)
        return Snapshot(docs=docs, from_cache=self.offline)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def set(
        self,
        path: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        self._apply([WriteOp("set", path, dict(data), merge)])

    async def update(self, path: str, data: dict[str, Any]) -> None:
        self._apply([WriteOp("update", path, dict(data))])

    async def delete(self, path: str) -> None:
        self._apply([WriteOp("delete", path)])

    async def commit(self, batch: WriteBatch) -> None:
        self._apply(batch.ops)

    def _apply(self, ops: list[WriteOp]) -> None:
        """Stage every op against a scratch view, then swap it in all at once."""
        staged: dict[str, Optional[dict[str, Any]]] = {}

        for op in ops:
            if not is_document_path(op.path):
                raise ValueError(f"Not a document path: {op.path}")
            current = staged[op.path] if op.path in staged else self._docs.get(op.path)

            if op.kind == "set":
                base = dict(current) if (op.merge and current is not None) else {}
                base.update(copy.deepcopy(op.data or {}))
                staged[op.path] = base
            elif op.kind == "update":
                if current is None:
                    raise NotFoundError(f"No document to update: {op.path}")
                updated = dict(current)
                updated.update(copy.deepcopy(op.data or {}))
                staged[op.path] = updated
            elif op.kind == "delete":
                staged[op.path] = None
            else:
                raise ValueError(f"Unknown write kind: {op.kind}")

        for path, data in staged.items():
            if data is None:
                self._docs.pop(path, None)
            else:
                self._docs[path] = data
        self.commit_count += 1

        self._notify(list(staged))

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def listen(
        self,
        path: str,
        callback: SnapshotCallback,
        order_by: Optional[str] = None,
    ) -> Subscription:
        split_path(path)
        listener = _Listener(path, callback, order_by)
        self._listeners.append(listener)
        logger.debug("listener_attached", path=path, order_by=order_by)

        def cancel() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
                logger.debug("listener_detached", path=path)

        subscription = Subscription(cancel)
        callback(self.snapshot_for(path, order_by))
        return subscription

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def go_online(self) -> None:
        """Leave offline mode and push server-confirmed snapshots to every listener."""
        self.offline = False
        for listener in list(self._listeners):
            if listener in self._listeners:
                listener.callback(self.snapshot_for(listener.path, listener.order_by))

    def _notify(self, changed_paths: list[str]) -> None:
        for listener in list(self._listeners):
            # A previous callback may have detached this listener
            if listener not in self._listeners:
                continue
            if any(listener.watches(path) for path in changed_paths):
                listener.callback(self.snapshot_for(listener.path, listener.order_by))
