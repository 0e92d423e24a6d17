"""
Ledger Actions

The mutation façade: turns user intents into writes against the
document layout of the active book.

DESIGN DECISION: Two kinds of writes.

1. Single-document writes are fire-and-forget. The call schedules the
   write and returns; the subscriptions bring the result back into the
   session. A failure is logged, audited and shown to the user as a
   toast through the notifier. It is never raised to the caller.
2. Multi-document changes (reorders, type migration, clear-all, store
   deletion, layout migration) are atomic batches. They are awaited and
   raise StorageError on failure, with nothing applied.

Nothing here touches the session's lists directly.
"""

from typing import Callable, Optional

import structlog

from sumbook.audit import AuditLogger
from sumbook.auth import AuthProvider
from sumbook.ledger.layout import (
    STORE_CHILD_COLLECTIONS,
    SplitLayout,
    UnifiedLayout,
    app_users_path,
    categories_path,
    preferences_path,
    store_path,
    stores_path,
)
from sumbook.ledger.session import LedgerSession
from sumbook.models import (
    AppUser,
    AppUserForm,
    AuditEvent,
    AuditEventBuilder,
    Category,
    CategoryForm,
    PreferencesForm,
    StoreForm,
    Transaction,
    TransactionForm,
    TransactionType,
)
from sumbook.storage.interface import (
    MAX_BATCH_WRITES,
    DocumentStore,
    StorageError,
    WriteBatch,
)
from sumbook.transfer import (
    export_filename,
    export_transactions_csv,
    parse_transactions_csv,
)


logger = structlog.get_logger(__name__)

Notifier = Callable[[str, str], None]

FAILURE_TITLE = "Uh oh! Something went wrong."
FAILURE_DESCRIPTIONS = {
    "add_transaction": "Could not save transaction.",
    "update_transaction": "Could not update transaction.",
    "delete_transaction": "Could not delete transaction.",
    "add_category": "Could not save category.",
    "update_category": "Could not save category.",
    "delete_category": "Could not delete category.",
    "add_app_user": "Could not save user.",
    "update_app_user": "Could not save user.",
    "delete_app_user": "Could not delete user.",
    "add_store": "Could not save store.",
    "update_store": "Could not save store.",
    "set_active_store": "Could not switch books.",
    "update_preferences": "Could not save your settings.",
}
DEFAULT_FAILURE_DESCRIPTION = "Could not save your changes."


def _log_notification(title: str, description: str) -> None:
    logger.warning("user_notification", title=title, description=description)


class LedgerActions:
    """
    Mutation façade over a LedgerSession.

    Usage:
        actions = LedgerActions(session, store, auth=provider, notifier=show_toast)
        tx_id = await actions.add_transaction(form)
        await actions.flush()  # only hosts and tests need to wait
    """

    def __init__(
        self,
        session: LedgerSession,
        store: DocumentStore,
        audit_logger: Optional[AuditLogger] = None,
        auth: Optional[AuthProvider] = None,
        notifier: Optional[Notifier] = None,
    ):
        self._session = session
        self._store = store
        self._audit = audit_logger or AuditLogger()
        self._auth = auth
        self.notifier = notifier or _log_notification
        self._session.writes.on_failure = self._on_write_failed

    def _layout(self, store_id: str):
        return self._session.layout_for(store_id)

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    def _require_user(self) -> str:
        if self._session.user is None:
            raise NotSignedInError("Sign in first")
        return self._session.user.uid

    def _require_store(self, store_id: Optional[str] = None) -> str:
        resolved = store_id or self._session.active_store_id
        if not resolved:
            raise NoActiveStoreError("Please select a book first")
        return resolved

    def _fire(self, write, action: str, event: Optional[AuditEvent] = None) -> None:
        """Schedule a single-document write; audit it once it has landed."""
        self._session.writes.spawn(self._write_then_audit(write, event), action)

    async def _write_then_audit(self, write, event: Optional[AuditEvent]) -> None:
        await write
        if event is not None:
            await self._audit.log(event)

    async def _on_write_failed(self, action: str, error: Exception) -> None:
        await self._audit.log(
            AuditEventBuilder.write_failed(
                self._session.uid,
                action,
                str(error),
                store_id=self._session.active_store_id,
            )
        )
        self.notifier(FAILURE_TITLE, FAILURE_DESCRIPTIONS.get(action, DEFAULT_FAILURE_DESCRIPTION))

    async def _commit_chunks(self, batches: list[WriteBatch], action: str) -> None:
        for batch in batches:
            if not len(batch):
                continue
            try:
                await self._store.commit(batch)
            except StorageError as e:
                logger.error("batch_failed", action=action, error=str(e))
                await self._audit.log(
                    AuditEventBuilder.write_failed(
                        self._session.uid, action, str(e), store_id=self._session.active_store_id
                    )
                )
                raise

    def _chunked_deletes(self, paths: list[str], tail: Optional[list[str]] = None) -> list[WriteBatch]:
        """
        Split deletes into batches the backend accepts.

        `tail` paths go into the last batch, after everything else.
        """
        paths = list(paths) + list(tail or [])
        batches = []
        for start in range(0, len(paths), MAX_BATCH_WRITES):
            batch = self._store.batch()
            for path in paths[start:start + MAX_BATCH_WRITES]:
                batch.delete(path)
            batches.append(batch)
        return batches

    async def flush(self) -> None:
        """Wait for every in-flight write (and anything it triggers) to settle."""
        await self._session.flush()

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def add_transaction(
        self,
        form: TransactionForm,
        store_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> str:
        """Add a transaction to the given (default: active) store. Returns its id."""
        uid = self._require_user()
        store_id = self._require_store(store_id)
        if transaction_id is not None and (not transaction_id.strip() or "/" in transaction_id):
            raise LedgerError(f"Invalid transaction id: {transaction_id!r}")
        layout = self._layout(store_id)

        tx = Transaction(
            id=transaction_id or self._store.new_id(),
            user_name=form.user_name,
            amount=form.amount,
            type=form.type,
            category_id=form.category_id,
            date=form.date,
            user_id=uid,
            store_id=store_id,
        )
        path = layout.document_path(uid, store_id, tx.type, tx.id)
        self._fire(
            self._store.set(path, layout.to_document(tx)),
            "add_transaction",
            AuditEventBuilder.transaction_added(uid, store_id, tx.id, tx.type.value, tx.amount),
        )
        return tx.id

    async def update_transaction(
        self,
        transaction_id: str,
        form: TransactionForm,
        original_type: TransactionType,
    ) -> str:
        """
        Edit a transaction. Returns its id afterwards.

        Same type: partial update of userName, amount, date and (for an
        expense with a category given) categoryId.

        Type change: delegated to the layout. In the split layout the
        document moves to the other collection under a new id, in one
        atomic batch that raises StorageError on failure.
        """
        uid = self._require_user()
        store_id = self._require_store()
        original_type = TransactionType(original_type)
        layout = self._layout(store_id)

        updated = Transaction(
            id=transaction_id,
            user_name=form.user_name,
            amount=form.amount,
            type=form.type,
            category_id=form.category_id,
            date=form.date,
            user_id=uid,
            store_id=store_id,
        )

        if updated.type == original_type:
            body = layout.to_document(updated)
            fields = {
                "userName": body["userName"],
                "amount": body["amount"],
                "date": body["date"],
            }
            if updated.is_expense and updated.category_id:
                fields["categoryId"] = updated.category_id
            path = layout.document_path(uid, store_id, original_type, transaction_id)
            self._fire(
                self._store.update(path, fields),
                "update_transaction",
                AuditEventBuilder.transaction_updated(uid, store_id, transaction_id, sorted(fields)),
            )
            return transaction_id

        change = layout.type_change(self._store, uid, transaction_id, original_type, updated)
        if not change.migrated:
            self._fire(
                self._store.commit(change.batch),
                "update_transaction",
                AuditEventBuilder.transaction_updated(
                    uid, store_id, transaction_id, ["type", "userName", "amount", "date", "categoryId"]
                ),
            )
            return change.transaction_id

        await self._commit_chunks([change.batch], "migrate_transaction")
        await self._audit.log(
            AuditEventBuilder.transaction_migrated(
                uid,
                store_id,
                transaction_id,
                change.transaction_id,
                original_type.value,
                updated.type.value,
            )
        )
        return change.transaction_id

    async def delete_transaction(self, transaction_id: str, tx_type: TransactionType) -> None:
        """Delete a transaction. The type selects the collection in the split layout."""
        uid = self._require_user()
        store_id = self._require_store()
        tx_type = TransactionType(tx_type)
        path = self._layout(store_id).document_path(uid, store_id, tx_type, transaction_id)
        self._fire(
            self._store.delete(path),
            "delete_transaction",
            AuditEventBuilder.transaction_deleted(uid, store_id, transaction_id, tx_type.value),
        )

    async def clear_all_transactions(self, password: str) -> int:
        """
        Delete every transaction of the active store.

        The signed-in account must re-enter its password. Up to
        MAX_BATCH_WRITES transactions go in one atomic batch; larger
        books are cleared in several batches.

        Raises:
            AuthError: If the password is rejected
            StorageError: If a batch fails
        """
        uid = self._require_user()
        store_id = self._require_store()
        if self._auth is None:
            raise LedgerError("Re-authentication is not available")

        confirmed = await self._auth.reauthenticate(self._session.user.email, password)
        if confirmed.uid != uid:
            raise LedgerError("Password belongs to a different account")

        paths = []
        for collection in self._layout(store_id).collection_paths(uid, store_id):
            for doc in await self._store.list_documents(collection):
                paths.append(f"{collection}/{doc.id}")

        await self._commit_chunks(self._chunked_deletes(paths), "clear_all_transactions")
        await self._audit.log(AuditEventBuilder.transactions_cleared(uid, store_id, len(paths)))
        return len(paths)

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    async def add_category(self, form: CategoryForm) -> str:
        uid = self._require_user()
        store_id = self._require_store()
        category = Category(
            id=self._store.new_id(),
            name=form.name,
            icon=form.icon,
            user_id=uid,
            store_id=store_id,
            position=len(self._session.categories),
        )
        self._fire(
            self._store.set(f"{categories_path(uid, store_id)}/{category.id}", category.to_document()),
            "add_category",
        )
        return category.id

    async def update_category(self, category_id: str, form: CategoryForm) -> None:
        uid = self._require_user()
        store_id = self._require_store()
        self._fire(
            self._store.update(
                f"{categories_path(uid, store_id)}/{category_id}",
                {"name": form.name, "icon": form.icon.value},
            ),
            "update_category",
        )

    async def delete_category(self, category_id: str) -> None:
        uid = self._require_user()
        store_id = self._require_store()
        self._fire(
            self._store.delete(f"{categories_path(uid, store_id)}/{category_id}"),
            "delete_category",
        )

    async def update_category_order(self, categories: list[Category]) -> None:
        """Rewrite every position to the item's index, in one atomic batch."""
        uid = self._require_user()
        store_id = self._require_store()
        await self._reorder(categories_path(uid, store_id), categories, "update_category_order")

    # -------------------------------------------------------------------------
    # App users (participants)
    # -------------------------------------------------------------------------

    async def add_app_user(self, form: AppUserForm) -> str:
        uid = self._require_user()
        store_id = self._require_store()
        app_user = AppUser(
            id=self._store.new_id(),
            name=form.name,
            user_id=uid,
            store_id=store_id,
            position=len(self._session.app_users),
        )
        self._fire(
            self._store.set(f"{app_users_path(uid, store_id)}/{app_user.id}", app_user.to_document()),
            "add_app_user",
        )
        return app_user.id

    async def update_app_user(self, app_user_id: str, form: AppUserForm) -> None:
        """Rename a participant. Existing transactions keep the name they were entered with."""
        uid = self._require_user()
        store_id = self._require_store()
        self._fire(
            self._store.update(f"{app_users_path(uid, store_id)}/{app_user_id}", {"name": form.name}),
            "update_app_user",
        )

    async def delete_app_user(self, app_user_id: str) -> None:
        uid = self._require_user()
        store_id = self._require_store()
        self._fire(
            self._store.delete(f"{app_users_path(uid, store_id)}/{app_user_id}"),
            "delete_app_user",
        )

    async def update_app_user_order(self, app_users: list[AppUser]) -> None:
        uid = self._require_user()
        store_id = self._require_store()
        await self._reorder(app_users_path(uid, store_id), app_users, "update_app_user_order")

    async def _reorder(self, collection_path: str, items: list, action: str) -> None:
        if not items:
            return
        if len(items) > MAX_BATCH_WRITES:
            raise LedgerError(f"Cannot reorder more than {MAX_BATCH_WRITES} items at once")
        batch = self._store.batch()
        for index, item in enumerate(items):
            batch.update(f"{collection_path}/{item.id}", {"position": index})
        await self._commit_chunks([batch], action)

    # -------------------------------------------------------------------------
    # Stores (books)
    # -------------------------------------------------------------------------

    async def add_store(self, form: StoreForm) -> str:
        """Create a book and make it the active one."""
        uid = self._require_user()
        store_id = self._store.new_id()
        self._fire(
            self._store.set(
                store_path(uid, store_id),
                {"name": form.name, "userId": uid, "layout": self._session.layout.name},
            ),
            "add_store",
            AuditEventBuilder.store_created(uid, store_id, form.name),
        )
        await self.set_active_store(store_id)
        return store_id

    async def update_store(self, store_id: str, form: StoreForm) -> None:
        uid = self._require_user()
        self._fire(
            self._store.update(store_path(uid, store_id), {"name": form.name}),
            "update_store",
        )

    async def delete_store(self, store_id: str) -> int:
        """
        Delete a book together with its transactions, categories and participants.

        Contract: children are deleted first, in batches, and the store
        document goes in the last batch. If a batch fails the store is
        still listed and calling delete_store again finishes the job.
        Returns the number of documents removed.

        Raises:
            LastStoreError: If this is the account's only book (nothing is written)
            LedgerError: If the book doesn't exist
            StorageError: If a batch fails
        """
        uid = self._require_user()

        existing = [doc.id for doc in await self._store.list_documents(stores_path(uid)) if doc.exists]
        if len(existing) <= 1:
            raise LastStoreError("You must have at least one book")
        if store_id not in existing:
            raise LedgerError(f"Unknown book: {store_id}")

        if store_id == self._session.active_store_id:
            remaining = next(sid for sid in existing if sid != store_id)
            await self._store.set(preferences_path(uid), {"activeStoreId": remaining}, merge=True)

        base = store_path(uid, store_id)
        collections = set(STORE_CHILD_COLLECTIONS)
        collections.update(UnifiedLayout().collection_names())
        collections.update(SplitLayout().collection_names())

        children = []
        for name in sorted(collections):
            for doc in await self._store.list_documents(f"{base}/{name}"):
                children.append(f"{base}/{name}/{doc.id}")

        await self._commit_chunks(self._chunked_deletes(children, tail=[base]), "delete_store")
        removed = len(children) + 1
        await self._audit.log(AuditEventBuilder.store_deleted(uid, store_id, removed))
        return removed

    # -------------------------------------------------------------------------
    # Preferences
    # -------------------------------------------------------------------------

    async def set_active_store(self, store_id: str) -> None:
        uid = self._require_user()
        self._fire(
            self._store.set(preferences_path(uid), {"activeStoreId": store_id}, merge=True),
            "set_active_store",
        )

    async def update_preferences(self, form: PreferencesForm) -> None:
        """Merge the given currency and/or address into the preferences document."""
        uid = self._require_user()
        data = form.model_dump(exclude_none=True)
        if not data:
            return
        self._fire(
            self._store.set(preferences_path(uid), data, merge=True),
            "update_preferences",
        )

    # -------------------------------------------------------------------------
    # CSV
    # -------------------------------------------------------------------------

    def export_csv(self) -> tuple[str, str]:
        """Returns (filename, csv text) for the active store."""
        store = self._session.active_store
        if store is None:
            raise NoActiveStoreError("Please select a book before exporting data")
        text = export_transactions_csv(self._session.transactions, self._session.categories)
        return export_filename(store.name), text

    async def import_csv(self, text: str) -> int:
        """
        Add the transactions of a CSV export to the active store.

        Returns the number of transactions added. Rows already present
        (by id) are skipped.

        Raises:
            CsvFormatError: If the header lacks a required column
        """
        uid = self._require_user()
        store_id = self._require_store()

        result = parse_transactions_csv(
            text,
            existing_ids=[tx.id for tx in self._session.transactions],
            categories=self._session.categories,
        )
        for row in result.rows:
            await self.add_transaction(row.form, store_id=store_id, transaction_id=row.id)

        await self._audit.log(
            AuditEventBuilder.transactions_imported(uid, store_id, len(result.rows), result.skipped)
        )
        return len(result.rows)

    # -------------------------------------------------------------------------
    # Layout migration
    # -------------------------------------------------------------------------

    async def migrate_to_unified_layout(self, store_id: Optional[str] = None) -> int:
        """
        Move a store's incomes/expenses into the unified collection, keeping ids.

        Each transaction is copied and its old document deleted in the
        same batch, so it exists exactly once at every point. The last
        batch also records the unified layout on the store document;
        other books keep theirs.
        Returns the number of transactions moved.
        """
        uid = self._require_user()
        store_id = self._require_store(store_id)
        split, unified = SplitLayout(), UnifiedLayout()

        moves = []
        for collection in split.collection_paths(uid, store_id):
            for doc in await self._store.list_documents(collection):
                tx = split.parse(collection, doc)
                moves.append((
                    f"{collection}/{doc.id}",
                    unified.document_path(uid, store_id, tx.type, tx.id),
                    unified.to_document(tx),
                ))

        # One write per batch is left for the store document
        per_batch = (MAX_BATCH_WRITES - 1) // 2
        batches = []
        for start in range(0, len(moves), per_batch):
            batch = self._store.batch()
            for old_path, new_path, body in moves[start:start + per_batch]:
                batch.set(new_path, body)
                batch.delete(old_path)
            batches.append(batch)
        if not batches:
            batches.append(self._store.batch())
        batches[-1].update(store_path(uid, store_id), {"layout": unified.name})

        await self._commit_chunks(batches, "migrate_layout")
        await self._audit.log(AuditEventBuilder.layout_migrated(uid, store_id, len(moves)))
        return len(moves)


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class NotSignedInError(LedgerError):
    """No account is signed in."""
    pass


class NoActiveStoreError(LedgerError):
    """The operation needs an active book and there is none."""
    pass


class LastStoreError(LedgerError):
    """The account's only book can't be deleted."""
    pass
