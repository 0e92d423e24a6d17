"""
Ledger Session

Live local mirror of one account's books.

DESIGN DECISION: The session is an explicit object with a lifecycle
(`await init(user)` / `teardown()`) that is handed to whoever needs
it. There is no module-level state.

How it stays consistent:
- Every subscription callback replaces its local list from the
  snapshot it was given (last snapshot wins, no patching)
- Local lists are only ever replaced by callbacks; writes made by
  LedgerActions come back through the subscriptions
- When the resolved active store changes, every store-scoped
  subscription is torn down and re-attached against the new store
- Callbacks from a torn-down subscription that were already queued
  are recognised by a generation counter and dropped
- Each store is read with the layout recorded on its document; stores
  without one use the configured layout. A change to the active
  store's recorded layout re-attaches its subscriptions

Self-healing rules (not errors, logged at info level):
- No stores in a server-confirmed snapshot: create the default store
  and make it active
- Active store preference points at a missing store: fall back to the
  first store and persist that choice
- No participants in a server-confirmed snapshot and the account has
  a display name: seed one participant at position 0

Each rule fires once and re-arms only after its write has been seen
in a later snapshot.
"""

from functools import partial
from typing import Callable, Optional

import structlog
from pydantic import ValidationError

from sumbook.audit import AuditLogger
from sumbook.config import AppSettings
from sumbook.ledger.aggregation import aggregate, sort_by_date_desc
from sumbook.ledger.layout import (
    TransactionLayout,
    UnifiedLayout,
    app_users_path,
    get_layout,
    categories_path,
    preferences_path,
    store_path,
    stores_path,
)
from sumbook.ledger.pending import PendingWrites
from sumbook.models import (
    AppUser,
    AuditEventBuilder,
    AuthUser,
    Category,
    FinancialSummary,
    Store,
    Transaction,
    UserPreferences,
)
from sumbook.storage.interface import DocumentSnapshot, DocumentStore, Snapshot, Subscription


logger = structlog.get_logger(__name__)

Listener = Callable[[], None]


class LedgerSession:
    """
    Reactive state for the signed-in account.

    Exposes: user, stores, preferences, active_store, transactions,
    categories, app_users, loading and financial_summary.
    """

    def __init__(
        self,
        store: DocumentStore,
        layout: Optional[TransactionLayout] = None,
        audit_logger: Optional[AuditLogger] = None,
        default_store_name: str = "Personal",
        default_currency: str = "USD",
    ):
        self._store = store
        self.layout = layout or UnifiedLayout()
        self._audit = audit_logger or AuditLogger()
        self.default_store_name = default_store_name
        self.default_currency = default_currency
        self.writes = PendingWrites()

        self._listeners: list[Listener] = []
        self._user_subs: list[Subscription] = []
        self._store_subs: list[Subscription] = []
        self._session_generation = 0
        self._store_generation = 0

        self._summary_inputs: Optional[tuple[list, list]] = None
        self._summary: Optional[FinancialSummary] = None

        self._reset_state()

    @classmethod
    def from_settings(
        cls,
        store: DocumentStore,
        settings: AppSettings,
        layout: Optional[TransactionLayout] = None,
        audit_logger: Optional[AuditLogger] = None,
    ) -> "LedgerSession":
        return cls(
            store,
            layout=layout,
            audit_logger=audit_logger,
            default_store_name=settings.default_store_name,
            default_currency=settings.default_currency,
        )

    def _reset_state(self) -> None:
        self.user: Optional[AuthUser] = None
        self.stores: list[Store] = []
        self.preferences = UserPreferences(currency=self.default_currency)
        self.transactions: list[Transaction] = []
        self.categories: list[Category] = []
        self.app_users: list[AppUser] = []

        self._active_store_id: Optional[str] = None
        self._active_layout: TransactionLayout = self.layout
        self._transactions_by_collection: dict[str, list[Transaction]] = {}
        self._stores_loaded = False
        self._preferences_loaded = False
        self._awaiting_store_snapshots: set[str] = set()

        # Self-healing guards
        self._creating_default_store = False
        self._fallback_store_id: Optional[str] = None
        self._seeded_stores: set[str] = set()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def init(self, user: AuthUser) -> None:
        """Start mirroring the given account. Re-initialising tears down first."""
        if self.user is not None:
            self.teardown()

        self.user = user
        self._session_generation += 1
        generation = self._session_generation
        logger.info("session_started", user_id=user.uid)

        self._user_subs.append(
            self._store.listen(
                preferences_path(user.uid),
                partial(self._on_preferences, generation),
            )
        )
        self._user_subs.append(
            self._store.listen(
                stores_path(user.uid),
                partial(self._on_stores, generation),
            )
        )
        self._changed()

    def teardown(self) -> None:
        """Cancel every subscription and reset to the signed-out state."""
        for sub in self._user_subs + self._store_subs:
            sub.unsubscribe()
        self._user_subs = []
        self._store_subs = []
        self._session_generation += 1
        self._store_generation += 1

        if self.user is not None:
            logger.info("session_ended", user_id=self.user.uid)
        self._reset_state()
        self._changed()

    async def flush(self) -> None:
        """Wait for every in-flight background write."""
        await self.writes.drain()

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def uid(self) -> Optional[str]:
        return self.user.uid if self.user else None

    @property
    def active_store_id(self) -> Optional[str]:
        return self._active_store_id

    @property
    def active_store(self) -> Optional[Store]:
        for store in self.stores:
            if store.id == self._active_store_id:
                return store
        return None

    @property
    def active_layout(self) -> TransactionLayout:
        """Layout the active store's subscriptions are attached with."""
        return self._active_layout

    def layout_for(self, store_id: Optional[str]) -> TransactionLayout:
        """Layout a store's transactions are stored in."""
        for store in self.stores:
            if store.id == store_id and store.layout:
                if store.layout == self.layout.name:
                    return self.layout
                try:
                    return get_layout(store.layout)
                except ValueError:
                    logger.warning("unknown_store_layout", store_id=store_id, layout=store.layout)
        return self.layout

    @property
    def loading(self) -> bool:
        if self.user is None:
            return False
        return (
            not self._stores_loaded
            or not self._preferences_loaded
            or bool(self._awaiting_store_snapshots)
        )

    @property
    def financial_summary(self) -> FinancialSummary:
        """Summary of the active store, recomputed only when an input list is replaced."""
        inputs = self._summary_inputs
        if (
            self._summary is None
            or inputs is None
            or inputs[0] is not self.transactions
            or inputs[1] is not self.app_users
        ):
            self._summary = aggregate(self.transactions, self.app_users)
            self._summary_inputs = (self.transactions, self.app_users)
        return self._summary

    def recent_transactions(self, limit: Optional[int] = None) -> list[Transaction]:
        ordered = sort_by_date_desc(self.transactions)
        return ordered[:limit] if limit is not None else ordered

    def find_transaction(self, transaction_id: str) -> Optional[Transaction]:
        for tx in self.transactions:
            if tx.id == transaction_id:
                return tx
        return None

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call `listener` after every state change. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _changed(self) -> None:
        for listener in list(self._listeners):
            listener()

    # -------------------------------------------------------------------------
    # User-scoped callbacks
    # -------------------------------------------------------------------------

    def _on_preferences(self, generation: int, snapshot: Snapshot) -> None:
        if generation != self._session_generation:
            return

        doc = snapshot.docs[0] if snapshot.docs else None
        preferences = UserPreferences(currency=self.default_currency)
        if doc is not None and doc.exists:
            data = {"currency": self.default_currency, **doc.to_dict()}
            try:
                preferences = UserPreferences.model_validate(data)
            except ValidationError as e:
                logger.warning("malformed_preferences", user_id=self.uid, error=str(e))

        self.preferences = preferences
        self._preferences_loaded = True
        if preferences.active_store_id == self._fallback_store_id:
            self._fallback_store_id = None

        self._resolve_active_store(persist_fallback=False)
        self._changed()

    def _on_stores(self, generation: int, snapshot: Snapshot) -> None:
        if generation != self._session_generation:
            return

        self.stores = self._parse(snapshot, "store", Store.from_document)
        self._stores_loaded = True

        if self.stores:
            self._creating_default_store = False
        elif not snapshot.from_cache:
            self._create_default_store()

        self._resolve_active_store(persist_fallback=True)
        active = self._active_store_id
        if active is not None and self.layout_for(active).name != self._active_layout.name:
            self._switch_store(active)
        self._changed()

    def _create_default_store(self) -> None:
        if self._creating_default_store or self.user is None:
            return
        self._creating_default_store = True

        uid = self.user.uid
        store_id = self._store.new_id()
        default = Store(id=store_id, name=self.default_store_name, user_id=uid, layout=self.layout.name)
        batch = self._store.batch()
        batch.set(store_path(uid, store_id), default.to_document())
        batch.set(preferences_path(uid), {"activeStoreId": store_id}, merge=True)

        logger.info("creating_default_store", user_id=uid, store_id=store_id)
        self.writes.spawn(self._commit_healing(batch, uid, store_id), "create_default_store")

    async def _commit_healing(self, batch, uid: str, store_id: str) -> None:
        try:
            await self._store.commit(batch)
        except Exception:
            self._creating_default_store = False
            raise
        await self._audit.log(
            AuditEventBuilder.store_created(uid, store_id, self.default_store_name, automatic=True)
        )

    def _resolve_active_store(self, persist_fallback: bool) -> None:
        """
        Pick the active store from the preference and the store list.

        The fallback is only persisted from the stores callback: a
        preference can legitimately name a store whose snapshot has not
        arrived yet.
        """
        if not (self._stores_loaded and self._preferences_loaded):
            return

        wanted = self.preferences.active_store_id
        ids = [store.id for store in self.stores]

        if wanted in ids:
            resolved = wanted
        elif ids:
            resolved = ids[0]
            if persist_fallback and self._fallback_store_id != resolved:
                self._persist_fallback(wanted, resolved)
        else:
            resolved = None

        if resolved != self._active_store_id:
            self._switch_store(resolved)

    def _persist_fallback(self, missing: Optional[str], fallback: str) -> None:
        uid = self.user.uid
        self._fallback_store_id = fallback
        logger.info(
            "active_store_fallback",
            user_id=uid,
            missing_store_id=missing,
            fallback_store_id=fallback,
        )
        self.writes.spawn(
            self._store.set(preferences_path(uid), {"activeStoreId": fallback}, merge=True),
            "persist_active_store",
        )
        if missing is not None:
            self.writes.spawn(
                self._audit.log(AuditEventBuilder.active_store_fallback(uid, missing, fallback)),
                "audit",
            )

    # -------------------------------------------------------------------------
    # Store-scoped subscriptions
    # -------------------------------------------------------------------------

    def _switch_store(self, store_id: Optional[str]) -> None:
        for sub in self._store_subs:
            sub.unsubscribe()
        self._store_subs = []
        self._store_generation += 1
        generation = self._store_generation

        self._active_store_id = store_id
        self._active_layout = self.layout_for(store_id)
        self.transactions = []
        self.categories = []
        self.app_users = []
        self._transactions_by_collection = {}
        self._awaiting_store_snapshots = set()

        if store_id is None or self.user is None:
            return

        uid = self.user.uid
        logger.info(
            "active_store_changed",
            user_id=uid,
            store_id=store_id,
            layout=self._active_layout.name,
        )

        watched = [
            (path, partial(self._on_transactions, generation, path), None)
            for path in self._active_layout.collection_paths(uid, store_id)
        ]
        watched.append(
            (categories_path(uid, store_id), partial(self._on_categories, generation), "position")
        )
        watched.append(
            (app_users_path(uid, store_id), partial(self._on_app_users, generation, store_id), "position")
        )

        self._awaiting_store_snapshots = {path for path, _, _ in watched}
        for path, callback, order_by in watched:
            self._store_subs.append(self._store.listen(path, callback, order_by=order_by))

    def _on_transactions(self, generation: int, path: str, snapshot: Snapshot) -> None:
        if generation != self._store_generation:
            return

        self._transactions_by_collection[path] = self._parse(
            snapshot,
            "transaction",
            partial(self._parse_transaction, path),
        )
        self.transactions = [
            tx
            for collection in self._active_layout.collection_paths(self.user.uid, self._active_store_id)
            for tx in self._transactions_by_collection.get(collection, [])
        ]
        self._awaiting_store_snapshots.discard(path)
        self._changed()

    def _parse_transaction(self, path: str, doc_id: str, data: dict) -> Transaction:
        return self._active_layout.parse(path, DocumentSnapshot(id=doc_id, data=data))

    def _on_categories(self, generation: int, snapshot: Snapshot) -> None:
        if generation != self._store_generation:
            return

        self.categories = self._parse(snapshot, "category", Category.from_document)
        self._awaiting_store_snapshots.discard(categories_path(self.user.uid, self._active_store_id))
        self._changed()

    def _on_app_users(self, generation: int, store_id: str, snapshot: Snapshot) -> None:
        if generation != self._store_generation:
            return

        self.app_users = self._parse(snapshot, "app_user", AppUser.from_document)
        self._awaiting_store_snapshots.discard(app_users_path(self.user.uid, store_id))

        if self.app_users:
            self._seeded_stores.discard(store_id)
        elif not snapshot.from_cache:
            self._seed_app_user(store_id)

        self._changed()

    def _seed_app_user(self, store_id: str) -> None:
        name = (self.user.display_name or "").strip()
        if not name or store_id in self._seeded_stores:
            return
        self._seeded_stores.add(store_id)

        uid = self.user.uid
        app_user = AppUser(
            id=self._store.new_id(),
            name=name,
            user_id=uid,
            store_id=store_id,
            position=0,
        )
        logger.info("seeding_app_user", user_id=uid, store_id=store_id, name=name)
        self.writes.spawn(self._write_seed(app_user), "seed_app_user")

    async def _write_seed(self, app_user: AppUser) -> None:
        try:
            await self._store.set(
                f"{app_users_path(app_user.user_id, app_user.store_id)}/{app_user.id}",
                app_user.to_document(),
            )
        except Exception:
            self._seeded_stores.discard(app_user.store_id)
            raise
        await self._audit.log(
            AuditEventBuilder.default_user_seeded(
                app_user.user_id, app_user.store_id, app_user.id, app_user.name
            )
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _parse(self, snapshot: Snapshot, kind: str, build) -> list:
        """Convert every existing document, skipping ones that fail validation."""
        items = []
        for doc in snapshot.docs:
            if not doc.exists:
                continue
            try:
                items.append(build(doc.id, doc.to_dict()))
            except (ValidationError, ValueError) as e:
                logger.warning(
                    "skipping_malformed_document",
                    kind=kind,
                    document_id=doc.id,
                    error=str(e),
                )
        return items
