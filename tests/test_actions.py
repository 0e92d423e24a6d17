"""
Tests for the ledger actions.

Test strategy:
1. Single-document writes return immediately and show up through
   the subscriptions once they land
2. Batched changes are atomic: on failure nothing is applied
3. Destructive operations are guarded (last book, password re-entry)
4. Background failures reach the user as a notification
"""

import asyncio

import pytest

from sumbook.auth import AuthError, AuthErrorCode
from sumbook.ledger import (
    LastStoreError,
    LedgerError,
    NoActiveStoreError,
    NotSignedInError,
    SplitLayout,
    UnifiedLayout,
)
from sumbook.ledger.actions import FAILURE_TITLE
from sumbook.models import (
    AppUserForm,
    AuditEventType,
    AuthUser,
    CategoryForm,
    PreferencesForm,
    StoreForm,
    TransactionType,
)
from sumbook.storage import InMemoryDocumentStore, StorageError


class CrashingStore(InMemoryDocumentStore):
    """Loses the connection on every batch commit once `crash` is set."""

    crash = False

    async def commit(self, batch):
        if self.crash:
            raise StorageError("connection lost")
        await super().commit(batch)


class RejectingStore(InMemoryDocumentStore):
    """Rejects single-document writes once `reject` is set."""

    reject = False

    async def set(self, path, data, merge=False):
        if self.reject:
            raise StorageError("permission denied")
        await super().set(path, data, merge)


class TestTransactions:
    """Tests for adding, editing and deleting transactions."""

    def test_add_is_fire_and_forget(self, make_ledger, make_form):
        """Test that the mirror only changes once the write has landed."""
        async def scenario():
            ledger = await make_ledger().start()
            tx_id = await ledger.actions.add_transaction(make_form(40))
            assert ledger.session.find_transaction(tx_id) is None

            await ledger.actions.flush()
            return ledger, tx_id

        ledger, tx_id = asyncio.run(scenario())
        tx = ledger.session.find_transaction(tx_id)
        assert tx.amount == 40
        assert tx.user_id == "u1"
        assert tx.store_id == ledger.session.active_store_id
        assert len(ledger.audit.events_of(AuditEventType.TRANSACTION_ADDED.value)) == 1

    def test_update_same_type(self, make_ledger, make_form):
        """Test a partial update that keeps the type."""
        async def scenario():
            ledger = await make_ledger().start()
            tx_id = await ledger.actions.add_transaction(make_form(40, category_id="food"))
            await ledger.actions.flush()

            new_id = await ledger.actions.update_transaction(
                tx_id, make_form(55, user_name="Bo", day=2), TransactionType.EXPENSE
            )
            await ledger.actions.flush()
            return ledger.session, tx_id, new_id

        session, tx_id, new_id = asyncio.run(scenario())
        assert new_id == tx_id
        tx = session.find_transaction(tx_id)
        assert tx.amount == 55
        assert tx.user_name == "Bo"
        assert tx.date.day == 2
        # No category given: the stored one is kept
        assert tx.category_id == "food"

    def test_unified_type_change_keeps_id(self, make_ledger, make_form):
        """Test that changing the type in the unified layout is an in-place update."""
        async def scenario():
            ledger = await make_ledger(layout=UnifiedLayout()).start()
            tx_id = await ledger.actions.add_transaction(make_form(40, category_id="food"))
            await ledger.actions.flush()

            new_id = await ledger.actions.update_transaction(
                tx_id, make_form(40, "income"), TransactionType.EXPENSE
            )
            await ledger.actions.flush()
            return ledger.session, tx_id, new_id

        session, tx_id, new_id = asyncio.run(scenario())
        assert new_id == tx_id
        assert len(session.transactions) == 1
        tx = session.transactions[0]
        assert tx.type == TransactionType.INCOME
        assert tx.category_id is None

    def test_split_type_change_moves_document(self, make_ledger, make_form):
        """Test that a type change in the split layout moves the document under a new id."""
        async def scenario():
            ledger = await make_ledger(layout=SplitLayout()).start()
            tx_id = await ledger.actions.add_transaction(make_form(40))
            await ledger.actions.flush()

            new_id = await ledger.actions.update_transaction(
                tx_id, make_form(40, "income"), TransactionType.EXPENSE
            )
            base = f"users/u1/stores/{ledger.session.active_store_id}"
            incomes = await ledger.store.list_documents(f"{base}/incomes")
            expenses = await ledger.store.list_documents(f"{base}/expenses")
            return ledger, tx_id, new_id, incomes, expenses

        ledger, tx_id, new_id, incomes, expenses = asyncio.run(scenario())
        assert new_id != tx_id
        assert [d.id for d in incomes] == [new_id]
        assert expenses == []
        assert [tx.id for tx in ledger.session.transactions] == [new_id]
        assert ledger.session.transactions[0].type == TransactionType.INCOME
        assert len(ledger.audit.events_of(AuditEventType.TRANSACTION_MIGRATED.value)) == 1

    def test_split_type_change_failure_keeps_original(self, make_ledger, make_form):
        """Test that a failed move leaves exactly the original document."""
        async def scenario():
            store = CrashingStore()
            ledger = await make_ledger(layout=SplitLayout(), store=store).start()
            tx_id = await ledger.actions.add_transaction(make_form(40))
            await ledger.actions.flush()

            store.crash = True
            with pytest.raises(StorageError):
                await ledger.actions.update_transaction(
                    tx_id, make_form(40, "income"), TransactionType.EXPENSE
                )
            base = f"users/u1/stores/{ledger.session.active_store_id}"
            incomes = await store.list_documents(f"{base}/incomes")
            expenses = await store.list_documents(f"{base}/expenses")
            return ledger, tx_id, incomes, expenses

        ledger, tx_id, incomes, expenses = asyncio.run(scenario())
        assert incomes == []
        assert [d.id for d in expenses] == [tx_id]
        assert len(ledger.audit.events_of(AuditEventType.WRITE_FAILED.value)) == 1

    def test_delete(self, make_ledger, make_form):
        """Test deleting a transaction."""
        async def scenario():
            ledger = await make_ledger().start()
            tx_id = await ledger.actions.add_transaction(make_form(40))
            await ledger.actions.flush()
            await ledger.actions.delete_transaction(tx_id, TransactionType.EXPENSE)
            await ledger.actions.flush()
            return ledger.session

        session = asyncio.run(scenario())
        assert session.transactions == []

    def test_requires_session(self, make_ledger, make_form):
        """Test that writes need a signed-in account and an active book."""
        ledger = make_ledger()
        with pytest.raises(NotSignedInError):
            asyncio.run(ledger.actions.add_transaction(make_form(40)))

        ledger.session.user = AuthUser(uid="u1", email="ana@example.com")
        with pytest.raises(NoActiveStoreError):
            asyncio.run(ledger.actions.add_transaction(make_form(40)))

    def test_explicit_id_must_be_one_segment(self, make_ledger, make_form):
        """Test that a given id containing a slash is refused before anything is written."""
        async def scenario():
            ledger = await make_ledger().start()
            with pytest.raises(LedgerError, match="Invalid transaction id"):
                await ledger.actions.add_transaction(make_form(5), transaction_id="a/b")
            with pytest.raises(LedgerError, match="Invalid transaction id"):
                await ledger.actions.add_transaction(make_form(5), transaction_id="  ")
            await ledger.actions.flush()
            return ledger.session

        session = asyncio.run(scenario())
        assert session.transactions == []

    def test_background_failure_notifies(self, make_ledger, make_form):
        """Test that a failed background write becomes a notification, not an exception."""
        async def scenario():
            store = RejectingStore()
            ledger = await make_ledger(store=store).start()
            store.reject = True
            await ledger.actions.add_transaction(make_form(40))
            await ledger.actions.flush()
            return ledger

        ledger = asyncio.run(scenario())
        assert ledger.toasts == [(FAILURE_TITLE, "Could not save transaction.")]
        assert ledger.session.transactions == []
        failures = ledger.audit.events_of(AuditEventType.WRITE_FAILED.value)
        assert failures[0].details == {"action": "add_transaction"}


class TestClearAll:
    """Tests for clearing every transaction of a book."""

    def test_requires_password(self, make_ledger, make_form, fast_auth):
        """Test that the wrong password deletes nothing and the right one clears the book."""
        async def scenario():
            user = await fast_auth.create_user("ana@example.com", "secret1", display_name="Ana")
            ledger = await make_ledger(auth=fast_auth).start(user)
            for amount in (10, 20, 30):
                await ledger.actions.add_transaction(make_form(amount))
            await ledger.actions.flush()

            with pytest.raises(AuthError) as excinfo:
                await ledger.actions.clear_all_transactions("wrong-password")
            assert excinfo.value.code == AuthErrorCode.INVALID_CREDENTIAL
            assert len(ledger.session.transactions) == 3

            cleared = await ledger.actions.clear_all_transactions("secret1")
            return ledger, cleared

        ledger, cleared = asyncio.run(scenario())
        assert cleared == 3
        assert ledger.session.transactions == []
        assert ledger.session.financial_summary.total_balance == 0
        assert len(ledger.audit.events_of(AuditEventType.TRANSACTIONS_CLEARED.value)) == 1


class TestOrdering:
    """Tests for drag-and-drop reordering."""

    def test_category_order_follows_list(self, make_ledger):
        """Test that after a reorder the mirrored order equals the given order."""
        async def scenario():
            ledger = await make_ledger().start()
            for name in ("Food", "Rent", "Travel"):
                await ledger.actions.add_category(CategoryForm(name=name))
                await ledger.actions.flush()

            food, rent, travel = ledger.session.categories
            assert [food.position, rent.position, travel.position] == [0, 1, 2]

            await ledger.actions.update_category_order([travel, food, rent])
            return ledger.session

        session = asyncio.run(scenario())
        assert [c.name for c in session.categories] == ["Travel", "Food", "Rent"]
        assert [c.position for c in session.categories] == [0, 1, 2]

    def test_app_user_order_and_rename(self, make_ledger):
        """Test reordering and renaming participants."""
        async def scenario():
            ledger = await make_ledger().start()
            await ledger.actions.add_app_user(AppUserForm(name="Bo"))
            await ledger.actions.flush()

            ana, bo = ledger.session.app_users
            await ledger.actions.update_app_user_order([bo, ana])
            await ledger.actions.update_app_user(ana.id, AppUserForm(name="Anna"))
            await ledger.actions.flush()
            return ledger.session

        session = asyncio.run(scenario())
        assert [u.name for u in session.app_users] == ["Bo", "Anna"]

    def test_failed_reorder_changes_nothing(self, make_ledger):
        """Test that a failed reorder batch leaves every position as it was."""
        async def scenario():
            store = CrashingStore()
            ledger = await make_ledger(store=store).start()
            for name in ("Food", "Rent"):
                await ledger.actions.add_category(CategoryForm(name=name))
                await ledger.actions.flush()

            food, rent = ledger.session.categories
            store.crash = True
            with pytest.raises(StorageError):
                await ledger.actions.update_category_order([rent, food])
            return ledger.session

        session = asyncio.run(scenario())
        assert [c.name for c in session.categories] == ["Food", "Rent"]


class TestStores:
    """Tests for creating and deleting books."""

    def test_last_store_cannot_be_deleted(self, make_ledger):
        """Test that deleting the only book fails without writing anything."""
        async def scenario():
            ledger = await make_ledger().start()
            before = ledger.store.commit_count
            with pytest.raises(LastStoreError):
                await ledger.actions.delete_store(ledger.session.active_store_id)
            return ledger, before

        ledger, before = asyncio.run(scenario())
        assert ledger.store.commit_count == before
        assert len(ledger.session.stores) == 1

    def test_delete_store_cascades(self, make_ledger, make_form):
        """Test that deleting a book removes its children and switches away from it."""
        async def scenario():
            ledger = await make_ledger().start()
            actions, session = ledger.actions, ledger.session
            personal = session.active_store_id
            await actions.add_transaction(make_form(40))
            await actions.add_category(CategoryForm(name="Food"))
            await actions.flush()

            work = await actions.add_store(StoreForm(name="Work"))
            await actions.flush()
            await actions.set_active_store(personal)
            await actions.flush()
            assert session.active_store_id == personal

            removed = await actions.delete_store(personal)
            await actions.flush()

            base = f"users/u1/stores/{personal}"
            leftovers = []
            for name in ("transactions", "categories", "app_users"):
                leftovers += await ledger.store.list_documents(f"{base}/{name}")
            store_doc = await ledger.store.get(base)
            return ledger, work, removed, leftovers, store_doc

        ledger, work, removed, leftovers, store_doc = asyncio.run(scenario())
        # transaction + category + seeded participant + the book itself
        assert removed == 4
        assert leftovers == []
        assert not store_doc.exists
        assert [s.name for s in ledger.session.stores] == ["Work"]
        assert ledger.session.active_store_id == work
        assert len(ledger.audit.events_of(AuditEventType.STORE_DELETED.value)) == 1

    def test_rename_store(self, make_ledger):
        """Test renaming a book."""
        async def scenario():
            ledger = await make_ledger().start()
            await ledger.actions.update_store(ledger.session.active_store_id, StoreForm(name="Home"))
            await ledger.actions.flush()
            return ledger.session

        session = asyncio.run(scenario())
        assert session.active_store.name == "Home"

    def test_update_preferences(self, make_ledger):
        """Test that a preferences update merges with the active book choice."""
        async def scenario():
            ledger = await make_ledger().start()
            await ledger.actions.update_preferences(PreferencesForm(currency="bdt"))
            await ledger.actions.flush()
            return ledger.session

        session = asyncio.run(scenario())
        assert session.preferences.currency == "BDT"
        assert session.preferences.active_store_id == session.active_store_id


class TestLayoutMigration:
    """Tests for moving a book from the split to the unified layout."""

    def test_migrate_keeps_ids(self, make_ledger, make_form):
        """Test that every transaction is moved exactly once under the same id."""
        async def scenario():
            ledger = await make_ledger(layout=SplitLayout()).start()
            ids = {
                await ledger.actions.add_transaction(make_form(100, "income")),
                await ledger.actions.add_transaction(make_form(40, "expense")),
            }
            await ledger.actions.flush()

            moved = await ledger.actions.migrate_to_unified_layout()
            base = f"users/u1/stores/{ledger.session.active_store_id}"
            leftovers = (
                await ledger.store.list_documents(f"{base}/incomes")
                + await ledger.store.list_documents(f"{base}/expenses")
            )
            return ledger.session, ids, moved, leftovers

        session, ids, moved, leftovers = asyncio.run(scenario())
        assert moved == 2
        assert leftovers == []
        assert isinstance(session.active_layout, UnifiedLayout)
        assert session.active_store.layout == "unified"
        assert {tx.id for tx in session.transactions} == ids
        assert session.financial_summary.total_balance == 60

    def test_other_books_keep_their_layout(self, make_ledger, make_form):
        """Test that migrating one book leaves the other split-layout books readable."""
        async def scenario():
            ledger = await make_ledger(layout=SplitLayout()).start()
            actions, session = ledger.actions, ledger.session
            home = session.active_store_id
            await actions.add_transaction(make_form(30, "income"))
            await actions.flush()

            work = await actions.add_store(StoreForm(name="Work"))
            await actions.flush()
            work_tx = await actions.add_transaction(make_form(70, "income"))
            await actions.flush()
            await actions.migrate_to_unified_layout()
            migrated = [tx.id for tx in session.transactions]

            await actions.set_active_store(home)
            await actions.flush()
            home_layout, home_count = session.active_layout, len(session.transactions)

            stored = await ledger.store.list_documents(f"users/u1/stores/{work}/transactions")
            return work_tx, migrated, home_layout, home_count, stored

        work_tx, migrated, home_layout, home_count, stored = asyncio.run(scenario())
        assert migrated == [work_tx]
        assert isinstance(home_layout, SplitLayout)
        assert home_count == 1
        assert [doc.id for doc in stored] == [work_tx]

    def test_recorded_layout_wins_over_configured(self, make_ledger, make_form):
        """Test that a book keeps its layout when the app restarts with another one configured."""
        async def scenario():
            first = await make_ledger(layout=SplitLayout()).start()
            await first.actions.add_transaction(make_form(30, "income"))
            await first.actions.flush()
            first.session.teardown()

            second = await make_ledger(store=first.store).start()
            return second.session

        session = asyncio.run(scenario())
        assert isinstance(session.layout, UnifiedLayout)
        assert isinstance(session.active_layout, SplitLayout)
        assert len(session.transactions) == 1
