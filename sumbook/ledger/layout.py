"""
Document Layout

Where every piece of a book lives in the document store:

    users/{uid}/preferences/user
    users/{uid}/stores/{storeId}
    users/{uid}/stores/{storeId}/categories/{id}
    users/{uid}/stores/{storeId}/app_users/{id}
    users/{uid}/stores/{storeId}/<transaction collections>/{id}

DESIGN DECISION: Transactions have two layouts.

UnifiedLayout (default) keeps one `transactions` collection per store
with an explicit `type` field. Changing a transaction's type is an
ordinary update and its id never changes.

SplitLayout is the legacy layout: parallel `incomes` and `expenses`
collections, with the type implied by the collection and re-attached
on read. Changing the type moves the document, so it is written as a
single atomic batch (delete old + create new under a fresh id) so the
transaction always exists exactly once.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from sumbook.models import Transaction, TransactionType
from sumbook.storage.interface import DocumentSnapshot, DocumentStore, WriteBatch


# =============================================================================
# PATHS
# =============================================================================

def preferences_path(uid: str) -> str:
    return f"users/{uid}/preferences/user"


def stores_path(uid: str) -> str:
    return f"users/{uid}/stores"


def store_path(uid: str, store_id: str) -> str:
    return f"users/{uid}/stores/{store_id}"


def categories_path(uid: str, store_id: str) -> str:
    return f"{store_path(uid, store_id)}/categories"


def app_users_path(uid: str, store_id: str) -> str:
    return f"{store_path(uid, store_id)}/app_users"


# Position-ordered collections that belong to a store
STORE_CHILD_COLLECTIONS = ("categories", "app_users")


# =============================================================================
# TRANSACTION LAYOUTS
# =============================================================================

@dataclass
class TypeChange:
    """
    Writes that change a transaction's type.

    `migrated` is True when the document moved to a new id; the batch
    must then be committed as a unit.
    """

    transaction_id: str
    batch: WriteBatch
    migrated: bool


class TransactionLayout(ABC):
    """Maps transactions onto the collections of a store."""

    name: str = ""

    @abstractmethod
    def collection_names(self) -> tuple[str, ...]:
        """Collections (relative to the store) that hold transactions."""
        pass

    @abstractmethod
    def collection_for(self, tx_type: TransactionType) -> str:
        pass

    @abstractmethod
    def to_document(self, transaction: Transaction) -> dict[str, Any]:
        pass

    @abstractmethod
    def parse(self, collection_path: str, doc: DocumentSnapshot) -> Transaction:
        """
        Build a Transaction from a stored document.

        Raises:
            pydantic.ValidationError: If the document is malformed
        """
        pass

    @abstractmethod
    def type_change(
        self,
        store: DocumentStore,
        uid: str,
        transaction_id: str,
        original_type: TransactionType,
        updated: Transaction,
    ) -> TypeChange:
        pass

    def collection_paths(self, uid: str, store_id: str) -> list[str]:
        base = store_path(uid, store_id)
        return [f"{base}/{name}" for name in self.collection_names()]

    def document_path(
        self,
        uid: str,
        store_id: str,
        tx_type: TransactionType,
        transaction_id: str,
    ) -> str:
        return f"{store_path(uid, store_id)}/{self.collection_for(tx_type)}/{transaction_id}"


class UnifiedLayout(TransactionLayout):
    """One `transactions` collection with a stored `type` discriminant."""

    name = "unified"
    COLLECTION = "transactions"

    def collection_names(self) -> tuple[str, ...]:
        return (self.COLLECTION,)

    def collection_for(self, tx_type: TransactionType) -> str:
        return self.COLLECTION

    def to_document(self, transaction: Transaction) -> dict[str, Any]:
        return transaction.to_document()

    def parse(self, collection_path: str, doc: DocumentSnapshot) -> Transaction:
        return Transaction.from_document(doc.id, doc.to_dict())

    def type_change(
        self,
        store: DocumentStore,
        uid: str,
        transaction_id: str,
        original_type: TransactionType,
        updated: Transaction,
    ) -> TypeChange:
        body = self.to_document(updated)
        fields = {
            "type": body["type"],
            "userName": body["userName"],
            "amount": body["amount"],
            "date": body["date"],
            # Null rather than absent: an update can't remove a field
            "categoryId": body.get("categoryId"),
        }
        path = self.document_path(uid, updated.store_id, updated.type, transaction_id)
        return TypeChange(
            transaction_id=transaction_id,
            batch=store.batch().update(path, fields),
            migrated=False,
        )


class SplitLayout(TransactionLayout):
    """Legacy layout: `incomes` and `expenses`, type implied by the collection."""

    name = "split"
    COLLECTIONS = {
        TransactionType.INCOME: "incomes",
        TransactionType.EXPENSE: "expenses",
    }

    def collection_names(self) -> tuple[str, ...]:
        return tuple(self.COLLECTIONS.values())

    def collection_for(self, tx_type: TransactionType) -> str:
        return self.COLLECTIONS[TransactionType(tx_type)]

    def type_for(self, collection_path: str) -> TransactionType:
        name = collection_path.rstrip("/").rsplit("/", 1)[-1]
        for tx_type, collection in self.COLLECTIONS.items():
            if collection == name:
                return tx_type
        raise ValueError(f"Not a transaction collection: {collection_path}")

    def to_document(self, transaction: Transaction) -> dict[str, Any]:
        body = transaction.to_document()
        body.pop("type", None)
        return body

    def parse(self, collection_path: str, doc: DocumentSnapshot) -> Transaction:
        return Transaction.from_document(
            doc.id,
            doc.to_dict(),
            type=self.type_for(collection_path),
        )

    def type_change(
        self,
        store: DocumentStore,
        uid: str,
        transaction_id: str,
        original_type: TransactionType,
        updated: Transaction,
    ) -> TypeChange:
        new_id = store.new_id()
        moved = updated.model_copy(update={"id": new_id})
        batch = store.batch()
        batch.delete(self.document_path(uid, updated.store_id, original_type, transaction_id))
        batch.set(
            self.document_path(uid, updated.store_id, moved.type, new_id),
            self.to_document(moved),
        )
        return TypeChange(transaction_id=new_id, batch=batch, migrated=True)


LAYOUTS = {
    UnifiedLayout.name: UnifiedLayout,
    SplitLayout.name: SplitLayout,
}


def get_layout(name: str) -> TransactionLayout:
    try:
        return LAYOUTS[name]()
    except KeyError:
        raise ValueError(f"Unknown transaction layout: {name}")
