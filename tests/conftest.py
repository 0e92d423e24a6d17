"""
Shared fixtures.

Everything runs against the in-memory document store and auth
provider; no test touches the network.
"""

from datetime import datetime, timezone
from typing import Optional

import pytest

from sumbook.audit import AuditLogger
from sumbook.auth import AuthProvider, InMemoryAuthProvider
from sumbook.ledger import LedgerActions, LedgerSession, TransactionLayout
from sumbook.models import AuthUser, TransactionForm
from sumbook.storage import InMemoryDocumentStore


ANA = AuthUser(uid="u1", email="ana@example.com", display_name="Ana")


class Ledger:
    """A session, its actions and the store behind them, wired the way the app does it."""

    def __init__(
        self,
        layout: Optional[TransactionLayout] = None,
        store: Optional[InMemoryDocumentStore] = None,
        auth: Optional[AuthProvider] = None,
    ):
        self.store = store or InMemoryDocumentStore()
        self.audit = AuditLogger()
        self.toasts: list[tuple[str, str]] = []
        self.session = LedgerSession(self.store, layout=layout, audit_logger=self.audit)
        self.actions = LedgerActions(
            self.session,
            self.store,
            audit_logger=self.audit,
            auth=auth,
            notifier=lambda title, description: self.toasts.append((title, description)),
        )

    async def start(self, user: AuthUser = ANA) -> "Ledger":
        await self.session.init(user)
        await self.actions.flush()
        return self


@pytest.fixture
def make_ledger():
    return Ledger


@pytest.fixture
def fast_auth():
    # Low iteration count keeps the hashing quick in tests
    return InMemoryAuthProvider(iterations=1_000)


def tx_form(
    amount: float,
    tx_type: str = "expense",
    user_name: str = "Ana",
    category_id: Optional[str] = None,
    day: int = 1,
) -> TransactionForm:
    return TransactionForm(
        user_name=user_name,
        amount=amount,
        type=tx_type,
        category_id=category_id,
        date=datetime(2024, 1, day, 12, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def make_form():
    return tx_form
