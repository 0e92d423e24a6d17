"""
Main Orchestrator for SumBook

Ties the components together:
1. Document store (Firestore or in-memory) from settings
2. LedgerSession + LedgerActions over that store
3. Auth service, insight agent and audit logger

DESIGN DECISION: Everything is created once, by one factory, and
passed by reference. Nothing reaches for a global at call time.

The ledger is asyncio-based. Hosts without their own event loop
(Streamlit reruns the script on a plain thread) use LoopRunner: one
long-lived loop on a background thread that owns the session, so
subscriptions survive between reruns.
"""

import asyncio
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from sumbook.agents import InsightAgent
from sumbook.audit import AuditLogger
from sumbook.auth import (
    AuthProvider,
    AuthService,
    FirebaseAuthProvider,
    InMemoryAuthProvider,
)
from sumbook.config import Settings, get_settings
from sumbook.ledger import LedgerActions, LedgerSession, get_layout
from sumbook.ledger.actions import Notifier
from sumbook.storage import DocumentStore, InMemoryDocumentStore


logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class AppComponents:
    store: DocumentStore
    session: LedgerSession
    actions: LedgerActions
    auth: AuthService
    audit_logger: AuditLogger
    insights: Optional[InsightAgent] = None


def create_store(settings: Settings) -> DocumentStore:
    """Document store selected by APP_STORAGE_BACKEND."""
    if settings.app.storage_backend == "firebase":
        # Imported here so the in-memory backend works without firebase-admin set up
        from sumbook.storage.firestore import FirestoreClient, FirestoreDocumentStore

        return FirestoreDocumentStore(FirestoreClient(settings.firebase))
    return InMemoryDocumentStore()


def create_auth_provider(settings: Settings) -> AuthProvider:
    if settings.app.storage_backend == "firebase":
        return FirebaseAuthProvider(settings.firebase)
    return InMemoryAuthProvider()


def create_app_components(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStore] = None,
    auth_provider: Optional[AuthProvider] = None,
    notifier: Optional[Notifier] = None,
    use_ai: bool = True,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to build from (default: get_settings())
        store: Document store to use instead of the configured one
        auth_provider: Auth provider to use instead of the configured one
        notifier: Called with (title, description) when a background write fails
        use_ai: Whether to set up the Gemini insight agent.
                Set to False for testing without an API key.
    """
    settings = settings or get_settings()
    app_settings = settings.app

    store = store or create_store(settings)
    audit_logger = AuditLogger(store if app_settings.persist_audit_log else None)

    session = LedgerSession.from_settings(
        store,
        app_settings,
        layout=get_layout(app_settings.transaction_layout),
        audit_logger=audit_logger,
    )
    provider = auth_provider or create_auth_provider(settings)
    actions = LedgerActions(
        session,
        store,
        audit_logger=audit_logger,
        auth=provider,
        notifier=notifier,
    )
    auth = AuthService(provider, settings.auth, store=store)

    insights = None
    if use_ai:
        try:
            insights = InsightAgent(settings=settings.gemini, audit_logger=audit_logger)
        except Exception as e:
            # Gemini not configured - continue without insights
            logger.warning("insights_unavailable", error=str(e))

    logger.info(
        "components_created",
        storage_backend=app_settings.storage_backend,
        transaction_layout=app_settings.transaction_layout,
        insights_enabled=insights is not None,
    )
    return AppComponents(
        store=store,
        session=session,
        actions=actions,
        auth=auth,
        audit_logger=audit_logger,
        insights=insights,
    )


class LoopRunner:
    """
    A dedicated event loop on a daemon thread.

    `run(coro)` submits a coroutine from any other thread and blocks
    until it finishes, returning its result or raising its exception.
    """

    def __init__(self, name: str = "sumbook-loop"):
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._serve, name=name, daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def run(self, coro: Awaitable[T], timeout: Optional[float] = 30) -> T:
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result(timeout)

    def call(self, fn: Callable[..., T], *args: Any, timeout: Optional[float] = 30) -> T:
        """Run a plain function on the loop thread (for state that must not be read mid-update)."""

        async def invoke() -> T:
            return fn(*args)

        return self.run(invoke(), timeout=timeout)

    def stop(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)
