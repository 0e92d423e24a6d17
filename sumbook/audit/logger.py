"""
Audit Logger

DESIGN DECISION: Every mutation of a book is logged.
This provides:
1. Traceability of destructive operations
2. A trail for writes that failed after the caller moved on
3. Visibility into what the self-healing rules did

The audit logger:
- Is async so it can share the ledger's event loop
- Gracefully handles failures (never crashes the app if persisting fails)
- Optionally persists events under users/{uid}/audit_log
"""

from collections import deque
from typing import Optional

import structlog

from sumbook.models.audit import AuditEvent
from sumbook.storage.interface import DocumentStore


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def audit_log_path(user_id: str) -> str:
    return f"users/{user_id}/audit_log"


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The document store, when one is given and the event has an owner
    """

    def __init__(self, store: Optional[DocumentStore] = None):
        """
        Initialize audit logger.

        Args:
            store: Document store for persistence.
                   If None, only logs locally.
        """
        self._store = store
        self._logger = structlog.get_logger("sumbook.audit")
        self.events: deque[AuditEvent] = deque(maxlen=1000)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to the store if available.

        Returns True if the store write succeeded (or nothing had to be persisted).
        """
        self.events.append(event)
        log_dict = event.to_log_dict()

        if event.severity.value == "error":
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._store and event.user_id:
            path = f"{audit_log_path(event.user_id)}/{event.event_id}"
            try:
                await self._store.set(path, event.to_document())
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    def events_of(self, event_type: str) -> list[AuditEvent]:
        """Events recorded by this logger in this process, filtered by type."""
        return [e for e in self.events if e.event_type.value == event_type]
