"""
Audit Models for SumBook

Every mutation of a book is logged for audit purposes.
This provides:
1. Traceability of destructive operations (clear all, store deletion)
2. Debugging information for writes that failed after the caller moved on
3. A record of what the self-healing rules did on the user's behalf

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Transactions
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_MIGRATED = "transaction_migrated"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSACTIONS_CLEARED = "transactions_cleared"
    TRANSACTIONS_IMPORTED = "transactions_imported"
    LAYOUT_MIGRATED = "layout_migrated"

    # Books
    STORE_CREATED = "store_created"
    STORE_DELETED = "store_deleted"

    # Self-healing
    DEFAULT_STORE_CREATED = "default_store_created"
    DEFAULT_USER_SEEDED = "default_user_seeded"
    ACTIVE_STORE_FALLBACK = "active_store_fallback"

    # AI
    INSIGHT_GENERATED = "insight_generated"

    # Failures
    WRITE_FAILED = "write_failed"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Who and where
    user_id: Optional[str] = Field(
        default=None,
        description="Account the event belongs to"
    )
    store_id: Optional[str] = None

    # What entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'store')"
    )
    entity_id: Optional[str] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=True,
        description="False for writes the system made on its own (self-healing)"
    )

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "store_id": self.store_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_document(self) -> dict:
        """Stored body for the audit_log collection (id is the event_id)."""
        body = self.to_log_dict()
        body.pop("event_id")
        # Firestore rejects nested values it can't encode; keep details flat text
        body["details"] = json.dumps(self.details, default=str) if self.details else ""
        return body


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_added(uid, store_id, tx_id, "expense", 40.0)
    """

    @staticmethod
    def transaction_added(
        user_id: str,
        store_id: str,
        transaction_id: str,
        transaction_type: str,
        amount: float,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            user_id=user_id,
            store_id=store_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Added {transaction_type} of {amount:.2f}",
            details={"type": transaction_type, "amount": amount},
        )

    @staticmethod
    def transaction_updated(
        user_id: str,
        store_id: str,
        transaction_id: str,
        fields: list[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            user_id=user_id,
            store_id=store_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Updated transaction fields: {', '.join(fields)}",
            details={"fields": fields},
        )

    @staticmethod
    def transaction_migrated(
        user_id: str,
        store_id: str,
        old_id: str,
        new_id: str,
        from_type: str,
        to_type: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_MIGRATED,
            user_id=user_id,
            store_id=store_id,
            entity_type="transaction",
            entity_id=new_id,
            description=f"Moved transaction from {from_type} to {to_type}",
            details={"old_id": old_id, "from": from_type, "to": to_type},
        )

    @staticmethod
    def transaction_deleted(
        user_id: str,
        store_id: str,
        transaction_id: str,
        transaction_type: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            user_id=user_id,
            store_id=store_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"Deleted {transaction_type} transaction",
            details={"type": transaction_type},
        )

    @staticmethod
    def transactions_cleared(
        user_id: str,
        store_id: str,
        count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTIONS_CLEARED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            store_id=store_id,
            entity_type="store",
            entity_id=store_id,
            description=f"Cleared all transactions ({count} deleted)",
            details={"deleted": count},
        )

    @staticmethod
    def transactions_imported(
        user_id: str,
        store_id: str,
        added: int,
        skipped: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTIONS_IMPORTED,
            user_id=user_id,
            store_id=store_id,
            entity_type="store",
            entity_id=store_id,
            description=f"Imported {added} transactions from CSV",
            details={"added": added, "skipped": skipped},
        )

    @staticmethod
    def layout_migrated(
        user_id: str,
        store_id: str,
        moved: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LAYOUT_MIGRATED,
            user_id=user_id,
            store_id=store_id,
            entity_type="store",
            entity_id=store_id,
            description=f"Moved {moved} transactions to the unified layout",
            details={"moved": moved},
        )

    @staticmethod
    def store_created(
        user_id: str,
        store_id: str,
        name: str,
        automatic: bool = False,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.DEFAULT_STORE_CREATED
                if automatic
                else AuditEventType.STORE_CREATED
            ),
            user_id=user_id,
            store_id=store_id,
            entity_type="store",
            entity_id=store_id,
            description=f"Book created: {name}",
            details={"name": name},
            is_user_action=not automatic,
        )

    @staticmethod
    def store_deleted(
        user_id: str,
        store_id: str,
        documents_removed: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORE_DELETED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            store_id=store_id,
            entity_type="store",
            entity_id=store_id,
            description=f"Book deleted ({documents_removed} documents removed)",
            details={"documents_removed": documents_removed},
        )

    @staticmethod
    def default_user_seeded(
        user_id: str,
        store_id: str,
        app_user_id: str,
        name: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEFAULT_USER_SEEDED,
            user_id=user_id,
            store_id=store_id,
            entity_type="app_user",
            entity_id=app_user_id,
            description=f"Seeded participant from account name: {name}",
            is_user_action=False,
        )

    @staticmethod
    def active_store_fallback(
        user_id: str,
        missing_store_id: Optional[str],
        fallback_store_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACTIVE_STORE_FALLBACK,
            user_id=user_id,
            store_id=fallback_store_id,
            entity_type="store",
            entity_id=fallback_store_id,
            description="Active book missing, switched to the first book",
            details={"missing": missing_store_id},
            is_user_action=False,
        )

    @staticmethod
    def insight_generated(
        user_id: Optional[str],
        expense_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSIGHT_GENERATED,
            user_id=user_id,
            entity_type="insight",
            description=f"Spending insight generated from {expense_count} expenses",
            details={"expense_count": expense_count},
        )

    @staticmethod
    def write_failed(
        user_id: Optional[str],
        action: str,
        error_message: str,
        store_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WRITE_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            store_id=store_id,
            description=f"Write failed: {action}",
            error_message=error_message,
            details={"action": action},
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        user_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
        )
