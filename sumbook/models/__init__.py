"""
Data Models Package

This package contains all Pydantic models used in SumBook.
All data flowing through the system must conform to these schemas.
"""

from sumbook.models.ledger import (
    FALLBACK_ICON,
    AppUser,
    AuthUser,
    Category,
    CategoryIcon,
    CategoryTotal,
    FinancialSummary,
    Store,
    Transaction,
    TransactionType,
    UserBalance,
    UserPreferences,
)
from sumbook.models.forms import (
    AppUserForm,
    CategoryForm,
    CredentialsForm,
    PreferencesForm,
    StoreForm,
    TransactionForm,
)
from sumbook.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "FALLBACK_ICON",
    "AppUser",
    "AuthUser",
    "Category",
    "CategoryIcon",
    "CategoryTotal",
    "FinancialSummary",
    "Store",
    "Transaction",
    "TransactionType",
    "UserBalance",
    "UserPreferences",
    # Forms
    "AppUserForm",
    "CategoryForm",
    "CredentialsForm",
    "PreferencesForm",
    "StoreForm",
    "TransactionForm",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
