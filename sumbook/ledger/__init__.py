"""
Ledger Package

The reactive core: the session mirrors a book, the aggregation engine
derives the Financial Summary, and the actions write changes back.
"""

from sumbook.ledger.actions import (
    LastStoreError,
    LedgerActions,
    LedgerError,
    NoActiveStoreError,
    NotSignedInError,
)
from sumbook.ledger.aggregation import (
    aggregate,
    category_name,
    expense_by_category,
    format_currency,
    sort_by_date_desc,
)
from sumbook.ledger.layout import (
    SplitLayout,
    TransactionLayout,
    UnifiedLayout,
    get_layout,
)
from sumbook.ledger.session import LedgerSession

__all__ = [
    # Session and actions
    "LedgerSession",
    "LedgerActions",
    # Errors
    "LedgerError",
    "LastStoreError",
    "NoActiveStoreError",
    "NotSignedInError",
    # Aggregation
    "aggregate",
    "category_name",
    "expense_by_category",
    "format_currency",
    "sort_by_date_desc",
    # Layouts
    "SplitLayout",
    "TransactionLayout",
    "UnifiedLayout",
    "get_layout",
]
