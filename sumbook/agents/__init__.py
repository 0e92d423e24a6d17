"""
AI Agents Package

The LLM is a DESCRIBER, not a bookkeeper.
It never writes to the ledger.
"""

from sumbook.agents.insights import (
    FAILURE_MESSAGE,
    NO_EXPENSES_MESSAGE,
    InsightAgent,
    expense_payload,
)

__all__ = [
    "FAILURE_MESSAGE",
    "NO_EXPENSES_MESSAGE",
    "InsightAgent",
    "expense_payload",
]
