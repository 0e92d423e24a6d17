"""
SumBook - Source Package

A personal finance ledger: books (stores) of income and expense
transactions, attributed to household participants, with live
balances and AI-written spending summaries.

DESIGN PRINCIPLES:
1. The subscription stream is the ground truth for local state
2. Writes that must be atomic go through one batch
3. Every step is auditable
4. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "SumBook Team"
