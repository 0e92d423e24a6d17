"""
Aggregation Engine

Pure derivations over the mirrored lists. Nothing here reads or
writes the document store.

Sums use math.fsum, which is exactly rounded, so totals are identical
for every ordering of the same transactions.
"""

import math
from typing import Iterable, Optional, Sequence

from sumbook.models import (
    AppUser,
    Category,
    CategoryTotal,
    FinancialSummary,
    Transaction,
    TransactionType,
    UserBalance,
)


UNCATEGORIZED = "Uncategorized"


def aggregate(
    transactions: Iterable[Transaction],
    users: Iterable[AppUser],
) -> FinancialSummary:
    """
    Derive the Financial Summary.

    Every known participant is listed (in participant order) even
    without transactions; names only found on transactions follow in
    first-seen order.
    """
    buckets: dict[str, dict[TransactionType, list[float]]] = {}
    for user in users:
        buckets.setdefault(user.name, {TransactionType.INCOME: [], TransactionType.EXPENSE: []})

    totals: dict[TransactionType, list[float]] = {
        TransactionType.INCOME: [],
        TransactionType.EXPENSE: [],
    }
    for tx in transactions:
        bucket = buckets.setdefault(
            tx.user_name,
            {TransactionType.INCOME: [], TransactionType.EXPENSE: []},
        )
        bucket[tx.type].append(tx.amount)
        totals[tx.type].append(tx.amount)

    user_balances = []
    for name, bucket in buckets.items():
        income = math.fsum(bucket[TransactionType.INCOME])
        expense = math.fsum(bucket[TransactionType.EXPENSE])
        user_balances.append(
            UserBalance(name=name, income=income, expense=expense, balance=income - expense)
        )

    total_income = math.fsum(totals[TransactionType.INCOME])
    total_expense = math.fsum(totals[TransactionType.EXPENSE])
    return FinancialSummary(
        total_income=total_income,
        total_expense=total_expense,
        total_balance=total_income - total_expense,
        user_balances=user_balances,
    )


def expense_by_category(
    transactions: Iterable[Transaction],
    categories: Iterable[Category],
) -> list[CategoryTotal]:
    """Expense totals per category name, in first-seen order."""
    names = {category.id: category.name for category in categories}
    amounts: dict[str, list[float]] = {}
    for tx in transactions:
        if not tx.is_expense:
            continue
        name = names.get(tx.category_id, UNCATEGORIZED) if tx.category_id else UNCATEGORIZED
        amounts.setdefault(name, []).append(tx.amount)
    return [CategoryTotal(name=name, value=math.fsum(values)) for name, values in amounts.items()]


def sort_by_date_desc(transactions: Iterable[Transaction]) -> list[Transaction]:
    # Ties broken by id so the display order is stable
    return sorted(transactions, key=lambda tx: (tx.date, tx.id), reverse=True)


CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "INR": "₹",
    "CNY": "CN¥",
    "AUD": "A$",
    "CAD": "CA$",
}

ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW", "VND"}


def format_currency(amount: float, currency: str) -> str:
    """
    Human-readable amount.

    BDT is written with the taka sign and up to three decimals
    (e.g. "৳1,234.5"); other currencies use two decimals and their
    symbol, or the ISO code when no symbol is known.
    """
    currency = (currency or "USD").upper()
    sign = "-" if amount < 0 else ""
    value = abs(amount)

    if currency == "BDT":
        digits = f"{value:,.3f}".rstrip("0").rstrip(".")
        return f"৳{sign}{digits}"

    decimals = 0 if currency in ZERO_DECIMAL_CURRENCIES else 2
    digits = f"{value:,.{decimals}f}"
    symbol = CURRENCY_SYMBOLS.get(currency)
    if symbol:
        return f"{sign}{symbol}{digits}"
    return f"{sign}{currency} {digits}"


def category_name(category_id: Optional[str], categories: Sequence[Category]) -> str:
    """Display name for an expense's category; "Uncategorized" if unknown or missing."""
    for category in categories:
        if category.id == category_id:
            return category.name
    return UNCATEGORIZED
