"""
Tests for the aggregation engine and display helpers.
"""

import itertools
from datetime import datetime, timezone

from sumbook.ledger import (
    aggregate,
    category_name,
    expense_by_category,
    format_currency,
    sort_by_date_desc,
)
from sumbook.models import AppUser, Category, Transaction


def make_tx(tx_id, amount, tx_type, user_name, category_id=None, day=1):
    return Transaction(
        id=tx_id,
        user_name=user_name,
        amount=amount,
        type=tx_type,
        category_id=category_id,
        date=datetime(2024, 1, day, tzinfo=timezone.utc),
        user_id="u1",
        store_id="s1",
    )


def make_user(name, position=0):
    return AppUser(id=f"id-{name}", name=name, user_id="u1", store_id="s1", position=position)


class TestAggregate:
    """Tests for aggregate()."""

    def test_income_and_expense_for_one_user(self):
        """Test the basic dashboard scenario."""
        transactions = [
            make_tx("t1", 100, "income", "A"),
            make_tx("t2", 40, "expense", "A", category_id="food"),
        ]
        summary = aggregate(transactions, [make_user("A")])

        assert summary.total_income == 100
        assert summary.total_expense == 40
        assert summary.total_balance == 60
        assert len(summary.user_balances) == 1
        assert summary.user_balances[0].name == "A"
        assert summary.user_balances[0].balance == 60

    def test_empty_transactions_still_list_every_user(self):
        """Test that users without transactions appear with zero balance."""
        summary = aggregate([], [make_user("A"), make_user("B", 1)])

        assert summary.total_income == 0
        assert summary.total_expense == 0
        assert summary.total_balance == 0
        assert [b.name for b in summary.user_balances] == ["A", "B"]
        assert all(b.balance == 0 for b in summary.user_balances)

    def test_orphaned_names_follow_known_users(self):
        """Test that names without an AppUser are appended in first-seen order."""
        transactions = [
            make_tx("t1", 10, "expense", "Zed"),
            make_tx("t2", 20, "income", "A"),
            make_tx("t3", 5, "income", "Old Name"),
            make_tx("t4", 1, "expense", "Zed"),
        ]
        summary = aggregate(transactions, [make_user("A"), make_user("B", 1)])

        assert [b.name for b in summary.user_balances] == ["A", "B", "Zed", "Old Name"]
        zed = summary.balance_for("Zed")
        assert zed.expense == 11
        assert zed.balance == -11

    def test_totals_do_not_depend_on_order(self):
        """Test that every ordering of the same transactions gives identical totals."""
        amounts = [0.1, 0.2, 0.3, 1e16, 1.0]
        transactions = [
            make_tx(f"t{i}", amount, "income" if i % 2 else "expense", "A")
            for i, amount in enumerate(amounts)
        ]
        users = [make_user("A")]
        expected = aggregate(transactions, users)

        for ordering in itertools.permutations(transactions):
            summary = aggregate(list(ordering), users)
            assert summary.total_income == expected.total_income
            assert summary.total_expense == expected.total_expense
            assert summary.user_balances == expected.user_balances

    def test_balance_is_income_minus_expense(self):
        """Test the balance identity on awkward float values."""
        transactions = [
            make_tx("t1", 0.1, "income", "A"),
            make_tx("t2", 0.2, "income", "B"),
            make_tx("t3", 0.3, "expense", "A"),
        ]
        summary = aggregate(transactions, [])

        assert summary.total_balance == summary.total_income - summary.total_expense
        for entry in summary.user_balances:
            assert entry.balance == entry.income - entry.expense


class TestReportHelpers:
    """Tests for category totals, sorting and currency formatting."""

    def test_expense_by_category(self):
        """Test totals per category name, ignoring income."""
        categories = [
            Category(id="food", name="Food", user_id="u1", store_id="s1"),
            Category(id="rent", name="Rent", user_id="u1", store_id="s1", position=1),
        ]
        transactions = [
            make_tx("t1", 40, "expense", "A", category_id="food"),
            make_tx("t2", 500, "expense", "A", category_id="rent"),
            make_tx("t3", 10, "expense", "A", category_id="food"),
            make_tx("t4", 1000, "income", "A"),
            make_tx("t5", 7, "expense", "A", category_id="deleted"),
        ]
        totals = expense_by_category(transactions, categories)

        assert [(t.name, t.value) for t in totals] == [
            ("Food", 50),
            ("Rent", 500),
            ("Uncategorized", 7),
        ]

    def test_category_name_falls_back(self):
        """Test that unknown or missing ids read as Uncategorized."""
        categories = [Category(id="food", name="Food", user_id="u1", store_id="s1")]
        assert category_name("food", categories) == "Food"
        assert category_name("gone", categories) == "Uncategorized"
        assert category_name(None, categories) == "Uncategorized"

    def test_sort_by_date_desc(self):
        """Test newest-first ordering."""
        transactions = [
            make_tx("t1", 1, "expense", "A", day=3),
            make_tx("t2", 1, "expense", "A", day=10),
            make_tx("t3", 1, "expense", "A", day=1),
        ]
        assert [tx.id for tx in sort_by_date_desc(transactions)] == ["t2", "t1", "t3"]

    def test_format_currency(self):
        """Test symbol, ISO-code and taka formatting."""
        assert format_currency(1234.5, "USD") == "$1,234.50"
        assert format_currency(-60, "usd") == "-$60.00"
        assert format_currency(1234.5, "BDT") == "৳1,234.5"
        assert format_currency(100, "BDT") == "৳100"
        assert format_currency(1500, "JPY") == "¥1,500"
        assert format_currency(12, "CHF") == "CHF 12.00"
