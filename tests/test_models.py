"""
Tests for Pydantic models.

Test strategy:
1. Valid data passes validation
2. Invalid data raises ValidationError with clear messages
3. Stored documents use camelCase keys and never contain the id
4. Edge cases (naive dates, unknown icons, income categories) are normalised
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from sumbook.models import (
    FALLBACK_ICON,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    Category,
    CategoryForm,
    CategoryIcon,
    CredentialsForm,
    PreferencesForm,
    Store,
    StoreForm,
    Transaction,
    TransactionForm,
    TransactionType,
    UserPreferences,
)


class TestTransaction:
    """Tests for the Transaction document model."""

    def _data(self, **overrides):
        data = {
            "userName": "Ana",
            "amount": 40.0,
            "type": "expense",
            "categoryId": "food",
            "date": "2024-01-05T10:00:00+00:00",
            "userId": "u1",
            "storeId": "s1",
        }
        data.update(overrides)
        return data

    def test_from_document(self):
        """Test parsing a stored document and attaching its id."""
        tx = Transaction.from_document("t1", self._data())

        assert tx.id == "t1"
        assert tx.user_name == "Ana"
        assert tx.type == TransactionType.EXPENSE
        assert tx.category_id == "food"
        assert tx.is_expense

    def test_to_document_uses_stored_names(self):
        """Test that the stored body is camelCase and has no id."""
        tx = Transaction.from_document("t1", self._data())
        body = tx.to_document()

        assert "id" not in body
        assert body["userName"] == "Ana"
        assert body["categoryId"] == "food"
        assert body["type"] == "expense"
        assert body["storeId"] == "s1"

    def test_income_drops_category(self):
        """Test that an income never carries a category."""
        tx = Transaction.from_document("t1", self._data(type="income"))

        assert tx.category_id is None
        assert "categoryId" not in tx.to_document()

    def test_naive_date_is_utc(self):
        """Test that dates without a timezone are taken as UTC."""
        tx = Transaction.from_document("t1", self._data(date="2024-01-05T10:00:00"))
        assert tx.date == datetime(2024, 1, 5, 10, 0, tzinfo=timezone.utc)

    def test_offset_date_is_converted(self):
        """Test that dates with an offset are converted to UTC."""
        tx = Transaction.from_document("t1", self._data(date="2024-01-05T12:00:00+02:00"))
        assert tx.date.utcoffset() == timedelta(0)
        assert tx.date.hour == 10

    def test_non_positive_amount_rejected(self):
        """Test that amounts must be positive."""
        with pytest.raises(ValueError, match="greater than 0"):
            Transaction.from_document("t1", self._data(amount=0))

    def test_unknown_type_rejected(self):
        """Test that only income and expense are accepted."""
        with pytest.raises(ValueError):
            Transaction.from_document("t1", self._data(type="transfer"))


class TestCategoryAndStore:
    """Tests for categories and books."""

    def test_known_icon_kept(self):
        """Test that a known icon name survives parsing."""
        category = Category.from_document(
            "c1", {"name": "Food", "icon": "Utensils", "userId": "u1", "storeId": "s1"}
        )
        assert category.icon == "Utensils"
        assert category.position == 0

    def test_unknown_icon_falls_back(self):
        """Test that an unknown icon name is rendered with the fallback icon."""
        category = Category.from_document(
            "c1", {"name": "Food", "icon": "Spaceship", "userId": "u1", "storeId": "s1"}
        )
        assert category.icon == FALLBACK_ICON

    def test_store_document(self):
        """Test the stored form of a book."""
        store = Store(id="s1", name="Personal", user_id="u1")
        assert store.to_document() == {"name": "Personal", "userId": "u1"}

    def test_preferences_defaults(self):
        """Test default preferences."""
        prefs = UserPreferences()
        assert prefs.active_store_id is None
        assert prefs.currency == "USD"
        assert prefs.to_document() == {"currency": "USD", "address": ""}


class TestForms:
    """Tests for the input forms."""

    def test_transaction_form_blank_category(self):
        """Test that an empty category selection means no category."""
        form = TransactionForm(
            user_name="Ana",
            amount=5,
            type="expense",
            category_id="",
            date=datetime(2024, 1, 1),
        )
        assert form.category_id is None
        assert form.date.tzinfo == timezone.utc

    def test_transaction_form_rejects_negative_amount(self):
        """Test that negative amounts are rejected at the edge."""
        with pytest.raises(ValueError, match="greater than 0"):
            TransactionForm(
                user_name="Ana",
                amount=-5,
                type="expense",
                date=datetime(2024, 1, 1),
            )

    def test_category_form(self):
        """Test category name length and default icon."""
        form = CategoryForm(name="  Food  ")
        assert form.name == "Food"
        assert form.icon == CategoryIcon.SHOPPING_CART

        with pytest.raises(ValueError, match="at least 2 characters"):
            CategoryForm(name="F")

    def test_store_form(self):
        """Test that book names need two characters."""
        with pytest.raises(ValueError, match="at least 2 characters"):
            StoreForm(name="X")

    def test_preferences_form_currency(self):
        """Test that currency codes are upper-cased and validated."""
        assert PreferencesForm(currency="eur").currency == "EUR"
        assert PreferencesForm(address="1 Main St").model_dump(exclude_none=True) == {
            "address": "1 Main St"
        }
        with pytest.raises(ValueError):
            PreferencesForm(currency="EURO")

    def test_credentials_form(self):
        """Test email normalisation and password length."""
        form = CredentialsForm(email="  Ana@Example.COM ", password="secret1")
        assert form.email == "ana@example.com"

        with pytest.raises(ValueError):
            CredentialsForm(email="not-an-email", password="secret1")
        with pytest.raises(ValueError, match="at least 6 characters"):
            CredentialsForm(email="ana@example.com", password="123")


class TestAuditModels:
    """Tests for audit events."""

    def test_transaction_added(self):
        """Test the event built for a new transaction."""
        event = AuditEventBuilder.transaction_added("u1", "s1", "t1", "expense", 40.0)

        assert event.event_type == AuditEventType.TRANSACTION_ADDED
        assert event.entity_id == "t1"
        assert event.description == "Added expense of 40.00"
        assert event.is_user_action

    def test_automatic_store_creation(self):
        """Test that the default book is recorded as a system action."""
        event = AuditEventBuilder.store_created("u1", "s1", "Personal", automatic=True)

        assert event.event_type == AuditEventType.DEFAULT_STORE_CREATED
        assert not event.is_user_action

    def test_write_failed_is_error(self):
        """Test that failed writes are logged at error severity."""
        event = AuditEventBuilder.write_failed("u1", "add_transaction", "permission denied")

        assert event.severity == AuditSeverity.ERROR
        assert event.error_message == "permission denied"

    def test_to_document_flattens_details(self):
        """Test the stored form of an audit event."""
        event = AuditEventBuilder.transactions_cleared("u1", "s1", 12)
        body = event.to_document()

        assert "event_id" not in body
        assert body["event_type"] == "transactions_cleared"
        assert body["severity"] == "warning"
        assert json.loads(body["details"]) == {"deleted": 12}
