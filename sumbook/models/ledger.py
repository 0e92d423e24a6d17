"""
Core Data Models for SumBook

These models define the schemas for everything stored in a book:
stores, participants (app users), categories, transactions and
per-account preferences, plus the derived Financial Summary.

Stored documents use camelCase field names; Python code uses
snake_case. Every model accepts both (populate_by_name) and
`to_document()` always writes the stored form.

DESIGN DECISION: A document's id is never part of its stored body.
It is the last segment of the document path and is re-attached on read.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """Direction of a transaction."""
    INCOME = "income"
    EXPENSE = "expense"


class CategoryIcon(str, Enum):
    """
    Icons a category can carry.

    Values are symbolic icon names rendered by the presentation layer.
    """
    SHOPPING_CART = "ShoppingCart"
    UTENSILS = "Utensils"
    HOME = "Home"
    CAR = "Car"
    HEART_PULSE = "HeartPulse"
    BOOK_OPEN = "BookOpen"
    GIFT = "Gift"
    PLANE = "Plane"
    FILM = "Film"
    BRIEFCASE = "Briefcase"
    GRADUATION_CAP = "GraduationCap"
    PAW_PRINT = "PawPrint"
    RECEIPT = "Receipt"
    PIGGY_BANK = "PiggyBank"


# Shown for icon names outside CategoryIcon (e.g. written by an older client)
FALLBACK_ICON = "Ban"


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# STORED DOCUMENTS
# =============================================================================

class LedgerDocument(BaseModel):
    """Base for every model that lives in the document store."""

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    id: str = Field(..., min_length=1)

    def to_document(self) -> dict[str, Any]:
        """Stored body: camelCase keys, JSON-friendly values, no id."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"id"},
            exclude_none=True,
        )

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any], **extra: Any):
        return cls.model_validate({**data, **extra, "id": doc_id})


class Store(LedgerDocument):
    """
    A book: a named ledger scoping all financial data.

    Every account has at least one store; the first one is
    created automatically as "Personal".
    """

    name: str = Field(..., min_length=1, max_length=100)
    user_id: str = Field(..., alias="userId")
    # Transaction layout the book was written with; None means the configured one
    layout: Optional[str] = None


class AppUser(LedgerDocument):
    """
    A participant to whom transactions are attributed.

    Distinct from the signed-in account: a household can record
    transactions for several people in one book.
    """

    name: str = Field(..., min_length=1, max_length=100)
    user_id: str = Field(..., alias="userId")
    store_id: str = Field(..., alias="storeId")
    position: int = Field(default=0, ge=0)


class Category(LedgerDocument):
    """Classifies expense transactions. Ordered by position."""

    name: str = Field(..., min_length=1, max_length=100)
    icon: str = Field(default=FALLBACK_ICON)
    user_id: str = Field(..., alias="userId")
    store_id: str = Field(..., alias="storeId")
    position: int = Field(default=0, ge=0)

    @field_validator('icon', mode='before')
    @classmethod
    def known_icon_or_fallback(cls, v: Any) -> str:
        if isinstance(v, CategoryIcon):
            return v.value
        if v in {icon.value for icon in CategoryIcon}:
            return v
        return FALLBACK_ICON


class Transaction(LedgerDocument):
    """
    A single income or expense entry in a book.

    `user_name` is a denormalized copy of the participant's name at the
    time of entry, not a reference: renaming an AppUser leaves existing
    transactions labelled with the old name.
    """

    user_name: str = Field(..., alias="userName", min_length=1)
    amount: float = Field(..., gt=0)
    type: TransactionType
    category_id: Optional[str] = Field(default=None, alias="categoryId")
    date: datetime
    user_id: str = Field(..., alias="userId")
    store_id: str = Field(..., alias="storeId")

    @field_validator('date')
    @classmethod
    def normalize_date(cls, v: datetime) -> datetime:
        return _ensure_utc(v)

    @model_validator(mode='after')
    def income_has_no_category(self) -> 'Transaction':
        if self.type == TransactionType.INCOME:
            self.category_id = None
        return self

    @property
    def is_expense(self) -> bool:
        return self.type == TransactionType.EXPENSE


class UserPreferences(BaseModel):
    """Per-account preferences. Partial updates merge into the stored document."""

    model_config = ConfigDict(populate_by_name=True)

    active_store_id: Optional[str] = Field(default=None, alias="activeStoreId")
    currency: str = Field(default="USD", min_length=3, max_length=3)
    address: str = Field(default="")

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AuthUser(BaseModel):
    """The signed-in account as reported by the auth provider."""

    uid: str = Field(..., min_length=1)
    email: str
    display_name: Optional[str] = None


# =============================================================================
# DERIVED MODELS
# =============================================================================

class UserBalance(BaseModel):
    """Income, expense and balance for one participant name."""

    name: str
    income: float = 0.0
    expense: float = 0.0
    balance: float = 0.0


class FinancialSummary(BaseModel):
    """
    Aggregate of a book's transactions.

    `user_balances` lists every known participant (in participant
    order) followed by names only found on transactions.
    """

    total_income: float = 0.0
    total_expense: float = 0.0
    total_balance: float = 0.0
    user_balances: list[UserBalance] = Field(default_factory=list)

    def balance_for(self, name: str) -> Optional[UserBalance]:
        for entry in self.user_balances:
            if entry.name == name:
                return entry
        return None


class CategoryTotal(BaseModel):
    """Total expense for one category name (reports)."""

    name: str
    value: float
