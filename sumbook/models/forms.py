"""
Form Schemas

Input validated at the edge, before anything reaches the ledger layer.
A form that fails validation raises pydantic's ValidationError and the
presentation layer shows the messages next to the fields.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sumbook.models.ledger import CategoryIcon, TransactionType, _ensure_utc


EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class TransactionForm(BaseModel):
    """Fields the user enters for a new or edited transaction."""

    model_config = ConfigDict(str_strip_whitespace=True)

    user_name: str = Field(..., min_length=1, description="Participant name")
    amount: float = Field(..., gt=0, description="Amount, always positive")
    type: TransactionType
    category_id: Optional[str] = Field(default=None)
    date: datetime

    @field_validator('date')
    @classmethod
    def normalize_date(cls, v: datetime) -> datetime:
        return _ensure_utc(v)

    @field_validator('category_id')
    @classmethod
    def blank_category_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None


class CategoryForm(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=2, max_length=100)
    icon: CategoryIcon = CategoryIcon.SHOPPING_CART


class AppUserForm(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)


class StoreForm(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=2, max_length=100)


class PreferencesForm(BaseModel):
    """Partial preferences update; unset fields are left untouched."""

    model_config = ConfigDict(str_strip_whitespace=True)

    currency: Optional[str] = Field(default=None, pattern=r"^[A-Za-z]{3}$")
    address: Optional[str] = Field(default=None, max_length=500)

    @field_validator('currency')
    @classmethod
    def upper_currency(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v


class CredentialsForm(BaseModel):
    """Email/password pair for sign-in, sign-up and re-authentication."""

    email: str = Field(..., pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6)

    @field_validator('email', mode='before')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower() if isinstance(v, str) else v
