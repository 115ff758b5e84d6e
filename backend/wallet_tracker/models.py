from sqlmodel import SQLModel, Field
from sqlalchemy import DateTime, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from enum import Enum


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timestamp column that always binds and loads aware UTC datetimes.

    SQLite drops the offset on storage, so loaded values get it back here.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value) if value is not None else None

    def process_result_value(self, value, dialect):
        return as_utc(value) if value is not None else None


class TransactionType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


# Categories are scoped by the same three kinds as transactions.
CategoryType = TransactionType


class Account(SQLModel, table=True):
    __tablename__ = "accounts"

    id: Optional[int] = Field(default=None, primary_key=True)
    # NULL for global system rows shared by every user
    user_id: Optional[str] = Field(default=None, index=True)
    name: str
    balance: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    opening_balance: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    is_system: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Category(SQLModel, table=True):
    __tablename__ = "categories"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[str] = Field(default=None, index=True)
    name: str
    type: CategoryType
    icon: str = Field(default="circle")
    color: str = Field(default="#6B7280")
    is_system: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Transaction(SQLModel, table=True):
    __tablename__ = "transactions"

    id: Optional[int] = Field(default=None, primary_key=True)
    type: TransactionType
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    account_id: int = Field(foreign_key="accounts.id", index=True)
    to_account_id: Optional[int] = Field(default=None, foreign_key="accounts.id", index=True)
    category_id: Optional[int] = Field(default=None, foreign_key="categories.id", index=True)
    description: Optional[str] = None
    date: datetime = Field(index=True, sa_type=UTCDateTime)
    is_initial_balance: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class HiddenAccount(SQLModel, table=True):
    __tablename__ = "hidden_accounts"
    __table_args__ = (UniqueConstraint("user_id", "account_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    account_id: int = Field(foreign_key="accounts.id")
    hidden_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class HiddenCategory(SQLModel, table=True):
    __tablename__ = "hidden_categories"
    __table_args__ = (UniqueConstraint("user_id", "category_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    category_id: int = Field(foreign_key="categories.id")
    hidden_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class ResourceKind(str, Enum):
    """Resources a user may hide from their own view."""
    ACCOUNTS = "accounts"
    CATEGORIES = "categories"
