"""
Pydantic schemas for API request/response validation.
Separate from models to control what data is exposed via API.

Transaction payloads form a tagged union keyed by ``type``: each variant
carries only the fields valid for it, so a transfer always has a
destination and income/expense always has a category.
"""

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter, field_validator, model_validator
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, List, Literal, Optional, Union

from .models import CategoryType, TransactionType, as_utc


Amount = Annotated[Decimal, Field(gt=0, max_digits=14, decimal_places=2, description="Amount must be greater than 0")]
Money = Annotated[Decimal, Field(max_digits=14, decimal_places=2)]


def _upper(value: Any) -> Any:
    return value.upper() if isinstance(value, str) else value


# ============================================
# Transaction payloads
# ============================================

class _PayloadBase(BaseModel):
    """Fields shared by every transaction variant."""
    amount: Amount
    account_id: int
    description: Optional[str] = Field(None, max_length=500)
    date: datetime

    @field_validator("type", mode="before", check_fields=False)
    @classmethod
    def normalize_type(cls, v):
        return _upper(v)

    @field_validator("date")
    @classmethod
    def date_in_utc(cls, v):
        return as_utc(v)

    @property
    def transaction_type(self) -> TransactionType:
        return TransactionType(self.type)


class IncomePayload(_PayloadBase):
    type: Literal["INCOME"]
    category_id: int


class ExpensePayload(_PayloadBase):
    type: Literal["EXPENSE"]
    category_id: int


class TransferPayload(_PayloadBase):
    """Transfers never trust a caller-supplied category; it is resolved per owner."""
    type: Literal["TRANSFER"]
    to_account_id: int
    category_id: Optional[int] = Field(None, exclude=True)

    @model_validator(mode="after")
    def accounts_differ(self):
        if self.account_id == self.to_account_id:
            raise ValueError("Source and destination accounts must be different")
        return self


def _payload_tag(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return _upper(value.get("type"))
    return getattr(value, "type", None)


TransactionPayload = Annotated[
    Union[
        Annotated[IncomePayload, Tag("INCOME")],
        Annotated[ExpensePayload, Tag("EXPENSE")],
        Annotated[TransferPayload, Tag("TRANSFER")],
    ],
    Discriminator(
        _payload_tag,
        custom_error_type="invalid_transaction_type",
        custom_error_message="Type must be one of INCOME, EXPENSE, TRANSFER",
    ),
]

_payload_adapter = TypeAdapter(TransactionPayload)


def parse_payload(data: Any):
    """Validate a raw mapping into the matching payload variant."""
    return _payload_adapter.validate_python(data)


class TransactionResponse(BaseModel):
    """Schema for transaction response."""
    id: int
    type: TransactionType
    amount: Decimal
    account_id: int
    to_account_id: Optional[int] = None
    category_id: Optional[int] = None
    description: Optional[str] = None
    date: datetime
    is_initial_balance: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionCreated(BaseModel):
    success: bool = True
    transaction_id: int
    transaction: TransactionResponse


class TransactionList(BaseModel):
    transactions: List[TransactionResponse]
    count: int


# ============================================
# Account Schemas
# ============================================

class AccountCreate(BaseModel):
    """Schema for creating a wallet."""
    name: str = Field(min_length=1, max_length=100)
    balance: Money = Decimal("0")

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v):
        if not v.strip():
            raise ValueError("Wallet name is required")
        return v.strip()


class AccountUpdate(BaseModel):
    """Schema for editing a wallet (all fields optional)."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    balance: Optional[Money] = None


class AccountResponse(BaseModel):
    id: int
    user_id: Optional[str] = None
    name: str
    balance: Decimal
    is_system: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AccountList(BaseModel):
    success: bool = True
    accounts: List[AccountResponse]


class Reconciliation(BaseModel):
    account_id: int
    stored_balance: Decimal
    computed_balance: Decimal
    difference: Decimal
    consistent: bool


# ============================================
# Category Schemas
# ============================================

class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    type: CategoryType
    icon: str = Field("circle", min_length=1, max_length=50)
    color: str = Field("#6B7280", pattern=r"^#[0-9A-Fa-f]{6}$")

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        return _upper(v)


class CategoryResponse(BaseModel):
    id: int
    user_id: Optional[str] = None
    name: str
    type: CategoryType
    icon: str
    color: str
    is_system: bool

    model_config = ConfigDict(from_attributes=True)


class CategoryList(BaseModel):
    success: bool = True
    categories: List[CategoryResponse]


# ============================================
# Visibility overlay
# ============================================

class HiddenAccountEntry(BaseModel):
    hidden_id: int
    hidden_at: datetime
    account: AccountResponse


class HiddenCategoryEntry(BaseModel):
    hidden_id: int
    hidden_at: datetime
    category: CategoryResponse


class OperationResult(BaseModel):
    success: bool = True
    message: str


class InitializationResult(BaseModel):
    success: bool = True
    already_initialized: bool = False
    accounts_created: int = 0
    categories_created: int = 0


# ============================================
# Reports
# ============================================

class DashboardStats(BaseModel):
    total_balance: Decimal
    monthly_income: Decimal
    monthly_expense: Decimal
    savings_rate: float
    last_month_income: Decimal
    last_month_expense: Decimal
    income_change: float
    expense_change: float


class ChartPoint(BaseModel):
    name: str
    income: Decimal
    expenses: Decimal
    savings: Decimal


class ChartData(BaseModel):
    chart_data: List[ChartPoint]


class CategoryTotal(BaseModel):
    category_id: Optional[int] = None
    name: str
    color: str
    icon: str
    total: Decimal
    count: int
    percentage: float


class ReportSummary(BaseModel):
    total_expenses: Decimal
    total_income: Decimal
    balance: Decimal
    daily_average_expense: Decimal
    daily_average_income: Decimal
    expenses_by_category: List[CategoryTotal]
    incomes_by_category: List[CategoryTotal]


class MonthlyReport(BaseModel):
    transactions: List[TransactionResponse]
    summary: ReportSummary
