"""
FastAPI application entry point.
"""

from fastapi import Body, FastAPI, Depends, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlmodel import Session
from datetime import date
from typing import List, Optional

from . import catalog, ledger, reports, seed
from .auth import get_current_user_id
from .config import settings
from .database import create_db_and_tables, get_session
from .errors import LedgerError
from .logger import get_logger
from .models import ResourceKind
from .rate_limit import (
    RateLimitExceeded,
    RateLimitPolicy,
    RateLimitPresets,
    TokenBucketRateLimiter,
    UnlimitedRateLimiter,
)
from .schemas import (
    AccountCreate,
    AccountList,
    AccountResponse,
    AccountUpdate,
    CategoryCreate,
    CategoryList,
    CategoryResponse,
    ChartData,
    DashboardStats,
    HiddenAccountEntry,
    HiddenCategoryEntry,
    InitializationResult,
    MonthlyReport,
    OperationResult,
    Reconciliation,
    TransactionCreated,
    TransactionList,
    TransactionPayload,
    TransactionResponse,
)

logger = get_logger(__name__)


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Wallet Tracker API - Track wallets, income, expenses and transfers"
)

app.state.rate_limiter = (
    TokenBucketRateLimiter() if settings.RATE_LIMIT_ENABLED else UnlimitedRateLimiter()
)


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Create database tables on startup
@app.on_event("startup")
def on_startup():
    """Create database tables on application startup."""
    create_db_and_tables()
    logger.info("Database tables created")


# ============================================
# Error mapping
# ============================================

@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message} {exc.details}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"{request.method} {request.url.path} rejected: invalid payload")
    errors = jsonable_encoder(exc.errors(), exclude={"input", "ctx", "url"})
    message = errors[0]["msg"] if errors else "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "error": "ValidationError",
            "message": message,
            "details": {"errors": errors},
        },
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=exc.result.body(),
        headers=exc.result.headers(),
    )


def client_identifier(request: Request, user_id: Optional[str] = None) -> str:
    """Rate limit key: the user when known, else the client address."""
    if user_id:
        return f"user:{user_id}"
    forwarded = request.headers.get("x-forwarded-for")
    ip = (
        (forwarded.split(",")[0].strip() if forwarded else None)
        or request.headers.get("x-real-ip")
        or (request.client.host if request.client else None)
        or "anonymous"
    )
    return f"ip:{ip}"


def rate_limited(policy: RateLimitPolicy):
    """Dependency factory enforcing a rate limit policy per caller."""
    def dependency(request: Request, user_id: str = Depends(get_current_user_id)) -> None:
        result = request.app.state.rate_limiter.allow(client_identifier(request, user_id), policy)
        if not result.success:
            raise RateLimitExceeded(result)
    return dependency


# Root endpoint
@app.get("/", tags=["Root"])
async def read_root():
    """Root endpoint - API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/docs"
    }


# Health check endpoint
@app.get("/health", tags=["Root"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


# ============================================
# User Endpoints
# ============================================

@app.post(
    "/api/user/initialize",
    response_model=InitializationResult,
    dependencies=[Depends(rate_limited(RateLimitPresets.AUTH))],
    tags=["Users"]
)
def initialize_user(
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Seed default wallets and categories on first login."""
    return seed.initialize_user(session, user_id)


# ============================================
# Account Endpoints
# ============================================

@app.get(
    "/api/accounts",
    response_model=AccountList,
    dependencies=[Depends(rate_limited(RateLimitPresets.RELAXED))],
    tags=["Accounts"]
)
def read_accounts(
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """List visible accounts: system first, then by name."""
    return {"accounts": catalog.list_accounts(session, user_id)}


@app.post(
    "/api/accounts",
    response_model=AccountResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limited(RateLimitPresets.STRICT))],
    tags=["Accounts"]
)
def create_account(
    account_data: AccountCreate,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Create a wallet with an optional opening balance."""
    return catalog.create_account(session, account_data.name, account_data.balance, user_id)


@app.get(
    "/api/accounts/hidden",
    response_model=List[HiddenAccountEntry],
    dependencies=[Depends(rate_limited(RateLimitPresets.RELAXED))],
    tags=["Accounts"]
)
def read_hidden_accounts(
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """List accounts the user has hidden, newest first."""
    return [
        {"hidden_id": relation.id, "hidden_at": relation.hidden_at, "account": account}
        for relation, account in catalog.list_hidden(session, ResourceKind.ACCOUNTS, user_id)
    ]


@app.patch(
    "/api/accounts/{account_id}",
    response_model=AccountResponse,
    dependencies=[Depends(rate_limited(RateLimitPresets.STRICT))],
    tags=["Accounts"]
)
def update_account(
    account_id: int,
    account_data: AccountUpdate,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Rename a wallet or set its balance."""
    return catalog.update_account(
        session, account_id, user_id, name=account_data.name, balance=account_data.balance
    )


@app.delete(
    "/api/accounts/{account_id}",
    response_model=OperationResult,
    dependencies=[Depends(rate_limited(RateLimitPresets.STRICT))],
    tags=["Accounts"]
)
def delete_account(
    account_id: int,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Delete a wallet; system wallets are hidden instead."""
    outcome = catalog.delete_account(session, account_id, user_id)
    return {"message": f"Account {outcome} successfully"}


@app.get(
    "/api/accounts/{account_id}/reconcile",
    response_model=Reconciliation,
    dependencies=[Depends(rate_limited(RateLimitPresets.STANDARD))],
    tags=["Accounts"]
)
def reconcile_account(
    account_id: int,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Compare a wallet's stored balance with its transaction history."""
    return catalog.reconcile_account(session, account_id, user_id)


@app.post(
    "/api/accounts/{account_id}/hide",
    response_model=OperationResult,
    dependencies=[Depends(rate_limited(RateLimitPresets.STRICT))],
    tags=["Accounts"]
)
def hide_account(
    account_id: int,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    catalog.hide_resource(session, ResourceKind.ACCOUNTS, account_id, user_id)
    return {"message": "Account hidden successfully"}


@app.post(
    "/api/accounts/{account_id}/unhide",
    response_model=OperationResult,
    dependencies=[Depends(rate_limited(RateLimitPresets.STRICT))],
    tags=["Accounts"]
)
def unhide_account(
    account_id: int,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    catalog.unhide_resource(session, ResourceKind.ACCOUNTS, account_id, user_id)
    return {"message": "Account restored successfully"}


# ============================================
# Category Endpoints
# ============================================

@app.get(
    "/api/categories",
    response_model=CategoryList,
    dependencies=[Depends(rate_limited(RateLimitPresets.RELAXED))],
    tags=["Categories"]
)
def read_categories(
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """List visible categories: system first, then by name."""
    return {"categories": catalog.list_categories(session, user_id)}


@app.post(
    "/api/categories",
    response_model=CategoryResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limited(RateLimitPresets.STRICT))],
    tags=["Categories"]
)
def create_category(
    category_data: CategoryCreate,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    return catalog.create_category(
        session,
        category_data.name,
        category_data.type,
        user_id,
        icon=category_data.icon,
        color=category_data.color,
    )


@app.get(
    "/api/categories/hidden",
    response_model=List[HiddenCategoryEntry],
    dependencies=[Depends(rate_limited(RateLimitPresets.RELAXED))],
    tags=["Categories"]
)
def read_hidden_categories(
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    return [
        {"hidden_id": relation.id, "hidden_at": relation.hidden_at, "category": category}
        for relation, category in catalog.list_hidden(session, ResourceKind.CATEGORIES, user_id)
    ]


@app.delete(
    "/api/categories/{category_id}",
    response_model=OperationResult,
    dependencies=[Depends(rate_limited(RateLimitPresets.STRICT))],
    tags=["Categories"]
)
def delete_category(
    category_id: int,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    catalog.delete_category(session, category_id, user_id)
    return {"message": "Category deleted successfully"}


@app.post(
    "/api/categories/{category_id}/hide",
    response_model=OperationResult,
    dependencies=[Depends(rate_limited(RateLimitPresets.STRICT))],
    tags=["Categories"]
)
def hide_category(
    category_id: int,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    catalog.hide_resource(session, ResourceKind.CATEGORIES, category_id, user_id)
    return {"message": "Category hidden successfully"}


@app.post(
    "/api/categories/{category_id}/unhide",
    response_model=OperationResult,
    dependencies=[Depends(rate_limited(RateLimitPresets.STRICT))],
    tags=["Categories"]
)
def unhide_category(
    category_id: int,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    catalog.unhide_resource(session, ResourceKind.CATEGORIES, category_id, user_id)
    return {"message": "Category restored successfully"}


# ============================================
# Transaction Endpoints
# ============================================

@app.post(
    "/api/transactions",
    response_model=TransactionCreated,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limited(RateLimitPresets.STRICT))],
    tags=["Transactions"]
)
def create_transaction(
    transaction_data: TransactionPayload = Body(...),
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Post a transaction and apply it to the account balances."""
    transaction = ledger.create_transaction(session, transaction_data, user_id)
    return {
        "transaction_id": transaction.id,
        "transaction": TransactionResponse.model_validate(transaction),
    }


@app.get(
    "/api/transactions",
    response_model=TransactionList,
    dependencies=[Depends(rate_limited(RateLimitPresets.RELAXED))],
    tags=["Transactions"]
)
def read_transactions(
    limit: int = Query(settings.DEFAULT_TRANSACTION_LIMIT, ge=1, le=500),
    account_id: Optional[int] = None,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Get the current user's transactions, newest first."""
    transactions = ledger.list_transactions(session, user_id, limit=limit, account_id=account_id)
    return {"transactions": transactions, "count": len(transactions)}


@app.get(
    "/api/transactions/{transaction_id}",
    response_model=TransactionResponse,
    dependencies=[Depends(rate_limited(RateLimitPresets.RELAXED))],
    tags=["Transactions"]
)
def read_transaction(
    transaction_id: int,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Get a specific transaction by ID."""
    return ledger.get_transaction(session, transaction_id, user_id)


@app.put(
    "/api/transactions/{transaction_id}",
    response_model=TransactionResponse,
    dependencies=[Depends(rate_limited(RateLimitPresets.STRICT))],
    tags=["Transactions"]
)
def update_transaction(
    transaction_id: int,
    transaction_data: TransactionPayload = Body(...),
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Replace a transaction and move balances accordingly."""
    return ledger.update_transaction(session, transaction_id, transaction_data, user_id)


@app.delete(
    "/api/transactions/{transaction_id}",
    response_model=OperationResult,
    dependencies=[Depends(rate_limited(RateLimitPresets.STRICT))],
    tags=["Transactions"]
)
def delete_transaction(
    transaction_id: int,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Reverse a transaction's balance effect and delete it."""
    ledger.delete_transaction(session, transaction_id, user_id)
    return {"message": "Transaction deleted successfully"}


# ============================================
# Report Endpoints
# ============================================

@app.get(
    "/api/dashboard/stats",
    response_model=DashboardStats,
    dependencies=[Depends(rate_limited(RateLimitPresets.STANDARD))],
    tags=["Statistics"]
)
def get_dashboard_stats(
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Total balance and this month's figures against last month's."""
    return reports.dashboard_stats(session, user_id)


@app.get(
    "/api/dashboard/chart",
    response_model=ChartData,
    dependencies=[Depends(rate_limited(RateLimitPresets.STANDARD))],
    tags=["Statistics"]
)
def get_dashboard_chart(
    period: str = Query("6m", alias="range"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Monthly income, expenses and savings (1m, 6m, 1y), or one point for a custom range."""
    return {"chart_data": reports.chart_data(session, user_id, period, start_date, end_date)}


@app.get(
    "/api/reports/monthly",
    response_model=MonthlyReport,
    dependencies=[Depends(rate_limited(RateLimitPresets.EXPORT))],
    tags=["Statistics"]
)
def get_monthly_report(
    start_date: date,
    end_date: date,
    user_id: str = Depends(get_current_user_id),
    session: Session = Depends(get_session)
):
    """Totals, daily averages and category breakdown for a date range."""
    return reports.monthly_report(session, user_id, start_date, end_date)
