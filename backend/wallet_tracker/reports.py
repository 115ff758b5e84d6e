"""Aggregated figures over a user's ledger. Transfers move money between
the user's own wallets, so they are never counted as income or expense;
initial-balance rows are not income either."""

from collections import OrderedDict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlmodel import Session

from . import crud
from .errors import ValidationError, require_user
from .models import Transaction, TransactionType

ZERO = Decimal("0")
CENTS = Decimal("0.01")


def _add_months(year: int, month: int, delta: int):
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _month_bounds(year: int, month: int):
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    next_year, next_month = _add_months(year, month, 1)
    next_start = datetime(next_year, next_month, 1, tzinfo=timezone.utc)
    return start, next_start - timedelta(microseconds=1)


def _day_bounds(start: date, end: date):
    return (
        datetime.combine(start, time.min, tzinfo=timezone.utc),
        datetime.combine(end, time.max, tzinfo=timezone.utc),
    )


def _totals(transactions: List[Transaction]) -> Dict[TransactionType, Decimal]:
    totals = {TransactionType.INCOME: ZERO, TransactionType.EXPENSE: ZERO}
    for transaction in transactions:
        if transaction.is_initial_balance or transaction.type not in totals:
            continue
        totals[transaction.type] += transaction.amount
    return totals


def _percent_change(current: Decimal, previous: Decimal) -> float:
    if previous > 0:
        return float((current - previous) / previous * 100)
    return 100.0 if current > 0 else 0.0


def dashboard_stats(session: Session, owner_id: str, today: Optional[date] = None) -> dict:
    """Total balance plus this month's and last month's income and expense."""
    owner_id = require_user(owner_id)
    today = today or date.today()

    total_balance = sum((a.balance for a in crud.get_owned_accounts(session, owner_id)), ZERO)

    current = _totals(crud.get_transactions_in_range(
        session, owner_id, *_month_bounds(today.year, today.month)
    ))
    last_year, last_month = _add_months(today.year, today.month, -1)
    previous = _totals(crud.get_transactions_in_range(
        session, owner_id, *_month_bounds(last_year, last_month)
    ))

    income = current[TransactionType.INCOME]
    expense = current[TransactionType.EXPENSE]
    savings_rate = float((income - expense) / income * 100) if income > 0 else 0.0

    return {
        "total_balance": total_balance,
        "monthly_income": income,
        "monthly_expense": expense,
        "savings_rate": savings_rate,
        "last_month_income": previous[TransactionType.INCOME],
        "last_month_expense": previous[TransactionType.EXPENSE],
        "income_change": _percent_change(income, previous[TransactionType.INCOME]),
        "expense_change": _percent_change(expense, previous[TransactionType.EXPENSE]),
    }


def _group_by_category(session: Session, transactions: List[Transaction], total: Decimal) -> List[dict]:
    groups: "OrderedDict[Optional[int], dict]" = OrderedDict()
    for transaction in transactions:
        group = groups.get(transaction.category_id)
        if group is None:
            category = crud.get_category(session, transaction.category_id) if transaction.category_id else None
            group = groups[transaction.category_id] = {
                "category_id": transaction.category_id,
                "name": category.name if category else "Uncategorized",
                "color": category.color if category else "#6B7280",
                "icon": category.icon if category else "circle",
                "total": ZERO,
                "count": 0,
            }
        group["total"] += transaction.amount
        group["count"] += 1

    rows = sorted(groups.values(), key=lambda g: g["total"], reverse=True)
    for row in rows:
        row["percentage"] = float(row["total"] / total * 100) if total > 0 else 0.0
    return rows


def monthly_report(session: Session, owner_id: str, start: date, end: date) -> dict:
    """Transactions of a date range with totals, daily averages and category breakdowns."""
    owner_id = require_user(owner_id)
    if end < start:
        raise ValidationError("endDate must not be before startDate")

    transactions = crud.get_transactions_in_range(
        session, owner_id, *_day_bounds(start, end)
    )
    counted = [t for t in transactions if not t.is_initial_balance]
    expenses = [t for t in counted if t.type == TransactionType.EXPENSE]
    incomes = [t for t in counted if t.type == TransactionType.INCOME]

    totals = _totals(counted)
    total_income = totals[TransactionType.INCOME]
    total_expenses = totals[TransactionType.EXPENSE]
    days = (end - start).days + 1

    return {
        "transactions": transactions,
        "summary": {
            "total_expenses": total_expenses,
            "total_income": total_income,
            "balance": total_income - total_expenses,
            "daily_average_expense": (total_expenses / days).quantize(CENTS),
            "daily_average_income": (total_income / days).quantize(CENTS),
            "expenses_by_category": _group_by_category(session, expenses, total_expenses),
            "incomes_by_category": _group_by_category(session, incomes, total_income),
        },
    }


# Months shown per chart range, current month included.
CHART_RANGES = {"1m": 1, "6m": 6, "1y": 12}


def _chart_point(name: str, transactions: List[Transaction]) -> dict:
    totals = _totals(transactions)
    income = totals[TransactionType.INCOME]
    expenses = totals[TransactionType.EXPENSE]
    return {"name": name, "income": income, "expenses": expenses, "savings": income - expenses}


def _day_label(day: date) -> str:
    return f"{day:%b} {day.day}, {day.year}"


def chart_data(
    session: Session,
    owner_id: str,
    period: str = "6m",
    start: Optional[date] = None,
    end: Optional[date] = None,
    today: Optional[date] = None
) -> List[dict]:
    """
    Income, expenses and savings per calendar month, oldest first.

    ``period`` is one of CHART_RANGES, or "custom" for a single point
    aggregated over ``start``..``end``. Months without activity are
    present with zero totals.
    """
    owner_id = require_user(owner_id)

    if period == "custom":
        if start is None or end is None:
            raise ValidationError("Custom range requires startDate and endDate")
        if end < start:
            raise ValidationError("endDate must not be before startDate")
        transactions = crud.get_transactions_in_range(session, owner_id, *_day_bounds(start, end))
        return [_chart_point(f"{_day_label(start)} - {_day_label(end)}", transactions)]

    months = CHART_RANGES.get(period)
    if months is None:
        raise ValidationError("Range must be one of 1m, 6m, 1y, custom")

    today = today or date.today()
    buckets: "OrderedDict[tuple, List[Transaction]]" = OrderedDict()
    for offset in range(months - 1, -1, -1):
        buckets[_add_months(today.year, today.month, -offset)] = []

    first_start, _ = _month_bounds(*next(iter(buckets)))
    _, last_end = _month_bounds(today.year, today.month)
    for transaction in crud.get_transactions_in_range(session, owner_id, first_start, last_end):
        buckets[(transaction.date.year, transaction.date.month)].append(transaction)

    return [
        _chart_point(f"{date(year, month, 1):%b %Y}", transactions)
        for (year, month), transactions in buckets.items()
    ]
