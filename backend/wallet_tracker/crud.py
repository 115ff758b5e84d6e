"""
Storage operations for accounts, categories, transactions and hidden relations.

Nothing here commits: every write is flushed into the caller's open
transaction so that a UnitOfWork can commit or roll back the whole
operation at once.
"""

from sqlalchemy import func, or_
from sqlmodel import Session, select
from typing import Dict, Iterable, List, Optional
from datetime import datetime
from decimal import Decimal

from .models import (
    Account,
    Category,
    CategoryType,
    HiddenAccount,
    HiddenCategory,
    ResourceKind,
    Transaction,
    utcnow,
)


# ============================================
# Account Store
# ============================================

def get_account(session: Session, account_id: int) -> Optional[Account]:
    """Get an account by id."""
    return session.get(Account, account_id)


def lock_accounts(session: Session, account_ids: Iterable[int]) -> Dict[int, Account]:
    """
    Load accounts with row-level locks, always in ascending id order.

    Balances are re-read from the database even if the rows are already
    in the session, so sufficiency checks never see a stale value.
    """
    ids = sorted({account_id for account_id in account_ids if account_id is not None})
    if not ids:
        return {}
    statement = (
        select(Account)
        .where(Account.id.in_(ids))
        .order_by(Account.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {account.id: account for account in session.exec(statement).all()}


def get_owned_accounts(session: Session, user_id: str) -> List[Account]:
    """Get every account owned by a user."""
    statement = select(Account).where(Account.user_id == user_id).order_by(Account.id)
    return session.exec(statement).all()


def get_visible_accounts(session: Session, user_id: str) -> List[Account]:
    """Global system accounts plus the user's own, minus the ones they hid."""
    hidden = select(HiddenAccount.account_id).where(HiddenAccount.user_id == user_id)
    statement = (
        select(Account)
        .where(
            or_(
                Account.user_id == user_id,
                Account.is_system.is_(True) & Account.user_id.is_(None),
            )
        )
        .where(Account.id.not_in(hidden))
        .order_by(Account.is_system.desc(), Account.name)
    )
    return session.exec(statement).all()


def create_account(
    session: Session,
    user_id: Optional[str],
    name: str,
    balance: Decimal = Decimal("0"),
    is_system: bool = False,
) -> Account:
    """Create a new account."""
    account = Account(
        user_id=user_id,
        name=name,
        balance=balance,
        opening_balance=balance,
        is_system=is_system,
    )
    session.add(account)
    session.flush()
    return account


def set_account_balance(session: Session, account: Account, balance: Decimal) -> Account:
    """Write a new stored balance for an account."""
    account.balance = balance
    account.updated_at = utcnow()
    session.add(account)
    session.flush()
    return account


def save_account(session: Session, account: Account) -> Account:
    """Write edited account fields."""
    account.updated_at = utcnow()
    session.add(account)
    session.flush()
    return account


def delete_account(session: Session, account: Account) -> None:
    """Permanently delete an account."""
    session.delete(account)
    session.flush()


def count_account_transactions(
    session: Session,
    account_id: int,
    include_initial: bool = False
) -> int:
    """Count transactions touching an account as source or destination."""
    statement = select(func.count(Transaction.id)).where(
        or_(Transaction.account_id == account_id, Transaction.to_account_id == account_id)
    )
    if not include_initial:
        statement = statement.where(Transaction.is_initial_balance.is_(False))
    return session.exec(statement).one()


# ============================================
# Category Catalog
# ============================================

def get_category(session: Session, category_id: int) -> Optional[Category]:
    """Get a category by id."""
    return session.get(Category, category_id)


def get_transfer_category(session: Session, user_id: str) -> Optional[Category]:
    """The user's own TRANSFER category, else a global one."""
    statement = (
        select(Category)
        .where(Category.type == CategoryType.TRANSFER)
        .where(or_(Category.user_id == user_id, Category.user_id.is_(None)))
        # owned rows first
        .order_by(Category.user_id.is_(None), Category.id)
    )
    return session.exec(statement).first()


def get_visible_categories(session: Session, user_id: str) -> List[Category]:
    """Global system categories plus the user's own, minus the ones they hid."""
    hidden = select(HiddenCategory.category_id).where(HiddenCategory.user_id == user_id)
    statement = (
        select(Category)
        .where(
            or_(
                Category.user_id == user_id,
                Category.is_system.is_(True) & Category.user_id.is_(None),
            )
        )
        .where(Category.id.not_in(hidden))
        .order_by(Category.is_system.desc(), Category.name)
    )
    return session.exec(statement).all()


def create_category(
    session: Session,
    user_id: Optional[str],
    name: str,
    type: CategoryType,
    icon: str = "circle",
    color: str = "#6B7280",
    is_system: bool = False,
) -> Category:
    """Create a new category."""
    category = Category(
        user_id=user_id,
        name=name,
        type=type,
        icon=icon,
        color=color,
        is_system=is_system,
    )
    session.add(category)
    session.flush()
    return category


def delete_category(session: Session, category: Category) -> None:
    """Permanently delete a category."""
    session.delete(category)
    session.flush()


def count_category_transactions(session: Session, category_id: int) -> int:
    """Count transactions referencing a category."""
    statement = select(func.count(Transaction.id)).where(Transaction.category_id == category_id)
    return session.exec(statement).one()


# ============================================
# Transaction Record Store
# ============================================

def get_transaction(session: Session, transaction_id: int) -> Optional[Transaction]:
    """Get a transaction by id."""
    return session.get(Transaction, transaction_id)


def lock_transaction(session: Session, transaction_id: int) -> Optional[Transaction]:
    """
    Load a transaction with a row-level lock, re-read from the database.

    Returns None if the row is gone, including when a concurrent request
    deleted it after this session last saw it.
    """
    statement = (
        select(Transaction)
        .where(Transaction.id == transaction_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return session.exec(statement).first()


def get_transactions_by_user(
    session: Session,
    user_id: str,
    limit: int = 50,
    account_id: Optional[int] = None
) -> List[Transaction]:
    """Get transactions whose source account belongs to the user, newest first."""
    owned = select(Account.id).where(Account.user_id == user_id)
    statement = select(Transaction).where(Transaction.account_id.in_(owned))

    if account_id is not None:
        statement = statement.where(Transaction.account_id == account_id)

    statement = statement.order_by(Transaction.date.desc(), Transaction.id.desc()).limit(limit)
    return session.exec(statement).all()


def get_transactions_in_range(
    session: Session,
    user_id: str,
    start: datetime,
    end: datetime
) -> List[Transaction]:
    """Get a user's transactions dated within [start, end], newest first."""
    owned = select(Account.id).where(Account.user_id == user_id)
    statement = (
        select(Transaction)
        .where(Transaction.account_id.in_(owned))
        .where(Transaction.date >= start, Transaction.date <= end)
        .order_by(Transaction.date.desc(), Transaction.id.desc())
    )
    return session.exec(statement).all()


def get_account_transactions(session: Session, account_id: int) -> List[Transaction]:
    """Get every transaction touching an account as source or destination."""
    statement = select(Transaction).where(
        or_(Transaction.account_id == account_id, Transaction.to_account_id == account_id)
    )
    return session.exec(statement).all()


def get_initial_balance_transactions(session: Session, account_id: int) -> List[Transaction]:
    """Get the synthetic opening-balance rows of an account."""
    statement = select(Transaction).where(
        Transaction.account_id == account_id,
        Transaction.is_initial_balance.is_(True)
    )
    return session.exec(statement).all()


def insert_transaction(session: Session, transaction: Transaction) -> Transaction:
    """Write a new transaction row."""
    session.add(transaction)
    session.flush()
    return transaction


def save_transaction(session: Session, transaction: Transaction, **fields) -> Transaction:
    """Replace the fields of a transaction row."""
    for key, value in fields.items():
        setattr(transaction, key, value)

    transaction.updated_at = utcnow()
    session.add(transaction)
    session.flush()
    return transaction


def delete_transaction(session: Session, transaction: Transaction) -> None:
    """Permanently delete a transaction."""
    session.delete(transaction)
    session.flush()


# ============================================
# Hidden relations
# ============================================

_HIDDEN_MODELS = {
    ResourceKind.ACCOUNTS: (HiddenAccount, "account_id"),
    ResourceKind.CATEGORIES: (HiddenCategory, "category_id"),
}


def get_hidden(session: Session, kind: ResourceKind, user_id: str, target_id: int):
    """Get the hidden relation for (user, target), if any."""
    model, column = _HIDDEN_MODELS[kind]
    statement = select(model).where(
        model.user_id == user_id,
        getattr(model, column) == target_id
    )
    return session.exec(statement).first()


def hide(session: Session, kind: ResourceKind, user_id: str, target_id: int):
    """Insert a hidden relation; an existing one is returned unchanged."""
    existing = get_hidden(session, kind, user_id, target_id)
    if existing is not None:
        return existing

    model, column = _HIDDEN_MODELS[kind]
    relation = model(user_id=user_id, **{column: target_id})
    session.add(relation)
    session.flush()
    return relation


def unhide(session: Session, kind: ResourceKind, user_id: str, target_id: int) -> bool:
    """Delete a hidden relation. Returns False if there was none."""
    existing = get_hidden(session, kind, user_id, target_id)
    if existing is None:
        return False
    session.delete(existing)
    session.flush()
    return True


def list_hidden(session: Session, kind: ResourceKind, user_id: str) -> list:
    """Get (relation, resource) pairs hidden by a user, newest first."""
    model, column = _HIDDEN_MODELS[kind]
    target = Account if kind == ResourceKind.ACCOUNTS else Category
    statement = (
        select(model, target)
        .join(target, getattr(model, column) == target.id)
        .where(model.user_id == user_id)
        .order_by(model.hidden_at.desc(), model.id.desc())
    )
    return session.exec(statement).all()
