"""
Account and category lifecycle, and the per-user visibility overlay.

System resources are shared rows that a user can hide from their own view
but never delete. Everything a user created is theirs to delete, as long
as no transaction still depends on it.
"""

from decimal import Decimal
from typing import List, Optional

from sqlmodel import Session

from . import crud
from .database import UnitOfWork
from .errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
    require_user,
)
from .ledger import transaction_effects
from .logger import get_logger
from .models import Account, Category, CategoryType, ResourceKind, Transaction, TransactionType

logger = get_logger(__name__)


def _visible_to(resource, owner_id: str) -> bool:
    return resource.user_id == owner_id or (resource.is_system and resource.user_id is None)


# ============================================
# Accounts
# ============================================

def create_account(
    session: Session,
    name: str,
    opening_balance: Decimal,
    owner_id: str,
    is_system: bool = False
) -> Account:
    """
    Create a wallet for the owner.

    A positive opening balance is also recorded as an initial-balance
    INCOME transaction so the account's history explains its balance.
    """
    owner_id = require_user(owner_id)
    if not name or not name.strip():
        raise ValidationError("Wallet name is required")
    opening_balance = Decimal(opening_balance or 0)

    with UnitOfWork(session, "create account"):
        account = crud.create_account(
            session, owner_id, name.strip(), balance=opening_balance, is_system=is_system
        )
        if opening_balance > 0:
            crud.insert_transaction(session, Transaction(
                type=TransactionType.INCOME,
                amount=opening_balance,
                account_id=account.id,
                description="Initial balance",
                date=account.created_at,
                is_initial_balance=True,
            ))

    logger.info(f"Created account #{account.id} for user {owner_id} with balance {opening_balance}")
    return account


def _owned_account(session: Session, account_id: int, owner_id: str) -> Account:
    account = crud.get_account(session, account_id)
    if account is None:
        raise NotFoundError("Account not found")
    if account.user_id != owner_id:
        raise AuthorizationError("Cannot modify account from other user")
    return account


def update_account(
    session: Session,
    account_id: int,
    owner_id: str,
    name: Optional[str] = None,
    balance: Optional[Decimal] = None
) -> Account:
    """
    Rename an account and/or set its balance directly.

    A direct balance edit moves the opening balance by the same amount so
    reconciliation against the transaction history stays exact.
    """
    owner_id = require_user(owner_id)

    with UnitOfWork(session, "update account") as uow:
        account = _owned_account(session, account_id, owner_id)
        if balance is not None:
            account = crud.lock_accounts(session, [account.id])[account.id]
            uow.remember(account)

        if name is not None:
            if not name.strip():
                raise ValidationError("Wallet name is required")
            account.name = name.strip()
        if balance is not None:
            balance = Decimal(balance)
            account.opening_balance = account.opening_balance + (balance - account.balance)
            crud.set_account_balance(session, account, balance)
        crud.save_account(session, account)

    logger.info(f"Updated account #{account_id} for user {owner_id}")
    return account


def delete_account(session: Session, account_id: int, owner_id: str) -> str:
    """
    Delete a wallet, or hide it when it is a system account.

    Returns "hidden" or "deleted". Accounts with any transaction other than
    their initial balance are refused with ConflictError; the initial
    balance transaction itself is removed along with the account.
    """
    owner_id = require_user(owner_id)

    with UnitOfWork(session, "delete account"):
        account = crud.get_account(session, account_id)
        if account is None or not _visible_to(account, owner_id):
            raise NotFoundError("Account not found")

        if account.is_system:
            crud.hide(session, ResourceKind.ACCOUNTS, owner_id, account.id)
            outcome = "hidden"
        else:
            if crud.count_account_transactions(session, account.id) > 0:
                raise ConflictError(
                    "Cannot delete account that has transaction history",
                    details={"account_id": account.id},
                )
            for transaction in crud.get_initial_balance_transactions(session, account.id):
                crud.delete_transaction(session, transaction)
            crud.delete_account(session, account)
            outcome = "deleted"

    logger.info(f"Account #{account_id} {outcome} for user {owner_id}")
    return outcome


def list_accounts(session: Session, owner_id: str) -> List[Account]:
    owner_id = require_user(owner_id)
    return crud.get_visible_accounts(session, owner_id)


def reconcile_account(session: Session, account_id: int, owner_id: str) -> dict:
    """Compare a stored balance with the one implied by its history."""
    owner_id = require_user(owner_id)
    account = _owned_account(session, account_id, owner_id)

    computed = account.opening_balance
    for transaction in crud.get_account_transactions(session, account.id):
        if transaction.is_initial_balance:
            continue
        effects = transaction_effects(
            transaction.type, transaction.amount, transaction.account_id, transaction.to_account_id
        )
        computed += effects.get(account.id, Decimal("0"))

    difference = account.balance - computed
    if difference != 0:
        logger.warning(
            f"Account #{account.id} out of balance: stored {account.balance}, computed {computed}"
        )
    return {
        "account_id": account.id,
        "stored_balance": account.balance,
        "computed_balance": computed,
        "difference": difference,
        "consistent": difference == 0,
    }


# ============================================
# Categories
# ============================================

def create_category(
    session: Session,
    name: str,
    type,
    owner_id: str,
    icon: str = "circle",
    color: str = "#6B7280",
    is_system: bool = False
) -> Category:
    owner_id = require_user(owner_id)
    if not name or not name.strip():
        raise ValidationError("Name and type are required")
    try:
        category_type = CategoryType(type.upper() if isinstance(type, str) else type)
    except ValueError:
        raise ValidationError("Type must be one of INCOME, EXPENSE, TRANSFER") from None

    with UnitOfWork(session, "create category"):
        category = crud.create_category(
            session,
            owner_id,
            name.strip(),
            category_type,
            icon=icon or "circle",
            color=color or "#6B7280",
            is_system=is_system,
        )

    logger.info(f"Created {category_type.value} category #{category.id} for user {owner_id}")
    return category


def delete_category(session: Session, category_id: int, owner_id: str) -> None:
    owner_id = require_user(owner_id)

    with UnitOfWork(session, "delete category"):
        category = crud.get_category(session, category_id)
        if category is None:
            raise NotFoundError("Category not found")
        if category.is_system:
            raise ConflictError("System categories cannot be deleted; hide them instead")
        if category.user_id != owner_id:
            raise AuthorizationError("Cannot delete category from other user")
        if crud.count_category_transactions(session, category.id) > 0:
            raise ConflictError(
                "Cannot delete category that is being used in transactions",
                details={"category_id": category.id},
            )
        crud.delete_category(session, category)

    logger.info(f"Deleted category #{category_id} for user {owner_id}")


def list_categories(session: Session, owner_id: str) -> List[Category]:
    owner_id = require_user(owner_id)
    return crud.get_visible_categories(session, owner_id)


# ============================================
# Visibility overlay
# ============================================

_LABELS = {ResourceKind.ACCOUNTS: "Account", ResourceKind.CATEGORIES: "Category"}


def _get_resource(session: Session, kind: ResourceKind, resource_id: int):
    if kind == ResourceKind.ACCOUNTS:
        return crud.get_account(session, resource_id)
    return crud.get_category(session, resource_id)


def hide_resource(session: Session, kind: ResourceKind, resource_id: int, owner_id: str) -> None:
    """Hide a system account or category from the owner's listings."""
    owner_id = require_user(owner_id)
    kind = ResourceKind(kind)

    with UnitOfWork(session, f"hide {kind.value}"):
        resource = _get_resource(session, kind, resource_id)
        if resource is None or not _visible_to(resource, owner_id):
            raise NotFoundError(f"{_LABELS[kind]} not found")
        if not resource.is_system:
            raise ConflictError("Only system resources can be hidden")
        crud.hide(session, kind, owner_id, resource.id)

    logger.info(f"User {owner_id} hid {kind.value} #{resource_id}")


def unhide_resource(session: Session, kind: ResourceKind, resource_id: int, owner_id: str) -> bool:
    """Restore a hidden resource. Returns False when it was not hidden."""
    owner_id = require_user(owner_id)
    kind = ResourceKind(kind)

    with UnitOfWork(session, f"unhide {kind.value}"):
        removed = crud.unhide(session, kind, owner_id, resource_id)

    if removed:
        logger.info(f"User {owner_id} restored {kind.value} #{resource_id}")
    return removed


def list_hidden(session: Session, kind: ResourceKind, owner_id: str) -> list:
    owner_id = require_user(owner_id)
    return crud.list_hidden(session, ResourceKind(kind), owner_id)
