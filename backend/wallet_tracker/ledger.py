"""
Balance mutation engine.

Posts, edits and deletes transactions while keeping account balances
consistent. For every stored transaction its effect is reflected exactly
once in the balances of the accounts it touches:

    INCOME    source += amount
    EXPENSE   source -= amount
    TRANSFER  source -= amount, destination += amount

Each operation runs inside one UnitOfWork. Updates and deletes lock the
transaction row first, so a concurrent request that already removed or
rewrote it is seen before any balance moves. Account rows are locked before
the sufficiency check, balance changes are accumulated per account id and
written once, and any failure rolls back the transaction row together with
every balance written so far.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError as PayloadValidationError
from sqlmodel import Session

from . import crud
from .database import UnitOfWork
from .errors import (
    AuthorizationError,
    ConflictError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
    require_user,
)
from .logger import get_logger
from .models import Account, Transaction, TransactionType
from .schemas import TransferPayload, parse_payload

logger = get_logger(__name__)

ZERO = Decimal("0")


# ============================================
# Effects
# ============================================

def source_effect(type: TransactionType, amount: Decimal) -> Decimal:
    """Signed change a transaction makes to its source account."""
    return amount if type == TransactionType.INCOME else -amount


def transaction_effects(
    type: TransactionType,
    amount: Decimal,
    account_id: int,
    to_account_id: Optional[int] = None
) -> Dict[int, Decimal]:
    """Signed balance change per account id."""
    effects = {account_id: source_effect(type, amount)}
    if type == TransactionType.TRANSFER:
        effects[to_account_id] = effects.get(to_account_id, ZERO) + amount
    return effects


def _reversed(effects: Dict[int, Decimal]) -> Dict[int, Decimal]:
    return {account_id: -delta for account_id, delta in effects.items()}


def _accumulate(order: Iterable[Optional[int]], *changes: Dict[int, Decimal]) -> Dict[int, Decimal]:
    """Sum several effect maps; keys keep the write order given by ``order``."""
    deltas = dict.fromkeys((i for i in order if i is not None), ZERO)
    for change in changes:
        for account_id, delta in change.items():
            deltas[account_id] = deltas.get(account_id, ZERO) + delta
    return deltas


def _apply(session: Session, accounts: Dict[int, Account], deltas: Dict[int, Decimal]) -> None:
    for account_id, delta in deltas.items():
        if delta == ZERO:
            continue
        account = accounts[account_id]
        crud.set_account_balance(session, account, account.balance + delta)


# ============================================
# Validation helpers
# ============================================

def coerce_payload(payload):
    """Accept either a parsed payload variant or a raw mapping."""
    if isinstance(payload, dict):
        try:
            return parse_payload(payload)
        except PayloadValidationError as exc:
            raise ValidationError(
                "Invalid transaction payload",
                details={"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
            ) from exc
    return payload


def _owned(account: Optional[Account], owner_id: str, role: str) -> Account:
    if account is None or account.user_id != owner_id:
        raise AuthorizationError(f"{role} account not found or unauthorized")
    return account


def resolve_category(session: Session, payload, owner_id: str) -> Optional[int]:
    """
    Produce the category id to store for a payload.

    Transfers always get the owner's TRANSFER category (or a global one);
    whatever the caller sent is ignored. Other types must reference a
    category the owner can see.
    """
    if isinstance(payload, TransferPayload):
        category = crud.get_transfer_category(session, owner_id)
        if category is None:
            logger.warning(f"No TRANSFER category available for user {owner_id}")
            return None
        return category.id

    if payload.category_id is None:
        raise ValidationError("Category is required for non-transfer transactions")
    category = crud.get_category(session, payload.category_id)
    if category is None:
        raise NotFoundError("Category not found")
    if category.user_id not in (owner_id, None):
        raise AuthorizationError("Category not found or unauthorized")
    return category.id


def _destination_id(payload) -> Optional[int]:
    return payload.to_account_id if isinstance(payload, TransferPayload) else None


def _check_sufficient(type: TransactionType, account: Account, final_balance: Decimal, amount: Decimal) -> None:
    if type != TransactionType.INCOME and final_balance < ZERO:
        raise InsufficientBalanceError(
            "Insufficient balance in source account",
            details={
                "account_id": account.id,
                "balance": str(account.balance),
                "amount": str(amount),
            },
        )


# ============================================
# Create / Update / Delete
# ============================================

def create_transaction(session: Session, payload, owner_id: str) -> Transaction:
    """Post a new transaction and apply its balance effect."""
    owner_id = require_user(owner_id)
    payload = coerce_payload(payload)
    tx_type = payload.transaction_type
    to_account_id = _destination_id(payload)

    with UnitOfWork(session, "create transaction") as uow:
        category_id = resolve_category(session, payload, owner_id)

        accounts = crud.lock_accounts(session, [payload.account_id, to_account_id])
        source = _owned(accounts.get(payload.account_id), owner_id, "Source")
        if to_account_id is not None:
            _owned(accounts.get(to_account_id), owner_id, "Destination")
        for account in accounts.values():
            uow.remember(account)

        _check_sufficient(tx_type, source, source.balance - payload.amount, payload.amount)

        transaction = crud.insert_transaction(session, Transaction(
            type=tx_type,
            amount=payload.amount,
            account_id=payload.account_id,
            to_account_id=to_account_id,
            category_id=category_id,
            description=payload.description or None,
            date=payload.date,
        ))
        deltas = transaction_effects(tx_type, payload.amount, payload.account_id, to_account_id)
        _apply(session, accounts, deltas)

    logger.info(
        f"Created {tx_type.value} #{transaction.id} of {payload.amount} "
        f"on account {payload.account_id} for user {owner_id}"
    )
    return transaction


def update_transaction(session: Session, transaction_id: int, payload, owner_id: str) -> Transaction:
    """
    Replace every field of a transaction and move balances accordingly.

    The original effect is reversed and the new one applied in a single
    per-account delta, so an account shared by the old and the new
    version of the transaction is only written once.
    """
    owner_id = require_user(owner_id)
    payload = coerce_payload(payload)
    tx_type = payload.transaction_type
    to_account_id = _destination_id(payload)

    with UnitOfWork(session, "update transaction") as uow:
        original = crud.lock_transaction(session, transaction_id)
        if original is None:
            raise NotFoundError("Transaction not found")

        accounts = crud.lock_accounts(session, [
            original.account_id, original.to_account_id, payload.account_id, to_account_id,
        ])
        _owned(accounts.get(original.account_id), owner_id, "Source")
        if original.is_initial_balance:
            raise ConflictError("Initial balance transactions cannot be edited")
        if original.to_account_id is not None:
            _owned(accounts.get(original.to_account_id), owner_id, "Destination")

        category_id = resolve_category(session, payload, owner_id)

        new_source = _owned(accounts.get(payload.account_id), owner_id, "Source")
        if to_account_id is not None:
            _owned(accounts.get(to_account_id), owner_id, "Destination")
        for account in accounts.values():
            uow.remember(account)

        reversal = _reversed(transaction_effects(
            original.type, original.amount, original.account_id, original.to_account_id
        ))
        effect = transaction_effects(tx_type, payload.amount, payload.account_id, to_account_id)
        deltas = _accumulate(
            [payload.account_id, original.account_id, original.to_account_id, to_account_id],
            reversal,
            effect,
        )

        final_source = new_source.balance + deltas[new_source.id]
        _check_sufficient(tx_type, new_source, final_source, payload.amount)

        transaction = crud.save_transaction(
            session,
            original,
            type=tx_type,
            amount=payload.amount,
            account_id=payload.account_id,
            to_account_id=to_account_id,
            category_id=category_id,
            description=payload.description or None,
            date=payload.date,
        )
        _apply(session, accounts, deltas)

    logger.info(f"Updated transaction #{transaction_id} for user {owner_id}")
    return transaction


def delete_transaction(session: Session, transaction_id: int, owner_id: str) -> None:
    """Reverse a transaction's balance effect, then remove the row."""
    owner_id = require_user(owner_id)

    with UnitOfWork(session, "delete transaction") as uow:
        transaction = crud.lock_transaction(session, transaction_id)
        if transaction is None:
            raise NotFoundError("Transaction not found")

        accounts = crud.lock_accounts(session, [transaction.account_id, transaction.to_account_id])
        _owned(accounts.get(transaction.account_id), owner_id, "Source")
        if transaction.is_initial_balance:
            raise ConflictError("Initial balance transactions cannot be deleted")
        if transaction.type == TransactionType.TRANSFER:
            _owned(accounts.get(transaction.to_account_id), owner_id, "Destination")
        for account in accounts.values():
            uow.remember(account)

        reversal = _reversed(transaction_effects(
            transaction.type, transaction.amount, transaction.account_id, transaction.to_account_id
        ))
        _apply(session, accounts, reversal)
        crud.delete_transaction(session, transaction)

    logger.info(f"Deleted transaction #{transaction_id} for user {owner_id}")


# ============================================
# Reads
# ============================================

def get_transaction(session: Session, transaction_id: int, owner_id: str) -> Transaction:
    owner_id = require_user(owner_id)
    transaction = crud.get_transaction(session, transaction_id)
    if transaction is None:
        raise NotFoundError("Transaction not found")
    _owned(crud.get_account(session, transaction.account_id), owner_id, "Source")
    return transaction


def list_transactions(
    session: Session,
    owner_id: str,
    limit: int = 50,
    account_id: Optional[int] = None
) -> List[Transaction]:
    owner_id = require_user(owner_id)
    return crud.get_transactions_by_user(session, owner_id, limit=limit, account_id=account_id)
