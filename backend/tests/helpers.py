from datetime import datetime
from decimal import Decimal

from sqlalchemy import func
from sqlmodel import Session, select

from wallet_tracker.models import Account, Transaction

OWNER = "alice"
OTHER = "bob"


def payload(type, amount, account_id, category_id=None, to_account_id=None, description=None, date=None) -> dict:
    data = {
        "type": type,
        "amount": Decimal(str(amount)),
        "account_id": account_id,
        "date": date or datetime(2024, 5, 1, 12, 0),
    }
    if category_id is not None:
        data["category_id"] = category_id
    if to_account_id is not None:
        data["to_account_id"] = to_account_id
    if description is not None:
        data["description"] = description
    return data


def balance(session: Session, account_id: int) -> Decimal:
    account = session.get(Account, account_id)
    session.refresh(account)
    return account.balance


def transaction_count(session: Session) -> int:
    return session.exec(select(func.count(Transaction.id))).one()
