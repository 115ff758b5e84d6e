"""
First-login seeding of a user's ledger from default templates.

Seeded rows are flagged as system resources: they belong to the user but
can only be hidden, not deleted.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Protocol

from sqlmodel import Session

from . import crud
from .database import UnitOfWork
from .errors import require_user
from .logger import get_logger
from .models import CategoryType

logger = get_logger(__name__)


@dataclass(frozen=True)
class WalletTemplate:
    name: str
    balance: Decimal = Decimal("0")


@dataclass(frozen=True)
class CategoryTemplate:
    name: str
    type: CategoryType
    icon: str = "circle"
    color: str = "#6B7280"


class TemplateProvider(Protocol):
    def wallet_templates(self) -> List[WalletTemplate]: ...

    def category_templates(self) -> List[CategoryTemplate]: ...


class DefaultTemplates:
    """Built-in templates, in display order."""

    WALLETS = [
        WalletTemplate("Cash"),
        WalletTemplate("Bank Account"),
        WalletTemplate("E-Wallet"),
    ]

    CATEGORIES = [
        CategoryTemplate("Salary", CategoryType.INCOME, "briefcase", "#22C55E"),
        CategoryTemplate("Bonus", CategoryType.INCOME, "gift", "#10B981"),
        CategoryTemplate("Food & Drinks", CategoryType.EXPENSE, "utensils", "#F97316"),
        CategoryTemplate("Transportation", CategoryType.EXPENSE, "car", "#3B82F6"),
        CategoryTemplate("Bills & Utilities", CategoryType.EXPENSE, "receipt", "#EF4444"),
        CategoryTemplate("Shopping", CategoryType.EXPENSE, "shopping-bag", "#A855F7"),
        CategoryTemplate("Transfer", CategoryType.TRANSFER, "arrow-left-right", "#6B7280"),
    ]

    def wallet_templates(self) -> List[WalletTemplate]:
        return list(self.WALLETS)

    def category_templates(self) -> List[CategoryTemplate]:
        return list(self.CATEGORIES)


def initialize_user(session: Session, owner_id: str, templates: TemplateProvider = None) -> dict:
    """Create the default wallets and categories once per user."""
    owner_id = require_user(owner_id)
    templates = templates or DefaultTemplates()

    if crud.get_owned_accounts(session, owner_id):
        logger.info(f"User {owner_id} already initialized")
        return {"already_initialized": True, "accounts_created": 0, "categories_created": 0}

    wallets = templates.wallet_templates()
    categories = templates.category_templates()

    with UnitOfWork(session, "initialize user"):
        for wallet in wallets:
            crud.create_account(session, owner_id, wallet.name, balance=wallet.balance, is_system=True)
        for category in categories:
            crud.create_category(
                session,
                owner_id,
                category.name,
                category.type,
                icon=category.icon,
                color=category.color,
                is_system=True,
            )

    logger.info(
        f"Initialized user {owner_id}: {len(wallets)} accounts, {len(categories)} categories"
    )
    return {
        "already_initialized": False,
        "accounts_created": len(wallets),
        "categories_created": len(categories),
    }
