"""Account and category lifecycle, hiding, and first-run seeding."""

from decimal import Decimal

import pytest

from wallet_tracker import catalog, crud, ledger, seed
from wallet_tracker.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from wallet_tracker.models import Account, CategoryType, ResourceKind

from tests.helpers import OTHER, OWNER, balance, payload, transaction_count


@pytest.fixture
def global_cash(session) -> Account:
    account = crud.create_account(session, None, "Shared Cash", is_system=True)
    session.commit()
    return account


@pytest.fixture
def global_bills(session):
    category = crud.create_category(session, None, "Shared Bills", CategoryType.EXPENSE, is_system=True)
    session.commit()
    return category


class TestAccounts:

    def test_opening_balance_recorded_as_initial_transaction(self, session):
        account = catalog.create_account(session, "Savings", Decimal("250.75"), OWNER)
        assert account.balance == Decimal("250.75")

        initial = crud.get_initial_balance_transactions(session, account.id)
        assert len(initial) == 1
        assert initial[0].amount == Decimal("250.75")
        assert initial[0].description == "Initial balance"
        assert catalog.reconcile_account(session, account.id, OWNER)["consistent"]

    def test_zero_opening_balance_writes_no_transaction(self, session):
        account = catalog.create_account(session, "Empty", Decimal("0"), OWNER)
        assert crud.get_initial_balance_transactions(session, account.id) == []

    def test_blank_name_rejected(self, session):
        with pytest.raises(ValidationError):
            catalog.create_account(session, "   ", Decimal("0"), OWNER)

    def test_delete_fresh_account_removes_initial_balance(self, session, wallets):
        before = transaction_count(session)
        assert catalog.delete_account(session, wallets.x.id, OWNER) == "deleted"
        assert crud.get_account(session, wallets.x.id) is None
        assert transaction_count(session) == before - 1

    def test_delete_account_with_history_conflicts(self, session, wallets):
        ledger.create_transaction(session, payload("EXPENSE", 10, wallets.x.id, wallets.food.id), OWNER)
        with pytest.raises(ConflictError):
            catalog.delete_account(session, wallets.x.id, OWNER)
        assert crud.get_account(session, wallets.x.id) is not None

    def test_transfer_destination_counts_as_history(self, session, wallets):
        ledger.create_transaction(
            session, payload("TRANSFER", 10, wallets.x.id, to_account_id=wallets.y.id), OWNER
        )
        with pytest.raises(ConflictError):
            catalog.delete_account(session, wallets.y.id, OWNER)

    def test_delete_foreign_account_not_found(self, session, wallets):
        with pytest.raises(NotFoundError):
            catalog.delete_account(session, wallets.x.id, OTHER)

    def test_delete_system_account_hides_it(self, session, global_cash):
        assert catalog.delete_account(session, global_cash.id, OWNER) == "hidden"
        assert crud.get_account(session, global_cash.id) is not None
        assert global_cash.id not in [a.id for a in catalog.list_accounts(session, OWNER)]
        assert global_cash.id in [a.id for a in catalog.list_accounts(session, OTHER)]

    def test_listing_puts_system_accounts_first_then_by_name(self, session, wallets, global_cash):
        names = [a.name for a in catalog.list_accounts(session, OWNER)]
        assert names == ["Shared Cash", "Wallet X", "Wallet Y"]
        assert [a.name for a in catalog.list_accounts(session, OTHER)] == ["Shared Cash"]

    def test_rename(self, session, wallets):
        account = catalog.update_account(session, wallets.y.id, OWNER, name="  Travel  ")
        assert account.name == "Travel"
        assert account.balance == Decimal("0")

    def test_direct_balance_edit_keeps_history_consistent(self, session, wallets):
        ledger.create_transaction(session, payload("EXPENSE", 100, wallets.x.id, wallets.food.id), OWNER)
        catalog.update_account(session, wallets.x.id, OWNER, balance=Decimal("2000"))

        assert balance(session, wallets.x.id) == Decimal("2000")
        report = catalog.reconcile_account(session, wallets.x.id, OWNER)
        assert report["consistent"]
        assert report["computed_balance"] == Decimal("2000")

    def test_update_other_users_account_unauthorized(self, session, wallets):
        with pytest.raises(AuthorizationError):
            catalog.update_account(session, wallets.x.id, OTHER, name="Mine now")

    def test_update_missing_account_not_found(self, session):
        with pytest.raises(NotFoundError):
            catalog.update_account(session, 9999, OWNER, name="Ghost")

    def test_reconcile_detects_drift(self, session, wallets):
        account = session.get(Account, wallets.x.id)
        account.balance = Decimal("999")
        session.add(account)
        session.commit()

        report = catalog.reconcile_account(session, wallets.x.id, OWNER)
        assert not report["consistent"]
        assert report["difference"] == Decimal("-1")


class TestCategories:

    def test_type_is_normalized(self, session):
        category = catalog.create_category(session, "Gifts", "income", OWNER)
        assert category.type == CategoryType.INCOME
        assert category.icon == "circle"
        assert category.color == "#6B7280"

    def test_invalid_type_rejected(self, session):
        with pytest.raises(ValidationError):
            catalog.create_category(session, "Gifts", "SAVINGS", OWNER)

    def test_delete_unused_category(self, session, wallets):
        catalog.delete_category(session, wallets.food.id, OWNER)
        assert crud.get_category(session, wallets.food.id) is None

    def test_delete_category_in_use_conflicts(self, session, wallets):
        ledger.create_transaction(session, payload("EXPENSE", 10, wallets.x.id, wallets.food.id), OWNER)
        with pytest.raises(ConflictError):
            catalog.delete_category(session, wallets.food.id, OWNER)

    def test_delete_other_users_category_unauthorized(self, session, wallets):
        with pytest.raises(AuthorizationError):
            catalog.delete_category(session, wallets.food.id, OTHER)

    def test_delete_system_category_conflicts(self, session, global_bills):
        with pytest.raises(ConflictError):
            catalog.delete_category(session, global_bills.id, OWNER)

    def test_delete_missing_category_not_found(self, session):
        with pytest.raises(NotFoundError):
            catalog.delete_category(session, 9999, OWNER)

    def test_global_transfer_category_used_when_user_has_none(self, session):
        shared = crud.create_category(session, None, "Transfer", CategoryType.TRANSFER, is_system=True)
        session.commit()
        x = catalog.create_account(session, "X", Decimal("50"), OWNER)
        y = catalog.create_account(session, "Y", Decimal("0"), OWNER)

        transaction = ledger.create_transaction(
            session, payload("TRANSFER", 20, x.id, to_account_id=y.id), OWNER
        )
        assert transaction.category_id == shared.id

    def test_transfer_without_any_transfer_category_is_uncategorized(self, session):
        x = catalog.create_account(session, "X", Decimal("50"), OWNER)
        y = catalog.create_account(session, "Y", Decimal("0"), OWNER)

        transaction = ledger.create_transaction(
            session, payload("TRANSFER", 20, x.id, to_account_id=y.id), OWNER
        )
        assert transaction.category_id is None
        assert balance(session, y.id) == Decimal("20")


class TestVisibilityOverlay:

    def test_hide_is_idempotent_and_per_user(self, session, global_bills):
        catalog.hide_resource(session, ResourceKind.CATEGORIES, global_bills.id, OWNER)
        catalog.hide_resource(session, ResourceKind.CATEGORIES, global_bills.id, OWNER)

        hidden = catalog.list_hidden(session, ResourceKind.CATEGORIES, OWNER)
        assert len(hidden) == 1
        assert hidden[0][1].id == global_bills.id
        assert global_bills.id not in [c.id for c in catalog.list_categories(session, OWNER)]
        assert global_bills.id in [c.id for c in catalog.list_categories(session, OTHER)]

    def test_unhide_restores_and_reports_missing(self, session, global_cash):
        catalog.hide_resource(session, "accounts", global_cash.id, OWNER)
        assert catalog.unhide_resource(session, "accounts", global_cash.id, OWNER) is True
        assert catalog.unhide_resource(session, "accounts", global_cash.id, OWNER) is False
        assert global_cash.id in [a.id for a in catalog.list_accounts(session, OWNER)]

    def test_hidden_resources_remain_usable(self, session, wallets, global_bills):
        catalog.hide_resource(session, ResourceKind.CATEGORIES, global_bills.id, OWNER)
        ledger.create_transaction(session, payload("EXPENSE", 10, wallets.x.id, global_bills.id), OWNER)
        assert balance(session, wallets.x.id) == Decimal("990")

    def test_only_system_resources_can_be_hidden(self, session, wallets):
        with pytest.raises(ConflictError):
            catalog.hide_resource(session, ResourceKind.ACCOUNTS, wallets.x.id, OWNER)

    def test_hide_unknown_resource_not_found(self, session, wallets):
        with pytest.raises(NotFoundError, match="Category not found"):
            catalog.hide_resource(session, ResourceKind.CATEGORIES, 9999, OWNER)
        with pytest.raises(NotFoundError, match="Account not found"):
            catalog.hide_resource(session, ResourceKind.ACCOUNTS, wallets.x.id, OTHER)


class TestInitializeUser:

    def test_seeds_defaults_once(self, session):
        first = seed.initialize_user(session, OWNER)
        assert first == {"already_initialized": False, "accounts_created": 3, "categories_created": 7}

        accounts = catalog.list_accounts(session, OWNER)
        assert {a.name for a in accounts} == {"Cash", "Bank Account", "E-Wallet"}
        assert all(a.is_system and a.user_id == OWNER for a in accounts)
        assert crud.get_transfer_category(session, OWNER).name == "Transfer"

        second = seed.initialize_user(session, OWNER)
        assert second["already_initialized"] is True
        assert len(catalog.list_accounts(session, OWNER)) == 3

    def test_seeded_wallets_are_hidden_rather_than_deleted(self, session):
        seed.initialize_user(session, OWNER)
        cash = next(a for a in catalog.list_accounts(session, OWNER) if a.name == "Cash")

        assert catalog.delete_account(session, cash.id, OWNER) == "hidden"
        assert [h[1].name for h in catalog.list_hidden(session, ResourceKind.ACCOUNTS, OWNER)] == ["Cash"]

    def test_custom_templates(self, session):
        class OneWallet:
            def wallet_templates(self):
                return [seed.WalletTemplate("Piggy Bank")]

            def category_templates(self):
                return []

        result = seed.initialize_user(session, OWNER, templates=OneWallet())
        assert result["accounts_created"] == 1
        assert [a.name for a in catalog.list_accounts(session, OWNER)] == ["Piggy Bank"]
