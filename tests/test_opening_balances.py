"""
Test suite for opening balances

Tests synthesized opening-balance transactions against the Opening Balances
equity account.
"""

import pytest
from decimal import Decimal
from datetime import date

from zenith_ledger.accounts import AccountHierarchy, AccountType
from zenith_ledger.balances import BalanceEngine
from zenith_ledger.chart import OPENING_BALANCES_ACCOUNT_ID, default_accounts
from zenith_ledger.exceptions import ConfigurationError, NotFoundError, ValidationError
from zenith_ledger.ledger import Ledger, Split, TransactionKind
from zenith_ledger.opening_balances import OpeningBalanceSynthesizer
from zenith_ledger.persistence import LedgerPersistence
from zenith_ledger.storage import InMemoryStorage


class TestOpeningBalanceSynthesizer:
    """Test opening balance creation, replacement and removal"""

    def setup_method(self):
        """Setup test environment"""
        self.storage = InMemoryStorage()
        self.persistence = LedgerPersistence(self.storage)
        self.hierarchy = AccountHierarchy(self.persistence)
        self.hierarchy.load(default_accounts())
        self.persistence.replace_accounts(default_accounts())
        self.ledger = Ledger(self.hierarchy, self.persistence)
        self.engine = BalanceEngine(self.hierarchy, self.ledger)
        self.synthesizer = OpeningBalanceSynthesizer(self.hierarchy, self.ledger)

    def test_asset_opening_balance(self):
        """Test a debit-normal account gets a debit against Opening Balances"""
        txn = self.synthesizer.set_opening_balance("asset-bank", 1000, "2024-07-01")

        assert txn.splits == (
            Split("asset-bank", Decimal("1000")),
            Split(OPENING_BALANCES_ACCOUNT_ID, Decimal("-1000")),
        )
        assert txn.description == "Opening Balance for Bank Account"
        assert txn.kind == TransactionKind.OPENING_BALANCE
        assert self.engine.balance("asset-bank") == Decimal("1000")
        assert self.engine.balance(OPENING_BALANCES_ACCOUNT_ID) == Decimal("-1000")

    def test_liability_opening_balance(self):
        """Test a credit-normal account gets a credit"""
        txn = self.synthesizer.set_opening_balance("liability-payable", "300", "2024-07-01")

        assert txn.amount_for("liability-payable") == Decimal("-300")
        assert txn.amount_for(OPENING_BALANCES_ACCOUNT_ID) == Decimal("300")

        opening = self.synthesizer.get_opening_balance("liability-payable")
        assert opening.amount == Decimal("300")
        assert opening.date == date(2024, 7, 1)

    def test_replace_leaves_exactly_one(self):
        """Test setting twice replaces the earlier opening balance"""
        self.synthesizer.set_opening_balance("asset-bank", 500, "2024-07-01")
        second = self.synthesizer.set_opening_balance("asset-bank", 800, "2024-08-01")

        openings = [
            txn for txn in self.ledger.all_transactions()
            if txn.kind == TransactionKind.OPENING_BALANCE and txn.involves("asset-bank")
        ]
        assert openings == [second]
        assert self.storage.count("transactions") == 1

        opening = self.synthesizer.get_opening_balance("asset-bank")
        assert opening.amount == Decimal("800")
        assert opening.date == date(2024, 8, 1)
        assert opening.transaction_id == second.id

    def test_zero_means_no_transaction(self):
        assert self.synthesizer.set_opening_balance("asset-bank", 0, "2024-07-01") is None
        assert self.synthesizer.get_opening_balance("asset-bank") is None
        assert len(self.ledger) == 0

    def test_zero_removes_existing(self):
        self.synthesizer.set_opening_balance("asset-bank", 500, "2024-07-01")
        self.synthesizer.set_opening_balance("asset-bank", "0.00", "2024-07-01")

        assert self.synthesizer.get_opening_balance("asset-bank") is None
        assert len(self.ledger) == 0
        assert self.storage.count("transactions") == 0

    def test_placeholder_is_ignored(self):
        assert self.synthesizer.set_opening_balance("asset-current", 500, "2024-07-01") is None
        assert len(self.ledger) == 0

    def test_opening_account_itself_rejected(self):
        with pytest.raises(ValidationError, match="cannot have an opening balance"):
            self.synthesizer.set_opening_balance(OPENING_BALANCES_ACCOUNT_ID, 500, "2024-07-01")

    def test_unknown_account(self):
        with pytest.raises(NotFoundError):
            self.synthesizer.set_opening_balance("asset-missing", 500, "2024-07-01")

    def test_bad_input_rejected(self):
        with pytest.raises(ValidationError):
            self.synthesizer.set_opening_balance("asset-bank", "lots", "2024-07-01")
        with pytest.raises(ValidationError):
            self.synthesizer.set_opening_balance("asset-bank", 10, "someday")

    def test_missing_opening_account_fails_without_effect(self):
        """Test a missing Opening Balances account is an error, not a silent skip"""
        accounts = [a for a in default_accounts() if a.id != OPENING_BALANCES_ACCOUNT_ID]
        self.hierarchy.load(accounts)

        with pytest.raises(ConfigurationError):
            self.synthesizer.set_opening_balance("asset-bank", 1000, "2024-07-01")

        assert len(self.ledger) == 0
        assert self.storage.count("transactions") == 0

    def test_clear_opening_balance(self):
        self.synthesizer.set_opening_balance("asset-bank", 500, "2024-07-01")

        assert self.synthesizer.clear_opening_balance("asset-bank") is True
        assert self.synthesizer.clear_opening_balance("asset-bank") is False
        assert self.synthesizer.get_opening_balance("asset-bank") is None

    def test_resynthesize_after_rename(self):
        """Test the description follows an account rename"""
        self.synthesizer.set_opening_balance("asset-bank", 500, "2024-07-01")
        self.hierarchy.update_account("asset-bank", name="Main Bank")

        txn = self.synthesizer.resynthesize("asset-bank")

        assert txn.description == "Opening Balance for Main Bank"
        assert self.synthesizer.get_opening_balance("asset-bank").amount == Decimal("500")
        assert len(self.ledger) == 1

    def test_resynthesize_after_type_change(self):
        """Test a type change keeps the user-facing amount and flips the stored sign"""
        self.synthesizer.set_opening_balance("asset-bank", 500, "2024-07-01")
        self.hierarchy.update_account("asset-bank", account_type=AccountType.LIABILITY)

        txn = self.synthesizer.resynthesize("asset-bank", previous_type=AccountType.ASSET)

        assert txn.amount_for("asset-bank") == Decimal("-500")
        assert txn.date == date(2024, 7, 1)
        assert self.synthesizer.get_opening_balance("asset-bank").amount == Decimal("500")

    def test_resynthesize_placeholder_drops_opening_balance(self):
        self.synthesizer.set_opening_balance("asset-bank", 500, "2024-07-01")
        self.hierarchy.update_account("asset-bank", placeholder=True)

        assert self.synthesizer.resynthesize("asset-bank") is None
        assert self.synthesizer.get_opening_balance("asset-bank") is None
