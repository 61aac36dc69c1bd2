"""
Test suite for the balance engine

Tests point-in-time balances, recursive roll-up through child accounts and
the presentation sign.
"""

import pytest
from decimal import Decimal
from datetime import date, datetime, timedelta

from zenith_ledger.accounts import Account, AccountHierarchy, AccountType
from zenith_ledger.balances import MAX_CACHED_CUTOFFS, BalanceEngine
from zenith_ledger.chart import default_accounts
from zenith_ledger.exceptions import CycleError, NotFoundError
from zenith_ledger.ledger import Ledger
from zenith_ledger.persistence import LedgerPersistence
from zenith_ledger.storage import InMemoryStorage


class TestBalanceEngine:
    """Test balance calculations"""

    def setup_method(self):
        """Setup test environment with a few postings"""
        persistence = LedgerPersistence(InMemoryStorage())
        self.hierarchy = AccountHierarchy(persistence)
        self.hierarchy.load(default_accounts())
        self.ledger = Ledger(self.hierarchy, persistence)
        self.engine = BalanceEngine(self.hierarchy, self.ledger)

        self.ledger.add_transaction("2024-07-01", "Fees", [("asset-bank", "3000"), ("income-fees", "-3000")])
        self.ledger.add_transaction("2024-07-15", "Electricity", [
            ("expense-utilities-electricity", "120"), ("asset-bank", "-120")
        ])
        self.ledger.add_transaction("2024-08-02", "Internet", [
            ("expense-utilities-internet", "60"), ("asset-bank", "-60")
        ])
        self.ledger.add_transaction("2024-08-10", "Cash withdrawal", [
            ("asset-cash", "200"), ("asset-bank", "-200")
        ])

    def test_leaf_balances(self):
        assert self.engine.balance("asset-bank") == Decimal("2620")
        assert self.engine.balance("income-fees") == Decimal("-3000")
        assert self.engine.balance("expense-rent") == Decimal("0")

    def test_parent_rolls_up_children(self):
        """Test parents include every descendant"""
        assert self.engine.balance("expense-utilities") == Decimal("180")
        assert self.engine.balance("root-expense") == Decimal("180")
        assert self.engine.balance("asset-current") == Decimal("2820")
        assert self.engine.balance("root-asset") == Decimal("2820")

    def test_tree_aggregation_holds_for_every_account(self):
        """Test balance(parent) == self + sum(balance(child)) at several dates"""
        for as_of in (None, "2024-07-01", "2024-07-31", "2024-08-05"):
            for account in self.hierarchy.accounts():
                children = self.hierarchy.children_of(account.id)
                expected = self.engine.self_balance(account.id, as_of) + sum(
                    (self.engine.balance(child.id, as_of) for child in children), Decimal("0")
                )
                assert self.engine.balance(account.id, as_of) == expected

    def test_roots_sum_to_zero(self):
        """Test the balance law across the whole chart"""
        roots = self.hierarchy.children_of(None)
        assert sum((self.engine.balance(root.id) for root in roots), Decimal("0")) == Decimal("0")

    def test_as_of_cutoff_is_inclusive(self):
        assert self.engine.balance("expense-utilities", "2024-07-14") == Decimal("0")
        assert self.engine.balance("expense-utilities", "2024-07-15") == Decimal("120")
        assert self.engine.balance("expense-utilities", datetime(2024, 7, 15, 23, 59)) == Decimal("120")

    def test_balance_is_monotonic_in_included_transactions(self):
        """Test later cutoffs include more transactions, None includes all"""
        days = [date(2024, 6, 30), date(2024, 7, 15), date(2024, 8, 2), date(2024, 12, 31)]
        counts = [len(self.ledger.transactions_as_of(day)) for day in days]

        assert counts == sorted(counts)
        assert self.engine.balance("asset-bank") == self.engine.balance("asset-bank", date(9999, 12, 31))

    def test_cache_refreshes_after_new_transaction(self):
        assert self.engine.balance("expense-rent") == Decimal("0")
        self.ledger.add_transaction("2024-08-01", "Rent", [("expense-rent", "900"), ("asset-bank", "-900")])
        assert self.engine.balance("expense-rent") == Decimal("900")
        assert self.engine.balance("root-expense") == Decimal("1080")

    def test_cutoff_cache_is_bounded(self):
        """Test many distinct cutoffs keep only the most recently used ones"""
        start = date(2024, 7, 1)
        self.engine.balance("asset-bank", start)
        for offset in range(1, MAX_CACHED_CUTOFFS * 2):
            self.engine.balance("asset-bank", start + timedelta(days=offset))
            self.engine.balance("asset-bank", start)

        assert len(self.engine._rollups) == MAX_CACHED_CUTOFFS
        assert start in self.engine._rollups
        assert date(2024, 7, 2) not in self.engine._rollups
        assert self.engine.balance("asset-bank", "2024-07-31") == Decimal("2880")

    def test_balances_for_all_accounts(self):
        balances = self.engine.balances("2024-07-31")
        assert balances["asset-bank"] == Decimal("2880")
        assert balances["root-income"] == Decimal("-3000")
        assert len(balances) == len(self.hierarchy)

    def test_presented_balance(self):
        """Test credit-normal accounts are shown positive"""
        assert self.engine.presented_balance("income-fees") == Decimal("3000")
        assert self.engine.presented_balance("asset-bank") == Decimal("2620")

    def test_period_activity(self):
        assert self.engine.period_activity("asset-bank", "2024-08-01", "2024-08-31") == Decimal("-260")

    def test_unknown_account(self):
        with pytest.raises(NotFoundError):
            self.engine.balance("missing")

    def test_parent_cycle_is_reported(self):
        self.hierarchy.load([
            Account(id="a", name="A", type=AccountType.ASSET, parent_id="b"),
            Account(id="b", name="B", type=AccountType.ASSET, parent_id="a"),
        ])
        self.ledger.load([])

        with pytest.raises(CycleError):
            self.engine.balance("a")
