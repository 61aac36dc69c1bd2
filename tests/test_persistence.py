"""
Test suite for the persistence collaborator

Tests record shapes, bulk replace operations and the mapping of backend
failures to PersistenceError.
"""

import pytest
from decimal import Decimal
from datetime import date

from zenith_ledger.accounts import Account, AccountType
from zenith_ledger.chart import default_accounts
from zenith_ledger.exceptions import NotFoundError, PersistenceError, ValidationError
from zenith_ledger.ledger import Split, Transaction, TransactionKind
from zenith_ledger.persistence import LedgerPersistence
from zenith_ledger.storage import InMemoryStorage, SQLiteStorage


class FlakyStorage(InMemoryStorage):
    """In-memory storage that fails on demand"""

    def __init__(self):
        super().__init__()
        self.fail_saves = False
        self.fail_loads = False

    def save(self, table, record_id, data):
        if self.fail_saves:
            raise OSError("disk full")
        super().save(table, record_id, data)

    def load_all(self, table):
        if self.fail_loads:
            raise OSError("unreadable")
        return super().load_all(table)


def make_transaction(txn_id="t1", amount="250"):
    return Transaction(
        id=txn_id,
        date=date(2024, 7, 15),
        description="Rent",
        splits=(Split("expense-rent", Decimal(amount)), Split("asset-bank", -Decimal(amount)))
    )


class TestLedgerPersistence:
    """Test persistence over the in-memory backend"""

    def setup_method(self):
        """Setup test environment"""
        self.storage = FlakyStorage()
        self.persistence = LedgerPersistence(self.storage)

    def test_accounts_round_trip(self):
        accounts = default_accounts()
        self.persistence.replace_accounts(accounts)

        assert self.persistence.load_accounts() == accounts

    def test_account_record_shape(self):
        account = Account(id="a1", name="Bank", type=AccountType.ASSET, parent_id="root-asset")
        self.persistence.add_account(account)

        assert self.storage.load("accounts", "a1") == {
            'id': "a1", 'name': "Bank", 'type': "ASSET",
            'parentId': "root-asset", 'placeholder': False
        }

    def test_replace_accounts_drops_old_records(self):
        self.persistence.add_account(Account(id="old", name="Old", type=AccountType.ASSET))
        self.persistence.replace_accounts(default_accounts())

        assert not self.storage.exists("accounts", "old")

    def test_update_and_delete_missing_records(self):
        with pytest.raises(NotFoundError):
            self.persistence.update_account(Account(id="x", name="X", type=AccountType.ASSET))
        with pytest.raises(NotFoundError):
            self.persistence.delete_account("x")
        with pytest.raises(NotFoundError):
            self.persistence.update_transaction(make_transaction())
        with pytest.raises(NotFoundError):
            self.persistence.delete_transaction("t1")

    def test_transactions_round_trip(self):
        txn = make_transaction()
        self.persistence.add_transaction(txn)
        updated = make_transaction(amount="300")
        self.persistence.update_transaction(updated)

        assert self.persistence.load_transactions() == [updated]
        assert self.storage.load("transactions", "t1")['splits'][0] == {
            'accountId': "expense-rent", 'amount': "300"
        }

    def test_replace_transactions(self):
        self.persistence.add_transaction(make_transaction("t1"))
        self.persistence.replace_transactions([make_transaction("t2"), make_transaction("t3")])

        assert [txn.id for txn in self.persistence.load_transactions()] == ["t2", "t3"]

    def test_budgets_round_trip(self):
        assert self.persistence.load_budgets() == {}

        self.persistence.replace_budgets({"2024-expense-rent": Decimal("1200.00")})

        assert self.persistence.load_budgets() == {"2024-expense-rent": "1200.00"}

    def test_save_failure_becomes_persistence_error(self):
        """Test backend failures surface as chained PersistenceError"""
        self.storage.fail_saves = True

        with pytest.raises(PersistenceError, match="add transaction") as exc_info:
            self.persistence.add_transaction(make_transaction())

        assert isinstance(exc_info.value.__cause__, OSError)

    def test_load_failure_becomes_persistence_error(self):
        self.storage.fail_loads = True

        with pytest.raises(PersistenceError, match="load accounts"):
            self.persistence.load_accounts()

    def test_malformed_records_fail_the_load(self):
        self.storage.save("accounts", "x", {"id": "x"})
        with pytest.raises(PersistenceError, match="load accounts"):
            self.persistence.load_accounts()

        self.storage.clear_table("accounts")
        self.storage.save("accounts", "y", {"id": "y", "name": "Y", "type": "REVENUE"})
        with pytest.raises(PersistenceError, match="Malformed record"):
            self.persistence.load_accounts()

    def test_atomic_groups_writes(self):
        with pytest.raises(ValidationError):
            with self.persistence.atomic():
                self.persistence.add_transaction(make_transaction("t1"))
                raise ValidationError("rejected")

        assert self.storage.count("transactions") == 0

    def test_legacy_records_without_kind(self):
        self.storage.save("transactions", "t9", {
            'id': "t9", 'date': "2024-07-01", 'description': "Opening",
            'splits': [
                {'accountId': "asset-bank", 'amount': 100},
                {'accountId': "equity-opening", 'amount': -100},
            ]
        })

        txn = self.persistence.load_transactions()[0]
        assert txn.kind == TransactionKind.REGULAR
        assert txn.amount_for("asset-bank") == Decimal("100")


class TestLedgerPersistenceSQLite:
    """Test persistence over SQLite"""

    def setup_method(self):
        self.persistence = LedgerPersistence(SQLiteStorage(":memory:"))

    def teardown_method(self):
        self.persistence.close()

    def test_round_trip(self):
        self.persistence.replace_accounts(default_accounts())
        self.persistence.add_transaction(make_transaction())
        self.persistence.replace_budgets({"2024-expense-rent": Decimal("10")})

        assert self.persistence.load_accounts() == default_accounts()
        assert self.persistence.load_transactions() == [make_transaction()]
        assert self.persistence.load_budgets() == {"2024-expense-rent": "10"}

    def test_atomic_rollback(self):
        with pytest.raises(ValidationError):
            with self.persistence.atomic():
                self.persistence.add_transaction(make_transaction("t1"))
                self.persistence.add_transaction(make_transaction("t2"))
                raise ValidationError("rejected")

        assert self.persistence.load_transactions() == []
