"""
Ledger Persistence

Durable system of record for accounts, transactions and budgets, built on
a StorageInterface backend. Single-entity operations back individual
mutations; the bulk replace operations back full-state restore. Any
backend failure surfaces as PersistenceError.
"""

from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List

from .accounts import Account
from .exceptions import LedgerError, NotFoundError, PersistenceError
from .ledger import Transaction
from .storage import StorageInterface


@contextmanager
def _storage_errors(operation: str, loading: bool = False) -> Iterator[None]:
    """
    Re-raise backend failures as PersistenceError

    Ledger errors pass through unchanged, except while loading where a
    malformed record is itself a load failure.
    """
    try:
        yield
    except PersistenceError:
        raise
    except LedgerError as exc:
        if not loading:
            raise
        raise PersistenceError(f"Malformed record during {operation}: {exc}") from exc
    except Exception as exc:
        raise PersistenceError(f"Storage failed during {operation}: {exc}") from exc


class LedgerPersistence:
    """Persistence collaborator for the ledger core"""

    accounts_table = "accounts"
    transactions_table = "transactions"
    budgets_table = "budgets"
    budgets_record_id = "budgets"

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """
        Group several writes into one storage transaction

        Errors raised by the block itself propagate unchanged; failures of
        the backend's commit or rollback become PersistenceError.
        """
        body_failed = False
        try:
            with self.storage.atomic():
                try:
                    yield
                except BaseException:
                    body_failed = True
                    raise
        except LedgerError:
            raise
        except Exception as exc:
            if body_failed:
                raise
            raise PersistenceError(f"Storage failed to commit: {exc}") from exc

    # -- accounts ----------------------------------------------------------

    def load_accounts(self) -> List[Account]:
        with _storage_errors("load accounts", loading=True):
            return [Account.from_dict(data) for data in self.storage.load_all(self.accounts_table)]

    def replace_accounts(self, accounts: Iterable[Account]) -> None:
        with _storage_errors("replace accounts"):
            with self.storage.atomic():
                self.storage.clear_table(self.accounts_table)
                for account in accounts:
                    self.storage.save(self.accounts_table, account.id, account.to_dict())

    def add_account(self, account: Account) -> None:
        with _storage_errors("add account"):
            self.storage.save(self.accounts_table, account.id, account.to_dict())

    def update_account(self, account: Account) -> None:
        with _storage_errors("update account"):
            if not self.storage.exists(self.accounts_table, account.id):
                raise NotFoundError(f"Account {account.id} not found in storage")
            self.storage.save(self.accounts_table, account.id, account.to_dict())

    def delete_account(self, account_id: str) -> None:
        with _storage_errors("delete account"):
            if not self.storage.delete(self.accounts_table, account_id):
                raise NotFoundError(f"Account {account_id} not found in storage")

    # -- transactions ------------------------------------------------------

    def load_transactions(self) -> List[Transaction]:
        with _storage_errors("load transactions", loading=True):
            return [
                Transaction.from_dict(data)
                for data in self.storage.load_all(self.transactions_table)
            ]

    def replace_transactions(self, transactions: Iterable[Transaction]) -> None:
        with _storage_errors("replace transactions"):
            with self.storage.atomic():
                self.storage.clear_table(self.transactions_table)
                for txn in transactions:
                    self.storage.save(self.transactions_table, txn.id, txn.to_dict())

    def add_transaction(self, txn: Transaction) -> None:
        with _storage_errors("add transaction"):
            self.storage.save(self.transactions_table, txn.id, txn.to_dict())

    def update_transaction(self, txn: Transaction) -> None:
        with _storage_errors("update transaction"):
            if not self.storage.exists(self.transactions_table, txn.id):
                raise NotFoundError(f"Transaction {txn.id} not found in storage")
            self.storage.save(self.transactions_table, txn.id, txn.to_dict())

    def delete_transaction(self, transaction_id: str) -> None:
        with _storage_errors("delete transaction"):
            if not self.storage.delete(self.transactions_table, transaction_id):
                raise NotFoundError(f"Transaction {transaction_id} not found in storage")

    # -- budgets -----------------------------------------------------------

    def load_budgets(self) -> Dict[str, Any]:
        """Serialized budget map; amounts may be strings or numbers"""
        with _storage_errors("load budgets", loading=True):
            record = self.storage.load(self.budgets_table, self.budgets_record_id)
            if record is None:
                return {}
            return dict(record.get('entries', {}))

    def replace_budgets(self, budgets: Dict[str, Decimal]) -> None:
        with _storage_errors("replace budgets"):
            self.storage.save(self.budgets_table, self.budgets_record_id, {
                'id': self.budgets_record_id,
                'entries': {key: str(amount) for key, amount in budgets.items()}
            })

    def close(self) -> None:
        with _storage_errors("close"):
            self.storage.close()
