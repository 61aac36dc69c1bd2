"""
Ledger Store

Explicit handle over the whole bookkeeping core: account hierarchy, ledger,
balance engine, opening-balance synthesizer and budget store, all sharing
one persistence collaborator. Construct it at process start, call load(),
then pass it to whoever needs it.

Every mutation runs under a single write lock as one unit: writes go to
storage inside one storage transaction, and the in-memory state is rolled
back to its snapshot if anything in the unit fails.
"""

from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional
import threading

from .accounts import Account, AccountHierarchy, AccountNode
from .balances import BalanceEngine
from .budgets import BudgetStore, fiscal_year_for, fiscal_year_start
from .chart import default_accounts
from .config import ZenithConfig, get_config
from .exceptions import LedgerError, PersistenceError, ValidationError
from .ledger import Ledger, SimpleEntryType, Transaction, simple_splits
from .logging_config import get_logger, log_action, setup_logging
from .opening_balances import OpeningBalance, OpeningBalanceSynthesizer
from .persistence import LedgerPersistence
from .storage import create_storage


def default_opening_balance_date(today: Optional[date] = None) -> date:
    """Start of the fiscal year containing today"""
    return fiscal_year_start(fiscal_year_for(today or date.today()))


class LedgerStore:
    """Process-wide ledger store with a load-then-mutate-then-persist lifecycle"""

    def __init__(
        self,
        persistence: LedgerPersistence,
        config: Optional[ZenithConfig] = None,
        logger=None
    ):
        self.config = config or get_config()
        self.persistence = persistence
        self.logger = logger or get_logger("zenith_ledger.store")

        self.hierarchy = AccountHierarchy(persistence)
        self.ledger = Ledger(
            self.hierarchy,
            persistence,
            opening_balances_account_id=self.config.opening_balances_account_id,
            tolerance=self.config.balance_tolerance,
            enforce_placeholder=self.config.enforce_placeholder_postings
        )
        self.balance_engine = BalanceEngine(self.hierarchy, self.ledger)
        self.opening_balances = OpeningBalanceSynthesizer(
            self.hierarchy,
            self.ledger,
            opening_balances_account_id=self.config.opening_balances_account_id
        )
        self.budgets = BudgetStore(persistence)

        self.degraded = False
        self.load_error: Optional[LedgerError] = None
        self._lock = threading.RLock()

    @classmethod
    def from_config(
        cls,
        config: Optional[ZenithConfig] = None,
        configure_logging: bool = False
    ) -> 'LedgerStore':
        """
        Build a store over the storage backend named by config.database_url

        With configure_logging the zenith_ledger logger is set up from the
        log_level, log_format and log_file settings first.
        """
        config = config or get_config()
        if configure_logging:
            setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
        return cls(LedgerPersistence(create_storage(config.database_url)), config=config)

    # -- lifecycle ---------------------------------------------------------

    def load(self) -> 'LedgerStore':
        """
        Load accounts, transactions and budgets from persistence

        A failed load falls back to the bootstrap chart with an empty ledger;
        the store stays usable but reports degraded=True and load_error.
        An empty account table is seeded with the bootstrap chart.
        """
        with self._lock:
            try:
                accounts = self.persistence.load_accounts()
                transactions = self.persistence.load_transactions()
                budgets = self.persistence.load_budgets()
                self.hierarchy.load(accounts)
                self.ledger.load(transactions)
                self.budgets.load(budgets)
            except (PersistenceError, ValidationError) as exc:
                self._enter_degraded_mode(exc)
                return self

            self.degraded = False
            self.load_error = None
            if not accounts and self.config.seed_default_accounts:
                self._seed_default_accounts()

            log_action(
                self.logger, "info", "Ledger loaded",
                action="load",
                extra={
                    "accounts": len(self.hierarchy),
                    "transactions": len(self.ledger),
                    "budgets": len(self.budgets)
                }
            )
        return self

    def _enter_degraded_mode(self, exc: LedgerError) -> None:
        self.degraded = True
        self.load_error = exc
        self.hierarchy.load(default_accounts())
        self.ledger.load([])
        self.budgets.load({})
        log_action(
            self.logger, "error",
            f"Ledger load failed, running on bootstrap defaults: {exc}",
            action="load", extra={"degraded": True}
        )

    def _seed_default_accounts(self) -> None:
        accounts = default_accounts()
        try:
            self.persistence.replace_accounts(accounts)
        except PersistenceError as exc:
            self.hierarchy.load(accounts)
            self.degraded = True
            self.load_error = exc
            log_action(
                self.logger, "error", f"Could not persist bootstrap accounts: {exc}",
                action="seed_accounts", extra={"degraded": True}
            )
            return
        self.hierarchy.load(accounts)
        log_action(
            self.logger, "info", "Seeded bootstrap chart of accounts",
            action="seed_accounts", extra={"accounts": len(accounts)}
        )

    def close(self) -> None:
        with self._lock:
            self.persistence.close()

    @contextmanager
    def _mutation(self, action: str) -> Iterator[None]:
        """Run one write unit: persist atomically, restore memory on any failure"""
        with self._lock:
            snapshot = (
                self.hierarchy.snapshot(),
                self.ledger.snapshot(),
                self.budgets.snapshot()
            )
            try:
                with self.persistence.atomic():
                    yield
            except Exception as exc:
                self.hierarchy.restore(snapshot[0])
                self.ledger.restore(snapshot[1])
                self.budgets.restore(snapshot[2])
                log_action(
                    self.logger, "warning", f"{action} rolled back: {exc}",
                    action=action, extra={"error": type(exc).__name__}
                )
                raise

    # -- accounts ----------------------------------------------------------

    def find_account(self, account_id: str) -> Account:
        with self._lock:
            return self.hierarchy.find_account(account_id)

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._lock:
            return self.hierarchy.get_account(account_id)

    def accounts(self) -> List[Account]:
        with self._lock:
            return self.hierarchy.accounts()

    def children_of(self, account_id: Optional[str]) -> List[Account]:
        with self._lock:
            return self.hierarchy.children_of(account_id)

    def hierarchy_view(self, parent_id: Optional[str] = None) -> List[AccountNode]:
        with self._lock:
            return self.hierarchy.hierarchy(parent_id)

    def add_account(
        self,
        name: str,
        account_type: Any,
        parent_id: Optional[str] = None,
        placeholder: bool = False,
        description: Optional[str] = None,
        opening_balance: Any = None,
        opening_balance_date: Any = None,
        account_id: Optional[str] = None
    ) -> Account:
        """
        Create an account, optionally with an opening balance, as one unit

        If the opening balance cannot be written (for example the Opening
        Balances account is missing) the account is not created either.
        """
        with self._mutation("add_account"):
            account = self.hierarchy.add_account(
                name, account_type,
                parent_id=parent_id,
                placeholder=placeholder,
                description=description,
                account_id=account_id
            )
            if opening_balance is not None and not account.placeholder:
                self.opening_balances.set_opening_balance(
                    account.id,
                    opening_balance,
                    opening_balance_date or default_opening_balance_date()
                )
        return account

    def update_account(
        self,
        account_id: str,
        opening_balance: Any = None,
        opening_balance_date: Any = None,
        **changes: Any
    ) -> Account:
        """
        Edit an account and keep its opening balance consistent

        With opening_balance the opening balance is replaced (zero removes
        it). Without it, an existing opening balance is rebuilt when the
        name, type or placeholder flag changed.
        """
        with self._mutation("update_account"):
            previous = self.hierarchy.find_account(account_id)
            updated = self.hierarchy.update_account(account_id, **changes)

            if opening_balance is not None and not updated.placeholder:
                existing = self.opening_balances.get_opening_balance(account_id)
                day = opening_balance_date or (existing.date if existing else None)
                self.opening_balances.set_opening_balance(
                    account_id, opening_balance, day or default_opening_balance_date()
                )
            elif (updated.name, updated.type, updated.placeholder) != \
                    (previous.name, previous.type, previous.placeholder):
                self.opening_balances.resynthesize(account_id, previous_type=previous.type)
        return updated

    # -- transactions ------------------------------------------------------

    def add_transaction(self, txn_date: Any, description: Optional[str], splits: Any) -> Transaction:
        with self._mutation("add_transaction"):
            return self.ledger.add_transaction(txn_date, description, splits)

    def record_simple_transaction(
        self,
        entry_type: SimpleEntryType,
        txn_date: Any,
        description: Optional[str],
        amount: Any,
        from_account_id: str,
        to_account_id: str
    ) -> Transaction:
        """Record an expense, income or transfer between two accounts"""
        splits = simple_splits(entry_type, amount, from_account_id, to_account_id)
        return self.add_transaction(txn_date, description, splits)

    def delete_transaction(self, transaction_id: str) -> Transaction:
        with self._mutation("delete_transaction"):
            return self.ledger.delete_transaction(transaction_id)

    def get_transaction(self, transaction_id: str) -> Transaction:
        with self._lock:
            return self.ledger.get_transaction(transaction_id)

    def transactions_for_account(self, account_id: str) -> List[Transaction]:
        with self._lock:
            return self.ledger.transactions_for_account(account_id)

    def all_transactions(self) -> List[Transaction]:
        with self._lock:
            return self.ledger.all_transactions()

    def transactions_between(self, start: Any, end: Any) -> List[Transaction]:
        with self._lock:
            return self.ledger.transactions_between(start, end)

    # -- opening balances --------------------------------------------------

    def set_opening_balance(self, account_id: str, amount: Any, as_of_date: Any) -> Optional[Transaction]:
        with self._mutation("set_opening_balance"):
            return self.opening_balances.set_opening_balance(account_id, amount, as_of_date)

    def get_opening_balance(self, account_id: str) -> Optional[OpeningBalance]:
        with self._lock:
            return self.opening_balances.get_opening_balance(account_id)

    def clear_opening_balance(self, account_id: str) -> bool:
        with self._mutation("clear_opening_balance"):
            return self.opening_balances.clear_opening_balance(account_id)

    # -- balances ----------------------------------------------------------

    def balance(self, account_id: str, as_of: Any = None) -> Decimal:
        with self._lock:
            return self.balance_engine.balance(account_id, as_of)

    def presented_balance(self, account_id: str, as_of: Any = None) -> Decimal:
        with self._lock:
            return self.balance_engine.presented_balance(account_id, as_of)

    def balances(self, as_of: Any = None) -> Dict[str, Decimal]:
        with self._lock:
            return self.balance_engine.balances(as_of)

    def period_activity(self, account_id: str, start: Any, end: Any) -> Decimal:
        with self._lock:
            return self.balance_engine.period_activity(account_id, start, end)

    # -- budgets -----------------------------------------------------------

    def set_budget(self, fiscal_year: int, account_id: str, amount: Any) -> Decimal:
        with self._mutation("set_budget"):
            return self.budgets.set_budget(fiscal_year, account_id, amount)

    def budget_for(self, fiscal_year: int, account_id: str) -> Decimal:
        with self._lock:
            return self.budgets.budget_for(fiscal_year, account_id)

    # -- full state --------------------------------------------------------

    def export_state(self) -> Dict[str, Any]:
        """Snapshot of the whole store in persisted record shapes"""
        with self._lock:
            return {
                'accounts': [account.to_dict() for account in self.hierarchy.accounts()],
                'transactions': [txn.to_dict() for txn in self.ledger.all_transactions()],
                'budgets': {key: str(amount) for key, amount in self.budgets.to_dict().items()}
            }

    def restore_state(self, state: Dict[str, Any]) -> None:
        """
        Replace the whole store from an export_state() snapshot

        Every transaction must balance and reference known accounts; nothing
        is written unless the whole snapshot is valid.
        """
        try:
            accounts = [Account.from_dict(data) for data in state.get('accounts', [])]
            transactions = [Transaction.from_dict(data) for data in state.get('transactions', [])]
        except (KeyError, TypeError, ValueError) as exc:
            if isinstance(exc, LedgerError):
                raise
            raise ValidationError(f"Malformed ledger snapshot: {exc}") from exc
        budgets = dict(state.get('budgets', {}))
        self._check_snapshot(accounts, transactions)

        with self._mutation("restore_state"):
            self.persistence.replace_accounts(accounts)
            self.persistence.replace_transactions(transactions)
            self.persistence.replace_budgets(budgets)
            self.hierarchy.load(accounts)
            self.ledger.load(transactions)
            self.budgets.load(budgets)

        log_action(
            self.logger, "info", "Ledger state restored",
            action="restore_state",
            extra={"accounts": len(accounts), "transactions": len(transactions)}
        )

    def _check_snapshot(self, accounts: List[Account], transactions: List[Transaction]) -> None:
        known = {account.id for account in accounts}
        for txn in transactions:
            if len(txn.splits) < 2:
                raise ValidationError(f"Transaction {txn.id} has fewer than two splits")
            unknown = txn.get_affected_accounts() - known
            if unknown:
                raise ValidationError(
                    f"Transaction {txn.id} references unknown accounts: {', '.join(sorted(map(str, unknown)))}"
                )
            if abs(txn.total()) > self.ledger.tolerance:
                raise ValidationError(f"Transaction {txn.id} is not balanced")
