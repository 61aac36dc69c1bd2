"""
Double-Entry Ledger Engine

Core bookkeeping engine that stores transactions made of signed splits and
ensures every transaction balances (splits sum to zero). Mutations are
persisted before they become visible in memory; balances are always derived
from the stored splits, never stored separately.
"""

from decimal import Decimal, InvalidOperation
from datetime import date, datetime
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, TYPE_CHECKING
from enum import Enum
import uuid

from .accounts import AccountHierarchy
from .chart import OPENING_BALANCES_ACCOUNT_ID
from .exceptions import NotFoundError, ValidationError
from .logging_config import get_logger, log_action

if TYPE_CHECKING:
    from .persistence import LedgerPersistence


BALANCE_TOLERANCE = Decimal("0.001")
ZERO = Decimal("0")


def to_amount(value: Any, field_name: str = "amount") -> Decimal:
    """
    Convert user or storage input to a finite Decimal

    Floats go through str() so 0.1 stays 0.1 rather than its binary expansion.

    Raises:
        ValidationError: For booleans, non-numeric strings, NaN and infinities
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"Invalid {field_name}: {value!r}")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float, str)):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"Invalid {field_name}: {value!r}") from None
    else:
        raise ValidationError(f"Invalid {field_name}: {value!r}")

    if not amount.is_finite():
        raise ValidationError(f"Invalid {field_name}: {value!r}")
    return amount


def to_date(value: Any, field_name: str = "date") -> date:
    """
    Convert a date, datetime or ISO-8601 string to a calendar day

    Time-of-day is dropped; only day boundaries matter to the ledger.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            pass
    raise ValidationError(f"Invalid {field_name}: {value!r}")


class TransactionKind(Enum):
    """Explicit tag separating synthesized opening balances from user entries"""
    REGULAR = "regular"
    OPENING_BALANCE = "opening-balance"


@dataclass(frozen=True)
class Split:
    """
    Single signed posting against one account
    Positive amounts are debits, negative amounts are credits
    """
    account_id: str
    amount: Decimal

    @property
    def is_debit(self) -> bool:
        return self.amount > ZERO

    @property
    def is_credit(self) -> bool:
        return self.amount < ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {'accountId': self.account_id, 'amount': str(self.amount)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Split':
        account_id = data.get('accountId', data.get('account_id'))
        if not account_id:
            raise ValidationError("Every split needs an account")
        return cls(account_id=account_id, amount=to_amount(data['amount']))


@dataclass(frozen=True)
class Transaction:
    """
    Balanced transaction: a dated set of splits that sum to zero
    Immutable; changes are made by delete-and-recreate
    """
    id: str
    date: date
    description: str
    splits: Tuple[Split, ...]
    kind: TransactionKind = TransactionKind.REGULAR

    def total(self) -> Decimal:
        """Sum of all split amounts (zero for a balanced transaction)"""
        return sum((split.amount for split in self.splits), ZERO)

    def get_affected_accounts(self) -> Set[str]:
        """Get set of account IDs this transaction posts to"""
        return {split.account_id for split in self.splits}

    def involves(self, account_id: str) -> bool:
        return any(split.account_id == account_id for split in self.splits)

    def amount_for(self, account_id: str) -> Decimal:
        """Net signed amount this transaction posts to one account"""
        return sum(
            (split.amount for split in self.splits if split.account_id == account_id),
            ZERO
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted record shape"""
        return {
            'id': self.id,
            'date': self.date.isoformat(),
            'description': self.description,
            'splits': [split.to_dict() for split in self.splits],
            'kind': self.kind.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        """Create a Transaction from its persisted record shape"""
        return cls(
            id=data['id'],
            date=to_date(data['date']),
            description=data.get('description', ''),
            splits=tuple(Split.from_dict(split) for split in data['splits']),
            kind=TransactionKind(data.get('kind', TransactionKind.REGULAR.value))
        )


class SimpleEntryType(Enum):
    """Two-account entry shapes offered by the simple entry form"""
    EXPENSE = "expense"    # Debit expense (to), credit asset/liability (from)
    INCOME = "income"      # Debit asset (from), credit income (to)
    TRANSFER = "transfer"  # Debit 'to' account, credit 'from' account


def simple_splits(
    entry_type: SimpleEntryType,
    amount: Any,
    from_account_id: str,
    to_account_id: str
) -> List[Split]:
    """
    Build the two balanced splits for a simple entry

    Raises:
        ValidationError: Non-positive amount, missing or identical accounts
    """
    entry_type = SimpleEntryType(entry_type)
    amount = to_amount(amount)
    if amount <= ZERO:
        raise ValidationError("A positive amount is required")
    if not from_account_id or not to_account_id:
        raise ValidationError("Both accounts must be selected")
    if from_account_id == to_account_id:
        raise ValidationError("Accounts cannot be the same")

    if entry_type == SimpleEntryType.INCOME:
        return [Split(from_account_id, amount), Split(to_account_id, -amount)]
    # Expense and transfer both debit the destination and credit the source
    return [Split(to_account_id, amount), Split(from_account_id, -amount)]


def _coerce_split(raw: Any) -> Split:
    if isinstance(raw, Split):
        return Split(raw.account_id, to_amount(raw.amount))
    if isinstance(raw, dict):
        account_id = raw.get('accountId', raw.get('account_id'))
        amount = raw.get('amount')
    elif isinstance(raw, (tuple, list)) and len(raw) == 2:
        account_id, amount = raw
    else:
        raise ValidationError(f"Invalid split: {raw!r}")
    if not account_id:
        raise ValidationError("Every split needs an account")
    return Split(account_id=account_id, amount=to_amount(amount))


class Ledger:
    """
    Collection of balanced transactions with account-scoped queries

    Keeps a side index from account id to its opening-balance transaction
    id, maintained from the TransactionKind tag.
    """

    def __init__(
        self,
        hierarchy: AccountHierarchy,
        persistence: 'LedgerPersistence',
        opening_balances_account_id: str = OPENING_BALANCES_ACCOUNT_ID,
        tolerance: Decimal = BALANCE_TOLERANCE,
        enforce_placeholder: bool = True,
        logger=None
    ):
        self.hierarchy = hierarchy
        self.persistence = persistence
        self.opening_balances_account_id = opening_balances_account_id
        self.tolerance = Decimal(tolerance)
        self.enforce_placeholder = enforce_placeholder
        self.logger = logger or get_logger("zenith_ledger.ledger")
        self._transactions: Dict[str, Transaction] = {}
        self._opening_index: Dict[str, str] = {}
        self.version = 0

    # -- loading and snapshots ---------------------------------------------

    def load(self, transactions: Iterable[Transaction]) -> None:
        """
        Replace in-memory transactions without persisting (startup/restore)

        Untagged records that have the opening-balance shape (two splits, one
        against the Opening Balances account) are tagged on the way in. The
        first such record per account wins.
        """
        self._transactions = {}
        self._opening_index = {}
        for txn in transactions:
            if txn.kind == TransactionKind.REGULAR:
                target = self._opening_target(txn)
                if target is not None and target not in self._opening_index:
                    txn = Transaction(txn.id, txn.date, txn.description, txn.splits,
                                      TransactionKind.OPENING_BALANCE)
            self._transactions[txn.id] = txn
            self._index_opening(txn)
        self.version += 1

    def snapshot(self) -> Tuple[Dict[str, Transaction], Dict[str, str]]:
        return dict(self._transactions), dict(self._opening_index)

    def restore(self, snapshot: Tuple[Dict[str, Transaction], Dict[str, str]]) -> None:
        transactions, opening_index = snapshot
        self._transactions = dict(transactions)
        self._opening_index = dict(opening_index)
        self.version += 1

    # -- validation --------------------------------------------------------

    def validate_splits(self, splits: Iterable[Any]) -> Tuple[Split, ...]:
        """
        Normalize and validate candidate splits

        Zero-amount splits are dropped first. Splits may be Split objects,
        {accountId, amount} dicts or (account_id, amount) pairs.

        Raises:
            ValidationError: Fewer than two splits, unknown or placeholder
                account, or splits that do not sum to zero within tolerance
        """
        candidates = [_coerce_split(raw) for raw in splits]
        cleaned = tuple(split for split in candidates if split.amount != ZERO)

        if len(cleaned) < 2:
            raise ValidationError("At least two splits with an account and amount are required")

        for split in cleaned:
            account = self.hierarchy.get_account(split.account_id)
            if account is None:
                raise ValidationError(f"Split references unknown account {split.account_id}")
            if self.enforce_placeholder and account.placeholder:
                raise ValidationError(
                    f"Placeholder account {account.name} cannot receive postings"
                )

        total = sum((split.amount for split in cleaned), ZERO)
        if abs(total) > self.tolerance:
            raise ValidationError(
                f"Transaction not balanced: splits sum to {total}"
            )
        return cleaned

    def _build(
        self,
        txn_date: Any,
        description: Optional[str],
        splits: Iterable[Any],
        kind: TransactionKind
    ) -> Transaction:
        txn = Transaction(
            id=str(uuid.uuid4()),
            date=to_date(txn_date),
            description=(description or "").strip(),
            splits=self.validate_splits(splits),
            kind=TransactionKind(kind)
        )
        if txn.kind == TransactionKind.OPENING_BALANCE and self._opening_target(txn) is None:
            raise ValidationError(
                "Opening balance transactions need exactly two splits, one against "
                f"{self.opening_balances_account_id}"
            )
        return txn

    def _opening_target(self, txn: Transaction) -> Optional[str]:
        """Account an opening-balance-shaped transaction belongs to, if any"""
        if len(txn.splits) != 2:
            return None
        ids = [split.account_id for split in txn.splits]
        if ids.count(self.opening_balances_account_id) != 1:
            return None
        return ids[0] if ids[1] == self.opening_balances_account_id else ids[1]

    def _index_opening(self, txn: Transaction) -> None:
        if txn.kind == TransactionKind.OPENING_BALANCE:
            target = self._opening_target(txn)
            if target is not None:
                self._opening_index[target] = txn.id

    def _unindex_opening(self, txn: Transaction) -> None:
        if txn.kind == TransactionKind.OPENING_BALANCE:
            target = self._opening_target(txn)
            if target is not None and self._opening_index.get(target) == txn.id:
                del self._opening_index[target]

    # -- mutations ---------------------------------------------------------

    def add_transaction(
        self,
        txn_date: Any,
        description: Optional[str],
        splits: Iterable[Any],
        kind: TransactionKind = TransactionKind.REGULAR
    ) -> Transaction:
        """
        Validate, persist and store a new transaction

        Args:
            txn_date: Calendar day (date, datetime or ISO string)
            description: Human-readable description
            splits: Candidate splits (see validate_splits)
            kind: REGULAR or OPENING_BALANCE

        Returns:
            Stored Transaction with a fresh id

        Raises:
            ValidationError: If the splits are malformed or unbalanced
            PersistenceError: If the save fails (nothing is stored)
        """
        txn = self._build(txn_date, description, splits, kind)
        if txn.kind == TransactionKind.OPENING_BALANCE:
            target = self._opening_target(txn)
            if target in self._opening_index:
                raise ValidationError(f"Account {target} already has an opening balance")

        self.persistence.add_transaction(txn)
        self._commit_add(txn)

        log_action(
            self.logger, "info", f"Transaction added: {txn.description}",
            action="add_transaction", resource=f"transaction:{txn.id}",
            extra={
                "date": txn.date.isoformat(),
                "kind": txn.kind.value,
                "accounts": sorted(txn.get_affected_accounts())
            }
        )
        return txn

    def delete_transaction(self, transaction_id: str) -> Transaction:
        """
        Remove a transaction

        Raises:
            NotFoundError: If the id is unknown
            PersistenceError: If the delete fails (nothing is removed)
        """
        txn = self.get_transaction(transaction_id)

        self.persistence.delete_transaction(transaction_id)
        self._commit_delete(txn)

        log_action(
            self.logger, "info", f"Transaction deleted: {txn.description}",
            action="delete_transaction", resource=f"transaction:{txn.id}"
        )
        return txn

    def replace_transaction(
        self,
        old_transaction_id: Optional[str],
        txn_date: Any = None,
        description: Optional[str] = None,
        splits: Optional[Iterable[Any]] = None,
        kind: TransactionKind = TransactionKind.REGULAR
    ) -> Optional[Transaction]:
        """
        Delete one transaction and add its replacement as a single unit

        Either side is optional: with no old id this is an add, with no
        splits it is a delete. The replacement is validated before anything
        is written, and both writes share one storage transaction.

        Returns:
            The new Transaction, or None when only a delete happened
        """
        old = self.get_transaction(old_transaction_id) if old_transaction_id else None
        new = self._build(txn_date, description, splits, kind) if splits is not None else None
        if old is None and new is None:
            return None

        if new is not None and new.kind == TransactionKind.OPENING_BALANCE:
            target = self._opening_target(new)
            existing = self._opening_index.get(target)
            if existing is not None and (old is None or existing != old.id):
                raise ValidationError(f"Account {target} already has an opening balance")

        with self.persistence.atomic():
            if old is not None:
                self.persistence.delete_transaction(old.id)
            if new is not None:
                self.persistence.add_transaction(new)

        if old is not None:
            self._commit_delete(old)
        if new is not None:
            self._commit_add(new)

        log_action(
            self.logger, "info", "Transaction replaced",
            action="replace_transaction",
            resource=f"transaction:{new.id if new else old_transaction_id}",
            extra={
                "replaced": old.id if old else None,
                "kind": new.kind.value if new else None
            }
        )
        return new

    def _commit_add(self, txn: Transaction) -> None:
        self._transactions[txn.id] = txn
        self._index_opening(txn)
        self.version += 1

    def _commit_delete(self, txn: Transaction) -> None:
        del self._transactions[txn.id]
        self._unindex_opening(txn)
        self.version += 1

    # -- queries -----------------------------------------------------------

    def get_transaction(self, transaction_id: str) -> Transaction:
        """Get a transaction by ID, raising NotFoundError when absent"""
        txn = self._transactions.get(transaction_id)
        if txn is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return txn

    def all_transactions(self) -> List[Transaction]:
        """All transactions in insertion order"""
        return list(self._transactions.values())

    def __len__(self) -> int:
        return len(self._transactions)

    def transactions_for_account(self, account_id: str) -> List[Transaction]:
        """
        Transactions with at least one split against account_id

        Ordered newest first by date; same-day transactions keep insertion
        order (sorted() stays stable with reverse=True).
        """
        matching = [txn for txn in self._transactions.values() if txn.involves(account_id)]
        return sorted(matching, key=lambda txn: txn.date, reverse=True)

    def transactions_as_of(self, as_of: Any = None) -> List[Transaction]:
        """Transactions dated on or before as_of (all when as_of is None)"""
        if as_of is None:
            return self.all_transactions()
        cutoff = to_date(as_of, "as_of")
        return [txn for txn in self._transactions.values() if txn.date <= cutoff]

    def transactions_between(self, start: Any, end: Any) -> List[Transaction]:
        """Transactions dated within the inclusive day range [start, end]"""
        start_day = to_date(start, "start")
        end_day = to_date(end, "end")
        return [
            txn for txn in self._transactions.values()
            if start_day <= txn.date <= end_day
        ]

    def opening_balance_transaction(self, account_id: str) -> Optional[Transaction]:
        """The opening-balance transaction for an account, if any"""
        transaction_id = self._opening_index.get(account_id)
        if transaction_id is None:
            return None
        return self._transactions.get(transaction_id)
