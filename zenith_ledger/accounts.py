"""
Account Hierarchy Module

Manages the chart of accounts as an arena of accounts keyed by id with
parent-id links. Answers hierarchy, ancestry and descendant queries; every
traversal carries a visited set so a malformed parent cycle is reported as
a CycleError instead of recursing forever.
"""

from decimal import Decimal
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Optional, Set, TYPE_CHECKING
from enum import Enum
import uuid

from .exceptions import CycleError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action

if TYPE_CHECKING:
    from .persistence import LedgerPersistence


class AccountType(Enum):
    """Standard accounting account types"""
    ASSET = "ASSET"           # Debit normal balance
    LIABILITY = "LIABILITY"   # Credit normal balance
    EQUITY = "EQUITY"         # Credit normal balance
    INCOME = "INCOME"         # Credit normal balance
    EXPENSE = "EXPENSE"       # Debit normal balance

    @property
    def is_debit_normal(self) -> bool:
        """Check if a positive (debit) amount increases this type's balance"""
        return self in DEBIT_NORMAL_TYPES

    def present(self, amount: Decimal) -> Decimal:
        """Convert a raw signed ledger amount to the user-facing sign"""
        return amount if self.is_debit_normal else -amount

    def to_ledger(self, amount: Decimal) -> Decimal:
        """Convert a user-facing amount (positive = increase) to the ledger sign"""
        return amount if self.is_debit_normal else -amount


DEBIT_NORMAL_TYPES = frozenset({AccountType.ASSET, AccountType.EXPENSE})


def parse_account_type(value: Any) -> AccountType:
    """Accept an AccountType or its name, raising ValidationError otherwise"""
    if isinstance(value, AccountType):
        return value
    try:
        return AccountType(str(value).upper())
    except ValueError:
        raise ValidationError(f"Unknown account type: {value!r}") from None


@dataclass(frozen=True)
class Account:
    """
    Account in the chart of accounts

    The parent is a weak reference: only its id is recorded, and a missing
    parent id marks a root account.
    """
    id: str
    name: str
    type: AccountType
    parent_id: Optional[str] = None
    placeholder: bool = False
    description: Optional[str] = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def is_debit_normal(self) -> bool:
        return self.type.is_debit_normal

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted record shape"""
        result = {
            'id': self.id,
            'name': self.name,
            'type': self.type.value,
            'parentId': self.parent_id,
            'placeholder': self.placeholder,
        }
        if self.description is not None:
            result['description'] = self.description
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        """Create an Account from its persisted record shape"""
        return cls(
            id=data['id'],
            name=data['name'],
            type=parse_account_type(data['type']),
            parent_id=data.get('parentId'),
            placeholder=bool(data.get('placeholder', False)),
            description=data.get('description')
        )


@dataclass
class AccountNode:
    """One account in a hierarchy view with its recursively built children"""
    account: Account
    depth: int
    children: List['AccountNode'] = field(default_factory=list)


def _name_key(account: Account):
    return (account.name.casefold(), account.name)


def _walk(nodes: List[AccountNode]) -> Iterator[AccountNode]:
    for node in nodes:
        yield node
        yield from _walk(node.children)


class AccountHierarchy:
    """
    Forest of accounts keyed by identity

    Mutations persist first and only then update the in-memory arena, so a
    failed save leaves the hierarchy untouched.
    """

    def __init__(self, persistence: 'LedgerPersistence', logger=None):
        self.persistence = persistence
        self.logger = logger or get_logger("zenith_ledger.accounts")
        self._accounts: Dict[str, Account] = {}
        self._children_index: Optional[Dict[Optional[str], List[Account]]] = None
        self._tree_cache: Dict[Optional[str], List[AccountNode]] = {}
        self.version = 0

    # -- loading and snapshots ---------------------------------------------

    def load(self, accounts: List[Account]) -> None:
        """Replace the in-memory arena without persisting (startup/restore)"""
        self._accounts = {account.id: account for account in accounts}
        self._invalidate()

    def snapshot(self) -> Dict[str, Account]:
        # Accounts are frozen, a shallow copy is enough
        return dict(self._accounts)

    def restore(self, snapshot: Dict[str, Account]) -> None:
        self._accounts = dict(snapshot)
        self._invalidate()

    def _invalidate(self) -> None:
        self._children_index = None
        self._tree_cache = {}
        self.version += 1

    # -- lookups -----------------------------------------------------------

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        return self._accounts.get(account_id)

    def find_account(self, account_id: str) -> Account:
        """Get account by ID, raising NotFoundError when absent"""
        account = self._accounts.get(account_id)
        if account is None:
            raise NotFoundError(f"Account {account_id} not found")
        return account

    def has_account(self, account_id: str) -> bool:
        return account_id in self._accounts

    def accounts(self) -> List[Account]:
        """All accounts in insertion order"""
        return list(self._accounts.values())

    def __len__(self) -> int:
        return len(self._accounts)

    def _index(self) -> Dict[Optional[str], List[Account]]:
        if self._children_index is None:
            index: Dict[Optional[str], List[Account]] = {}
            for account in self._accounts.values():
                index.setdefault(account.parent_id, []).append(account)
            self._children_index = index
        return self._children_index

    def children_of(self, account_id: Optional[str]) -> List[Account]:
        """Direct children of an account (roots when account_id is None)"""
        return list(self._index().get(account_id, []))

    def roots(self) -> List[Account]:
        return sorted(self.children_of(None), key=_name_key)

    # -- traversal ---------------------------------------------------------

    def hierarchy(self, parent_id: Optional[str] = None) -> List[AccountNode]:
        """
        Build the ordered tree below parent_id

        Children are sorted by name at every level and depth starts at 0 for
        the returned level. Results are memoized until the next mutation.

        Raises:
            CycleError: If a parent chain loops
        """
        cached = self._tree_cache.get(parent_id)
        if cached is None:
            path = {parent_id} if parent_id is not None else set()
            cached = self._build(parent_id, 0, path)
            if parent_id is None:
                self._check_unreached(cached)
            self._tree_cache[parent_id] = cached
        return list(cached)

    def _check_unreached(self, tree: List[AccountNode]) -> None:
        # Accounts no root reaches either hang off a missing parent or sit on a loop
        reached = {node.account.id for node in _walk(tree)}
        for account in self._accounts.values():
            if account.id in reached:
                continue
            seen = {account.id}
            parent_id = account.parent_id
            while parent_id is not None and parent_id in self._accounts:
                if parent_id in seen:
                    raise CycleError(f"Parent chain of account {account.id} loops at {parent_id}")
                seen.add(parent_id)
                parent_id = self._accounts[parent_id].parent_id

    def _build(self, parent_id: Optional[str], depth: int, path: Set[str]) -> List[AccountNode]:
        nodes = []
        for child in sorted(self._index().get(parent_id, []), key=_name_key):
            if child.id in path:
                raise CycleError(f"Account {child.id} is its own ancestor")
            path.add(child.id)
            nodes.append(AccountNode(
                account=child,
                depth=depth,
                children=self._build(child.id, depth + 1, path)
            ))
            path.discard(child.id)
        return nodes

    def flatten(self, parent_id: Optional[str] = None) -> List[AccountNode]:
        """Depth-first list of hierarchy nodes (chart-of-accounts order)"""
        return list(_walk(self.hierarchy(parent_id)))

    def ancestors(self, account_id: str) -> List[Account]:
        """Parent chain from the direct parent up to the root"""
        account = self.find_account(account_id)
        chain: List[Account] = []
        seen = {account.id}
        parent_id = account.parent_id
        while parent_id is not None:
            if parent_id in seen:
                raise CycleError(f"Parent chain of account {account_id} loops at {parent_id}")
            seen.add(parent_id)
            parent = self.find_account(parent_id)
            chain.append(parent)
            parent_id = parent.parent_id
        return chain

    def descendants(self, account_id: str) -> List[Account]:
        """All accounts below account_id, depth first"""
        self.find_account(account_id)
        result: List[Account] = []
        visited = {account_id}
        stack = list(reversed(self.children_of(account_id)))
        while stack:
            account = stack.pop()
            if account.id in visited:
                raise CycleError(f"Account {account.id} reached twice below {account_id}")
            visited.add(account.id)
            result.append(account)
            stack.extend(reversed(self.children_of(account.id)))
        return result

    # -- mutations ---------------------------------------------------------

    def add_account(
        self,
        name: str,
        account_type: Any,
        parent_id: Optional[str] = None,
        placeholder: bool = False,
        description: Optional[str] = None,
        account_id: Optional[str] = None
    ) -> Account:
        """
        Create a new account

        Args:
            name: Display name (need not be unique)
            account_type: AccountType or its name
            parent_id: Parent account id, None for a root
            placeholder: Grouping-only account that takes no postings
            description: Optional free text
            account_id: Explicit id (generated if not provided)

        Returns:
            Created Account

        Raises:
            ValidationError: Blank name, bad type or duplicate id
            NotFoundError: Unknown parent
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Account name is required")
        account_type = parse_account_type(account_type)
        if parent_id is not None:
            self.find_account(parent_id)

        account_id = account_id or str(uuid.uuid4())
        if account_id in self._accounts:
            raise ValidationError(f"Account {account_id} already exists")

        account = Account(
            id=account_id,
            name=name,
            type=account_type,
            parent_id=parent_id,
            placeholder=bool(placeholder),
            description=description
        )

        self.persistence.add_account(account)
        self._accounts[account.id] = account
        self._invalidate()

        log_action(
            self.logger, "info", f"Account created: {account.name}",
            action="add_account", resource=f"account:{account.id}",
            extra={
                "type": account.type.value,
                "parent_id": parent_id,
                "placeholder": account.placeholder
            }
        )
        return account

    def update_account(self, account_id: str, **changes: Any) -> Account:
        """
        Edit an account's name, type, parent, placeholder flag or description

        Args:
            account_id: Account to edit
            **changes: Any of name, account_type, parent_id, placeholder,
                description

        Returns:
            Updated Account

        Raises:
            NotFoundError: Unknown account or new parent
            ValidationError: Blank name, bad type or unknown field
            CycleError: New parent is the account itself or one of its descendants
        """
        account = self.find_account(account_id)
        allowed = {'name', 'account_type', 'parent_id', 'placeholder', 'description'}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unknown account fields: {', '.join(sorted(unknown))}")

        updates: Dict[str, Any] = {}
        if 'name' in changes:
            name = (changes['name'] or "").strip()
            if not name:
                raise ValidationError("Account name is required")
            updates['name'] = name
        if 'account_type' in changes:
            updates['type'] = parse_account_type(changes['account_type'])
        if 'placeholder' in changes:
            updates['placeholder'] = bool(changes['placeholder'])
        if 'description' in changes:
            updates['description'] = changes['description']
        if 'parent_id' in changes:
            parent_id = changes['parent_id']
            if parent_id is not None:
                self._check_reparent(account_id, parent_id)
            updates['parent_id'] = parent_id

        updated = replace(account, **updates)
        if updated == account:
            return account

        self.persistence.update_account(updated)
        self._accounts[account_id] = updated
        self._invalidate()

        log_action(
            self.logger, "info", f"Account updated: {updated.name}",
            action="update_account", resource=f"account:{account_id}",
            extra={"changes": sorted(updates)}
        )
        return updated

    def _check_reparent(self, account_id: str, parent_id: str) -> None:
        """Reject a new parent that would close a loop"""
        if parent_id == account_id:
            raise CycleError(f"Account {account_id} cannot be its own parent")
        self.find_account(parent_id)
        for ancestor in self.ancestors(parent_id):
            if ancestor.id == account_id:
                raise CycleError(
                    f"Moving account {account_id} under {parent_id} would create a cycle"
                )
