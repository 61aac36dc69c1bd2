"""
Balance Engine

Derives account balances from the ledger: one pass over the transactions
builds per-account self totals, then the totals are folded up the account
tree. Results are raw signed values; the debit/credit presentation sign is
only applied by presented_balance.
"""

from collections import OrderedDict
from decimal import Decimal
from datetime import date, timedelta
from typing import Any, Dict, Optional, Set, Tuple

from .accounts import AccountHierarchy
from .exceptions import CycleError
from .ledger import Ledger, ZERO, to_date

# Least recently used cutoffs are dropped past this many
MAX_CACHED_CUTOFFS = 32


class _Rollup:
    """Self totals for one cutoff plus the subtree totals computed so far"""

    def __init__(self, self_totals: Dict[str, Decimal]):
        self.self_totals = self_totals
        self.rolled: Dict[str, Decimal] = {}


class BalanceEngine:
    """
    Computes point-in-time balances with recursive child aggregation

    balance(parent) == self balance + sum(balance(child)) for every direct
    child, at every cutoff.
    """

    def __init__(self, hierarchy: AccountHierarchy, ledger: Ledger):
        self.hierarchy = hierarchy
        self.ledger = ledger
        self._rollups: "OrderedDict[Optional[date], _Rollup]" = OrderedDict()
        self._versions: Tuple[int, int] = (-1, -1)

    def _rollup_for(self, as_of: Any) -> _Rollup:
        versions = (self.hierarchy.version, self.ledger.version)
        if versions != self._versions:
            self._rollups.clear()
            self._versions = versions

        cutoff = to_date(as_of, "as_of") if as_of is not None else None
        rollup = self._rollups.get(cutoff)
        if rollup is None:
            rollup = _Rollup(self._self_totals(cutoff))
            self._rollups[cutoff] = rollup
            if len(self._rollups) > MAX_CACHED_CUTOFFS:
                self._rollups.popitem(last=False)
        else:
            self._rollups.move_to_end(cutoff)
        return rollup

    def _self_totals(self, cutoff: Optional[date]) -> Dict[str, Decimal]:
        totals: Dict[str, Decimal] = {}
        for txn in self.ledger.transactions_as_of(cutoff):
            for split in txn.splits:
                totals[split.account_id] = totals.get(split.account_id, ZERO) + split.amount
        return totals

    def _fold(self, account_id: str, rollup: _Rollup, in_progress: Set[str]) -> Decimal:
        cached = rollup.rolled.get(account_id)
        if cached is not None:
            return cached
        if account_id in in_progress:
            raise CycleError(f"Account {account_id} is its own ancestor")

        in_progress.add(account_id)
        total = rollup.self_totals.get(account_id, ZERO)
        for child in self.hierarchy.children_of(account_id):
            total += self._fold(child.id, rollup, in_progress)
        in_progress.discard(account_id)

        rollup.rolled[account_id] = total
        return total

    def balance(self, account_id: str, as_of: Any = None) -> Decimal:
        """
        Balance of an account including all of its descendants

        Args:
            account_id: Account to calculate balance for
            as_of: Inclusive cutoff day (date, datetime or ISO string);
                all transactions when omitted

        Returns:
            Raw signed balance (debits positive)

        Raises:
            NotFoundError: Unknown account
            CycleError: Malformed parent cycle below the account
        """
        self.hierarchy.find_account(account_id)
        return self._fold(account_id, self._rollup_for(as_of), set())

    def self_balance(self, account_id: str, as_of: Any = None) -> Decimal:
        """Sum of the account's own splits, excluding children"""
        self.hierarchy.find_account(account_id)
        return self._rollup_for(as_of).self_totals.get(account_id, ZERO)

    def balances(self, as_of: Any = None) -> Dict[str, Decimal]:
        """Rolled-up balance of every account in one pass"""
        rollup = self._rollup_for(as_of)
        for account in self.hierarchy.accounts():
            self._fold(account.id, rollup, set())
        return dict(rollup.rolled)

    def presented_balance(self, account_id: str, as_of: Any = None) -> Decimal:
        """Balance with the account type's normal-side sign applied"""
        account = self.hierarchy.find_account(account_id)
        return account.type.present(self.balance(account_id, as_of))

    def period_activity(self, account_id: str, start: Any, end: Any) -> Decimal:
        """Raw change in balance over the inclusive day range [start, end]"""
        day_before = to_date(start, "start") - timedelta(days=1)
        return self.balance(account_id, end) - self.balance(account_id, day_before)
