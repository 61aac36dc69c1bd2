"""
Reporting Aggregations Module

Ranged aggregations over a LedgerStore for profit and loss, balance sheet
totals, budget versus actuals, account registers and the dashboard summary.
Computation only: report figures are Decimals in presented sign (positive =
normal balance) unless a report says it is raw, formatting is left to the
caller.
"""

from decimal import Decimal
from datetime import date, timedelta
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .accounts import Account, AccountType
from .budgets import fiscal_year_end, fiscal_year_start
from .exceptions import ValidationError
from .ledger import Transaction, ZERO, to_date

if TYPE_CHECKING:
    from .store import LedgerStore


MULTIPLE_ACCOUNTS = "Multiple accounts"
RECENT_TRANSACTION_COUNT = 5


@dataclass
class AccountTotal:
    """One account's presented total within a report"""
    account: Account
    total: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'account_id': self.account.id,
            'name': self.account.name,
            'type': self.account.type.value,
            'total': str(self.total)
        }


@dataclass
class ProfitAndLoss:
    """Income and expense activity over an inclusive day range"""
    start: date
    end: date
    income: List[AccountTotal] = field(default_factory=list)
    expenses: List[AccountTotal] = field(default_factory=list)

    @property
    def total_income(self) -> Decimal:
        return sum((line.total for line in self.income), ZERO)

    @property
    def total_expenses(self) -> Decimal:
        return sum((line.total for line in self.expenses), ZERO)

    @property
    def net_income(self) -> Decimal:
        return self.total_income - self.total_expenses

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start': self.start.isoformat(),
            'end': self.end.isoformat(),
            'income': [line.to_dict() for line in self.income],
            'expenses': [line.to_dict() for line in self.expenses],
            'total_income': str(self.total_income),
            'total_expenses': str(self.total_expenses),
            'net_income': str(self.net_income)
        }


@dataclass
class BalanceSheet:
    """Presented totals of the asset, liability and equity roots at a day"""
    as_of: date
    total_assets: Decimal
    total_liabilities: Decimal
    total_equity: Decimal

    @property
    def total_liabilities_and_equity(self) -> Decimal:
        return self.total_liabilities + self.total_equity

    def to_dict(self) -> Dict[str, Any]:
        return {
            'as_of': self.as_of.isoformat(),
            'total_assets': str(self.total_assets),
            'total_liabilities': str(self.total_liabilities),
            'total_equity': str(self.total_equity),
            'total_liabilities_and_equity': str(self.total_liabilities_and_equity)
        }


@dataclass
class BudgetLine:
    """Budget against actual activity for one account and fiscal year"""
    account: Account
    fiscal_year: int
    budget: Decimal
    actual: Decimal

    @property
    def variance(self) -> Decimal:
        """Budget minus actual; positive means under budget"""
        return self.budget - self.actual

    def to_dict(self) -> Dict[str, Any]:
        return {
            'account_id': self.account.id,
            'name': self.account.name,
            'type': self.account.type.value,
            'fiscal_year': self.fiscal_year,
            'budget': str(self.budget),
            'actual': str(self.actual),
            'variance': str(self.variance)
        }


@dataclass
class RegisterRow:
    """One transaction in an account register, amounts in raw ledger sign"""
    transaction: Transaction
    other_account: str
    debit: Decimal
    credit: Decimal
    balance: Decimal

    @property
    def date(self) -> date:
        return self.transaction.date

    @property
    def description(self) -> str:
        return self.transaction.description

    def to_dict(self) -> Dict[str, Any]:
        return {
            'transaction_id': self.transaction.id,
            'date': self.date.isoformat(),
            'description': self.description,
            'other_account': self.other_account,
            'debit': str(self.debit),
            'credit': str(self.credit),
            'balance': str(self.balance)
        }


@dataclass
class MonthlyTotals:
    """Income and expense activity for one calendar month"""
    year: int
    month: int
    income: Decimal = ZERO
    expenses: Decimal = ZERO

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def to_dict(self) -> Dict[str, Any]:
        return {'month': self.key, 'income': str(self.income), 'expenses': str(self.expenses)}


@dataclass
class DashboardSummary:
    """
    Headline figures for the whole ledger

    total_assets and total_liabilities are raw root balances, so liabilities
    are negative and net worth is their sum. Income and expense totals are
    all-time and positive for normal activity.
    """
    net_worth: Decimal
    total_assets: Decimal
    total_liabilities: Decimal
    total_income: Decimal
    total_expenses: Decimal
    monthly: List[MonthlyTotals] = field(default_factory=list)
    recent_transactions: List[Transaction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'net_worth': str(self.net_worth),
            'total_assets': str(self.total_assets),
            'total_liabilities': str(self.total_liabilities),
            'total_income': str(self.total_income),
            'total_expenses': str(self.total_expenses),
            'monthly': [month.to_dict() for month in self.monthly],
            'recent_transactions': [txn.to_dict() for txn in self.recent_transactions]
        }


def _by_name(lines: List[AccountTotal]) -> List[AccountTotal]:
    return sorted(lines, key=lambda line: (line.account.name.casefold(), line.account.id))


def profit_and_loss(store: 'LedgerStore', start: Any, end: Any) -> ProfitAndLoss:
    """
    Profit and loss over the inclusive range [start, end]

    Only the account's own splits count (no child roll-up), so parent and
    child lines never double count. Accounts without activity are omitted.

    Raises:
        ValidationError: Bad dates or start after end
    """
    start_day = to_date(start, "start")
    end_day = to_date(end, "end")
    if start_day > end_day:
        raise ValidationError("Report start must not be after its end")

    totals: Dict[str, Decimal] = {}
    for txn in store.transactions_between(start_day, end_day):
        for split in txn.splits:
            totals[split.account_id] = totals.get(split.account_id, ZERO) + split.amount

    report = ProfitAndLoss(start=start_day, end=end_day)
    for account_id, raw in totals.items():
        account = store.get_account(account_id)
        if account is None:
            continue
        if account.type == AccountType.INCOME:
            report.income.append(AccountTotal(account, account.type.present(raw)))
        elif account.type == AccountType.EXPENSE:
            report.expenses.append(AccountTotal(account, account.type.present(raw)))

    report.income = _by_name(report.income)
    report.expenses = _by_name(report.expenses)
    return report


def _root_total(store: 'LedgerStore', account_type: AccountType, as_of: date) -> Decimal:
    total = ZERO
    for account in store.children_of(None):
        if account.type == account_type:
            total += store.presented_balance(account.id, as_of)
    return total


def balance_sheet(store: 'LedgerStore', as_of: Any) -> BalanceSheet:
    """Asset, liability and equity totals from the root accounts of each type"""
    day = to_date(as_of, "as_of")
    return BalanceSheet(
        as_of=day,
        total_assets=_root_total(store, AccountType.ASSET, day),
        total_liabilities=_root_total(store, AccountType.LIABILITY, day),
        total_equity=_root_total(store, AccountType.EQUITY, day)
    )


def budget_vs_actuals(store: 'LedgerStore', fiscal_year: int) -> List[BudgetLine]:
    """
    Budget, actual and variance for every non-placeholder income and expense
    account in the fiscal year

    Actual is the account's activity over the fiscal year (balance at its end
    minus balance the day before its start) in presented sign.
    """
    start = fiscal_year_start(fiscal_year)
    end = fiscal_year_end(fiscal_year)
    day_before = start - timedelta(days=1)

    lines: List[BudgetLine] = []
    for account in store.accounts():
        if account.placeholder:
            continue
        if account.type not in (AccountType.INCOME, AccountType.EXPENSE):
            continue
        raw = store.balance(account.id, end) - store.balance(account.id, day_before)
        lines.append(BudgetLine(
            account=account,
            fiscal_year=fiscal_year,
            budget=store.budget_for(fiscal_year, account.id),
            actual=account.type.present(raw)
        ))
    return sorted(lines, key=lambda line: (line.account.type.value, line.account.name.casefold()))


def _other_account_name(store: 'LedgerStore', txn: Transaction, account_id: str) -> str:
    others = {split.account_id for split in txn.splits if split.account_id != account_id}
    if len(others) == 1:
        other = store.get_account(others.pop())
        if other is not None:
            return other.name
    return MULTIPLE_ACCOUNTS


def account_register(store: 'LedgerStore', account_id: str) -> List[RegisterRow]:
    """
    Register of the transactions posted directly to an account

    The running balance is accumulated oldest first, starting from the
    account's rolled-up balance minus its own postings, so the newest row
    always ends on the current balance. Rows are returned newest first.

    Raises:
        NotFoundError: Unknown account
    """
    store.find_account(account_id)
    # Oldest first; same-day transactions keep insertion order
    transactions = sorted(store.transactions_for_account(account_id), key=lambda txn: txn.date)

    changes = [
        sum((split.amount for split in txn.splits if split.account_id == account_id), ZERO)
        for txn in transactions
    ]
    running = store.balance(account_id) - sum(changes, ZERO)

    rows: List[RegisterRow] = []
    for txn, change in zip(transactions, changes):
        running += change
        rows.append(RegisterRow(
            transaction=txn,
            other_account=_other_account_name(store, txn, account_id),
            debit=change if change > ZERO else ZERO,
            credit=-change if change < ZERO else ZERO,
            balance=running
        ))
    rows.reverse()
    return rows


def _root_raw_total(store: 'LedgerStore', account_type: AccountType) -> Decimal:
    return sum(
        (store.balance(account.id) for account in store.children_of(None) if account.type == account_type),
        ZERO
    )


def _recent_months(today: date, months: int) -> List[MonthlyTotals]:
    current = today.year * 12 + today.month - 1
    buckets = []
    for index in range(current - months + 1, current + 1):
        year, month = divmod(index, 12)
        buckets.append(MonthlyTotals(year=year, month=month + 1))
    return buckets


def dashboard_summary(store: 'LedgerStore', months: int = 12, today: Optional[Any] = None) -> DashboardSummary:
    """
    Net worth, all-time income and expenses and a monthly trend

    The trend covers the last `months` calendar months ending with the month
    of `today`; months without activity are zero.

    Raises:
        ValidationError: months below one or a bad date
    """
    if months < 1:
        raise ValidationError("Dashboard needs at least one month")
    day = to_date(today, "today") if today is not None else date.today()

    trend = _recent_months(day, months)
    buckets = {(bucket.year, bucket.month): bucket for bucket in trend}
    types = {account.id: account.type for account in store.accounts()}

    total_income = ZERO
    total_expenses = ZERO
    transactions = store.all_transactions()
    for txn in transactions:
        bucket = buckets.get((txn.date.year, txn.date.month))
        for split in txn.splits:
            account_type = types.get(split.account_id)
            if account_type == AccountType.INCOME:
                total_income -= split.amount
                if bucket is not None:
                    bucket.income -= split.amount
            elif account_type == AccountType.EXPENSE:
                total_expenses += split.amount
                if bucket is not None:
                    bucket.expenses += split.amount

    total_assets = _root_raw_total(store, AccountType.ASSET)
    total_liabilities = _root_raw_total(store, AccountType.LIABILITY)
    recent = sorted(transactions, key=lambda txn: txn.date, reverse=True)[:RECENT_TRANSACTION_COUNT]

    return DashboardSummary(
        net_worth=total_assets + total_liabilities,
        total_assets=total_assets,
        total_liabilities=total_liabilities,
        total_income=total_income,
        total_expenses=total_expenses,
        monthly=trend,
        recent_transactions=recent
    )
