"""
Budget Store

Sparse map from (fiscal year, account id) to a planned amount. Entries are
not tied to existing accounts so historical budgets survive account edits.
An explicit zero is kept distinct from a missing entry.

Fiscal year Y runs from July 1 of Y to June 30 of Y+1.
"""

from decimal import Decimal
from datetime import date
from typing import Any, Dict, Optional, Tuple, TYPE_CHECKING

from .exceptions import ValidationError
from .ledger import ZERO, to_amount, to_date
from .logging_config import get_logger, log_action

if TYPE_CHECKING:
    from .persistence import LedgerPersistence


FISCAL_YEAR_START_MONTH = 7

BudgetKey = Tuple[int, str]


def fiscal_year_for(day: Any) -> int:
    """Fiscal year a calendar day falls in"""
    day = to_date(day)
    return day.year if day.month >= FISCAL_YEAR_START_MONTH else day.year - 1


def fiscal_year_start(year: int) -> date:
    return date(year, FISCAL_YEAR_START_MONTH, 1)


def fiscal_year_end(year: int) -> date:
    return date(year + 1, FISCAL_YEAR_START_MONTH - 1, 30)


def budget_key(fiscal_year: int, account_id: str) -> str:
    """Serialized key: "<fiscalYear>-<accountId>" """
    return f"{fiscal_year}-{account_id}"


def parse_budget_key(key: str) -> BudgetKey:
    """Split a serialized key; account ids may themselves contain hyphens"""
    year_text, sep, account_id = key.partition("-")
    if not sep or not account_id:
        raise ValidationError(f"Invalid budget key: {key!r}")
    try:
        return int(year_text), account_id
    except ValueError:
        raise ValidationError(f"Invalid budget key: {key!r}") from None


def _check_fiscal_year(fiscal_year: Any) -> int:
    if isinstance(fiscal_year, bool) or not isinstance(fiscal_year, int):
        raise ValidationError(f"Fiscal year must be an integer: {fiscal_year!r}")
    return fiscal_year


class BudgetStore:
    """Holds planned amounts per fiscal year and account"""

    def __init__(self, persistence: 'LedgerPersistence', logger=None):
        self.persistence = persistence
        self.logger = logger or get_logger("zenith_ledger.budgets")
        self._entries: Dict[BudgetKey, Decimal] = {}

    def load(self, mapping: Dict[str, Any]) -> None:
        """Replace entries from the serialized map without persisting"""
        self._entries = {
            parse_budget_key(key): to_amount(value, "budget amount")
            for key, value in mapping.items()
        }

    def snapshot(self) -> Dict[BudgetKey, Decimal]:
        return dict(self._entries)

    def restore(self, snapshot: Dict[BudgetKey, Decimal]) -> None:
        self._entries = dict(snapshot)

    def set_budget(self, fiscal_year: int, account_id: str, amount: Any) -> Decimal:
        """
        Upsert a budget entry (zero is stored as an explicit zero)

        Raises:
            ValidationError: Non-integer year, missing account id or bad amount
            PersistenceError: If the save fails (entry unchanged)
        """
        fiscal_year = _check_fiscal_year(fiscal_year)
        if not account_id:
            raise ValidationError("Budget entries need an account id")
        amount = to_amount(amount, "budget amount")

        entries = dict(self._entries)
        entries[(fiscal_year, account_id)] = amount

        self.persistence.replace_budgets(self._serialize(entries))
        self._entries = entries

        log_action(
            self.logger, "info", "Budget set",
            action="set_budget", resource=f"budget:{budget_key(fiscal_year, account_id)}",
            extra={"amount": str(amount)}
        )
        return amount

    def budget_for(self, fiscal_year: int, account_id: str) -> Decimal:
        """Stored amount, or zero when no entry exists"""
        return self._entries.get((fiscal_year, account_id), ZERO)

    def has_budget(self, fiscal_year: int, account_id: str) -> bool:
        return (fiscal_year, account_id) in self._entries

    def get(self, fiscal_year: int, account_id: str) -> Optional[Decimal]:
        """Stored amount, or None when no entry exists"""
        return self._entries.get((fiscal_year, account_id))

    def entries(self) -> Dict[BudgetKey, Decimal]:
        return dict(self._entries)

    def to_dict(self) -> Dict[str, Decimal]:
        """Entries keyed by their serialized "<fiscalYear>-<accountId>" form"""
        return self._serialize(self._entries)

    @staticmethod
    def _serialize(entries: Dict[BudgetKey, Decimal]) -> Dict[str, Decimal]:
        return {budget_key(year, account_id): amount for (year, account_id), amount in entries.items()}

    def __len__(self) -> int:
        return len(self._entries)
