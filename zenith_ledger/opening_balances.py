"""
Opening Balance Synthesizer

Represents a user-declared starting balance as a two-split transaction
against the well-known Opening Balances equity account. Setting a new
opening balance replaces the previous one; a zero balance means no
transaction at all.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Any, Optional

from .accounts import AccountHierarchy, AccountType
from .chart import OPENING_BALANCES_ACCOUNT_ID
from .exceptions import ConfigurationError, ValidationError
from .ledger import Ledger, Split, Transaction, TransactionKind, ZERO, to_amount, to_date
from .logging_config import get_logger, log_action


@dataclass(frozen=True)
class OpeningBalance:
    """Opening balance in user-facing terms (positive = increase)"""
    transaction_id: str
    amount: Decimal
    date: date


class OpeningBalanceSynthesizer:
    """Creates, replaces and reads opening-balance transactions"""

    def __init__(
        self,
        hierarchy: AccountHierarchy,
        ledger: Ledger,
        opening_balances_account_id: str = OPENING_BALANCES_ACCOUNT_ID,
        logger=None
    ):
        self.hierarchy = hierarchy
        self.ledger = ledger
        self.opening_balances_account_id = opening_balances_account_id
        self.logger = logger or get_logger("zenith_ledger.opening_balances")

    def _require_opening_account(self) -> None:
        if not self.hierarchy.has_account(self.opening_balances_account_id):
            log_action(
                self.logger, "error",
                "Opening Balances account is missing; cannot synthesize opening balance",
                action="set_opening_balance",
                resource=f"account:{self.opening_balances_account_id}"
            )
            raise ConfigurationError(
                f"Opening Balances account {self.opening_balances_account_id} not found"
            )

    def set_opening_balance(self, account_id: str, amount: Any, as_of_date: Any) -> Optional[Transaction]:
        """
        Set or replace an account's opening balance

        Args:
            account_id: Account receiving the opening balance
            amount: User-facing amount, positive for an increase
            as_of_date: Day the balance applies from

        Returns:
            The new opening-balance Transaction, or None when the amount is
            zero or the account is a placeholder

        Raises:
            NotFoundError: Unknown account
            ValidationError: Bad amount or date, or the target is the
                Opening Balances account itself
            ConfigurationError: Opening Balances account missing (nothing
                is changed)
        """
        account = self.hierarchy.find_account(account_id)
        amount = to_amount(amount)
        day = to_date(as_of_date, "as_of_date")

        if account.placeholder:
            log_action(
                self.logger, "warning",
                f"Ignoring opening balance for placeholder account {account.name}",
                action="set_opening_balance", resource=f"account:{account_id}"
            )
            return None
        if account_id == self.opening_balances_account_id:
            raise ValidationError("The Opening Balances account cannot have an opening balance")

        self._require_opening_account()

        existing = self.ledger.opening_balance_transaction(account_id)
        signed = account.type.to_ledger(amount)

        if signed == ZERO:
            if existing is None:
                return None
            self.ledger.replace_transaction(existing.id)
            log_action(
                self.logger, "info", f"Opening balance cleared for {account.name}",
                action="set_opening_balance", resource=f"account:{account_id}"
            )
            return None

        txn = self.ledger.replace_transaction(
            existing.id if existing else None,
            txn_date=day,
            description=f"Opening Balance for {account.name}",
            splits=[
                Split(account_id, signed),
                Split(self.opening_balances_account_id, -signed)
            ],
            kind=TransactionKind.OPENING_BALANCE
        )

        log_action(
            self.logger, "info", f"Opening balance set for {account.name}",
            action="set_opening_balance", resource=f"account:{account_id}",
            extra={
                "amount": str(amount),
                "date": day.isoformat(),
                "transaction_id": txn.id,
                "replaced": existing.id if existing else None
            }
        )
        return txn

    def get_opening_balance(self, account_id: str) -> Optional[OpeningBalance]:
        """
        Current opening balance of an account in user-facing terms

        Returns:
            OpeningBalance, or None if the account has none

        Raises:
            NotFoundError: Unknown account
        """
        account = self.hierarchy.find_account(account_id)
        txn = self.ledger.opening_balance_transaction(account_id)
        if txn is None:
            return None
        return OpeningBalance(
            transaction_id=txn.id,
            amount=account.type.present(txn.amount_for(account_id)),
            date=txn.date
        )

    def clear_opening_balance(self, account_id: str) -> bool:
        """Remove an account's opening balance; False if it had none"""
        self.hierarchy.find_account(account_id)
        txn = self.ledger.opening_balance_transaction(account_id)
        if txn is None:
            return False
        self.ledger.delete_transaction(txn.id)
        return True

    def resynthesize(self, account_id: str, previous_type: Optional[AccountType] = None) -> Optional[Transaction]:
        """
        Rebuild an existing opening balance after an account edit

        Keeps the user-facing amount (read with the account's type before the
        edit) and date, so a type change flips the stored sign and a rename
        refreshes the description. A placeholder account loses its opening
        balance.
        """
        account = self.hierarchy.find_account(account_id)
        txn = self.ledger.opening_balance_transaction(account_id)
        if txn is None:
            return None
        if account.placeholder:
            self.ledger.delete_transaction(txn.id)
            return None
        read_type = previous_type or account.type
        amount = read_type.present(txn.amount_for(account_id))
        return self.set_opening_balance(account_id, amount, txn.date)
