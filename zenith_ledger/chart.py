"""
Default Chart of Accounts

One placeholder root per account type with a starter set of accounts
beneath. The Opening Balances account under the equity root is looked up
by its stable id, never by name.
"""

from typing import List

from .accounts import Account, AccountType


OPENING_BALANCES_ACCOUNT_ID = "equity-opening"

ROOT_ACCOUNT_IDS = {
    "ASSET": "root-asset",
    "LIABILITY": "root-liability",
    "EQUITY": "root-equity",
    "INCOME": "root-income",
    "EXPENSE": "root-expense",
}

# (id, name, type, parent_id, placeholder)
DEFAULT_CHART = [
    # Root accounts
    ("root-asset", "Assets", "ASSET", None, True),
    ("root-liability", "Liabilities", "LIABILITY", None, True),
    ("root-equity", "Equity", "EQUITY", None, True),
    ("root-income", "Income", "INCOME", None, True),
    ("root-expense", "Expenses", "EXPENSE", None, True),

    # Assets
    ("asset-current", "Current Assets", "ASSET", "root-asset", True),
    ("asset-bank", "Bank Account", "ASSET", "asset-current", False),
    ("asset-cash", "Cash in Hand", "ASSET", "asset-current", False),

    # Liabilities
    ("liability-payable", "Accounts Payable", "LIABILITY", "root-liability", False),

    # Equity
    (OPENING_BALANCES_ACCOUNT_ID, "Opening Balances", "EQUITY", "root-equity", False),
    ("equity-retained", "Retained Earnings", "EQUITY", "root-equity", False),

    # Income
    ("income-fees", "Tuition Fees", "INCOME", "root-income", False),
    ("income-donations", "Donations", "INCOME", "root-income", False),
    ("income-other", "Other Income", "INCOME", "root-income", False),

    # Expenses
    ("expense-salaries", "Salaries", "EXPENSE", "root-expense", False),
    ("expense-rent", "Rent", "EXPENSE", "root-expense", False),
    ("expense-utilities", "Utilities", "EXPENSE", "root-expense", True),
    ("expense-utilities-electricity", "Electricity Bill", "EXPENSE", "expense-utilities", False),
    ("expense-utilities-internet", "Internet Bill", "EXPENSE", "expense-utilities", False),
    ("expense-supplies", "Office & School Supplies", "EXPENSE", "root-expense", False),
    ("expense-maintenance", "Maintenance & Repairs", "EXPENSE", "root-expense", False),
]


def default_accounts() -> List[Account]:
    """Fresh list of the bootstrap accounts"""
    return [
        Account(
            id=account_id,
            name=name,
            type=AccountType(type_name),
            parent_id=parent_id,
            placeholder=placeholder
        )
        for account_id, name, type_name, parent_id, placeholder in DEFAULT_CHART
    ]
