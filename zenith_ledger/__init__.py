"""
Zenith Ledger Core

In-memory double-entry bookkeeping engine with an account hierarchy,
balanced split transactions, recursive point-in-time balances and
synthesized opening balances. All amounts use Decimal precision.
"""

__version__ = "1.0.0"
