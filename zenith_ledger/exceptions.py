"""
Ledger Error Taxonomy

Every error raised by the bookkeeping core derives from LedgerError so
collaborators can catch the whole family in one place.
"""


class LedgerError(RuntimeError):
    """Base class for all ledger core errors"""
    pass


class ValidationError(LedgerError, ValueError):
    """Malformed input to a ledger mutation (unbalanced splits, bad amounts, ...)"""
    pass


class NotFoundError(LedgerError, ValueError):
    """Referenced account or transaction does not exist"""
    pass


class ConfigurationError(LedgerError):
    """A required well-known account or setting is missing"""
    pass


class PersistenceError(LedgerError):
    """The storage backend failed to save or load"""
    pass


class CycleError(LedgerError):
    """An account parent chain loops back on itself"""
    pass
