from __future__ import annotations


class LedgerError(RuntimeError):
    """
    Base class for failures that abort a ledger operation.

    Never retried automatically: a partially applied fold would break the
    checkpoint/row consistency, so callers see the error instead.
    """


class LedgerLockError(LedgerError):
    """
    The ledger's read/write gate could not be acquired.
    """


class LedgerCommitError(LedgerError):
    """
    The transaction holding rows + checkpoint failed and was rolled back.
    """
