"""Exceptions raised by the ledger store, sync driver and rule transformer."""

from enum import Enum


class StoreErrorKind(str, Enum):
    """Distinguished store failure conditions callers branch on."""

    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"
    DATABASE = "database"


class StoreError(Exception):
    """Failure of a local store operation."""

    def __init__(self, kind: StoreErrorKind, message: str):
        self.kind = kind
        super().__init__(message)


class ConsistencyError(Exception):
    """An upstream event contradicts local state (e.g. modify with no base)."""


class SyncInProgressError(RuntimeError):
    """A sync pass is already running in this process."""


class LedgerError(ValueError):
    """A transaction violates the double-entry balance invariant."""


class RuleError(Exception):
    """A rule file could not be loaded or compiled."""


class RuleEvaluationError(Exception):
    """A compiled rule failed while transforming a transaction."""
