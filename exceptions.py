"""Typed failures raised while reconciling contacts."""

from typing import Any, Dict, Optional


class ReconciliationError(Exception):
    """Base class for every failure the identify flow can raise."""


class InvalidRequest(ReconciliationError):
    """Neither email nor phoneNumber was supplied."""


class StoreError(ReconciliationError):
    """The contact store could not complete a transaction."""


class StoreUnavailable(StoreError):
    """The database could not be opened or queried."""


class TransactionConflict(StoreError):
    """The database was locked by a concurrent writer."""


class InternalConsistencyViolation(ReconciliationError):
    """The link graph breaks one of its invariants.

    ``context`` carries the ids and values involved so the violation can be
    logged in full without leaking it to the caller.
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
