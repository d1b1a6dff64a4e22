"""
Error types shared by every layer of the migration.

Absence is modelled as :class:`NotFound` and is not a failure. Remote faults
are translated into :class:`SourceError` or :class:`DestinationError` at the
client boundary, and local storage faults into :class:`StoreError` at the
store boundary. :class:`TranslationDegraded` is collected, never raised.
"""

from typing import Optional


class MigrationToolError(Exception):
    """Base class for all errors raised by nuc2not."""


class NotFound(MigrationToolError):
    """The requested item, blob, record or workspace does not exist."""

    def __init__(self, what: str, key: str):
        super().__init__(f"{what} not found: {key}")
        self.what = what
        self.key = key


class SourceError(MigrationToolError):
    """A non-retryable fault reported by the source API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DestinationError(MigrationToolError):
    """A destination API fault, raised after conflict retries are exhausted."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StoreError(MigrationToolError):
    """The local cache could not be read or written."""


class TranslationDegraded(UserWarning):
    """A source block was rendered with reduced fidelity."""

    def __init__(self, kind: str, reason: str):
        super().__init__(f"block '{kind}' degraded: {reason}")
        self.kind = kind
        self.reason = reason
