"""Exception hierarchy for host syndication."""

from __future__ import annotations


class SyndicationError(Exception):
    """Base exception for host syndication operations."""
    pass


class ConfigurationError(SyndicationError):
    """Raised when settings cannot be loaded or are invalid."""
    pass


class TransientError(SyndicationError):
    """Retryable infrastructure failure.

    Reconciliation stops without persisting status; the scheduler is expected
    to try again later.
    """
    pass


class DatabaseError(SyndicationError):
    """Raised when a database statement fails."""
    pass


class DatabaseUnavailableError(DatabaseError, TransientError):
    """Raised on connection failures and statement timeouts."""
    pass


class ConnectorError(SyndicationError):
    """Raised when the connector management API rejects a request."""
    pass


class ConnectorUnavailableError(ConnectorError, TransientError):
    """Raised when the connector management API cannot be reached in time."""
    pass


class ConflictError(TransientError):
    """Raised when a status write keeps losing optimistic-concurrency races."""
    pass


class InvariantError(SyndicationError):
    """Raised when stored status violates a lifecycle invariant."""
    pass


class ValidationDataError(SyndicationError):
    """Raised for malformed rows returned by validation queries."""
    pass
