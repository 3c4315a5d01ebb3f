# src/r2sync/exceptions.py
"""Custom exceptions for the r2sync application."""


class R2SyncError(Exception):
    """Base exception for all application-specific errors."""

    pass


class ConfigurationError(R2SyncError):
    """Raised when required settings are missing or invalid."""

    pass


class EnumerationError(R2SyncError):
    """Raised when the source side of a run cannot be listed or walked."""

    pass


class InvalidPathError(R2SyncError):
    """Raised when a mapped key or path would escape its root."""

    pass


class TransferError(R2SyncError):
    """Raised when a single object transfer fails."""

    pass


class SyncStateError(R2SyncError):
    """Raised when a pipeline is driven outside its valid state transitions."""

    pass
