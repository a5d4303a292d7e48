"""Exception hierarchy for semantic model persistence.

Every error raised by the persistence layer derives from ``SemanticStoreError`` so
callers can catch the whole family, while the concrete subclasses let them tell a
missing model (create a new one) apart from a throttled backend (try later) or a
broken payload (investigate).
"""

from __future__ import annotations


class SemanticStoreError(Exception):
    """Root exception for the semantic store.

    Attributes:
        message: Human-readable error description
        context: Optional diagnostic details (location, path, status code, ...)
    """

    def __init__(self, message: str, context: dict[str, object] | None = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.context:
            details = ", ".join(f"{key}={value!r}" for key, value in self.context.items())
            return f"{self.message} ({details})"
        return self.message


class TransientStorageError(SemanticStoreError):
    """Retryable backend failure (throttling, conflict, timeout) that outlived its retry budget."""


class PermanentStorageError(SemanticStoreError):
    """Non-retryable backend failure such as an authorization error or malformed request."""


class NotFoundError(SemanticStoreError):
    """The requested model index or entity does not exist."""


class CorruptionError(SemanticStoreError):
    """A persisted envelope exists but does not have the expected shape."""


class ConfigurationError(SemanticStoreError, ValueError):
    """Unknown strategy name or missing backend setting, raised before any I/O."""


class DisposedError(SemanticStoreError, RuntimeError):
    """An operation was attempted on an object that has already been closed."""
