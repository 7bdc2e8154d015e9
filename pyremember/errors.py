"""
Error taxonomy for pyremember.

Every error carries the name of the failing operation and, where one applies,
the scope it ran against, so callers can branch on the type and still log a
useful message.
"""

from typing import Any, Optional


class PyRememberError(Exception):
    """Base class for all pyremember errors."""

    def __init__(self, op: str, detail: Any = "", scope: Optional[Any] = None):
        self.op = op
        self.detail = str(detail)
        self.scope = scope
        super().__init__(self._format())

    def _format(self) -> str:
        message = f"{self.op}: {self.detail}" if self.detail else self.op
        if self.scope is not None:
            message = f"{message} [scope={self.scope}]"
        return message


class NotFoundError(PyRememberError, LookupError):
    """Record does not exist (or is outside the requested scope)."""


class InvalidArgumentError(PyRememberError, ValueError):
    """Dimension mismatch, empty content, malformed filter or bad config value."""


class ConflictingIDError(PyRememberError):
    """Insert with a caller-supplied id that already exists."""


class BackendUnavailableError(PyRememberError):
    """Connectivity or transport failure of the backing store. Never retried."""


class SerializationError(PyRememberError):
    """Metadata or vector could not be encoded or decoded."""


class OperationCancelledError(PyRememberError):
    """A scan observed its cancellation event or deadline and stopped."""
