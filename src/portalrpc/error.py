"""Exception types for portalrpc."""

from __future__ import annotations

from typing import Any


class PortalError(Exception):
    """Base class for all portalrpc errors."""


class ProtocolError(PortalError, ValueError):
    """Raised when a wire envelope is structurally invalid."""


class ExecutorValidationError(PortalError):
    """Raised by the Executor when a request fails validation.

    The string form is the literal message that was also sent to the peer,
    e.g. ``"Unknown function 'notfunction'"``.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class UnresolvableValueError(PortalError, TypeError):
    """Raised when deep resolution meets a value of unknown kind."""

    def __init__(self, value: Any) -> None:
        self.value = value
        self.kind = type(value).__name__
        super().__init__(f"Value {value!r} ({self.kind}) is not a known type")


class FunctionSourceError(PortalError):
    """Raised when a function cannot be turned into source or back."""


class RemoteError(PortalError):
    """A failure reported by the Executor, rebuilt on the Initiator side.

    Only ``message`` and ``name`` survive the channel. When the peer sent a
    bare value instead of a ``{message, name}`` pair, ``message`` holds that
    value as-is and ``name`` is ``None``.

    Attributes:
        message: The remote error message, or the raw error value
        name: The remote exception type name, if one was sent
    """

    def __init__(self, message: Any, name: str | None = None) -> None:
        self.message = message
        self.name = name
        super().__init__(message if isinstance(message, str) else repr(message))

    @classmethod
    def from_payload(cls, error: Any) -> RemoteError:
        """Rebuild an error from the ``error`` field of a failure response."""
        if isinstance(error, dict) and "message" in error and "name" in error:
            return cls(error["message"], name=error["name"])
        return cls(error)

    def __str__(self) -> str:
        if isinstance(self.message, str):
            return self.message
        return repr(self.message)

    def __repr__(self) -> str:
        return f"RemoteError(name={self.name!r}, message={self.message!r})"


class ConnectionClosedError(PortalError, ConnectionError):
    """Raised for calls still pending when an Initiator is closed."""
