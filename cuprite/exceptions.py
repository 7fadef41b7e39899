# cuprite/exceptions.py
"""
Defines custom exception classes for the cuprite session layer.

Every failure surfaced by the dispatcher, the event waiters, or the session
facade derives from `CupriteError`. None of these are retried internally;
retry policy belongs to the caller because replaying an input action such
as a click is not idempotent.
"""
from typing import Any, Mapping, Optional

NO_NODE_MESSAGE = "No node with given id found"


class CupriteError(Exception):
    """Base exception class for all custom errors in cuprite."""

    pass


class ProtocolError(CupriteError):
    """Raised when the remote engine answers a command with an error payload.

    The raw response is preserved so callers can inspect the remote code
    and message.
    """

    def __init__(
        self,
        message: str,
        response: Optional[Mapping[str, Any]] = None,
        method: Optional[str] = None,
    ):
        """Initializes the ProtocolError with the remote error payload."""
        super().__init__(message)
        self.response = dict(response or {})
        self.method = method

    @property
    def code(self) -> Optional[int]:
        return self.response.get("code")

    @property
    def message(self) -> str:
        return self.response.get("message", str(self))

    @classmethod
    def from_response(
        cls, error: Mapping[str, Any], method: Optional[str] = None
    ) -> "ProtocolError":
        """Builds an error from the ``error`` object of a response frame."""
        message = error.get("message", "Unknown protocol error")
        return cls(message, response=error, method=method)

    @property
    def is_missing_node(self) -> bool:
        return self.message == NO_NODE_MESSAGE


class ObsoleteNodeError(ProtocolError):
    """Raised when a referenced DOM node no longer exists in the page.

    Callers should query the DOM again instead of retrying the same handle.
    Only the exact "no node" message is translated into this error.
    """

    @classmethod
    def from_protocol_error(cls, error: ProtocolError) -> "ObsoleteNodeError":
        return cls(error.message, response=error.response, method=error.method)


class WaitTimeoutError(CupriteError, TimeoutError):
    """Raised when an event wait (or a bounded command) runs out of time.

    A timeout says nothing about whether the underlying action succeeded.
    """

    def __init__(self, message: str, event: Optional[str] = None):
        super().__init__(message)
        self.event = event


class ConnectionClosedError(CupriteError, ConnectionError):
    """Raised when the transport terminates.

    Every pending command and waiter fails with this error and the session
    is no longer usable.
    """

    pass


class NotRenderableError(CupriteError):
    """Raised when an element has no layout boxes to aim pointer events at."""

    pass


class NoSuchWindowError(CupriteError, KeyError):
    """Raised when a window locator does not resolve to a known handle.

    Inherits from `KeyError` since the registry behaves like a mapping of
    handles.
    """

    pass


class DiscoveryError(CupriteError):
    """Raised when the browser's HTTP discovery endpoint cannot be used."""

    pass
