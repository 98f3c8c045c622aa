"""
LSP Client Error Taxonomy

Typed exceptions raised by the process supervisor, the transport channel and
the session state machine. Each carries a reason enum so callers can branch on
the failure class without parsing messages.
"""

from enum import Enum
from typing import Any

from lsp_constants import LSPErrorCode


class LaunchErrorReason(Enum):
    """Why the server process could not be started."""

    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    OS_ERROR = "os_error"


class TransportErrorReason(Enum):
    """Why the transport channel failed."""

    CLOSED = "closed"
    PROTOCOL = "protocol"


class SessionErrorReason(Enum):
    """Caller contract violations and handshake failures."""

    NOT_READY = "not_ready"
    ALREADY_IN_PROGRESS = "already_in_progress"
    TIMEOUT = "timeout"
    HANDSHAKE_FAILED = "handshake_failed"


class LSPClientError(Exception):
    """Base class for all client lifecycle errors."""


class LaunchError(LSPClientError):
    """The server executable could not be located or executed."""

    def __init__(self, reason: LaunchErrorReason, message: str):
        self.reason = reason
        self.message = message
        super().__init__(f"Launch failed ({reason.value}): {message}")


class TransportError(LSPClientError):
    """The message channel to the server is closed or desynchronized."""

    def __init__(self, reason: TransportErrorReason, message: str):
        self.reason = reason
        self.message = message
        super().__init__(f"Transport {reason.value}: {message}")

    @property
    def is_closed(self) -> bool:
        return self.reason == TransportErrorReason.CLOSED


class SessionError(LSPClientError):
    """The session cannot perform the requested operation in its current phase."""

    def __init__(self, reason: SessionErrorReason, message: str):
        self.reason = reason
        self.message = message
        super().__init__(f"Session error ({reason.value}): {message}")


class ResponseError(LSPClientError):
    """The server answered a request with a JSON-RPC error object."""

    def __init__(self, code: LSPErrorCode, message: str, data: Any | None = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"Server error {code.value}: {message}")

    @classmethod
    def from_error_object(cls, error: dict[str, Any]) -> "ResponseError":
        """Build from the `error` member of a response."""
        return cls(
            LSPErrorCode.from_value(error.get("code")),
            str(error.get("message", "")),
            error.get("data"),
        )
