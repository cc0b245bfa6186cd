"""
Exception hierarchy for nvimclient.

Provides:
- A base error carrying a code, a category and structured details
- Transport, spawn, protocol and call-level errors
- The handshake metadata validation errors
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(Enum):
    """Error categories for classification."""
    TRANSPORT = "transport"
    PROTOCOL = "protocol"
    RPC = "rpc"
    METADATA = "metadata"
    TIMEOUT = "timeout"


class NvimClientError(Exception):
    """Base exception for all nvimclient errors."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        category: ErrorCategory = ErrorCategory.TRANSPORT,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "category": self.category.value,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class TransportError(NvimClientError):
    """Connecting to, reading from or writing to the peer failed."""

    def __init__(self, message: str, code: str = "TRANSPORT_IO", details: dict[str, Any] | None = None):
        super().__init__(message, code=code, category=ErrorCategory.TRANSPORT, details=details)


class SpawnReason(str, Enum):
    """Why spawning a child peer failed."""
    START_FAILED = "start_failed"
    NO_STDIN = "no_stdin"
    NO_STDOUT = "no_stdout"


_SPAWN_CODES = {
    SpawnReason.START_FAILED: "SPAWN_FAILED",
    SpawnReason.NO_STDIN: "NO_STDIN",
    SpawnReason.NO_STDOUT: "NO_STDOUT",
}


class SpawnError(TransportError):
    """A child peer could not be started with both standard streams piped."""

    def __init__(self, reason: SpawnReason, message: str, executable: str | None = None):
        super().__init__(
            message,
            code=_SPAWN_CODES[reason],
            details={"reason": reason.value, "executable": executable},
        )
        self.reason = reason
        self.executable = executable


class ProtocolError(NvimClientError):
    """The peer sent bytes that do not decode to a valid envelope."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, code="PROTOCOL_ERROR", category=ErrorCategory.PROTOCOL, details=details)


class ConnectionClosedError(NvimClientError):
    """The session is closed or broken; the call can never complete."""

    def __init__(self, message: str = "connection closed", cause: str | None = None):
        details = {"cause": cause} if cause else {}
        super().__init__(message, code="CONNECTION_CLOSED", category=ErrorCategory.TRANSPORT, details=details)
        self.cause = cause


class RpcError(NvimClientError):
    """The peer answered a call with an error value."""

    def __init__(self, method: str, error: Any):
        super().__init__(
            f"{method} failed: {_describe_remote_error(error)}",
            code="RPC_ERROR",
            category=ErrorCategory.RPC,
            details={"method": method, "error": error},
        )
        self.method = method
        self.error = error


class CallTimeoutError(NvimClientError):
    """Waiting for a response took longer than the caller allowed."""

    def __init__(self, method: str, timeout_seconds: float):
        super().__init__(
            f"Call '{method}' timed out after {timeout_seconds}s",
            code="TIMEOUT",
            category=ErrorCategory.TIMEOUT,
            details={"method": method, "timeout_seconds": timeout_seconds},
        )


class InvalidMetadata(NvimClientError):
    """The handshake result does not describe the peer's extension types."""

    def __init__(self, message: str, code: str, name: str | None = None):
        details = {"name": name} if name else {}
        super().__init__(message, code=code, category=ErrorCategory.METADATA, details=details)
        self.name = name


class NotAMap(InvalidMetadata):
    def __init__(self) -> None:
        super().__init__("capability info is not a map", code="METADATA_NOT_A_MAP")


class NoTypeInformation(InvalidMetadata):
    def __init__(self) -> None:
        super().__init__("capability info has no 'types' entry", code="METADATA_NO_TYPES")


class MissingType(InvalidMetadata):
    """A required extension type is absent from ``types``."""

    def __init__(self, name: str):
        super().__init__(f"type '{name}' is missing from capability info", code="METADATA_MISSING", name=name)


class InvalidType(InvalidMetadata):
    """A required extension type has no usable integer ``id``."""

    def __init__(self, name: str):
        super().__init__(f"type '{name}' has no integer id", code="METADATA_INVALID", name=name)


def _describe_remote_error(error: Any) -> str:
    # Nvim reports errors as [type, message].
    if isinstance(error, (list, tuple)) and len(error) == 2 and isinstance(error[1], str):
        return error[1]
    if isinstance(error, bytes):
        return error.decode("utf-8", errors="replace")
    return str(error)
