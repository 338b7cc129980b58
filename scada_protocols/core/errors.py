"""
Protocol Layer Error Taxonomy
=============================

Every public operation either returns a value or raises a ProtocolError
subclass. Callers that only care about the classification read ``error.kind``.

    ErrorKind              Exception                  Reconnect?
    NOT_CONNECTED          NotConnectedError          yes
    ALREADY_CONNECTING     AlreadyConnectingError     no
    ALREADY_POLLING        AlreadyPollingError        no
    TIMEOUT                ProtocolTimeoutError       yes
    TRANSPORT_FAILURE      TransportError             yes
    PROTOCOL_VIOLATION     ProtocolViolationError     no
    PARTIAL_WRITE_FAILURE  PartialWriteError          no
    UNSUPPORTED            UnsupportedError           no
    INTERNAL               IllegalTransitionError     no

Transport errors fault the connection. Protocol violations (malformed device
data) are reported but leave the connection usable. Partial write failures are
never raised by the drivers themselves; WriteResult.raise_for_rejections()
raises them on request.
"""

from enum import Enum
from typing import Optional, Sequence


class ErrorKind(str, Enum):
    """Classified failure kinds shared by all protocols."""
    NOT_CONNECTED = "not_connected"
    ALREADY_CONNECTING = "already_connecting"
    ALREADY_POLLING = "already_polling"
    TIMEOUT = "timeout"
    TRANSPORT_FAILURE = "transport_failure"
    PROTOCOL_VIOLATION = "protocol_violation"
    PARTIAL_WRITE_FAILURE = "partial_write_failure"
    UNSUPPORTED = "unsupported"
    INTERNAL = "internal"


class ProtocolError(Exception):
    """Base class for all protocol layer failures."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.kind.value)
        self.detail = detail

    @property
    def needs_reconnect(self) -> bool:
        """True when the connection must be re-established before retrying."""
        return self.kind in (
            ErrorKind.NOT_CONNECTED,
            ErrorKind.TIMEOUT,
            ErrorKind.TRANSPORT_FAILURE,
        )

    @property
    def is_retryable(self) -> bool:
        """True when the same call may succeed if simply repeated."""
        return self.kind in (ErrorKind.TIMEOUT, ErrorKind.TRANSPORT_FAILURE)


class NotConnectedError(ProtocolError):
    kind = ErrorKind.NOT_CONNECTED


class AlreadyConnectingError(ProtocolError):
    kind = ErrorKind.ALREADY_CONNECTING


class AlreadyPollingError(ProtocolError):
    kind = ErrorKind.ALREADY_POLLING


class TransportError(ProtocolError):
    """Raised when the underlying link fails (reset, refused, closed)."""
    kind = ErrorKind.TRANSPORT_FAILURE


class ProtocolTimeoutError(TransportError):
    """Raised when the device does not answer within the response timeout."""
    kind = ErrorKind.TIMEOUT

    def __init__(self, detail: str = "", timeout_s: Optional[float] = None):
        super().__init__(detail)
        self.timeout_s = timeout_s


class ProtocolViolationError(ProtocolError):
    """Raised when the device returns malformed or unexpected data."""
    kind = ErrorKind.PROTOCOL_VIOLATION


class PartialWriteError(ProtocolError):
    """Raised on request when some commands in a batch were rejected."""
    kind = ErrorKind.PARTIAL_WRITE_FAILURE

    def __init__(self, detail: str = "", rejected: Sequence = ()):
        super().__init__(detail)
        self.rejected = tuple(rejected)


class UnsupportedError(ProtocolError):
    """Raised when a driver does not implement the requested capability."""
    kind = ErrorKind.UNSUPPORTED


class IllegalTransitionError(ProtocolError):
    """Raised when a driver attempts a connection state change that is not allowed."""
    kind = ErrorKind.INTERNAL
