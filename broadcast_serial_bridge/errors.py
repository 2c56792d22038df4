from __future__ import annotations

from typing import Optional


class BridgeError(Exception):
    """
    Base class for every failure raised by the bridge.
    Args:
        message (str): Human readable description
        channel (str, optional): Channel id or port the failure relates to
    """
    code: str = "BridgeError"

    def __init__(self, message: str, *, channel: Optional[str] = None) -> None:
        super().__init__(message)
        self.channel = channel


class NotRegistered(BridgeError):
    """Lookup of a channel id that has no registered channel."""
    code = "NotRegistered"


class PortUnavailable(BridgeError):
    """
    The serial device node cannot be opened.
    reason is one of "missing", "inaccessible", "held" or "error".
    """
    code = "PortUnavailable"

    MISSING = "missing"
    INACCESSIBLE = "inaccessible"
    HELD = "held"
    ERROR = "error"

    def __init__(self, message: str, *, channel: Optional[str] = None, reason: str = ERROR) -> None:
        super().__init__(message, channel=channel)
        self.reason = reason


class OpenTimeout(BridgeError):
    """Opening the device node did not complete within the open timeout."""
    code = "OpenTimeout"


class ResponseTimeout(BridgeError):
    """No byte at all arrived before the response timer fired."""
    code = "ResponseTimeout"


class Busy(BridgeError):
    """Another exchange is already in flight on the channel."""
    code = "Busy"


class InvalidParameter(BridgeError):
    """A request parameter was rejected before any I/O took place."""
    code = "InvalidParameter"


class Cancelled(BridgeError):
    """The exchange was cancelled through its cancellation token."""
    code = "Cancelled"
