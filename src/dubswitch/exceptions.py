"""Custom exception hierarchy for dubswitch."""

from __future__ import annotations


class DubswitchError(Exception):
    """Base exception for all dubswitch errors."""


class DubswitchConfigError(DubswitchError):
    """Invalid or missing configuration."""


class DubswitchTransportError(DubswitchError):
    """UDP endpoint could not be opened.

    Only raised at startup.  Individual datagram send/receive failures are
    logged by the transport and never propagate to callers.
    """

    def __init__(self, message: str, *, local_port: int | None = None) -> None:
        self.local_port = local_port
        super().__init__(message)


class NoDeviceError(DubswitchError):
    """A device read was requested before any device address is known."""


class InvalidMessageError(DubswitchError):
    """Session message could not be parsed or failed validation."""

    def __init__(self, message: str, *, raw: str = "") -> None:
        self.raw = raw
        super().__init__(message)


class PersistenceError(DubswitchError):
    """Writing a persisted document failed (atomic write and fallback)."""

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        super().__init__(message)


class InvalidMatrixError(DubswitchError):
    """Matrix patch has a key that is not a channel id or a non-object value."""
