"""Exception hierarchy shared by the protocol, transport and session layers."""

from __future__ import annotations


class RsrError(Exception):
    """Base class for errors raised while talking to the sensor-rotate module."""


class ProtocolError(RsrError, RuntimeError):
    """Raised when a response does not have the shape the request expects."""


class DeviceError(RsrError):
    """Raised when the device answers with its error variant.

    ``message`` is the device-supplied text, kept verbatim.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CatalogError(RsrError):
    """Raised when the behavior catalog cannot be enumerated."""


class StaleHandleError(RsrError):
    """Raised when a subsystem handle from a previous connection is used."""


class TransportError(RsrError, ConnectionError):
    """Raised when the device connection is closed or the exchange fails."""
