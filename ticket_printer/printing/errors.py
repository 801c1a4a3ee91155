"""
Printer link error taxonomy.

Every failure raised by the printing core derives from PrinterError so callers
(worker, web layer) can catch one type at the job boundary and still report
the specific kind via `PrinterError.kind`.
"""

from __future__ import annotations

from typing import Optional


class PrinterError(Exception):
    """Base exception for printer link operations."""

    kind = "printer_error"


class NotAvailable(PrinterError):
    """The host has no usable Bluetooth LE adapter."""

    kind = "not_available"


class LinkError(PrinterError):
    """The physical GATT connection could not be established."""

    kind = "link_error"


class NotConnected(PrinterError):
    """No characteristic is bound; connect first."""

    kind = "not_connected"


class ConnectionLost(PrinterError):
    """The link dropped after a characteristic was bound."""

    kind = "connection_lost"


class NoCharacteristic(PrinterError):
    # Reserved: discovery falls back to a degraded handle instead of raising.
    kind = "no_characteristic"


class WriteError(PrinterError):
    """A transport write failed. The original exception is kept on `cause`."""

    kind = "write_error"

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class EmptyPayload(PrinterError):
    """QR symbol requested with no data."""

    kind = "empty_payload"


class PayloadTooLarge(PrinterError):
    """QR data exceeds what one symbol can hold."""

    kind = "payload_too_large"


__all__ = [
    "ConnectionLost",
    "EmptyPayload",
    "LinkError",
    "NoCharacteristic",
    "NotAvailable",
    "NotConnected",
    "PayloadTooLarge",
    "PrinterError",
    "WriteError",
]
