"""
Printing subsystem for Ticket Printer.

This package groups the printer link:

- escpos / qr: byte-exact ESC/POS command encoding, including QR symbols
- ble / chooser: BLE discovery, connection management and device selection
- channel: paced writes to the bound characteristic
- receipt: two-part ticket receipt composition
- worker: background event loop, job registry, and runtime wiring

For convenience, the core types are re-exported here.
"""

from .ble import (
    BleakTransport,
    BoundCharacteristic,
    ConnectionState,
    DegradedCharacteristic,
    DeviceDescriptor,
    PrinterLink,
    RealCharacteristic,
)
from .channel import CommandChannel
from .chooser import DeviceChooser
from .errors import (
    ConnectionLost,
    EmptyPayload,
    LinkError,
    NoCharacteristic,
    NotAvailable,
    NotConnected,
    PayloadTooLarge,
    PrinterError,
    WriteError,
)
from .qr import QrOptions, build_qr_commands
from .receipt import ReceiptComposer, ReceiptContent

__all__ = [
    "BleakTransport",
    "BoundCharacteristic",
    "CommandChannel",
    "ConnectionLost",
    "ConnectionState",
    "DegradedCharacteristic",
    "DeviceChooser",
    "DeviceDescriptor",
    "EmptyPayload",
    "LinkError",
    "NoCharacteristic",
    "NotAvailable",
    "NotConnected",
    "PayloadTooLarge",
    "PrinterError",
    "PrinterLink",
    "QrOptions",
    "RealCharacteristic",
    "ReceiptComposer",
    "ReceiptContent",
    "WriteError",
    "build_qr_commands",
]
