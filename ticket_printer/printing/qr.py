"""
QR symbol command group (ESC/POS GS ( k, function 165 family).

A printed QR symbol takes five commands: select model 2, set module size,
set error correction, store symbol data, print symbol. `build_qr_commands`
returns them as separate CommandBuffers so the channel can pace each write.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, List

from .errors import EmptyPayload, PayloadTooLarge
from .escpos import GS, CommandBuffer

if TYPE_CHECKING:
    from .channel import CommandChannel

logger = logging.getLogger(__name__)

_QR_PREFIX = GS + b"(k"

MODULE_SIZE_MIN = 1
MODULE_SIZE_MAX = 16

EC_LEVELS = {"L": 48, "M": 49, "Q": 50, "H": 51}
EC_DEFAULT = "M"

# Byte-mode capacity of a version 40 symbol at level L.
QR_MAX_BYTES = 7089
# pL/pH is a 16-bit count that includes the three function bytes.
_STORE_MAX_BYTES = 0xFFFF - 3


@dataclass(frozen=True)
class QrOptions:
    module_size: int = 6
    error_correction: str = EC_DEFAULT


def select_model() -> CommandBuffer:
    return _QR_PREFIX + bytes([0x04, 0x00, 0x31, 0x41, 0x32, 0x00])


def module_size(size: int) -> CommandBuffer:
    clamped = max(MODULE_SIZE_MIN, min(MODULE_SIZE_MAX, int(size)))
    return _QR_PREFIX + bytes([0x03, 0x00, 0x31, 0x43, clamped])


def error_correction(level: str) -> CommandBuffer:
    """Unknown levels fall back to M."""
    code = EC_LEVELS.get(str(level or "").upper(), EC_LEVELS[EC_DEFAULT])
    return _QR_PREFIX + bytes([0x03, 0x00, 0x31, 0x45, code])


def store_symbol_data(payload: bytes) -> CommandBuffer:
    """
    Store-data command. pL/pH carry len(payload) + 3 in little-endian order.

    Raises:
        ValueError if the length does not fit in pL/pH.
    """
    if len(payload) > _STORE_MAX_BYTES:
        raise ValueError(f"QR store payload too long: {len(payload)} bytes (max {_STORE_MAX_BYTES})")
    size = len(payload) + 3
    return _QR_PREFIX + bytes([size & 0xFF, (size >> 8) & 0xFF, 0x31, 0x50, 0x30]) + payload


def print_symbol() -> CommandBuffer:
    return _QR_PREFIX + bytes([0x03, 0x00, 0x31, 0x51, 0x30])


def build_qr_commands(data: str, options: QrOptions = QrOptions()) -> List[CommandBuffer]:
    """
    Build the five-command group for `data`.

    Raises:
        EmptyPayload if `data` is empty.
        PayloadTooLarge if the UTF-8 data is over QR_MAX_BYTES.
    """
    if not data:
        raise EmptyPayload("QR text is empty")
    payload = data.encode("utf-8")
    if len(payload) > QR_MAX_BYTES:
        raise PayloadTooLarge(f"QR text is {len(payload)} bytes (max {QR_MAX_BYTES})")
    return [
        select_model(),
        module_size(options.module_size),
        error_correction(options.error_correction),
        store_symbol_data(payload),
        print_symbol(),
    ]


async def print_qr(channel: "CommandChannel", data: str, options: QrOptions = QrOptions()) -> None:
    """Send the QR command group one write at a time."""
    commands = build_qr_commands(data, options)
    logger.info("Printing QR symbol (%d bytes, size=%s, ec=%s)", len(data.encode("utf-8")), options.module_size, options.error_correction)
    for cmd in commands:
        await channel.send(cmd)


__all__ = [
    "EC_LEVELS",
    "QR_MAX_BYTES",
    "QrOptions",
    "build_qr_commands",
    "error_correction",
    "module_size",
    "print_qr",
    "print_symbol",
    "select_model",
    "store_symbol_data",
]
