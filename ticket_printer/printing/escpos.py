"""
ESC/POS command encoder.

Stateless mapping from printer directives to the exact byte sequences the
receipt printers expect. Every function returns an immutable `bytes`
CommandBuffer.
"""

from __future__ import annotations

ESC = b"\x1b"
GS = b"\x1d"

INIT = ESC + b"@"
ALIGN_LEFT = ESC + b"a\x00"
ALIGN_CENTER = ESC + b"a\x01"
BOLD_ON = ESC + b"E\x01"
BOLD_OFF = ESC + b"E\x00"
LINE_FEED = b"\n"
CARRIAGE_RETURN = b"\r"
CUT_PAPER = GS + b"VB\x00"

CommandBuffer = bytes


def initialize() -> CommandBuffer:
    return INIT


def align(where: str) -> CommandBuffer:
    """
    Return the alignment directive for "left" or "center".

    Raises:
        ValueError for any other alignment name.
    """
    if where == "left":
        return ALIGN_LEFT
    if where == "center":
        return ALIGN_CENTER
    raise ValueError(f"Unsupported alignment: {where}")


def bold(on: bool) -> CommandBuffer:
    return BOLD_ON if on else BOLD_OFF


def line_feed() -> CommandBuffer:
    return LINE_FEED


def carriage_return() -> CommandBuffer:
    return CARRIAGE_RETURN


def cut() -> CommandBuffer:
    return CUT_PAPER


def text(value: str) -> CommandBuffer:
    """
    Encode literal text as UTF-8. No escaping is applied; callers must keep
    control bytes out of free-text fields.
    """
    return value.encode("utf-8")


def line(value: str) -> CommandBuffer:
    """Encode text followed by a newline."""
    return text(f"{value}\n")


def hexdump(buf: CommandBuffer) -> str:
    return " ".join(f"{b:02X}" for b in buf)


__all__ = [
    "ALIGN_CENTER",
    "ALIGN_LEFT",
    "BOLD_OFF",
    "BOLD_ON",
    "CARRIAGE_RETURN",
    "CUT_PAPER",
    "CommandBuffer",
    "INIT",
    "LINE_FEED",
    "align",
    "bold",
    "carriage_return",
    "cut",
    "hexdump",
    "initialize",
    "line",
    "line_feed",
    "text",
]
