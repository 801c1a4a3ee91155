"""
Receipt composition.

Turns one ReceiptContent record into the two-part ticket receipt:
- customer copy: header, event, detail lines, QR symbol, footer
- teller copy: label, a different subset of detail lines, cut

Every directive goes through the CommandChannel strictly in order; the first
failure aborts the rest, except the final cut which is best-effort because
many BLE printers have no cutter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Mapping, Optional

from . import escpos
from .channel import CommandChannel
from .errors import PrinterError
from .qr import QrOptions, print_qr

logger = logging.getLogger(__name__)

DEFAULT_HEADER = "E-TICKET"
DEFAULT_FOOTER = "Thank you for your purchase!"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M"
TELLER_COPY_LABEL = "Teller Copy"
SEPARATOR = "=" * 24


@dataclass(frozen=True)
class ReceiptContent:
    event_description: Optional[str] = None
    category_name: Optional[str] = None
    teller_email: Optional[str] = None
    ticket_id: Optional[str] = None
    price: Optional[str] = None
    quantity: Optional[str] = None
    venue_name: Optional[str] = None
    event_date_ms: Optional[int] = None
    qr_text: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ReceiptContent":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


def format_event_date(event_date_ms: Optional[int], fmt: str = DEFAULT_DATE_FORMAT) -> str:
    """Epoch milliseconds to local time text; empty for missing/invalid values."""
    if event_date_ms in (None, ""):
        return ""
    try:
        return datetime.fromtimestamp(int(event_date_ms) / 1000).strftime(fmt)
    except (TypeError, ValueError, OverflowError, OSError):
        logger.warning(f"Ignoring invalid event date: {event_date_ms!r}")
        return ""


def _present(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


class ReceiptComposer:
    def __init__(
        self,
        channel: CommandChannel,
        *,
        header: str = DEFAULT_HEADER,
        footer: str = DEFAULT_FOOTER,
        qr_options: QrOptions = QrOptions(),
        date_format: str = DEFAULT_DATE_FORMAT,
    ) -> None:
        self.channel = channel
        self.header = header
        self.footer = footer
        self.qr_options = qr_options
        self.date_format = date_format

    async def _send(self, buffer: escpos.CommandBuffer) -> None:
        await self.channel.send(buffer)

    async def _labelled(self, label: str, value: Any) -> None:
        if _present(value):
            await self._send(escpos.line(f"{label}{value}"))

    async def _cut(self) -> None:
        try:
            await self._send(escpos.cut())
        except PrinterError as e:
            logger.info(f"Paper cut not supported or failed: {e}")

    async def print_receipt(self, content: ReceiptContent) -> bool:
        """
        Print customer and teller copies. Returns True once every directive
        has been submitted; raises the failing step's PrinterError otherwise.
        """
        date_text = format_event_date(content.event_date_ms, self.date_format)
        logger.info("Printing receipt for ticket %s", content.ticket_id or "-")

        # Customer copy
        await self._send(escpos.initialize())
        await self._send(escpos.align("center"))
        await self._send(escpos.bold(True))
        await self._send(escpos.line(self.header))
        await self._send(escpos.bold(False))
        if _present(content.event_description):
            await self._send(escpos.line(str(content.event_description)))
        await self._send(escpos.align("left"))
        await self._labelled("Event Category: ", content.category_name)
        await self._labelled("Teller: ", content.teller_email)
        await self._labelled("Ticket#: ", content.ticket_id)
        await self._labelled("Price: ", content.price)
        await self._labelled("Quantity: ", content.quantity)
        await self._labelled("Venue: ", content.venue_name)
        await self._labelled("Date: ", date_text)
        await self._send(escpos.align("center"))
        if _present(content.qr_text):
            await print_qr(self.channel, str(content.qr_text), self.qr_options)
        await self._send(escpos.line(self.footer))
        await self._send(escpos.line_feed())

        # Teller copy
        await self._send(escpos.align("center"))
        await self._send(escpos.bold(True))
        await self._send(escpos.line(TELLER_COPY_LABEL))
        await self._send(escpos.bold(False))
        await self._send(escpos.align("left"))
        await self._labelled("Ticket#: ", content.ticket_id)
        await self._labelled("Event Category: ", content.category_name)
        await self._labelled("Price: ", content.price)
        await self._labelled("Date: ", date_text)
        await self._labelled("Teller: ", content.teller_email)
        await self._labelled("Quantity: ", content.quantity)
        await self._send(escpos.line_feed())
        await self._cut()

        logger.info("Receipt for ticket %s submitted", content.ticket_id or "-")
        return True

    async def print_test_page(self, device_name: Optional[str] = None) -> bool:
        await self._send(escpos.initialize())
        await self._send(escpos.align("center"))
        await self._send(escpos.bold(True))
        await self._send(escpos.line("THERMAL PRINTER TEST"))
        await self._send(escpos.bold(False))
        await self._send(escpos.line(SEPARATOR))
        await self._send(escpos.align("left"))
        await self._send(escpos.line(f"Device: {device_name or 'Unknown'}"))
        await self._send(escpos.line(f"Date: {datetime.now().strftime(self.date_format)}"))
        await self._send(escpos.line("Status: Connected"))
        await self._send(escpos.line_feed())
        await self._send(escpos.line_feed())
        await self._send(escpos.align("center"))
        await self._send(escpos.line("Test completed successfully!"))
        await self._cut()
        return True


__all__ = [
    "DEFAULT_FOOTER",
    "DEFAULT_HEADER",
    "ReceiptComposer",
    "ReceiptContent",
    "TELLER_COPY_LABEL",
    "format_event_date",
]
