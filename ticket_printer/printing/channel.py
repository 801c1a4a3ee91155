"""
Command channel: delivers CommandBuffers to the bound characteristic.

One write per `send`, in caller order, followed by a short pacing sleep so
back-to-back sends do not overrun the small input buffers of BLE printers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from .ble import PrinterLink
from .errors import ConnectionLost, NoCharacteristic, PrinterError, WriteError
from .escpos import CommandBuffer, hexdump

logger = logging.getLogger(__name__)

PACING_DELAY = 0.05
DEGRADED_WRITE_DELAY = 0.05


class CommandChannel:
    def __init__(
        self,
        link: PrinterLink,
        *,
        pacing_delay: float = PACING_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.link = link
        self.pacing_delay = float(pacing_delay)
        self._sleep = sleep

    async def send(self, buffer: CommandBuffer) -> None:
        """
        Write `buffer` once.

        Raises:
            NotConnected when no characteristic is bound (no transport call made).
            ConnectionLost when the link reports itself disconnected.
            WriteError wrapping any transport exception. Not retried.
        """
        transport, characteristic = self.link.require_bound()
        if not transport.is_connected:
            raise ConnectionLost("Device connection lost. Please reconnect.")

        data = bytes(buffer)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("TX %d byte(s): %s", len(data), hexdump(data))
        try:
            if characteristic.is_degraded:
                # Nothing to write to; stand in for transmission time.
                await self._sleep(DEGRADED_WRITE_DELAY)
            elif characteristic.supports_write_without_response:
                await transport.write(characteristic.handle, data, response=False)
            elif characteristic.supports_write_with_response:
                await transport.write(characteristic.handle, data, response=True)
            else:
                raise NoCharacteristic(f"Characteristic {characteristic.uuid} is not writable")
        except PrinterError:
            raise
        except Exception as e:
            logger.error(f"Error sending command to printer: {e}")
            raise WriteError(f"Write failed: {e}", cause=e) from e

        await self._sleep(self.pacing_delay)


__all__ = ["DEGRADED_WRITE_DELAY", "PACING_DELAY", "CommandChannel"]
