"""
Device chooser bridge.

The connection manager asks the chooser to pick one device out of a list of
scan candidates; a person answers through the web UI (`select` / `cancel`).
Each request is an explicit object with its own future and deadline timer:

- a new request resolves any still-pending one with an empty selection
- the deadline timer (30 s by default) resolves it empty as well
- a "preferred id" hint, set before an auto-reconnect, resolves the request
  as soon as that id shows up among the candidates

All methods must be called from the event loop thread that issued the request;
the worker marshals calls from Flask threads onto that loop.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import TYPE_CHECKING, Dict, Iterable, Optional

if TYPE_CHECKING:
    from .ble import DeviceDescriptor

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

_request_ids = itertools.count(1)


class ChooserRequest:
    """One open selection prompt; doubles as its own cancellation token."""

    def __init__(self, candidates: Iterable["DeviceDescriptor"], timeout: float) -> None:
        loop = asyncio.get_running_loop()
        self.id = next(_request_ids)
        self.candidates: Dict[str, "DeviceDescriptor"] = {d.id: d for d in candidates}
        self.future: asyncio.Future = loop.create_future()
        self.deadline = loop.time() + timeout
        self._timer = loop.call_later(timeout, self._expire)

    @property
    def done(self) -> bool:
        return self.future.done()

    def resolve(self, descriptor: Optional["DeviceDescriptor"]) -> bool:
        if self.future.done():
            return False
        self._timer.cancel()
        self.future.set_result(descriptor)
        return True

    def _expire(self) -> None:
        if self.resolve(None):
            logger.info("Device chooser request %d timed out", self.id)


class DeviceChooser:
    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.timeout = float(timeout)
        self._current: Optional[ChooserRequest] = None
        self._preferred_id: Optional[str] = None

    def set_preferred(self, device_id: Optional[str]) -> None:
        self._preferred_id = device_id or None
        logger.debug("Chooser preferred device id: %s", self._preferred_id)

    @property
    def preferred_id(self) -> Optional[str]:
        return self._preferred_id

    async def request(self, candidates: Iterable["DeviceDescriptor"]) -> Optional["DeviceDescriptor"]:
        """
        Open a selection prompt over `candidates` and wait for an answer.
        Returns the chosen descriptor, or None on cancel/timeout/supersede.
        """
        if self._current is not None and self._current.resolve(None):
            logger.info("Device chooser request %d superseded", self._current.id)

        req = ChooserRequest(candidates, self.timeout)
        self._current = req
        logger.info("Device chooser request %d opened with %d candidate(s)", req.id, len(req.candidates))
        self._try_preferred(req)
        try:
            return await req.future
        finally:
            req.resolve(None)
            if self._current is req:
                self._current = None

    def offer(self, descriptor: "DeviceDescriptor") -> bool:
        """Add or refresh a candidate on the open request."""
        req = self._current
        if req is None or req.done:
            return False
        req.candidates[descriptor.id] = descriptor
        self._try_preferred(req)
        return True

    def select(self, device_id: str) -> bool:
        req = self._current
        if req is None or req.done:
            return False
        descriptor = req.candidates.get(device_id)
        if descriptor is None:
            logger.warning("Chooser selection %r is not a candidate of request %d", device_id, req.id)
            return False
        logger.info("Device chooser request %d resolved: %s", req.id, device_id)
        return req.resolve(descriptor)

    def cancel(self) -> bool:
        req = self._current
        if req is None:
            return False
        logger.info("Device chooser request %d cancelled", req.id)
        return req.resolve(None)

    def pending(self) -> Optional[dict]:
        req = self._current
        if req is None or req.done:
            return None
        remaining = max(0.0, req.deadline - asyncio.get_running_loop().time())
        return {
            "request_id": req.id,
            "expires_in": round(remaining, 1),
            "candidates": [d.to_dict() for d in req.candidates.values()],
        }

    def _try_preferred(self, req: ChooserRequest) -> None:
        pid = self._preferred_id
        if pid and pid in req.candidates:
            logger.info("Chooser auto-selecting preferred device %s", pid)
            req.resolve(req.candidates[pid])


__all__ = ["DEFAULT_TIMEOUT_SECONDS", "ChooserRequest", "DeviceChooser"]
