"""
Bluetooth LE connection management for receipt printers.

This module owns:
- Device descriptors and the bound-characteristic variants (real vs degraded)
- A thin bleak adapter (BleakTransport / BleakLink) so the rest of the core
  talks to a small GATT surface that tests can fake
- PrinterLink, the connection manager: scan, connect with service discovery
  retries and fallbacks, disconnect, best-effort auto-reconnect

Cheap printer firmware often exposes no queryable service table right after
the link comes up, or none at all. Discovery retries a few times, probes the
well-known printer service and characteristic ids, and finally binds a
degraded handle so printing can still be attempted.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .chooser import DeviceChooser
from .errors import ConnectionLost, LinkError, NotAvailable, NotConnected

logger = logging.getLogger(__name__)

# Services declared up front; the link only exposes what was asked for.
PRINTER_OPTIONAL_SERVICES: Tuple[str, ...] = (
    "000018f0-0000-1000-8000-00805f9b34fb",
    "e7810a71-73ae-499d-8c15-faa9aef0c3f2",
    "49535343-fe7d-4ae5-8fa9-9fafd205e455",
    "0000ff00-0000-1000-8000-00805f9b34fb",
    "6e400001-b5a3-f393-e0a9-e50e24dcca9e",
    "00001800-0000-1000-8000-00805f9b34fb",  # generic access
    "00001801-0000-1000-8000-00805f9b34fb",  # generic attribute
)

# Probed in order when the service table comes back empty.
KNOWN_SERVICE_UUIDS: Tuple[str, ...] = (
    "000018f0-0000-1000-8000-00805f9b34fb",
    "49535343-fe7d-4ae5-8fa9-9fafd205e455",
    "0000ff00-0000-1000-8000-00805f9b34fb",
    "6e400001-b5a3-f393-e0a9-e50e24dcca9e",
)

# Probed in order when no discovered characteristic advertises a write property.
KNOWN_CHARACTERISTIC_UUIDS: Tuple[str, ...] = (
    "0000ff01-0000-1000-8000-00805f9b34fb",
    "49535343-1e4d-4bd9-ba61-23c647249616",
    "6e400002-b5a3-f393-e0a9-e50e24dcca9e",
    "0000ffe1-0000-1000-8000-00805f9b34fb",
)

PROP_WRITE = "write"
PROP_WRITE_WITHOUT_RESPONSE = "write-without-response"

DISCOVERY_ATTEMPTS = 3
DISCOVERY_RETRY_DELAY = 1.0

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class DeviceDescriptor:
    id: str
    name: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "name": self.name}


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class RealCharacteristic:
    uuid: str
    supports_write_with_response: bool
    supports_write_without_response: bool
    handle: Any = field(default=None, compare=False, repr=False)

    is_degraded = False


@dataclass(frozen=True)
class DegradedCharacteristic:
    """
    Synthetic write target bound when no writable characteristic could be
    located. Writes succeed locally and are not guaranteed to reach the printer.
    """

    reason: str = ""
    supports_write_with_response = True
    supports_write_without_response = True

    is_degraded = True


BoundCharacteristic = Union[RealCharacteristic, DegradedCharacteristic]


def _props(characteristic: Any) -> List[str]:
    return [str(p).lower() for p in (getattr(characteristic, "properties", None) or [])]


def _is_writable(characteristic: Any) -> bool:
    props = _props(characteristic)
    return PROP_WRITE in props or PROP_WRITE_WITHOUT_RESPONSE in props


def _bind_real(characteristic: Any) -> RealCharacteristic:
    props = _props(characteristic)
    return RealCharacteristic(
        uuid=str(characteristic.uuid),
        supports_write_with_response=PROP_WRITE in props,
        supports_write_without_response=PROP_WRITE_WITHOUT_RESPONSE in props,
        handle=characteristic,
    )


# ---------------------------------------------------------------------------
# bleak adapter
# ---------------------------------------------------------------------------


class BleakLink:
    """GATT link to one device, backed by a BleakClient."""

    def __init__(
        self,
        device: Any,
        on_disconnect: Callable[[], None],
        services: Optional[Sequence[str]] = PRINTER_OPTIONAL_SERVICES,
    ) -> None:
        from bleak import BleakClient

        self._on_disconnect = on_disconnect
        self._client = BleakClient(
            device,
            disconnected_callback=self._handle_disconnect,
            services=list(services) if services else None,
        )

    def _handle_disconnect(self, _client: Any) -> None:
        self._on_disconnect()

    @property
    def is_connected(self) -> bool:
        return bool(self._client.is_connected)

    async def connect(self) -> None:
        await self._client.connect()

    async def disconnect(self) -> None:
        await self._client.disconnect()

    async def primary_services(self) -> List[Any]:
        """
        Services bleak resolved during `connect()`. Raises BleakError if that
        discovery never completed.

        bleak caches this collection for the life of the connection, so
        repeated calls (the discovery retries, the known-service probe) read
        the same result and cannot find services the first pass missed.
        """
        return list(self._client.services)

    async def primary_service(self, uuid: str) -> Any:
        from bleak.exc import BleakError

        service = self._client.services.get_service(uuid)
        if service is None:
            raise BleakError(f"Service {uuid} not found")
        return service

    async def write(self, handle: Any, data: bytes, response: bool) -> None:
        await self._client.write_gatt_char(handle, data, response=response)


class BleakTransport:
    """
    Device discovery and link factory using bleak.

    Discovered BLEDevice objects are cached by address so that `open` can hand
    bleak the richer object instead of a bare address string.
    """

    def __init__(self, scan_timeout: float = 8.0, known_timeout: float = 4.0) -> None:
        self.scan_timeout = float(scan_timeout)
        self.known_timeout = float(known_timeout)
        self._seen: Dict[str, Any] = {}

    async def is_available(self) -> bool:
        from bleak import BleakScanner
        from bleak.exc import BleakError

        try:
            await BleakScanner.discover(timeout=1.0)
            return True
        except (BleakError, OSError) as e:
            logger.info(f"Bluetooth LE unavailable: {e}")
            return False

    async def discover(self) -> List[DeviceDescriptor]:
        """
        Accept-all scan. Raises NotAvailable when the host has no usable adapter.
        """
        from bleak import BleakScanner
        from bleak.exc import BleakError

        try:
            devices = await BleakScanner.discover(timeout=self.scan_timeout)
        except (BleakError, OSError) as e:
            raise NotAvailable(f"Bluetooth LE scan failed: {e}") from e
        found = []
        for d in devices:
            self._seen[d.address] = d
            found.append(DeviceDescriptor(id=d.address, name=d.name or ""))
        logger.info("BLE scan found %d device(s)", len(found))
        return found

    async def find_known(self, saved: DeviceDescriptor) -> Optional[DeviceDescriptor]:
        """Look a saved device up by id, then by name, without prompting."""
        from bleak import BleakScanner

        device = None
        if saved.id:
            device = await BleakScanner.find_device_by_address(saved.id, timeout=self.known_timeout)
        if device is None and saved.name:
            device = await BleakScanner.find_device_by_name(saved.name, timeout=self.known_timeout)
        if device is None:
            return None
        self._seen[device.address] = device
        return DeviceDescriptor(id=device.address, name=device.name or "")

    def open(self, descriptor: DeviceDescriptor, on_disconnect: Callable[[], None]) -> BleakLink:
        target = self._seen.get(descriptor.id, descriptor.id)
        return BleakLink(target, on_disconnect)


# ---------------------------------------------------------------------------
# Connection manager
# ---------------------------------------------------------------------------


class PrinterLink:
    """
    Connection manager for a single printer.

    Holds the only bound characteristic. The disconnect observer registered
    with each link clears it synchronously on the event loop, so any send that
    starts afterwards sees ConnectionLost.
    """

    def __init__(
        self,
        transport: Any,
        chooser: Optional[DeviceChooser] = None,
        *,
        sleep: Sleep = asyncio.sleep,
        discovery_attempts: int = DISCOVERY_ATTEMPTS,
        discovery_retry_delay: float = DISCOVERY_RETRY_DELAY,
    ) -> None:
        self._transport = transport
        self.chooser = chooser or DeviceChooser()
        self._sleep = sleep
        self._discovery_attempts = max(1, int(discovery_attempts))
        self._discovery_retry_delay = float(discovery_retry_delay)
        self._connect_lock = asyncio.Lock()

        self.state = ConnectionState.DISCONNECTED
        self.device: Optional[DeviceDescriptor] = None
        self.characteristic: Optional[BoundCharacteristic] = None
        self.available: Optional[bool] = None
        self._link: Any = None
        self._lost = False

    # -- queries -------------------------------------------------------------

    async def is_available(self) -> bool:
        self.available = bool(await self._transport.is_available())
        return self.available

    def require_bound(self) -> Tuple[Any, BoundCharacteristic]:
        """
        Return (link, characteristic) for a write.

        Raises:
            ConnectionLost if a disconnect was observed since the last connect.
            NotConnected if nothing was ever bound (or it was explicitly released).
        """
        if self._link is None or self.characteristic is None:
            if self._lost:
                raise ConnectionLost("Printer connection lost. Please reconnect.")
            raise NotConnected("No printer connected")
        return self._link, self.characteristic

    def status(self) -> Dict[str, Any]:
        ch = self.characteristic
        return {
            "state": self.state.value,
            "device": self.device.to_dict() if self.device else None,
            "characteristic": None if ch is None else ("degraded" if ch.is_degraded else ch.uuid),
            "degraded": bool(ch is not None and ch.is_degraded),
            "connection_lost": self._lost,
            "ble_available": self.available,
        }

    # -- operations ----------------------------------------------------------

    async def scan(self) -> List[DeviceDescriptor]:
        """
        Scan, then let the chooser pick. Returns the selected device, or an
        empty list when the prompt was cancelled or timed out.
        """
        try:
            candidates = await self._transport.discover()
        except NotAvailable:
            self.available = False
            raise
        self.available = True
        chosen = await self.chooser.request(candidates)
        return [chosen] if chosen is not None else []

    async def connect(self, descriptor: DeviceDescriptor) -> BoundCharacteristic:
        async with self._connect_lock:
            if self._link is not None:
                await self._release()

            logger.info("Connecting to %s (%s)", descriptor.name or "Unknown", descriptor.id)
            self.state = ConnectionState.CONNECTING
            self.device = descriptor
            self._lost = False
            opened: Dict[str, Any] = {}
            try:
                link = self._transport.open(descriptor, lambda: self._handle_disconnect(opened.get("link")))
                opened["link"] = link
            except Exception as e:
                self._clear()
                raise LinkError(f"Cannot open link to {descriptor.id}: {e}") from e
            self._link = link
            try:
                try:
                    await link.connect()
                except Exception as e:
                    raise LinkError(f"GATT connection to {descriptor.id} failed: {e}") from e
                if not link.is_connected:
                    raise LinkError("Failed to establish GATT connection")

                characteristic = await self._bind_characteristic(link)
                if self._link is not link:
                    raise LinkError("Device disconnected during service discovery")
            except Exception:
                self._clear()
                self._lost = False
                await self._teardown(link)
                raise

            self.characteristic = characteristic
            self.state = ConnectionState.CONNECTED
            logger.info(
                "Connected to %s; characteristic=%s",
                descriptor.name or descriptor.id,
                "degraded" if characteristic.is_degraded else characteristic.uuid,
            )
            return characteristic

    async def disconnect(self) -> None:
        """Request teardown if connected; state is cleared either way."""
        await self._release()
        self._lost = False

    async def auto_reconnect(self, saved: Optional[DeviceDescriptor]) -> bool:
        """
        Silently reconnect to a previously bound printer. Never raises.
        """
        if saved is None or not (saved.id or saved.name):
            return False

        try:
            match = await self._transport.find_known(saved)
            if match is not None:
                await self.connect(match)
                return True
        except Exception as e:
            logger.info(f"Silent reconnect to {saved.id or saved.name} failed: {e}")

        self.chooser.set_preferred(saved.id or None)
        try:
            devices = await self.scan()
            if not devices:
                return False
            await self.connect(devices[0])
            return True
        except Exception as e:
            logger.warning(f"Auto-reconnect failed: {e}")
            return False
        finally:
            self.chooser.set_preferred(None)

    # -- internals -----------------------------------------------------------

    def _handle_disconnect(self, link: Any) -> None:
        # Late callbacks from a link we already released are ignored.
        if link is None or link is not self._link:
            return
        device = self.device
        logger.warning("Printer %s disconnected", (device.name or device.id) if device else "?")
        self._clear()
        self._lost = True

    def _clear(self) -> None:
        self._link = None
        self.characteristic = None
        self.device = None
        self.state = ConnectionState.DISCONNECTED

    async def _release(self) -> None:
        link = self._link
        self._clear()
        if link is not None:
            await self._teardown(link)

    async def _teardown(self, link: Any) -> None:
        try:
            if link.is_connected:
                await link.disconnect()
        except Exception as e:
            logger.debug(f"Link teardown failed (ignored): {e}")

    async def _bind_characteristic(self, link: Any) -> BoundCharacteristic:
        services = await self._discover_services(link)
        if not services:
            services = await self._probe_known_services(link)
        if not services:
            logger.warning("No services accessible; binding degraded characteristic")
            return DegradedCharacteristic(reason="no_services")

        for service in services:
            try:
                characteristics = list(service.characteristics)
            except Exception as e:
                logger.warning(f"Error reading characteristics of {service.uuid}: {e}")
                continue
            logger.debug("Service %s has %d characteristic(s)", service.uuid, len(characteristics))
            for characteristic in characteristics:
                if _is_writable(characteristic):
                    logger.info("Found writable characteristic %s", characteristic.uuid)
                    return _bind_real(characteristic)

        logger.info("Trying common printer characteristic ids")
        for service in services:
            for uuid in KNOWN_CHARACTERISTIC_UUIDS:
                try:
                    characteristic = service.get_characteristic(uuid)
                except Exception:
                    continue
                if characteristic is not None and _is_writable(characteristic):
                    logger.info("Found printer characteristic %s", uuid)
                    return _bind_real(characteristic)

        logger.warning("No writable characteristic found; binding degraded characteristic")
        return DegradedCharacteristic(reason="no_writable_characteristic")

    async def _discover_services(self, link: Any) -> List[Any]:
        for attempt in range(1, self._discovery_attempts + 1):
            try:
                services = list(await link.primary_services())
                if services:
                    logger.info("Found %d service(s) on attempt %d", len(services), attempt)
                    return services
                logger.warning("Service discovery attempt %d returned no services", attempt)
            except Exception as e:
                logger.warning(f"Service discovery attempt {attempt} failed: {e}")
            if attempt < self._discovery_attempts:
                await self._sleep(self._discovery_retry_delay)
        return []

    async def _probe_known_services(self, link: Any) -> List[Any]:
        for uuid in KNOWN_SERVICE_UUIDS:
            try:
                service = await link.primary_service(uuid)
            except Exception:
                continue
            if service is not None:
                logger.info("Found service by id %s", uuid)
                return [service]
        return []


__all__ = [
    "KNOWN_CHARACTERISTIC_UUIDS",
    "KNOWN_SERVICE_UUIDS",
    "PRINTER_OPTIONAL_SERVICES",
    "BleakLink",
    "BleakTransport",
    "BoundCharacteristic",
    "ConnectionState",
    "DegradedCharacteristic",
    "DeviceDescriptor",
    "PrinterLink",
    "RealCharacteristic",
]
