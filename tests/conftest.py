# Ensure the repository root is on sys.path so `ticket_printer` can be imported in tests.

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest


def _ensure_repo_root_on_syspath() -> None:
    # This file lives at: <repo_root>/tests/conftest.py
    here = Path(__file__).resolve()
    repo_str = str(here.parent.parent)
    if repo_str not in sys.path:
        sys.path.insert(0, repo_str)


_ensure_repo_root_on_syspath()

from ticket_printer.printing.ble import DeviceDescriptor, PrinterLink  # noqa: E402
from ticket_printer.printing.channel import CommandChannel  # noqa: E402
from ticket_printer.printing.chooser import DeviceChooser  # noqa: E402

PRINTER = DeviceDescriptor(id="AA:BB:CC:DD:EE:FF", name="MPT-II")


class FakeChar:
    def __init__(self, uuid: str, properties: List[str]):
        self.uuid = uuid
        self.properties = properties


class FakeService:
    def __init__(self, uuid: str, characteristics: Optional[List[FakeChar]] = None, broken: bool = False):
        self.uuid = uuid
        self._chars = characteristics or []
        self._broken = broken
        self.hidden: Dict[str, FakeChar] = {}

    @property
    def characteristics(self) -> List[FakeChar]:
        if self._broken:
            raise RuntimeError("GATT operation failed")
        return list(self._chars)

    def get_characteristic(self, uuid: str) -> Optional[FakeChar]:
        return self.hidden.get(uuid)


class FakeLink:
    """In-memory GATT link; records writes and discovery calls."""

    def __init__(
        self,
        services: Optional[List[FakeService]] = None,
        discovery_failures: int = 0,
        discovery_raises: bool = False,
        connect_error: Optional[Exception] = None,
        stays_disconnected: bool = False,
        known_services: Optional[Dict[str, FakeService]] = None,
        write_error: Optional[Exception] = None,
    ):
        self.services = services or []
        self.discovery_failures = discovery_failures
        self.discovery_raises = discovery_raises
        self.connect_error = connect_error
        self.stays_disconnected = stays_disconnected
        self.known_services = known_services or {}
        self.write_error = write_error
        self.connected = False
        self.discovery_calls = 0
        self.probed: List[str] = []
        self.writes: List[tuple] = []
        self.disconnect_calls = 0
        self.on_disconnect = None

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        if self.connect_error:
            raise self.connect_error
        self.connected = not self.stays_disconnected

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    async def primary_services(self) -> List[FakeService]:
        self.discovery_calls += 1
        if self.discovery_raises:
            raise RuntimeError("Service Discovery has not been performed yet")
        if self.discovery_calls <= self.discovery_failures:
            return []
        return list(self.services)

    async def primary_service(self, uuid: str) -> FakeService:
        self.probed.append(uuid)
        if uuid in self.known_services:
            return self.known_services[uuid]
        raise RuntimeError(f"Service {uuid} not found")

    async def write(self, handle: Any, data: bytes, response: bool) -> None:
        if self.write_error:
            raise self.write_error
        self.writes.append((handle.uuid, bytes(data), response))

    def drop(self) -> None:
        """Simulate the printer going away."""
        self.connected = False
        if self.on_disconnect:
            self.on_disconnect()


class FakeTransport:
    def __init__(self, link: Optional[FakeLink] = None, candidates=None, known=None, available: bool = True):
        self.link = link or FakeLink()
        self.candidates = list(candidates or [PRINTER])
        self.known = known
        self.available = available
        self.opened: List[DeviceDescriptor] = []
        self.find_calls: List[DeviceDescriptor] = []

    async def is_available(self) -> bool:
        return self.available

    async def discover(self) -> List[DeviceDescriptor]:
        return list(self.candidates)

    async def find_known(self, saved: DeviceDescriptor) -> Optional[DeviceDescriptor]:
        self.find_calls.append(saved)
        return self.known

    def open(self, descriptor: DeviceDescriptor, on_disconnect) -> FakeLink:
        self.opened.append(descriptor)
        self.link.on_disconnect = on_disconnect
        return self.link


class RecordingSleep:
    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)


def writable_service(uuid: str = "000018f0-0000-1000-8000-00805f9b34fb") -> FakeService:
    return FakeService(
        uuid,
        [
            FakeChar("00002af0-0000-1000-8000-00805f9b34fb", ["notify"]),
            FakeChar("00002af1-0000-1000-8000-00805f9b34fb", ["write", "write-without-response"]),
        ],
    )


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_link() -> FakeLink:
    return FakeLink(services=[writable_service()])


@pytest.fixture
def transport(fake_link) -> FakeTransport:
    return FakeTransport(fake_link)


@pytest.fixture
def printer_link(transport, sleeper) -> PrinterLink:
    return PrinterLink(transport, DeviceChooser(timeout=1.0), sleep=sleeper)


@pytest.fixture
def channel(printer_link, sleeper) -> CommandChannel:
    return CommandChannel(printer_link, sleep=sleeper)
