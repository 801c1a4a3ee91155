import asyncio

import pytest

from conftest import PRINTER, FakeChar, FakeLink, FakeService, FakeTransport, writable_service
from ticket_printer.printing.ble import (
    KNOWN_CHARACTERISTIC_UUIDS,
    KNOWN_SERVICE_UUIDS,
    ConnectionState,
    DegradedCharacteristic,
    DeviceDescriptor,
    PrinterLink,
    RealCharacteristic,
)
from ticket_printer.printing.chooser import DeviceChooser
from ticket_printer.printing.errors import LinkError, NotAvailable


def _manager(link, sleeper, **kw):
    transport = FakeTransport(link, **kw)
    return PrinterLink(transport, DeviceChooser(timeout=1.0), sleep=sleeper), transport


@pytest.mark.asyncio
async def test_connect_binds_first_writable_characteristic(printer_link, fake_link):
    ch = await printer_link.connect(PRINTER)
    assert isinstance(ch, RealCharacteristic)
    assert ch.uuid == "00002af1-0000-1000-8000-00805f9b34fb"
    assert ch.supports_write_with_response and ch.supports_write_without_response
    assert not ch.is_degraded
    assert printer_link.state is ConnectionState.CONNECTED
    assert printer_link.device == PRINTER


@pytest.mark.asyncio
async def test_connect_follows_service_discovery_order(sleeper):
    first = FakeService("0000ff00-0000-1000-8000-00805f9b34fb", [FakeChar("0000ff02-0000-1000-8000-00805f9b34fb", ["write"])])
    second = writable_service()
    mgr, _ = _manager(FakeLink(services=[first, second]), sleeper)
    ch = await mgr.connect(PRINTER)
    assert ch.uuid == "0000ff02-0000-1000-8000-00805f9b34fb"
    assert ch.supports_write_with_response and not ch.supports_write_without_response


@pytest.mark.asyncio
async def test_unreachable_device_raises_link_error(sleeper):
    mgr, _ = _manager(FakeLink(connect_error=OSError("timeout")), sleeper)
    with pytest.raises(LinkError):
        await mgr.connect(PRINTER)
    assert mgr.state is ConnectionState.DISCONNECTED
    assert mgr.characteristic is None


@pytest.mark.asyncio
async def test_link_not_reporting_connected_raises_link_error(sleeper):
    mgr, _ = _manager(FakeLink(stays_disconnected=True), sleeper)
    with pytest.raises(LinkError):
        await mgr.connect(PRINTER)
    assert mgr.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_discovery_retries_three_times_then_falls_back(sleeper):
    link = FakeLink(discovery_raises=True)
    mgr, _ = _manager(link, sleeper)
    ch = await mgr.connect(PRINTER)
    assert link.discovery_calls == 3
    assert sleeper.calls == [1.0, 1.0]
    assert link.probed == list(KNOWN_SERVICE_UUIDS)
    assert isinstance(ch, DegradedCharacteristic)
    assert ch.is_degraded
    assert ch.supports_write_with_response and ch.supports_write_without_response
    assert mgr.state is ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_discovery_recovers_after_empty_attempt(sleeper):
    link = FakeLink(services=[writable_service()], discovery_failures=1)
    mgr, _ = _manager(link, sleeper)
    ch = await mgr.connect(PRINTER)
    assert link.discovery_calls == 2
    assert sleeper.calls == [1.0]
    assert not ch.is_degraded


@pytest.mark.asyncio
async def test_known_service_probe_stops_at_first_hit(sleeper):
    svc = writable_service("49535343-fe7d-4ae5-8fa9-9fafd205e455")
    link = FakeLink(discovery_raises=True, known_services={svc.uuid: svc, "0000ff00-0000-1000-8000-00805f9b34fb": writable_service()})
    mgr, _ = _manager(link, sleeper)
    ch = await mgr.connect(PRINTER)
    assert link.probed == list(KNOWN_SERVICE_UUIDS[:2])
    assert isinstance(ch, RealCharacteristic)


@pytest.mark.asyncio
async def test_known_characteristic_probe_when_nothing_advertises_write(sleeper):
    svc = FakeService("0000ff00-0000-1000-8000-00805f9b34fb", [FakeChar("0000ff03-0000-1000-8000-00805f9b34fb", ["read"])])
    svc.hidden[KNOWN_CHARACTERISTIC_UUIDS[0]] = FakeChar(KNOWN_CHARACTERISTIC_UUIDS[0], ["write-without-response"])
    mgr, _ = _manager(FakeLink(services=[svc]), sleeper)
    ch = await mgr.connect(PRINTER)
    assert ch.uuid == KNOWN_CHARACTERISTIC_UUIDS[0]
    assert ch.supports_write_without_response and not ch.supports_write_with_response


@pytest.mark.asyncio
async def test_no_writable_characteristic_binds_degraded_handle(sleeper):
    broken = FakeService("e7810a71-73ae-499d-8c15-faa9aef0c3f2", broken=True)
    read_only = FakeService("0000ff00-0000-1000-8000-00805f9b34fb", [FakeChar("0000ff03-0000-1000-8000-00805f9b34fb", ["read", "notify"])])
    mgr, _ = _manager(FakeLink(services=[broken, read_only]), sleeper)
    ch = await mgr.connect(PRINTER)
    assert isinstance(ch, DegradedCharacteristic)
    assert ch.reason == "no_writable_characteristic"
    assert mgr.state is ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_disconnect_event_clears_state(printer_link, fake_link):
    await printer_link.connect(PRINTER)
    fake_link.drop()
    assert printer_link.state is ConnectionState.DISCONNECTED
    assert printer_link.characteristic is None
    assert printer_link.status()["connection_lost"] is True


@pytest.mark.asyncio
async def test_disconnect_clears_state_even_if_teardown_fails(printer_link, fake_link):
    await printer_link.connect(PRINTER)

    async def _boom():
        raise RuntimeError("adapter busy")

    fake_link.disconnect = _boom
    await printer_link.disconnect()
    assert printer_link.state is ConnectionState.DISCONNECTED
    assert printer_link.characteristic is None
    assert printer_link.device is None


@pytest.mark.asyncio
async def test_second_connect_replaces_first(printer_link, fake_link):
    await printer_link.connect(PRINTER)
    other = DeviceDescriptor(id="11:22:33:44:55:66", name="Other")
    await printer_link.connect(other)
    assert fake_link.disconnect_calls == 1
    assert printer_link.device == other


class _SlowLink(FakeLink):
    """Yields to the loop while connecting and tracks overlapping attempts."""

    def __init__(self, **kw):
        super().__init__(**kw)
        self.active = 0
        self.max_active = 0
        self.connect_calls = 0

    async def connect(self) -> None:
        self.connect_calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0.01)
            await super().connect()
        finally:
            self.active -= 1


@pytest.mark.asyncio
async def test_concurrent_connects_run_one_at_a_time(sleeper):
    link = _SlowLink(services=[writable_service()])
    mgr, transport = _manager(link, sleeper)
    other = DeviceDescriptor(id="11:22:33:44:55:66", name="Other")
    first, second = await asyncio.gather(mgr.connect(PRINTER), mgr.connect(other))
    assert link.connect_calls == 2
    assert link.max_active == 1
    assert transport.opened == [PRINTER, other]
    assert not first.is_degraded and not second.is_degraded
    assert mgr.device == other
    assert mgr.state is ConnectionState.CONNECTED


class _DropsDuringDiscovery(FakeLink):
    async def primary_services(self):
        services = await super().primary_services()
        self.drop()
        return services


@pytest.mark.asyncio
async def test_disconnect_during_discovery_raises_link_error(sleeper):
    link = _DropsDuringDiscovery(services=[writable_service()])
    mgr, _ = _manager(link, sleeper)
    with pytest.raises(LinkError):
        await mgr.connect(PRINTER)
    assert mgr.state is ConnectionState.DISCONNECTED
    assert mgr.characteristic is None
    assert mgr.device is None
    assert mgr.status()["connection_lost"] is False


@pytest.mark.asyncio
async def test_scan_returns_chosen_device(printer_link):
    task = asyncio.create_task(printer_link.scan())
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert printer_link.chooser.pending()["candidates"] == [PRINTER.to_dict()]
    assert printer_link.chooser.select(PRINTER.id)
    assert await task == [PRINTER]


@pytest.mark.asyncio
async def test_scan_not_available(fake_link, sleeper):
    class _NoAdapter(FakeTransport):
        async def discover(self):
            raise NotAvailable("No Bluetooth adapters found.")

    mgr = PrinterLink(_NoAdapter(fake_link), sleep=sleeper)
    with pytest.raises(NotAvailable):
        await mgr.scan()
    assert mgr.status()["ble_available"] is False


@pytest.mark.asyncio
async def test_auto_reconnect_uses_known_device_without_prompt(sleeper):
    link = FakeLink(services=[writable_service()])
    mgr, transport = _manager(link, sleeper, known=PRINTER)
    assert await mgr.auto_reconnect(PRINTER) is True
    assert transport.find_calls == [PRINTER]
    assert mgr.chooser.preferred_id is None
    assert mgr.state is ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_auto_reconnect_falls_back_to_hinted_prompt(sleeper):
    link = FakeLink(services=[writable_service()])
    mgr, transport = _manager(link, sleeper, known=None)
    seen_hint = []
    original_request = mgr.chooser.request

    async def _request(candidates):
        seen_hint.append(mgr.chooser.preferred_id)
        return await original_request(candidates)

    mgr.chooser.request = _request
    assert await mgr.auto_reconnect(PRINTER) is True
    assert seen_hint == [PRINTER.id]
    assert mgr.chooser.preferred_id is None
    assert transport.opened == [PRINTER]


@pytest.mark.asyncio
async def test_auto_reconnect_returns_false_instead_of_raising(sleeper):
    link = FakeLink(connect_error=OSError("gone"))
    mgr, _ = _manager(link, sleeper, known=PRINTER)
    assert await mgr.auto_reconnect(PRINTER) is False
    assert mgr.chooser.preferred_id is None
    assert mgr.state is ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_auto_reconnect_without_saved_device(printer_link):
    assert await printer_link.auto_reconnect(None) is False
    assert await printer_link.auto_reconnect(DeviceDescriptor(id="")) is False
