from __future__ import annotations

import logging

import pytest

from broadcast_serial_bridge.commands import SONY_REPLY_WINDOW
from broadcast_serial_bridge.config import ChannelConfig, parse_config
from broadcast_serial_bridge.errors import InvalidParameter
from broadcast_serial_bridge.interpreter import DeviceStatus, Reply, ReplyKind, TransportMode
from broadcast_serial_bridge.scanner import Diagnosis
from broadcast_serial_bridge.service import BridgeService

from fakes import FakeClock, FakePortFactory, FakeSerial

CART_PORT = "/dev/ttyRP1"
VTR_PORT = "/dev/ttyRP0"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def _service(clock: FakeClock, ports) -> tuple:
    factory = FakePortFactory(ports)
    service = BridgeService(port_factory=factory, clock=clock, sleep=lambda s: None)
    return service, factory


def test_move_to_slot_acknowledged(clock) -> None:
    cart = FakeSerial(clock, [(0.05, b"\x04")])
    service, _ = _service(clock, {CART_PORT: cart})
    service.register_channel("cart-1", ChannelConfig(port=CART_PORT, protocol="flexicart", cart_address=1))

    result = service.submit_request("cart-1", "move_to_slot", {"slot": 7})

    assert result.success
    assert result.error is None
    assert result.value == Reply(kind=ReplyKind.ACK, raw_hex="04")
    assert result.accepted
    assert cart.written == [bytes([0x02, 0x06, 0x01, 0x01, 0x00, 0x10, 0x07, 0x80, 0x61])]
    assert result.duration == pytest.approx(0.05)


def test_nak_is_delivered_not_failed(clock) -> None:
    cart = FakeSerial(clock, [(0.05, b"\x05")])
    service, _ = _service(clock, {CART_PORT: cart})
    service.register_channel("cart-1", ChannelConfig(port=CART_PORT))
    result = service.submit_request("cart-1", "eject")
    assert result.success
    assert result.value.kind is ReplyKind.NAK
    assert not result.accepted


def test_unregistered_channel(clock) -> None:
    service, _ = _service(clock, {})
    result = service.submit_request("cart-9", "stop")
    assert not result.success
    assert result.error_code == "NotRegistered"
    assert result.error.channel == "cart-9"


def test_invalid_parameter_before_io(clock) -> None:
    cart = FakeSerial(clock, [(0.05, b"\x04")])
    service, factory = _service(clock, {CART_PORT: cart})
    service.register_channel("cart-1", ChannelConfig(port=CART_PORT, slots=100))
    result = service.submit_request("cart-1", "move_to_slot", {"slot": 101})
    assert not result.success
    assert result.error_code == "InvalidParameter"
    assert factory.opened == []
    assert cart.written == []


def test_response_timeout_result(clock) -> None:
    service, _ = _service(clock, {CART_PORT: FakeSerial(clock)})
    service.register_channel("cart-1", ChannelConfig(port=CART_PORT, response_timeout=1.5))
    result = service.submit_request("cart-1", "stop")
    assert not result.success
    assert result.error_code == "ResponseTimeout"
    assert result.duration == pytest.approx(1.5)


def test_port_unavailable_result(clock) -> None:
    service, _ = _service(clock, {})
    service.register_channel("cart-1", ChannelConfig(port=CART_PORT))
    result = service.submit_request("cart-1", "status")
    assert result.error_code == "PortUnavailable"
    assert result.error.reason == "missing"


def test_inventory_updates_bins(clock) -> None:
    cart = FakeSerial(clock, [(0.05, bytes([0x02, 5, 3, 0x00, 0x03]))])
    service, _ = _service(clock, {CART_PORT: cart})
    service.register_channel("cart-1", ChannelConfig(port=CART_PORT, slots=5))
    bins = service.bins("cart-1")
    bins.set_cassette(2, None)
    result = service.submit_request("cart-1", "sense_inventory")
    assert result.success
    assert result.value.occupied == (1, 2, 3)
    assert bins.occupied_slots() == [1, 2, 3]
    assert bins.empty_slots() == [4, 5]
    assert service.bins("cart-1") is bins


def test_bins_only_for_flexicart(clock) -> None:
    service, _ = _service(clock, {})
    service.register_channel("vtr-1", ChannelConfig(port=VTR_PORT, protocol="sony9pin"))
    with pytest.raises(InvalidParameter):
        service.bins("vtr-1")


def test_query_status_merges_timecode(clock) -> None:
    vtr = FakeSerial(clock, scripts=[
        [(0.05, bytes.fromhex("d7bd0100"))],
        [(0.1, bytes.fromhex("0420c4"))],
    ])
    service, _ = _service(clock, {VTR_PORT: vtr})
    service.register_channel("vtr-1", ChannelConfig(port=VTR_PORT, protocol="sony9pin"))
    result = service.query_status("vtr-1")
    assert result.success
    assert isinstance(result.value, DeviceStatus)
    assert result.value.mode is TransportMode.PLAY
    assert result.value.tape_present is True
    assert result.value.timecode == "01:02:03:04"
    assert vtr.written == [bytes.fromhex("612041"), bytes.fromhex("782058")]


def test_vtr_status_returns_after_reply_window(clock, caplog) -> None:
    vtr = FakeSerial(clock, [(0.05, bytes.fromhex("f77e0100"))])
    service, _ = _service(clock, {VTR_PORT: vtr})
    service.register_channel("vtr-1", ChannelConfig(port=VTR_PORT, protocol="sony9pin"))
    with caplog.at_level(logging.DEBUG, logger="broadcast_serial_bridge"):
        result = service.submit_request("vtr-1", "status")
    assert result.success
    assert result.value.mode is TransportMode.STOP
    assert result.value.errors == ()
    assert result.duration == pytest.approx(SONY_REPLY_WINDOW)
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


def test_query_status_without_timecode(clock) -> None:
    vtr = FakeSerial(clock, scripts=[[(0.05, bytes.fromhex("f77e0000"))], []])
    service, _ = _service(clock, {VTR_PORT: vtr})
    service.register_channel("vtr-1", ChannelConfig(port=VTR_PORT, protocol="sony9pin"))
    result = service.query_status("vtr-1")
    assert result.success
    assert result.value.mode is TransportMode.STOP
    assert result.value.timecode == "TC:NO_RESPONSE"


def test_reregister_replaces_and_closes_previous(clock) -> None:
    first = FakeSerial(clock, [(0.05, b"\x04")])
    second = FakeSerial(clock, [(0.05, b"\x04")])
    service, _ = _service(clock, {CART_PORT: first, "/dev/ttyRP2": second})
    service.register_channel("cart-1", ChannelConfig(port=CART_PORT))
    service.submit_request("cart-1", "stop")
    service.register_channel("cart-1", ChannelConfig(port="/dev/ttyRP2"))
    assert first.closed
    service.submit_request("cart-1", "stop")
    assert len(second.written) == 1


def test_scan_registered_channels(clock) -> None:
    cart = FakeSerial(clock, [(0.05, bytes([0x02, 0x00, 0x00, 0x03]))])
    service, _ = _service(clock, {CART_PORT: cart})
    service.register_channel("cart-1", ChannelConfig(port=CART_PORT))
    service.register_channel("cart-2", ChannelConfig(port="/dev/ttyRP7"))
    report = service.scan_channels()
    assert [r.channel_id for r in report.results] == ["cart-1", "cart-2"]
    assert report.results[0].diagnosis is Diagnosis.RESPONDING
    assert report.results[1].diagnosis is Diagnosis.MISSING
    assert report.inventory["cart-1"].status_text == "IDLE"


def test_from_config_and_close(clock) -> None:
    cfg = parse_config({"channels": {"cart-1": {"port": CART_PORT}, "vtr-1": {"port": VTR_PORT, "protocol": "sony9pin"}}})
    cart = FakeSerial(clock, [(0.05, b"\x04")])
    with BridgeService.from_config(cfg, port_factory=FakePortFactory({CART_PORT: cart}), clock=clock) as service:
        assert service.registry.ids() == ["cart-1", "vtr-1"]
        assert service.submit_request("cart-1", "stop").accepted
        service.unregister_channel("vtr-1")
        assert service.registry.ids() == ["cart-1"]
    assert cart.closed
