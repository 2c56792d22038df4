from __future__ import annotations

import pytest

from broadcast_serial_bridge.comm import Channel
from broadcast_serial_bridge.config import ChannelConfig
from broadcast_serial_bridge.errors import NotRegistered
from broadcast_serial_bridge.registry import DeviceRegistry

from fakes import FakeClock, FakePortFactory, FakeSerial


def _channel(name: str, port: str = "/dev/ttyRP0") -> Channel:
    return Channel(name, ChannelConfig(port=port))


def test_last_registration_wins() -> None:
    registry = DeviceRegistry()
    a, b = _channel("a"), _channel("b")
    assert registry.register("cart-1", a) is None
    assert registry.register("cart-1", b) is a
    assert registry.lookup("cart-1") is b
    assert registry.ids() == ["cart-1"]


def test_replaced_channel_is_not_closed() -> None:
    clock = FakeClock()
    port = FakeSerial(clock)
    factory = FakePortFactory({"/dev/ttyRP0": port})
    old = Channel("cart-1", ChannelConfig(port="/dev/ttyRP0"), port_factory=factory, clock=clock)
    old.open()
    registry = DeviceRegistry()
    registry.register("cart-1", old)
    registry.register("cart-1", _channel("cart-1", "/dev/ttyRP2"))
    assert old.is_open
    assert not port.closed


def test_lookup_unregistered() -> None:
    registry = DeviceRegistry()
    with pytest.raises(NotRegistered) as info:
        registry.lookup("vtr-3")
    assert info.value.channel == "vtr-3"
    assert info.value.code == "NotRegistered"


def test_unregister_closes_channel() -> None:
    clock = FakeClock()
    port = FakeSerial(clock)
    channel = Channel("vtr-1", ChannelConfig(port="/dev/ttyRP0", protocol="sony9pin"),
                      port_factory=FakePortFactory({"/dev/ttyRP0": port}), clock=clock)
    channel.open()
    registry = DeviceRegistry()
    registry.register("vtr-1", channel)
    registry.unregister("vtr-1")
    assert port.closed
    assert "vtr-1" not in registry
    with pytest.raises(NotRegistered):
        registry.unregister("vtr-1")


def test_close_closes_everything() -> None:
    clock = FakeClock()
    ports = {f"/dev/ttyRP{i}": FakeSerial(clock) for i in range(3)}
    factory = FakePortFactory(ports)
    registry = DeviceRegistry()
    for i, path in enumerate(ports):
        channel = Channel(f"ch-{i}", ChannelConfig(port=path), port_factory=factory, clock=clock)
        channel.open()
        registry.register(f"ch-{i}", channel)
    registry.close()
    assert len(registry) == 0
    assert all(p.closed for p in ports.values())
