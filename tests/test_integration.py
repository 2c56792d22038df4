from __future__ import annotations

import os

import pytest

from broadcast_serial_bridge.config import ChannelConfig
from broadcast_serial_bridge.interpreter import CartStatus, DeviceStatus
from broadcast_serial_bridge.service import BridgeService


@pytest.fixture(scope="module")
def hardware():
    """Real device given by BRIDGE_TEST_PORT and BRIDGE_TEST_PROTOCOL."""
    port = os.environ.get("BRIDGE_TEST_PORT")
    if not port:
        pytest.skip("BRIDGE_TEST_PORT not set, no hardware attached")
    protocol = os.environ.get("BRIDGE_TEST_PROTOCOL", "flexicart")
    service = BridgeService()
    service.register_channel("hw", ChannelConfig(port=port, protocol=protocol))
    yield service
    service.close()


def test_status_roundtrip(hardware) -> None:
    result = hardware.submit_request("hw", "status")
    assert result.success, result.error
    assert isinstance(result.value, (CartStatus, DeviceStatus))
    assert result.raw


def test_scan_finds_device(hardware) -> None:
    report = hardware.scan_channels()
    assert report.responding == ["hw"]
