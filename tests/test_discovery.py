from __future__ import annotations

from types import SimpleNamespace

from broadcast_serial_bridge import discovery


def _fake_ports(monkeypatch, system, devices):
    monkeypatch.setattr(discovery.platform, "system", lambda: system)
    monkeypatch.setattr(discovery.list_ports, "comports", lambda: [SimpleNamespace(device=d) for d in devices])


def test_linux_candidates(monkeypatch) -> None:
    _fake_ports(monkeypatch, "Linux", ["/dev/ttyS0", "/dev/ttyUSB0", "/dev/ttyRP3", "/dev/ttyAMA0"])
    ports = discovery.candidate_ports()
    assert ports[:3] == ["/dev/ttyRP3", "/dev/ttyUSB0", "/dev/ttyS0"]
    assert "/dev/ttyAMA0" in ports
    assert ports.count("/dev/ttyRP3") == 1
    assert ports[-1] == "/dev/ttyRP15"
    assert len(ports) == 4 + 15


def test_windows_candidates(monkeypatch) -> None:
    _fake_ports(monkeypatch, "Windows", ["COM10", "COM3"])
    assert discovery.candidate_ports() == ["COM3", "COM10"]


def test_multiport_can_be_skipped(monkeypatch) -> None:
    _fake_ports(monkeypatch, "Linux", [])
    assert discovery.candidate_ports(include_multiport=False) == []
    assert discovery.candidate_ports() == discovery.MULTIPORT_PORTS
