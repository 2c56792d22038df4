"""
Candidate serial ports for scanning.
"""

from __future__ import annotations

import platform
from typing import List

from serial.tools import list_ports  # type: ignore

# RS-422 multiport card nodes used for VTR and cart links
MULTIPORT_PORTS: List[str] = [f"/dev/ttyRP{i}" for i in range(16)]


def get_available_ports() -> List[str]:
    """Get list of serial ports reported by the operating system."""
    return sorted(p.device for p in list_ports.comports())


def get_likely_ports() -> List[str]:
    """Get likely serial ports based on platform and common patterns."""
    system = platform.system().lower()
    all_ports = get_available_ports()

    if system == "linux":
        patterns = ["/dev/ttyRP", "/dev/ttyUSB", "/dev/ttyACM", "/dev/ttyS"]
        likely = [p for p in all_ports if any(pattern in p for pattern in patterns)]
        # multiport and USB adapters before on-board UARTs
        likely.sort(key=lambda x: (0 if "RP" in x or "USB" in x or "ACM" in x else 1, x))

    elif system == "darwin":
        patterns = ["/dev/cu.usbserial", "/dev/cu.usbmodem", "/dev/cu.SLAB_USBtoUART", "/dev/cu.wchusbserial"]
        likely = [p for p in all_ports if any(pattern in p for pattern in patterns)]
        likely.sort(key=lambda x: (0 if "usbserial" in x or "usbmodem" in x else 1, x))

    elif system == "windows":
        likely = [p for p in all_ports if p.startswith("COM")]
        likely.sort(key=lambda x: int(x[3:]) if x[3:].isdigit() else 999)

    else:
        likely = all_ports

    return likely


def candidate_ports(include_multiport: bool = True) -> List[str]:
    """
    Ports to scan when none are given: likely ports first, then the
    remaining ports, then the multiport range on Linux.
    Args:
        include_multiport (bool): Append /dev/ttyRP0..15 even when not enumerated
    Returns:
        List[str]: Port paths without duplicates
    """
    likely = get_likely_ports()
    ordered = likely + [p for p in get_available_ports() if p not in likely]
    if include_multiport and platform.system().lower() == "linux":
        ordered += [p for p in MULTIPORT_PORTS if p not in ordered]
    return ordered
