"""Broadcast Serial Bridge package.

Control of Sony 9-pin VTRs and FlexiCart cartridge robots over
serial links using pyserial.
"""

__all__ = [
    "BridgeService",
    "RequestResult",
    "Channel",
    "ChannelConfig",
    "DeviceRegistry",
    "ScanOrchestrator",
    "CancelToken",
    "TimeoutPolicy",
    "Protocol",
    "encode_request",
    "interpret",
    "load_config",
    "candidate_ports",
]

from .collector import CancelToken, TimeoutPolicy
from .commands import Protocol, encode_request
from .comm import Channel
from .config import ChannelConfig, load_config
from .discovery import candidate_ports
from .interpreter import interpret
from .registry import DeviceRegistry
from .scanner import ScanOrchestrator
from .service import BridgeService, RequestResult

__version__ = "0.1.0"
