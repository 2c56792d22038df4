from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from .collector import CancelToken
from .commands import Protocol, encode_request
from .comm import Channel
from .config import DEFAULT_SCAN_TIMEOUT, DEFAULT_SETTLE_DELAY, BridgeConfig, ChannelConfig
from .errors import BridgeError, InvalidParameter
from .framing import hex_dump
from .interpreter import BinUpdate, DeviceStatus, Reply, ReplyKind, TimecodeReading, interpret
from .inventory import BinOccupancy
from .registry import DeviceRegistry
from .scanner import InventoryReport, ScanOrchestrator

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestResult:
    """
    Outcome of one request.
    A reply that arrived, even a partial one or a NAK, is a success at this
    level; inspect value for the device's verdict.
    """
    channel_id: str
    command: str
    success: bool
    value: Any = None
    raw: bytes = b""
    error: Optional[BridgeError] = None
    duration: float = 0.0

    @property
    def raw_hex(self) -> str:
        return hex_dump(self.raw)

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error is not None else None

    @property
    def accepted(self) -> bool:
        return isinstance(self.value, Reply) and self.value.kind is ReplyKind.ACK


class BridgeService:
    """
    Entry point tying registry, codec, collector, interpreter and scanner together.
    Failures are returned in RequestResult instead of raised.
    Args:
        registry (DeviceRegistry, optional): Registry to use; a new one by default
        port_factory (Callable, optional): Port factory handed to every channel
        scan_timeout (float): Response timeout of scan probes
        settle_delay (float): Pause between scan probes
        scan_protocol (Protocol): Protocol assumed for unregistered scan candidates
        clock (Callable): Monotonic clock
    """

    def __init__(self, registry: Optional[DeviceRegistry] = None, *,
                 port_factory: Optional[Callable[..., Any]] = None,
                 scan_timeout: float = DEFAULT_SCAN_TIMEOUT,
                 settle_delay: float = DEFAULT_SETTLE_DELAY,
                 scan_protocol: Protocol = Protocol.SONY9PIN,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.registry = registry if registry is not None else DeviceRegistry()
        self._port_factory = port_factory
        self._clock = clock
        self._bins: Dict[str, BinOccupancy] = {}
        self._bins_lock = threading.Lock()
        self.scanner = ScanOrchestrator(self.registry, scan_timeout=scan_timeout, settle_delay=settle_delay,
                                        protocol=scan_protocol, port_factory=port_factory, sleep=sleep, clock=clock)

    @classmethod
    def from_config(cls, config: BridgeConfig, **kwargs: Any) -> "BridgeService":
        kwargs.setdefault("scan_timeout", config.scan_timeout)
        kwargs.setdefault("settle_delay", config.settle_delay)
        service = cls(**kwargs)
        for channel_id, channel_config in config.channels.items():
            service.register_channel(channel_id, channel_config)
        return service

    def __enter__(self) -> "BridgeService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self.registry.close()

    def register_channel(self, channel_id: str, config: ChannelConfig) -> Channel:
        """
        Create a channel for config and register it under channel_id.
        A channel previously created by this service under the same id is closed.
        """
        channel = Channel(channel_id, config, port_factory=self._port_factory, clock=self._clock)
        previous = self.registry.register(channel_id, channel)
        if previous is not None:
            previous.close()
        with self._bins_lock:
            self._bins.pop(channel_id, None)
        return channel

    def unregister_channel(self, channel_id: str) -> None:
        self.registry.unregister(channel_id)
        with self._bins_lock:
            self._bins.pop(channel_id, None)

    def bins(self, channel_id: str) -> BinOccupancy:
        """
        Bin occupancy of a FlexiCart channel.
        Raises:
            NotRegistered: If the id is unknown
            InvalidParameter: If the channel is not a FlexiCart
        """
        config = self.registry.lookup(channel_id).config
        if config.protocol is not Protocol.FLEXICART:
            raise InvalidParameter(f"{channel_id} is not a FlexiCart channel", channel=channel_id)
        with self._bins_lock:
            occupancy = self._bins.get(channel_id)
            if occupancy is None:
                occupancy = self._bins[channel_id] = BinOccupancy(config.slots)
        return occupancy

    def submit_request(self, channel_id: str, command_name: str, parameters: Optional[Mapping[str, Any]] = None,
                       *, cancel: Optional[CancelToken] = None) -> RequestResult:
        """
        Encode, send and decode one command.
        Args:
            channel_id (str): Registered channel id
            command_name (str): Command from the channel protocol's table
            parameters (Mapping, optional): Command parameters
            cancel (CancelToken, optional): Token interrupting the exchange
        Returns:
            RequestResult: Decoded value on success, the error otherwise
        """
        started = self._clock()
        try:
            channel = self.registry.lookup(channel_id)
            config = channel.config
            spec, frame = encode_request(config.protocol, command_name, parameters,
                                         cart_address=config.cart_address, slots=config.slots)
            data = channel.exchange(frame, config.policy().for_command(spec), cancel=cancel)
        except BridgeError as e:
            if e.channel is None:
                e.channel = channel_id
            _logger.warning("%s %s failed: %s: %s", channel_id, command_name, e.code, e)
            return RequestResult(channel_id=channel_id, command=command_name, success=False, error=e,
                                 duration=self._clock() - started)

        value = interpret(spec.decoder, data)
        if isinstance(value, BinUpdate):
            self.bins(channel_id).apply(value)
        _logger.debug("%s %s -> %r", channel_id, spec.name, value)
        return RequestResult(channel_id=channel_id, command=spec.name, success=True, value=value, raw=data,
                             duration=self._clock() - started)

    def query_status(self, channel_id: str, *, cancel: Optional[CancelToken] = None) -> RequestResult:
        """
        Transport status of a VTR with the LTC timecode filled in.
        A failed timecode read leaves the status intact with a TC: marker.
        """
        status = self.submit_request(channel_id, "status", cancel=cancel)
        if not status.success or not isinstance(status.value, DeviceStatus):
            return status
        ltc = self.submit_request(channel_id, "ltc", cancel=cancel)
        if ltc.success and isinstance(ltc.value, TimecodeReading):
            timecode = ltc.value.timecode
        else:
            timecode = "TC:NO_RESPONSE"
        return replace(status, value=replace(status.value, timecode=timecode), duration=status.duration + ltc.duration)

    def scan_channels(self, candidate_ids: Optional[Iterable[str]] = None, *,
                      cancel: Optional[CancelToken] = None) -> InventoryReport:
        """Probe candidates sequentially; defaults to every registered channel."""
        candidates = list(candidate_ids) if candidate_ids is not None else self.registry.ids()
        return self.scanner.scan(candidates, cancel=cancel)
