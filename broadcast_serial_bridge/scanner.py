from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional, Tuple

from .collector import CancelToken
from .commands import PROBE_COMMANDS, Protocol, encode_request
from .comm import Channel
from .config import DEFAULT_SCAN_TIMEOUT, DEFAULT_SETTLE_DELAY, ChannelConfig
from .errors import BridgeError, Busy, Cancelled, OpenTimeout, PortUnavailable, ResponseTimeout
from .framing import hex_dump
from .interpreter import interpret
from .inventory import DeviceInventory
from .registry import DeviceRegistry

_logger = logging.getLogger(__name__)


class Diagnosis(str, Enum):
    """Outcome of probing one candidate."""
    RESPONDING = "responding"
    MISSING = "missing"
    INACCESSIBLE = "inaccessible"
    HELD = "held"
    OPEN_TIMEOUT = "open_timeout"
    SILENT = "silent"
    BUSY = "busy"
    CANCELLED = "cancelled"
    FAILED = "failed"


_UNAVAILABLE = {
    PortUnavailable.MISSING: Diagnosis.MISSING,
    PortUnavailable.INACCESSIBLE: Diagnosis.INACCESSIBLE,
    PortUnavailable.HELD: Diagnosis.HELD,
}


@dataclass(frozen=True)
class ProbeResult:
    channel_id: str
    diagnosis: Diagnosis
    status: Any = None
    raw_hex: str = ""
    error: Optional[str] = None
    duration: float = 0.0

    @property
    def exists(self) -> bool:
        return self.diagnosis is not Diagnosis.MISSING

    @property
    def accessible(self) -> bool:
        return self.diagnosis in (Diagnosis.RESPONDING, Diagnosis.SILENT, Diagnosis.BUSY)

    @property
    def responding(self) -> bool:
        return self.diagnosis is Diagnosis.RESPONDING


@dataclass(frozen=True)
class InventoryReport:
    """Results of one scan, in candidate order."""
    results: Tuple[ProbeResult, ...] = ()
    inventory: DeviceInventory = field(default_factory=DeviceInventory)
    cancelled: bool = False

    @property
    def responding(self) -> List[str]:
        return [r.channel_id for r in self.results if r.responding]

    @property
    def failed(self) -> List[ProbeResult]:
        return [r for r in self.results if not r.responding]

    def summary(self) -> dict:
        return {
            "total": len(self.results),
            "exists": sum(1 for r in self.results if r.exists),
            "accessible": sum(1 for r in self.results if r.accessible),
            "responding": sum(1 for r in self.results if r.responding),
        }


class ScanOrchestrator:
    """
    Probes candidate channels one after another.
    Candidates that are registered ids use their registered channel; any
    other candidate is treated as a port path and probed through a transient
    channel that is closed afterwards.
    Args:
        registry (DeviceRegistry): Registered channels
        scan_timeout (float): Upper bound on the response timeout of each probe
        settle_delay (float): Pause between probes
        protocol (Protocol): Protocol assumed for transient channels
        port_factory (Callable, optional): Port factory for transient channels
        sleep (Callable): Sleep function
        clock (Callable): Monotonic clock
    """

    def __init__(self, registry: DeviceRegistry, *, scan_timeout: float = DEFAULT_SCAN_TIMEOUT,
                 settle_delay: float = DEFAULT_SETTLE_DELAY, protocol: Protocol = Protocol.SONY9PIN,
                 port_factory: Optional[Callable[..., Any]] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic) -> None:
        if scan_timeout <= 0:
            raise ValueError("scan_timeout must be positive")
        self.registry = registry
        self.scan_timeout = scan_timeout
        self.settle_delay = settle_delay
        self.protocol = Protocol(protocol)
        self._port_factory = port_factory
        self._sleep = sleep
        self._clock = clock

    def _transient_channel(self, candidate: str) -> Channel:
        config = ChannelConfig(port=candidate, protocol=self.protocol, response_timeout=self.scan_timeout)
        return Channel(candidate, config, port_factory=self._port_factory, clock=self._clock)

    def probe(self, candidate: str, *, cancel: Optional[CancelToken] = None) -> ProbeResult:
        """
        Send the protocol's status request to one candidate and diagnose the outcome.
        Only cancellation propagates; every other failure is recorded in the result.
        """
        started = self._clock()
        transient = candidate not in self.registry
        channel: Optional[Channel] = None

        def result(diagnosis: Diagnosis, **kw: Any) -> ProbeResult:
            return ProbeResult(channel_id=candidate, diagnosis=diagnosis, duration=self._clock() - started, **kw)

        try:
            channel = self._transient_channel(candidate) if transient else self.registry.lookup(candidate)
            protocol = channel.config.protocol
            spec, frame = encode_request(protocol, PROBE_COMMANDS[protocol],
                                         cart_address=channel.config.cart_address, slots=channel.config.slots)
            policy = channel.config.policy().for_command(spec)
            policy = replace(policy, response_timeout=min(policy.response_timeout, self.scan_timeout))
            data = channel.exchange(frame, policy, cancel=cancel)
            return result(Diagnosis.RESPONDING, status=interpret(spec.decoder, data), raw_hex=hex_dump(data))
        except Cancelled:
            raise
        except PortUnavailable as e:
            return result(_UNAVAILABLE.get(e.reason, Diagnosis.FAILED), error=str(e))
        except OpenTimeout as e:
            return result(Diagnosis.OPEN_TIMEOUT, error=str(e))
        except ResponseTimeout as e:
            return result(Diagnosis.SILENT, error=str(e))
        except Busy as e:
            return result(Diagnosis.BUSY, error=str(e))
        except BridgeError as e:
            return result(Diagnosis.FAILED, error=str(e))
        finally:
            if transient and channel is not None:
                channel.close()

    def scan(self, candidates: Iterable[str], *, cancel: Optional[CancelToken] = None) -> InventoryReport:
        """
        Probe every candidate in order.
        A failing candidate never stops the scan; cancellation does.
        Args:
            candidates (Iterable[str]): Channel ids or port paths
            cancel (CancelToken, optional): Token stopping the scan
        Returns:
            InventoryReport: Per-candidate results and the inventory of responding channels
        """
        results: List[ProbeResult] = []
        cancelled = False
        candidates = list(candidates)
        _logger.info("scanning %d candidate(s)", len(candidates))
        for i, candidate in enumerate(candidates):
            if cancel is not None and cancel.cancelled:
                cancelled = True
                break
            if i and self.settle_delay > 0:
                self._sleep(self.settle_delay)
            try:
                r = self.probe(candidate, cancel=cancel)
            except Cancelled as e:
                results.append(ProbeResult(channel_id=candidate, diagnosis=Diagnosis.CANCELLED, error=str(e)))
                cancelled = True
                break
            results.append(r)
            if r.responding:
                _logger.info("%s: responding (%s)", candidate, r.raw_hex)
            else:
                _logger.warning("%s: %s%s", candidate, r.diagnosis.value, f" ({r.error})" if r.error else "")

        inventory = DeviceInventory({r.channel_id: r.status for r in results if r.responding})
        report = InventoryReport(results=tuple(results), inventory=inventory, cancelled=cancelled)
        _logger.info("scan finished: %s", report.summary())
        return report
