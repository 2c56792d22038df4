from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, FrozenSet, List, Optional

from .commands import CommandSpec
from .errors import Cancelled, ResponseTimeout
from .framing import ETX, hex_dump

_logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_TIMEOUT: float = 3.0
DEFAULT_OPEN_TIMEOUT: float = 1.0


@dataclass(frozen=True)
class TimeoutPolicy:
    """
    Rules ending one exchange.
    Fields:
        response_timeout: Seconds from the write until the collector gives up
        open_timeout: Seconds allowed for opening the device node
        terminators: Bytes ending the exchange when present in the latest chunk
        expected_length: Buffer length ending the exchange, if the reply size is fixed
    """
    response_timeout: float = DEFAULT_RESPONSE_TIMEOUT
    open_timeout: float = DEFAULT_OPEN_TIMEOUT
    terminators: FrozenSet[int] = frozenset({ETX})
    expected_length: Optional[int] = None

    def __post_init__(self) -> None:
        if self.response_timeout <= 0:
            raise ValueError("response_timeout must be positive")
        if self.open_timeout <= 0:
            raise ValueError("open_timeout must be positive")
        if self.expected_length is not None and self.expected_length < 1:
            raise ValueError("expected_length must be at least 1")

    def for_command(self, spec: CommandSpec) -> "TimeoutPolicy":
        """
        Specialise the policy with the reply shape of a command.
        Args:
            spec (CommandSpec): Command about to be sent
        Returns:
            TimeoutPolicy: Policy carrying the command's terminators, length and timeout
        """
        return replace(
            self,
            response_timeout=spec.response_timeout or self.response_timeout,
            terminators=spec.terminators,
            expected_length=spec.expected_length,
        )


class CancelToken:
    """
    Cancellation handle for one or more exchanges.
    Callbacks bound to the token run once, from the thread calling cancel().
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
        for cb in callbacks:
            cb()

    def bind(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback run on cancel; runs immediately if already cancelled.
        Returns:
            Callable: Function removing the callback again
        """
        with self._lock:
            fire = self._event.is_set()
            if not fire:
                self._callbacks.append(callback)
        if fire:
            callback()

        def unbind() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)
        return unbind


def collect(port, frame: bytes, policy: TimeoutPolicy, *, cancel: Optional[CancelToken] = None,
            clock: Callable[[], float] = time.monotonic, channel: Optional[str] = None) -> bytes:
    """
    Write a frame and gather the reply.
    The timer starts after the write and is not extended by incoming data.
    The only blocking call is port.read(), bounded by the time left.
    Args:
        port: Open pyserial-compatible port
        frame (bytes): Encoded request
        policy (TimeoutPolicy): End-of-reply rules
        cancel (CancelToken, optional): Token interrupting the exchange
        clock (Callable): Monotonic clock in seconds
        channel (str, optional): Channel id used in errors and logs
    Returns:
        bytes: Reply bytes, possibly partial if the timer fired after some data arrived
    Raises:
        ResponseTimeout: If no byte arrived before the timer fired
        Cancelled: If the token was cancelled
    """
    if cancel is not None and cancel.cancelled:
        raise Cancelled("exchange cancelled before write", channel=channel)

    port.reset_input_buffer()
    port.write(frame)
    port.flush()
    _logger.debug("%s >> %s", channel, hex_dump(frame))

    started = clock()
    deadline = started + policy.response_timeout
    buf = bytearray()
    complete = False
    unbind = cancel.bind(port.cancel_read) if cancel is not None else None
    try:
        while True:
            remaining = deadline - clock()
            if remaining <= 0:
                break
            port.timeout = remaining
            size = max(port.in_waiting, 1)
            if policy.expected_length is not None:
                size = max(min(size, policy.expected_length - len(buf)), 1)
            chunk = port.read(size)
            if cancel is not None and cancel.cancelled:
                raise Cancelled("exchange cancelled", channel=channel)
            if not chunk:
                continue
            buf += chunk
            _logger.debug("%s << %s", channel, hex_dump(chunk))
            if policy.terminators and any(b in policy.terminators for b in chunk):
                complete = True
                break
            if policy.expected_length is not None and len(buf) >= policy.expected_length:
                complete = True
                break
    finally:
        if unbind is not None:
            unbind()

    elapsed = clock() - started
    if not buf:
        raise ResponseTimeout(f"no reply within {policy.response_timeout:.3f}s", channel=channel)
    if complete:
        _logger.debug("%s: reply complete in %.3fs", channel, elapsed)
    elif policy.terminators or policy.expected_length is not None:
        _logger.warning("%s: partial reply after %.3fs (%d bytes)", channel, elapsed, len(buf))
    else:
        # the timer is the only end rule
        _logger.debug("%s: reply window closed after %.3fs (%d bytes)", channel, elapsed, len(buf))
    return bytes(buf)
