from __future__ import annotations

import errno
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from enum import Enum
from typing import Callable, Optional

import serial  # type: ignore

from .collector import CancelToken, TimeoutPolicy, collect
from .config import ChannelConfig
from .errors import Busy, OpenTimeout, PortUnavailable, ResponseTimeout

_logger = logging.getLogger(__name__)

WRITE_TIMEOUT: float = 1.0

_MISSING = {errno.ENOENT, errno.ENODEV, errno.ENXIO}
_INACCESSIBLE = {errno.EACCES, errno.EPERM}
_HELD = {errno.EBUSY, errno.EAGAIN, errno.EWOULDBLOCK}


class ChannelState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    BUSY = "busy"


def classify_open_error(exc: BaseException) -> str:
    """
    Map an open failure to a PortUnavailable reason.
    Args:
        exc (BaseException): Exception raised while opening
    Returns:
        str: "missing", "inaccessible", "held" or "error"
    """
    code = getattr(exc, "errno", None)
    if isinstance(exc, FileNotFoundError) or code in _MISSING:
        return PortUnavailable.MISSING
    if isinstance(exc, PermissionError) or code in _INACCESSIBLE:
        return PortUnavailable.INACCESSIBLE
    if code in _HELD:
        return PortUnavailable.HELD
    # Windows reports the cause only in the message
    text = str(exc)
    if "FileNotFoundError" in text or "cannot find the file" in text:
        return PortUnavailable.MISSING
    if "PermissionError" in text or "Access is denied" in text:
        return PortUnavailable.INACCESSIBLE
    return PortUnavailable.ERROR


class Channel:
    """
    Exclusive owner of one serial link.
    The port is opened lazily by the first exchange and stays open until close().
    Exchanges are strictly serialised: a call while another exchange is in
    flight fails with Busy instead of waiting.
    Args:
        channel_id (str): Logical channel id
        config (ChannelConfig): Port and line parameters
        port_factory (Callable, optional): Creates an open port; defaults to serial.serial_for_url
        clock (Callable): Monotonic clock used by the collector
    """

    _port: Optional[serial.SerialBase]
    _lock: threading.Lock

    def __init__(self, channel_id: str, config: ChannelConfig, *,
                 port_factory: Optional[Callable[..., serial.SerialBase]] = None,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.channel_id = channel_id
        self.config = config
        self._factory = port_factory or serial.serial_for_url
        self._clock = clock
        self._port = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Channel({self.channel_id!r}, port={self.config.port!r}, state={self.state.value})"

    @property
    def state(self) -> ChannelState:
        if self._lock.locked():
            return ChannelState.BUSY
        return ChannelState.OPEN if self._port is not None else ChannelState.CLOSED

    @property
    def is_open(self) -> bool:
        return self._port is not None

    def open(self, open_timeout: Optional[float] = None) -> None:
        """
        Open the device node if not already open.
        Raises:
            Busy: If an exchange is in flight
            PortUnavailable: If the node is missing, not accessible or held by another process
            OpenTimeout: If the open did not finish within the open timeout
        """
        if not self._lock.acquire(blocking=False):
            raise Busy("channel is busy", channel=self.channel_id)
        try:
            self._open_locked(open_timeout if open_timeout is not None else self.config.open_timeout)
        finally:
            self._lock.release()

    def _open_locked(self, open_timeout: float) -> None:
        if self._port is not None:
            return
        kwargs = dict(self.config.serial_kwargs(), timeout=0, write_timeout=WRITE_TIMEOUT, exclusive=True)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"open-{self.channel_id}")
        future = executor.submit(self._factory, self.config.port, **kwargs)
        try:
            port = future.result(timeout=open_timeout)
        except FutureTimeout:
            future.add_done_callback(_close_late_port)
            raise OpenTimeout(f"open of {self.config.port} exceeded {open_timeout:.3f}s",
                              channel=self.channel_id) from None
        except (serial.SerialException, OSError, ValueError) as e:
            reason = classify_open_error(e)
            raise PortUnavailable(f"cannot open {self.config.port}: {e}", channel=self.channel_id,
                                  reason=reason) from e
        finally:
            executor.shutdown(wait=False)
        self._port = port
        _logger.info("opened %s on %s (%s baud, %s%s%s)", self.channel_id, self.config.port,
                     self.config.baudrate, self.config.bytesize, self.config.parity, self.config.stopbits)

    def close(self) -> None:
        """
        Close the serial port. Safe to call more than once.
        """
        port, self._port = self._port, None
        if port is None:
            return
        try:
            port.cancel_read()
        except (AttributeError, NotImplementedError, serial.SerialException, OSError):
            pass
        try:
            port.close()
        except (serial.SerialException, OSError) as e:
            _logger.debug("error closing %s: %s", self.channel_id, e)
        _logger.info("closed %s", self.channel_id)

    def __enter__(self) -> "Channel":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def exchange(self, frame: bytes, policy: Optional[TimeoutPolicy] = None, *,
                 cancel: Optional[CancelToken] = None) -> bytes:
        """
        Write a frame and collect the reply, opening the port first if needed.
        Args:
            frame (bytes): Encoded request
            policy (TimeoutPolicy, optional): Reply rules; defaults to the channel config
            cancel (CancelToken, optional): Token interrupting the exchange
        Returns:
            bytes: Reply, possibly partial
        Raises:
            Busy: If another exchange is in flight on this channel
            PortUnavailable, OpenTimeout: If the port cannot be opened or the link fails
            ResponseTimeout: If nothing arrived in time
            Cancelled: If the token was cancelled
        """
        policy = policy or self.config.policy()
        if not self._lock.acquire(blocking=False):
            raise Busy("exchange already in flight", channel=self.channel_id)
        try:
            self._open_locked(policy.open_timeout)
            try:
                return collect(self._port, bytes(frame), policy, cancel=cancel,
                               clock=self._clock, channel=self.channel_id)
            except serial.SerialTimeoutException as e:
                raise ResponseTimeout(f"write timed out: {e}", channel=self.channel_id) from e
            except (serial.SerialException, OSError) as e:
                # the link is gone; reopen on the next exchange
                self.close()
                raise PortUnavailable(f"I/O error on {self.config.port}: {e}", channel=self.channel_id,
                                      reason=classify_open_error(e)) from e
        finally:
            self._lock.release()


def _close_late_port(future) -> None:
    # an open that finished after its timeout must not leak the port
    if future.cancelled() or future.exception() is not None:
        return
    try:
        future.result().close()
    except (serial.SerialException, OSError):
        pass
