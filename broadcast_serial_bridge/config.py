from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Final, Mapping, Optional

import serial  # type: ignore

from .collector import DEFAULT_OPEN_TIMEOUT, DEFAULT_RESPONSE_TIMEOUT, TimeoutPolicy
from .commands import DEFAULT_SLOTS, Protocol

try:  # Python 3.11+
    import tomllib as _toml
except Exception:  # pragma: no cover
    try:
        import tomli as _toml  # type: ignore
    except Exception:
        _toml = None

_logger = logging.getLogger(__name__)

DEFAULT_SCAN_TIMEOUT: Final[float] = 2.0
DEFAULT_SETTLE_DELAY: Final[float] = 0.1

# (baudrate, bytesize, parity, stopbits)
LINE_DEFAULTS: Final[Dict[Protocol, tuple]] = {
    Protocol.FLEXICART: (19200, serial.EIGHTBITS, serial.PARITY_EVEN, serial.STOPBITS_ONE),
    Protocol.SONY9PIN: (38400, serial.EIGHTBITS, serial.PARITY_NONE, serial.STOPBITS_ONE),
}


@dataclass
class ChannelConfig:
    """
    Line parameters and addressing for one channel.
    Unset line parameters take the defaults of the protocol
    (FlexiCart 19200 8E1, Sony 9-pin 38400 8N1).
    """
    port: str
    protocol: Protocol = Protocol.FLEXICART
    baudrate: Optional[int] = None
    bytesize: Optional[int] = None
    parity: Optional[str] = None
    stopbits: Optional[float] = None
    cart_address: int = 0x01
    slots: int = DEFAULT_SLOTS
    response_timeout: float = DEFAULT_RESPONSE_TIMEOUT
    open_timeout: float = DEFAULT_OPEN_TIMEOUT

    def __post_init__(self) -> None:
        try:
            self.protocol = Protocol(str(getattr(self.protocol, "value", self.protocol)).lower())
        except ValueError:
            raise ValueError(f"unknown protocol: {self.protocol}") from None
        baudrate, bytesize, parity, stopbits = LINE_DEFAULTS[self.protocol]
        self.baudrate = int(self.baudrate if self.baudrate is not None else baudrate)
        self.bytesize = int(self.bytesize if self.bytesize is not None else bytesize)
        self.parity = str(self.parity if self.parity is not None else parity).upper()[:1]
        self.stopbits = float(self.stopbits if self.stopbits is not None else stopbits)
        if self.stopbits.is_integer():
            self.stopbits = int(self.stopbits)
        if not self.port:
            raise ValueError("port is required")
        if self.baudrate <= 0:
            raise ValueError("baudrate must be positive")
        if self.bytesize not in serial.Serial.BYTESIZES:
            raise ValueError(f"invalid bytesize: {self.bytesize}")
        if self.parity not in serial.Serial.PARITIES:
            raise ValueError(f"invalid parity: {self.parity}")
        if self.stopbits not in serial.Serial.STOPBITS:
            raise ValueError(f"invalid stopbits: {self.stopbits}")
        if not (0 <= int(self.cart_address) <= 0xFF):
            raise ValueError("cart_address out of range (u8)")
        if int(self.slots) < 1:
            raise ValueError("slots must be at least 1")
        # raises ValueError on non-positive timeouts
        self.policy()

    def policy(self) -> TimeoutPolicy:
        return TimeoutPolicy(response_timeout=float(self.response_timeout), open_timeout=float(self.open_timeout))

    def serial_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for serial.serial_for_url."""
        return {
            "baudrate": self.baudrate,
            "bytesize": self.bytesize,
            "parity": self.parity,
            "stopbits": self.stopbits,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], defaults: Optional[Mapping[str, Any]] = None) -> "ChannelConfig":
        merged = dict(defaults or {})
        merged.update(data)
        known = {f for f in cls.__dataclass_fields__}
        unknown = sorted(set(merged) - known)
        if unknown:
            raise ValueError(f"unknown channel setting(s): {', '.join(unknown)}")
        if "port" not in merged:
            raise ValueError("channel is missing 'port'")
        return cls(**merged)


@dataclass
class BridgeConfig:
    """Everything read from a config file."""
    channels: Dict[str, ChannelConfig] = field(default_factory=dict)
    response_timeout: float = DEFAULT_RESPONSE_TIMEOUT
    open_timeout: float = DEFAULT_OPEN_TIMEOUT
    scan_timeout: float = DEFAULT_SCAN_TIMEOUT
    settle_delay: float = DEFAULT_SETTLE_DELAY


def _load_toml(config_path: str) -> dict:
    if _toml is None:
        _logger.warning("TOML parser not available, using default values")
        return {}
    try:
        with open(config_path, "rb") as f:
            return _toml.load(f)
    except FileNotFoundError:
        _logger.warning("config file %s not found, using default values", config_path)
        return {}


def parse_config(data: Mapping[str, Any]) -> BridgeConfig:
    """
    Build a BridgeConfig from an already parsed TOML document.
    Raises:
        ValueError: On an invalid channel or defaults entry
    """
    defaults = dict(data.get("defaults", {}))
    cfg = BridgeConfig(
        response_timeout=float(defaults.pop("response_timeout", DEFAULT_RESPONSE_TIMEOUT)),
        open_timeout=float(defaults.pop("open_timeout", DEFAULT_OPEN_TIMEOUT)),
        scan_timeout=float(defaults.pop("scan_timeout", DEFAULT_SCAN_TIMEOUT)),
        settle_delay=float(defaults.pop("settle_delay", DEFAULT_SETTLE_DELAY)),
    )
    if cfg.scan_timeout <= 0:
        raise ValueError("scan_timeout must be positive")
    if cfg.settle_delay < 0:
        raise ValueError("settle_delay must not be negative")
    channel_defaults = {"response_timeout": cfg.response_timeout, "open_timeout": cfg.open_timeout}
    channel_defaults.update(defaults)
    for channel_id, entry in dict(data.get("channels", {})).items():
        try:
            cfg.channels[str(channel_id)] = ChannelConfig.from_dict(entry, channel_defaults)
        except (TypeError, ValueError) as e:
            raise ValueError(f"channel {channel_id}: {e}") from e
    return cfg


def load_config(config_path: str = "config.toml") -> BridgeConfig:
    """
    Load channels and timeouts from a TOML file.
    A missing file yields the defaults.
    Args:
        config_path (str): Path to the TOML file
    Returns:
        BridgeConfig: Parsed configuration
    Raises:
        ValueError: If the file is not valid TOML or holds invalid settings
    """
    try:
        data = _load_toml(config_path)
    except Exception as e:
        raise ValueError(f"failed to parse {config_path}: {e}") from e
    cfg = parse_config(data)
    _logger.info("loaded %d channel(s) from %s", len(cfg.channels), config_path)
    return cfg
