from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Final, FrozenSet, Mapping, Optional, Tuple

from .errors import InvalidParameter
from .framing import ETX, FlexiCartFrame, SonyChecksum
from .interpreter import Decoder

_logger = logging.getLogger(__name__)

LONG_OPERATION_TIMEOUT: Final[float] = 30.0
# Sony replies without a fixed length are collected for this long
SONY_REPLY_WINDOW: Final[float] = 0.1
DEFAULT_SLOTS: Final[int] = 360


class Protocol(str, Enum):
    """
    Wire protocol spoken on a channel.
    FLEXICART: fixed 9-byte STX frames with a two's complement checksum
    SONY9PIN: short command table entries with a per-command checksum mode
    """
    FLEXICART = "flexicart"
    SONY9PIN = "sony9pin"


@dataclass(frozen=True)
class CommandSpec:
    """
    One entry of a command table.
    Fields:
        name: Command name used by callers
        protocol: Protocol the command belongs to
        description: Short human readable text
        decoder: Interpretation applied to the reply
        command: FlexiCart command byte
        control: Fixed FlexiCart control byte; None when supplied by a parameter
        control_param: Parameter whose value becomes the control byte
        payload: Fixed Sony 9-pin bytes without checksum
        checksum: Sony 9-pin checksum mode
        params: Additional parameter names accepted by the command
        expected_length: Reply length that completes the exchange, if fixed
        response_timeout: Overrides the channel response timeout
        terminators: Bytes ending the exchange when seen in the latest chunk
    """
    name: str
    protocol: Protocol
    description: str
    decoder: Decoder
    command: int = 0
    control: Optional[int] = None
    control_param: Optional[str] = None
    payload: bytes = b""
    checksum: str = SonyChecksum.NONE
    params: Tuple[str, ...] = ()
    expected_length: Optional[int] = None
    response_timeout: Optional[float] = None
    terminators: FrozenSet[int] = frozenset()


def _cart(name: str, command: int, description: str, decoder: Decoder = Decoder.REPLY, *,
          control: Optional[int] = 0x00, control_param: Optional[str] = None,
          params: Tuple[str, ...] = (), response_timeout: Optional[float] = None) -> CommandSpec:
    # single ACK/NAK/BUSY byte for motion commands, ETX-terminated frames otherwise
    expected_length = 1 if decoder is Decoder.REPLY else None
    return CommandSpec(
        name=name, protocol=Protocol.FLEXICART, description=description, decoder=decoder,
        command=command, control=None if control_param else control, control_param=control_param,
        params=params, expected_length=expected_length, response_timeout=response_timeout,
        terminators=frozenset({ETX}),
    )


def _sony(name: str, payload: bytes, checksum: str, description: str, decoder: Decoder = Decoder.REPLY, *,
          expected_length: Optional[int] = None, params: Tuple[str, ...] = ()) -> CommandSpec:
    return CommandSpec(
        name=name, protocol=Protocol.SONY9PIN, description=description, decoder=decoder,
        payload=bytes(payload), checksum=checksum, params=params, expected_length=expected_length,
        response_timeout=SONY_REPLY_WINDOW if expected_length is None else None,
    )


_SUM = SonyChecksum.SUM
_XOR = SonyChecksum.XOR
_NONE = SonyChecksum.NONE
# Sony ACK 10 01 plus its checksum byte
_SONY_ACK_LEN = 3

FLEXICART_COMMANDS: Final[Dict[str, CommandSpec]] = {c.name: c for c in (
    _cart("dummy", 0x50, "No-op, used to check the link"),
    _cart("status", 0x61, "Status request", Decoder.CART_STATUS),
    _cart("sense_status", 0x61, "Sense cart status", Decoder.CART_STATUS, control=0x10),
    _cart("sense_position", 0x61, "Sense carriage position", Decoder.POSITION, control=0x20),
    _cart("sense_inventory", 0x61, "Sense bin inventory", Decoder.BINS, control=0x30),
    _cart("sense_errors", 0x61, "Sense error status", Decoder.ERRORS, control=0x40),
    _cart("sense_bin_status", 0x62, "Sense bin status", Decoder.BINS, control=0x01),
    _cart("sense_cart_position", 0x60, "Sense cart position", Decoder.POSITION),
    _cart("sense_system_mode", 0x65, "Sense system mode", Decoder.CART_STATUS),
    _cart("move_to_slot", 0x10, "Move carriage to a slot", control_param="slot"),
    _cart("move_to_position", 0x43, "Move carriage to a position", control_param="slot"),
    _cart("set_bin_lamp", 0x09, "Light the lamp of a bin", control_param="slot"),
    _cart("stop", 0x20, "Stop all motion"),
    _cart("elevator_up", 0x41, "Move elevator up", control=0x01),
    _cart("elevator_down", 0x41, "Move elevator down", control=0x02),
    _cart("carousel_cw", 0x42, "Rotate carousel clockwise", control=0x01),
    _cart("carousel_ccw", 0x42, "Rotate carousel counter-clockwise", control=0x02),
    _cart("load_cassette", 0x44, "Load cassette into the player", control=0x01),
    _cart("unload_cassette", 0x44, "Unload cassette from the player", control=0x02),
    _cart("eject", 0x45, "Eject cassette"),
    _cart("on_air_tally_on", 0x71, "On-air tally on", control=0x01),
    _cart("on_air_tally_off", 0x71, "On-air tally off", control=0x00),
    _cart("elevator_initialize", 0x1D, "Initialise elevator", control=0x01,
          response_timeout=LONG_OPERATION_TIMEOUT),
    _cart("initialize", 0x46, "Initialise the cart", response_timeout=LONG_OPERATION_TIMEOUT),
    _cart("calibrate", 0x47, "Calibrate the cart", response_timeout=LONG_OPERATION_TIMEOUT),
    _cart("raw", 0x00, "Arbitrary command byte", Decoder.RAW, control_param="control",
          params=("command",)),
)}

# RECORD is intentionally not part of the table.
SONY_COMMANDS: Final[Dict[str, CommandSpec]] = {c.name: c for c in (
    _sony("stop", b"\x20\x00", _SUM, "Stop", expected_length=_SONY_ACK_LEN),
    _sony("play", b"\x20\x01", _SUM, "Play", expected_length=_SONY_ACK_LEN),
    _sony("standby_off", b"\x20\x04", _SUM, "Standby off", expected_length=_SONY_ACK_LEN),
    _sony("standby_on", b"\x20\x05", _SUM, "Standby on", expected_length=_SONY_ACK_LEN),
    _sony("eject", b"\x20\x0F", _SUM, "Eject tape", expected_length=_SONY_ACK_LEN),
    _sony("fast_forward", b"\x20\x10", _SUM, "Fast forward", expected_length=_SONY_ACK_LEN),
    _sony("rewind", b"\x20\x20", _SUM, "Rewind", expected_length=_SONY_ACK_LEN),
    _sony("cue_up_with_data", b"\x24\x31", _SUM, "Cue up to a timecode",
          expected_length=_SONY_ACK_LEN, params=("timecode",)),
    _sony("local_disable", b"\x00\x0C", _SUM, "Disable front panel", expected_length=_SONY_ACK_LEN),
    _sony("local_enable", b"\x00\x1D", _SUM, "Enable front panel", expected_length=_SONY_ACK_LEN),
    _sony("device_type", b"\x00\x11", _SUM, "Device type request", Decoder.DEVICE_TYPE, expected_length=3),
    _sony("status", b"\x61\x20", _XOR, "Status sense", Decoder.DEVICE_STATUS),
    _sony("extended_status", b"\x60\x20", _XOR, "Extended status sense", Decoder.DEVICE_STATUS),
    _sony("full_status", b"\x63\x20", _XOR, "Full status sense", Decoder.DEVICE_STATUS),
    _sony("position", b"\x71\x20", _XOR, "Tape position sense", Decoder.RAW),
    _sony("search_data", b"\x72\x20", _XOR, "Search data sense", Decoder.RAW),
    _sony("ltc", b"\x78\x20", _XOR, "LTC timecode sense", Decoder.TIMECODE, expected_length=3),
    # Legacy forms sent verbatim
    _sony("jog_forward_still", b"\x21\x11\x00\x30", _NONE, "Jog forward, still"),
    _sony("jog_forward_slow", b"\x21\x11\x20\x10", _NONE, "Jog forward, slow"),
    _sony("jog_forward_normal", b"\x21\x11\x40\x30", _NONE, "Jog forward, normal speed"),
    _sony("jog_reverse_slow", b"\x21\x21\x20\x00", _NONE, "Jog reverse, slow"),
    _sony("jog_reverse_normal", b"\x21\x21\x40\x20", _NONE, "Jog reverse, normal speed"),
    _sony("status_simple", b"\x61", _NONE, "Status sense, one byte form", Decoder.DEVICE_STATUS),
    _sony("status_2byte", b"\x61\x20", _NONE, "Status sense, two byte form", Decoder.DEVICE_STATUS),
)}

COMMAND_TABLES: Final[Dict[Protocol, Dict[str, CommandSpec]]] = {
    Protocol.FLEXICART: FLEXICART_COMMANDS,
    Protocol.SONY9PIN: SONY_COMMANDS,
}

# Probe used by the scanner for each protocol
PROBE_COMMANDS: Final[Dict[Protocol, str]] = {
    Protocol.FLEXICART: "status",
    Protocol.SONY9PIN: "status",
}

_TIMECODE_RE = re.compile(r"^(\d{1,2}):(\d{1,2}):(\d{1,2})[:;.](\d{1,2})$")


def lookup(protocol: Protocol, name: str) -> CommandSpec:
    """
    Find a command in the table of a protocol.
    Args:
        protocol (Protocol): Protocol of the channel
        name (str): Command name (case-insensitive, '-' and '_' are equivalent)
    Returns:
        CommandSpec: Table entry
    Raises:
        InvalidParameter: If the protocol has no such command
    """
    key = str(name).strip().lower().replace("-", "_")
    table = COMMAND_TABLES.get(Protocol(protocol), {})
    try:
        return table[key]
    except KeyError:
        raise InvalidParameter(f"unknown {Protocol(protocol).value} command: {name}") from None


def _to_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise InvalidParameter(f"{name} must be an integer")
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError:
            raise InvalidParameter(f"{name} is not a number: {value!r}") from None
    if isinstance(value, float) and not value.is_integer():
        raise InvalidParameter(f"{name} must be a whole number: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidParameter(f"{name} is not a number: {value!r}") from None


def _byte(name: str, value: Any) -> int:
    v = _to_int(name, value)
    if not (0 <= v <= 0xFF):
        raise InvalidParameter(f"{name} out of range (0..255): {v}")
    return v


def _slot(value: Any, slots: int) -> int:
    v = _to_int("slot", value)
    if not (1 <= v <= slots):
        raise InvalidParameter(f"slot out of range (1..{slots}): {v}")
    if v > 0xFF:
        raise InvalidParameter(f"slot {v} does not fit in the control byte")
    return v


def _bcd(value: int) -> int:
    return ((value // 10) << 4) | (value % 10)


def parse_timecode(text: Any) -> Tuple[int, int, int, int]:
    """
    Parse HH:MM:SS:FF into its fields.
    Raises:
        InvalidParameter: If the text is malformed or a field is out of range
    """
    m = _TIMECODE_RE.match(str(text).strip())
    if not m:
        raise InvalidParameter(f"invalid timecode: {text!r} (expected HH:MM:SS:FF)")
    hours, minutes, seconds, frames = (int(g) for g in m.groups())
    if hours > 23 or minutes > 59 or seconds > 59 or frames > 29:
        raise InvalidParameter(f"timecode field out of range: {text!r}")
    return hours, minutes, seconds, frames


def _check_params(spec: CommandSpec, params: Mapping[str, Any], common: Tuple[str, ...]) -> None:
    allowed = set(common) | set(spec.params)
    if spec.control_param:
        allowed.add(spec.control_param)
    unknown = sorted(set(params) - allowed)
    if unknown:
        raise InvalidParameter(f"{spec.name} does not accept parameter(s): {', '.join(unknown)}")


def _encode_flexicart(spec: CommandSpec, params: Mapping[str, Any], cart_address: int, slots: int) -> bytes:
    _check_params(spec, params, ("cart", "data", "block_type"))
    if spec.control_param == "slot":
        if "slot" not in params:
            raise InvalidParameter(f"{spec.name} requires a slot")
        control = _slot(params["slot"], slots)
    elif spec.control_param:
        control = _byte(spec.control_param, params.get(spec.control_param, FlexiCartFrame.DEFAULT_CONTROL))
    else:
        control = spec.control if spec.control is not None else FlexiCartFrame.DEFAULT_CONTROL

    if "command" in spec.params:
        if "command" not in params:
            raise InvalidParameter(f"{spec.name} requires a command byte")
        command = _byte("command", params["command"])
    else:
        command = spec.command

    return FlexiCartFrame.encode(
        command,
        cart=_byte("cart", params.get("cart", cart_address)),
        control=control,
        data=_byte("data", params.get("data", FlexiCartFrame.DEFAULT_DATA)),
        block_type=_byte("block_type", params.get("block_type", FlexiCartFrame.DEFAULT_BLOCK_TYPE)),
    )


def _encode_sony(spec: CommandSpec, params: Mapping[str, Any]) -> bytes:
    _check_params(spec, params, ())
    body = bytearray(spec.payload)
    if "timecode" in spec.params:
        if "timecode" not in params:
            raise InvalidParameter(f"{spec.name} requires a timecode")
        hours, minutes, seconds, frames = parse_timecode(params["timecode"])
        body += bytes((_bcd(frames), _bcd(seconds), _bcd(minutes), _bcd(hours)))
    return SonyChecksum.apply(bytes(body), spec.checksum)


def encode_request(protocol: Protocol, name: str, params: Optional[Mapping[str, Any]] = None, *,
                   cart_address: int = 0x01, slots: int = DEFAULT_SLOTS) -> Tuple[CommandSpec, bytes]:
    """
    Turn a named request into the bytes to put on the wire.
    Args:
        protocol (Protocol): Protocol of the target channel
        name (str): Command name
        params (Mapping, optional): Command parameters (slot, cart, data, control, command, timecode)
        cart_address (int): Default FlexiCart cart selector
        slots (int): Number of slots of the target cart
    Returns:
        Tuple[CommandSpec, bytes]: Table entry and encoded frame
    Raises:
        InvalidParameter: On an unknown command or a parameter out of range
    """
    spec = lookup(protocol, name)
    params = dict(params or {})
    if spec.protocol is Protocol.FLEXICART:
        frame = _encode_flexicart(spec, params, cart_address, slots)
    else:
        frame = _encode_sony(spec, params)
    _logger.debug("encoded %s/%s %s -> %s", spec.protocol.value, spec.name, params, frame.hex())
    return spec, frame
