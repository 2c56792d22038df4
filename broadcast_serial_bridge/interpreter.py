"""Decoding of raw device replies into status records.

Every function here is total: undersized or unexpected input yields a
defined default record and never raises.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Final, Optional, Tuple, Union

from .framing import ACK, BUSY, NAK, STX, hex_dump


class Decoder(str, Enum):
    """Which interpretation applies to the reply of a command."""
    REPLY = "reply"
    DEVICE_STATUS = "device_status"
    CART_STATUS = "cart_status"
    BINS = "bins"
    POSITION = "position"
    ERRORS = "errors"
    TIMECODE = "timecode"
    DEVICE_TYPE = "device_type"
    RAW = "raw"


class TransportMode(str, Enum):
    STOP = "STOP"
    PLAY = "PLAY"
    FAST_FORWARD = "FAST_FORWARD"
    REWIND = "REWIND"
    JOG_FORWARD = "JOG_FORWARD"
    JOG_REVERSE = "JOG_REVERSE"
    JOG_STILL = "JOG_STILL"
    UNKNOWN = "UNKNOWN"


class ReplyKind(str, Enum):
    ACK = "ACK"
    NAK = "NAK"
    BUSY = "BUSY"
    STRUCTURED = "STRUCTURED"
    NO_REPLY = "NO_REPLY"
    UNKNOWN = "UNKNOWN"


class CartStatusCode(IntEnum):
    IDLE = 0x00
    MOVING = 0x01
    CALIBRATING = 0x02
    ERROR = 0x03
    READY = 0x04
    HOMING = 0x05
    LOADING = 0x06
    UNLOADING = 0x07
    MAINTENANCE = 0x08
    UNKNOWN = 0xFF


# Ordered: the first matching prefix wins.
MODE_PREFIXES: Final[Tuple[Tuple[str, TransportMode], ...]] = (
    ("f77e", TransportMode.STOP),
    ("d7bd", TransportMode.PLAY),
    ("f79f", TransportMode.FAST_FORWARD),
    ("f7f7", TransportMode.REWIND),
    ("6f77", TransportMode.JOG_FORWARD),
    ("6f6f", TransportMode.JOG_REVERSE),
)
JOG_STILL_MARKER: Final[int] = 0x3E

# A cart in Sony mode answers with a run of sync bytes.
SYNC_BYTE: Final[int] = 0x55
SYNC_MIN_LENGTH: Final[int] = 32
SYNC_RATIO: Final[float] = 0.8
SONY_CART_STATES: Final[dict] = {
    0x57: "SONY_ACTIVE",
    0x00: "SONY_STANDBY",
    0xFF: "SONY_ERROR",
}

ERROR_CODES: Final[dict] = {
    0x01: "MECHANICAL_JAM",
    0x02: "POSITION_ERROR",
    0x03: "TIMEOUT",
    0x04: "COMMUNICATION_ERROR",
    0x05: "CALIBRATION_FAILED",
    0x06: "SAFETY_INTERLOCK",
    0x07: "POWER_FAULT",
    0x08: "SENSOR_ERROR",
}

# Sony 9-pin acknowledgements
SONY_ACK: Final[bytes] = bytes((0x10, 0x01))
SONY_NAK: Final[bytes] = bytes((0x11, 0x12))

DEVICE_SERIES: Final[dict] = {
    0xBA: "HDW Series VTR",
    0x10: "BVW Series",
    0x20: "DVW Series",
    0x30: "HDW Series",
    0x40: "J Series",
    0x50: "MSW Series",
    0x60: "DSR Series",
    0x70: "PDW Series",
}

NTSC: Final[str] = "NTSC/525"
PAL: Final[str] = "PAL/625"

# (device id, sub type) -> (model, video standard). Several rows share a
# model name across id ranges; treat the result as a hint only.
DEVICE_MODELS: Final[dict] = {
    (0x20, 0x00): ("BVW-10", NTSC),
    (0x20, 0x10): ("BVW-35", NTSC),
    (0x20, 0x22): ("BVW-95", NTSC),
    (0x20, 0x25): ("BVW-75", NTSC),
    (0x21, 0x10): ("BVW-35", PAL),
    (0x21, 0x2D): ("BVW-75S", PAL),
    (0xB0, 0x10): ("DVW-500", NTSC),
    (0xB0, 0x14): ("DVW-2000", NTSC),
    (0xB1, 0x10): ("DVW-500", PAL),
    (0xB1, 0x14): ("DVW-2000", PAL),
    (0xB0, 0x60): ("MSW-M2000/M2000E", NTSC),
    (0xB0, 0x63): ("MSW-M2100/M2100E", NTSC),
    (0x20, 0xE0): ("HDW-500", NTSC),
    (0x22, 0xE0): ("HDW-F500", NTSC),
    (0x22, 0xE2): ("HDW-2000/D5000/M2000/S2000", NTSC),
    (0x22, 0xE3): ("HDW-A2100/M2100", NTSC),
    (0x22, 0xE5): ("HDW-S280", NTSC),
    (0x21, 0xE0): ("HDW-500", PAL),
    (0x23, 0xE0): ("HDW-F500", PAL),
    (0x23, 0xE2): ("HDW-2000/D5000/M2000/S2000", PAL),
    (0x23, 0xE3): ("HDW-A2100/M2100", PAL),
    (0x23, 0xE5): ("HDW-S280", PAL),
    (0x22, 0xE4): ("J-H3", NTSC),
    (0x23, 0xE4): ("J-H3", PAL),
    (0x22, 0xA0): ("SRW-5000", NTSC),
    (0x23, 0xA0): ("SRW-5000", PAL),
    # custom firmware units report BA BA
    (0xBA, 0xBA): ("HDW-M2100P (custom firmware)", PAL),
}


@dataclass(frozen=True)
class RawFrame:
    data: bytes

    @property
    def raw_hex(self) -> str:
        return hex_dump(self.data)


@dataclass(frozen=True)
class Reply:
    kind: ReplyKind
    raw_hex: str = ""


@dataclass(frozen=True)
class DeviceError:
    code: int
    description: str


@dataclass(frozen=True)
class DeviceStatus:
    """Transport status of a VTR, produced fresh for every probe."""
    mode: TransportMode = TransportMode.UNKNOWN
    tape_present: Optional[bool] = None
    errors: Tuple[DeviceError, ...] = ()
    timecode: str = ""
    raw_hex: str = ""


@dataclass(frozen=True)
class CartStatus:
    status_code: int = 0xFF
    status_text: str = "UNKNOWN"
    ready: bool = False
    moving: bool = False
    error_count: int = 0
    raw_hex: str = ""


@dataclass(frozen=True)
class BinUpdate:
    total: int = 0
    occupied: Tuple[int, ...] = ()
    empty: Tuple[int, ...] = ()
    raw_hex: str = ""


@dataclass(frozen=True)
class CartPosition:
    current: int = 0
    total: int = 0
    raw_hex: str = ""


@dataclass(frozen=True)
class ErrorReport:
    errors: Tuple[DeviceError, ...] = ()
    raw_hex: str = ""


@dataclass(frozen=True)
class TimecodeReading:
    timecode: str
    valid: bool
    hours: int = 0
    minutes: int = 0
    seconds: int = 0
    frames: int = 0
    raw_hex: str = ""


@dataclass(frozen=True)
class DeviceModel:
    device_id: int
    sub_type: int
    version: int
    model: str = "Unknown model"
    series: str = "Unknown series"
    video_standard: str = "unknown"
    raw_hex: str = ""


Interpretation = Union[
    Reply, DeviceStatus, CartStatus, BinUpdate, CartPosition,
    ErrorReport, TimecodeReading, DeviceModel, RawFrame,
]


def classify_reply(data: bytes) -> ReplyKind:
    if not data:
        return ReplyKind.NO_REPLY
    if len(data) == 1:
        return {ACK: ReplyKind.ACK, NAK: ReplyKind.NAK, BUSY: ReplyKind.BUSY}.get(data[0], ReplyKind.UNKNOWN)
    if data[:2] == SONY_ACK:
        return ReplyKind.ACK
    if data[:2] == SONY_NAK:
        return ReplyKind.NAK
    if data[0] == STX:
        return ReplyKind.STRUCTURED
    return ReplyKind.UNKNOWN


def decode_mode(data: bytes) -> TransportMode:
    """
    Match the leading bytes of a status reply against the mode prefix table.
    Args:
        data (bytes): Raw status reply
    Returns:
        TransportMode: First matching mode, JOG_STILL for a jog-forward reply
        carrying the still marker, UNKNOWN otherwise
    """
    text = bytes(data).hex()
    for prefix, mode in MODE_PREFIXES:
        if text.startswith(prefix):
            if mode is TransportMode.JOG_FORWARD and JOG_STILL_MARKER in data:
                return TransportMode.JOG_STILL
            return mode
    return TransportMode.UNKNOWN


def decode_tape_present(data: bytes) -> Optional[bool]:
    if len(data) < 3:
        return None
    return bool(data[1] & 0x01)


def describe_error(code: int) -> str:
    return ERROR_CODES.get(code, f"unknown error {code}")


def decode_errors(data: bytes) -> Tuple[DeviceError, ...]:
    """Every non-zero byte strictly between the first and last byte is one error code."""
    if len(data) < 3:
        return ()
    return tuple(DeviceError(b, describe_error(b)) for b in data[1:-1] if b)


def decode_bins(data: bytes) -> BinUpdate:
    """
    Decode an inventory reply.
    Byte 1 carries the slot count and byte 2 the number of occupied slots.
    The reply does not say which slots are occupied; slots 1..count are
    marked occupied in index order.
    """
    if len(data) < 3:
        return BinUpdate(raw_hex=hex_dump(data))
    total = data[1]
    count = min(data[2], total)
    return BinUpdate(
        total=total,
        occupied=tuple(range(1, count + 1)),
        empty=tuple(range(count + 1, total + 1)),
        raw_hex=hex_dump(data),
    )


def is_sync_reply(data: bytes) -> bool:
    return len(data) >= SYNC_MIN_LENGTH and data.count(SYNC_BYTE) > len(data) * SYNC_RATIO


def decode_sync_cart_status(data: bytes) -> CartStatus:
    """
    Decode a sync-heavy reply from a cart running in Sony mode.
    A pure sync run is idle, a single other byte is the status byte and
    several other bytes are a data payload.
    """
    payload = bytes(b for b in data if b != SYNC_BYTE)
    code = SYNC_BYTE
    if not payload:
        text = "SONY_IDLE"
    elif len(payload) == 1:
        code = payload[0]
        text = SONY_CART_STATES.get(code, f"SONY_STATUS_{code:02X}")
    else:
        text = "SONY_DATA_RESPONSE"
    failed = text == "SONY_ERROR"
    return CartStatus(
        status_code=code,
        status_text=text,
        ready=not failed,
        moving=False,
        error_count=1 if failed else 0,
        raw_hex=hex_dump(data),
    )


def decode_cart_status(data: bytes) -> CartStatus:
    if is_sync_reply(data):
        return decode_sync_cart_status(data)
    if len(data) < 3:
        return CartStatus(raw_hex=hex_dump(data))
    code = data[1]
    try:
        status = CartStatusCode(code)
        text = status.name
    except ValueError:
        status = None
        text = f"STATUS_{code:02X}"
    return CartStatus(
        status_code=code,
        status_text=text,
        ready=status in (CartStatusCode.IDLE, CartStatusCode.READY),
        moving=status in (CartStatusCode.MOVING, CartStatusCode.HOMING,
                          CartStatusCode.LOADING, CartStatusCode.UNLOADING),
        error_count=data[2],
        raw_hex=hex_dump(data),
    )


def decode_position(data: bytes) -> CartPosition:
    if len(data) < 4:
        return CartPosition(raw_hex=hex_dump(data))
    return CartPosition(current=data[1] * 256 + data[2], total=data[3], raw_hex=hex_dump(data))


def decode_timecode(data: bytes) -> TimecodeReading:
    """
    Decode a packed LTC reply.
    Args:
        data (bytes): At least 3 bytes, packed as hours<<18 | minutes<<12 | seconds<<6 | frames
    Returns:
        TimecodeReading: HH:MM:SS:FF, or a TC: marker when the reply is short or out of range
    """
    if len(data) < 3:
        return TimecodeReading(timecode="TC:NO_RESPONSE", valid=False, raw_hex=hex_dump(data))
    packed = (data[0] << 16) | (data[1] << 8) | data[2]
    frames = packed & 0x3F
    seconds = (packed >> 6) & 0x3F
    minutes = (packed >> 12) & 0x3F
    hours = (packed >> 18) & 0x1F
    if hours > 23 or minutes > 59 or seconds > 59 or frames > 29:
        return TimecodeReading(timecode="TC:NO_DECODE", valid=False, raw_hex=hex_dump(data))
    return TimecodeReading(
        timecode=f"{hours:02d}:{minutes:02d}:{seconds:02d}:{frames:02d}",
        valid=True, hours=hours, minutes=minutes, seconds=seconds, frames=frames,
        raw_hex=hex_dump(data),
    )


def decode_device_type(data: bytes) -> DeviceModel:
    if len(data) < 3:
        return DeviceModel(device_id=0, sub_type=0, version=0, raw_hex=hex_dump(data))
    device_id, sub_type, version = data[0], data[1], data[2]
    model, standard = DEVICE_MODELS.get((device_id, sub_type), ("Unknown model", "unknown"))
    return DeviceModel(
        device_id=device_id,
        sub_type=sub_type,
        version=version,
        model=model,
        series=DEVICE_SERIES.get(device_id, "Unknown series"),
        video_standard=standard,
        raw_hex=hex_dump(data),
    )


def decode_device_status(
    data: bytes, timecode: str = "", errors: Tuple[DeviceError, ...] = ()
) -> DeviceStatus:
    """Mode and tape presence come from a status reply; errors only from an error-status reply."""
    return DeviceStatus(
        mode=decode_mode(data),
        tape_present=decode_tape_present(data),
        errors=tuple(errors),
        timecode=timecode,
        raw_hex=hex_dump(data),
    )


def interpret(decoder: Decoder, data: bytes) -> Interpretation:
    """
    Map a raw reply to the record selected by decoder.
    Args:
        decoder (Decoder): Interpretation attached to the command
        data (bytes): Raw reply bytes
    Returns:
        Interpretation: Decoded record; RawFrame for Decoder.RAW
    """
    data = bytes(data or b"")
    if decoder is Decoder.REPLY:
        return Reply(kind=classify_reply(data), raw_hex=hex_dump(data))
    if decoder is Decoder.DEVICE_STATUS:
        return decode_device_status(data)
    if decoder is Decoder.CART_STATUS:
        return decode_cart_status(data)
    if decoder is Decoder.BINS:
        return decode_bins(data)
    if decoder is Decoder.POSITION:
        return decode_position(data)
    if decoder is Decoder.ERRORS:
        return ErrorReport(errors=decode_errors(data), raw_hex=hex_dump(data))
    if decoder is Decoder.TIMECODE:
        return decode_timecode(data)
    if decoder is Decoder.DEVICE_TYPE:
        return decode_device_type(data)
    return RawFrame(data=data)
