from __future__ import annotations

from typing import Final, Optional


class FlexiCartFrame:
    """
    Implements the fixed 9-byte FlexiCart frame and the checksum families
    used by the Sony 9-pin command table.
    Frame layout:
        STX, byte-count, unit-addr-1, unit-addr-2, block-type, command, control, data, checksum
    The checksum is the two's complement of bytes 1..7, so that bytes 1..8
    sum to zero modulo 256.
    """
    STX: Final[int] = 0x02
    ETX: Final[int] = 0x03
    ACK: Final[int] = 0x04
    NAK: Final[int] = 0x05
    BUSY: Final[int] = 0x06
    BYTE_COUNT: Final[int] = 0x06
    UNIT_ADDRESS: Final[int] = 0x01
    LENGTH: Final[int] = 9

    DEFAULT_BLOCK_TYPE: Final[int] = 0x00
    DEFAULT_CONTROL: Final[int] = 0x00
    DEFAULT_DATA: Final[int] = 0x80

    @staticmethod
    def checksum(data: bytes) -> int:
        """
        Calculate the FlexiCart checksum over the given bytes.
        Args:
            data (bytes): Bytes 1..7 of the frame (everything between STX and checksum)
        Returns:
            int: Checksum byte
        """
        return (0x100 - (sum(data) & 0xFF)) & 0xFF

    @staticmethod
    def _check_byte(name: str, value: int) -> int:
        value = int(value)
        if not (0 <= value <= 0xFF):
            raise ValueError(f"{name} out of range (u8): {value}")
        return value

    @staticmethod
    def encode(command: int, *, cart: int = 0x01, control: int = DEFAULT_CONTROL,
               data: int = DEFAULT_DATA, block_type: int = DEFAULT_BLOCK_TYPE) -> bytes:
        """
        Build one FlexiCart frame.
        Args:
            command (int): Command byte
            cart (int): Cart selector (unit address 2)
            control (int): Control byte
            data (int): Data byte
            block_type (int): Block type byte
        Returns:
            bytes: 9-byte frame
        Raises:
            ValueError: If any field does not fit in one byte
        """
        check = FlexiCartFrame._check_byte
        body = bytes((
            FlexiCartFrame.BYTE_COUNT,
            FlexiCartFrame.UNIT_ADDRESS,
            check("cart", cart),
            check("block_type", block_type),
            check("command", command),
            check("control", control),
            check("data", data),
        ))
        return bytes((FlexiCartFrame.STX,)) + body + bytes((FlexiCartFrame.checksum(body),))

    @staticmethod
    def verify(frame: bytes) -> bool:
        """
        Check that a frame is a well-formed 9-byte FlexiCart frame.
        Args:
            frame (bytes): Candidate frame
        Returns:
            bool: True if STX, length and checksum are all correct
        """
        if len(frame) != FlexiCartFrame.LENGTH or frame[0] != FlexiCartFrame.STX:
            return False
        return sum(frame[1:]) & 0xFF == 0


class SonyChecksum:
    """
    Checksum modes of the Sony 9-pin command table.
    """
    SUM: Final[str] = "sum"
    XOR: Final[str] = "xor"
    NONE: Final[str] = "none"

    @staticmethod
    def sum8(data: bytes) -> int:
        return sum(data) & 0xFF

    @staticmethod
    def xor8(data: bytes) -> int:
        acc = 0
        for b in data:
            acc ^= b
        return acc

    @staticmethod
    def apply(data: bytes, mode: str) -> bytes:
        """
        Append the checksum selected by mode.
        Args:
            data (bytes): Command bytes without checksum
            mode (str): One of "sum", "xor", "none"
        Returns:
            bytes: Command bytes followed by the checksum, or unchanged for "none"
        Raises:
            ValueError: On an unknown mode
        """
        if mode == SonyChecksum.SUM:
            return bytes(data) + bytes((SonyChecksum.sum8(data),))
        if mode == SonyChecksum.XOR:
            return bytes(data) + bytes((SonyChecksum.xor8(data),))
        if mode == SonyChecksum.NONE:
            return bytes(data)
        raise ValueError(f"unknown checksum mode: {mode}")


def hex_dump(data: Optional[bytes]) -> str:
    """Space separated upper-case hex, as shown in logs and CLI output."""
    if not data:
        return ""
    return " ".join(f"{b:02X}" for b in data)


# Module-level aliases
STX = FlexiCartFrame.STX
ETX = FlexiCartFrame.ETX
ACK = FlexiCartFrame.ACK
NAK = FlexiCartFrame.NAK
BUSY = FlexiCartFrame.BUSY
