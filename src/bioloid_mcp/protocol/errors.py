"""Error codes reported by the packet codec, the bus and device status packets.

A status packet carries an 8-bit error byte where each bit flags a distinct
fault. The host side also needs a few outcomes that have no bit in that byte
(more input needed, no reply, frame too large for the buffer), so ``Error``
is a small sum type: either a set of status flags or one of those sentinels.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntFlag
from typing import ClassVar


class StatusError(IntFlag):
    """Error bits carried in the error byte of a status packet."""

    NONE = 0x00
    INPUT_VOLTAGE = 0x01
    ANGLE_LIMIT = 0x02
    OVERHEATING = 0x04
    RANGE = 0x08
    CHECKSUM = 0x10
    OVERLOAD = 0x20
    INSTRUCTION = 0x40
    RESERVED = 0x80


# Display names, indexed by bit position
_FLAG_NAMES = [
    "InputVoltage",
    "AngleLimit",
    "Overheating",
    "Range",
    "Checksum",
    "Overload",
    "Instruction",
    "Reserved",
]


class ErrorKind(Enum):
    FLAGS = "flags"
    NOT_DONE = "not_done"
    TIMEOUT = "timeout"
    TOO_MUCH_DATA = "too_much_data"


@dataclass(frozen=True)
class Error:
    """Result of consuming bytes or exchanging packets.

    ``kind`` selects the variant; ``flags`` is only meaningful for
    ``ErrorKind.FLAGS`` (where ``StatusError.NONE`` means success).
    """

    kind: ErrorKind = ErrorKind.FLAGS
    flags: StatusError = StatusError.NONE

    NONE: ClassVar[Error]
    CHECKSUM: ClassVar[Error]
    NOT_DONE: ClassVar[Error]
    TIMEOUT: ClassVar[Error]
    TOO_MUCH_DATA: ClassVar[Error]

    @classmethod
    def from_status(cls, value: int) -> Error:
        """Build a flag error from the error byte of a status packet."""
        if not 0 <= value <= 0xFF:
            raise ValueError(f"Status error byte must be 0-255, got {value}")
        return cls(ErrorKind.FLAGS, StatusError(value))

    @property
    def is_error(self) -> bool:
        """True for anything other than a clean ``NONE``."""
        return self != Error.NONE

    def as_uint8(self) -> int:
        """Return the wire error byte. Only flag errors have one."""
        if self.kind is not ErrorKind.FLAGS:
            raise ValueError(f"{self.kind.name} has no status byte")
        return int(self.flags)

    def __str__(self) -> str:
        if self.kind is ErrorKind.NOT_DONE:
            return "NotDone"
        if self.kind is ErrorKind.TIMEOUT:
            return "Timeout"
        if self.kind is ErrorKind.TOO_MUCH_DATA:
            return "TooMuchData"
        if not self.flags:
            return "None"
        return " ".join(
            name for bit, name in enumerate(_FLAG_NAMES) if self.flags & (1 << bit)
        )

    def __repr__(self) -> str:
        return f"Error({self})"


Error.NONE = Error(ErrorKind.FLAGS, StatusError.NONE)
Error.CHECKSUM = Error(ErrorKind.FLAGS, StatusError.CHECKSUM)
Error.NOT_DONE = Error(ErrorKind.NOT_DONE)
Error.TIMEOUT = Error(ErrorKind.TIMEOUT)
Error.TOO_MUCH_DATA = Error(ErrorKind.TOO_MUCH_DATA)
