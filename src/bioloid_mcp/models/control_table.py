"""Control table: a device's registers as typed little-endian fields.

Base layout (offsets into the table)::

    +-------+---------+----+------+-----+ ... +-----+
    | Model | Version | ID | Baud | RDT |     | LED |
    | 0x00  | 0x02    |0x03| 0x04 |0x05 |     |0x19 |
    | 2 B   | 1 B     |1 B | 1 B  | 1 B |     | 1 B |
    +-------+---------+----+------+-----+ ... +-----+

Device layouts add their own registers, normally starting at 0x06. The
leading ``num_persistent_bytes`` of the table are saved to and restored
from a storage backend; the rest only lives in memory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Iterable, Protocol

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_ID = 0x00
DEFAULT_BAUD = 0x01  # 1 Mbit/s
DEFAULT_RDT = 250  # 500 usec
BAUD_CLOCK = 2_000_000  # bit rate = BAUD_CLOCK / (baud + 1)

MAX_CTL_BYTES = 0x100  # offsets are a single byte on the wire
VALID_WIDTHS = (1, 2, 4)


class Offset(IntEnum):
    """Offsets of the registers every device has."""

    MODEL = 0x00  # 2 bytes
    VERSION = 0x02  # firmware version
    ID = 0x03  # device ID
    BAUD = 0x04  # bit rate = 2,000,000 / (val + 1)
    RDT = 0x05  # return delay time, val * 2 usecs
    LED = 0x19  # status LED


class StorageError(Enum):
    NONE = 0
    FAILED = 1


class ControlTableStorage(Protocol):
    """Backend that persists part of a control table."""

    def load(self, offset: int, num_bytes: int) -> bytes | None:
        """Return ``num_bytes`` stored at ``offset``, or ``None`` on failure."""
        ...

    def save(self, offset: int, data: bytes) -> StorageError:
        ...


class ControlTableHooks(Protocol):
    """Device-specific reactions to table access."""

    def populate_entry(self, table: ControlTable, offset: int) -> None:
        """Called before a field is read, e.g. to sample a sensor."""
        ...

    def entry_modified(self, table: ControlTable, offset: int) -> None:
        """Called after a field was written."""
        ...


class BaudRatePort(Protocol):
    def set_baud_rate(self, baud_rate: int) -> None:
        ...


@dataclass(frozen=True)
class Register:
    """A named field in the control table."""

    name: str
    offset: int
    width: int = 1
    signed: bool = False
    default: int | None = None


BASE_REGISTERS = (
    Register("model", Offset.MODEL, width=2),
    Register("version", Offset.VERSION),
    Register("id", Offset.ID, default=DEFAULT_DEVICE_ID),
    Register("baud", Offset.BAUD, default=DEFAULT_BAUD),
    Register("return_delay", Offset.RDT, default=DEFAULT_RDT),
    Register("led", Offset.LED),
)


def baud_rate_from_divisor(divisor: int) -> int:
    """Convert the value of the baud register to bits per second."""
    return BAUD_CLOCK // (divisor + 1)


def _check_width(width: int) -> None:
    if width not in VALID_WIDTHS:
        raise ValueError(f"Field width must be one of {VALID_WIDTHS}, got {width}")


class ControlTable:
    """Fixed-size register table with typed accessors.

    Every access of ``width`` bytes at ``offset`` must satisfy
    ``offset + width <= num_ctl_bytes``; anything else is a programming
    error and raises ``IndexError``.

    Device behaviour plugs in through ``hooks`` (or by overriding
    :meth:`populate_entry`, :meth:`entry_modified` and
    :meth:`set_to_initial_values` in a subclass).

    Usage::

        table = ControlTable(0x20, 0x10, FileStorage("servo.ctl"), port=port)
        table.load()
        table.set_u8(Offset.ID, 7)
        table.save()
    """

    def __init__(
        self,
        num_ctl_bytes: int,
        num_persistent_bytes: int,
        storage: ControlTableStorage,
        port: BaudRatePort | None = None,
        ctl_bytes: bytearray | None = None,
        registers: Iterable[Register] = (),
        hooks: ControlTableHooks | None = None,
    ) -> None:
        if storage is None:
            raise ValueError("A control table needs a storage backend")
        if not 0 < num_ctl_bytes <= MAX_CTL_BYTES:
            raise ValueError(
                f"num_ctl_bytes must be 1-{MAX_CTL_BYTES}, got {num_ctl_bytes}"
            )
        if not 0 <= num_persistent_bytes <= num_ctl_bytes:
            raise ValueError(
                f"num_persistent_bytes <= num_ctl_bytes violated: "
                f"{num_persistent_bytes} > {num_ctl_bytes}"
            )
        if ctl_bytes is None:
            ctl_bytes = bytearray(num_ctl_bytes)
        elif len(ctl_bytes) != num_ctl_bytes:
            raise ValueError(
                f"Control bytes must be {num_ctl_bytes} long, got {len(ctl_bytes)}"
            )

        self._num_ctl_bytes = num_ctl_bytes
        self._num_persistent_bytes = num_persistent_bytes
        self._ctl_bytes = ctl_bytes
        self._storage = storage
        self._hooks = hooks
        self.port = port

        self._registers: dict[str, Register] = {}
        for reg in (*BASE_REGISTERS, *registers):
            self._registers[reg.name] = reg

    @property
    def num_ctl_bytes(self) -> int:
        return self._num_ctl_bytes

    @property
    def num_persistent_bytes(self) -> int:
        return self._num_persistent_bytes

    @property
    def ctl_bytes(self) -> bytes:
        """A snapshot of the raw table contents."""
        return bytes(self._ctl_bytes)

    @property
    def registers(self) -> list[Register]:
        return list(self._registers.values())

    # ─── typed access ────────────────────────────────────────────────

    def _check_bounds(self, offset: int, width: int) -> None:
        if offset < 0 or offset + width > self._num_ctl_bytes:
            raise IndexError(
                f"offset + width <= num_ctl_bytes violated: "
                f"{offset} + {width} > {self._num_ctl_bytes}"
            )

    def get(self, offset: int, width: int = 1, signed: bool = False) -> int:
        """Read a little-endian integer of ``width`` bytes at ``offset``."""
        _check_width(width)
        self._check_bounds(offset, width)
        self.populate_entry(offset)
        return int.from_bytes(
            self._ctl_bytes[offset : offset + width], "little", signed=signed
        )

    def set(self, offset: int, value: int, width: int = 1) -> None:
        """Store ``value`` as a little-endian integer of ``width`` bytes.

        Accepts anything that fits the width either signed or unsigned;
        negative values are stored in two's complement.
        """
        _check_width(width)
        self._check_bounds(offset, width)
        bits = 8 * width
        if not -(1 << (bits - 1)) <= value < (1 << bits):
            raise ValueError(f"Value {value} does not fit in {width} byte(s)")
        mask = (1 << bits) - 1
        self._ctl_bytes[offset : offset + width] = (value & mask).to_bytes(
            width, "little"
        )
        self.entry_modified(offset)

    def get_u8(self, offset: int) -> int:
        return self.get(offset, 1)

    def get_u16(self, offset: int) -> int:
        return self.get(offset, 2)

    def get_u32(self, offset: int) -> int:
        return self.get(offset, 4)

    def get_i8(self, offset: int) -> int:
        return self.get(offset, 1, signed=True)

    def get_i16(self, offset: int) -> int:
        return self.get(offset, 2, signed=True)

    def get_i32(self, offset: int) -> int:
        return self.get(offset, 4, signed=True)

    def set_u8(self, offset: int, value: int) -> None:
        self.set(offset, value, 1)

    def set_u16(self, offset: int, value: int) -> None:
        self.set(offset, value, 2)

    def set_u32(self, offset: int, value: int) -> None:
        self.set(offset, value, 4)

    def set_i8(self, offset: int, value: int) -> None:
        self.set(offset, value, 1)

    def set_i16(self, offset: int, value: int) -> None:
        self.set(offset, value, 2)

    def set_i32(self, offset: int, value: int) -> None:
        self.set(offset, value, 4)

    # ─── raw ranges (READ / WRITE instructions) ──────────────────────

    def read(self, offset: int, length: int) -> bytes:
        """Return ``length`` raw bytes starting at ``offset``.

        The populate hook runs for every byte offset in the range.
        """
        self._check_bounds(offset, length)
        for idx in range(offset, offset + length):
            self.populate_entry(idx)
        return bytes(self._ctl_bytes[offset : offset + length])

    def write(self, offset: int, data: bytes) -> None:
        """Write raw bytes starting at ``offset``.

        The modified hook runs for every byte offset in the range, in
        order, after the whole range has been stored.
        """
        self._check_bounds(offset, len(data))
        self._ctl_bytes[offset : offset + len(data)] = data
        for idx in range(offset, offset + len(data)):
            self.entry_modified(idx)

    # ─── named registers ─────────────────────────────────────────────

    def register(self, name: str) -> Register:
        if name not in self._registers:
            raise ValueError(
                f"Unknown register '{name}'. Valid: {list(self._registers)}"
            )
        return self._registers[name]

    def get_register(self, name: str) -> int:
        reg = self.register(name)
        return self.get(reg.offset, reg.width, signed=reg.signed)

    def set_register(self, name: str, value: int) -> None:
        reg = self.register(name)
        self.set(reg.offset, value, reg.width)

    def to_dict(self) -> dict:
        """Named register values, skipping registers past the end of the table."""
        return {
            reg.name: {
                "offset": reg.offset,
                "width": reg.width,
                "value": self.get(reg.offset, reg.width, signed=reg.signed),
            }
            for reg in self._registers.values()
            if reg.offset + reg.width <= self._num_ctl_bytes
        }

    # ─── initial values and persistence ──────────────────────────────

    def set_to_initial_values(self) -> None:
        """Zero the table, then write every register default."""
        self._ctl_bytes[:] = bytes(self._num_ctl_bytes)
        for reg in self._registers.values():
            if reg.default is not None:
                self.set(reg.offset, reg.default, reg.width)

    def load(self) -> bool:
        """Restore the persistent range, or fall back to initial values.

        Returns:
            True if the persistent range came from storage.
        """
        self._ctl_bytes[:] = bytes(self._num_ctl_bytes)
        try:
            data = self._storage.load(0, self._num_persistent_bytes)
        except OSError as e:
            logger.debug("Control table storage raised: %s", e)
            data = None

        if data is not None and len(data) == self._num_persistent_bytes:
            self._ctl_bytes[: self._num_persistent_bytes] = data
            return True

        logger.debug("No stored control table, using initial values")
        self.set_to_initial_values()
        return False

    def save(self) -> StorageError:
        """Write the persistent range to storage."""
        return self._storage.save(
            0, bytes(self._ctl_bytes[: self._num_persistent_bytes])
        )

    # ─── hooks ───────────────────────────────────────────────────────

    def populate_entry(self, offset: int) -> None:
        """Called before the field at ``offset`` is read."""
        if self._hooks is not None:
            self._hooks.populate_entry(self, offset)

    def entry_modified(self, offset: int) -> None:
        """Called after the field starting at ``offset`` was written.

        A new baud divisor is pushed to the port straight away.
        """
        if offset == Offset.BAUD and self.port is not None:
            baud_rate = baud_rate_from_divisor(self.get_u8(Offset.BAUD))
            logger.info("Baud register changed, switching to %d bps", baud_rate)
            self.port.set_baud_rate(baud_rate)
        if self._hooks is not None:
            self._hooks.entry_modified(self, offset)

    def __repr__(self) -> str:
        return (
            f"ControlTable(num_ctl_bytes={self._num_ctl_bytes}, "
            f"num_persistent_bytes={self._num_persistent_bytes})"
        )
