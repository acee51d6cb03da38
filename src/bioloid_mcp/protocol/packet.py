"""Packet model and byte-synchronous parser for the Bioloid serial bus.

Packet layout::

    +-----------+------+--------+---------+-------------------+----------+
    | Sync      |  ID  | Length | Command |    Parameters     | Checksum |
    | 0xFF 0xFF |1 byte| 1 byte | 1 byte  | (Length - 2) bytes|  1 byte  |
    +-----------+------+--------+---------+-------------------+----------+

- ID: device address, 0xFE broadcasts to every device
- Length: number of parameter bytes + 2
- Command: instruction opcode, or the error byte in a status packet
- Checksum: ~(ID + Length + Command + Parameters) & 0xFF

The parser consumes one byte at a time so it can resynchronise on a noisy
stream: any number of extra 0xFF bytes before the ID is absorbed, and a
single 0xFF followed by anything else drops back to idle.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable

from .errors import Error

logger = logging.getLogger(__name__)

SYNC_BYTE = 0xFF
HEADER_SIZE = 5  # sync(2) + id + length + command
MAX_PARAMS = 0xFF - 2  # length is one byte and counts the command and checksum


class State(Enum):
    """Parser states."""

    IDLE = 0  # waiting for the first 0xFF
    FF_1ST_RCVD = 1
    FF_2ND_RCVD = 2  # next non-0xFF byte is the ID
    ID_RCVD = 3
    LENGTH_RCVD = 4
    COMMAND_RCVD = 5  # reading parameters, then the checksum


class Packet:
    """A single bus packet, usable both as a parser target and a builder.

    Parameter storage has a fixed capacity chosen at construction. A caller
    may pass its own ``params`` buffer; the packet writes into it in place
    and never past ``max_params``, regardless of the length declared on the
    wire.

    Usage::

        pkt = Packet(max_params=32)
        for byte in stream:
            err = pkt.process_byte(byte)
            if err != Error.NOT_DONE:
                break
    """

    def __init__(self, max_params: int = 0, params: bytearray | None = None) -> None:
        if not 0 <= max_params <= MAX_PARAMS:
            raise ValueError(
                f"max_params <= MAX_PARAMS ({MAX_PARAMS}) violated: {max_params}"
            )
        if params is None:
            params = bytearray(max_params)
        elif len(params) < max_params:
            raise ValueError(
                f"Parameter buffer holds {len(params)} bytes, need {max_params}"
            )

        self._state = State.IDLE
        self._max_params = max_params
        self._params = params

        self._id = 0x00
        self._length = 2
        self._command = 0x01  # PING
        self._param_idx = 0
        self._checksum = 0

    @classmethod
    def build(cls, id: int, command: int, params: bytes = b"") -> Packet:
        """Create a packet sized for ``params`` with its checksum filled in."""
        pkt = cls(len(params))
        pkt.id = id
        pkt.command = command
        pkt.set_params(params)
        pkt.update_checksum()
        return pkt

    # ─── fields ──────────────────────────────────────────────────────

    @property
    def id(self) -> int:
        return self._id

    @id.setter
    def id(self, value: int) -> None:
        self._id = _check_byte("ID", value)

    @property
    def length(self) -> int:
        return self._length

    @property
    def command(self) -> int:
        return self._command

    @command.setter
    def command(self, value: int) -> None:
        self._command = _check_byte("Command", value)

    @property
    def error_code(self) -> int:
        """The error byte of a status packet (same slot as the command)."""
        return self._command

    @error_code.setter
    def error_code(self, value: int) -> None:
        self._command = _check_byte("Error code", value)

    @property
    def num_params(self) -> int:
        """Number of parameters declared by the length field."""
        if self._length <= 2:
            return 0
        return self._length - 2

    @property
    def max_params(self) -> int:
        return self._max_params

    @property
    def params(self) -> bytes:
        """The parameter bytes actually stored (at most ``max_params``)."""
        return bytes(self._params[: min(self.num_params, self._max_params)])

    @property
    def checksum(self) -> int:
        return self._checksum

    @property
    def state(self) -> State:
        return self._state

    def set_params(self, data: bytes) -> None:
        """Copy ``data`` into parameter storage and update the length."""
        self.set_num_params(len(data))
        self._params[: len(data)] = data

    def set_num_params(self, count: int) -> None:
        """Set the length field for ``count`` parameters already in the buffer."""
        if not 0 <= count <= self._max_params:
            raise ValueError(
                f"num_params <= max_params ({self._max_params}) violated: {count}"
            )
        self._length = 2 + count

    def update_checksum(self) -> None:
        """Recompute the checksum from the current field values.

        Not called automatically; do it after the last field change and
        before serialising.
        """
        total = self._id + self._length + self._command
        for idx in range(min(self.num_params, self._max_params)):
            total += self._params[idx]
        self._checksum = ~total & 0xFF

    # ─── parsing ─────────────────────────────────────────────────────

    def reset(self) -> None:
        """Drop any partially parsed packet and wait for a new sync."""
        self._state = State.IDLE

    def process_byte(self, byte: int) -> Error:
        """Feed one byte to the parser.

        Returns:
            ``Error.NOT_DONE`` until the checksum byte arrives, then
            ``Error.NONE``, ``Error.CHECKSUM`` or ``Error.TOO_MUCH_DATA``.
        """
        state = self._state
        err = Error.NOT_DONE

        if state is State.IDLE:
            if byte == SYNC_BYTE:
                state = State.FF_1ST_RCVD

        elif state is State.FF_1ST_RCVD:
            state = State.FF_2ND_RCVD if byte == SYNC_BYTE else State.IDLE

        elif state is State.FF_2ND_RCVD:
            # Extra 0xFF bytes before the ID are treated as more sync
            if byte != SYNC_BYTE:
                self._id = byte
                self._checksum = byte
                state = State.ID_RCVD

        elif state is State.ID_RCVD:
            self._length = byte
            self._checksum = (self._checksum + byte) & 0xFF
            state = State.LENGTH_RCVD

        elif state is State.LENGTH_RCVD:
            self._command = byte
            self._checksum = (self._checksum + byte) & 0xFF
            self._param_idx = 0
            state = State.COMMAND_RCVD

        elif state is State.COMMAND_RCVD:
            if self._param_idx >= self.num_params:
                err = self._finish(byte)
                state = State.IDLE
            else:
                self._checksum = (self._checksum + byte) & 0xFF
                if self._param_idx < self._max_params:
                    self._params[self._param_idx] = byte
                self._param_idx += 1

        self._state = state
        return err

    def _finish(self, received: int) -> Error:
        computed = ~self._checksum & 0xFF
        if computed == received:
            self._checksum = computed
            if self._param_idx <= self._max_params:
                return Error.NONE
            return Error.TOO_MUCH_DATA

        logger.debug(
            "Rcvd checksum: 0x%02X expecting: 0x%02X", received, computed
        )
        self._checksum = received
        return Error.CHECKSUM

    def feed(self, data: Iterable[int]) -> Error:
        """Feed bytes until the parser reaches a verdict.

        Bytes after the end of the first complete packet are not consumed.
        """
        for byte in data:
            err = self.process_byte(byte)
            if err != Error.NOT_DONE:
                return err
        return Error.NOT_DONE

    # ─── serialisation ───────────────────────────────────────────────

    def data(self, max_len: int | None = None) -> bytes:
        """Serialise the packet using the stored field values.

        Args:
            max_len: Maximum number of bytes to emit, ``None`` for no limit.
                Output is cut off at this length (header first, then
                parameters, then checksum).

        Returns:
            The wire bytes. If the declared parameter count exceeds the
            stored parameters, output stops after the last stored parameter
            and no checksum is written.
        """
        limit = HEADER_SIZE + MAX_PARAMS + 1 if max_len is None else max(max_len, 0)
        out = bytearray(
            [SYNC_BYTE, SYNC_BYTE, self._id, self._length, self._command][:limit]
        )

        for idx in range(self.num_params):
            if idx >= self._max_params:
                return bytes(out)
            if len(out) >= limit:
                break
            out.append(self._params[idx])

        if len(out) < limit:
            out.append(self._checksum)
        return bytes(out)

    def __bytes__(self) -> bytes:
        return self.data()

    def __repr__(self) -> str:
        params = self.params
        return (
            f"Packet(id=0x{self._id:02X}, length={self._length}, "
            f"command=0x{self._command:02X}, "
            f"params={params.hex(' ') if params else '(empty)'}, "
            f"checksum=0x{self._checksum:02X})"
        )


def _check_byte(name: str, value: int) -> int:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{name} must be 0-255, got {value}")
    return value
