"""Device IDs, instruction opcodes and instruction packet builders.

Instruction packets travel host-to-device; the device answers with a status
packet that reuses the command slot for its error byte.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Mapping

from .errors import Error
from .packet import MAX_PARAMS, Packet


class DeviceId(IntEnum):
    """Reserved device addresses."""

    DEFAULT = 0x00
    BROADCAST = 0xFE
    INVALID = 0xFF


class Command(IntEnum):
    """Instruction opcodes."""

    PING = 0x01  # obtain a status packet
    READ = 0x02  # read from the control table
    WRITE = 0x03  # write to the control table
    REG_WRITE = 0x04  # stage a write until ACTION
    ACTION = 0x05  # apply staged REG_WRITEs
    RESET = 0x06  # restore factory defaults
    SYNC_WRITE = 0x83  # write to many devices at once


def command_str(value: int) -> str:
    """Return the opcode name, or ``"???"`` for unknown opcodes."""
    try:
        return Command(value).name
    except ValueError:
        return "???"


def _check_id(device_id: int) -> int:
    if not 0 <= device_id <= DeviceId.BROADCAST:
        raise ValueError(f"Device ID must be 0-254, got {device_id}")
    return device_id


def _check_offset(offset: int) -> int:
    if not 0 <= offset <= 0xFF:
        raise ValueError(f"Offset must be 0-255, got {offset}")
    return offset


def build_command(device_id: int, command: int, params: bytes = b"") -> Packet:
    """Build a checksummed packet for any opcode."""
    if len(params) > MAX_PARAMS:
        raise ValueError(
            f"At most {MAX_PARAMS} parameter bytes fit in a packet, got {len(params)}"
        )
    return Packet.build(_check_id(device_id), int(command), bytes(params))


def build_ping(device_id: int) -> Packet:
    return build_command(device_id, Command.PING)


def build_read(device_id: int, offset: int, length: int) -> Packet:
    """Build a READ for ``length`` bytes starting at ``offset``."""
    if not 1 <= length <= MAX_PARAMS:
        raise ValueError(f"Read length must be 1-{MAX_PARAMS}, got {length}")
    return build_command(
        device_id, Command.READ, bytes([_check_offset(offset), length])
    )


def build_write(device_id: int, offset: int, data: bytes) -> Packet:
    """Build a WRITE of ``data`` starting at ``offset``."""
    if not data:
        raise ValueError("Write data must not be empty")
    return build_command(
        device_id, Command.WRITE, bytes([_check_offset(offset)]) + bytes(data)
    )


def build_reg_write(device_id: int, offset: int, data: bytes) -> Packet:
    """Build a REG_WRITE; the device applies it on the next ACTION."""
    if not data:
        raise ValueError("Write data must not be empty")
    return build_command(
        device_id, Command.REG_WRITE, bytes([_check_offset(offset)]) + bytes(data)
    )


def build_action(device_id: int = DeviceId.BROADCAST) -> Packet:
    return build_command(device_id, Command.ACTION)


def build_reset(device_id: int) -> Packet:
    return build_command(device_id, Command.RESET)


def build_sync_write(offset: int, length: int, data: Mapping[int, bytes]) -> Packet:
    """Build a broadcast SYNC_WRITE.

    Args:
        offset: First control table offset written on every device.
        length: Bytes written per device.
        data: Device ID to the ``length`` bytes it should receive.
    """
    params = bytearray([_check_offset(offset), length])
    for device_id, values in data.items():
        if len(values) != length:
            raise ValueError(
                f"Device {device_id} data must be {length} bytes, got {len(values)}"
            )
        params.append(_check_id(device_id))
        params.extend(values)
    return build_command(DeviceId.BROADCAST, Command.SYNC_WRITE, bytes(params))


def build_status(
    device_id: int, error: Error = Error.NONE, params: bytes = b""
) -> Packet:
    """Build the status packet a device sends in reply to an instruction."""
    return build_command(device_id, error.as_uint8(), params)
