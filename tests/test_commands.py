"""Tests for instruction packet builders."""

import pytest

from bioloid_mcp.protocol.commands import (
    Command,
    DeviceId,
    build_action,
    build_command,
    build_ping,
    build_read,
    build_reg_write,
    build_reset,
    build_status,
    build_sync_write,
    build_write,
    command_str,
)
from bioloid_mcp.protocol.errors import Error, StatusError
from bioloid_mcp.protocol.packet import MAX_PARAMS, Packet


def test_command_enum_values():
    """Opcodes match the protocol 1.0 instruction set."""
    assert Command.PING == 0x01
    assert Command.READ == 0x02
    assert Command.WRITE == 0x03
    assert Command.REG_WRITE == 0x04
    assert Command.ACTION == 0x05
    assert Command.RESET == 0x06
    assert Command.SYNC_WRITE == 0x83


def test_reserved_ids():
    assert DeviceId.DEFAULT == 0x00
    assert DeviceId.BROADCAST == 0xFE
    assert DeviceId.INVALID == 0xFF


def test_command_str():
    """Known opcodes print their name, anything else prints ???."""
    assert command_str(0x02) == "READ"
    assert command_str(0x83) == "SYNC_WRITE"
    assert command_str(0x42) == "???"


def test_build_ping():
    """PING to ID 1 is the minimal 6-byte packet."""
    assert build_ping(1).data() == bytes.fromhex("ff ff 01 02 01 fb")


def test_build_read():
    """READ carries the start offset and byte count."""
    assert build_read(1, 0x2B, 1).data() == bytes.fromhex("ff ff 01 04 02 2b 01 cc")


def test_read_length_bounds():
    with pytest.raises(ValueError):
        build_read(1, 0, 0)
    with pytest.raises(ValueError):
        build_read(1, 0, MAX_PARAMS + 1)


def test_build_write():
    """Broadcast WRITE setting the ID register to 1."""
    pkt = build_write(DeviceId.BROADCAST, 0x03, b"\x01")
    assert pkt.data() == bytes.fromhex("ff ff fe 04 03 03 01 f6")


def test_write_needs_data():
    with pytest.raises(ValueError):
        build_write(1, 0x03, b"")
    with pytest.raises(ValueError):
        build_reg_write(1, 0x03, b"")


def test_build_reg_write():
    pkt = build_reg_write(2, 0x1E, b"\x00\x02")
    assert pkt.command == Command.REG_WRITE
    assert pkt.params == b"\x1e\x00\x02"


def test_build_action_defaults_to_broadcast():
    pkt = build_action()
    assert pkt.id == DeviceId.BROADCAST
    assert pkt.command == Command.ACTION
    assert pkt.num_params == 0


def test_build_reset():
    pkt = build_reset(7)
    assert pkt.id == 7
    assert pkt.command == Command.RESET


def test_build_sync_write():
    """SYNC_WRITE lays out offset, length, then ID + data per device."""
    pkt = build_sync_write(0x1E, 2, {1: b"\x10\x00", 2: b"\x20\x01"})
    assert pkt.id == DeviceId.BROADCAST
    assert pkt.command == Command.SYNC_WRITE
    assert pkt.params == bytes.fromhex("1e 02 01 10 00 02 20 01")


def test_sync_write_wrong_length():
    with pytest.raises(ValueError):
        build_sync_write(0x1E, 2, {1: b"\x10"})


def test_invalid_device_id():
    """0xFF never addresses a device."""
    with pytest.raises(ValueError):
        build_ping(DeviceId.INVALID)
    with pytest.raises(ValueError):
        build_ping(-1)


def test_invalid_offset():
    with pytest.raises(ValueError):
        build_read(1, 0x100, 1)


def test_build_command_param_limit():
    build_command(1, Command.WRITE, bytes(MAX_PARAMS))
    with pytest.raises(ValueError):
        build_command(1, Command.WRITE, bytes(MAX_PARAMS + 1))


def test_built_packets_parse_back():
    """Every builder output passes through the parser cleanly."""
    packets = [
        build_ping(3),
        build_read(3, 0, 6),
        build_write(3, 0x19, b"\x01"),
        build_action(),
        build_sync_write(0x04, 1, {3: b"\x22"}),
    ]
    for original in packets:
        parsed = Packet(MAX_PARAMS)
        assert parsed.feed(original.data()) == Error.NONE
        assert parsed.id == original.id
        assert parsed.params == original.params


def test_build_status():
    """A status packet carries the error byte in the command slot."""
    pkt = build_status(1, Error.from_status(StatusError.RANGE), b"\x05")
    assert pkt.error_code == 0x08
    assert pkt.params == b"\x05"


def test_status_needs_a_wire_error():
    with pytest.raises(ValueError):
        build_status(1, Error.TIMEOUT)
