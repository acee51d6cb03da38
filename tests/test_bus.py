"""Tests for the bus master, run against virtual devices on a loopback link."""

import itertools
from unittest.mock import patch

from bioloid_mcp.device import VirtualDevice, attach
from bioloid_mcp.models.control_table import ControlTable, Offset
from bioloid_mcp.protocol.commands import DeviceId, build_ping, build_status
from bioloid_mcp.protocol.errors import Error, StatusError
from bioloid_mcp.storage.file_storage import MemoryStorage
from bioloid_mcp.transport.bus import POLL_INTERVAL, Bus
from bioloid_mcp.transport.port import LoopbackPort


class ScriptedPort:
    """Replays canned reply bytes and records what was sent."""

    def __init__(self, reply: bytes = b""):
        self._rx = iter(reply)
        self.sent = []
        self.baud_rate = None

    def available(self):
        return 0

    def set_baud_rate(self, baud_rate):
        self.baud_rate = baud_rate

    def read_byte(self):
        return next(self._rx, None)

    def write_packet(self, packet):
        self.sent.append(packet.data())


def make_bus(*device_ids, **bus_kwargs):
    host, device_end = LoopbackPort.pair()
    devices = []
    for device_id in device_ids:
        table = ControlTable(0x20, 0x10, MemoryStorage(0x20), port=device_end)
        table.set_to_initial_values()
        table.set_u8(Offset.ID, device_id)
        devices.append(VirtualDevice(table))
    attach(device_end, devices)
    bus_kwargs.setdefault("timeout", 0.01)
    return Bus(host, **bus_kwargs), devices


def test_ping():
    bus, _ = make_bus(1)
    assert bus.ping(1) == Error.NONE


def test_ping_missing_device_times_out():
    bus, _ = make_bus(1)
    assert bus.ping(2) == Error.TIMEOUT


def test_read():
    bus, _ = make_bus(1)
    data, err = bus.read(1, Offset.BAUD, 2)
    assert err == Error.NONE
    assert data == bytes([1, 250])


def test_read_range_error():
    """The device's status flags come back as the error."""
    bus, _ = make_bus(1)
    data, err = bus.read(1, 0x1F, 4)
    assert data is None
    assert err == Error.from_status(StatusError.RANGE)


def test_read_too_much_data():
    bus, _ = make_bus(1, max_params=1)
    data, err = bus.read(1, 0, 4)
    assert data is None
    assert err == Error.TOO_MUCH_DATA


def test_read_wrong_size_reply():
    """A clean reply with the wrong byte count is a RANGE error."""
    port = ScriptedPort(build_status(1, params=b"\x01").data())
    data, err = Bus(port, timeout=0.01).read(1, 0, 2)
    assert data is None
    assert err == Error.from_status(StatusError.RANGE)
    assert port.sent == [bytes.fromhex("ff ff 01 04 02 00 02 f6")]


def test_write():
    bus, devices = make_bus(1)
    assert bus.write(1, Offset.LED, b"\x01") == Error.NONE
    assert devices[0].table.get_u8(Offset.LED) == 1


def test_broadcast_write_does_not_wait():
    bus, devices = make_bus(1, 2)
    assert bus.write(DeviceId.BROADCAST, Offset.LED, b"\x01") == Error.NONE
    assert [d.table.get_u8(Offset.LED) for d in devices] == [1, 1]


def test_reg_write_and_action():
    bus, devices = make_bus(1, 2)
    assert bus.reg_write(1, Offset.LED, b"\x01") == Error.NONE
    assert bus.reg_write(2, Offset.LED, b"\x01") == Error.NONE
    assert devices[0].table.get_u8(Offset.LED) == 0

    assert bus.action() == Error.NONE
    assert [d.table.get_u8(Offset.LED) for d in devices] == [1, 1]


def test_reset():
    bus, devices = make_bus(5)
    bus.write(5, Offset.RDT, b"\x00")
    assert bus.reset(5) == Error.NONE
    assert devices[0].table.get_u8(Offset.RDT) == 250
    assert devices[0].id == 0


def test_baud_write_reaches_device_port():
    bus, _ = make_bus(1)
    assert bus.write(1, Offset.BAUD, b"\x03") == Error.NONE
    assert bus.port.peer.baud_rate == 500_000


def test_scan():
    bus, _ = make_bus(1, 3, 4)
    assert bus.scan(range(6)) == [1, 3, 4]


def test_scan_counts_devices_reporting_errors():
    """Any answer, even one with error flags, means a device is there."""
    overheated = Error.from_status(StatusError.OVERHEATING)
    port = ScriptedPort(build_status(2, overheated).data())
    assert Bus(port, timeout=0.01).scan([2]) == [2]


def test_receive_timeout():
    packet, err = Bus(ScriptedPort(), timeout=0.01).receive()
    assert packet is None
    assert err == Error.TIMEOUT


def test_receive_waits_between_empty_reads():
    """A port that returns at once is polled, not spun on."""
    with patch("time.sleep") as sleep:
        packet, err = Bus(ScriptedPort(), timeout=0.01).receive()
    assert err == Error.TIMEOUT
    sleep.assert_called_with(POLL_INTERVAL)


def test_receive_times_out_on_endless_noise():
    port = ScriptedPort(itertools.repeat(0x00))
    packet, err = Bus(port, timeout=0.01).receive()
    assert packet is None
    assert err == Error.TIMEOUT


def test_receive_skips_noise():
    port = ScriptedPort(b"\x00\x12\xff" + build_status(1).data())
    packet, err = Bus(port).receive()
    assert err == Error.NONE
    assert packet.id == 1


def test_receive_checksum_failure():
    port = ScriptedPort(bytes.fromhex("ff ff 01 02 00 00"))
    packet, err = Bus(port).receive()
    assert err == Error.CHECKSUM
    assert packet.id == 1


def test_reply_from_unexpected_id_is_returned():
    port = ScriptedPort(build_status(9).data())
    packet, err = Bus(port).send_and_receive(build_ping(1))
    assert err == Error.NONE
    assert packet.id == 9
