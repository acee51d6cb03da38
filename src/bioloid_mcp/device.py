"""A software device that answers instruction packets from its control table.

Useful for exercising a master without hardware: wire one or more virtual
devices to one end of a :class:`LoopbackPort` pair and hand the other end
to a :class:`Bus`.
"""

from __future__ import annotations

import logging
from typing import Iterable

from .models.control_table import ControlTable, Offset
from .protocol.commands import Command, DeviceId, build_status
from .protocol.errors import Error, StatusError
from .protocol.packet import MAX_PARAMS, Packet
from .transport.port import LoopbackPort, Port

logger = logging.getLogger(__name__)

RANGE_ERROR = Error.from_status(StatusError.RANGE)
INSTRUCTION_ERROR = Error.from_status(StatusError.INSTRUCTION)


class VirtualDevice:
    """Executes PING, READ, WRITE, REG_WRITE, ACTION, RESET and SYNC_WRITE
    against a :class:`ControlTable` and produces status packets.
    """

    def __init__(
        self,
        table: ControlTable,
        port: Port | None = None,
        max_params: int = MAX_PARAMS,
    ) -> None:
        self.table = table
        self.port = port
        self._packet = Packet(max_params)
        self._pending: tuple[int, bytes] | None = None

    @property
    def id(self) -> int:
        return self.table.get_u8(Offset.ID)

    def handle(self, packet: Packet) -> Packet | None:
        """Execute an instruction packet.

        Returns:
            The status packet to send back, or ``None`` when the packet
            was for another device or was broadcast.
        """
        device_id = self.id
        if packet.id not in (device_id, DeviceId.BROADCAST):
            return None

        error, params = self._execute(packet, device_id)
        if packet.id == DeviceId.BROADCAST:
            return None
        return build_status(device_id, error, params)

    def _execute(self, packet: Packet, device_id: int) -> tuple[Error, bytes]:
        command = packet.command
        params = packet.params

        if command == Command.PING:
            return Error.NONE, b""

        if command == Command.READ:
            if len(params) != 2:
                return INSTRUCTION_ERROR, b""
            offset, length = params
            # The reply has to fit in a single status packet
            if length > MAX_PARAMS or offset + length > self.table.num_ctl_bytes:
                return RANGE_ERROR, b""
            return Error.NONE, self.table.read(offset, length)

        if command in (Command.WRITE, Command.REG_WRITE):
            if len(params) < 2:
                return INSTRUCTION_ERROR, b""
            offset, data = params[0], params[1:]
            if offset + len(data) > self.table.num_ctl_bytes:
                return RANGE_ERROR, b""
            if command == Command.WRITE:
                self.table.write(offset, data)
            else:
                self._pending = (offset, data)
            return Error.NONE, b""

        if command == Command.ACTION:
            if self._pending is not None:
                offset, data = self._pending
                self._pending = None
                self.table.write(offset, data)
            return Error.NONE, b""

        if command == Command.RESET:
            self.table.set_to_initial_values()
            self.table.save()
            return Error.NONE, b""

        if command == Command.SYNC_WRITE:
            return self._sync_write(params, device_id), b""

        logger.debug("Unknown instruction 0x%02X", command)
        return INSTRUCTION_ERROR, b""

    def _sync_write(self, params: bytes, device_id: int) -> Error:
        if len(params) < 2:
            return INSTRUCTION_ERROR
        offset, length = params[0], params[1]
        stride = length + 1
        for start in range(2, len(params) - length, stride):
            if params[start] != device_id:
                continue
            if offset + length > self.table.num_ctl_bytes:
                return RANGE_ERROR
            self.table.write(offset, params[start + 1 : start + stride])
            break
        return Error.NONE

    def process_byte(self, byte: int) -> None:
        """Feed one byte from the bus, replying on ``port`` when a packet
        addressed to this device completes.
        """
        err = self._packet.process_byte(byte)
        if err == Error.NOT_DONE:
            return

        reply = None
        if err == Error.NONE:
            reply = self.handle(self._packet)
        elif err == Error.CHECKSUM and self._packet.id == self.id:
            reply = build_status(self.id, Error.CHECKSUM)
        else:
            logger.debug("Dropping packet: %s", err)

        if reply is not None and self.port is not None:
            self.port.write_packet(reply)


def attach(port: LoopbackPort, devices: Iterable[VirtualDevice]) -> None:
    """Connect virtual devices to one end of a loopback link.

    Every byte written by the peer is offered to every device, the way a
    shared half-duplex bus would deliver it.
    """
    devices = list(devices)
    for device in devices:
        device.port = port

    def on_receive(end: LoopbackPort) -> None:
        while end.available():
            byte = end.read_byte()
            for device in devices:
                device.process_byte(byte)

    port.on_receive = on_receive
