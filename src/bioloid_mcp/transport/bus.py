"""Bus master: send instruction packets and collect the status replies."""

from __future__ import annotations

import logging
import time
from typing import Iterable

from ..protocol.commands import (
    DeviceId,
    build_action,
    build_ping,
    build_read,
    build_reg_write,
    build_reset,
    build_write,
)
from ..protocol.errors import Error, StatusError
from ..protocol.packet import MAX_PARAMS, Packet
from ..protocol.parser import parse_read
from .port import READ_TIMEOUT, Port

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.001  # seconds to wait when a port returns without data


class Bus:
    """Request/response exchange with devices over a :class:`Port`.

    Usage::

        bus = Bus(port)
        if bus.ping(1) == Error.NONE:
            data, err = bus.read(1, Offset.MODEL, 2)
    """

    def __init__(
        self,
        port: Port,
        max_params: int = MAX_PARAMS,
        timeout: float = READ_TIMEOUT,
    ) -> None:
        self._port = port
        self._max_params = max_params
        self._timeout = timeout

    @property
    def port(self) -> Port:
        return self._port

    def send(self, packet: Packet) -> None:
        logger.debug("TX %r", packet)
        self._port.write_packet(packet)

    def receive(self, timeout: float | None = None) -> tuple[Packet | None, Error]:
        """Read bytes until a whole packet arrives or the timeout expires.

        Returns:
            ``(packet, error)``. On a clean packet the error comes from its
            status byte. On ``Error.CHECKSUM`` or ``Error.TOO_MUCH_DATA``
            the partially trusted packet is still returned; on
            ``Error.TIMEOUT`` the packet is ``None``.
        """
        packet = Packet(self._max_params)
        deadline = time.monotonic() + (self._timeout if timeout is None else timeout)

        while True:
            byte = self._port.read_byte()
            if byte is not None:
                err = packet.process_byte(byte)
                if err == Error.NONE:
                    logger.debug("RX %r", packet)
                    return packet, Error.from_status(packet.error_code)
                if err != Error.NOT_DONE:
                    logger.debug("RX failed with %s: %r", err, packet)
                    return packet, err
            if time.monotonic() >= deadline:
                return None, Error.TIMEOUT
            if byte is None:
                # Non-blocking ports return at once; don't spin
                time.sleep(POLL_INTERVAL)

    def send_and_receive(
        self, packet: Packet, timeout: float | None = None
    ) -> tuple[Packet | None, Error]:
        """Send an instruction and wait for its status packet.

        Broadcast instructions get no reply, so they return
        ``(None, Error.NONE)`` right after sending.
        """
        self.send(packet)
        if packet.id == DeviceId.BROADCAST:
            return None, Error.NONE

        reply, err = self.receive(timeout)
        if reply is not None and reply.id != packet.id:
            logger.debug(
                "Reply from ID %d to a packet for ID %d", reply.id, packet.id
            )
        return reply, err

    # ─── instructions ────────────────────────────────────────────────

    def ping(self, device_id: int) -> Error:
        _, err = self.send_and_receive(build_ping(device_id))
        return err

    def read(self, device_id: int, offset: int, length: int) -> tuple[bytes | None, Error]:
        """Read ``length`` control table bytes from a device.

        A reply carrying the wrong amount of data is reported as a
        ``RANGE`` error.
        """
        reply, err = self.send_and_receive(build_read(device_id, offset, length))
        if err.is_error:
            return None, err
        parsed = parse_read(reply, offset, length)
        if parsed is None:
            logger.debug(
                "READ reply carried %d bytes, expected %d", reply.num_params, length
            )
            return None, Error.from_status(StatusError.RANGE)
        return parsed.data, Error.NONE

    def write(self, device_id: int, offset: int, data: bytes) -> Error:
        _, err = self.send_and_receive(build_write(device_id, offset, data))
        return err

    def reg_write(self, device_id: int, offset: int, data: bytes) -> Error:
        _, err = self.send_and_receive(build_reg_write(device_id, offset, data))
        return err

    def action(self, device_id: int = DeviceId.BROADCAST) -> Error:
        _, err = self.send_and_receive(build_action(device_id))
        return err

    def reset(self, device_id: int) -> Error:
        _, err = self.send_and_receive(build_reset(device_id))
        return err

    def scan(self, device_ids: Iterable[int], timeout: float | None = None) -> list[int]:
        """Ping each ID and return the ones that answered."""
        found = []
        for device_id in device_ids:
            _, err = self.send_and_receive(build_ping(device_id), timeout)
            if err != Error.TIMEOUT:
                found.append(device_id)
        return found
