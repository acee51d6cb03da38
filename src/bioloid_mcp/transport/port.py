"""Byte transports for the bus: serial adapter, TCP socket and in-memory loopback.

Every port offers the same small surface (see :class:`Port`). Reads block
for at most the port's timeout and return ``None`` when nothing arrived, so
the caller decides how long to keep waiting.
"""

from __future__ import annotations

import logging
import select
import socket
from collections import deque
from typing import Callable, Protocol

import serial

from ..protocol.packet import Packet

logger = logging.getLogger(__name__)

DEFAULT_BAUD_RATE = 1_000_000
READ_TIMEOUT = 0.1  # seconds


class Port(Protocol):
    """What the bus needs from a transport."""

    def available(self) -> int:
        """Number of bytes that can be read without blocking."""
        ...

    def set_baud_rate(self, baud_rate: int) -> None:
        """Change the bit rate. Transports without one ignore this."""
        ...

    def read_byte(self) -> int | None:
        """Read one byte, or ``None`` if the read timed out."""
        ...

    def write_packet(self, packet: Packet) -> None:
        ...


class SerialPort:
    """A serial adapter (USB2Dynamixel, FTDI, ...) driven through pyserial.

    Usage::

        port = SerialPort("/dev/ttyUSB0")
        port.open()
        port.write_packet(build_ping(1))
        port.close()
    """

    def __init__(
        self,
        port_name: str,
        baud_rate: int = DEFAULT_BAUD_RATE,
        timeout: float = READ_TIMEOUT,
    ) -> None:
        self._port_name = port_name
        self._baud_rate = baud_rate
        self._timeout = timeout
        self._serial: serial.Serial | None = None

    @property
    def port_name(self) -> str:
        return self._port_name

    @property
    def baud_rate(self) -> int:
        return self._baud_rate

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def open(self) -> None:
        """Open the serial device (8N1).

        Raises:
            ConnectionError: If the device cannot be opened.
        """
        if self.is_open:
            return
        try:
            self._serial = serial.Serial(
                port=self._port_name,
                baudrate=self._baud_rate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self._timeout,
            )
        except serial.SerialException as e:
            raise ConnectionError(
                f"Could not open serial port {self._port_name}: {e}"
            ) from e

        self._serial.reset_input_buffer()
        logger.info("Opened %s at %d bps", self._port_name, self._baud_rate)

    def close(self) -> None:
        if self._serial is None:
            return
        try:
            self._serial.close()
        except serial.SerialException as e:
            logger.warning("Error closing %s: %s", self._port_name, e)
        finally:
            self._serial = None
            logger.info("Closed %s", self._port_name)

    def _require_open(self) -> serial.Serial:
        if not self.is_open:
            raise ConnectionError(f"Serial port {self._port_name} is not open")
        return self._serial

    def available(self) -> int:
        return self._require_open().in_waiting

    def set_baud_rate(self, baud_rate: int) -> None:
        self._baud_rate = baud_rate
        if self.is_open:
            self._serial.baudrate = baud_rate
            logger.info("%s switched to %d bps", self._port_name, baud_rate)

    def read_byte(self) -> int | None:
        data = self._require_open().read(1)
        if not data:
            return None
        return data[0]

    def write(self, data: bytes) -> int:
        return self._require_open().write(data)

    def write_packet(self, packet: Packet) -> None:
        self.write(packet.data())

    def __enter__(self) -> SerialPort:
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class SocketPort:
    """A bus bridged over a connected TCP socket (e.g. a serial-to-network
    adapter, or a simulator).
    """

    def __init__(self, sock: socket.socket, timeout: float = READ_TIMEOUT) -> None:
        if sock is None:
            raise ValueError("SocketPort needs a connected socket")
        self._sock = sock
        self._timeout = timeout
        self._rx = bytearray()

    @classmethod
    def connect(
        cls, host: str, port: int, timeout: float = READ_TIMEOUT
    ) -> SocketPort:
        """Open a TCP connection and wrap it.

        Raises:
            ConnectionError: If the connection cannot be made.
        """
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as e:
            raise ConnectionError(f"Could not connect to {host}:{port}: {e}") from e
        logger.info("Connected to %s:%d", host, port)
        return cls(sock, timeout)

    def _fill(self, timeout: float) -> None:
        ready, _, _ = select.select([self._sock], [], [], timeout)
        if not ready:
            return
        chunk = self._sock.recv(4096)
        if not chunk:
            raise ConnectionError("Socket closed by peer")
        self._rx.extend(chunk)

    def available(self) -> int:
        self._fill(0)
        return len(self._rx)

    def set_baud_rate(self, baud_rate: int) -> None:
        logger.debug("Ignoring baud rate %d on a socket port", baud_rate)

    def read_byte(self) -> int | None:
        if not self._rx:
            self._fill(self._timeout)
        if not self._rx:
            return None
        byte = self._rx[0]
        del self._rx[0]
        return byte

    def write_packet(self, packet: Packet) -> None:
        self._sock.sendall(packet.data())

    def close(self) -> None:
        try:
            self._sock.close()
        except OSError as e:
            logger.warning("Error closing socket: %s", e)


class LoopbackPort:
    """One end of an in-memory link. Bytes written here arrive at the peer.

    ``on_receive`` is called on the receiving end after each write, which
    lets a virtual device answer synchronously.
    """

    def __init__(self) -> None:
        self._rx: deque[int] = deque()
        self.peer: LoopbackPort | None = None
        self.on_receive: Callable[[LoopbackPort], None] | None = None
        self.baud_rate = DEFAULT_BAUD_RATE

    @classmethod
    def pair(cls) -> tuple[LoopbackPort, LoopbackPort]:
        """Create two connected ends."""
        a, b = cls(), cls()
        a.peer, b.peer = b, a
        return a, b

    def available(self) -> int:
        return len(self._rx)

    def set_baud_rate(self, baud_rate: int) -> None:
        self.baud_rate = baud_rate

    def read_byte(self) -> int | None:
        if not self._rx:
            return None
        return self._rx.popleft()

    def write(self, data: bytes) -> None:
        if self.peer is None:
            raise ConnectionError("Loopback port has no peer")
        self.peer._rx.extend(data)
        if self.peer.on_receive is not None:
            self.peer.on_receive(self.peer)

    def write_packet(self, packet: Packet) -> None:
        self.write(packet.data())
