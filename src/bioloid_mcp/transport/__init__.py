"""Transports and the bus master."""

from .port import DEFAULT_BAUD_RATE, LoopbackPort, Port, SerialPort, SocketPort
from .bus import Bus
