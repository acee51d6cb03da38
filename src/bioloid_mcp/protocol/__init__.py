"""Protocol layer: packet parser/builder, error codes, opcodes and status parsing."""

from .errors import Error, ErrorKind, StatusError
from .packet import MAX_PARAMS, Packet, State
from .commands import Command, DeviceId, build_command
