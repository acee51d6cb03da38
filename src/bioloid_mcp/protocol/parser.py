"""Status packet parsing for device replies."""

from __future__ import annotations

from dataclasses import dataclass

from .errors import Error
from .packet import Packet


@dataclass
class StatusResponse:
    """A status packet: the device ID, its error flags and any data."""

    id: int
    error: Error
    params: bytes

    def __repr__(self) -> str:
        return (
            f"StatusResponse(id=0x{self.id:02X}, error={self.error}, "
            f"params={self.params.hex(' ') if self.params else '(empty)'})"
        )


@dataclass
class ReadResponse:
    """Data returned for a READ instruction."""

    id: int
    error: Error
    offset: int
    data: bytes

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "error": str(self.error),
            "offset": self.offset,
            "data": list(self.data),
        }


def parse_status(packet: Packet) -> StatusResponse:
    """Interpret a parsed packet as a status reply."""
    return StatusResponse(
        id=packet.id,
        error=Error.from_status(packet.error_code),
        params=packet.params,
    )


def parse_read(packet: Packet, offset: int, length: int) -> ReadResponse | None:
    """Parse the reply to a READ of ``length`` bytes at ``offset``.

    Returns ``None`` if the reply carries a different amount of data.
    """
    status = parse_status(packet)
    if len(status.params) != length:
        return None
    return ReadResponse(
        id=status.id, error=status.error, offset=offset, data=status.params
    )
