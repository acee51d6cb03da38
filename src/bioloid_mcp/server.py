"""MCP server entry point for a Bioloid/Dynamixel serial bus.

Exposes bus operations (ping, scan, register reads and writes) as tools
via the Model Context Protocol using the official Python MCP SDK with
stdio transport. A virtual bus backed by in-memory devices is available
for trying things out without hardware.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from mcp.server.fastmcp import FastMCP

from .device import VirtualDevice, attach
from .models.control_table import (
    BASE_REGISTERS,
    ControlTable,
    Offset,
    baud_rate_from_divisor,
)
from .protocol.commands import DeviceId
from .protocol.errors import Error
from .protocol.packet import MAX_PARAMS
from .storage.file_storage import MemoryStorage
from .transport.bus import Bus
from .transport.port import DEFAULT_BAUD_RATE, LoopbackPort, SerialPort

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "bioloid-bus",
    instructions="MCP server for Bioloid/Dynamixel protocol 1.0 serial buses",
)

VIRTUAL_TABLE_SIZE = 0x20
VIRTUAL_PERSISTENT_SIZE = 0x10

# Global connection state
_bus: Bus | None = None
_serial: SerialPort | None = None


def _get_bus() -> Bus:
    """Get the active bus, raising if not connected."""
    if _bus is None:
        raise RuntimeError(
            "Not connected to a bus. Use the 'connect' tool first."
        )
    return _bus


def _check_id(device_id: int) -> str | None:
    if not 0 <= device_id < DeviceId.BROADCAST:
        return "Device ID must be 0-253"
    return None


def _result(err: Error, **fields: Any) -> dict[str, Any]:
    if err.is_error:
        return {"error": str(err), **fields}
    return {"ok": True, **fields}


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def connect(port_name: str, baud_rate: int = DEFAULT_BAUD_RATE) -> dict[str, Any]:
    """Open a serial port and use it as the bus.

    Args:
        port_name: Serial device, e.g. /dev/ttyUSB0 or COM3.
        baud_rate: Bus bit rate (default 1,000,000).
    """
    global _bus, _serial
    disconnect()

    _serial = SerialPort(port_name, baud_rate)
    _serial.open()
    _bus = Bus(_serial)
    return {"connected": True, "port": port_name, "baud_rate": baud_rate}


@mcp.tool()
def connect_virtual(device_ids: list[int] | None = None) -> dict[str, Any]:
    """Connect to an in-memory bus populated with virtual devices.

    Args:
        device_ids: IDs of the virtual devices (default [1]).
    """
    global _bus
    disconnect()

    device_ids = device_ids or [1]
    for device_id in device_ids:
        problem = _check_id(device_id)
        if problem:
            return {"error": problem}

    host_end, device_end = LoopbackPort.pair()
    devices = []
    for device_id in device_ids:
        table = ControlTable(
            VIRTUAL_TABLE_SIZE,
            VIRTUAL_PERSISTENT_SIZE,
            MemoryStorage(VIRTUAL_TABLE_SIZE),
            port=device_end,
        )
        table.load()
        table.set_u8(Offset.ID, device_id)
        devices.append(VirtualDevice(table))
    attach(device_end, devices)

    _bus = Bus(host_end, timeout=0.01)
    logger.info("Virtual bus with device IDs %s", device_ids)
    return {"connected": True, "virtual": True, "device_ids": device_ids}


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Close the bus connection."""
    global _bus, _serial
    if _serial is not None:
        _serial.close()
    _serial = None
    _bus = None
    return {"disconnected": True}


# ─── DEVICE TOOLS ─────────────────────────────────────────────────────

@mcp.tool()
def ping(device_id: int) -> dict[str, Any]:
    """Check whether a device answers.

    Args:
        device_id: Device ID (0-253).
    """
    problem = _check_id(device_id)
    if problem:
        return {"error": problem}
    err = _get_bus().ping(device_id)
    return _result(err, device_id=device_id)


@mcp.tool()
def scan(start: int = 0, end: int = 253) -> dict[str, Any]:
    """Ping a range of IDs and list the devices that answer.

    Args:
        start: First ID (default 0).
        end: Last ID (default 253).
    """
    if not 0 <= start < DeviceId.BROADCAST or not 0 <= end < DeviceId.BROADCAST:
        return {"error": "ID range must be 0-253"}
    if start > end:
        start, end = end, start
    found = _get_bus().scan(range(start, end + 1))
    return {"device_ids": found}


@mcp.tool()
def read_register(device_id: int, offset: int, length: int = 1) -> dict[str, Any]:
    """Read raw bytes from a device's control table.

    Args:
        device_id: Device ID (0-253).
        offset: Control table offset.
        length: Number of bytes to read (default 1).
    """
    problem = _check_id(device_id)
    if problem:
        return {"error": problem}
    if not 0 <= offset <= 0xFF or not 1 <= length <= MAX_PARAMS:
        return {"error": f"Offset must be 0-255 and length 1-{MAX_PARAMS}"}
    data, err = _get_bus().read(device_id, offset, length)
    if data is None:
        return {"error": str(err), "device_id": device_id, "offset": offset}

    result: dict[str, Any] = {
        "device_id": device_id,
        "offset": offset,
        "data": list(data),
    }
    if length in (1, 2, 4):
        result["value"] = int.from_bytes(data, "little")
    return result


@mcp.tool()
def write_register(device_id: int, offset: int, values: list[int]) -> dict[str, Any]:
    """Write raw bytes to a device's control table.

    Args:
        device_id: Device ID (0-253), or 254 to broadcast.
        offset: Control table offset.
        values: Bytes to write (0-255 each).
    """
    if device_id != DeviceId.BROADCAST:
        problem = _check_id(device_id)
        if problem:
            return {"error": problem}
    if not 0 <= offset <= 0xFF:
        return {"error": "Offset must be 0-255"}
    if not values or any(not 0 <= v <= 255 for v in values):
        return {"error": "Values must be a non-empty list of 0-255"}
    err = _get_bus().write(device_id, offset, bytes(values))
    return _result(err, device_id=device_id, offset=offset)


@mcp.tool()
def set_device_id(device_id: int, new_id: int) -> dict[str, Any]:
    """Change a device's ID.

    Args:
        device_id: Current ID.
        new_id: New ID (0-253).
    """
    for value in (device_id, new_id):
        problem = _check_id(value)
        if problem:
            return {"error": problem}
    err = _get_bus().write(device_id, Offset.ID, bytes([new_id]))
    return _result(err, device_id=new_id)


@mcp.tool()
def set_baud(device_id: int, divisor: int) -> dict[str, Any]:
    """Change a device's baud divisor and follow it on the host port.

    The bit rate is 2,000,000 / (divisor + 1).

    Args:
        device_id: Device ID (0-253).
        divisor: Baud register value (0-254).
    """
    problem = _check_id(device_id)
    if problem:
        return {"error": problem}
    if not 0 <= divisor <= 254:
        return {"error": "Divisor must be 0-254"}

    bus = _get_bus()
    err = bus.write(device_id, Offset.BAUD, bytes([divisor]))
    baud_rate = baud_rate_from_divisor(divisor)
    if not err.is_error:
        bus.port.set_baud_rate(baud_rate)
    return _result(err, device_id=device_id, baud_rate=baud_rate)


@mcp.tool()
def reset_device(device_id: int) -> dict[str, Any]:
    """Restore a device's control table to factory defaults.

    Args:
        device_id: Device ID (0-253).
    """
    problem = _check_id(device_id)
    if problem:
        return {"error": problem}
    err = _get_bus().reset(device_id)
    return _result(err, device_id=device_id)


@mcp.tool()
def action() -> dict[str, Any]:
    """Broadcast ACTION so every device applies its staged REG_WRITE."""
    err = _get_bus().action()
    return _result(err)


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("bioloid://layout/base")
def resource_base_layout() -> str:
    """Registers every device shares."""
    return json.dumps({
        "registers": [
            {
                "name": reg.name,
                "offset": reg.offset,
                "width": reg.width,
                "default": reg.default,
            }
            for reg in BASE_REGISTERS
        ]
    })


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
