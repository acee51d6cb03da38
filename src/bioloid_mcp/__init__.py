"""Bioloid/Dynamixel bus protocol stack: packet codec, control tables and an MCP server."""

__version__ = "0.1.0"
