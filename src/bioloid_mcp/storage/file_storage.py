"""Storage backends for the persistent part of a control table."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from ..models.control_table import StorageError

logger = logging.getLogger(__name__)


class FileStorage:
    """Keeps control table bytes in a plain file at their table offsets.

    Usage::

        storage = FileStorage("servo.ctl")
        table = ControlTable(0x20, 0x10, storage)
    """

    def __init__(self, path: str | Path) -> None:
        if path is None:
            raise ValueError("FileStorage needs a file path")
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self, offset: int, num_bytes: int) -> bytes | None:
        """Read ``num_bytes`` at ``offset``.

        Returns:
            The bytes, or ``None`` if the file is missing, cannot be read
            or is too short.
        """
        try:
            with open(self._path, "rb") as f:
                f.seek(offset)
                data = f.read(num_bytes)
        except OSError as e:
            logger.debug("Could not load %s: %s", self._path, e)
            return None

        if len(data) != num_bytes:
            logger.debug(
                "Short read from %s: %d of %d bytes at offset %d",
                self._path, len(data), num_bytes, offset,
            )
            return None
        return data

    def save(self, offset: int, data: bytes) -> StorageError:
        """Write ``data`` at ``offset``, creating the file if needed.

        Bytes outside the written range are left alone.
        """
        try:
            fd = os.open(self._path, os.O_RDWR | os.O_CREAT, 0o644)
            with os.fdopen(fd, "r+b") as f:
                f.seek(offset)
                written = f.write(data)
                f.flush()
        except OSError as e:
            logger.debug("Could not save %s: %s", self._path, e)
            return StorageError.FAILED

        if written != len(data):
            return StorageError.FAILED
        return StorageError.NONE


class MemoryStorage:
    """Stores control table bytes in RAM, for tests and virtual devices."""

    def __init__(self, size: int = 0x100) -> None:
        self._data = bytearray(size)
        self._valid = False

    @property
    def data(self) -> bytes:
        return bytes(self._data)

    def load(self, offset: int, num_bytes: int) -> bytes | None:
        """Return stored bytes, or ``None`` if nothing has been saved yet."""
        if not self._valid or offset < 0 or offset + num_bytes > len(self._data):
            return None
        return bytes(self._data[offset : offset + num_bytes])

    def save(self, offset: int, data: bytes) -> StorageError:
        if offset < 0 or offset + len(data) > len(self._data):
            return StorageError.FAILED
        self._data[offset : offset + len(data)] = data
        self._valid = True
        return StorageError.NONE
