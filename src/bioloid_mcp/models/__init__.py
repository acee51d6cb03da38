"""Data models for device control tables."""

from .control_table import (
    BASE_REGISTERS,
    ControlTable,
    ControlTableHooks,
    ControlTableStorage,
    Offset,
    Register,
    StorageError,
)
