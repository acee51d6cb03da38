"""Persistent storage backends for control tables."""

from .file_storage import FileStorage, MemoryStorage
