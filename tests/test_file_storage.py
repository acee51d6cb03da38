"""Tests for control table storage backends."""

import pytest

from bioloid_mcp.models.control_table import StorageError
from bioloid_mcp.storage.file_storage import FileStorage, MemoryStorage


def test_file_storage_missing_file(tmp_path):
    """Loading from a file that does not exist yet fails softly."""
    storage = FileStorage(tmp_path / "missing.ctl")
    assert storage.load(0, 4) is None


def test_file_storage_save_creates_file(tmp_path):
    path = tmp_path / "servo.ctl"
    storage = FileStorage(str(path))
    assert storage.path == path
    assert storage.save(0, b"\x01\x02\x03\x04") == StorageError.NONE
    assert path.read_bytes() == b"\x01\x02\x03\x04"
    assert storage.load(0, 4) == b"\x01\x02\x03\x04"


def test_file_storage_offset_write_keeps_other_bytes(tmp_path):
    path = tmp_path / "servo.ctl"
    path.write_bytes(b"\xaa" * 8)
    storage = FileStorage(path)

    assert storage.save(2, b"\x00\x00") == StorageError.NONE
    assert path.read_bytes() == b"\xaa\xaa\x00\x00\xaa\xaa\xaa\xaa"
    assert storage.load(1, 3) == b"\xaa\x00\x00"


def test_file_storage_short_file(tmp_path):
    path = tmp_path / "servo.ctl"
    path.write_bytes(b"\x01\x02")
    assert FileStorage(path).load(0, 4) is None


def test_file_storage_unwritable(tmp_path):
    """Saving into a directory that does not exist reports failure."""
    storage = FileStorage(tmp_path / "no" / "such" / "dir.ctl")
    assert storage.save(0, b"\x00") == StorageError.FAILED


def test_file_storage_needs_path():
    with pytest.raises(ValueError):
        FileStorage(None)


def test_memory_storage_empty_until_saved():
    storage = MemoryStorage(0x10)
    assert storage.load(0, 4) is None
    assert storage.save(0, b"\x05") == StorageError.NONE
    assert storage.load(0, 2) == b"\x05\x00"


def test_memory_storage_bounds():
    storage = MemoryStorage(0x10)
    assert storage.save(0x0F, b"\x00\x00") == StorageError.FAILED
    storage.save(0, b"\x00")
    assert storage.load(0x0F, 2) is None
    assert storage.data == bytes(0x10)
