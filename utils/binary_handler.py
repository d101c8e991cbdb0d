"""
Common binary file handling utilities.

This module provides the BinaryHandler cursor used by the bank codec
for little-endian reads and writes over an in-memory buffer.
"""

import struct
from typing import Any, Union
from contextlib import contextmanager


def align_padding(length: int, alignment: int = 4) -> int:
    """Number of zero bytes needed to round ``length`` up to ``alignment``."""
    return (alignment - (length % alignment)) % alignment


class BinaryHandler:

    def __init__(self, data: Union[bytes, bytearray], offset: int = 0):
        self.data = bytearray(data) if isinstance(data, (bytes, memoryview)) else data
        self.position = 0
        self.offset = offset

    def __len__(self) -> int:
        return len(self.data)

    @property
    def tell(self) -> int:
        """Get current position in file."""
        return self.offset + self.position

    @property
    def remaining(self) -> int:
        return max(0, len(self.data) - self.tell)

    def seek(self, pos: int):
        """Seek to absolute position."""
        if pos < 0:
            raise ValueError(f"Cannot seek to negative position: {pos}")
        self.position = pos - self.offset

    @contextmanager
    def seek_jump_back(self, pos: int):
        """Context manager for temporary seek operations."""
        saved = self.position
        try:
            self.seek(pos)
            yield
        finally:
            self.position = saved

    def skip(self, count: int):
        self.position += count

    def align(self, alignment: int):
        padding = align_padding(self.tell, alignment)
        if padding > 0:
            self.skip(padding)

    def align_write(self, alignment: int):
        padding = align_padding(self.tell, alignment)
        if padding > 0:
            self.write_bytes(b'\x00' * padding)

    def read(self, fmt: str) -> Any:
        size = struct.calcsize(fmt)
        data = self.read_bytes(size)
        result = struct.unpack_from(fmt, data, 0)
        return result[0] if len(result) == 1 else result

    def write(self, fmt: str, *values):
        size = struct.calcsize(fmt)
        self._ensure_capacity(self.tell + size)
        struct.pack_into(fmt, self.data, self.tell, *values)
        self.position += size

    def read_bytes(self, count: int) -> bytes:
        if count < 0:
            raise ValueError(f"Cannot read a negative byte count: {count}")
        available = len(self.data) - self.tell
        if available < count:
            raise EOFError(f"Attempted to read {count} bytes but only {max(available, 0)} bytes available at position {self.tell}")
        result = self.data[self.tell:self.tell + count]
        self.position += count
        return bytes(result)

    def peek_bytes(self, count: int) -> bytes:
        """Return up to ``count`` bytes at the cursor without moving it."""
        return bytes(self.data[self.tell:self.tell + count])

    def write_bytes(self, data: bytes):
        self._ensure_capacity(self.tell + len(data))
        self.data[self.tell:self.tell + len(data)] = data
        self.position += len(data)

    def _ensure_capacity(self, required: int):
        if required > len(self.data):
            self.data.extend(b'\x00' * (required - len(self.data)))

    def read_uint8(self) -> int:
        return self.read('<B')

    def read_uint16(self) -> int:
        return self.read('<H')

    def read_int32(self) -> int:
        return self.read('<i')

    def read_uint32(self) -> int:
        return self.read('<I')

    def read_float(self) -> float:
        return self.read('<f')

    def write_uint8(self, value: int):
        self.write('<B', value)

    def write_uint16(self, value: int):
        self.write('<H', value)

    def write_int32(self, value: int):
        self.write('<i', value)

    def write_uint32(self, value: int):
        self.write('<I', value)

    def write_float(self, value: float):
        self.write('<f', value)

    def read_magic(self, size: int = 4) -> bytes:
        return self.read_bytes(size)

    def read_len_string(self, encoding: str = 'utf-8') -> str:
        """Read a u8-length string whose length counts the trailing null."""
        length = self.read_uint8()
        if length == 0:
            return ""
        raw = self.read_bytes(length - 1)
        self.skip(1)
        return raw.decode(encoding, errors='replace')

    def write_len_string(self, value: str, encoding: str = 'utf-8'):
        raw = value.encode(encoding)[:0xFE]
        self.write_uint8(len(raw) + 1)
        self.write_bytes(raw)
        self.write_uint8(0)

    def write_at(self, offset: int, fmt: str, *values):
        saved_pos = self.position
        self.seek(offset)
        self.write(fmt, *values)
        self.position = saved_pos

    def get_bytes(self) -> bytes:
        return bytes(self.data[:self.tell])
