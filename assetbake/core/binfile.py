"""
Little-endian binary reading and writing helpers.

``Buffer`` is shared by the Aseprite decoder and the bundle table decoders;
``BinaryWriter`` produces the ``*.data`` tables.
"""

import struct
from typing import List

from .errors import MalformedInput


class Buffer:
    """Helper that keeps track of the current offset while reading little-endian data."""

    def __init__(self, data: bytes, base_offset: int = 0) -> None:
        self._data = data
        self._offset = 0
        # Offset of this buffer inside the original file, used in error messages.
        self._base = base_offset

    def __len__(self) -> int:
        return len(self._data)

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def tell(self) -> int:
        """Return the current read offset."""
        return self._offset

    def absolute(self) -> int:
        """Return the current offset relative to the start of the file."""
        return self._base + self._offset

    def seek(self, offset: int) -> None:
        """Move the read cursor to an absolute offset."""
        if offset < 0 or offset > len(self._data):
            raise MalformedInput(f"attempted to seek to invalid offset {offset}", self._base + self._offset)
        self._offset = offset

    def skip(self, count: int) -> None:
        self.seek(self._offset + count)

    def _unpack(self, fmt: str, size: int, what: str):
        if self._offset + size > len(self._data):
            raise MalformedInput(f"unexpected end of data while reading {what}", self.absolute())
        value = struct.unpack_from(fmt, self._data, self._offset)[0]
        self._offset += size
        return value

    def read_u8(self) -> int:
        return self._unpack("<B", 1, "uint8")

    def read_u16(self) -> int:
        return self._unpack("<H", 2, "uint16")

    def read_i16(self) -> int:
        return self._unpack("<h", 2, "int16")

    def read_u32(self) -> int:
        return self._unpack("<I", 4, "uint32")

    def read_i32(self) -> int:
        return self._unpack("<i", 4, "int32")

    def read_u64(self) -> int:
        return self._unpack("<Q", 8, "uint64")

    def read_f32(self) -> float:
        return self._unpack("<f", 4, "float")

    def read_fixed(self) -> float:
        """Read a 16.16 fixed point number."""
        return self.read_i32() / 65536.0

    def read_bytes(self, count: int) -> bytes:
        if count < 0 or self._offset + count > len(self._data):
            raise MalformedInput(f"unexpected end of data while reading {count} bytes", self.absolute())
        raw = self._data[self._offset : self._offset + count]
        self._offset += count
        return bytes(raw)

    def _decode(self, raw: bytes, start: int) -> str:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedInput(f"invalid UTF-8 in string: {exc.reason}", start) from exc

    def read_short_string(self) -> str:
        """Read a string prefixed by a 16-bit byte length (Aseprite STRING)."""
        start = self.absolute()
        return self._decode(self.read_bytes(self.read_u16()), start)

    def read_string(self) -> str:
        """Read a string prefixed by a 64-bit byte length (bundle tables)."""
        start = self.absolute()
        return self._decode(self.read_bytes(self.read_u64()), start)

    def sub_buffer(self, count: int) -> "Buffer":
        """Split off the next ``count`` bytes as an independent buffer."""
        base = self.absolute()
        return Buffer(self.read_bytes(count), base)


class BinaryWriter:
    """Accumulates little-endian values; counterpart of :class:`Buffer`."""

    def __init__(self) -> None:
        self._parts: List[bytes] = []

    def write_u8(self, value: int) -> None:
        self._parts.append(struct.pack("<B", value))

    def write_u32(self, value: int) -> None:
        self._parts.append(struct.pack("<I", value))

    def write_i32(self, value: int) -> None:
        self._parts.append(struct.pack("<i", value))

    def write_u64(self, value: int) -> None:
        self._parts.append(struct.pack("<Q", value))

    def write_f32(self, value: float) -> None:
        self._parts.append(struct.pack("<f", value))

    def write_string(self, value: str) -> None:
        raw = value.encode("utf-8")
        self.write_u64(len(raw))
        self._parts.append(raw)

    def getvalue(self) -> bytes:
        return b"".join(self._parts)
