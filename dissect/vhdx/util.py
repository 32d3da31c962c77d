from __future__ import annotations

from typing import BinaryIO

from dissect.util.crc32c import crc32c

from dissect.vhdx.c_vhdx import Signature, UnknownSignature
from dissect.vhdx.exceptions import ShortReadError


def read_exact(fh: BinaryIO, size: int) -> bytes:
    """Read exactly ``size`` bytes from ``fh``.

    Raises:
        ShortReadError: If the file-like object runs out of data. The partial data is kept on the exception.
    """
    offset = fh.tell()
    buf = fh.read(size)
    if len(buf) != size:
        raise ShortReadError(offset, size, buf)
    return buf


def decode_signature(buf: bytes) -> Signature | UnknownSignature:
    try:
        return Signature(bytes(buf))
    except ValueError:
        return UnknownSignature(buf)


def align(value: int, alignment: int) -> int:
    """Round ``value`` up to the next multiple of ``alignment``."""
    return (value + alignment - 1) // alignment * alignment


class Checksum:
    """Incremental CRC-32C over a structure as it is laid out on disk.

    Structures are fed in on-disk order. The checksum field of a structure is fed in as zero bytes with
    :meth:`update_zeroed`, and any remaining space up to the declared structure size is included as zero
    bytes when calculating the digest.

    Args:
        size: The declared size of the structure, or ``None`` if it's exactly the amount of bytes fed in.
    """

    def __init__(self, size: int | None = None):
        self.size = size
        self.length = 0
        self._crc = 0

    def __len__(self) -> int:
        return self.length

    def update(self, data: bytes) -> Checksum:
        self._crc = crc32c(data, self._crc)
        self.length += len(data)
        return self

    def update_zeroed(self, data: bytes, offset: int = 4, length: int = 4) -> Checksum:
        """Add ``data`` with the checksum field at ``offset`` replaced by zero bytes."""
        self.update(data[:offset])
        self.update(b"\x00" * length)
        return self.update(data[offset + length :])

    def pad(self, alignment: int) -> Checksum:
        """Zero pad up to the next multiple of ``alignment``."""
        return self.update(b"\x00" * (align(self.length, alignment) - self.length))

    def digest(self) -> int:
        if self.size is None:
            return self._crc

        if self.length > self.size:
            raise ValueError(f"Checksum data exceeds declared size ({self.length} > {self.size})")
        return crc32c(b"\x00" * (self.size - self.length), self._crc)


def checksum(data: bytes, size: int | None = None, offset: int = 4) -> int:
    """Calculate the checksum of a single structure with its checksum field at ``offset``."""
    return Checksum(size).update_zeroed(data, offset).digest()


def peek(fh: BinaryIO, size: int) -> bytes:
    """Read ``size`` bytes from ``fh`` without moving the file pointer."""
    offset = fh.tell()
    try:
        return read_exact(fh, size)
    finally:
        fh.seek(offset)
