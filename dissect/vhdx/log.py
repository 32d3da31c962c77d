# References:
# - [MS-VHDX] 2.3 Log

from __future__ import annotations

import logging
import os
from typing import BinaryIO, Iterator, Union
from uuid import UUID

from dissect.util.stream import RangeStream

from dissect.vhdx.c_vhdx import (
    DATA_SECTOR_SIZE,
    DESCRIPTOR_SIZE,
    LOG_ENTRY_HEADER_SIZE,
    MB,
    NULL_GUID,
    SECTOR_SIZE,
    Signature,
    c_vhdx,
)
from dissect.vhdx.exceptions import (
    AlignmentError,
    Error,
    InvalidChecksum,
    InvalidLogEntry,
    InvalidSignature,
    LogGuidMismatch,
    MalformedLogError,
    RequiredFieldZero,
    SequenceMismatch,
)
from dissect.vhdx.util import Checksum, align, decode_signature, peek, read_exact

log = logging.getLogger(__name__)
log.setLevel(os.getenv("DISSECT_LOG_VHDX", "CRITICAL"))


class LogHeader:
    def __init__(self, buf: bytes):
        self.raw = buf
        self.header = c_vhdx.log_entry_header(buf)

        self.signature = decode_signature(self.header.signature)
        self.checksum = self.header.checksum
        self.entry_length = self.header.entry_length
        self.tail = self.header.tail
        self.sequence_number = self.header.sequence_number
        self.descriptor_count = self.header.descriptor_count
        self.log_guid = UUID(bytes_le=self.header.log_guid)
        self.flushed_file_offset = self.header.flushed_file_offset
        self.last_file_offset = self.header.last_file_offset

    def __repr__(self) -> str:
        return (
            f"<LogHeader sequence_number={self.sequence_number} tail={self.tail:#x} "
            f"descriptor_count={self.descriptor_count}>"
        )

    def validate(self) -> None:
        if self.signature != Signature.LOG_ENTRY:
            raise InvalidSignature(Signature.LOG_ENTRY.value, self.header.signature)

        if self.entry_length % SECTOR_SIZE:
            raise AlignmentError("entry length", self.entry_length, SECTOR_SIZE)

        if self.tail % SECTOR_SIZE:
            raise AlignmentError("tail", self.tail, SECTOR_SIZE)

        if not self.sequence_number:
            raise RequiredFieldZero("sequence number")

        if self.flushed_file_offset % MB:
            raise AlignmentError("flushed file offset", self.flushed_file_offset, MB)

        if self.last_file_offset % MB:
            raise AlignmentError("last file offset", self.last_file_offset, MB)


class ZeroDescriptor:
    """Describes a range of the file that must be zeroed."""

    def __init__(self, buf: bytes):
        self.raw = buf
        self.descriptor = c_vhdx.zero_descriptor(buf)
        self.signature = decode_signature(self.descriptor.signature)
        self.zero_length = self.descriptor.zero_length
        self.file_offset = self.descriptor.file_offset
        self.sequence_number = self.descriptor.sequence_number

    def __repr__(self) -> str:
        return f"<ZeroDescriptor file_offset={self.file_offset:#x} zero_length={self.zero_length:#x}>"


class DataDescriptor:
    """Describes a single 4 KB sector write.

    The sector data itself is stored in a :class:`DataSector` following the descriptors. Because the data sector
    uses its first 8 and last 4 bytes for its own signature and sequence number, the original bytes at those
    positions are stored in the descriptor instead.
    """

    def __init__(self, buf: bytes):
        self.raw = buf
        self.descriptor = c_vhdx.data_descriptor(buf)
        self.signature = decode_signature(self.descriptor.signature)
        self.trailing_bytes = self.descriptor.trailing_bytes
        self.leading_bytes = self.descriptor.leading_bytes
        self.file_offset = self.descriptor.file_offset
        self.sequence_number = self.descriptor.sequence_number

        self.sector: DataSector | None = None

    def __repr__(self) -> str:
        return f"<DataDescriptor file_offset={self.file_offset:#x} sector={self.sector!r}>"

    def raw_sector(self) -> bytes | None:
        """Reconstruct the sector as it must be written to :attr:`file_offset`."""
        if self.sector is None:
            return None
        return self.leading_bytes + self.sector.data + self.trailing_bytes


Descriptor = Union[ZeroDescriptor, DataDescriptor]

DESCRIPTOR_TYPES = {
    Signature.ZERO_DESC: ZeroDescriptor,
    Signature.DATA_DESC: DataDescriptor,
}


class DataSector:
    def __init__(self, buf: bytes):
        self.raw = buf
        self.sector = c_vhdx.data_sector(buf)
        self.signature = decode_signature(self.sector.signature)
        self.sequence_high = self.sector.sequence_high
        self.sequence_low = self.sector.sequence_low
        self.data = self.sector.data

    def __repr__(self) -> str:
        return f"<DataSector sequence_number={self.sequence_number}>"

    @property
    def sequence_number(self) -> int:
        return (self.sequence_high << 32) | self.sequence_low


class LogEntry:
    """A single log entry.

    A log entry is laid out as follows::

        [log entry header][descriptors][zero padding to 4 KB][one data sector per data descriptor]

    The descriptors are read first, after which the data sectors are read and attached to their data
    descriptor, in the order the data descriptors appear.

    Args:
        fh: File-like object positioned at the start of the log entry.

    Raises:
        MalformedLogError: If a descriptor has an unknown signature.
    """

    def __init__(self, fh: BinaryIO):
        self.offset = fh.tell()
        self.header = LogHeader(read_exact(fh, LOG_ENTRY_HEADER_SIZE))

        self.descriptors: list[Descriptor] = []
        for _ in range(self.header.descriptor_count):
            tag = peek(fh, 4)
            descriptor_type = DESCRIPTOR_TYPES.get(decode_signature(tag))
            if descriptor_type is None:
                raise MalformedLogError(fh.tell(), tag)

            self.descriptors.append(descriptor_type(read_exact(fh, DESCRIPTOR_SIZE)))

        fh.seek(self.offset + self._descriptor_area_size)
        for descriptor in self.data_descriptors:
            descriptor.sector = DataSector(read_exact(fh, DATA_SECTOR_SIZE))

        self.size = fh.tell() - self.offset

    def __repr__(self) -> str:
        return (
            f"<LogEntry offset={self.offset:#x} sequence_number={self.sequence_number} "
            f"descriptors={len(self.descriptors)}>"
        )

    @property
    def _descriptor_area_size(self) -> int:
        return align(LOG_ENTRY_HEADER_SIZE + self.header.descriptor_count * DESCRIPTOR_SIZE, SECTOR_SIZE)

    @property
    def sequence_number(self) -> int:
        return self.header.sequence_number

    @property
    def tail(self) -> int:
        return self.header.tail

    @property
    def data_descriptors(self) -> list[DataDescriptor]:
        return [descriptor for descriptor in self.descriptors if isinstance(descriptor, DataDescriptor)]

    def calculate_checksum(self) -> int:
        digest = Checksum().update_zeroed(self.header.raw)
        for descriptor in self.descriptors:
            digest.update(descriptor.raw)
        digest.pad(SECTOR_SIZE)

        for descriptor in self.data_descriptors:
            digest.update(descriptor.sector.raw)

        return digest.digest()

    def validate(self, log_guid: UUID | None = None) -> None:
        """Validate this log entry.

        Args:
            log_guid: The log GUID of the current header. Only checked if it's not zero.

        Raises:
            Error: A subclass describing the first problem found.
        """
        self.header.validate()

        if self.header.entry_length != self.size:
            raise InvalidLogEntry(f"Entry length {self.header.entry_length:#x} doesn't match entry size {self.size:#x}")

        if (computed := self.calculate_checksum()) != self.header.checksum:
            raise InvalidChecksum(self.header.checksum, computed)

        if log_guid is not None and log_guid != NULL_GUID and self.header.log_guid != log_guid:
            raise LogGuidMismatch(f"Log GUID {self.header.log_guid} doesn't match header log GUID {log_guid}")

        for descriptor in self.descriptors:
            if descriptor.sequence_number != self.sequence_number:
                raise SequenceMismatch(
                    f"Descriptor sequence number {descriptor.sequence_number} doesn't match "
                    f"entry sequence number {self.sequence_number}"
                )

        for descriptor in self.data_descriptors:
            if descriptor.sector.signature != Signature.DATA_SECTOR:
                raise InvalidSignature(Signature.DATA_SECTOR.value, descriptor.sector.sector.signature)

            if descriptor.sector.sequence_number != descriptor.sequence_number:
                raise SequenceMismatch(
                    f"Data sector sequence number {descriptor.sector.sequence_number} doesn't match "
                    f"descriptor sequence number {descriptor.sequence_number}"
                )

    def is_valid(self, log_guid: UUID | None = None) -> bool:
        try:
            self.validate(log_guid)
        except Error as e:
            log.debug("Invalid log entry %r: %s", self, e)
            return False
        return True


class LogSequence:
    """A run of log entries that can be replayed.

    Args:
        entries: The entries of the sequence, ordered by ascending sequence number.
    """

    def __init__(self, entries: list[LogEntry]):
        self.entries = entries
        self.sequence_number = self.head.sequence_number if entries else 0
        self.tail_value = entries[0].offset if entries else 0
        self.head_value = self.head.offset if entries else 0

    def __repr__(self) -> str:
        return f"<LogSequence sequence_number={self.sequence_number} entries={len(self.entries)}>"

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(self.entries)

    @property
    def head(self) -> LogEntry | None:
        return self.entries[-1] if self.entries else None

    @property
    def tail(self) -> LogEntry | None:
        return self.entries[0] if self.entries else None

    def is_empty(self) -> bool:
        return not self.entries

    def is_valid(self) -> bool:
        """Whether the tail of the head entry points into this sequence."""
        if self.is_empty():
            return False
        return self.tail_value <= self.head.tail <= self.head_value


def find_log_sequence(entries: list[LogEntry], log_guid: UUID | None = None) -> LogSequence:
    """Find the log sequence to replay in a list of log entries.

    The entries are considered in on-disk order. The first invalid entry ends the search, so a torn write at the
    end of the log only truncates the sequence. Of the remaining entries, the sequence is the trailing run with
    strictly increasing sequence numbers.

    Args:
        entries: The parsed log entries, in on-disk order.
        log_guid: The log GUID of the current header.
    """
    run = []

    for entry in entries:
        if not entry.is_valid(log_guid):
            break

        if run and entry.sequence_number <= run[-1].sequence_number:
            run = []
        run.append(entry)

    sequence = LogSequence(run)
    log.debug("Selected %r", sequence)
    return sequence


class Log:
    """The log region of a VHDX file.

    Args:
        fh: File-like object of the VHDX file.
        offset: Offset of the log region.
        length: Length of the log region.
        log_guid: The log GUID of the current header. If it's zero, the log is empty and isn't read at all.
    """

    def __init__(self, fh: BinaryIO, offset: int, length: int, log_guid: UUID):
        self.offset = offset
        self.length = length
        self.log_guid = log_guid

        self.entries: list[LogEntry] = []
        if log_guid != NULL_GUID:
            self.entries = list(self._iter_entries(RangeStream(fh, offset, length)))
        else:
            log.debug("Log GUID is zero, not reading log at %#x", offset)

        self.sequence = find_log_sequence(self.entries, log_guid) if self.entries else LogSequence([])

    def __repr__(self) -> str:
        return f"<Log offset={self.offset:#x} length={self.length:#x} entries={len(self.entries)}>"

    def _iter_entries(self, fh: BinaryIO) -> Iterator[LogEntry]:
        offset = 0
        while self.length - offset >= LOG_ENTRY_HEADER_SIZE:
            fh.seek(offset)
            if decode_signature(peek(fh, 4)) != Signature.LOG_ENTRY:
                break

            entry = LogEntry(fh)
            log.debug("Parsed %r", entry)
            yield entry

            offset += entry.size
