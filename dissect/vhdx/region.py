# References:
# - [MS-VHDX] 2.2.3 Region Table

from __future__ import annotations

from typing import BinaryIO
from uuid import UUID

from dissect.vhdx.c_vhdx import MAX_REGION_ENTRIES, MB, REGION_TABLE_SIZE, KnownRegion, Signature, c_vhdx
from dissect.vhdx.exceptions import (
    AlignmentError,
    DuplicateRegion,
    InvalidChecksum,
    InvalidSignature,
    MissingRegion,
    RegionCountExceeded,
    RequiredFieldZero,
    UnknownRequiredRegion,
)
from dissect.vhdx.util import Checksum, decode_signature, read_exact


class RegionTableEntry:
    def __init__(self, buf: bytes):
        self.raw = buf
        self.entry = c_vhdx.region_table_entry(buf)
        self.guid = UUID(bytes_le=self.entry.guid)
        self.file_offset = self.entry.file_offset
        self.length = self.entry.length
        self.required = bool(self.entry.required & 1)

        try:
            self.region = KnownRegion(self.guid)
        except ValueError:
            self.region = None

    def __repr__(self) -> str:
        name = self.region.name if self.region else self.guid
        return f"<RegionTableEntry {name} file_offset={self.file_offset:#x} length={self.length:#x}>"


class RegionTable:
    """A single copy of the region table.

    Entries of known regions are available through :meth:`get`. Unrecognized entries that aren't required
    are kept in :attr:`ignored`, an unrecognized required entry makes this copy invalid.

    Decoding never validates the table, call :meth:`validate` for that. If the entry count is larger than
    2047 no entries are read at all.

    Args:
        fh: File-like object positioned at the start of the region table.
    """

    def __init__(self, fh: BinaryIO):
        self.offset = fh.tell()
        self.raw_header = read_exact(fh, len(c_vhdx.region_table_header))
        self.header = c_vhdx.region_table_header(self.raw_header)

        self.signature = decode_signature(self.header.signature)
        self.checksum = self.header.checksum
        self.entry_count = self.header.entry_count

        self.entries = []
        if self.entry_count <= MAX_REGION_ENTRIES:
            entry_size = len(c_vhdx.region_table_entry)
            self.entries = [RegionTableEntry(read_exact(fh, entry_size)) for _ in range(self.entry_count)]

        self.ignored = [entry for entry in self.entries if entry.region is None and not entry.required]

        self.lookup = {entry.region: entry for entry in self.entries if entry.region is not None}

    def __repr__(self) -> str:
        return f"<RegionTable offset={self.offset:#x} entry_count={self.entry_count}>"

    def calculate_checksum(self) -> int:
        digest = Checksum(REGION_TABLE_SIZE).update_zeroed(self.raw_header)
        for entry in self.entries:
            digest.update(entry.raw)
        return digest.digest()

    def validate(self, verify: bool = True) -> None:
        """Validate this region table copy.

        Args:
            verify: Whether to verify the checksum.

        Raises:
            InvalidSignature: If the signature isn't ``regi``.
            RegionCountExceeded: If the entry count is larger than 2047.
            UnknownRequiredRegion: If an entry is marked as required but its GUID is not known.
            InvalidChecksum: If the stored checksum doesn't match.
        """
        if self.signature != Signature.REGION:
            raise InvalidSignature(Signature.REGION.value, self.header.signature)

        if self.entry_count > MAX_REGION_ENTRIES:
            raise RegionCountExceeded(self.entry_count)

        for entry in self.entries:
            if entry.region is None and entry.required:
                raise UnknownRequiredRegion(entry.guid)

        if verify and (computed := self.calculate_checksum()) != self.checksum:
            raise InvalidChecksum(self.checksum, computed)

        seen = set()
        for entry in self.entries:
            if entry.region is None:
                continue

            if entry.region in seen:
                raise DuplicateRegion(f"Duplicate region table entry: {entry.region.name}")
            seen.add(entry.region)

            if not entry.file_offset:
                raise RequiredFieldZero(f"{entry.region.name} file offset")

            if entry.file_offset % MB:
                raise AlignmentError(f"{entry.region.name} file offset", entry.file_offset, MB)

            if entry.length % MB:
                raise AlignmentError(f"{entry.region.name} length", entry.length, MB)

        for region in KnownRegion:
            if region not in seen:
                raise MissingRegion(f"Missing region table entry: {region.name}")

    def get(self, region: KnownRegion, required: bool = True) -> RegionTableEntry | None:
        entry = self.lookup.get(region)
        if not entry and required:
            raise MissingRegion(f"Missing region table entry: {region.name}")
        return entry
