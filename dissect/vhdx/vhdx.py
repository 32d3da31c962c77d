# References:
# - [MS-VHDX] https://docs.microsoft.com/en-us/openspecs/windows_protocols/ms-vhdx/83e061f8-f6e2-4de1-91bd-5d518a43d477

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, BinaryIO, Callable

from dissect.vhdx.c_vhdx import (
    FILE_IDENTIFIER_OFFSET,
    HEADER_OFFSETS,
    REGION_TABLE_OFFSETS,
    KnownRegion,
)
from dissect.vhdx.header import FileTypeIdentifier, Header, select_current
from dissect.vhdx.log import Log
from dissect.vhdx.region import RegionTable

log = logging.getLogger(__name__)
log.setLevel(os.getenv("DISSECT_LOG_VHDX", "CRITICAL"))


class VHDX:
    """Hyper-V VHDX container.

    Reads the file type identifier, both headers and both region tables, selects the current header and
    region table and reads the log. The block allocation table and metadata region are not interpreted,
    only their location is made available. A ``metadata_parser`` can be given to parse the metadata region,
    it's called as ``metadata_parser(fh, offset, length)`` and its result is stored in :attr:`metadata`.

    Args:
        fh: File-like object, or path to the VHDX file.
        verify: Whether to verify the checksums of the headers and region tables.
        metadata_parser: Optional callable to parse the metadata region.
    """

    def __init__(
        self,
        fh: BinaryIO | Path | str,
        verify: bool = True,
        metadata_parser: Callable[[BinaryIO, int, int], Any] | None = None,
    ):
        if hasattr(fh, "read"):
            name = getattr(fh, "name", None)
            path = Path(name) if isinstance(name, str) else None
            opened = False
        else:
            if not isinstance(fh, Path):
                fh = Path(fh)
            path = fh
            fh = path.open("rb")
            opened = True

        self.fh = fh
        self.path = path
        self.verify = verify

        try:
            self._read(metadata_parser)
        except Exception:
            if opened:
                fh.close()
            raise

    def _read(self, metadata_parser: Callable[[BinaryIO, int, int], Any] | None) -> None:
        fh = self.fh
        verify = self.verify

        fh.seek(FILE_IDENTIFIER_OFFSET)
        self.file_identifier = FileTypeIdentifier(fh)

        self.headers = []
        for offset in HEADER_OFFSETS:
            fh.seek(offset)
            self.headers.append(Header(fh))

        self.header = select_current(
            self.headers,
            lambda header: header.validate(verify),
            key=lambda header: header.sequence_number,
        )
        log.debug("Current header: %r", self.header)

        self.region_tables = []
        for offset in REGION_TABLE_OFFSETS:
            fh.seek(offset)
            self.region_tables.append(RegionTable(fh))

        self.region_table = select_current(self.region_tables, lambda table: table.validate(verify))
        log.debug("Current region table: %r", self.region_table)

        self.log = Log(fh, self.header.log_offset, self.header.log_length, self.header.log_guid)
        if not self.log.sequence.is_empty() and not self.log.sequence.is_valid():
            log.warning("Log sequence of %s is not replayable: tail doesn't point into the sequence", self.path or fh)

        bat_entry = self.region_table.get(KnownRegion.BLOCK_ALLOCATION_TABLE)
        self.bat_offset = bat_entry.file_offset
        self.bat_length = bat_entry.length

        metadata_entry = self.region_table.get(KnownRegion.METADATA)
        self.metadata_offset = metadata_entry.file_offset
        self.metadata_length = metadata_entry.length

        self.metadata = None
        if metadata_parser is not None:
            self.metadata = metadata_parser(fh, self.metadata_offset, self.metadata_length)

    def __repr__(self) -> str:
        return f"<VHDX path={self.path} creator={self.file_identifier.creator!r}>"

    @property
    def creator(self) -> str:
        return self.file_identifier.creator

    @property
    def needs_replay(self) -> bool:
        """Whether the log contains a valid sequence that must be replayed before the disk is consistent."""
        return self.log.sequence.is_valid()
