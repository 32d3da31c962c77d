# References:
# - [MS-VHDX] 2.2 Header Section

from __future__ import annotations

import logging
import os
from typing import BinaryIO, Callable, Sequence, TypeVar
from uuid import UUID

from dissect.vhdx.c_vhdx import HEADER_SIZE, MB, NULL_GUID, Signature, c_vhdx
from dissect.vhdx.exceptions import (
    AlignmentError,
    Error,
    InvalidChecksum,
    InvalidSignature,
    RequiredFieldZero,
    UnsupportedVersion,
)
from dissect.vhdx.util import checksum, decode_signature, read_exact

log = logging.getLogger(__name__)
log.setLevel(os.getenv("DISSECT_LOG_VHDX", "CRITICAL"))

T = TypeVar("T")


class FileTypeIdentifier:
    """The file type identifier at the start of every VHDX file.

    Args:
        fh: File-like object positioned at the start of the file type identifier.
    """

    def __init__(self, fh: BinaryIO):
        self.offset = fh.tell()
        self.identifier = c_vhdx.file_identifier(read_exact(fh, len(c_vhdx.file_identifier)))
        self.signature = decode_signature(self.identifier.signature)

        if self.signature != Signature.FILE_TYPE:
            raise InvalidSignature(Signature.FILE_TYPE.value, self.identifier.signature)

        self.creator = self.identifier.creator.decode("utf-16-le", errors="replace").split("\x00")[0]

    def __repr__(self) -> str:
        return f"<FileTypeIdentifier creator={self.creator!r}>"


class Header:
    """A single copy of the VHDX header.

    Decoding a header never validates it, call :meth:`validate` for that. This allows the caller to inspect
    both copies and decide which one is current, see :func:`select_current`.

    Args:
        fh: File-like object positioned at the start of the header.
    """

    def __init__(self, fh: BinaryIO):
        self.offset = fh.tell()
        self.raw = read_exact(fh, len(c_vhdx.header))
        self.header = c_vhdx.header(self.raw)

        self.signature = decode_signature(self.header.signature)
        self.checksum = self.header.checksum
        self.sequence_number = self.header.sequence_number
        self.file_write_guid = UUID(bytes_le=self.header.file_write_guid)
        self.data_write_guid = UUID(bytes_le=self.header.data_write_guid)
        self.log_guid = UUID(bytes_le=self.header.log_guid)
        self.log_version = self.header.log_version
        self.version = self.header.version
        self.log_length = self.header.log_length
        self.log_offset = self.header.log_offset

    def __repr__(self) -> str:
        return (
            f"<Header offset={self.offset:#x} sequence_number={self.sequence_number} "
            f"log_offset={self.log_offset:#x} log_length={self.log_length:#x}>"
        )

    @property
    def has_log(self) -> bool:
        """Whether this header refers to a log that may need replaying."""
        return self.log_guid != NULL_GUID

    def calculate_checksum(self) -> int:
        return checksum(self.raw, HEADER_SIZE)

    @property
    def checksum_valid(self) -> bool:
        return self.calculate_checksum() == self.checksum

    def validate(self, verify: bool = True) -> None:
        """Validate this header copy.

        Args:
            verify: Whether to verify the checksum.

        Raises:
            InvalidSignature: If the signature isn't ``head``.
            InvalidChecksum: If the stored checksum doesn't match.
            UnsupportedVersion: If the format or log version is unsupported.
            AlignmentError: If the log offset or length isn't a multiple of 1 MB.
        """
        if self.signature != Signature.HEAD:
            raise InvalidSignature(Signature.HEAD.value, self.header.signature)

        if verify and (computed := self.calculate_checksum()) != self.checksum:
            raise InvalidChecksum(self.checksum, computed)

        if self.version != 1:
            raise UnsupportedVersion(self.version)

        # A non-zero log version is only acceptable if there's no log to replay
        if self.log_version != 0 and self.has_log:
            raise UnsupportedVersion(self.log_version)

        if self.log_length % MB:
            raise AlignmentError("log length", self.log_length, MB)

        if self.log_offset % MB:
            raise AlignmentError("log offset", self.log_offset, MB)

        if self.log_length and not self.log_offset:
            raise RequiredFieldZero("log offset")


def select_current(
    copies: Sequence[T],
    validate: Callable[[T], None],
    key: Callable[[T], int] | None = None,
) -> T:
    """Select the current copy of a redundantly stored structure.

    Every copy is validated independently. Of the copies that pass validation, the one with the highest ``key``
    is current. Without a ``key`` the first valid copy is current.

    Args:
        copies: The decoded copies, in on-disk order.
        validate: Callable that raises an :class:`Error` if a copy is invalid.
        key: Optional callable returning the sequence number of a copy.

    Raises:
        Error: The validation error of the first copy if none of the copies are valid.
    """
    valid = []
    errors = []

    for copy in copies:
        try:
            validate(copy)
        except Error as e:
            log.debug("Rejecting %r: %s", copy, e)
            errors.append(e)
        else:
            valid.append(copy)

    if not valid:
        raise errors[0]

    if key is None:
        return valid[0]
    return max(valid, key=key)
