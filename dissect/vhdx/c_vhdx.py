from __future__ import annotations

from enum import Enum
from uuid import UUID

from dissect.cstruct import cstruct

vhdx_def = """
struct file_identifier {
    char    signature[8];
    char    creator[512];
};

struct header {
    char    signature[4];
    uint32  checksum;
    uint64  sequence_number;
    char    file_write_guid[16];
    char    data_write_guid[16];
    char    log_guid[16];
    uint16  log_version;
    uint16  version;
    uint32  log_length;
    uint64  log_offset;
    // Followed by 4016 reserved bytes
};

struct region_table_header {
    char    signature[4];
    uint32  checksum;
    uint32  entry_count;
    uint32  reserved;
};

struct region_table_entry {
    char    guid[16];
    uint64  file_offset;
    uint32  length;
    uint32  required;
};

struct log_entry_header {
    char    signature[4];
    uint32  checksum;
    uint32  entry_length;
    uint32  tail;
    uint64  sequence_number;
    uint32  descriptor_count;
    uint32  reserved;
    char    log_guid[16];
    uint64  flushed_file_offset;
    uint64  last_file_offset;
};

struct zero_descriptor {
    char    signature[4];
    uint32  reserved;
    uint64  zero_length;
    uint64  file_offset;
    uint64  sequence_number;
};

struct data_descriptor {
    char    signature[4];
    char    trailing_bytes[4];
    char    leading_bytes[8];
    uint64  file_offset;
    uint64  sequence_number;
};

struct data_sector {
    char    signature[4];
    uint32  sequence_high;
    char    data[4084];
    uint32  sequence_low;
};
"""

c_vhdx = cstruct().load(vhdx_def)

KB = 1024
MB = 1024 * KB

ALIGNMENT = 64 * KB
SECTOR_SIZE = 4 * KB

FILE_IDENTIFIER_OFFSET = 0
HEADER_OFFSETS = (1 * ALIGNMENT, 2 * ALIGNMENT)
REGION_TABLE_OFFSETS = (3 * ALIGNMENT, 4 * ALIGNMENT)

# Sizes over which the checksums are calculated
HEADER_SIZE = 4 * KB
REGION_TABLE_SIZE = 64 * KB

MAX_REGION_ENTRIES = 2047

LOG_ENTRY_HEADER_SIZE = len(c_vhdx.log_entry_header)
DESCRIPTOR_SIZE = len(c_vhdx.zero_descriptor)
DATA_SECTOR_SIZE = len(c_vhdx.data_sector)

NULL_GUID = UUID(int=0)

BAT_REGION_GUID = UUID("2DC27766-F623-4200-9D64-115E9BFD4A08")
METADATA_REGION_GUID = UUID("8B7CA206-4790-4B9A-B8FE-575F050F886E")


class Signature(Enum):
    """Known structure signatures."""

    FILE_TYPE = b"vhdxfile"
    HEAD = b"head"
    REGION = b"regi"
    LOG_ENTRY = b"loge"
    ZERO_DESC = b"zero"
    DATA_DESC = b"desc"
    DATA_SECTOR = b"data"


class UnknownSignature(bytes):
    """A signature that isn't one of the known :class:`Signature` values. Keeps the raw bytes."""

    def __repr__(self) -> str:
        return f"<UnknownSignature {bytes(self)!r}>"


class KnownRegion(Enum):
    BLOCK_ALLOCATION_TABLE = BAT_REGION_GUID
    METADATA = METADATA_REGION_GUID
