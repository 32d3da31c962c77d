from __future__ import annotations

from uuid import UUID


class Error(Exception):
    pass


class ShortReadError(Error):
    def __init__(self, offset: int, expected: int, data: bytes):
        self.offset = offset
        self.expected = expected
        self.data = data
        super().__init__(f"Short read at offset {offset:#x}: expected {expected} bytes, got {len(data)}")


class InvalidSignature(Error):
    def __init__(self, expected: bytes, found: bytes):
        self.expected = expected
        self.found = found
        super().__init__(f"Invalid signature: expected {expected!r}, found {bytes(found)!r}")


class InvalidChecksum(Error):
    def __init__(self, expected: int, computed: int):
        self.expected = expected
        self.computed = computed
        super().__init__(f"Invalid checksum: expected {expected:#010x}, computed {computed:#010x}")


class InvalidHeaderError(Error):
    pass


class UnsupportedVersion(InvalidHeaderError):
    def __init__(self, version: int):
        self.version = version
        super().__init__(f"Unsupported VHDX version: {version}")


class AlignmentError(Error):
    def __init__(self, field: str, value: int, multiple: int):
        self.field = field
        self.value = value
        self.multiple = multiple
        super().__init__(f"Invalid {field}: {value:#x} is not a multiple of {multiple:#x}")


class RequiredFieldZero(Error):
    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Invalid {field}: must not be zero")


class InvalidRegionTable(Error):
    pass


class RegionCountExceeded(InvalidRegionTable):
    def __init__(self, count: int):
        self.count = count
        super().__init__(f"Too many region table entries: {count}")


class UnknownRequiredRegion(InvalidRegionTable):
    def __init__(self, guid: UUID):
        self.guid = guid
        super().__init__(f"Unknown required region: {guid}")


class DuplicateRegion(InvalidRegionTable):
    pass


class MissingRegion(InvalidRegionTable):
    pass


class MalformedLogError(Error):
    def __init__(self, offset: int, tag: bytes):
        self.offset = offset
        self.tag = tag
        super().__init__(f"Invalid log descriptor signature at log offset {offset:#x}: {tag!r}")


class InvalidLogEntry(Error):
    pass


class SequenceMismatch(InvalidLogEntry):
    pass


class LogGuidMismatch(InvalidLogEntry):
    pass
