import struct
from io import BytesIO
from uuid import UUID

import pytest

from dissect.vhdx.c_vhdx import NULL_GUID
from dissect.vhdx.exceptions import MalformedLogError
from dissect.vhdx.log import (
    DataDescriptor,
    DataSector,
    Log,
    LogEntry,
    LogSequence,
    ZeroDescriptor,
    find_log_sequence,
)
from tests._util import (
    KB,
    LOG_GUID,
    MB,
    data_descriptor,
    make_log_entry,
    pad,
    zero_descriptor,
)


def parse_entries(*entries: bytes) -> list[LogEntry]:
    fh = BytesIO(b"".join(entries))
    result = []
    while fh.tell() < len(fh.getvalue()):
        result.append(LogEntry(fh))
    return result


def make_log(*entries: bytes, log_guid: UUID = LOG_GUID) -> Log:
    return Log(BytesIO(pad(b"".join(entries), MB)), 0, MB, log_guid)


def test_data_sector_sequence_number() -> None:
    sector = DataSector(struct.pack("<4sI4084sI", b"data", 0x00000002, b"\x00" * 4084, 0x00000001))

    assert sector.sequence_high == 2
    assert sector.sequence_low == 1
    assert sector.sequence_number == 0x0000000200000001


def test_log_entry() -> None:
    data = bytes(range(256)) * 16
    buf = make_log_entry(
        10,
        descriptors=[
            zero_descriptor(2 * MB, 8 * KB),
            data_descriptor(3 * MB, data),
            data_descriptor(3 * MB + 4 * KB, b"\xaa" * 4096),
        ],
    )
    entry = LogEntry(BytesIO(buf))

    assert entry.offset == 0
    assert entry.size == len(buf) == 3 * 4 * KB
    assert entry.sequence_number == 10
    assert entry.header.entry_length == len(buf)
    assert entry.header.descriptor_count == 3
    assert entry.header.log_guid == LOG_GUID

    zero, first, second = entry.descriptors
    assert isinstance(zero, ZeroDescriptor)
    assert zero.file_offset == 2 * MB
    assert zero.zero_length == 8 * KB

    assert isinstance(first, DataDescriptor)
    assert first.file_offset == 3 * MB
    assert first.leading_bytes == data[:8]
    assert first.trailing_bytes == data[-4:]
    assert first.sector.sequence_number == 10
    assert first.raw_sector() == data

    assert isinstance(second, DataDescriptor)
    assert second.raw_sector() == b"\xaa" * 4096

    assert entry.data_descriptors == [first, second]
    assert entry.calculate_checksum() == entry.header.checksum
    assert entry.is_valid(LOG_GUID)


def test_log_entry_without_descriptors() -> None:
    entry = LogEntry(BytesIO(make_log_entry(1)))

    assert entry.descriptors == []
    assert entry.size == 4 * KB
    assert entry.is_valid(LOG_GUID)


def test_log_entry_unknown_descriptor() -> None:
    buf = bytearray(make_log_entry(1, descriptors=[zero_descriptor(2 * MB, 4 * KB), zero_descriptor(2 * MB, 4 * KB)]))
    buf[96:100] = b"junk"

    with pytest.raises(MalformedLogError) as exc:
        LogEntry(BytesIO(bytes(buf)))

    assert exc.value.offset == 96
    assert exc.value.tag == b"junk"


def test_log_entry_sector_sequence_mismatch() -> None:
    entries = parse_entries(
        make_log_entry(1),
        make_log_entry(2, descriptors=[data_descriptor(3 * MB, sector_sequence_number=3)]),
    )

    assert entries[0].is_valid(LOG_GUID)
    assert not entries[1].is_valid(LOG_GUID)
    assert find_log_sequence(entries, LOG_GUID).entries == entries[:1]


def test_log_entry_descriptor_sequence_mismatch() -> None:
    entry = parse_entries(make_log_entry(2, descriptors=[zero_descriptor(2 * MB, 4 * KB, sequence_number=1)]))[0]
    assert not entry.is_valid(LOG_GUID)


def test_log_entry_sector_signature() -> None:
    entry = parse_entries(make_log_entry(2, descriptors=[data_descriptor(3 * MB, sector_signature=b"atad")]))[0]
    assert not entry.is_valid(LOG_GUID)


def test_log_entry_log_guid() -> None:
    entry = parse_entries(make_log_entry(1, log_guid=UUID("6d4a4b3e-5c8f-4d1b-9f7a-8e2c1b0a9d3f")))[0]

    assert not entry.is_valid(LOG_GUID)
    assert entry.is_valid(None)
    assert entry.is_valid(NULL_GUID)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"sequence_number": 0},
        {"tail": 512},
        {"flushed_file_offset": 4 * MB + 4 * KB},
        {"last_file_offset": 4 * KB},
        {"entry_length": 8 * KB},
        {"entry_length": 4 * KB + 512},
        {"checksum": 0},
    ],
)
def test_log_entry_invalid(kwargs: dict) -> None:
    kwargs.setdefault("sequence_number", 1)
    entry = parse_entries(make_log_entry(**kwargs))[0]

    assert not entry.is_valid(LOG_GUID)


def test_log_sequence_stops_at_corrupt_entry() -> None:
    entries = parse_entries(*[make_log_entry(i) for i in range(1, 6)], make_log_entry(6, checksum=0))
    sequence = find_log_sequence(entries, LOG_GUID)

    assert [entry.sequence_number for entry in sequence] == [1, 2, 3, 4, 5]
    assert sequence.sequence_number == 5
    assert sequence.head is entries[4]
    assert sequence.tail is entries[0]
    assert sequence.is_valid()


def test_log_sequence_ignores_entries_after_corrupt_entry() -> None:
    corrupt = bytearray(make_log_entry(3))
    corrupt[20] ^= 0xFF

    entries = parse_entries(make_log_entry(1), make_log_entry(2), bytes(corrupt), make_log_entry(4))
    assert [entry.sequence_number for entry in find_log_sequence(entries, LOG_GUID)] == [1, 2]


def test_log_sequence_trailing_run() -> None:
    entries = parse_entries(
        make_log_entry(7),
        make_log_entry(8),
        make_log_entry(1, tail=8 * KB),
        make_log_entry(2, tail=8 * KB),
        make_log_entry(3, tail=8 * KB),
    )
    sequence = find_log_sequence(entries, LOG_GUID)

    assert sequence.entries == entries[2:]
    assert sequence.tail_value == 8 * KB
    assert sequence.head_value == 16 * KB
    assert sequence.is_valid()


def test_log_sequence_invalid_tail() -> None:
    entries = parse_entries(make_log_entry(1, tail=4 * KB), make_log_entry(2, tail=4 * KB))
    sequence = find_log_sequence(entries[1:], LOG_GUID)

    assert len(sequence) == 1
    assert sequence.is_valid()

    # The tail of the head points past the head
    entries = parse_entries(make_log_entry(1, tail=8 * KB), make_log_entry(2, tail=8 * KB))
    sequence = find_log_sequence(entries, LOG_GUID)

    assert len(sequence) == 2
    assert not sequence.is_empty()
    assert not sequence.is_valid()


def test_log_sequence_empty() -> None:
    sequence = find_log_sequence(parse_entries(make_log_entry(1, checksum=0), make_log_entry(2)), LOG_GUID)

    assert sequence.is_empty()
    assert not sequence.is_valid()
    assert sequence.head is None
    assert sequence.sequence_number == 0
    assert list(sequence) == []

    assert LogSequence([]).is_empty()


def test_log() -> None:
    log = make_log(
        make_log_entry(1),
        make_log_entry(2, descriptors=[data_descriptor(3 * MB), data_descriptor(3 * MB + 4 * KB)]),
        make_log_entry(3, descriptors=[zero_descriptor(2 * MB, MB)]),
    )

    assert [entry.offset for entry in log.entries] == [0, 4 * KB, 16 * KB]
    assert [entry.sequence_number for entry in log.sequence] == [1, 2, 3]
    assert log.sequence.is_valid()


def test_log_stops_at_non_log_entry() -> None:
    buf = make_log_entry(1) + make_log_entry(2) + pad(b"desc", 4 * KB) + make_log_entry(3)
    log = make_log(buf)

    assert [entry.sequence_number for entry in log.entries] == [1, 2]


def test_log_without_log_guid() -> None:
    # A zero log GUID means the log is empty, whatever is in the log region
    log = make_log(make_log_entry(1), make_log_entry(2), log_guid=NULL_GUID)

    assert log.entries == []
    assert log.sequence.is_empty()


def test_log_bounded_by_length() -> None:
    entries = b"".join(make_log_entry(i) for i in range(1, 5))
    log = Log(BytesIO(pad(entries, MB)), 0, 8 * KB, LOG_GUID)

    assert [entry.sequence_number for entry in log.entries] == [1, 2]


def test_log_offset() -> None:
    fh = BytesIO(pad(b"\xff" * MB + make_log_entry(1) + make_log_entry(2), 2 * MB))
    log = Log(fh, MB, MB, LOG_GUID)

    assert [entry.offset for entry in log.entries] == [0, 4 * KB]
    assert len(log.sequence) == 2
