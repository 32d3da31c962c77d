from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import BinaryIO

import pytest

from tests._util import HEADER_FIXTURE, REGION_TABLE_FIXTURE, make_image, make_log_entry, pad


@pytest.fixture
def header_fixture() -> BinaryIO:
    return BytesIO(pad(HEADER_FIXTURE, 64 * 1024))


@pytest.fixture
def region_table_fixture() -> BinaryIO:
    return BytesIO(pad(REGION_TABLE_FIXTURE, 64 * 1024))


@pytest.fixture
def basic_vhdx() -> BinaryIO:
    return make_image(log_entries=[make_log_entry(1), make_log_entry(2), make_log_entry(3)])


@pytest.fixture
def basic_vhdx_path(tmp_path: Path, basic_vhdx: BinaryIO) -> Path:
    path = tmp_path.joinpath("basic.vhdx")
    path.write_bytes(basic_vhdx.getvalue())
    return path
