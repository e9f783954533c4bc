"""Tests for firmware image slicing and loading."""

import pytest

from bafang_fw_flasher.core.firmware import FirmwareImage, load_firmware
from bafang_fw_flasher.protocol.errors import FirmwareError, OversizedFirmware

from conftest import make_firmware


def test_thirty_two_byte_image_has_two_chunks() -> None:
    """16 header bytes + 16 payload bytes -> chunks [16:24] and [24:32]."""
    data = bytes(range(32))
    image = FirmwareImage(data)

    assert image.total_size == 32
    assert image.payload_size == 16
    assert image.chunk_count == 2
    assert image.chunk(0) == data[16:24]
    assert image.chunk(1) == data[24:32]
    assert image.length_payload_hex == "000010"


@pytest.mark.parametrize("payload_size,expected", [(0, 0), (1, 1), (8, 1), (9, 2), (4800, 600)])
def test_chunk_count_rounds_up(payload_size, expected) -> None:
    assert FirmwareImage(make_firmware(payload_size)).chunk_count == expected


def test_last_chunk_may_be_short() -> None:
    image = FirmwareImage(make_firmware(11))
    assert len(image.chunk(0)) == 8
    assert len(image.chunk(1)) == 3
    assert image.chunk_hex(1) == "08090A"


def test_chunk_index_out_of_range() -> None:
    image = FirmwareImage(make_firmware(16))
    with pytest.raises(IndexError):
        image.chunk(2)
    with pytest.raises(IndexError):
        image.chunk(-1)


def test_image_shorter_than_header_rejected() -> None:
    with pytest.raises(OversizedFirmware) as excinfo:
        FirmwareImage(bytes(10))
    assert excinfo.value.payload_size == -6


def test_payload_beyond_length_field_rejected() -> None:
    with pytest.raises(OversizedFirmware):
        FirmwareImage(bytes(16 + 0x1000000))


def test_payload_beyond_chunk_index_range_rejected() -> None:
    """65537 chunks cannot be addressed with 4 hex digits."""
    with pytest.raises(OversizedFirmware):
        FirmwareImage(bytes(16 + 0x10001 * 8))
    # 65536 chunks (indices 0..0xFFFF) still fit
    assert FirmwareImage(bytes(16 + 0x10000 * 8)).chunk_count == 0x10000


def test_ready_request_payload_echoes_header_bytes() -> None:
    image = FirmwareImage(bytes([0x88, 0x45, 0xAA, 0x07]) + bytes(28))
    assert image.ready_request_payload(0x02) == "88450207"
    assert image.ready_request_payload(0x03) == "88450307"


def test_load_firmware_reads_file(tmp_path) -> None:
    path = tmp_path / "fw.bin"
    path.write_bytes(make_firmware(20))
    image = load_firmware(path)
    assert image.name == "fw.bin"
    assert image.chunk_count == 3


def test_load_firmware_missing_file(tmp_path) -> None:
    with pytest.raises(FirmwareError):
        load_firmware(tmp_path / "missing.bin")
