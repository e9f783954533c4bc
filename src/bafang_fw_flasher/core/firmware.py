"""
Firmware image model.

The first HEADER_SIZE bytes of a Bafang image are metadata and are never
flashed; bytes 0, 1 and 3 of that header are echoed in the ready request.
The remainder is sent as CHUNK_SIZE-byte chunks, the last one possibly short.
"""

import logging
from pathlib import Path
from typing import Union

from bafang_fw_flasher.protocol.errors import FirmwareError, OversizedFirmware
from bafang_fw_flasher.protocol.frame_codec import (
    CHUNK_INDEX_MAX,
    LENGTH_FIELD_MAX,
    encode_chunk_payload,
    encode_length,
)

logger = logging.getLogger(__name__)

HEADER_SIZE = 16
CHUNK_SIZE = 8


class FirmwareImage:
    """
    Read-only view of a firmware buffer.

    Example:
        image = FirmwareImage(Path("fw.bin").read_bytes())
        image.chunk_count      # ceil((len - 16) / 8)
        image.chunk(0)         # bytes[16:24]

    Raises:
        OversizedFirmware: If the payload is negative, does not fit the
            3-byte length field, or has more chunks than a 4-digit index
            can address
    """

    HEADER_SIZE = HEADER_SIZE
    CHUNK_SIZE = CHUNK_SIZE

    def __init__(self, data: bytes, name: str = ""):
        self._data = bytes(data)
        self.name = name

        payload_size = len(self._data) - HEADER_SIZE
        if payload_size < 0:
            raise OversizedFirmware(
                f"Image is {len(self._data)} bytes, shorter than the "
                f"{HEADER_SIZE}-byte header",
                payload_size,
            )
        if payload_size > LENGTH_FIELD_MAX:
            raise OversizedFirmware(
                f"Payload of {payload_size:,} bytes exceeds the 3-byte length "
                f"field (max {LENGTH_FIELD_MAX:,})",
                payload_size,
            )
        chunk_count = -(-payload_size // CHUNK_SIZE)
        if chunk_count - 1 > CHUNK_INDEX_MAX:
            raise OversizedFirmware(
                f"Payload needs {chunk_count:,} chunks; indices stop at "
                f"0x{CHUNK_INDEX_MAX:04X}",
                payload_size,
            )

        self._payload_size = payload_size
        self._chunk_count = chunk_count

    @property
    def data(self) -> bytes:
        return self._data

    @property
    def total_size(self) -> int:
        return len(self._data)

    @property
    def payload_size(self) -> int:
        return self._payload_size

    @property
    def chunk_count(self) -> int:
        return self._chunk_count

    @property
    def header(self) -> bytes:
        return self._data[:HEADER_SIZE]

    def chunk(self, index: int) -> bytes:
        """
        Payload slice for a chunk index.

        Raises:
            IndexError: If index is outside 0..chunk_count-1
        """
        if index < 0 or index >= self._chunk_count:
            raise IndexError(f"Chunk {index} out of range (0..{self._chunk_count - 1})")
        start = HEADER_SIZE + index * CHUNK_SIZE
        return self._data[start:start + CHUNK_SIZE]

    def chunk_hex(self, index: int) -> str:
        return encode_chunk_payload(self.chunk(index))

    @property
    def length_payload_hex(self) -> str:
        """Payload of the length announcement frame."""
        return encode_length(self._payload_size)

    def ready_request_payload(self, marker: int) -> str:
        """Bytes 0 and 1, the device marker, then byte 3 of the header."""
        data = self._data
        return encode_chunk_payload(bytes([data[0], data[1], marker & 0xFF, data[3]]))

    def __repr__(self) -> str:
        return (
            f"FirmwareImage(name={self.name!r}, total_size={self.total_size}, "
            f"chunk_count={self._chunk_count})"
        )


def load_firmware(path: Union[str, Path]) -> FirmwareImage:
    """
    Read a firmware file from disk.

    Raises:
        FirmwareError: If the file cannot be read
        OversizedFirmware: If the image cannot be transferred
    """
    file_path = Path(path)
    try:
        data = file_path.read_bytes()
    except OSError as e:
        raise FirmwareError(f"Cannot read firmware file {file_path}: {e}")

    image = FirmwareImage(data, name=file_path.name)
    logger.info(
        f"Loaded {file_path.name}: {image.total_size:,} bytes, "
        f"{image.payload_size:,} byte payload, {image.chunk_count} chunks"
    )
    return image
