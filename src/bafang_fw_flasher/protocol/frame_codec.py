"""
Bafang CAN frame codec.

Pure helpers for the wire format used by the firmware transfer protocol.

Identifier layout (29-bit extended CAN id written as 8 hex digits):
    [ channel prefix (1) | command body (7) ]

Chunk command bodies:
    [ "51" | chunk marker (1) | chunk index (4, big-endian hex) ]

Acknowledgment fragments searched for in inbound identifiers:
    [ device digit (1) | "2A" | index or command suffix (4) ]

Payloads travel as contiguous uppercase hex, two digits per byte.
"""

from typing import Union

from bafang_fw_flasher.models.registry import DeviceProfile

CHUNK_INDEX_MAX = 0xFFFF
LENGTH_FIELD_MAX = 0xFFFFFF
COMMAND_BODY_DIGITS = 7
IDENTIFIER_DIGITS = 8
ACK_MARKER = "2A"

_HEX_DIGITS = set("0123456789ABCDEF")


def _is_hex(text: str) -> bool:
    return bool(text) and set(text.upper()) <= _HEX_DIGITS


def encode_chunk_index(index: int) -> str:
    """
    Format a chunk index as 4 uppercase hex digits.

    Raises:
        ValueError: If index is outside 0..0xFFFF
    """
    if index < 0 or index > CHUNK_INDEX_MAX:
        raise ValueError(f"Chunk index out of range: {index}")
    return f"{index:04X}"


def decode_chunk_index(text: str) -> int:
    """Parse a 4-hex-digit chunk index."""
    if len(text) != 4 or not _is_hex(text):
        raise ValueError(f"Invalid chunk index field: {text!r}")
    return int(text, 16)


def encode_chunk_payload(data: bytes) -> str:
    """Bytes to uppercase hex with no separators."""
    return data.hex().upper()


def format_spaced_hex(data: bytes) -> str:
    """Bytes to space-separated uppercase hex (diagnostic output only)."""
    return " ".join(f"{b:02X}" for b in data)


def encode_length(payload_size: int) -> str:
    """
    Format the payload length announcement (3 bytes, big-endian).

    Raises:
        ValueError: If size does not fit in 24 bits
    """
    if payload_size < 0 or payload_size > LENGTH_FIELD_MAX:
        raise ValueError(f"Payload size out of range: {payload_size}")
    return f"{payload_size:06X}"


def build_outgoing_id(profile: DeviceProfile, suffix: str) -> str:
    """
    Prepend the profile channel prefix to a 7-digit command body.

    Raises:
        ValueError: If suffix is not 7 hex digits
    """
    if len(suffix) != COMMAND_BODY_DIGITS or not _is_hex(suffix):
        raise ValueError(f"Command body must be {COMMAND_BODY_DIGITS} hex digits: {suffix!r}")
    return f"{profile.channel_prefix}{suffix.upper()}"


def chunk_command(profile: DeviceProfile, marker: str, index: int) -> str:
    """Command body for a chunk frame, e.g. '5150102'."""
    return f"{profile.chunk_command_group}{marker}{encode_chunk_index(index)}"


def ack_fragment(profile: DeviceProfile, index: int) -> str:
    """Expected acknowledgment fragment for a chunk index, e.g. '22A0102'."""
    return f"{profile.ack_device_digit}{ACK_MARKER}{encode_chunk_index(index)}"


def normalize_id(identifier: Union[int, str]) -> str:
    """Identifier as fixed-width uppercase hex."""
    if isinstance(identifier, int):
        return f"{identifier:0{IDENTIFIER_DIGITS}X}"
    text = identifier.strip().upper()
    if text.startswith("0X"):
        text = text[2:]
    return text.zfill(IDENTIFIER_DIGITS)


def matches_ack(incoming_id: Union[int, str], expected_fragment: str) -> bool:
    """
    True if the inbound identifier contains the expected fragment.

    Adapters add leading/trailing session digits that vary by hardware,
    so acknowledgments are matched by containment, never equality.
    """
    if not expected_fragment:
        return False
    return expected_fragment.upper() in normalize_id(incoming_id)


def is_own_chunk_frame(profile: DeviceProfile, incoming_id: Union[int, str]) -> bool:
    """True for loopback copies of our own outgoing chunk frames."""
    normalized = normalize_id(incoming_id)
    head = f"{profile.channel_prefix}{profile.chunk_command_group}"
    return any(normalized.startswith(head + marker) for marker in profile.chunk_prefixes)


def hex_to_bytes(payload_hex: str) -> bytes:
    """Parse hex text with or without byte separators."""
    return bytes.fromhex(payload_hex.replace(" ", ""))
