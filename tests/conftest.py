"""Shared fixtures: millisecond-scale timing and synthetic firmware images."""

import pytest

from bafang_fw_flasher.core.config import TransferConfig

FAST_CONFIG = TransferConfig(
    session_timeout=0.5,
    fallback_grace=0.25,
    last_chunk_timeout=0.5,
    poll_interval=0.001,
    frame_spacing=0.0,
    handshake_interval=0.005,
    announce_interval=0.005,
    phase_settle=0.0,
    retry_delay=0.0,
    progress_interval=0.005,
    upgrade_end_delay=0.0,
    teardown_delay=0.0,
    teardown_frame_delay=0.0,
    reset_frame_delay=0.0,
)


def make_firmware(payload_size: int) -> bytes:
    """16-byte header (0x00..0x0F) followed by a counting payload."""
    return bytes(range(16)) + bytes(i % 256 for i in range(payload_size))


@pytest.fixture
def fast_config() -> TransferConfig:
    return FAST_CONFIG
