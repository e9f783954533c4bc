"""
Timing and retry parameters for a transfer session.

All durations are in seconds. Defaults reproduce the cadence real
controllers expect; tests shrink them to milliseconds.
"""

import os
from dataclasses import dataclass, replace
from typing import Optional

ENV_INTERFACE = "BAFANG_CAN_INTERFACE"
ENV_CHANNEL = "BAFANG_CAN_CHANNEL"
ENV_BITRATE = "BAFANG_CAN_BITRATE"

DEFAULT_INTERFACE = "socketcan"
DEFAULT_CHANNEL = "can0"
DEFAULT_BITRATE = 250000


@dataclass(frozen=True)
class TransferConfig:
    """
    Immutable timing configuration.

    Attributes:
        session_timeout: Bound for each blocking phase wait
        fallback_grace: Subtracted from session_timeout to get the point at
            which a handshake with a fallback-capable profile swaps profile
        last_chunk_timeout: Bound for the final chunk confirmation
        poll_interval: Flag polling cadence of the phase driver
        frame_spacing: Delay after each fire-and-forget chunk frame
        handshake_interval: Ready-request re-send cadence
        announce_interval: Host-ready broadcast cadence
        phase_settle: Pause between phases
        send_retries: Link-level attempts per frame
        retry_delay: Pause between link-level attempts
        progress_interval: Progress sink cadence
    """
    session_timeout: float = 10.0
    fallback_grace: float = 5.0
    last_chunk_timeout: float = 60.0

    poll_interval: float = 0.01
    frame_spacing: float = 0.001
    handshake_interval: float = 0.06
    announce_interval: float = 0.001
    phase_settle: float = 0.02

    send_retries: int = 3
    retry_delay: float = 0.001

    progress_interval: float = 1.0

    # Finalize sequence
    upgrade_end_delay: float = 5.0
    teardown_delay: float = 4.0
    teardown_frame_delay: float = 0.05
    reset_frame_delay: float = 0.02
    teardown_rounds: int = 6
    reset_frames: int = 4

    @property
    def fallback_after(self) -> float:
        """Seconds of silence before swapping to the fallback profile."""
        return max(self.session_timeout - self.fallback_grace, 0.0)

    def with_session_timeout_ms(self, timeout_ms: int) -> "TransferConfig":
        """Copy with a session timeout given in milliseconds."""
        if timeout_ms <= 0:
            raise ValueError(f"Session timeout must be positive: {timeout_ms}")
        return replace(self, session_timeout=timeout_ms / 1000.0)


@dataclass(frozen=True)
class BusSettings:
    """python-can bus selection."""
    interface: str = DEFAULT_INTERFACE
    channel: str = DEFAULT_CHANNEL
    bitrate: int = DEFAULT_BITRATE

    @classmethod
    def from_env(
        cls,
        interface: Optional[str] = None,
        channel: Optional[str] = None,
        bitrate: Optional[int] = None,
    ) -> "BusSettings":
        """
        Explicit values win, then environment variables, then defaults.

        Raises:
            ValueError: If BAFANG_CAN_BITRATE is not an integer
        """
        env_bitrate = os.environ.get(ENV_BITRATE)
        if bitrate is None and env_bitrate:
            try:
                bitrate = int(env_bitrate, 0)
            except ValueError:
                raise ValueError(f"{ENV_BITRATE} must be an integer, got '{env_bitrate}'")
        return cls(
            interface=interface or os.environ.get(ENV_INTERFACE) or DEFAULT_INTERFACE,
            channel=channel or os.environ.get(ENV_CHANNEL) or DEFAULT_CHANNEL,
            bitrate=bitrate if bitrate is not None else DEFAULT_BITRATE,
        )
