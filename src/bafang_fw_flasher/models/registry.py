"""
Device profile registry for Bafang CAN controllers.

Provides a single source of truth for:
- CAN identifier bodies used by each controller generation
- Acknowledgment identifiers and the responding device digit
- Chunk framing markers and acknowledgment window discipline
- Fallback relationships between profiles

Usage:
    from bafang_fw_flasher.models import get_profile, Variant

    profile = get_profile(Variant.NEW_MOTOR)
    old = fallback_profile(profile)
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Union


class Variant(Enum):
    """Controller generation selected for a flashing session."""
    NEW_MOTOR = "NEW_MOTOR"
    OLD_MOTOR = "OLD_MOTOR"
    HMI = "HMI"
    DPC18 = "DPC18"


class ProtocolFamily(Enum):
    """Phase discipline shared by several variants."""
    NEW = "new"   # prelude command, split first chunk, windowed acks
    OLD = "old"   # no prelude, every chunk acknowledged, long teardown


# Broadcast command bodies shared by every variant
HOST_READY_ID = "5FF3005"
RESET_ID = "5F83501"
CHUNK_COMMAND_GROUP = "51"


@dataclass(frozen=True)
class DeviceProfile:
    """
    Immutable identifier and framing parameters for one controller generation.

    All identifier fields are 7-hex-digit command bodies; the channel prefix
    is prepended when a frame goes out on the bus.
    """
    variant: Variant
    family: ProtocolFamily
    description: str

    ready_request_id: str
    ready_ack_id: str
    first_package_id: str
    first_package_ack_id: str

    chunk_prefix_first: str
    chunk_prefix_middle: str
    chunk_prefix_last: str
    ack_device_digit: str

    # Device-id marker placed in byte 2 of the ready request
    ready_marker: int

    prelude_command_id: Optional[str] = None
    prelude_ack_id: Optional[str] = None

    # None means every chunk is acknowledged before the next is sent
    ack_window: Optional[int] = None
    ack_window_start: int = 0

    channel_prefix: str = "8"
    host_ready_id: str = HOST_READY_ID
    reset_id: str = RESET_ID
    chunk_command_group: str = CHUNK_COMMAND_GROUP

    # Seconds between re-sends of the last chunk while awaiting confirmation
    last_chunk_resend_interval: Optional[float] = None

    fallback: Optional[Variant] = None

    @property
    def is_new_family(self) -> bool:
        """True for profiles that run the prelude and split first chunk."""
        return self.family == ProtocolFamily.NEW

    @property
    def is_windowed(self) -> bool:
        """True when chunks are confirmed only at window checkpoints."""
        return self.ack_window is not None

    @property
    def chunk_prefixes(self) -> List[str]:
        """Chunk markers in first/middle/last order."""
        return [self.chunk_prefix_first, self.chunk_prefix_middle, self.chunk_prefix_last]

    def is_window_checkpoint(self, index: int) -> bool:
        """True if the host must wait for an ack after sending chunk `index`."""
        if self.ack_window is None:
            return False
        offset = index - self.ack_window_start
        return offset > 0 and offset % self.ack_window == 0

    def window_checkpoints(self, chunk_count: int) -> List[int]:
        """Bulk-phase indices (up to chunk_count - 2) that block for an ack."""
        return [i for i in range(chunk_count - 1) if self.is_window_checkpoint(i)]


# ============================================================================
# PROFILE REGISTRY - All known controller generations
# ============================================================================

_PROFILE_REGISTRY: Dict[Variant, DeviceProfile] = {}


def _register_profile(profile: DeviceProfile) -> None:
    """Register a device profile."""
    _PROFILE_REGISTRY[profile.variant] = profile


def _init_registry() -> None:
    """Initialize the registry with known controller generations."""

    # Current drive units. Falls back to the old handshake when the
    # controller ignores the new ready request.
    _register_profile(DeviceProfile(
        variant=Variant.NEW_MOTOR,
        family=ProtocolFamily.NEW,
        description="Drive unit, current bootloader",
        ready_request_id="5114000",
        ready_ack_id="22A4000",
        first_package_id="5104001",
        first_package_ack_id="22A4001",
        prelude_command_id="5116008",
        prelude_ack_id="22A6008",
        chunk_prefix_first="4",
        chunk_prefix_middle="5",
        chunk_prefix_last="6",
        ack_device_digit="2",
        ready_marker=0x02,
        ack_window=256,
        ack_window_start=2,
        fallback=Variant.OLD_MOTOR,
    ))

    _register_profile(DeviceProfile(
        variant=Variant.OLD_MOTOR,
        family=ProtocolFamily.OLD,
        description="Drive unit, legacy bootloader",
        ready_request_id="5112000",
        ready_ack_id="22A2000",
        first_package_id="5142001",
        first_package_ack_id="22A2001",
        chunk_prefix_first="4",
        chunk_prefix_middle="5",
        chunk_prefix_last="6",
        ack_device_digit="2",
        ready_marker=0x02,
    ))

    _register_profile(DeviceProfile(
        variant=Variant.HMI,
        family=ProtocolFamily.NEW,
        description="HMI display",
        ready_request_id="5194000",
        ready_ack_id="32A4000",
        first_package_id="5184001",
        first_package_ack_id="32A4001",
        prelude_command_id="5196008",
        prelude_ack_id="32A6008",
        chunk_prefix_first="C",
        chunk_prefix_middle="D",
        chunk_prefix_last="E",
        ack_device_digit="3",
        ready_marker=0x03,
        ack_window=256,
        ack_window_start=2,
        last_chunk_resend_interval=1.0,
    ))

    # DPC18 display: same identifiers as HMI, wider ack window
    _register_profile(DeviceProfile(
        variant=Variant.DPC18,
        family=ProtocolFamily.NEW,
        description="DPC18 display",
        ready_request_id="5194000",
        ready_ack_id="32A4000",
        first_package_id="5184001",
        first_package_ack_id="32A4001",
        prelude_command_id="5196008",
        prelude_ack_id="32A6008",
        chunk_prefix_first="C",
        chunk_prefix_middle="D",
        chunk_prefix_last="E",
        ack_device_digit="3",
        ready_marker=0x03,
        ack_window=4096,
        ack_window_start=2,
        last_chunk_resend_interval=1.0,
    ))


_init_registry()


def parse_variant(value: Union[str, Variant]) -> Variant:
    """
    Parse a variant from user-friendly text.

    Accepts canonical names case-insensitively, with '-' or '_' separators
    ("new-motor", "NEW_MOTOR", "dpc18").

    Raises:
        ValueError: If the variant is not recognized.
    """
    if isinstance(value, Variant):
        return value
    normalized = (value or "").strip().upper().replace("-", "_")
    try:
        return Variant(normalized)
    except ValueError:
        valid = ", ".join(v.value for v in Variant)
        raise ValueError(f"Unknown device variant '{value}'. Valid variants: {valid}")


def get_profile(variant: Union[str, Variant]) -> DeviceProfile:
    """Get the profile for a variant (accepts enum or text)."""
    return _PROFILE_REGISTRY[parse_variant(variant)]


def list_profiles() -> List[DeviceProfile]:
    """All registered profiles in declaration order."""
    return list(_PROFILE_REGISTRY.values())


def fallback_profile(profile: DeviceProfile) -> Optional[DeviceProfile]:
    """Profile to swap to when the controller ignores this one, if any."""
    if profile.fallback is None:
        return None
    return _PROFILE_REGISTRY[profile.fallback]
