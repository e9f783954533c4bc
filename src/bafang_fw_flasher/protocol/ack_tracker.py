"""
Acknowledgment tracking.

TransferSession holds the per-run state shared by the phase driver and the
inbound listener. AckTracker is the listener: it turns inbound frames into
flag updates and never sends or blocks.

Every flag is a latch. Once set it stays set for the rest of the session,
so a stale or duplicated acknowledgment is harmless.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from bafang_fw_flasher.models.registry import DeviceProfile

from .frame_codec import (
    CHUNK_INDEX_MAX,
    ack_fragment,
    is_own_chunk_frame,
    matches_ack,
)
from .transport import INVALID_FRAME, InboundFrame

logger = logging.getLogger(__name__)


@dataclass
class TransferSession:
    """
    Mutable state of one transfer run.

    The profile reference is swapped, never edited, when the handshake
    falls back to another generation.
    """
    profile: DeviceProfile
    chunk_count: int
    phase: str = "IDLE"

    controller_ready: bool = False
    prelude_acked: bool = False
    transfer_started: bool = False
    first_chunk_acked: bool = False
    last_chunk_confirmed: bool = False

    chunk_acks: Dict[int, bool] = field(default_factory=dict)
    last_sent_chunk_index: int = -1
    progress: int = 0
    deadline: Optional[float] = None
    terminated: bool = False

    def is_chunk_acked(self, index: int) -> bool:
        return self.chunk_acks.get(index, False)


class AckTracker:
    """
    Inbound frame handler bound to exactly one session.

    Rules run in a fixed order and are independent; one frame may set
    several flags.
    """

    def __init__(self, session: TransferSession):
        self.session = session

    def __call__(self, frame: InboundFrame) -> None:
        self.on_frame(frame)

    def last_chunk_fragments(self) -> List[str]:
        """Accepted final confirmations: ack for chunk_count and chunk_count - 1."""
        profile = self.session.profile
        count = self.session.chunk_count
        fragments = []
        for index in (count, count - 1):
            if 0 <= index <= CHUNK_INDEX_MAX:
                fragments.append(ack_fragment(profile, index))
        return fragments

    def on_frame(self, frame: InboundFrame) -> None:
        if frame is INVALID_FRAME:
            return
        session = self.session
        if session.terminated:
            return
        profile = session.profile
        incoming = frame.id_hex

        if is_own_chunk_frame(profile, incoming):
            return

        logger.debug(f"<<< {incoming} [{frame.dlc}] {frame.payload_hex}")

        if matches_ack(incoming, profile.ready_ack_id):
            self._latch("controller_ready", incoming)

        if matches_ack(incoming, profile.first_package_ack_id):
            self._latch("transfer_started", incoming)

        if any(matches_ack(incoming, f) for f in self.last_chunk_fragments()):
            self._latch("last_chunk_confirmed", incoming)

        if profile.prelude_ack_id and matches_ack(incoming, profile.prelude_ack_id):
            self._latch("prelude_acked", incoming)

        awaited = session.last_sent_chunk_index
        if awaited >= 0 and not session.chunk_acks.get(awaited):
            # Some firmware revisions acknowledge with the next expected index;
            # either form is credited to the chunk that was sent
            for index in (awaited, awaited + 1):
                if index <= CHUNK_INDEX_MAX and matches_ack(incoming, ack_fragment(profile, index)):
                    session.chunk_acks[awaited] = True
                    logger.debug(f"Chunk {awaited} acknowledged by {incoming}")
                    break

        if matches_ack(incoming, ack_fragment(profile, 2)):
            self._latch("first_chunk_acked", incoming)

    def _latch(self, flag: str, incoming: str) -> None:
        if not getattr(self.session, flag):
            setattr(self.session, flag, True)
            logger.info(f"{flag} set by {incoming}")
