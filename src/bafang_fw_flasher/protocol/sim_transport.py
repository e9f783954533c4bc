"""
Simulated controller transport.

Answers outgoing frames the way a Bafang bootloader of the given
generation(s) would, synchronously from inside send_raw_frame. Used by the
test suite and by `flash --simulate` to rehearse a transfer without a bus.
"""

import logging
import threading
import time
from typing import Iterable, List, Optional, Set, Tuple

from bafang_fw_flasher.models.registry import DeviceProfile, Variant, get_profile, list_profiles

from .frame_codec import ack_fragment, normalize_id
from .transport import InboundFrame, RawFrame, Transport

logger = logging.getLogger(__name__)


class SimulatedController(Transport):
    """
    In-process controller model.

    Args:
        respond_to: Variants whose commands get answered (default: all).
            An empty list models a controller that never responds.
        ack_prefix: Leading digit the simulated adapter puts on inbound ids
        ack_offset: Chunk acks name index + ack_offset (1 = next expected)
        drop_chunk_acks: Chunk indices whose acks are never sent
        confirm_last_chunk: Whether the final chunk is confirmed
        link_failures: Number of upcoming sends the adapter rejects
        echo_own: Loop every accepted frame back to listeners
        connect_ok: Result of connect()
    """

    def __init__(
        self,
        respond_to: Optional[Iterable[Variant]] = None,
        ack_prefix: str = "8",
        ack_offset: int = 1,
        drop_chunk_acks: Iterable[int] = (),
        confirm_last_chunk: bool = True,
        link_failures: int = 0,
        echo_own: bool = False,
        connect_ok: bool = True,
    ):
        super().__init__()
        if respond_to is None:
            self.profiles: List[DeviceProfile] = list_profiles()
        else:
            self.profiles = [get_profile(v) for v in respond_to]
        self.ack_prefix = ack_prefix
        self.ack_offset = ack_offset
        self.drop_chunk_acks: Set[int] = set(drop_chunk_acks)
        self.confirm_last_chunk = confirm_last_chunk
        self.link_failures = link_failures
        self.echo_own = echo_own
        self.connect_ok = connect_ok

        self.sent: List[Tuple[str, str]] = []
        self.rejected = 0
        self._connected = False
        self._lock = threading.Lock()

    def connect(self) -> bool:
        self._connected = self.connect_ok
        return self._connected

    def disconnect(self) -> None:
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    def send_raw_frame(self, id_hex: str, payload_hex: str) -> bool:
        with self._lock:
            if self.link_failures > 0:
                self.link_failures -= 1
                self.rejected += 1
                return False
            self.sent.append((id_hex, payload_hex))

        if self.echo_own:
            self.emit(self._frame(normalize_id(id_hex), payload_hex))

        for fragment in self._responses(normalize_id(id_hex)):
            self.emit(self._frame(f"{self.ack_prefix}{fragment}", ""))
        return True

    def emit(self, frame: InboundFrame) -> None:
        """Deliver an inbound frame to listeners."""
        self._dispatch(frame)

    def sent_ids(self) -> List[str]:
        return [frame_id for frame_id, _ in self.sent]

    def _frame(self, id_hex: str, payload_hex: str) -> RawFrame:
        return RawFrame(
            id_hex=normalize_id(id_hex),
            payload_hex=payload_hex,
            dlc=len(payload_hex.replace(" ", "")) // 2,
            timestamp_us=int(time.monotonic() * 1_000_000),
        )

    def _responses(self, frame_id: str) -> List[str]:
        body = frame_id[1:]
        replies: List[str] = []
        for profile in self.profiles:
            for fragment in self._answer(profile, body):
                if fragment not in replies:
                    replies.append(fragment)
        return replies

    def _answer(self, profile: DeviceProfile, body: str) -> List[str]:
        if body == profile.ready_request_id:
            return [profile.ready_ack_id]
        if profile.prelude_command_id and body == profile.prelude_command_id:
            return [profile.prelude_ack_id]
        if body == profile.first_package_id:
            return [profile.first_package_ack_id]

        group = profile.chunk_command_group
        if not body.startswith(group) or len(body) != len(group) + 5:
            return []
        marker = body[len(group)]
        if marker not in profile.chunk_prefixes:
            return []
        index = int(body[len(group) + 1:], 16)

        if marker == profile.chunk_prefix_last:
            if not self.confirm_last_chunk:
                return []
            return [ack_fragment(profile, min(index + self.ack_offset, 0xFFFF))]
        if marker != profile.chunk_prefix_middle or index in self.drop_chunk_acks:
            return []
        # Windowed bootloaders answer only the first chunk pair and checkpoints
        if profile.is_windowed and index != 1 and not profile.is_window_checkpoint(index):
            return []
        return [ack_fragment(profile, min(index + self.ack_offset, 0xFFFF))]
