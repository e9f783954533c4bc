"""
Link-level retry for outgoing frames.

A frame the adapter refuses is retried a few times and then given up on.
The phase that sent it keeps waiting for its protocol acknowledgment and
decides on failure through its own deadline.
"""

import logging
import threading
from typing import Optional

from bafang_fw_flasher.models.registry import DeviceProfile

from .frame_codec import build_outgoing_id
from .transport import Transport

logger = logging.getLogger(__name__)


class RetryingSender:
    """
    Sends command bodies for the active profile with bounded retry.

    Args:
        transport: Frame transport
        profile_source: Callable returning the active profile
        retry_delay: Seconds between attempts
        stop_event: Aborts the inter-attempt pause when set
    """

    def __init__(
        self,
        transport: Transport,
        profile_source,
        retry_delay: float = 0.001,
        stop_event: Optional[threading.Event] = None,
    ):
        self.transport = transport
        self.profile_source = profile_source
        self.retry_delay = retry_delay
        self.stop_event = stop_event or threading.Event()

    @property
    def profile(self) -> DeviceProfile:
        return self.profile_source()

    def send(self, id_suffix: str, payload_hex: str = "", max_retries: int = 3) -> bool:
        """
        Send one frame, retrying link-level failures.

        max_retries=0 sends exactly once (best-effort broadcasts).

        Returns:
            True if the transport accepted the frame
        """
        frame_id = build_outgoing_id(self.profile, id_suffix)
        attempts = max(1, max_retries)
        for attempt in range(1, attempts + 1):
            if self.transport.send_raw_frame(frame_id, payload_hex):
                return True
            if attempt < attempts:
                logger.warning(
                    f"Link send of {frame_id} failed (attempt {attempt}/{attempts}), retrying"
                )
                if self.stop_event.wait(self.retry_delay):
                    break
        logger.warning(f"Giving up on {frame_id} {payload_hex} after {attempts} attempt(s)")
        return False
