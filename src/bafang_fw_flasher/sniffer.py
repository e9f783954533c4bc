"""
Passive CAN bus sniffer.

Logs every new (identifier, data) combination seen on the bus and folds
runs of identical frames into a single "(Repeated N times)" line, so the
periodic chatter of a running system stays readable.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from bafang_fw_flasher.protocol.frame_codec import normalize_id
from bafang_fw_flasher.protocol.transport import INVALID_FRAME, InboundFrame, Transport

logger = logging.getLogger(__name__)

# Display status broadcasts, sent several times per second
DEFAULT_FILTERED_IDS = frozenset(f"82F832{n:02X}" for n in range(0x0C))


@dataclass
class _Run:
    data_hex: str
    dlc: int
    count: int
    last_timestamp: int


class FrameSniffer:
    """
    De-duplicating frame logger.

    Example:
        sniffer = FrameSniffer(transport, on_entry=console.print)
        sniffer.start()
        ...
        sniffer.stop()
    """

    def __init__(
        self,
        transport: Transport,
        filtered_ids: Optional[Iterable[str]] = None,
        on_entry: Optional[Callable[[str], None]] = None,
    ):
        self.transport = transport
        if filtered_ids is None:
            filtered_ids = DEFAULT_FILTERED_IDS
        self.filtered_ids = {normalize_id(i) for i in filtered_ids}
        self.on_entry = on_entry
        self.entries: List[str] = []
        self.invalid_count = 0
        self._runs: Dict[str, _Run] = {}
        self._lock = threading.Lock()
        self._running = False

    def start(self) -> None:
        if self._running:
            return
        self.transport.add_listener(self.on_frame)
        self._running = True
        self._emit("Listening for frames...")

    def stop(self) -> None:
        """Unsubscribe and flush pending repeat summaries."""
        if self._running:
            self.transport.remove_listener(self.on_frame)
            self._running = False
        with self._lock:
            runs = list(self._runs.items())
            self._runs.clear()
        for id_hex, run in runs:
            if run.count > 1:
                self._emit(self._repeat_line(id_hex, run))
        self._emit("Sniffer stopped")

    def on_frame(self, frame: InboundFrame) -> None:
        if frame is INVALID_FRAME:
            self.invalid_count += 1
            logger.debug("Skipping invalid frame")
            return
        id_hex = normalize_id(frame.id_hex)
        if id_hex in self.filtered_ids:
            return

        lines = []
        with self._lock:
            run = self._runs.get(id_hex)
            if run is not None and run.data_hex == frame.payload_hex:
                run.count += 1
                run.last_timestamp = frame.timestamp_us
                return
            if run is not None and run.count > 1:
                lines.append(self._repeat_line(id_hex, run))
            lines.append(
                f"{frame.timestamp_us}\tID:{id_hex}\tDLC:{frame.dlc}\tData:{frame.payload_hex}"
            )
            self._runs[id_hex] = _Run(
                data_hex=frame.payload_hex,
                dlc=frame.dlc,
                count=1,
                last_timestamp=frame.timestamp_us,
            )
        for line in lines:
            self._emit(line)

    @staticmethod
    def _repeat_line(id_hex: str, run: _Run) -> str:
        return (
            f"{run.last_timestamp}\tID:{id_hex}\tDLC:{run.dlc}\t"
            f"Data:{run.data_hex}\t(Repeated {run.count} times)"
        )

    def _emit(self, line: str) -> None:
        self.entries.append(line)
        logger.info(line)
        if self.on_entry is not None:
            self.on_entry(line)
