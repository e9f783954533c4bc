"""
Progress reporting for transfer sessions.

The bulk phase advances session.progress (0-100 by chunk index); the
overall figure adds one point per handshake milestone and is clamped.
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

ProgressSink = Callable[[int], None]


def chunk_progress(index: int, chunk_count: int) -> int:
    """Percentage of chunks sent when chunk `index` goes out."""
    if chunk_count <= 0:
        return 0
    return round(index / chunk_count * 100)


def overall_progress(session) -> int:
    """
    Progress figure published to the sink.

    progress + controller_ready + transfer_started + last_chunk_confirmed - 3,
    clamped to 0..100.
    """
    value = (
        session.progress
        + int(session.controller_ready)
        + int(session.transfer_started)
        + int(session.last_chunk_confirmed)
        - 3
    )
    return max(0, min(100, value))


class ProgressReporter:
    """
    Publishes overall progress to a sink at a fixed cadence.

    Runs in a daemon thread until stop() is called or the session is
    terminated. Every tick reaches the sink, and values handed to it never
    decrease.
    """

    def __init__(self, session, sink: Optional[ProgressSink], interval: float = 1.0):
        self.session = session
        self.sink = sink
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last = -1
        self._lock = threading.Lock()

    def start(self) -> None:
        if self.sink is None or self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, name="progress-reporter", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.is_set() and not self.session.terminated:
            self.publish()
            self._stop.wait(self.interval)

    def publish(self) -> None:
        """Send the current figure, held at the highest value published so far."""
        if self.sink is None:
            return
        with self._lock:
            value = max(overall_progress(self.session), self._last)
            self._last = value
        try:
            self.sink(value)
        except Exception as e:
            logger.warning(f"Progress sink failed: {e}")

    def stop(self) -> None:
        """Stop the loop and publish the final figure."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=max(self.interval, 0.1) * 2)
            self._thread = None
        self.publish()
