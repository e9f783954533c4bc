"""
Transport contract for the transfer engine.

A transport sends raw frames (identifier hex + payload hex) and pushes
every inbound frame to its registered listeners. Inbound data that cannot
be decoded is delivered as the INVALID_FRAME sentinel so listeners can
discard it explicitly.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawFrame:
    """
    One decoded inbound CAN frame.

    Attributes:
        id_hex: 8 uppercase hex digits
        payload_hex: Uppercase hex, with or without byte separators
        dlc: Data length code
        timestamp_us: Receive timestamp in microseconds
    """
    id_hex: str
    payload_hex: str = ""
    dlc: int = 0
    timestamp_us: int = 0


class _InvalidFrame:
    """Marker delivered for inbound messages that could not be decoded."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "INVALID_FRAME"

    def __bool__(self) -> bool:
        return False


INVALID_FRAME = _InvalidFrame()

InboundFrame = Union[RawFrame, _InvalidFrame]
FrameListener = Callable[[InboundFrame], None]


class Transport:
    """
    Base class for frame transports.

    Subclasses implement connect/disconnect/is_connected/send_raw_frame and
    call _dispatch() for every inbound frame.
    """

    def __init__(self):
        self._listeners: List[FrameListener] = []
        self._listeners_lock = threading.Lock()

    def connect(self) -> bool:
        raise NotImplementedError

    def disconnect(self) -> None:
        raise NotImplementedError

    def is_connected(self) -> bool:
        raise NotImplementedError

    def send_raw_frame(self, id_hex: str, payload_hex: str) -> bool:
        """Send one frame. Returns link-level success."""
        raise NotImplementedError

    def add_listener(self, listener: FrameListener) -> None:
        with self._listeners_lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: FrameListener) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        with self._listeners_lock:
            return len(self._listeners)

    def _dispatch(self, frame: InboundFrame) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(frame)
            except Exception:
                logger.exception("Frame listener raised")
