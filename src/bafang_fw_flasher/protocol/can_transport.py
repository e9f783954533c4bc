"""
python-can Transport

Sends and receives 29-bit extended frames through any python-can backend
(socketcan, pcan, slcan, kvaser, virtual ...).

This module provides:
- Bus open/close through can.Bus
- Threaded receive through can.Notifier and a can.Listener
- Translation between can.Message and RawFrame
"""

import logging
from typing import Optional

import can

from .errors import InvalidFrameReceived, LinkSendFailure, TransportError
from .frame_codec import hex_to_bytes, normalize_id
from .transport import INVALID_FRAME, InboundFrame, RawFrame, Transport

logger = logging.getLogger(__name__)


def decode_message(msg: can.Message) -> RawFrame:
    """
    Convert a python-can message into a RawFrame.

    Raises:
        InvalidFrameReceived: For error frames, remote frames and messages
            whose payload disagrees with the DLC
    """
    if msg.is_error_frame:
        raise InvalidFrameReceived("Error frame")
    if msg.is_remote_frame:
        raise InvalidFrameReceived(f"Remote frame 0x{msg.arbitration_id:X}")
    data = bytes(msg.data or b"")
    if len(data) != msg.dlc:
        raise InvalidFrameReceived(
            f"DLC {msg.dlc} does not match {len(data)} data bytes"
        )
    return RawFrame(
        id_hex=normalize_id(msg.arbitration_id),
        payload_hex=" ".join(f"{b:02X}" for b in data),
        dlc=msg.dlc,
        timestamp_us=int((msg.timestamp or 0.0) * 1_000_000),
    )


class _FrameDispatcher(can.Listener):
    """Notifier listener that forwards decoded frames to the transport."""

    def __init__(self, transport: "CanTransport"):
        self.transport = transport

    def on_message_received(self, msg: can.Message) -> None:
        try:
            frame: InboundFrame = decode_message(msg)
        except InvalidFrameReceived as e:
            logger.debug(f"Discarding inbound message: {e}")
            frame = INVALID_FRAME
        self.transport._dispatch(frame)

    def on_error(self, exc: Exception) -> None:
        logger.error(f"CAN receive error: {exc}")

    def stop(self) -> None:
        pass


class CanTransport(Transport):
    """
    Transport over a python-can bus.

    Example:
        transport = CanTransport(interface="socketcan", channel="can0")
        if transport.connect():
            transport.send_raw_frame("85FF3005", "00")
            transport.disconnect()
    """

    def __init__(
        self,
        interface: str = "socketcan",
        channel: str = "can0",
        bitrate: int = 250000,
    ):
        """
        Initialize transport layer.

        Args:
            interface: python-can interface name
            channel: Adapter channel (e.g., "can0", "PCAN_USBBUS1", "/dev/ttyACM0")
            bitrate: Bus bitrate in bit/s (Bafang buses run at 250k)
        """
        super().__init__()
        self.interface = interface
        self.channel = channel
        self.bitrate = bitrate
        self.bus: Optional[can.BusABC] = None
        self._notifier: Optional[can.Notifier] = None

    def open(self) -> None:
        """
        Open the bus and start the receive thread.

        Raises:
            TransportError: If the adapter cannot be opened
        """
        try:
            self.bus = can.Bus(
                interface=self.interface,
                channel=self.channel,
                bitrate=self.bitrate,
            )
        except (can.CanError, OSError, ValueError) as e:
            self.bus = None
            raise TransportError(
                f"Cannot open {self.interface} channel {self.channel}: {e}"
            )
        self._notifier = can.Notifier(self.bus, [_FrameDispatcher(self)])
        logger.debug(
            f"Opened {self.interface}:{self.channel} at {self.bitrate} bit/s"
        )

    def connect(self) -> bool:
        if self.is_connected():
            return True
        try:
            self.open()
        except TransportError as e:
            logger.error(str(e))
            return False
        return True

    def disconnect(self) -> None:
        if self._notifier is not None:
            self._notifier.stop()
            self._notifier = None
        if self.bus is not None:
            self.bus.shutdown()
            self.bus = None
            logger.debug(f"Closed {self.interface}:{self.channel}")

    def is_connected(self) -> bool:
        return self.bus is not None

    def _write(self, id_hex: str, payload_hex: str) -> None:
        """
        Put one frame on the bus.

        Raises:
            LinkSendFailure: If the bus is closed or rejects the frame
        """
        if self.bus is None:
            raise LinkSendFailure(id_hex, "bus not open")
        try:
            msg = can.Message(
                arbitration_id=int(id_hex, 16),
                data=hex_to_bytes(payload_hex),
                is_extended_id=True,
            )
        except ValueError as e:
            raise LinkSendFailure(id_hex, f"malformed frame: {e}")
        try:
            self.bus.send(msg)
        except can.CanError as e:
            raise LinkSendFailure(id_hex, str(e))
        logger.debug(f">>> {id_hex} {payload_hex}")

    def send_raw_frame(self, id_hex: str, payload_hex: str) -> bool:
        try:
            self._write(id_hex, payload_hex)
        except LinkSendFailure as e:
            logger.warning(str(e))
            return False
        return True

    def __enter__(self) -> "CanTransport":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()
