"""CAN protocol layer - frame codec, transports and acknowledgment tracking.

The transfer engine itself lives in protocol.fw_transfer and is imported
from there (it depends on the core package, which depends on this one).
"""

from .errors import (
    FlasherError,
    TransportError,
    LinkSendFailure,
    InvalidFrameReceived,
    FirmwareError,
    OversizedFirmware,
    TransferError,
    ProtocolAckTimeout,
    ControllerNotResponding,
    PreludeNotAcknowledged,
    LengthAckTimeout,
    FirstChunkAckTimeout,
    ChunkAckTimeout,
    LastChunkAckTimeout,
    TransferCancelled,
)
from .transport import Transport, RawFrame, INVALID_FRAME
from .can_transport import CanTransport, decode_message
from .sim_transport import SimulatedController
from .ack_tracker import AckTracker, TransferSession
from .retrying_sender import RetryingSender

__all__ = [
    # Errors
    "FlasherError",
    "TransportError",
    "LinkSendFailure",
    "InvalidFrameReceived",
    "FirmwareError",
    "OversizedFirmware",
    "TransferError",
    "ProtocolAckTimeout",
    "ControllerNotResponding",
    "PreludeNotAcknowledged",
    "LengthAckTimeout",
    "FirstChunkAckTimeout",
    "ChunkAckTimeout",
    "LastChunkAckTimeout",
    "TransferCancelled",
    # Transports
    "Transport",
    "RawFrame",
    "INVALID_FRAME",
    "CanTransport",
    "decode_message",
    "SimulatedController",
    # Tracking
    "AckTracker",
    "TransferSession",
    "RetryingSender",
]
