"""
Exception hierarchy for CAN firmware transfers.

Link-level problems stay inside the retry loop that produced them.
Protocol timeouts carry the phase that gave up so the session outcome
can report where the transfer stopped.
"""

from typing import Optional


class FlasherError(Exception):
    """Base exception for all flasher errors"""
    pass


class TransportError(FlasherError):
    """CAN adapter could not be opened or used"""
    pass


class LinkSendFailure(TransportError):
    """A single frame was not accepted by the adapter"""

    def __init__(self, identifier: str, cause: Optional[str] = None):
        message = f"Frame {identifier} not sent"
        if cause:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.identifier = identifier


class InvalidFrameReceived(FlasherError):
    """Inbound bus message could not be decoded into a frame"""
    pass


class FirmwareError(FlasherError):
    """Firmware image cannot be transferred"""
    pass


class OversizedFirmware(FirmwareError):
    """Payload does not fit the 3-byte length field or the chunk index range"""

    def __init__(self, message: str, payload_size: int):
        super().__init__(message)
        self.payload_size = payload_size


class TransferError(FlasherError):
    """
    Fatal transfer failure.

    Attributes:
        phase: Name of the phase that failed
        reason: Human-readable cause
    """

    def __init__(self, phase: str, reason: str):
        super().__init__(f"{phase}: {reason}")
        self.phase = phase
        self.reason = reason


class ProtocolAckTimeout(TransferError):
    """Controller did not acknowledge within the phase wait bound"""

    def __init__(self, phase: str, timeout_s: float, what: str = "acknowledgment"):
        super().__init__(phase, f"no {what} within {timeout_s:g}s")
        self.timeout_s = timeout_s


class ControllerNotResponding(ProtocolAckTimeout):
    """Handshake never completed, including after profile fallback"""

    def __init__(self, timeout_s: float):
        super().__init__("HANDSHAKE", timeout_s, "controller ready response")


class PreludeNotAcknowledged(ProtocolAckTimeout):
    def __init__(self, timeout_s: float):
        super().__init__("PRELUDE", timeout_s, "prelude acknowledgment")


class LengthAckTimeout(ProtocolAckTimeout):
    def __init__(self, timeout_s: float):
        super().__init__("LENGTH_ANNOUNCE", timeout_s, "length acknowledgment")


class FirstChunkAckTimeout(ProtocolAckTimeout):
    def __init__(self, timeout_s: float):
        super().__init__("FIRST_CHUNK", timeout_s, "first chunk acknowledgment")


class ChunkAckTimeout(ProtocolAckTimeout):
    """Windowed or per-chunk acknowledgment missing"""

    def __init__(self, index: int, timeout_s: float):
        super().__init__(
            "BULK_TRANSFER",
            timeout_s,
            f"acknowledgment for chunk {index} (0x{index:04X})",
        )
        self.index = index


class LastChunkAckTimeout(ProtocolAckTimeout):
    def __init__(self, timeout_s: float):
        super().__init__("LAST_CHUNK", timeout_s, "last chunk confirmation")


class TransferCancelled(TransferError):
    """External stop signal observed at a poll point"""

    def __init__(self, phase: str):
        super().__init__(phase, "cancelled by user")
