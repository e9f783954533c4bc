"""
Bafang CAN firmware transfer engine.

Drives one transfer session through a fixed phase pipeline:

    ANNOUNCE -> HANDSHAKE -> [PRELUDE] -> LENGTH_ANNOUNCE -> [FIRST_CHUNK]
             -> BULK_TRANSFER -> LAST_CHUNK -> FINALIZE -> DONE

Bracketed phases run only for the "new" protocol family. Any blocking
phase that runs out of time ends the session in FAILED with the phase
attached; there is no automatic resumption.

Threads:
- the phase driver (caller's thread) sends every correctness-relevant
  frame and polls session flags
- the transport's receive thread runs AckTracker, which only sets flags
- the announce loop broadcasts "host ready" until the controller answers
- the progress reporter publishes overall progress at a fixed cadence

Usage:
    engine = FwTransferEngine(CanTransport(channel="can0"))
    outcome = engine.run_transfer(load_firmware("fw.bin"), Variant.NEW_MOTOR)
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional, Set, Union

from bafang_fw_flasher.core.config import TransferConfig
from bafang_fw_flasher.core.firmware import FirmwareImage
from bafang_fw_flasher.core.progress import ProgressReporter, ProgressSink, chunk_progress
from bafang_fw_flasher.core.results import TransferOutcome
from bafang_fw_flasher.models.registry import (
    DeviceProfile,
    Variant,
    fallback_profile,
    get_profile,
)

from .ack_tracker import AckTracker, TransferSession
from .errors import (
    ChunkAckTimeout,
    ControllerNotResponding,
    FirstChunkAckTimeout,
    LastChunkAckTimeout,
    LengthAckTimeout,
    PreludeNotAcknowledged,
    ProtocolAckTimeout,
    TransferCancelled,
    TransferError,
)
from .frame_codec import chunk_command
from .retrying_sender import RetryingSender
from .transport import Transport

logger = logging.getLogger(__name__)

READY_PAYLOAD = "00"
UPGRADE_END_PAYLOAD = "01"
RESET_PAYLOAD = "00"

# Transports currently driven by a session (by object id)
_ACTIVE_TRANSPORTS: Set[int] = set()
_ACTIVE_LOCK = threading.Lock()


class Phase(Enum):
    IDLE = "idle"
    ANNOUNCE = "announce"
    HANDSHAKE = "handshake"
    PRELUDE = "prelude"
    LENGTH_ANNOUNCE = "length_announce"
    FIRST_CHUNK = "first_chunk"
    BULK_TRANSFER = "bulk_transfer"
    LAST_CHUNK = "last_chunk"
    FINALIZE = "finalize"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


def ack_window_checkpoints(profile: DeviceProfile, chunk_count: int):
    """Indices at which the bulk phase blocks, e.g. [258, 514] for 600 chunks."""
    return profile.window_checkpoints(chunk_count)


class FwTransferEngine:
    """
    Phase-sequenced transfer orchestrator.

    One engine serves one transport; a second concurrent session against
    the same transport is refused.

    Args:
        transport: Connected (or connectable) frame transport
        config: Timing parameters
        progress_sink: Called with overall progress 0-100 about once a second
    """

    def __init__(
        self,
        transport: Transport,
        config: Optional[TransferConfig] = None,
        progress_sink: Optional[ProgressSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transport = transport
        self.config = config or TransferConfig()
        self.progress_sink = progress_sink
        self.clock = clock
        self.session: Optional[TransferSession] = None
        self._stop = threading.Event()
        self._announce_thread: Optional[threading.Thread] = None

    def cancel(self) -> None:
        """Ask the running session to stop at its next poll point."""
        logger.info("Cancellation requested")
        self._stop.set()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    # ------------------------------------------------------------------
    # Session entry point
    # ------------------------------------------------------------------

    def run_transfer(
        self,
        firmware: Union[FirmwareImage, bytes],
        variant: Union[Variant, str],
        session_timeout_ms: Optional[int] = None,
    ) -> TransferOutcome:
        """
        Flash a firmware image and report how the session ended.

        Protocol failures and cancellation are returned as outcomes.

        Raises:
            OversizedFirmware: If the image cannot be addressed (before any I/O)
            ValueError: If the variant is unknown
            RuntimeError: If another session is active on this transport
        """
        image = firmware if isinstance(firmware, FirmwareImage) else FirmwareImage(firmware)
        profile = get_profile(variant)
        if image.chunk_count == 0:
            logger.error("Transfer failed in IDLE: firmware has no payload after the header")
            return TransferOutcome.failed(
                Phase.IDLE.name,
                "firmware has no payload after the header",
                variant=profile.variant.value,
                chunk_count=0,
            )
        config = self.config
        if session_timeout_ms is not None:
            config = config.with_session_timeout_ms(session_timeout_ms)

        key = id(self.transport)
        with _ACTIVE_LOCK:
            if key in _ACTIVE_TRANSPORTS:
                raise RuntimeError("A transfer session is already active on this transport")
            _ACTIVE_TRANSPORTS.add(key)

        try:
            return self._run_session(image, profile, config)
        finally:
            # Ready for reuse; a cancel only applies to the session it hit
            self._stop.clear()
            with _ACTIVE_LOCK:
                _ACTIVE_TRANSPORTS.discard(key)

    def _run_session(
        self,
        image: FirmwareImage,
        profile: DeviceProfile,
        config: TransferConfig,
    ) -> TransferOutcome:
        started_at = self.clock()
        session = TransferSession(profile=profile, chunk_count=image.chunk_count)
        self.session = session

        if not self.transport.is_connected() and not self.transport.connect():
            session.terminated = True
            session.phase = Phase.FAILED.name
            logger.error("Transfer failed in IDLE: transport not connected")
            return TransferOutcome.failed(
                Phase.IDLE.name,
                "transport not connected",
                variant=profile.variant.value,
                chunk_count=image.chunk_count,
            )

        logger.info(
            f"Starting transfer: {profile.variant.value}, {image.payload_size:,} bytes, "
            f"{image.chunk_count} chunks"
        )

        tracker = AckTracker(session)
        sender = RetryingSender(
            self.transport,
            lambda: session.profile,
            retry_delay=config.retry_delay,
            stop_event=self._stop,
        )
        reporter = ProgressReporter(session, self.progress_sink, config.progress_interval)
        self.transport.add_listener(tracker)
        reporter.start()

        try:
            self._run_phases(session, image, sender, config)
            session.phase = Phase.DONE.name
            outcome = TransferOutcome.succeeded(
                variant=session.profile.variant.value,
                chunk_count=image.chunk_count,
            )
            logger.info("Firmware transfer complete")
        except TransferCancelled as e:
            session.phase = Phase.CANCELLED.name
            logger.warning(f"Transfer cancelled during {e.phase}")
            outcome = TransferOutcome.cancelled_in(
                e.phase,
                variant=session.profile.variant.value,
                chunk_count=image.chunk_count,
            )
        except TransferError as e:
            session.phase = Phase.FAILED.name
            logger.error(f"Transfer failed in {e.phase}: {e.reason}")
            outcome = TransferOutcome.failed(
                e.phase,
                e.reason,
                variant=session.profile.variant.value,
                chunk_count=image.chunk_count,
            )
        finally:
            session.terminated = True
            self.transport.remove_listener(tracker)
            self._join_announce()
            reporter.stop()

        outcome.elapsed = self.clock() - started_at
        return outcome

    # ------------------------------------------------------------------
    # Phase pipeline
    # ------------------------------------------------------------------

    def _run_phases(
        self,
        session: TransferSession,
        image: FirmwareImage,
        sender: RetryingSender,
        config: TransferConfig,
    ) -> None:
        self._enter(session, Phase.ANNOUNCE)
        self._start_announce(session, sender, config)

        self._handshake(session, image, sender, config)
        self._settle(session, config)

        if session.profile.is_new_family:
            self._prelude(session, sender, config)
            self._settle(session, config)

        self._length_announce(session, image, sender, config)
        self._settle(session, config)

        first_bulk_index = 0
        if session.profile.is_new_family and image.chunk_count > 1:
            self._first_chunk(session, image, sender, config)
            first_bulk_index = 2

        self._bulk_transfer(session, image, sender, config, first_bulk_index)
        self._last_chunk(session, image, sender, config)
        self._finalize(session, image, sender, config)

    def _handshake(self, session, image, sender, config) -> None:
        self._enter(session, Phase.HANDSHAKE)
        start = self.clock()
        session.deadline = start + config.session_timeout
        fallback_at = start + config.fallback_after
        payload = image.ready_request_payload(session.profile.ready_marker)
        next_send = start

        while not session.controller_ready:
            self._check_cancel(session)
            now = self.clock()
            if now >= session.deadline:
                raise ControllerNotResponding(config.session_timeout)

            alternate = fallback_profile(session.profile)
            if alternate is not None and now >= fallback_at:
                logger.warning(
                    f"No ready response from {session.profile.variant.value}, "
                    f"falling back to {alternate.variant.value}"
                )
                session.profile = alternate
                payload = image.ready_request_payload(alternate.ready_marker)
                next_send = now

            if now >= next_send:
                sender.send(session.profile.ready_request_id, payload, config.send_retries)
                next_send = now + config.handshake_interval
            self._stop.wait(config.poll_interval)

        logger.info(f"Controller ready ({session.profile.variant.value})")

    def _prelude(self, session, sender, config) -> None:
        self._enter(session, Phase.PRELUDE)
        sender.send(session.profile.prelude_command_id, "", config.send_retries)
        self._wait_for(
            session,
            lambda: session.prelude_acked,
            config.session_timeout,
            lambda: PreludeNotAcknowledged(config.session_timeout),
        )

    def _length_announce(self, session, image, sender, config) -> None:
        self._enter(session, Phase.LENGTH_ANNOUNCE)
        logger.info(f"Announcing payload length {image.payload_size:,} ({image.length_payload_hex})")
        sender.send(session.profile.first_package_id, image.length_payload_hex, config.send_retries)
        self._wait_for(
            session,
            lambda: session.transfer_started,
            config.session_timeout,
            lambda: LengthAckTimeout(config.session_timeout),
        )

    def _first_chunk(self, session, image, sender, config) -> None:
        self._enter(session, Phase.FIRST_CHUNK)
        profile = session.profile
        sender.send(chunk_command(profile, profile.chunk_prefix_first, 0), image.chunk_hex(0), config.send_retries)
        self._pause(session, config.frame_spacing)
        session.last_sent_chunk_index = 1
        sender.send(chunk_command(profile, profile.chunk_prefix_middle, 1), image.chunk_hex(1), config.send_retries)
        self._wait_for(
            session,
            lambda: session.first_chunk_acked,
            config.session_timeout,
            lambda: FirstChunkAckTimeout(config.session_timeout),
        )

    def _bulk_transfer(self, session, image, sender, config, first_index: int) -> None:
        self._enter(session, Phase.BULK_TRANSFER)
        profile = session.profile
        count = image.chunk_count

        for index in range(first_index, count - 1):
            self._check_cancel(session)
            session.last_sent_chunk_index = index
            session.progress = max(session.progress, chunk_progress(index, count))
            sender.send(
                chunk_command(profile, profile.chunk_prefix_middle, index),
                image.chunk_hex(index),
                config.send_retries,
            )

            if not profile.is_windowed or profile.is_window_checkpoint(index):
                self._wait_for(
                    session,
                    lambda i=index: session.is_chunk_acked(i),
                    config.session_timeout,
                    lambda i=index: ChunkAckTimeout(i, config.session_timeout),
                )
                if profile.is_windowed:
                    logger.info(f"Window checkpoint {index} acknowledged ({session.progress}%)")
            else:
                self._pause(session, config.frame_spacing)

    def _last_chunk(self, session, image, sender, config) -> None:
        self._enter(session, Phase.LAST_CHUNK)
        profile = session.profile
        index = image.chunk_count - 1
        session.last_sent_chunk_index = index
        body = chunk_command(profile, profile.chunk_prefix_last, index)
        payload = image.chunk_hex(index)

        def resend() -> None:
            sender.send(body, payload, config.send_retries)

        resend()
        # Displays drop the final chunk while busy and need it repeated
        self._wait_for(
            session,
            lambda: session.last_chunk_confirmed,
            config.last_chunk_timeout,
            lambda: LastChunkAckTimeout(config.last_chunk_timeout),
            tick=resend if profile.last_chunk_resend_interval else None,
            tick_interval=profile.last_chunk_resend_interval,
        )
        session.progress = 100
        logger.info("Last chunk confirmed")

    def _finalize(self, session, image, sender, config) -> None:
        """Best-effort close of the upgrade; send failures are only logged."""
        self._enter(session, Phase.FINALIZE)
        profile = session.profile

        self._pause(session, config.upgrade_end_delay)
        sender.send(profile.host_ready_id, UPGRADE_END_PAYLOAD, config.send_retries)
        self._pause(session, config.upgrade_end_delay)

        if profile.is_new_family:
            return

        ready_payload = image.ready_request_payload(profile.ready_marker)
        self._pause(session, config.teardown_delay)
        for _ in range(config.teardown_rounds):
            sender.send(profile.host_ready_id, READY_PAYLOAD, max_retries=0)
            sender.send(profile.ready_request_id, ready_payload, max_retries=0)
            self._pause(session, config.teardown_frame_delay)
        self._pause(session, config.teardown_delay)
        for _ in range(config.reset_frames):
            sender.send(profile.reset_id, RESET_PAYLOAD, max_retries=0)
            self._pause(session, config.reset_frame_delay)
        self._pause(session, config.teardown_delay)

    # ------------------------------------------------------------------
    # Announce loop
    # ------------------------------------------------------------------

    def _start_announce(self, session, sender, config) -> None:
        def announce() -> None:
            while not (session.terminated or session.controller_ready or self._stop.is_set()):
                sender.send(session.profile.host_ready_id, READY_PAYLOAD, max_retries=0)
                self._stop.wait(config.announce_interval)

        self._announce_thread = threading.Thread(target=announce, name="host-announce", daemon=True)
        self._announce_thread.start()

    def _join_announce(self) -> None:
        if self._announce_thread is not None:
            self._announce_thread.join(timeout=1.0)
            self._announce_thread = None

    # ------------------------------------------------------------------
    # Wait helpers
    # ------------------------------------------------------------------

    def _enter(self, session: TransferSession, phase: Phase) -> None:
        session.phase = phase.name
        logger.info(f"Phase {phase.name}")

    def _check_cancel(self, session: TransferSession) -> None:
        if self._stop.is_set():
            raise TransferCancelled(session.phase)

    def _pause(self, session: TransferSession, seconds: float) -> None:
        if seconds > 0 and self._stop.wait(seconds):
            raise TransferCancelled(session.phase)
        self._check_cancel(session)

    def _settle(self, session: TransferSession, config: TransferConfig) -> None:
        self._pause(session, config.phase_settle)

    def _wait_for(
        self,
        session: TransferSession,
        predicate: Callable[[], bool],
        timeout: float,
        on_timeout: Callable[[], ProtocolAckTimeout],
        tick: Optional[Callable[[], object]] = None,
        tick_interval: Optional[float] = None,
    ) -> None:
        """
        Poll until predicate() holds.

        Raises:
            TransferCancelled: If cancel() was called
            ProtocolAckTimeout: From on_timeout() when the deadline passes
        """
        start = self.clock()
        session.deadline = start + timeout
        next_tick = start + tick_interval if tick and tick_interval else None

        while True:
            self._check_cancel(session)
            if predicate():
                return
            now = self.clock()
            if now >= session.deadline:
                raise on_timeout()
            if next_tick is not None and now >= next_tick:
                tick()
                next_tick = now + tick_interval
            self._stop.wait(self.config.poll_interval)


def run_transfer(
    transport: Transport,
    firmware: Union[FirmwareImage, bytes],
    variant: Union[Variant, str],
    session_timeout_ms: Optional[int] = None,
    config: Optional[TransferConfig] = None,
    progress_sink: Optional[ProgressSink] = None,
) -> TransferOutcome:
    """Run one transfer with a fresh engine."""
    engine = FwTransferEngine(transport, config=config, progress_sink=progress_sink)
    return engine.run_transfer(firmware, variant, session_timeout_ms=session_timeout_ms)
