"""Tests for the de-duplicating bus sniffer."""

from unittest.mock import MagicMock

from bafang_fw_flasher.protocol.sim_transport import SimulatedController
from bafang_fw_flasher.protocol.transport import INVALID_FRAME, RawFrame
from bafang_fw_flasher.sniffer import DEFAULT_FILTERED_IDS, FrameSniffer


def test_repeats_are_folded() -> None:
    transport = SimulatedController()
    on_entry = MagicMock()
    sniffer = FrameSniffer(transport, on_entry=on_entry)
    sniffer.start()

    transport.emit(RawFrame("83106300", "01 02", 2, 100))
    transport.emit(RawFrame("83106300", "01 02", 2, 200))
    transport.emit(RawFrame("83106300", "01 02", 2, 300))
    transport.emit(RawFrame("83106300", "03 04", 2, 400))

    assert sniffer.entries == [
        "Listening for frames...",
        "100\tID:83106300\tDLC:2\tData:01 02",
        "300\tID:83106300\tDLC:2\tData:01 02\t(Repeated 3 times)",
        "400\tID:83106300\tDLC:2\tData:03 04",
    ]
    assert on_entry.call_count == 4


def test_stop_flushes_pending_repeats() -> None:
    transport = SimulatedController()
    sniffer = FrameSniffer(transport)
    sniffer.start()

    transport.emit(RawFrame("82FF1200", "AA", 1, 10))
    transport.emit(RawFrame("82FF1200", "AA", 1, 20))
    sniffer.stop()

    assert sniffer.entries[-2] == "20\tID:82FF1200\tDLC:1\tData:AA\t(Repeated 2 times)"
    assert sniffer.entries[-1] == "Sniffer stopped"
    assert transport.listener_count == 0


def test_filtered_and_invalid_frames_skipped() -> None:
    transport = SimulatedController()
    sniffer = FrameSniffer(transport)
    sniffer.start()

    assert "82F83201" in DEFAULT_FILTERED_IDS
    transport.emit(RawFrame("82F83201", "00", 1, 10))
    transport.emit(INVALID_FRAME)

    assert sniffer.entries == ["Listening for frames..."]
    assert sniffer.invalid_count == 1


def test_custom_filter_replaces_default() -> None:
    transport = SimulatedController()
    sniffer = FrameSniffer(transport, filtered_ids=["0x3106300"])
    sniffer.start()

    transport.emit(RawFrame("03106300", "00", 1, 10))
    transport.emit(RawFrame("82F83201", "00", 1, 20))

    assert sniffer.entries[1:] == ["20\tID:82F83201\tDLC:1\tData:00"]
