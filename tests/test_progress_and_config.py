"""Tests for progress calculation, timing config and outcomes."""

import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from bafang_fw_flasher.core.config import BusSettings, TransferConfig
from bafang_fw_flasher.core.progress import ProgressReporter, chunk_progress, overall_progress
from bafang_fw_flasher.core.results import OutcomeStatus, TransferOutcome


def session_state(progress=0, ready=False, started=False, confirmed=False, terminated=False):
    return SimpleNamespace(
        progress=progress,
        controller_ready=ready,
        transfer_started=started,
        last_chunk_confirmed=confirmed,
        terminated=terminated,
    )


class TestOverallProgress:
    def test_clamped_at_zero_before_handshake(self):
        assert overall_progress(session_state()) == 0

    def test_flags_add_one_point_each(self):
        assert overall_progress(session_state(50, ready=True, started=True)) == 49
        assert overall_progress(session_state(50, True, True, True)) == 50

    def test_clamped_at_hundred(self):
        assert overall_progress(session_state(100, True, True, True)) == 100
        assert overall_progress(session_state(150, True, True, True)) == 100

    def test_chunk_progress(self):
        assert chunk_progress(300, 600) == 50
        assert chunk_progress(0, 600) == 0
        assert chunk_progress(5, 0) == 0


class TestProgressReporter:
    def test_published_values_never_decrease(self):
        state = session_state(10, True, True)
        sink = MagicMock()
        reporter = ProgressReporter(state, sink, interval=1.0)

        reporter.publish()
        reporter.publish()
        state.progress = 5
        reporter.publish()
        state.progress = 40
        reporter.publish()

        assert [c.args[0] for c in sink.call_args_list] == [9, 9, 9, 39]

    def test_unchanged_value_is_republished_every_tick(self):
        """A long checkpoint wait still produces a steady stream of updates."""
        state = session_state(30, True, True)
        sink = MagicMock()
        reporter = ProgressReporter(state, sink, interval=0.01)
        reporter.start()
        time.sleep(0.1)
        reporter.stop()

        values = [c.args[0] for c in sink.call_args_list]
        assert len(values) >= 3
        assert set(values) == {29}

    def test_stop_publishes_final_value(self):
        state = session_state(100, True, True, True, terminated=True)
        sink = MagicMock()
        reporter = ProgressReporter(state, sink, interval=0.01)
        reporter.start()
        reporter.stop()
        assert sink.call_args_list[-1].args[0] == 100

    def test_no_sink_is_a_no_op(self):
        reporter = ProgressReporter(session_state(), None)
        reporter.start()
        reporter.stop()

    def test_failing_sink_does_not_raise(self):
        sink = MagicMock(side_effect=RuntimeError("ui closed"))
        reporter = ProgressReporter(session_state(50, True, True), sink)
        reporter.publish()
        sink.assert_called_once()


class TestTransferConfig:
    def test_defaults(self):
        config = TransferConfig()
        assert config.session_timeout == 10.0
        assert config.fallback_after == 5.0
        assert config.last_chunk_timeout == 60.0
        assert config.send_retries == 3

    def test_session_timeout_from_ms(self):
        config = TransferConfig().with_session_timeout_ms(2500)
        assert config.session_timeout == 2.5
        assert config.fallback_after == 0.0

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValueError):
            TransferConfig().with_session_timeout_ms(0)


class TestBusSettings:
    def test_defaults(self, monkeypatch):
        for name in ("BAFANG_CAN_INTERFACE", "BAFANG_CAN_CHANNEL", "BAFANG_CAN_BITRATE"):
            monkeypatch.delenv(name, raising=False)
        settings = BusSettings.from_env()
        assert settings == BusSettings("socketcan", "can0", 250000)

    def test_environment_and_explicit_values(self, monkeypatch):
        monkeypatch.setenv("BAFANG_CAN_INTERFACE", "pcan")
        monkeypatch.setenv("BAFANG_CAN_CHANNEL", "PCAN_USBBUS1")
        monkeypatch.setenv("BAFANG_CAN_BITRATE", "500000")

        settings = BusSettings.from_env()
        assert settings == BusSettings("pcan", "PCAN_USBBUS1", 500000)

        settings = BusSettings.from_env(channel="can1", bitrate=125000)
        assert settings == BusSettings("pcan", "can1", 125000)

    def test_bad_bitrate(self, monkeypatch):
        monkeypatch.setenv("BAFANG_CAN_BITRATE", "fast")
        with pytest.raises(ValueError):
            BusSettings.from_env()


class TestTransferOutcome:
    def test_failed_summary(self):
        outcome = TransferOutcome.failed("BULK_TRANSFER", "no ack", variant="HMI", chunk_count=600)
        assert not outcome.ok
        assert outcome.status == OutcomeStatus.FAILED
        summary = outcome.to_summary()
        assert "[FAILED]" in summary
        assert "BULK_TRANSFER" in summary
        assert "no ack" in summary

    def test_to_dict(self):
        outcome = TransferOutcome.succeeded(variant="NEW_MOTOR", chunk_count=2, elapsed=1.23456)
        assert outcome.to_dict() == {
            "status": "succeeded",
            "phase": "DONE",
            "reason": "",
            "variant": "NEW_MOTOR",
            "chunk_count": 2,
            "elapsed": 1.235,
        }

    def test_cancelled(self):
        outcome = TransferOutcome.cancelled_in("HANDSHAKE")
        assert outcome.cancelled
        assert not outcome.ok
        assert outcome.reason == "cancelled by user"
