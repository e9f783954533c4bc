"""Tests for link-level send retries."""

from unittest.mock import MagicMock

from bafang_fw_flasher.models import Variant, get_profile
from bafang_fw_flasher.protocol.retrying_sender import RetryingSender


def make_sender(results):
    transport = MagicMock()
    transport.send_raw_frame.side_effect = list(results)
    profile = get_profile(Variant.NEW_MOTOR)
    return RetryingSender(transport, lambda: profile, retry_delay=0.0), transport


def test_first_attempt_succeeds() -> None:
    sender, transport = make_sender([True])
    assert sender.send("5114000", "88450200") is True
    transport.send_raw_frame.assert_called_once_with("85114000", "88450200")


def test_retries_until_accepted() -> None:
    sender, transport = make_sender([False, False, True])
    assert sender.send("5104001", "000010", max_retries=3) is True
    assert transport.send_raw_frame.call_count == 3


def test_gives_up_after_max_retries() -> None:
    """A refused frame is not fatal; the caller gets False and carries on."""
    sender, transport = make_sender([False, False, False, True])
    assert sender.send("5104001", "000010", max_retries=3) is False
    assert transport.send_raw_frame.call_count == 3


def test_zero_retries_sends_once() -> None:
    sender, transport = make_sender([False, True])
    assert sender.send("5FF3005", "00", max_retries=0) is False
    assert transport.send_raw_frame.call_count == 1


def test_profile_swap_changes_identifier() -> None:
    """The sender follows the active profile after a fallback."""
    transport = MagicMock()
    transport.send_raw_frame.return_value = True
    active = {"profile": get_profile(Variant.NEW_MOTOR)}
    sender = RetryingSender(transport, lambda: active["profile"], retry_delay=0.0)

    active["profile"] = get_profile(Variant.OLD_MOTOR)
    sender.send(active["profile"].ready_request_id, "88450200")
    transport.send_raw_frame.assert_called_once_with("85112000", "88450200")
