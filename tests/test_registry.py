"""Tests for the device profile registry."""

import dataclasses

import pytest

from bafang_fw_flasher.models import (
    ProtocolFamily,
    Variant,
    fallback_profile,
    get_profile,
    list_profiles,
    parse_variant,
)


class TestParseVariant:
    def test_canonical_and_friendly_names(self):
        assert parse_variant("NEW_MOTOR") == Variant.NEW_MOTOR
        assert parse_variant("old-motor") == Variant.OLD_MOTOR
        assert parse_variant(" hmi ") == Variant.HMI
        assert parse_variant("dpc18") == Variant.DPC18
        assert parse_variant(Variant.HMI) == Variant.HMI

    def test_unknown_variant_lists_valid_names(self):
        with pytest.raises(ValueError) as excinfo:
            parse_variant("ebike")
        assert "NEW_MOTOR" in str(excinfo.value)


class TestProfiles:
    """Identifier tables per controller generation."""

    def test_all_variants_registered_in_order(self):
        assert [p.variant for p in list_profiles()] == [
            Variant.NEW_MOTOR,
            Variant.OLD_MOTOR,
            Variant.HMI,
            Variant.DPC18,
        ]

    def test_new_motor_identifiers(self):
        profile = get_profile("NEW_MOTOR")
        assert profile.family == ProtocolFamily.NEW
        assert profile.ready_request_id == "5114000"
        assert profile.ready_ack_id == "22A4000"
        assert profile.prelude_command_id == "5116008"
        assert profile.chunk_prefixes == ["4", "5", "6"]
        assert profile.channel_prefix == "8"

    def test_old_motor_acks_every_chunk(self):
        profile = get_profile(Variant.OLD_MOTOR)
        assert not profile.is_new_family
        assert not profile.is_windowed
        assert profile.prelude_command_id is None
        assert not profile.is_window_checkpoint(258)

    def test_display_profiles(self):
        hmi = get_profile(Variant.HMI)
        dpc18 = get_profile(Variant.DPC18)
        assert hmi.ready_request_id == dpc18.ready_request_id == "5194000"
        assert hmi.ack_device_digit == "3"
        assert hmi.ack_window == 256
        assert dpc18.ack_window == 4096
        assert hmi.last_chunk_resend_interval == 1.0

    def test_only_new_motor_falls_back(self):
        assert fallback_profile(get_profile(Variant.NEW_MOTOR)).variant == Variant.OLD_MOTOR
        assert fallback_profile(get_profile(Variant.OLD_MOTOR)) is None
        assert fallback_profile(get_profile(Variant.HMI)) is None

    def test_profiles_are_immutable(self):
        profile = get_profile(Variant.NEW_MOTOR)
        with pytest.raises(dataclasses.FrozenInstanceError):
            profile.ack_window = 1


class TestWindowCheckpoints:
    def test_checkpoints_for_600_chunks(self):
        profile = get_profile(Variant.NEW_MOTOR)
        assert profile.window_checkpoints(600) == [258, 514]

    def test_start_index_is_not_a_checkpoint(self):
        profile = get_profile(Variant.NEW_MOTOR)
        assert not profile.is_window_checkpoint(2)
        assert profile.is_window_checkpoint(258)
        assert not profile.is_window_checkpoint(257)

    def test_dpc18_wide_window(self):
        profile = get_profile(Variant.DPC18)
        assert profile.window_checkpoints(600) == []
        assert profile.window_checkpoints(5000) == [4098]
