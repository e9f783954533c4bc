"""
Device profile registry for Bafang controllers.

Provides a unified layer for variant selection and protocol parameters.
"""

from .registry import (
    Variant,
    ProtocolFamily,
    DeviceProfile,
    HOST_READY_ID,
    RESET_ID,
    parse_variant,
    get_profile,
    list_profiles,
    fallback_profile,
)

__all__ = [
    "Variant",
    "ProtocolFamily",
    "DeviceProfile",
    "HOST_READY_ID",
    "RESET_ID",
    "parse_variant",
    "get_profile",
    "list_profiles",
    "fallback_profile",
]
