"""
Core module for the Bafang firmware flasher.

This module provides the single source of truth for:
- Firmware image slicing (firmware.py)
- Timing configuration and bus settings (config.py)
- Progress calculation and reporting (progress.py)
- Session outcomes (results.py)
"""

from .config import TransferConfig, BusSettings
from .firmware import FirmwareImage, load_firmware, HEADER_SIZE, CHUNK_SIZE
from .progress import ProgressReporter, overall_progress, chunk_progress
from .results import TransferOutcome, OutcomeStatus

__all__ = [
    # Config
    "TransferConfig",
    "BusSettings",
    # Firmware
    "FirmwareImage",
    "load_firmware",
    "HEADER_SIZE",
    "CHUNK_SIZE",
    # Progress
    "ProgressReporter",
    "overall_progress",
    "chunk_progress",
    # Results
    "TransferOutcome",
    "OutcomeStatus",
]
