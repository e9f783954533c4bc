"""
Result objects for transfer sessions.

Provides a single outcome structure the CLI and tests read to report how
a session ended.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class OutcomeStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class TransferOutcome:
    """
    Terminal outcome of a transfer session.

    Attributes:
        status: Succeeded, Failed or Cancelled
        phase: Phase the session was in when it stopped
        reason: Human-readable cause for failures and cancellations
        variant: Profile active at the end (may differ from the requested
            one after a fallback)
        chunk_count: Number of payload chunks in the image
        elapsed: Wall-clock seconds the session ran
    """
    status: OutcomeStatus
    phase: str = ""
    reason: str = ""
    variant: str = ""
    chunk_count: int = 0
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.SUCCEEDED

    @property
    def cancelled(self) -> bool:
        return self.status == OutcomeStatus.CANCELLED

    def to_summary(self) -> str:
        """
        Generate a human-readable summary string.

        Suitable for CLI output or simple logging.
        """
        lines = [f"[{self.status.name}] firmware transfer"]
        if self.variant:
            lines.append(f"  Variant: {self.variant}")
        if self.chunk_count:
            lines.append(f"  Chunks: {self.chunk_count:,}")
        if self.phase:
            lines.append(f"  Phase: {self.phase}")
        if self.reason:
            lines.append(f"  Reason: {self.reason}")
        lines.append(f"  Elapsed: {self.elapsed:.1f}s")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "status": self.status.value,
            "phase": self.phase,
            "reason": self.reason,
            "variant": self.variant,
            "chunk_count": self.chunk_count,
            "elapsed": round(self.elapsed, 3),
        }

    @classmethod
    def succeeded(cls, variant: str = "", chunk_count: int = 0, elapsed: float = 0.0) -> "TransferOutcome":
        return cls(
            status=OutcomeStatus.SUCCEEDED,
            phase="DONE",
            variant=variant,
            chunk_count=chunk_count,
            elapsed=elapsed,
        )

    @classmethod
    def failed(
        cls,
        phase: str,
        reason: str,
        variant: str = "",
        chunk_count: int = 0,
        elapsed: float = 0.0,
    ) -> "TransferOutcome":
        return cls(
            status=OutcomeStatus.FAILED,
            phase=phase,
            reason=reason,
            variant=variant,
            chunk_count=chunk_count,
            elapsed=elapsed,
        )

    @classmethod
    def cancelled_in(
        cls,
        phase: str,
        variant: str = "",
        chunk_count: int = 0,
        elapsed: float = 0.0,
        reason: Optional[str] = None,
    ) -> "TransferOutcome":
        return cls(
            status=OutcomeStatus.CANCELLED,
            phase=phase,
            reason=reason or "cancelled by user",
            variant=variant,
            chunk_count=chunk_count,
            elapsed=elapsed,
        )
