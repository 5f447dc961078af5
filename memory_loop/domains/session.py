"""
Capture session domain models.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

__all__ = ["CaptureState", "CaptureSnapshot", "format_duration"]


class CaptureState(str, Enum):
    """Lifecycle state of one capture session."""
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


def format_duration(seconds: float) -> str:
    """Render elapsed seconds as ``M:SS``."""
    total = int(seconds)
    return f"{total // 60}:{total % 60:02d}"


class CaptureSnapshot(BaseModel):
    """Point-in-time view of a capture session for observers."""

    state: CaptureState = CaptureState.IDLE
    duration: float = Field(0.0, description="Elapsed recording seconds")
    amplitude: float = Field(0.0, ge=0.0, le=1.0)
    error_message: Optional[str] = None
    memory_id: Optional[str] = None

    @property
    def duration_text(self) -> str:
        return format_duration(self.duration)
