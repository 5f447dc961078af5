from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Tuple


class AudioTranscoder(ABC):
    """Abstract audio-compatibility transform.

    Implementations may rely on external tools (e.g., ffmpeg).
    """

    @abstractmethod
    def detect_format(self, audio_bytes: bytes) -> str:
        """Detect the container/codec of audio_bytes from its byte signature.

        Returns:
            A short format name such as 'wav', 'mp3', 'webm', 'mp4', 'm4a',
            'ogg' or 'unknown'
        """
        raise NotImplementedError

    @abstractmethod
    async def ensure_compatible(self, audio_bytes: bytes) -> Tuple[bytes, str]:
        """Return audio the transcription model accepts.

        Args:
            audio_bytes: Source audio bytes in any format
        Returns:
            (audio bytes, format name); input already in a compatible
            format is returned untouched
        """
        raise NotImplementedError


class AudioDevice(ABC):
    """Thin wrapper over the platform microphone and its audio session."""

    @abstractmethod
    async def request_permission(self) -> bool:
        """Ask the user for microphone access. Safe to call repeatedly."""
        raise NotImplementedError

    @abstractmethod
    async def activate_session(self) -> None:
        """Configure and activate the recording session."""
        raise NotImplementedError

    @abstractmethod
    def deactivate_session(self) -> None:
        """Deactivate the recording session. Must not raise."""
        raise NotImplementedError

    @abstractmethod
    def begin(self, file_path: str) -> bool:
        """Start writing microphone input to file_path.

        Returns:
            True if recording started
        """
        raise NotImplementedError

    @abstractmethod
    def end(self) -> None:
        """Stop writing and close the output file."""
        raise NotImplementedError

    @abstractmethod
    def average_power(self) -> float:
        """Most recent average input power in dBFS (0 is full scale)."""
        raise NotImplementedError
