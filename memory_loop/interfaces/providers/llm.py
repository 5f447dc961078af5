from abc import ABC, abstractmethod


class SpeechModelProvider(ABC):
    """Interface for the transcription and structuring capability.

    Failures are raised as the provider's own exceptions; callers classify
    them by status code and message text.
    """

    @abstractmethod
    async def transcribe(self, audio_bytes: bytes, filename: str, model: str) -> str:
        """Transcribe an audio file with the given model."""
        pass

    @abstractmethod
    async def complete_json(
        self, system_prompt: str, user_content: str, model: str
    ) -> str:
        """Ask the given model for a JSON object and return the raw content."""
        pass
