from abc import ABC, abstractmethod

from memory_loop.domains.memory import ProcessingResult


class MemoryProcessor(ABC):
    """Turns a recorded memo into structured fields."""

    @abstractmethod
    async def process_memory(self, audio_base64: str) -> ProcessingResult:
        """Process one base64 encoded recording.

        Raises:
            APIError: on any failure of the round trip
        """
        pass
