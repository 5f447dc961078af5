from abc import ABC, abstractmethod
from typing import List

from memory_loop.domains.memory import Memory


class MemoryStorage(ABC):
    """Durable whole-collection storage for memories."""

    @abstractmethod
    async def load(self) -> List[Memory]:
        """Read the entire collection."""
        pass

    @abstractmethod
    async def save(self, memories: List[Memory]) -> None:
        """Atomically replace the entire collection."""
        pass
