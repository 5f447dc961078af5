import asyncio
import logging
from typing import List, Optional

from memory_loop.domains.memory import Memory, sort_memories
from memory_loop.interfaces.providers.memory_storage import MemoryStorage

logger = logging.getLogger(__name__)

LOAD_ERROR_MESSAGE = "Failed to load memories."
SAVE_ERROR_MESSAGE = "Failed to save memories."


class MemoryStore:
    """Authoritative in-process view of all memories.

    Every mutation holds one lock across the in-memory change and the
    whole-collection save, so a single writer owns both. Storage is a
    best-effort mirror: failures are recorded in ``last_error`` and the
    in-memory change is kept.
    """

    def __init__(
        self,
        storage: MemoryStorage,
        memories: Optional[List[Memory]] = None,
    ):
        self.storage = storage
        self.memories: List[Memory] = sort_memories(memories or [])
        self.is_loading = False
        self.last_error: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def sorted_memories(self) -> List[Memory]:
        return sort_memories(self.memories)

    def get(self, memory_id: str) -> Optional[Memory]:
        return next((m for m in self.memories if m.id == memory_id), None)

    def clear_last_error(self) -> None:
        self.last_error = None

    async def load(self) -> None:
        """Replace the collection with storage contents; empty on failure."""
        async with self._lock:
            self.is_loading = True
            self.last_error = None
            try:
                loaded = await self.storage.load()
                self.memories = sort_memories(loaded)
                logger.info("Loaded %d memories", len(self.memories))
            except Exception as e:
                logger.error(f"Failed to load memories: {e}")
                self.memories = []
                self.last_error = LOAD_ERROR_MESSAGE
            finally:
                self.is_loading = False

    async def refresh(self) -> None:
        await self.load()

    async def add(self, memory: Memory) -> None:
        async with self._lock:
            self.memories.insert(0, memory)
            self.memories = sort_memories(self.memories)
            await self._persist()

    async def remove(self, memory_id: str) -> None:
        async with self._lock:
            self.memories = [m for m in self.memories if m.id != memory_id]
            await self._persist()

    async def toggle_pin(self, memory_id: str) -> None:
        async with self._lock:
            memory = self.get(memory_id)
            if memory is None:
                return
            memory.pinned = not memory.pinned
            self.memories = sort_memories(self.memories)
            await self._persist()

    async def toggle_action_item(self, memory_id: str, index: int) -> None:
        """Mark an action item done or not done; out-of-range is a no-op."""
        async with self._lock:
            memory = self.get(memory_id)
            if memory is None:
                return
            if not 0 <= index < len(memory.action_items):
                return

            if index in memory.completed_items:
                memory.completed_items = [
                    i for i in memory.completed_items if i != index
                ]
            else:
                memory.completed_items = sorted([*memory.completed_items, index])
            await self._persist()

    async def _persist(self) -> None:
        try:
            await self.storage.save(list(self.memories))
            self.last_error = None
        except Exception as e:
            logger.warning(f"Failed to save memories: {e}")
            self.last_error = SAVE_ERROR_MESSAGE
