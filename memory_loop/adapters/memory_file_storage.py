import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Union

from memory_loop.domains.memory import Memory
from memory_loop.interfaces.providers.memory_storage import MemoryStorage

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_PATH = Path.home() / ".memory_loop" / "memories.json"


class MemoryFileStorage(MemoryStorage):
    """Stores the whole memory collection as one JSON array file."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path).expanduser() if path else DEFAULT_STORAGE_PATH

    async def load(self) -> List[Memory]:
        return await asyncio.to_thread(self._read)

    async def save(self, memories: List[Memory]) -> None:
        records = [m.to_record() for m in memories]
        await asyncio.to_thread(self._write, records)

    def _read(self) -> List[Memory]:
        if not self.path.exists():
            return []
        data = self.path.read_bytes()
        if not data.strip():
            return []
        records = json.loads(data)
        if not isinstance(records, list):
            raise ValueError(f"Expected a JSON array in {self.path}")
        return [Memory.from_record(r) for r in records]

    def _write(self, records: List[dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(records, indent=2, sort_keys=True, ensure_ascii=False)
        # Write to a sibling temp file, then swap it in.
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=".memories-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        logger.debug("Saved %d memories to %s", len(records), self.path)
