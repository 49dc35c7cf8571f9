"""In-process submission log."""

import time
from typing import Dict, Optional

from .store import SubmissionEntry, SubmissionStore


class MemorySubmissionStore(SubmissionStore):
    def __init__(self, ttl: Optional[int] = None):
        self.ttl = ttl
        self._entries: Dict[str, SubmissionEntry] = {}

    def _expired(self, entry: SubmissionEntry) -> bool:
        return self.ttl is not None and time.time() - entry.created_at > self.ttl

    async def get(self, correlation_id: str) -> Optional[SubmissionEntry]:
        entry = self._entries.get(correlation_id)
        if entry is not None and self._expired(entry):
            del self._entries[correlation_id]
            return None
        return entry

    async def put(self, entry: SubmissionEntry) -> None:
        self._entries[entry.correlation_id] = entry

    async def delete(self, correlation_id: str) -> bool:
        return self._entries.pop(correlation_id, None) is not None

    async def count(self) -> int:
        for cid in [c for c, e in self._entries.items() if self._expired(e)]:
            del self._entries[cid]
        return len(self._entries)


__all__ = ["MemorySubmissionStore"]
