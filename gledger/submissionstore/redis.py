"""Redis-backed submission log.

Each entry is stored as a JSON blob at ``{prefix}:submission:{correlation_id}``
with an optional TTL. Counting uses a bounded SCAN over that key space.
"""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as redis

from .store import SubmissionEntry, SubmissionStore

logger = logging.getLogger(__name__)


class RedisSubmissionStore(SubmissionStore):
    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        prefix: str = "gledger",
        ttl: Optional[int] = None,
        scan_page_size: int = 500,
        max_scan: int = 5000,
    ):
        self.url = url
        self.prefix = prefix.rstrip(":")
        self.ttl = ttl
        self.scan_page_size = scan_page_size
        self.max_scan = max_scan
        self._client = None

    async def _get_client(self):
        if self._client is None:
            self._client = redis.from_url(self.url, decode_responses=True)
        return self._client

    def _key(self, correlation_id: str) -> str:
        return f"{self.prefix}:submission:{correlation_id}"

    async def get(self, correlation_id: str) -> Optional[SubmissionEntry]:
        client = await self._get_client()
        raw = await client.get(self._key(correlation_id))
        if not raw:
            return None
        try:
            return SubmissionEntry.from_json(raw)
        except (ValueError, KeyError, TypeError) as e:
            # unreadable entries read as absent
            logger.error(f"Decode failure for submission {correlation_id}: {e}")
            return None

    async def put(self, entry: SubmissionEntry) -> None:
        client = await self._get_client()
        await client.set(self._key(entry.correlation_id), entry.to_json(), ex=self.ttl)
        logger.debug(f"Stored submission {entry.correlation_id}")

    async def delete(self, correlation_id: str) -> bool:
        client = await self._get_client()
        return (await client.delete(self._key(correlation_id))) == 1

    async def count(self) -> int:
        client = await self._get_client()
        pattern = f"{self.prefix}:submission:*"
        cursor = 0
        count = 0
        while True:
            cursor, keys = await client.scan(cursor=cursor, match=pattern, count=self.scan_page_size)
            count += len(keys)
            if cursor == 0 or count >= self.max_scan:
                break
        return count

    async def clear(self) -> int:
        client = await self._get_client()
        pattern = f"{self.prefix}:submission:*"
        cursor = 0
        deleted = 0
        while True:
            cursor, keys = await client.scan(cursor=cursor, match=pattern, count=self.scan_page_size)
            if keys:
                deleted += await client.delete(*keys)
            if cursor == 0 or deleted >= self.max_scan:
                break
        return deleted

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


__all__ = ["RedisSubmissionStore"]
