"""
Submission log package: maps caller correlation ids to their transaction and
UIDs, in memory or in Redis.
"""

from typing import Optional

from .store import CONFIRMED, PENDING, SubmissionEntry, SubmissionStore
from .memory import MemorySubmissionStore
from .redis import RedisSubmissionStore


def create_submission_store(url: Optional[str] = None, ttl: Optional[int] = None) -> SubmissionStore:
    """Redis store for a ``redis://`` / ``rediss://`` URL, in-memory otherwise."""
    if url:
        return RedisSubmissionStore(url=url, ttl=ttl)
    return MemorySubmissionStore(ttl=ttl)


__all__ = [
    "PENDING",
    "CONFIRMED",
    "SubmissionEntry",
    "SubmissionStore",
    "MemorySubmissionStore",
    "RedisSubmissionStore",
    "create_submission_store",
]
