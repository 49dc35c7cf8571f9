"""
Correlation-id log for idempotent writes.

An entry maps the caller's correlation id to a request digest and a transaction.
It is written as ``pending`` as soon as the transaction is broadcast and replaced
by a ``confirmed`` entry carrying the resulting UIDs once the receipt is in. A
retry that finds a pending entry resolves the outcome from that transaction
instead of submitting again. The log is advisory: losing it only loses replay
protection, never ledger data.
"""

import json
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import List, Optional

PENDING = "pending"
CONFIRMED = "confirmed"


@dataclass
class SubmissionEntry:
    correlation_id: str
    request_digest: str
    uids: List[str]
    transaction_hash: str
    status: str = CONFIRMED
    created_at: float = field(default_factory=time.time)

    @property
    def pending(self) -> bool:
        return self.status == PENDING

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> "SubmissionEntry":
        data = json.loads(raw)
        return cls(
            correlation_id=data["correlation_id"],
            request_digest=data["request_digest"],
            uids=list(data["uids"]),
            transaction_hash=data["transaction_hash"],
            status=data.get("status", CONFIRMED),
            created_at=data.get("created_at", 0.0),
        )


class SubmissionStore(ABC):
    @abstractmethod
    async def get(self, correlation_id: str) -> Optional[SubmissionEntry]:
        ...

    @abstractmethod
    async def put(self, entry: SubmissionEntry) -> None:
        ...

    @abstractmethod
    async def delete(self, correlation_id: str) -> bool:
        ...

    @abstractmethod
    async def count(self) -> int:
        ...

    async def close(self) -> None:
        return None


__all__ = ["SubmissionEntry", "SubmissionStore", "PENDING", "CONFIRMED"]
