"""
Public, read-only verification of attestation UIDs.

Results are cached briefly: valid results for ``ttl`` seconds, revoked results
for good since a revocation is permanent. Not-found, expired and undecodable
results are never cached, so a freshly mined attestation is visible at once.
Concurrent lookups of one UID share a single RPC read. A read that was already
running when its UID is invalidated is not cached. The chain stays the source
of truth.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Callable, Dict, Optional, Tuple

from ..errors import SchemaMismatch
from ..identifiers import normalize_uid
from ..monitoring.metrics_exporter import get_registry
from ..schema import codec
from ..schema.registry import SchemaRegistry
from .types import Attestation, VerificationReason, VerificationResult

logger = logging.getLogger(__name__)


async def read_attestation(eas, schemas: SchemaRegistry, uid: str) -> Optional[Attestation]:
    """Read ``uid`` from EAS and attach the decoded record when its schema decodes it."""
    att = await eas.get_attestation(uid)
    if att is None:
        return None
    try:
        schema = await schemas.resolve(att.schema_uid)
        att.record = codec.decode(att.data, schema)
    except SchemaMismatch as e:
        logger.warning(f"Attestation {uid} does not decode: {e}")
        att.record = None
    return att


class VerificationCache:
    """Bounded LRU of verification results with per-entry expiry."""

    def __init__(self, ttl: float = 5.0, max_size: int = 10_000, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        # uid -> (expires_at or None for permanent, result)
        self._entries: "OrderedDict[str, Tuple[Optional[float], VerificationResult]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, uid: str) -> Optional[VerificationResult]:
        entry = self._entries.get(uid)
        if entry is None:
            return None
        expires_at, result = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[uid]
            return None
        self._entries.move_to_end(uid)
        return result

    def put(self, uid: str, result: VerificationResult) -> None:
        if self.max_size <= 0:
            return
        if result.reason == VerificationReason.REVOKED:
            expires_at = None
        elif result.valid and self.ttl > 0:
            expires_at = self._clock() + self.ttl
        else:
            return
        self._entries[uid] = (expires_at, result)
        self._entries.move_to_end(uid)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def invalidate(self, uid: str) -> None:
        self._entries.pop(uid, None)

    def clear(self) -> None:
        self._entries.clear()


class VerificationReader:
    def __init__(
        self,
        eas,
        schemas: SchemaRegistry,
        cache: Optional[VerificationCache] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.eas = eas
        self.schemas = schemas
        self.cache = cache if cache is not None else VerificationCache()
        self._clock = clock
        self._inflight: Dict[str, "asyncio.Future[VerificationResult]"] = {}
        self._invalidations = 0

    def invalidate(self, uid: str) -> None:
        """Forget everything known about ``uid``; reads already running are not cached."""
        uid = normalize_uid(uid)
        self._invalidations += 1
        self.cache.invalidate(uid)
        self._inflight.pop(uid, None)

    async def verify(self, uid: str) -> VerificationResult:
        uid = normalize_uid(uid)
        cached = self.cache.get(uid)
        if cached is not None:
            return cached
        pending = self._inflight.get(uid)
        if pending is not None:
            return await asyncio.shield(pending)

        future: "asyncio.Future[VerificationResult]" = asyncio.get_running_loop().create_future()
        self._inflight[uid] = future
        invalidations = self._invalidations
        try:
            result = await self._lookup(uid)
            if self._invalidations == invalidations:
                self.cache.put(uid, result)
            future.set_result(result)
            return result
        except Exception as e:
            future.set_exception(e)
            future.exception()
            raise
        finally:
            if not future.done():
                future.cancel()
            if self._inflight.get(uid) is future:
                del self._inflight[uid]

    async def _lookup(self, uid: str) -> VerificationResult:
        att = await read_attestation(self.eas, self.schemas, uid)
        if att is None:
            result = VerificationResult(valid=False, reason=VerificationReason.NOT_FOUND)
        elif att.revoked:
            result = VerificationResult(
                valid=False, attestation=att, reason=VerificationReason.REVOKED, revoked_at=att.revoked_at
            )
        elif att.is_expired(self._clock()):
            result = VerificationResult(valid=False, attestation=att, reason=VerificationReason.EXPIRED)
        elif att.record is None:
            result = VerificationResult(valid=False, attestation=att, reason=VerificationReason.UNDECODABLE)
        else:
            result = VerificationResult(valid=True, attestation=att)
        get_registry().observe_verification("valid" if result.valid else result.reason.value)
        return result


__all__ = ["read_attestation", "VerificationCache", "VerificationReader"]
