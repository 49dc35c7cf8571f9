"""
Attestation writer: validates records, attests them in one ``multiAttest``
transaction and provides correlation-id idempotency.

All validation (schema conformance, field formats, referenced parents) runs
before anything is handed to the transaction submitter, so a rejected request
never costs a broadcast.

A write with a correlation id runs as its own task. A caller whose deadline
passes gets ``SubmissionTimeout`` while the write carries on; the broadcast is
recorded as a pending log entry, so a retry under the same id either joins the
running write or settles from that transaction's receipt.
"""

import asyncio
import functools
import hashlib
import json
import logging
import time
from dataclasses import replace
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from web3 import Web3

from ..errors import LedgerError, NotFound, SubmissionTimeout, TransactionReverted, Unavailable, ValidationError
from ..identifiers import ZERO_ADDRESS, ZERO_UID, normalize_address, normalize_uid
from ..schema import codec
from ..schema.registry import SchemaRegistry
from ..schema.types import Schema
from ..submissionstore.store import PENDING, SubmissionEntry, SubmissionStore
from .types import Attestation, AttestationRequest, GasEstimate, WriteResult
from .verification import read_attestation

logger = logging.getLogger(__name__)

BATCH_BASE_GAS = 50_000
GAS_PER_ATTESTATION = 150_000

RequestLike = Union[AttestationRequest, Mapping[str, Any]]


class _Prepared:
    __slots__ = ("schema", "record", "item")

    def __init__(self, schema: Schema, record: Dict[str, Any], item: Tuple[str, str, int, bool, str, bytes]):
        self.schema = schema
        self.record = record
        self.item = item

    def canonical(self) -> Dict[str, Any]:
        schema_uid, recipient, expiration, revocable, ref_uid, _ = self.item
        return {
            "schemaUid": schema_uid,
            "recipient": recipient,
            "expirationTime": expiration,
            "revocable": revocable,
            "refUid": ref_uid,
            "data": self.record,
        }


def request_digest(prepared: Sequence[_Prepared]) -> str:
    """sha256 over the canonical JSON of a validated request list."""
    blob = json.dumps([p.canonical() for p in prepared], sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


class _InFlight:
    """A correlated write, running independently of the callers waiting on it."""

    __slots__ = ("digest", "task", "transaction_hash")

    def __init__(self, digest: str):
        self.digest = digest
        self.task: Optional["asyncio.Task[WriteResult]"] = None
        self.transaction_hash: Optional[str] = None


class AttestationWriter:
    def __init__(
        self,
        submitter,
        eas,
        schemas: SchemaRegistry,
        store: SubmissionStore,
        default_schema_uid: Optional[str] = None,
        max_batch_size: int = 50,
        submit_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.submitter = submitter
        self.eas = eas
        self.schemas = schemas
        self.store = store
        self.default_schema_uid = default_schema_uid
        self.max_batch_size = max_batch_size
        self.submit_timeout = submit_timeout
        self._clock = clock
        self._inflight: Dict[str, _InFlight] = {}

    async def create_one(self, request: RequestLike, correlation_id: Optional[str] = None) -> Attestation:
        result = await self.create_batch([request], correlation_id)
        return result.attestations[0]

    async def create_batch(self, requests: Sequence[RequestLike], correlation_id: Optional[str] = None) -> WriteResult:
        if not requests:
            raise ValidationError("At least one record is required")
        if len(requests) > self.max_batch_size:
            raise ValidationError(
                f"Maximum {self.max_batch_size} attestations per batch",
                count=len(requests),
            )
        if correlation_id is not None and (not isinstance(correlation_id, str) or not correlation_id.strip()):
            raise ValidationError("correlationId must be a non-empty string")

        parsed = [r if isinstance(r, AttestationRequest) else AttestationRequest.from_dict(r) for r in requests]
        prepared = []
        for i, request in enumerate(parsed):
            try:
                prepared.append(await self._prepare(request))
            except LedgerError as e:
                e.details.setdefault("index", i)
                raise
        await self._check_parents(prepared)

        if correlation_id is None:
            return await self._write(prepared, None, None)
        return await self._write_idempotent(prepared, correlation_id)

    async def _prepare(self, request: AttestationRequest) -> _Prepared:
        schema_uid = request.schema_uid or self.default_schema_uid
        if not schema_uid:
            raise ValidationError("schemaUid is required when no default schema is configured")
        schema = await self.schemas.resolve(schema_uid)
        record = codec.normalize(request.data, schema)
        data = codec.encode(record, schema)

        recipient = normalize_address(request.recipient, "recipient") if request.recipient else ZERO_ADDRESS
        ref_uid = normalize_uid(request.ref_uid, "refUid") if request.ref_uid else ZERO_UID
        expiration = request.expiration_time or 0
        if expiration < 0:
            raise ValidationError("expirationTime must be >= 0")
        if expiration and expiration <= self._clock():
            raise ValidationError("expirationTime must be in the future")
        revocable = schema.revocable if request.revocable is None else request.revocable
        if revocable and not schema.revocable:
            raise ValidationError(f"Schema {schema.uid} is not revocable; revocable must be false")
        return _Prepared(schema, record, (schema.uid, recipient, expiration, revocable, ref_uid, data))

    async def _check_parents(self, prepared: Sequence[_Prepared]) -> None:
        for p in prepared:
            ref_uid = p.item[4]
            if ref_uid == ZERO_UID:
                continue
            parent = await self.eas.get_attestation(ref_uid)
            if parent is None:
                raise NotFound(f"Referenced attestation {ref_uid} does not exist", ref_uid=ref_uid)

    async def _write_idempotent(self, prepared: Sequence[_Prepared], correlation_id: str) -> WriteResult:
        digest = request_digest(prepared)
        inflight = self._inflight.get(correlation_id)
        if inflight is not None:
            if inflight.digest != digest:
                raise ValidationError("correlationId is already in use for a different request")
            logger.info(f"Waiting on in-flight submission for correlation id {correlation_id}")
            result = await self._await_inflight(inflight, correlation_id)
            return replace(result, replayed=True)

        inflight = _InFlight(digest)
        self._inflight[correlation_id] = inflight
        inflight.task = asyncio.get_running_loop().create_task(
            self._write_correlated(prepared, correlation_id, inflight)
        )
        inflight.task.add_done_callback(functools.partial(self._settle, correlation_id, inflight))
        return await self._await_inflight(inflight, correlation_id)

    async def _await_inflight(self, inflight: _InFlight, correlation_id: str) -> WriteResult:
        try:
            return await asyncio.wait_for(asyncio.shield(inflight.task), self.submit_timeout)
        except asyncio.TimeoutError:
            if inflight.task.done():
                raise
            logger.warning(
                f"Write for correlation id {correlation_id} exceeded caller deadline of {self.submit_timeout}s "
                f"(tx {inflight.transaction_hash}); it continues in the background"
            )
            raise SubmissionTimeout(
                f"Submission not confirmed within {self.submit_timeout}s; retry with the same correlationId",
                transaction_hash=inflight.transaction_hash,
            )

    def _settle(self, correlation_id: str, inflight: _InFlight, task: "asyncio.Task[WriteResult]") -> None:
        if self._inflight.get(correlation_id) is inflight:
            del self._inflight[correlation_id]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.info(f"Write for correlation id {correlation_id} ended with {type(exc).__name__}: {exc}")

    async def _write_correlated(
        self, prepared: Sequence[_Prepared], correlation_id: str, inflight: _InFlight
    ) -> WriteResult:
        entry = await self.store.get(correlation_id)
        if entry is not None:
            if entry.request_digest != inflight.digest:
                raise ValidationError("correlationId was already used for a different request")
            if not entry.pending:
                logger.info(f"Replaying correlation id {correlation_id} ({len(entry.uids)} uids)")
                return await self._replay(entry)
            resumed = await self._resume(entry, prepared)
            if resumed is not None:
                return resumed

        async def record_broadcast(tx_hash: str) -> None:
            inflight.transaction_hash = tx_hash
            await self.store.put(SubmissionEntry(
                correlation_id=correlation_id,
                request_digest=inflight.digest,
                uids=[],
                transaction_hash=tx_hash,
                status=PENDING,
            ))

        try:
            return await self._write(prepared, correlation_id, inflight.digest, on_broadcast=record_broadcast)
        except TransactionReverted:
            if inflight.transaction_hash is not None:
                await self.store.delete(correlation_id)
            raise

    async def _resume(self, entry: SubmissionEntry, prepared: Sequence[_Prepared]) -> Optional[WriteResult]:
        """Settle a write whose transaction was broadcast but not confirmed.

        Returns None when that transaction can no longer land, in which case the
        pending entry is dropped and the caller submits afresh.
        """
        tx_hash = entry.transaction_hash
        tx = await self.submitter.find_transaction(tx_hash)
        if tx is None:
            logger.warning(f"Pending tx {tx_hash} for correlation id {entry.correlation_id} is unknown to the node")
            await self.store.delete(entry.correlation_id)
            return None
        logger.info(f"Resuming correlation id {entry.correlation_id} from tx {tx_hash}")
        try:
            receipt = await self.submitter.confirm("attest", tx_hash, tx["nonce"])
        except TransactionReverted:
            logger.warning(f"Pending tx {tx_hash} for correlation id {entry.correlation_id} reverted")
            await self.store.delete(entry.correlation_id)
            return None
        result = await self._complete(receipt, len(prepared), entry.correlation_id, entry.request_digest)
        return replace(result, replayed=True)

    async def _write(
        self,
        prepared: Sequence[_Prepared],
        correlation_id: Optional[str],
        digest: Optional[str],
        on_broadcast: Optional[Callable[[str], Awaitable[Any]]] = None,
    ) -> WriteResult:
        call = self.eas.build_multi_attest([p.item for p in prepared])
        # correlated writes take the caller deadline in _await_inflight
        timeout = self.submit_timeout if correlation_id is None else None
        receipt = await self.submitter.submit(call, timeout=timeout, on_broadcast=on_broadcast)
        return await self._complete(receipt, len(prepared), correlation_id, digest)

    async def _complete(
        self, receipt, expected: int, correlation_id: Optional[str], digest: Optional[str]
    ) -> WriteResult:
        uids = self.eas.attested_uids(receipt)
        if len(uids) != expected:
            raise LedgerError(
                f"Expected {expected} Attested events, found {len(uids)}",
                transaction_hash=receipt.transaction_hash,
            )
        if correlation_id is not None:
            await self.store.put(SubmissionEntry(
                correlation_id=correlation_id,
                request_digest=digest,
                uids=uids,
                transaction_hash=receipt.transaction_hash,
            ))
        logger.info(f"Attested {len(uids)} record(s) in tx {receipt.transaction_hash}")
        attestations = await self._read_back(uids)
        return WriteResult(
            uids=uids,
            transaction_hash=receipt.transaction_hash,
            attestations=attestations,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
        )

    async def _replay(self, entry: SubmissionEntry) -> WriteResult:
        attestations = await self._read_back(entry.uids)
        return WriteResult(
            uids=list(entry.uids),
            transaction_hash=entry.transaction_hash,
            attestations=attestations,
            replayed=True,
        )

    async def _read_back(self, uids: Sequence[str]) -> List[Attestation]:
        attestations = await asyncio.gather(*(read_attestation(self.eas, self.schemas, uid) for uid in uids))
        missing = [uid for uid, att in zip(uids, attestations) if att is None]
        if missing:
            raise Unavailable(f"Attestations not yet visible on the node: {', '.join(missing)}")
        return list(attestations)

    async def estimate(self, count: int) -> GasEstimate:
        """Upper-bound cost of attesting ``count`` resolution records in one batch."""
        if isinstance(count, bool) or not isinstance(count, int) or not 1 <= count <= self.max_batch_size:
            raise ValidationError(f"count must be between 1 and {self.max_batch_size}")
        gas_price = await self.submitter.current_gas_price()
        estimated_gas = BATCH_BASE_GAS + GAS_PER_ATTESTATION * count
        cost = estimated_gas * gas_price
        return GasEstimate(
            count=count,
            estimated_gas=estimated_gas,
            gas_price=gas_price,
            estimated_cost_wei=cost,
            estimated_cost_native=Decimal(Web3.from_wei(cost, "ether")),
        )


__all__ = ["AttestationWriter", "request_digest", "BATCH_BASE_GAS", "GAS_PER_ATTESTATION"]
