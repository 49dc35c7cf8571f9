"""
Ethereum Attestation Service (EAS) contract bindings.

Calldata is built with ``eth_abi`` against the EAS v1 interface so it can be
signed by the transaction submitter and replayed byte-for-byte on retries.

On OP-stack chains EAS is a predeploy at 0x4200000000000000000000000000000000000021
and its schema registry at 0x4200000000000000000000000000000000000020.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.packed import encode_packed
from eth_utils import keccak, to_checksum_address

from ..attestation.types import Attestation
from ..config import DEFAULT_EAS_ADDRESS, DEFAULT_SCHEMA_REGISTRY_ADDRESS
from ..errors import LedgerError, SchemaMismatch, TransientNetworkError, Unavailable, ValidationError
from ..identifiers import ZERO_UID, optional_address, optional_uid, uid_to_bytes
from ..resilience import ExponentialBackoff, RetryPolicy, retry_call
from ..schema.types import Schema, parse_schema
from ..transaction.classify import classify_rpc_error
from .base import EncodedCall, LedgerClient, Receipt

logger = logging.getLogger(__name__)

ATTESTATION_REQUEST_DATA = "(address,uint64,bool,bytes32,bytes,uint256)"
MULTI_ATTEST_ARG = f"(bytes32,{ATTESTATION_REQUEST_DATA}[])[]"
MULTI_REVOKE_ARG = "(bytes32,(bytes32,uint256)[])[]"
ATTESTATION_STRUCT = "(bytes32,bytes32,uint64,uint64,uint64,bytes32,address,address,bool,bytes)"
SCHEMA_RECORD_STRUCT = "(bytes32,address,bool,string)"


def _selector(signature: str) -> bytes:
    return keccak(text=signature)[:4]


MULTI_ATTEST_SELECTOR = _selector(f"multiAttest({MULTI_ATTEST_ARG})")
MULTI_REVOKE_SELECTOR = _selector(f"multiRevoke({MULTI_REVOKE_ARG})")
GET_ATTESTATION_SELECTOR = _selector("getAttestation(bytes32)")
GET_SCHEMA_SELECTOR = _selector("getSchema(bytes32)")

ATTESTED_TOPIC = keccak(text="Attested(address,address,bytes32,bytes32)")
REVOKED_TOPIC = keccak(text="Revoked(address,address,bytes32,bytes32)")

# (schema_uid, recipient, expiration_time, revocable, ref_uid, data)
AttestItem = Tuple[str, str, int, bool, str, bytes]


def compute_attestation_uid(
    schema_uid: str,
    recipient: str,
    attester: str,
    time: int,
    expiration_time: int,
    revocable: bool,
    ref_uid: str,
    data: bytes,
    bump: int = 0,
) -> str:
    """UID EAS assigns to an attestation (``bump`` resolves collisions)."""
    packed = encode_packed(
        ["bytes32", "address", "address", "uint64", "uint64", "bool", "bytes32", "bytes", "uint32"],
        [
            uid_to_bytes(schema_uid),
            recipient,
            attester,
            time,
            expiration_time,
            revocable,
            uid_to_bytes(ref_uid),
            data,
            bump,
        ],
    )
    return "0x" + keccak(packed).hex()


def _schema_runs(keys: Sequence[str]) -> List[Tuple[str, List[int]]]:
    """Group indexes into consecutive runs sharing a schema, preserving order."""
    runs: List[Tuple[str, List[int]]] = []
    for i, key in enumerate(keys):
        if runs and runs[-1][0] == key:
            runs[-1][1].append(i)
        else:
            runs.append((key, [i]))
    return runs


def encode_multi_attest(items: Sequence[AttestItem]) -> bytes:
    runs = _schema_runs([item[0] for item in items])
    groups = []
    for schema_uid, indexes in runs:
        data = []
        for i in indexes:
            _, recipient, expiration, revocable, ref_uid, payload = items[i]
            data.append((recipient, expiration, revocable, uid_to_bytes(ref_uid), payload, 0))
        groups.append((uid_to_bytes(schema_uid), data))
    return MULTI_ATTEST_SELECTOR + abi_encode([MULTI_ATTEST_ARG], [groups])


def encode_multi_revoke(targets: Sequence[Tuple[str, str]]) -> bytes:
    """``targets`` is a list of (schema_uid, uid) pairs."""
    runs = _schema_runs([schema for schema, _ in targets])
    groups = []
    for schema_uid, indexes in runs:
        groups.append((uid_to_bytes(schema_uid), [(uid_to_bytes(targets[i][1]), 0) for i in indexes]))
    return MULTI_REVOKE_SELECTOR + abi_encode([MULTI_REVOKE_ARG], [groups])


def decode_multi_attest(args: bytes) -> List[AttestItem]:
    (groups,) = abi_decode([MULTI_ATTEST_ARG], args)
    items: List[AttestItem] = []
    for schema, data in groups:
        for recipient, expiration, revocable, ref, payload, _value in data:
            items.append((
                "0x" + schema.hex(),
                to_checksum_address(recipient),
                expiration,
                revocable,
                "0x" + ref.hex(),
                payload,
            ))
    return items


def decode_multi_revoke(args: bytes) -> List[Tuple[str, str]]:
    (groups,) = abi_decode([MULTI_REVOKE_ARG], args)
    return [("0x" + schema.hex(), "0x" + uid.hex()) for schema, data in groups for uid, _value in data]


def encode_attestation_struct(att: Dict[str, Any]) -> bytes:
    """ABI-encode a getAttestation return value from a plain dict."""
    return abi_encode([ATTESTATION_STRUCT], [(
        uid_to_bytes(att["uid"]),
        uid_to_bytes(att["schema"]),
        att["time"],
        att["expirationTime"],
        att["revocationTime"],
        uid_to_bytes(att["refUID"]),
        att["recipient"],
        att["attester"],
        att["revocable"],
        att["data"],
    )])


def encode_schema_record(uid: str, resolver: str, revocable: bool, definition: str) -> bytes:
    return abi_encode([SCHEMA_RECORD_STRUCT], [(uid_to_bytes(uid), resolver, revocable, definition)])


def _zero_none(value: int) -> Optional[int]:
    return value or None


class EASContract:
    """Read helpers and calldata builders for EAS and its schema registry."""

    def __init__(
        self,
        client: LedgerClient,
        eas_address: str = DEFAULT_EAS_ADDRESS,
        registry_address: str = DEFAULT_SCHEMA_REGISTRY_ADDRESS,
        read_policy: Optional[RetryPolicy] = None,
    ):
        self.client = client
        self.address = to_checksum_address(eas_address)
        self.registry_address = to_checksum_address(registry_address)
        self.read_policy = read_policy or RetryPolicy(
            max_attempts=3,
            backoff=ExponentialBackoff(initial_delay=0.2, max_delay=2.0, multiplier=2.0),
            exceptions=(TransientNetworkError,),
        )

    async def _call(self, to: str, data: bytes) -> bytes:
        async def once() -> bytes:
            try:
                return await self.client.call({"to": to, "data": data})
            except LedgerError:
                raise
            except Exception as e:
                mapped = classify_rpc_error(e)
                if mapped is None:
                    raise
                raise mapped from e

        try:
            return await retry_call(self.read_policy, once)
        except TransientNetworkError as e:
            logger.error(f"RPC read against {to} failed: {e}")
            raise Unavailable(f"RPC read failed: {e.message}") from e

    async def get_attestation(self, uid: str) -> Optional[Attestation]:
        """Return the attestation, or None if EAS has no record of ``uid``."""
        raw = await self._call(self.address, GET_ATTESTATION_SELECTOR + uid_to_bytes(uid))
        (record,) = abi_decode([ATTESTATION_STRUCT], raw)
        (att_uid, schema, time, expiration, revocation_time,
         ref_uid, recipient, attester, revocable, data) = record
        if "0x" + att_uid.hex() == ZERO_UID:
            return None
        return Attestation(
            uid="0x" + att_uid.hex(),
            schema_uid="0x" + schema.hex(),
            attester=to_checksum_address(attester),
            data=bytes(data),
            created_at=time,
            recipient=optional_address(recipient),
            ref_uid=optional_uid(ref_uid),
            expiration_time=_zero_none(expiration),
            revocable=revocable,
            revoked_at=_zero_none(revocation_time),
        )

    async def get_schema(self, uid: str) -> Optional[Schema]:
        raw = await self._call(self.registry_address, GET_SCHEMA_SELECTOR + uid_to_bytes(uid))
        (record,) = abi_decode([SCHEMA_RECORD_STRUCT], raw)
        schema_uid, resolver, revocable, definition = record
        if "0x" + schema_uid.hex() == ZERO_UID:
            return None
        try:
            return parse_schema(definition, resolver=resolver, revocable=revocable, uid="0x" + schema_uid.hex())
        except ValidationError as e:
            raise SchemaMismatch(f"Registered schema {uid} is not usable: {e.message}", schema_uid=uid) from e

    def build_multi_attest(self, items: Sequence[AttestItem]) -> EncodedCall:
        if not items:
            raise ValidationError("multiAttest requires at least one item")
        return EncodedCall(
            to=self.address,
            data=encode_multi_attest(items),
            operation="attest",
            item_count=len(items),
        )

    def build_multi_revoke(self, targets: Sequence[Tuple[str, str]]) -> EncodedCall:
        if not targets:
            raise ValidationError("multiRevoke requires at least one uid")
        return EncodedCall(
            to=self.address,
            data=encode_multi_revoke(targets),
            operation="revoke",
            item_count=len(targets),
        )

    def _event_uids(self, receipt: Receipt, topic: bytes) -> List[str]:
        uids = []
        for log in receipt.logs:
            if to_checksum_address(log.address) != self.address or not log.topics:
                continue
            if bytes(log.topics[0]) != topic:
                continue
            uids.append("0x" + bytes(log.data[:32]).hex())
        return uids

    def attested_uids(self, receipt: Receipt) -> List[str]:
        """UIDs from ``Attested`` events, in request order."""
        return self._event_uids(receipt, ATTESTED_TOPIC)

    def revoked_uids(self, receipt: Receipt) -> List[str]:
        return self._event_uids(receipt, REVOKED_TOPIC)


__all__ = [
    "MULTI_ATTEST_SELECTOR",
    "MULTI_REVOKE_SELECTOR",
    "GET_ATTESTATION_SELECTOR",
    "GET_SCHEMA_SELECTOR",
    "ATTESTED_TOPIC",
    "REVOKED_TOPIC",
    "AttestItem",
    "compute_attestation_uid",
    "encode_multi_attest",
    "encode_multi_revoke",
    "decode_multi_attest",
    "decode_multi_revoke",
    "encode_attestation_struct",
    "encode_schema_record",
    "EASContract",
]
