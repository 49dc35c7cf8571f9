"""
Core types for attestations, revocations, chains and verification results.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ..errors import ValidationError


class RevocationStatus(Enum):
    """Revocation status of an attestation."""
    UNKNOWN = 0  # Attestation could not be found
    ACTIVE = 1   # Attestation exists and is not revoked
    REVOKED = 2  # Attestation is revoked and fails verification


class VerificationReason(str, Enum):
    NOT_FOUND = "NotFound"
    REVOKED = "Revoked"
    EXPIRED = "Expired"
    UNDECODABLE = "Undecodable"


@dataclass
class Attestation:
    """An attestation as read back from the chain.

    Zero address, zero bytes32 and zero timestamps on chain map to ``None``.
    ``record`` holds the decoded data when the schema is known.
    """
    uid: str
    schema_uid: str
    attester: str
    data: bytes
    created_at: int
    recipient: Optional[str] = None
    ref_uid: Optional[str] = None
    expiration_time: Optional[int] = None
    revocable: bool = True
    revoked_at: Optional[int] = None
    record: Optional[Dict[str, Any]] = None

    @property
    def revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: float) -> bool:
        return self.expiration_time is not None and self.expiration_time <= now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "schemaUid": self.schema_uid,
            "attester": self.attester,
            "recipient": self.recipient,
            "refUid": self.ref_uid,
            "createdAt": self.created_at,
            "expirationTime": self.expiration_time,
            "revocable": self.revocable,
            "revoked": self.revoked,
            "revokedAt": self.revoked_at,
            "data": "0x" + self.data.hex(),
            "record": self.record,
        }


_REQUEST_KEYS = {"data", "schemaUid", "recipient", "refUid", "expirationTime", "revocable"}


@dataclass
class AttestationRequest:
    """One record to attest.

    ``schema_uid`` defaults to the configured resolution schema and
    ``revocable`` to the schema's own flag.
    """
    data: Dict[str, Any]
    schema_uid: Optional[str] = None
    recipient: Optional[str] = None
    ref_uid: Optional[str] = None
    expiration_time: int = 0
    revocable: Optional[bool] = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "AttestationRequest":
        if not isinstance(raw, Mapping):
            raise ValidationError("Each record must be an object")
        unknown = sorted(set(raw) - _REQUEST_KEYS)
        if unknown:
            raise ValidationError(f"Unknown record keys: {', '.join(unknown)}", keys=unknown)
        if "data" not in raw:
            raise ValidationError("Record is missing 'data'")
        expiration = raw.get("expirationTime") or 0
        if isinstance(expiration, bool) or not isinstance(expiration, int):
            raise ValidationError("expirationTime must be an integer unix timestamp")
        revocable = raw.get("revocable")
        if revocable is not None and not isinstance(revocable, bool):
            raise ValidationError("revocable must be a boolean")
        return cls(
            data=raw["data"],
            schema_uid=raw.get("schemaUid"),
            recipient=raw.get("recipient"),
            ref_uid=raw.get("refUid"),
            expiration_time=expiration,
            revocable=revocable,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "schemaUid": self.schema_uid,
            "recipient": self.recipient,
            "refUid": self.ref_uid,
            "expirationTime": self.expiration_time,
            "revocable": self.revocable,
        }


@dataclass
class WriteResult:
    """Outcome of one confirmed multiAttest transaction."""
    uids: List[str]
    transaction_hash: str
    attestations: List[Attestation] = field(default_factory=list)
    replayed: bool = False
    block_number: Optional[int] = None
    gas_used: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"uids": list(self.uids), "transactionHash": self.transaction_hash}
        if self.gas_used is not None:
            out["gasUsed"] = self.gas_used
        if self.replayed:
            out["replayed"] = True
        return out


@dataclass
class RevocationResult:
    uid: str
    revoked_at: int
    transaction_hash: str
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"uid": self.uid, "revokedAt": self.revoked_at}


@dataclass
class RevocationCheck:
    uid: str
    status: RevocationStatus
    revoked_at: Optional[int] = None

    @property
    def revoked(self) -> bool:
        return self.status == RevocationStatus.REVOKED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "status": self.status.name,
            "revoked": self.revoked,
            "revokedAt": self.revoked_at,
        }


@dataclass
class VerificationResult:
    valid: bool
    attestation: Optional[Attestation] = None
    reason: Optional[VerificationReason] = None
    revoked_at: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"valid": self.valid}
        if self.attestation is not None:
            out["attestation"] = self.attestation.to_dict()
        if self.reason is not None:
            out["reason"] = self.reason.value
        if self.revoked_at is not None:
            out["revokedAt"] = self.revoked_at
        return out


@dataclass
class ChainSummary:
    """Derived attributes of a resolved chain, without the links themselves."""
    root_uid: str
    leaf_uid: str
    length: int
    revoked_uids: List[str]
    started_at: int  # root created_at
    latest_at: int   # leaf created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rootUid": self.root_uid,
            "leafUid": self.leaf_uid,
            "length": self.length,
            "revokedUids": list(self.revoked_uids),
            "startedAt": self.started_at,
            "latestAt": self.latest_at,
        }


@dataclass
class GasEstimate:
    count: int
    estimated_gas: int
    gas_price: int
    estimated_cost_wei: int
    estimated_cost_native: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "estimatedGas": self.estimated_gas,
            "gasPrice": self.gas_price,
            "estimatedCostNative": str(self.estimated_cost_native),
        }


__all__ = [
    "RevocationStatus",
    "VerificationReason",
    "Attestation",
    "AttestationRequest",
    "WriteResult",
    "RevocationResult",
    "RevocationCheck",
    "VerificationResult",
    "ChainSummary",
    "GasEstimate",
]
