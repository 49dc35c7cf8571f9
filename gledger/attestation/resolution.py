"""
Request builders for grievance resolution attestations.
"""

import time
from typing import Callable, Optional

from ..errors import ValidationError
from ..identifiers import normalize_address
from .types import AttestationRequest

RESOLVER_ROLES = ("officer", "volunteer", "citizen")


def _required(name: str, value: Optional[str]) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Missing required field: {name}", field=name)
    return value


def resolution_request(
    grievance_id: str,
    village_id: str,
    resolver_role: str,
    ipfs_hash: str = "",
    schema_uid: Optional[str] = None,
    ref_uid: Optional[str] = None,
    recipient: Optional[str] = None,
    resolution_timestamp: Optional[int] = None,
    clock: Callable[[], float] = time.time,
) -> AttestationRequest:
    """Record that a grievance was resolved. ``resolutionTimestamp`` is unix seconds."""
    _required("grievanceId", grievance_id)
    _required("villageId", village_id)
    role = _required("resolverRole", resolver_role).strip().lower()
    if role not in RESOLVER_ROLES:
        raise ValidationError(
            f"Invalid resolverRole. Must be one of: {', '.join(RESOLVER_ROLES)}",
            field="resolverRole",
        )
    return AttestationRequest(
        data={
            "grievanceId": grievance_id,
            "villageId": village_id,
            "resolverRole": role,
            "ipfsHash": ipfs_hash or "",
            "resolutionTimestamp": resolution_timestamp if resolution_timestamp is not None else int(clock()),
        },
        schema_uid=schema_uid,
        ref_uid=ref_uid,
        recipient=recipient,
    )


def issue_resolution_request(
    issue_id: str,
    resolver: str,
    resolution_hash: str = "",
    category: str = "",
    panchayat_id: str = "",
    ipfs_cid: str = "",
    timestamp: Optional[int] = None,
    schema_uid: Optional[str] = None,
    ref_uid: Optional[str] = None,
    recipient: Optional[str] = None,
    clock: Callable[[], float] = time.time,
) -> AttestationRequest:
    """Record for the batched issue schema. ``timestamp`` is unix milliseconds."""
    _required("issueId", issue_id)
    return AttestationRequest(
        data={
            "issueId": issue_id,
            "resolutionHash": resolution_hash or "",
            "timestamp": timestamp if timestamp is not None else int(clock() * 1000),
            "resolver": normalize_address(resolver, "resolver"),
            "category": category or "",
            "panchayatId": panchayat_id or "",
            "ipfsCid": ipfs_cid or "",
        },
        schema_uid=schema_uid,
        ref_uid=ref_uid,
        recipient=recipient,
    )


__all__ = ["RESOLVER_ROLES", "resolution_request", "issue_resolution_request"]
