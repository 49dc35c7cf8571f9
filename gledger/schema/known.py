"""Schemas used by the grievance resolution flow."""

from ..identifiers import ZERO_ADDRESS
from .types import Schema, parse_schema

# Single grievance resolution record
RESOLUTION_SCHEMA = (
    "string grievanceId,string villageId,string resolverRole,string ipfsHash,uint256 resolutionTimestamp"
)

# Batched issue resolution record
ISSUE_RESOLUTION_SCHEMA = (
    "string issueId,string resolutionHash,uint64 timestamp,address resolver,"
    "string category,string panchayatId,string ipfsCid"
)


def resolution_schema(uid=None, resolver: str = ZERO_ADDRESS, revocable: bool = True) -> Schema:
    return parse_schema(RESOLUTION_SCHEMA, resolver=resolver, revocable=revocable, uid=uid)


def issue_resolution_schema(uid=None, resolver: str = ZERO_ADDRESS, revocable: bool = True) -> Schema:
    return parse_schema(ISSUE_RESOLUTION_SCHEMA, resolver=resolver, revocable=revocable, uid=uid)


__all__ = [
    "RESOLUTION_SCHEMA",
    "ISSUE_RESOLUTION_SCHEMA",
    "resolution_schema",
    "issue_resolution_schema",
]
