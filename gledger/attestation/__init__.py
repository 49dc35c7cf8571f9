"""
Package attestation creates, revokes, chains and verifies EAS attestations.

Writes go through the single-writer transaction submitter; chain resolution and
verification are read-only.
"""

from .types import (
    RevocationStatus,
    VerificationReason,
    Attestation,
    AttestationRequest,
    WriteResult,
    RevocationResult,
    RevocationCheck,
    VerificationResult,
    ChainSummary,
    GasEstimate,
)
from .verification import (
    read_attestation,
    VerificationCache,
    VerificationReader,
)
from .writer import AttestationWriter, request_digest
from .revocation import RevocationManager
from .chain import ChainResolver
from .resolution import (
    RESOLVER_ROLES,
    resolution_request,
    issue_resolution_request,
)

__all__ = [
    'RevocationStatus',
    'VerificationReason',
    'Attestation',
    'AttestationRequest',
    'WriteResult',
    'RevocationResult',
    'RevocationCheck',
    'VerificationResult',
    'ChainSummary',
    'GasEstimate',
    'read_attestation',
    'VerificationCache',
    'VerificationReader',
    'AttestationWriter',
    'request_digest',
    'RevocationManager',
    'ChainResolver',
    'RESOLVER_ROLES',
    'resolution_request',
    'issue_resolution_request',
]
