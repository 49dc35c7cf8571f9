"""
Revocation of attestations issued by this attester.
"""

import logging
from typing import List, Optional, Sequence

from ..errors import AlreadyRevoked, LedgerError, NotFound, NotRevocable, ValidationError
from ..identifiers import normalize_uid
from ..schema.registry import SchemaRegistry
from .types import RevocationCheck, RevocationResult, RevocationStatus
from .verification import VerificationReader

logger = logging.getLogger(__name__)


class RevocationManager:
    """Checks revocation preconditions and submits ``multiRevoke`` transactions.

    A batch is all or nothing: every target is checked before the single
    transaction is submitted, and EAS reverts the whole transaction if any
    target fails on-chain.
    """

    def __init__(
        self,
        submitter,
        eas,
        schemas: SchemaRegistry,
        attester: str,
        verifier: Optional[VerificationReader] = None,
        submit_timeout: Optional[float] = None,
    ):
        self.submitter = submitter
        self.eas = eas
        self.schemas = schemas
        self.attester = attester
        self.verifier = verifier
        self.submit_timeout = submit_timeout

    async def revoke(self, uid: str, reason: Optional[str] = None) -> RevocationResult:
        return (await self.revoke_many([uid], reason))[0]

    async def revoke_many(self, uids: Sequence[str], reason: Optional[str] = None) -> List[RevocationResult]:
        if not uids:
            raise ValidationError("At least one uid is required")
        if reason is not None and not isinstance(reason, str):
            raise ValidationError("reason must be a string")
        normalized = [normalize_uid(u) for u in uids]
        if len(set(normalized)) != len(normalized):
            raise ValidationError("Duplicate uids in revocation request")

        targets = []
        for uid in normalized:
            att = await self.eas.get_attestation(uid)
            if att is None:
                raise NotFound(f"Attestation {uid} not found", uid=uid)
            schema = await self.schemas.resolve(att.schema_uid)
            if not att.revocable or not schema.revocable:
                raise NotRevocable(f"Attestation {uid} is not revocable", uid=uid)
            if att.attester != self.attester:
                raise NotRevocable(f"Attestation {uid} was issued by another attester", uid=uid)
            if att.revoked:
                raise AlreadyRevoked(f"Attestation {uid} is already revoked", uid=uid, revoked_at=att.revoked_at)
            targets.append((att.schema_uid, uid))

        call = self.eas.build_multi_revoke(targets)
        receipt = await self.submitter.submit(call, timeout=self.submit_timeout)
        revoked = self.eas.revoked_uids(receipt)
        if sorted(revoked) != sorted(normalized):
            raise LedgerError(
                f"Expected Revoked events for {len(normalized)} uid(s), found {len(revoked)}",
                transaction_hash=receipt.transaction_hash,
            )
        if self.verifier is not None:
            for uid in normalized:
                self.verifier.invalidate(uid)

        results = []
        for uid in normalized:
            att = await self.eas.get_attestation(uid)
            results.append(RevocationResult(
                uid=uid,
                revoked_at=att.revoked_at,
                transaction_hash=receipt.transaction_hash,
                reason=reason,
            ))
        logger.info(
            f"Revoked {len(results)} attestation(s) in tx {receipt.transaction_hash}"
            + (f": {reason}" if reason else "")
        )
        return results

    async def status(self, uid: str) -> RevocationCheck:
        uid = normalize_uid(uid)
        att = await self.eas.get_attestation(uid)
        if att is None:
            return RevocationCheck(uid=uid, status=RevocationStatus.UNKNOWN)
        if att.revoked:
            return RevocationCheck(uid=uid, status=RevocationStatus.REVOKED, revoked_at=att.revoked_at)
        return RevocationCheck(uid=uid, status=RevocationStatus.ACTIVE)


__all__ = ["RevocationManager"]
