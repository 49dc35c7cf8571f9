"""
Reconstruction of ``refUid`` chains, root first.
"""

import logging
from typing import List, Sequence

from ..errors import ChainBroken, NotFound, ValidationError
from ..identifiers import normalize_uid
from ..schema.registry import SchemaRegistry
from .types import Attestation, ChainSummary
from .verification import read_attestation

logger = logging.getLogger(__name__)


class ChainResolver:
    def __init__(self, eas, schemas: SchemaRegistry, max_depth: int = 16):
        self.eas = eas
        self.schemas = schemas
        self.max_depth = max_depth

    async def get_chain(self, uid: str) -> List[Attestation]:
        """Return the chain ending at ``uid``, root first.

        Parents are fetched one at a time, so at most ``max_depth`` reads are
        made. A missing parent, a cycle, a parent created after its child, or a
        chain longer than ``max_depth`` raises ``ChainBroken``.
        """
        uid = normalize_uid(uid)
        leaf = await read_attestation(self.eas, self.schemas, uid)
        if leaf is None:
            raise NotFound(f"Attestation {uid} not found", uid=uid)

        links = [leaf]
        seen = {leaf.uid}
        current = leaf
        while current.ref_uid is not None:
            parent_uid = current.ref_uid
            if parent_uid in seen:
                raise ChainBroken(f"Cycle detected at {parent_uid}", uid=uid, at=parent_uid)
            if len(links) >= self.max_depth:
                raise ChainBroken(
                    f"Chain from {uid} exceeds max depth {self.max_depth}", uid=uid, max_depth=self.max_depth
                )
            parent = await read_attestation(self.eas, self.schemas, parent_uid)
            if parent is None:
                logger.error(f"Chain from {uid} references missing attestation {parent_uid}")
                raise ChainBroken(f"Referenced attestation {parent_uid} not found", uid=uid, at=parent_uid)
            if parent.created_at > current.created_at:
                raise ChainBroken(
                    f"Attestation {parent_uid} was created after its child {current.uid}", uid=uid, at=parent_uid
                )
            links.append(parent)
            seen.add(parent.uid)
            current = parent
        links.reverse()
        return links

    @staticmethod
    def summarize(chain: Sequence[Attestation]) -> ChainSummary:
        if not chain:
            raise ValidationError("empty chain")
        root, leaf = chain[0], chain[-1]
        return ChainSummary(
            root_uid=root.uid,
            leaf_uid=leaf.uid,
            length=len(chain),
            revoked_uids=[a.uid for a in chain if a.revoked],
            started_at=root.created_at,
            latest_at=leaf.created_at,
        )


__all__ = ["ChainResolver"]
