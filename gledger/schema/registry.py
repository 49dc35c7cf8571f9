"""Schema registry cache.

Schemas are immutable on-chain, so once a schema is known it never changes and
cached entries never expire. Unknown UIDs are looked up through an optional
``source`` (anything with ``async get_schema(uid) -> Optional[Schema]``,
normally :class:`gledger.ledger.eas.EASContract`).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Protocol

from ..errors import SchemaMismatch
from ..identifiers import normalize_uid
from .types import Schema

logger = logging.getLogger(__name__)


class SchemaSource(Protocol):
    async def get_schema(self, uid: str) -> Optional[Schema]:
        ...  # pragma: no cover - interface placeholder


class SchemaRegistry:
    """Registry storing known schemas keyed by UID."""

    def __init__(self, source: Optional[SchemaSource] = None):
        self._schemas: Dict[str, Schema] = {}
        self._source = source
        self._lock = asyncio.Lock()

    def register(self, schema: Schema) -> Schema:
        existing = self._schemas.get(schema.uid)
        if existing is not None and existing != schema:
            raise ValueError(f"Schema with uid '{schema.uid}' already registered with a different definition")
        self._schemas[schema.uid] = schema
        return schema

    async def resolve(self, uid: str) -> Schema:
        uid = normalize_uid(uid, "schema_uid")
        schema = self._schemas.get(uid)
        if schema is not None:
            return schema
        if self._source is None:
            raise SchemaMismatch(f"Unknown schema {uid}", schema_uid=uid)
        async with self._lock:
            schema = self._schemas.get(uid)
            if schema is None:
                schema = await self._source.get_schema(uid)
                if schema is None:
                    raise SchemaMismatch(f"Schema {uid} is not registered on-chain", schema_uid=uid)
                logger.info(f"Loaded schema {uid} from registry: {schema.definition}")
                self._schemas[uid] = schema
        return schema

    def list(self) -> List[Schema]:
        return list(self._schemas.values())


__all__ = ["SchemaRegistry", "SchemaSource"]
