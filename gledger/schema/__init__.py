"""
Schema definitions, the ABI codec for attestation data, and the schema cache.
"""

from .types import FieldSpec, Schema, compute_schema_uid, parse_fields, parse_schema
from .codec import encode, decode, normalize
from .registry import SchemaRegistry, SchemaSource
from .known import (
    RESOLUTION_SCHEMA,
    ISSUE_RESOLUTION_SCHEMA,
    resolution_schema,
    issue_resolution_schema,
)

__all__ = [
    'FieldSpec',
    'Schema',
    'compute_schema_uid',
    'parse_fields',
    'parse_schema',
    'encode',
    'decode',
    'normalize',
    'SchemaRegistry',
    'SchemaSource',
    'RESOLUTION_SCHEMA',
    'ISSUE_RESOLUTION_SCHEMA',
    'resolution_schema',
    'issue_resolution_schema',
]
