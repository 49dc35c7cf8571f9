"""
Schema types: parsed EAS schema definitions and their UIDs.

A definition is the comma separated ``"<type> <name>"`` string registered with
the EAS schema registry, e.g. ``"string grievanceId,uint256 resolutionTimestamp"``.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from eth_abi.packed import encode_packed
from eth_utils import keccak

from ..errors import ValidationError
from ..identifiers import ZERO_ADDRESS, normalize_address, normalize_uid

_INT_RE = re.compile(r"^(u?int)(\d*)$")
_BYTES_RE = re.compile(r"^bytes(\d*)$")
_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_type(type_str: str) -> None:
    base = type_str[:-2] if type_str.endswith("[]") else type_str
    if base in ("bool", "address", "string"):
        return
    m = _INT_RE.match(base)
    if m:
        bits = int(m.group(2) or 256)
        if bits % 8 == 0 and 8 <= bits <= 256:
            return
    m = _BYTES_RE.match(base)
    if m:
        size = m.group(1)
        if not size or 1 <= int(size) <= 32:
            return
    raise ValidationError(f"Unsupported schema field type: {type_str}", type=type_str)


@dataclass(frozen=True)
class FieldSpec:
    """One ordered (name, type) pair of a schema."""
    name: str
    type: str

    @property
    def is_array(self) -> bool:
        return self.type.endswith("[]")

    @property
    def base_type(self) -> str:
        return self.type[:-2] if self.is_array else self.type

    @property
    def abi_type(self) -> str:
        # "uint"/"int" aliases are spelled out for the encoder
        base = self.base_type
        if base in ("uint", "int"):
            base = f"{base}256"
        return base + ("[]" if self.is_array else "")


@dataclass(frozen=True)
class Schema:
    """Registered EAS schema. Immutable once created."""
    uid: str
    fields: Tuple[FieldSpec, ...]
    resolver: str = ZERO_ADDRESS
    revocable: bool = True

    @property
    def definition(self) -> str:
        return ",".join(f"{f.type} {f.name}" for f in self.fields)

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    @property
    def abi_types(self) -> List[str]:
        return [f.abi_type for f in self.fields]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "definition": self.definition,
            "fields": [{"name": f.name, "type": f.type} for f in self.fields],
            "resolver": self.resolver,
            "revocable": self.revocable,
        }


def compute_schema_uid(definition: str, resolver: str = ZERO_ADDRESS, revocable: bool = True) -> str:
    """UID the EAS schema registry assigns to ``definition``."""
    packed = encode_packed(["string", "address", "bool"], [definition, resolver, revocable])
    return "0x" + keccak(packed).hex()


def parse_fields(definition: str) -> Tuple[FieldSpec, ...]:
    if not isinstance(definition, str) or not definition.strip():
        raise ValidationError("Schema definition must be a non-empty string")
    fields: List[FieldSpec] = []
    seen = set()
    for part in definition.split(","):
        tokens = part.split()
        if len(tokens) != 2:
            raise ValidationError(f"Malformed schema field: {part.strip()!r}")
        type_str, name = tokens
        _check_type(type_str)
        if not _NAME_RE.match(name):
            raise ValidationError(f"Invalid schema field name: {name!r}")
        if name in seen:
            raise ValidationError(f"Duplicate schema field: {name}")
        seen.add(name)
        fields.append(FieldSpec(name=name, type=type_str))
    return tuple(fields)


def parse_schema(
    definition: str,
    resolver: str = ZERO_ADDRESS,
    revocable: bool = True,
    uid: Optional[str] = None,
) -> Schema:
    """Build a Schema from a definition string.

    ``uid`` defaults to the registry-computed UID. Passing a uid that differs
    from the computed one is accepted (registries on other chains may differ),
    it is only normalized.
    """
    fields = parse_fields(definition)
    resolver = normalize_address(resolver, "resolver")
    canonical = ",".join(f"{f.type} {f.name}" for f in fields)
    schema_uid = normalize_uid(uid, "schema_uid") if uid else compute_schema_uid(canonical, resolver, revocable)
    return Schema(uid=schema_uid, fields=fields, resolver=resolver, revocable=bool(revocable))


__all__ = ["FieldSpec", "Schema", "compute_schema_uid", "parse_fields", "parse_schema"]
