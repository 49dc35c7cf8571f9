"""
Schema codec: record dict <-> ABI-encoded attestation data.

``encode`` accepts a few lenient input forms (decimal strings for integers,
``bytes`` for byte fields, lowercase addresses) and ``decode`` always returns the
canonical form:

    uintN / intN   int
    address        EIP-55 checksummed str
    bytes / bytesN lowercase 0x-hex str (bytesN padded to N bytes)
    string / bool  str / bool
    T[]            list

so ``decode(encode(r, s), s) == r`` for every canonical record ``r``.
"""

import re
from typing import Any, Dict, Mapping

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError, EncodingError
from eth_utils import is_address, to_checksum_address

from ..errors import SchemaMismatch
from .types import FieldSpec, Schema

_HEX_RE = re.compile(r"^0x([0-9a-fA-F]{2})*$")
_DEC_RE = re.compile(r"^-?\d+$")


def _mismatch(fs: FieldSpec, value: Any, why: str) -> SchemaMismatch:
    return SchemaMismatch(
        f"Field '{fs.name}' ({fs.type}): {why}",
        field=fs.name,
        type=fs.type,
        value=repr(value)[:80],
    )


def _canonical_scalar(fs: FieldSpec, base: str, value: Any) -> Any:
    if base == "bool":
        if not isinstance(value, bool):
            raise _mismatch(fs, value, "expected a boolean")
        return value
    if base == "string":
        if not isinstance(value, str):
            raise _mismatch(fs, value, "expected a string")
        return value
    if base == "address":
        if not isinstance(value, str) or not is_address(value):
            raise _mismatch(fs, value, "expected a 20 byte hex address")
        return to_checksum_address(value)
    if base.startswith("bytes"):
        if isinstance(value, (bytes, bytearray)):
            raw = bytes(value)
        elif isinstance(value, str) and _HEX_RE.match(value):
            raw = bytes.fromhex(value[2:])
        else:
            raise _mismatch(fs, value, "expected bytes or an even-length 0x hex string")
        size = base[5:]
        if size:
            n = int(size)
            if len(raw) > n:
                raise _mismatch(fs, value, f"value longer than {n} bytes")
            raw = raw.ljust(n, b"\x00")
        return "0x" + raw.hex()
    # uintN / intN
    if isinstance(value, bool):
        raise _mismatch(fs, value, "booleans are not integers")
    if isinstance(value, str) and _DEC_RE.match(value.strip()):
        value = int(value.strip())
    if not isinstance(value, int):
        raise _mismatch(fs, value, "expected an integer")
    signed = base.startswith("int")
    bits = int(base[3 if signed else 4:] or 256)
    low, high = (-(2 ** (bits - 1)), 2 ** (bits - 1)) if signed else (0, 2 ** bits)
    if not low <= value < high:
        raise _mismatch(fs, value, f"out of range for {base}")
    return value


def _canonical(fs: FieldSpec, value: Any) -> Any:
    if fs.is_array:
        if not isinstance(value, (list, tuple)):
            raise _mismatch(fs, value, "expected a list")
        return [_canonical_scalar(fs, fs.base_type, v) for v in value]
    return _canonical_scalar(fs, fs.base_type, value)


def _to_abi(fs: FieldSpec, value: Any) -> Any:
    if fs.base_type.startswith("bytes"):
        if fs.is_array:
            return [bytes.fromhex(v[2:]) for v in value]
        return bytes.fromhex(value[2:])
    return value


def _from_abi(fs: FieldSpec, value: Any) -> Any:
    base = fs.base_type

    def one(v: Any) -> Any:
        if base.startswith("bytes"):
            return "0x" + bytes(v).hex()
        if base == "address":
            return to_checksum_address(v)
        return v

    if fs.is_array:
        return [one(v) for v in value]
    return one(value)


def normalize(record: Mapping[str, Any], schema: Schema) -> Dict[str, Any]:
    """Validate ``record`` against ``schema`` and return its canonical form."""
    if not isinstance(record, Mapping):
        raise SchemaMismatch("Record must be a mapping of field name to value")
    names = schema.field_names
    missing = [n for n in names if n not in record]
    extra = sorted(k for k in record if k not in names)
    if missing or extra:
        raise SchemaMismatch(
            "Record does not match schema fields",
            schema_uid=schema.uid,
            missing=missing,
            unexpected=extra,
        )
    return {fs.name: _canonical(fs, record[fs.name]) for fs in schema.fields}


def encode(record: Mapping[str, Any], schema: Schema) -> bytes:
    canonical = normalize(record, schema)
    values = [_to_abi(fs, canonical[fs.name]) for fs in schema.fields]
    try:
        return abi_encode(schema.abi_types, values)
    except (EncodingError, TypeError, ValueError) as e:
        raise SchemaMismatch(f"ABI encoding failed: {e}", schema_uid=schema.uid) from e


def decode(data: bytes, schema: Schema) -> Dict[str, Any]:
    if isinstance(data, str) and _HEX_RE.match(data):
        data = bytes.fromhex(data[2:])
    try:
        values = abi_decode(schema.abi_types, bytes(data))
    except (DecodingError, OverflowError, TypeError, ValueError) as e:
        raise SchemaMismatch(f"Data does not decode under schema {schema.uid}: {e}", schema_uid=schema.uid) from e
    return {fs.name: _from_abi(fs, v) for fs, v in zip(schema.fields, values)}


__all__ = ["encode", "decode", "normalize"]
