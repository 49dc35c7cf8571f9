"""Helpers for the hex identifiers used on-chain (UIDs, addresses)."""

import re
from typing import Optional, Union

from eth_utils import is_address, to_checksum_address

from .errors import ValidationError

ZERO_UID = "0x" + "00" * 32
ZERO_ADDRESS = "0x" + "00" * 20

_UID_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def is_uid(value: object) -> bool:
    return isinstance(value, str) and bool(_UID_RE.match(value))


def normalize_uid(value: Union[str, bytes], field: str = "uid") -> str:
    """Return ``value`` as a lowercase 0x-prefixed 32 byte hex string."""
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 32:
            raise ValidationError(f"{field} must be 32 bytes, got {len(value)}")
        return "0x" + bytes(value).hex()
    if not is_uid(value):
        raise ValidationError(
            f"Invalid {field} format. Expected 0x followed by 64 hex characters.",
            field=field,
        )
    return value.lower()


def uid_to_bytes(value: Union[str, bytes]) -> bytes:
    return bytes.fromhex(normalize_uid(value)[2:])


def is_zero_uid(value: Optional[str]) -> bool:
    return value is None or value.lower() == ZERO_UID


def normalize_address(value: str, field: str = "address") -> str:
    if not isinstance(value, str) or not is_address(value):
        raise ValidationError(f"Invalid {field}: {value!r}", field=field)
    return to_checksum_address(value)


def optional_uid(raw: bytes) -> Optional[str]:
    """Map an on-chain bytes32 to a uid, or None for the zero value."""
    uid = "0x" + bytes(raw).hex()
    return None if uid == ZERO_UID else uid


def optional_address(raw: str) -> Optional[str]:
    address = to_checksum_address(raw)
    return None if address == ZERO_ADDRESS else address


__all__ = [
    "ZERO_UID",
    "ZERO_ADDRESS",
    "is_uid",
    "normalize_uid",
    "uid_to_bytes",
    "is_zero_uid",
    "normalize_address",
    "optional_uid",
    "optional_address",
]
