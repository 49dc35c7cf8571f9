"""
Mapping of raw node / web3 failures onto the gledger error taxonomy.

Nodes report most submission failures as JSON-RPC errors whose only stable part
is the message text (geth, op-geth and erigon agree on these strings).
"""

import asyncio
import logging
from typing import Any, Optional

import aiohttp
from web3.exceptions import ContractLogicError, TimeExhausted, Web3RPCError

from ..errors import (
    InsufficientFunds,
    LedgerError,
    NonceConflict,
    RpcTimeout,
    TransactionAlreadyKnown,
    TransactionReverted,
    Underpriced,
)

logger = logging.getLogger(__name__)

_NONCE_MARKERS = (
    "nonce too low",
    "nonce too high",
    "invalid nonce",
    "nonce has already been used",
)
_UNDERPRICED_MARKERS = (
    "replacement transaction underpriced",
    "transaction underpriced",
    "fee too low",
    "max fee per gas less than block base fee",
)
_FUNDS_MARKERS = ("insufficient funds",)
_KNOWN_MARKERS = ("already known", "known transaction")
_TIMEOUT_MARKERS = ("timeout", "timed out")


def rpc_error_message(exc: BaseException) -> str:
    """Extract the node's error message from a web3 / JSON-RPC exception."""
    payload: Any = exc.args[0] if exc.args else ""
    if isinstance(payload, dict):
        return str(payload.get("message", payload))
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(exc)


def _is_rpc_error_payload(exc: BaseException) -> bool:
    """JSON-RPC error object as raised for a node-side rejection: ``{"code": ..., "message": ...}``."""
    payload = exc.args[0] if exc.args else None
    return isinstance(payload, dict) and "code" in payload and "message" in payload


def _revert_reason(exc: ContractLogicError) -> str:
    message = rpc_error_message(exc)
    prefix = "execution reverted"
    if message.startswith(prefix):
        message = message[len(prefix):].lstrip(": ")
    return message or prefix


def classify_rpc_error(exc: BaseException, transaction_hash: Optional[str] = None) -> Optional[LedgerError]:
    """Return the LedgerError equivalent of ``exc``, or None if it is not an RPC failure."""
    if isinstance(exc, LedgerError):
        return exc
    if isinstance(exc, ContractLogicError):
        return TransactionReverted(_revert_reason(exc), transaction_hash=transaction_hash)
    if isinstance(exc, (TimeExhausted, asyncio.TimeoutError, TimeoutError)):
        return RpcTimeout(f"RPC timed out: {exc}", transaction_hash=transaction_hash)
    if isinstance(exc, (aiohttp.ClientError, ConnectionError)):
        return RpcTimeout(f"RPC connection failed: {exc}")

    message = rpc_error_message(exc)
    lowered = message.lower()
    if any(m in lowered for m in _KNOWN_MARKERS):
        return TransactionAlreadyKnown(message)
    if any(m in lowered for m in _FUNDS_MARKERS):
        return InsufficientFunds(message)
    if any(m in lowered for m in _UNDERPRICED_MARKERS):
        return Underpriced(message)
    if any(m in lowered for m in _NONCE_MARKERS):
        return NonceConflict(message)
    if "execution reverted" in lowered or "revert" in lowered:
        return TransactionReverted(message, transaction_hash=transaction_hash)
    if any(m in lowered for m in _TIMEOUT_MARKERS):
        return RpcTimeout(message)
    if isinstance(exc, Web3RPCError) or _is_rpc_error_payload(exc):
        # any other node rejection of the transaction
        return TransactionReverted(message, transaction_hash=transaction_hash)
    return None


__all__ = ["classify_rpc_error", "rpc_error_message"]
