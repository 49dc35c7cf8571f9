"""
Error taxonomy for the attestation ledger core.

Every failure surfaced by gledger is a LedgerError subclass. The ``kind`` is the
stable identifier returned to callers, ``retryable`` tells the caller whether
the same request may succeed later without changes.

    ValidationError        malformed input, never retried
      SchemaMismatch       record does not fit its registered schema
    ConfigurationError     service misconfigured (missing key, wrong chain)
    InsufficientFunds      attester cannot pay for gas
    TransientNetworkError  retried locally with backoff
      RpcTimeout
      NonceConflict
      Underpriced
      SubmissionTimeout    caller deadline elapsed, outcome unknown
    Unavailable            transient failures exhausted the retry budget
    TransactionReverted    executed but rejected on-chain
    NotFound / AlreadyRevoked / NotRevocable / ChainBroken
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for ledger core errors."""

    kind = "LedgerError"
    retryable = False

    def __init__(self, message: str = "", **details: Any):
        self.message = message or self.kind
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "error": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            out["details"] = dict(self.details)
        return out


class ValidationError(LedgerError):
    kind = "ValidationError"


class SchemaMismatch(ValidationError):
    """Record does not conform to the schema it is written under."""

    kind = "SchemaMismatch"


class ConfigurationError(LedgerError):
    kind = "ConfigurationError"


class InsufficientFunds(LedgerError):
    """The signing identity cannot pay for the transaction.

    Fatal until the account is funded; callers should report the service as
    unavailable.
    """

    kind = "InsufficientFunds"


class TransientNetworkError(LedgerError):
    kind = "TransientNetworkError"
    retryable = True


class RpcTimeout(TransientNetworkError):
    kind = "RpcTimeout"


class NonceConflict(TransientNetworkError):
    kind = "NonceConflict"


class Underpriced(TransientNetworkError):
    kind = "Underpriced"


class SubmissionTimeout(TransientNetworkError):
    """Caller deadline elapsed. The broadcast may still land on-chain."""

    kind = "SubmissionTimeout"
    outcome_unknown = True

    def __init__(self, message: str = "", transaction_hash: Optional[str] = None, **details: Any):
        if transaction_hash:
            details["transaction_hash"] = transaction_hash
        super().__init__(message, **details)
        self.transaction_hash = transaction_hash


class Unavailable(LedgerError):
    """Transient failures persisted beyond the retry budget."""

    kind = "Unavailable"
    retryable = True


class TransactionReverted(LedgerError):
    """Transaction was executed and rejected. Retrying would revert again."""

    kind = "TransactionReverted"

    def __init__(self, reason: str = "", transaction_hash: Optional[str] = None, **details: Any):
        self.reason = reason or "execution reverted"
        self.transaction_hash = transaction_hash
        if transaction_hash:
            details["transaction_hash"] = transaction_hash
        details["reason"] = self.reason
        super().__init__(f"transaction reverted: {self.reason}", **details)


class TransactionAlreadyKnown(LedgerError):
    """Node already holds the exact signed transaction. Treated as a successful broadcast."""

    kind = "TransactionAlreadyKnown"


class NotFound(LedgerError):
    kind = "NotFound"


class AlreadyRevoked(LedgerError):
    kind = "AlreadyRevoked"


class NotRevocable(LedgerError):
    kind = "NotRevocable"


class ChainBroken(LedgerError):
    """A reference chain cannot be reconstructed. Signals data inconsistency."""

    kind = "ChainBroken"


__all__ = [
    "LedgerError",
    "ValidationError",
    "SchemaMismatch",
    "ConfigurationError",
    "InsufficientFunds",
    "TransientNetworkError",
    "RpcTimeout",
    "NonceConflict",
    "Underpriced",
    "SubmissionTimeout",
    "Unavailable",
    "TransactionReverted",
    "TransactionAlreadyKnown",
    "NotFound",
    "AlreadyRevoked",
    "NotRevocable",
    "ChainBroken",
]
