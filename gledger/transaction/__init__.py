"""
Transaction submission: RPC error classification and the single-writer
submitter that owns the attester nonce.
"""

from .classify import classify_rpc_error, rpc_error_message
from .submitter import SubmissionReceipt, SubmitterMetrics, TransactionSubmitter

__all__ = [
    'classify_rpc_error',
    'rpc_error_message',
    'SubmissionReceipt',
    'SubmitterMetrics',
    'TransactionSubmitter',
]
