"""
Chain access: the node client interface, EAS bindings, a web3-backed client and
an in-process simulated node.
"""

from .base import EncodedCall, LedgerClient, LogEntry, Receipt
from .eas import EASContract, compute_attestation_uid
from .memory import InMemoryLedger
from .web3_client import Web3LedgerClient

__all__ = [
    'EncodedCall',
    'LedgerClient',
    'LogEntry',
    'Receipt',
    'EASContract',
    'compute_attestation_uid',
    'InMemoryLedger',
    'Web3LedgerClient',
]
