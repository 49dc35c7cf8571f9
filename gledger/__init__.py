"""
gledger Python Package

On-chain attestation ledger core: creates, chains, batches, revokes and
verifies records through the Ethereum Attestation Service.
"""

__version__ = "0.1.0"

from .config import LedgerConfig, SubmitterConfig, NETWORKS, configure_logging
from .errors import LedgerError

from . import attestation
from . import ledger
from . import schema
from . import transaction

from .service import LedgerService, create_service

__all__ = [
    "LedgerConfig",
    "SubmitterConfig",
    "NETWORKS",
    "configure_logging",
    "LedgerError",
    "LedgerService",
    "create_service",
    "attestation",
    "ledger",
    "schema",
    "transaction",
]
