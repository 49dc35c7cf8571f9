"""
Configuration for the attestation ledger core.

Values come from keyword arguments or from the environment via
``LedgerConfig.from_env()``. Validation is explicit: ``validate()`` returns
the list of problems so entry points can report all of them at once.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# EAS predeploys on OP-stack chains
DEFAULT_EAS_ADDRESS = "0x4200000000000000000000000000000000000021"
DEFAULT_SCHEMA_REGISTRY_ADDRESS = "0x4200000000000000000000000000000000000020"


@dataclass(frozen=True)
class NetworkConfig:
    """Static description of a supported chain."""
    name: str
    chain_id: int
    rpc_url: str
    explorer_url: str
    eas_explorer: str


NETWORKS: Dict[str, NetworkConfig] = {
    "optimism-mainnet": NetworkConfig(
        name="Optimism Mainnet",
        chain_id=10,
        rpc_url="https://mainnet.optimism.io",
        explorer_url="https://optimistic.etherscan.io",
        eas_explorer="https://optimism.easscan.org",
    ),
    "optimism-sepolia": NetworkConfig(
        name="Optimism Sepolia",
        chain_id=11155420,
        rpc_url="https://sepolia.optimism.io",
        explorer_url="https://sepolia-optimism.etherscan.io",
        eas_explorer="https://optimism-sepolia.easscan.org",
    ),
}


@dataclass
class SubmitterConfig:
    """Retry, gas and confirmation settings for the transaction submitter."""
    max_attempts: int = 5
    initial_backoff: float = 0.5
    max_backoff: float = 8.0
    backoff_multiplier: float = 2.0
    gas_buffer: float = 1.2
    underpriced_bump: float = 1.125
    confirmation_timeout: float = 120.0
    poll_interval: float = 1.0


@dataclass
class LedgerConfig:
    """Top-level configuration for the ledger service."""
    network: str = "optimism-sepolia"
    rpc_url: Optional[str] = None
    chain_id: Optional[int] = None

    # Signing identity (one of the two)
    attester_private_key: Optional[str] = field(default=None, repr=False)
    keystore_path: Optional[str] = None
    keystore_password: Optional[str] = field(default=None, repr=False)

    eas_address: str = DEFAULT_EAS_ADDRESS
    schema_registry_address: str = DEFAULT_SCHEMA_REGISTRY_ADDRESS
    resolution_schema_uid: Optional[str] = None

    # Correlation-id log; None keeps it in memory
    submission_store_url: Optional[str] = None
    submission_ttl_seconds: Optional[int] = 7 * 24 * 3600

    max_batch_size: int = 50
    max_chain_depth: int = 16
    verify_cache_ttl: float = 5.0
    verify_cache_size: int = 10_000

    # Caller deadline for writes and revocations; None waits for confirmation
    submit_timeout: Optional[float] = None

    submitter: SubmitterConfig = field(default_factory=SubmitterConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LedgerConfig":
        env = os.environ if environ is None else environ

        def _str(key: str) -> Optional[str]:
            raw = (env.get(key) or "").strip()
            return raw or None

        def _int(key: str, default: Optional[int]) -> Optional[int]:
            raw = _str(key)
            if raw is None:
                return default
            try:
                return int(raw)
            except ValueError:
                logger.warning(f"Ignoring non-integer {key}={raw!r}")
                return default

        def _float(key: str, default: Optional[float]) -> Optional[float]:
            raw = _str(key)
            if raw is None:
                return default
            try:
                return float(raw)
            except ValueError:
                logger.warning(f"Ignoring non-numeric {key}={raw!r}")
                return default

        submitter = SubmitterConfig()
        submitter.max_attempts = _int("TX_MAX_ATTEMPTS", submitter.max_attempts)
        submitter.confirmation_timeout = _float("TX_CONFIRMATION_TIMEOUT", submitter.confirmation_timeout)

        return cls(
            network=_str("NETWORK") or "optimism-sepolia",
            rpc_url=_str("RPC_URL"),
            chain_id=_int("CHAIN_ID", None),
            attester_private_key=_str("ATTESTER_PRIVATE_KEY"),
            keystore_path=_str("ATTESTER_KEYSTORE_PATH"),
            keystore_password=_str("ATTESTER_KEYSTORE_PASSWORD"),
            eas_address=_str("EAS_CONTRACT_ADDRESS") or DEFAULT_EAS_ADDRESS,
            schema_registry_address=_str("SCHEMA_REGISTRY_ADDRESS") or DEFAULT_SCHEMA_REGISTRY_ADDRESS,
            resolution_schema_uid=_str("RESOLUTION_SCHEMA_UID"),
            submission_store_url=_str("SUBMISSION_STORE_URL"),
            submission_ttl_seconds=_int("SUBMISSION_TTL_SECONDS", 7 * 24 * 3600),
            max_batch_size=_int("MAX_BATCH_SIZE", 50),
            max_chain_depth=_int("MAX_CHAIN_DEPTH", 16),
            verify_cache_ttl=_float("VERIFY_CACHE_TTL", 5.0),
            submit_timeout=_float("TX_SUBMIT_TIMEOUT", None),
            submitter=submitter,
            log_level=_str("LOG_LEVEL") or "INFO",
        )

    def network_config(self) -> NetworkConfig:
        try:
            return NETWORKS[self.network]
        except KeyError:
            raise ConfigurationError(f"Invalid NETWORK: {self.network}")

    @property
    def effective_rpc_url(self) -> str:
        return self.rpc_url or self.network_config().rpc_url

    @property
    def expected_chain_id(self) -> int:
        return self.chain_id if self.chain_id is not None else self.network_config().chain_id

    def explorer_tx_url(self, transaction_hash: str) -> str:
        return f"{self.network_config().explorer_url}/tx/{transaction_hash}"

    def validate(self) -> List[str]:
        """Return a list of configuration problems (empty when valid)."""
        errors: List[str] = []
        if not self.attester_private_key and not self.keystore_path:
            errors.append("ATTESTER_PRIVATE_KEY or ATTESTER_KEYSTORE_PATH is required")
        if self.keystore_path and not self.keystore_password:
            errors.append("ATTESTER_KEYSTORE_PASSWORD is required with ATTESTER_KEYSTORE_PATH")
        if self.network not in NETWORKS:
            errors.append(f"Invalid NETWORK: {self.network}")
        if self.max_batch_size < 1:
            errors.append("MAX_BATCH_SIZE must be at least 1")
        if self.max_chain_depth < 1:
            errors.append("MAX_CHAIN_DEPTH must be at least 1")
        if self.submitter.max_attempts < 1:
            errors.append("TX_MAX_ATTEMPTS must be at least 1")
        if self.submit_timeout is not None and self.submit_timeout <= 0:
            errors.append("TX_SUBMIT_TIMEOUT must be positive")
        return errors


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


__all__ = [
    "DEFAULT_EAS_ADDRESS",
    "DEFAULT_SCHEMA_REGISTRY_ADDRESS",
    "NetworkConfig",
    "NETWORKS",
    "SubmitterConfig",
    "LedgerConfig",
    "configure_logging",
]
