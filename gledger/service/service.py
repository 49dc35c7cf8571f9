"""
Ledger service facade.

Wires the attestation components around one RPC client and one signing identity
and exposes dict-in / dict-out operations that an HTTP layer can wrap directly.
Failures are raised as ``LedgerError`` subclasses; ``error.to_dict()`` gives the
``{error, message, retryable}`` body.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from eth_account.signers.local import LocalAccount
from web3 import Web3

from ..attestation.chain import ChainResolver
from ..attestation.resolution import resolution_request
from ..attestation.revocation import RevocationManager
from ..attestation.verification import VerificationCache, VerificationReader
from ..attestation.writer import AttestationWriter
from ..config import LedgerConfig
from ..errors import ConfigurationError, LedgerError, SchemaMismatch, ValidationError
from ..identity import load_account
from ..ledger.base import LedgerClient
from ..ledger.eas import EASContract
from ..ledger.web3_client import Web3LedgerClient
from ..schema.registry import SchemaRegistry
from ..submissionstore import SubmissionStore, create_submission_store
from ..transaction.submitter import TransactionSubmitter

logger = logging.getLogger(__name__)


@dataclass
class ServiceStatus:
    """Service status information."""
    running: bool = False
    start_time: Optional[datetime] = None
    chain_id: Optional[int] = None
    attester_balance_wei: Optional[int] = None
    total_requests: int = 0
    error_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "chain_id": self.chain_id,
            "attester_balance_wei": self.attester_balance_wei,
            "total_requests": self.total_requests,
            "error_count": self.error_count,
        }


def _require_mapping(payload: Any) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be an object")
    return payload


def _require_uid(payload: Mapping[str, Any]) -> str:
    uid = payload.get("uid")
    if not uid:
        raise ValidationError("UID is required")
    return uid


class LedgerService:
    """
    Attestation ledger service.

    Owns the submitter worker, the submission log and the RPC client; call
    ``start()`` before use and ``stop()`` on shutdown.
    """

    def __init__(
        self,
        config: LedgerConfig,
        client: LedgerClient,
        account: LocalAccount,
        eas: EASContract,
        schemas: SchemaRegistry,
        submitter: TransactionSubmitter,
        writer: AttestationWriter,
        revocations: RevocationManager,
        chains: ChainResolver,
        verifier: VerificationReader,
        store: SubmissionStore,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.client = client
        self.account = account
        self.eas = eas
        self.schemas = schemas
        self.submitter = submitter
        self.writer = writer
        self.revocations = revocations
        self.chains = chains
        self.verifier = verifier
        self.store = store
        self._clock = clock
        self.status = ServiceStatus()

        logger.info(f"Ledger service initialized for attester {account.address} on {config.network}")

    @property
    def attester(self) -> str:
        return self.account.address

    async def start(self) -> None:
        """Check the node, log the attester balance and preload the default schema.

        Raises:
            ConfigurationError: node on the wrong chain or default schema not registered
        """
        chain_id = await self.client.chain_id()
        expected = self.config.expected_chain_id
        if chain_id != expected:
            raise ConfigurationError(f"RPC endpoint is on chain {chain_id}, expected {expected}")
        self.status.chain_id = chain_id

        balance = await self.submitter.balance()
        self.status.attester_balance_wei = balance
        if balance == 0:
            logger.warning(f"Attester {self.attester} has zero balance; writes will fail until funded")
        else:
            logger.info(f"Attester {self.attester} balance: {Web3.from_wei(balance, 'ether')} ETH")

        if self.config.resolution_schema_uid:
            try:
                schema = await self.schemas.resolve(self.config.resolution_schema_uid)
            except SchemaMismatch as e:
                raise ConfigurationError(f"RESOLUTION_SCHEMA_UID is not usable: {e.message}") from e
            logger.info(f"Using schema {schema.uid}: {schema.definition}")

        self.status.running = True
        self.status.start_time = datetime.now()
        logger.info("Ledger service started successfully")

    async def stop(self) -> None:
        """Drain the submit queue and release connections."""
        self.status.running = False
        await self.submitter.close()
        await self.store.close()
        await self.client.close()
        logger.info("Ledger service stopped")

    async def _run(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        self.status.total_requests += 1
        try:
            return await call()
        except LedgerError as e:
            self.status.error_count += 1
            if isinstance(e, ValidationError):
                logger.warning(f"{operation} rejected: {e}")
            else:
                logger.error(f"{operation} failed ({e.kind}): {e}")
            raise

    async def write(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Attest one or more records in a single transaction.

        Args:
            payload: ``{records: [...], correlationId?}``

        Returns:
            ``{uids, transactionHash}``
        """
        body = _require_mapping(payload)
        records = body.get("records")
        if not isinstance(records, list):
            raise ValidationError("records must be a list")
        correlation_id = body.get("correlationId")

        async def call():
            result = await self.writer.create_batch(records, correlation_id)
            return result.to_dict()

        return await self._run("write", call)

    async def attest_resolution(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Attest that a grievance was resolved, under the configured resolution schema.

        Args:
            payload: ``{grievanceId, villageId, resolverRole, ipfsHash?, refUid?,
                resolutionTimestamp?, correlationId?}``; pass ``resolutionTimestamp``
                when retrying under a correlation id so the replayed request matches

        Returns:
            ``{uid, transactionHash, attestation}``
        """
        body = _require_mapping(payload)

        async def call():
            request = resolution_request(
                body.get("grievanceId"),
                body.get("villageId"),
                body.get("resolverRole"),
                ipfs_hash=body.get("ipfsHash") or "",
                ref_uid=body.get("refUid"),
                resolution_timestamp=body.get("resolutionTimestamp"),
                clock=self._clock,
            )
            result = await self.writer.create_batch([request], body.get("correlationId"))
            attestation = result.attestations[0]
            logger.info(f"Resolution for grievance {body.get('grievanceId')} attested as {attestation.uid}")
            return {
                "uid": attestation.uid,
                "transactionHash": result.transaction_hash,
                "attestation": attestation.to_dict(),
            }

        return await self._run("attest_resolution", call)

    async def revoke(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        body = _require_mapping(payload)
        uids = body.get("uids")
        if not isinstance(uids, list):
            raise ValidationError("uids must be a list")

        async def call():
            results = await self.revocations.revoke_many(uids, body.get("reason"))
            return {"revoked": [r.to_dict() for r in results]}

        return await self._run("revoke", call)

    async def verify(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        uid = _require_uid(_require_mapping(payload))

        async def call():
            return (await self.verifier.verify(uid)).to_dict()

        return await self._run("verify", call)

    async def chain(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        uid = _require_uid(_require_mapping(payload))

        async def call():
            links = await self.chains.get_chain(uid)
            return {
                "chain": [a.to_dict() for a in links],
                "summary": self.chains.summarize(links).to_dict(),
            }

        return await self._run("chain", call)

    async def estimate(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        count = _require_mapping(payload).get("count", 1)

        async def call():
            return (await self.writer.estimate(count)).to_dict()

        return await self._run("estimate", call)

    async def revocation_status(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        uid = _require_uid(_require_mapping(payload))

        async def call():
            return (await self.revocations.status(uid)).to_dict()

        return await self._run("revocation_status", call)

    async def schema_details(self) -> Dict[str, Any]:
        """Definition of the configured default schema plus network info."""
        network = self.config.network_config()
        out: Dict[str, Any] = {
            "network": self.config.network,
            "chainId": self.config.expected_chain_id,
            "easExplorer": network.eas_explorer,
            "easAddress": self.eas.address,
        }
        if self.config.resolution_schema_uid:
            schema = await self._run("schema_details", lambda: self.schemas.resolve(self.config.resolution_schema_uid))
            out.update({
                "schemaUid": schema.uid,
                "schema": schema.definition,
                "fields": [{"name": f.name, "type": f.type} for f in schema.fields],
                "revocable": schema.revocable,
                "resolver": schema.resolver,
            })
        return out

    def get_service_status(self) -> Dict[str, Any]:
        """Get current service status and statistics."""
        out = self.status.to_dict()
        out["attester"] = self.attester
        out["network"] = self.config.network
        out["submitter"] = self.submitter.metrics.snapshot()
        out["pending_submissions"] = self.submitter.pending
        out["verify_cache_entries"] = len(self.verifier.cache)
        return out

    async def health_check(self) -> Dict[str, Any]:
        """Perform a health check on the service."""
        components: Dict[str, str] = {}
        try:
            await self.client.block_number()
            components["rpc"] = "healthy"
        except Exception as e:
            logger.warning(f"RPC health check failed: {e}")
            components["rpc"] = "unhealthy"
        try:
            await self.store.count()
            components["submission_store"] = "healthy"
        except Exception as e:
            logger.warning(f"Submission store health check failed: {e}")
            components["submission_store"] = "unhealthy"

        healthy = self.status.running and all(v == "healthy" for v in components.values())
        health = {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": datetime.now().isoformat(),
            "uptime_seconds": 0,
            "components": components,
        }
        if self.status.start_time:
            uptime = datetime.now() - self.status.start_time
            health["uptime_seconds"] = int(uptime.total_seconds())
        return health


def create_service(
    config: LedgerConfig,
    client: Optional[LedgerClient] = None,
    account: Optional[LocalAccount] = None,
    submission_store: Optional[SubmissionStore] = None,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> LedgerService:
    """
    Factory function to create a ledger service instance.

    Args:
        config: Service configuration
        client: Node client; a ``Web3LedgerClient`` for the configured RPC URL by default
        account: Signing identity; loaded from the configuration by default
        submission_store: Correlation-id log; chosen from ``submission_store_url`` by default

    Raises:
        ConfigurationError: invalid configuration or unusable signing key
    """
    problems: List[str] = [
        p for p in config.validate() if account is None or "ATTESTER_" not in p
    ]
    if problems:
        raise ConfigurationError("; ".join(problems), problems=problems)
    if account is None:
        account = load_account(config)
    if client is None:
        client = Web3LedgerClient(config.effective_rpc_url)

    eas = EASContract(client, config.eas_address, config.schema_registry_address)
    schemas = SchemaRegistry(source=eas)
    store = submission_store or create_submission_store(config.submission_store_url, config.submission_ttl_seconds)
    submitter = TransactionSubmitter(
        client, account, chain_id=config.expected_chain_id, config=config.submitter, sleep=sleep
    )
    cache = VerificationCache(ttl=config.verify_cache_ttl, max_size=config.verify_cache_size)
    writer = AttestationWriter(
        submitter,
        eas,
        schemas,
        store,
        default_schema_uid=config.resolution_schema_uid,
        max_batch_size=config.max_batch_size,
        submit_timeout=config.submit_timeout,
        clock=clock,
    )
    verifier = VerificationReader(eas, schemas, cache=cache, clock=clock)
    revocations = RevocationManager(
        submitter, eas, schemas, attester=account.address, verifier=verifier, submit_timeout=config.submit_timeout
    )
    chains = ChainResolver(eas, schemas, max_depth=config.max_chain_depth)
    return LedgerService(
        config=config,
        client=client,
        account=account,
        eas=eas,
        schemas=schemas,
        submitter=submitter,
        writer=writer,
        revocations=revocations,
        chains=chains,
        verifier=verifier,
        store=store,
        clock=clock,
    )


__all__ = ["LedgerService", "ServiceStatus", "create_service"]
