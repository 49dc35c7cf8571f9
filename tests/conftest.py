import pytest
from eth_account import Account

from gledger.attestation.chain import ChainResolver
from gledger.attestation.revocation import RevocationManager
from gledger.attestation.verification import VerificationCache, VerificationReader
from gledger.attestation.writer import AttestationWriter
from gledger.config import LedgerConfig, SubmitterConfig
from gledger.ledger import EASContract, InMemoryLedger
from gledger.schema import RESOLUTION_SCHEMA, SchemaRegistry
from gledger.service import create_service
from gledger.submissionstore import MemorySubmissionStore
from gledger.transaction import TransactionSubmitter

# well-known development key, never funded on a real network
DEV_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
OTHER_KEY = "0x6c8f5a1a2bd5e4b8c8b9a1e2b3f4c5d6e7f8091a2b3c4d5e6f708192a3b4c5d6"

START_TIME = 1_700_000_000


class FakeClock:
    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(_delay: float) -> None:
    return None


def fast_submitter_config(**overrides) -> SubmitterConfig:
    values = dict(
        max_attempts=5,
        initial_backoff=0.0,
        max_backoff=0.0,
        confirmation_timeout=2.0,
        poll_interval=0.01,
    )
    values.update(overrides)
    return SubmitterConfig(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def account():
    return Account.from_key(DEV_KEY)


@pytest.fixture
def node(clock, account):
    ledger = InMemoryLedger(clock=clock)
    ledger.fund(account.address, 10 ** 18)
    return ledger


@pytest.fixture
def schema_uid(node):
    return node.register_schema(RESOLUTION_SCHEMA)


@pytest.fixture
def eas(node):
    return EASContract(node, node.eas_address, node.registry_address)


@pytest.fixture
def schemas(eas):
    return SchemaRegistry(source=eas)


@pytest.fixture
async def submitter(node, account):
    sub = TransactionSubmitter(node, account, config=fast_submitter_config(), sleep=no_sleep)
    yield sub
    await sub.close()


@pytest.fixture
def cache():
    return VerificationCache(ttl=5.0)


@pytest.fixture
def writer(submitter, eas, schemas, schema_uid, clock):
    return AttestationWriter(
        submitter, eas, schemas, MemorySubmissionStore(), default_schema_uid=schema_uid, clock=clock
    )


@pytest.fixture
def revocations(submitter, eas, schemas, account, verifier):
    return RevocationManager(submitter, eas, schemas, attester=account.address, verifier=verifier)


@pytest.fixture
def chains(eas, schemas):
    return ChainResolver(eas, schemas, max_depth=16)


@pytest.fixture
def verifier(eas, schemas, cache, clock):
    return VerificationReader(eas, schemas, cache=cache, clock=clock)


def resolution_record(grievance_id: str = "G1", **overrides):
    data = {
        "grievanceId": grievance_id,
        "villageId": "V1",
        "resolverRole": "officer",
        "ipfsHash": "",
        "resolutionTimestamp": START_TIME,
    }
    data.update(overrides)
    return {"data": data}


@pytest.fixture
def config(schema_uid):
    return LedgerConfig(
        network="optimism-sepolia",
        attester_private_key=DEV_KEY,
        resolution_schema_uid=schema_uid,
        submitter=fast_submitter_config(),
    )


@pytest.fixture
async def service(config, node, account, clock):
    svc = create_service(config, client=node, account=account, clock=clock, sleep=no_sleep)
    await svc.start()
    yield svc
    await svc.stop()
