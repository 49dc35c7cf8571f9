import asyncio

import pytest

from gledger.config import LedgerConfig
from gledger.errors import ConfigurationError, LedgerError, NotFound, SubmissionTimeout, ValidationError
from gledger.ledger import InMemoryLedger
from gledger.schema import RESOLUTION_SCHEMA
from gledger.service import create_service

from .conftest import DEV_KEY, START_TIME, no_sleep, resolution_record


class TestScenarios:
    async def test_create_then_verify(self, service):
        created = await service.attest_resolution({
            "grievanceId": "G1",
            "villageId": "V1",
            "resolverRole": "officer",
            "ipfsHash": "",
        })
        result = await service.verify({"uid": created["uid"]})

        assert result["valid"] is True
        record = result["attestation"]["record"]
        assert record["grievanceId"] == "G1"
        assert record["villageId"] == "V1"
        assert record["resolverRole"] == "officer"
        assert record["ipfsHash"] == ""
        assert record["resolutionTimestamp"] == START_TIME

    async def test_revoke_then_verify(self, service):
        created = await service.attest_resolution({"grievanceId": "G1", "villageId": "V1", "resolverRole": "officer"})
        revoked = await service.revoke({"uids": [created["uid"]], "reason": "filed in error"})
        assert revoked["revoked"][0]["uid"] == created["uid"]

        result = await service.verify({"uid": created["uid"]})
        assert result["valid"] is False
        assert result["reason"] == "Revoked"
        assert result["revokedAt"] == revoked["revoked"][0]["revokedAt"]

        with pytest.raises(LedgerError) as exc:
            await service.revoke({"uids": [created["uid"]]})
        assert exc.value.to_dict()["error"] == "AlreadyRevoked"

    async def test_chain(self, service):
        a = await service.write({"records": [resolution_record("G1")]})
        b = await service.write({"records": [dict(resolution_record("G1"), refUid=a["uids"][0])]})

        result = await service.chain({"uid": b["uids"][0]})
        assert [link["uid"] for link in result["chain"]] == [a["uids"][0], b["uids"][0]]
        assert result["summary"]["length"] == 2

    async def test_estimate_then_submit(self, service):
        estimate = await service.estimate({"count": 5})
        written = await service.write({"records": [resolution_record(f"G{i}") for i in range(5)]})

        assert estimate["count"] == 5
        assert len(written["uids"]) == 5
        assert written["gasUsed"] <= estimate["estimatedGas"]


class TestOperations:
    async def test_write_with_correlation_id(self, service, node):
        body = {"records": [resolution_record("G1")], "correlationId": "grv-G1"}
        first = await service.write(body)
        second = await service.write(body)

        assert second["uids"] == first["uids"]
        assert second["replayed"] is True
        assert node.transaction_count == 1

    async def test_configured_deadline_then_retry(self, config, node, account, clock):
        config.submit_timeout = 0.05
        svc = create_service(config, client=node, account=account, clock=clock, sleep=no_sleep)
        await svc.start()
        try:
            node.broadcast_delay = 0.3
            body = {"records": [resolution_record("G1")], "correlationId": "grv-G1"}
            with pytest.raises(SubmissionTimeout) as exc:
                await svc.write(body)
            assert exc.value.to_dict()["retryable"] is True

            await asyncio.sleep(0.6)
            retried = await svc.write(body)
            assert retried["replayed"] is True
            assert node.transaction_count == 1
        finally:
            await svc.stop()

    async def test_attest_resolution_replay(self, service, node):
        body = {
            "grievanceId": "G1",
            "villageId": "V1",
            "resolverRole": "volunteer",
            "resolutionTimestamp": START_TIME,
            "correlationId": "grv-G1",
        }
        first = await service.attest_resolution(body)
        second = await service.attest_resolution(body)
        assert second["uid"] == first["uid"]
        assert node.transaction_count == 1

    async def test_invalid_role(self, service):
        with pytest.raises(ValidationError) as exc:
            await service.attest_resolution({"grievanceId": "G1", "villageId": "V1", "resolverRole": "mayor"})
        assert exc.value.to_dict()["error"] == "ValidationError"
        assert exc.value.to_dict()["retryable"] is False

    async def test_bad_payloads(self, service):
        with pytest.raises(ValidationError):
            await service.write({"records": "nope"})
        with pytest.raises(ValidationError):
            await service.verify({})
        with pytest.raises(ValidationError):
            await service.revoke({"uids": "0x00"})
        with pytest.raises(ValidationError):
            await service.chain(["uid"])

    async def test_chain_not_found(self, service):
        with pytest.raises(NotFound) as exc:
            await service.chain({"uid": "0x" + "42" * 32})
        assert exc.value.to_dict()["error"] == "NotFound"

    async def test_revocation_status(self, service):
        created = await service.write({"records": [resolution_record("G1")]})
        uid = created["uids"][0]
        assert (await service.revocation_status({"uid": uid}))["status"] == "ACTIVE"
        await service.revoke({"uids": [uid]})
        status = await service.revocation_status({"uid": uid})
        assert status["revoked"] is True
        assert status["revokedAt"] is not None

    async def test_schema_details(self, service, schema_uid):
        details = await service.schema_details()
        assert details["schemaUid"] == schema_uid
        assert details["chainId"] == 11155420
        assert details["revocable"] is True
        assert [f["name"] for f in details["fields"]] == [
            "grievanceId",
            "villageId",
            "resolverRole",
            "ipfsHash",
            "resolutionTimestamp",
        ]

    async def test_status_and_health(self, service):
        await service.write({"records": [resolution_record("G1")]})
        with pytest.raises(ValidationError):
            await service.write({"records": []})

        status = service.get_service_status()
        assert status["running"] is True
        assert status["chain_id"] == 11155420
        assert status["total_requests"] == 2
        assert status["error_count"] == 1
        assert status["submitter"]["confirmed"] == 1

        health = await service.health_check()
        assert health["status"] == "healthy"
        assert health["components"] == {"rpc": "healthy", "submission_store": "healthy"}


class TestStartup:
    async def test_wrong_chain(self, config, account, clock):
        node = InMemoryLedger(chain_id=10, clock=clock)
        svc = create_service(config, client=node, account=account, clock=clock, sleep=no_sleep)
        with pytest.raises(ConfigurationError):
            await svc.start()
        await svc.stop()

    async def test_unregistered_schema(self, account, node, clock):
        config = LedgerConfig(attester_private_key=DEV_KEY, resolution_schema_uid="0x" + "ab" * 32)
        svc = create_service(config, client=node, account=account, clock=clock, sleep=no_sleep)
        with pytest.raises(ConfigurationError):
            await svc.start()
        await svc.stop()

    async def test_zero_balance_still_starts(self, config, account, clock, caplog):
        node = InMemoryLedger(clock=clock)
        node.register_schema(RESOLUTION_SCHEMA)
        svc = create_service(config, client=node, account=account, clock=clock, sleep=no_sleep)
        await svc.start()
        try:
            assert svc.get_service_status()["attester_balance_wei"] == 0
            assert "zero balance" in caplog.text
        finally:
            await svc.stop()

    def test_missing_key_rejected(self):
        with pytest.raises(ConfigurationError) as exc:
            create_service(LedgerConfig(), client=InMemoryLedger())
        assert "ATTESTER_PRIVATE_KEY" in exc.value.message

    async def test_key_loaded_from_config(self, config, node, clock, account):
        svc = create_service(config, client=node, clock=clock, sleep=no_sleep)
        assert svc.attester == account.address
        await svc.stop()
