from unittest.mock import AsyncMock, Mock

import pytest
from eth_account import Account
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from gledger.errors import Unavailable
from gledger.identifiers import ZERO_ADDRESS, ZERO_UID
from gledger.ledger import Web3LedgerClient
from gledger.ledger.eas import (
    ATTESTED_TOPIC,
    decode_multi_attest,
    decode_multi_revoke,
    encode_multi_attest,
    encode_multi_revoke,
)
from gledger.schema import codec, resolution_schema

from .conftest import OTHER_KEY, START_TIME, resolution_record

SCHEMA_A = "0x" + "0a" * 32
SCHEMA_B = "0x" + "0b" * 32


class TestCalldata:
    def test_multi_attest_groups_consecutive_schemas(self):
        items = [
            (SCHEMA_A, ZERO_ADDRESS, 0, True, ZERO_UID, b"a"),
            (SCHEMA_A, ZERO_ADDRESS, 0, True, ZERO_UID, b"b"),
            (SCHEMA_B, ZERO_ADDRESS, 99, False, "0x" + "01" * 32, b"c"),
            (SCHEMA_A, ZERO_ADDRESS, 0, True, ZERO_UID, b"d"),
        ]
        data = encode_multi_attest(items)
        assert decode_multi_attest(data[4:]) == items

    def test_multi_revoke(self):
        targets = [(SCHEMA_A, "0x" + "01" * 32), (SCHEMA_B, "0x" + "02" * 32)]
        data = encode_multi_revoke(targets)
        assert decode_multi_revoke(data[4:]) == targets


class TestEASReads:
    async def test_attestation_read_back(self, writer, eas, account, schema_uid):
        att = await writer.create_one(resolution_record("G1"))
        fetched = await eas.get_attestation(att.uid)

        assert fetched.uid == att.uid
        assert fetched.schema_uid == schema_uid
        assert fetched.attester == account.address
        assert fetched.recipient is None
        assert fetched.revoked_at is None
        assert codec.decode(fetched.data, resolution_schema())["grievanceId"] == "G1"

    async def test_missing_attestation(self, eas):
        assert await eas.get_attestation("0x" + "42" * 32) is None

    async def test_schema_read(self, eas, schema_uid):
        schema = await eas.get_schema(schema_uid)
        assert schema.uid == schema_uid
        assert schema.field_names[0] == "grievanceId"
        assert await eas.get_schema("0x" + "42" * 32) is None

    async def test_read_retries_then_unavailable(self, eas, node, schema_uid):
        node.inject_fault("call", TimeoutError("read timed out"), times=1)
        assert await eas.get_schema(schema_uid) is not None

        node.inject_fault("call", ConnectionError("refused"), times=10)
        with pytest.raises(Unavailable):
            await eas.get_schema(schema_uid)

    async def test_event_uids(self, submitter, eas, schema_uid):
        data = codec.encode(resolution_record("G1")["data"], resolution_schema())
        call = eas.build_multi_attest([(schema_uid, ZERO_ADDRESS, 0, True, ZERO_UID, data)] * 2)
        receipt = await submitter.submit(call)

        uids = eas.attested_uids(receipt)
        assert len(uids) == 2
        assert uids[0] != uids[1]
        assert all(bytes(log.topics[0]) == ATTESTED_TOPIC for log in receipt.logs)
        assert eas.revoked_uids(receipt) == []


class TestInMemoryLedger:
    async def test_eas_reverts_on_foreign_revoke(self, writer, node, eas, schema_uid):
        att = await writer.create_one(resolution_record("G1"))
        other = Account.from_key(OTHER_KEY)
        node.fund(other.address, 10 ** 18)
        call = eas.build_multi_revoke([(schema_uid, att.uid)])

        with pytest.raises(ContractLogicError):
            await node.estimate_gas({"from": other.address, "to": call.to, "data": call.data})

    async def test_block_timestamps_increase(self, writer, clock):
        first = await writer.create_one(resolution_record("G1"))
        second = await writer.create_one(resolution_record("G2"))
        assert first.created_at == START_TIME
        assert second.created_at == START_TIME + 1

    async def test_wrong_chain_signature_rejected(self, node, account):
        signed = account.sign_transaction({
            "nonce": 0,
            "gasPrice": 1_000_000_000,
            "gas": 21_000,
            "to": ZERO_ADDRESS,
            "value": 0,
            "data": b"",
            "chainId": 1,
        })
        with pytest.raises(ValueError) as exc:
            await node.send_raw_transaction(signed.raw_transaction)
        assert exc.value.args[0]["message"] == "invalid chain id for signer"


class TestWeb3LedgerClient:
    def _client(self):
        w3 = Mock()
        w3.eth = Mock()
        return Web3LedgerClient("http://localhost:8545", w3=w3), w3

    async def test_receipt_conversion(self):
        client, w3 = self._client()
        w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={
            "transactionHash": b"\x12" * 32,
            "blockNumber": 7,
            "status": 1,
            "gasUsed": 21000,
            "logs": [{"address": ZERO_ADDRESS, "topics": [ATTESTED_TOPIC], "data": b"\x01" * 32}],
        })
        receipt = await client.wait_for_receipt("0x" + "12" * 32, timeout=1, poll_latency=0.1)
        assert receipt.transaction_hash == "0x" + "12" * 32
        assert receipt.succeeded
        assert receipt.logs[0].topics == [ATTESTED_TOPIC]

    async def test_receipt_timeout(self):
        client, w3 = self._client()
        w3.eth.wait_for_transaction_receipt = AsyncMock(side_effect=TimeExhausted("slow"))
        with pytest.raises(TimeoutError):
            await client.wait_for_receipt("0x" + "12" * 32, timeout=1, poll_latency=0.1)

    async def test_unknown_transaction(self):
        client, w3 = self._client()
        w3.eth.get_transaction = AsyncMock(side_effect=TransactionNotFound("nope"))
        assert await client.get_transaction("0x" + "12" * 32) is None

    async def test_call_hex_encodes_data(self):
        client, w3 = self._client()
        w3.eth.call = AsyncMock(return_value=b"\x00")
        assert await client.call({"to": ZERO_ADDRESS, "data": b"\xab"}) == b"\x00"
        w3.eth.call.assert_awaited_once_with({"to": ZERO_ADDRESS, "data": "0xab"})
