import asyncio

import pytest
from eth_account import Account

from gledger.errors import InsufficientFunds, SubmissionTimeout, TransactionReverted, Unavailable
from gledger.identifiers import ZERO_ADDRESS, ZERO_UID
from gledger.ledger.memory import node_error
from gledger.schema import codec, resolution_schema
from gledger.transaction import TransactionSubmitter
from gledger.transaction.classify import classify_rpc_error

from .conftest import OTHER_KEY, fast_submitter_config, no_sleep


def attest_call(eas, schema_uid, grievance_id="G1"):
    schema = resolution_schema()
    data = codec.encode(
        {
            "grievanceId": grievance_id,
            "villageId": "V1",
            "resolverRole": "officer",
            "ipfsHash": "",
            "resolutionTimestamp": 1_700_000_000,
        },
        schema,
    )
    return eas.build_multi_attest([(schema_uid, ZERO_ADDRESS, 0, True, ZERO_UID, data)])


async def test_concurrent_submissions_get_consecutive_nonces(submitter, eas, schema_uid, node):
    calls = [attest_call(eas, schema_uid, f"G{i}") for i in range(6)]
    receipts = await asyncio.gather(*(submitter.submit(c) for c in calls))

    assert sorted(r.nonce for r in receipts) == list(range(6))
    assert len({r.transaction_hash for r in receipts}) == 6
    assert all(r.status == 1 for r in receipts)
    assert node.transaction_count == 6
    assert submitter.metrics.snapshot() == {"submitted": 6, "confirmed": 6, "retries": 0, "failures": 0}


async def test_nonce_conflict_refetches_nonce(submitter, eas, schema_uid, node, account):
    await submitter.submit(attest_call(eas, schema_uid, "G1"))

    # another process spends the next nonce with the same key
    external = account.sign_transaction({
        "nonce": 1,
        "gasPrice": 1_000_000_000,
        "gas": 21_000,
        "to": ZERO_ADDRESS,
        "value": 0,
        "data": b"",
        "chainId": 11155420,
    })
    await node.send_raw_transaction(external.raw_transaction)

    receipt = await submitter.submit(attest_call(eas, schema_uid, "G2"))
    assert receipt.nonce == 2
    assert receipt.attempts == 2
    assert submitter.metrics.retries == 1


async def test_underpriced_bumps_gas_price(submitter, eas, schema_uid, node):
    node.inject_fault("send_raw_transaction", node_error("transaction underpriced"))

    receipt = await submitter.submit(attest_call(eas, schema_uid))
    tx = await node.get_transaction(receipt.transaction_hash)
    assert tx["gasPrice"] == int(1_000_000_000 * 1.125) + 1
    assert receipt.attempts == 2


async def test_timeout_after_broadcast_counts_as_sent(submitter, eas, schema_uid, node):
    node.inject_fault("send_raw_transaction", TimeoutError("read timed out"), after=True)

    receipt = await submitter.submit(attest_call(eas, schema_uid))
    assert receipt.status == 1
    assert node.transaction_count == 1
    assert node.calls["send_raw_transaction"] == 2
    assert receipt.transaction_hash == node.mined[0]


async def test_timeout_before_broadcast_is_retried(submitter, eas, schema_uid, node):
    node.inject_fault("send_raw_transaction", ConnectionError("connection reset"), times=2)

    receipt = await submitter.submit(attest_call(eas, schema_uid))
    assert receipt.attempts == 3
    assert node.transaction_count == 1


async def test_insufficient_funds_not_retried(node, eas, schema_uid):
    poor = Account.from_key(OTHER_KEY)
    submitter = TransactionSubmitter(node, poor, config=fast_submitter_config(), sleep=no_sleep)
    try:
        with pytest.raises(InsufficientFunds):
            await submitter.submit(attest_call(eas, schema_uid))
        assert node.calls["send_raw_transaction"] == 1
        assert submitter.metrics.failures == 1
    finally:
        await submitter.close()


async def test_retries_exhausted(node, eas, schema_uid, account):
    submitter = TransactionSubmitter(
        node, account, config=fast_submitter_config(max_attempts=3), sleep=no_sleep
    )
    node.inject_fault("send_raw_transaction", TimeoutError("read timed out"), times=10)
    try:
        with pytest.raises(Unavailable) as exc:
            await submitter.submit(attest_call(eas, schema_uid))
        assert exc.value.details["last_error"] == "RpcTimeout"
        assert node.calls["send_raw_transaction"] == 3
        assert node.transaction_count == 0
    finally:
        await submitter.close()


async def test_estimate_revert_never_broadcast(submitter, eas, node):
    unknown_schema = "0x" + "ee" * 32
    with pytest.raises(TransactionReverted) as exc:
        await submitter.submit(attest_call(eas, unknown_schema))
    assert exc.value.reason == "InvalidSchema"
    assert node.calls["send_raw_transaction"] == 0


async def test_caller_timeout_leaves_broadcast(node, eas, schema_uid, account):
    node.broadcast_delay = 0.2
    submitter = TransactionSubmitter(node, account, config=fast_submitter_config(), sleep=no_sleep)
    with pytest.raises(SubmissionTimeout) as exc:
        await submitter.submit(attest_call(eas, schema_uid), timeout=0.05)
    assert exc.value.outcome_unknown
    assert exc.value.to_dict()["retryable"] is True

    await submitter.close()
    assert node.transaction_count == 1
    assert exc.value.transaction_hash == node.mined[0]


async def test_closed_submitter_rejects(submitter, eas, schema_uid):
    await submitter.close()
    with pytest.raises(Unavailable):
        await submitter.submit(attest_call(eas, schema_uid))


async def test_estimate_gas_applies_buffer(submitter, eas, schema_uid, node):
    call = attest_call(eas, schema_uid)
    raw = await node.estimate_gas({"from": submitter.address, "to": call.to, "data": call.data})
    assert await submitter.estimate_gas(call) == int(raw * 1.2)


class TestClassify:
    def test_node_messages(self):
        cases = {
            "already known": "TransactionAlreadyKnown",
            "nonce too low: address 0x0, tx: 1 state: 2": "NonceConflict",
            "replacement transaction underpriced": "Underpriced",
            "insufficient funds for gas * price + value": "InsufficientFunds",
            "execution reverted: AccessDenied": "TransactionReverted",
            "request timed out": "RpcTimeout",
        }
        for message, kind in cases.items():
            assert classify_rpc_error(node_error(message)).kind == kind

    def test_unrelated_error_not_mapped(self):
        assert classify_rpc_error(KeyError("boom")) is None
        assert classify_rpc_error(ValueError("bad hex")) is None

    def test_unmatched_node_rejection_is_reverted(self):
        mapped = classify_rpc_error(node_error("intrinsic gas too low"), transaction_hash="0xabc")
        assert isinstance(mapped, TransactionReverted)
        assert mapped.to_dict()["error"] == "TransactionReverted"
        assert mapped.transaction_hash == "0xabc"
