import pytest

from gledger.attestation import ChainResolver
from gledger.errors import ChainBroken, NotFound, ValidationError

from .conftest import START_TIME, resolution_record


def fake_uid(n: int) -> str:
    return "0x" + f"{n:064x}"


async def test_child_chain(writer, chains):
    a = await writer.create_one(resolution_record("G1"))
    b = await writer.create_one(dict(resolution_record("G1-followup"), refUid=a.uid))

    chain = await chains.get_chain(b.uid)
    assert [link.uid for link in chain] == [a.uid, b.uid]
    assert chain[1].ref_uid == a.uid

    summary = ChainResolver.summarize(chain)
    assert summary.root_uid == a.uid
    assert summary.leaf_uid == b.uid
    assert summary.length == 2
    assert summary.revoked_uids == []
    assert summary.started_at <= summary.latest_at


async def test_single_link(writer, chains):
    a = await writer.create_one(resolution_record("G1"))
    assert [link.uid for link in await chains.get_chain(a.uid)] == [a.uid]


async def test_revoked_links_reported(writer, revocations, chains):
    a = await writer.create_one(resolution_record("G1"))
    b = await writer.create_one(dict(resolution_record("G2"), refUid=a.uid))
    await revocations.revoke(a.uid)

    chain = await chains.get_chain(b.uid)
    assert ChainResolver.summarize(chain).revoked_uids == [a.uid]


async def test_missing_leaf(chains):
    with pytest.raises(NotFound):
        await chains.get_chain(fake_uid(1))


async def test_malformed_uid(chains):
    with pytest.raises(ValidationError):
        await chains.get_chain("0x1234")


async def test_depth_limit(writer, eas, schemas):
    ref = None
    for i in range(4):
        record = resolution_record(f"G{i}")
        if ref:
            record["refUid"] = ref
        ref = (await writer.create_one(record)).uid

    assert len(await ChainResolver(eas, schemas, max_depth=4).get_chain(ref)) == 4
    with pytest.raises(ChainBroken):
        await ChainResolver(eas, schemas, max_depth=3).get_chain(ref)


class TestBrokenChains:
    async def test_missing_intermediate(self, node, chains, schema_uid):
        node.put_attestation(uid=fake_uid(2), schema=schema_uid, time=START_TIME, refUID=fake_uid(99))
        with pytest.raises(ChainBroken):
            await chains.get_chain(fake_uid(2))

    async def test_cycle(self, node, chains, schema_uid):
        node.put_attestation(uid=fake_uid(3), schema=schema_uid, time=START_TIME, refUID=fake_uid(4))
        node.put_attestation(uid=fake_uid(4), schema=schema_uid, time=START_TIME, refUID=fake_uid(3))
        with pytest.raises(ChainBroken):
            await chains.get_chain(fake_uid(3))

    async def test_parent_newer_than_child(self, node, chains, schema_uid):
        node.put_attestation(uid=fake_uid(5), schema=schema_uid, time=START_TIME + 10)
        node.put_attestation(uid=fake_uid(6), schema=schema_uid, time=START_TIME, refUID=fake_uid(5))
        with pytest.raises(ChainBroken):
            await chains.get_chain(fake_uid(6))


def test_summarize_empty():
    with pytest.raises(ValidationError):
        ChainResolver.summarize([])
