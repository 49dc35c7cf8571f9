import pytest

from gledger.errors import SchemaMismatch, ValidationError
from gledger.schema import (
    RESOLUTION_SCHEMA,
    SchemaRegistry,
    codec,
    compute_schema_uid,
    issue_resolution_schema,
    parse_schema,
    resolution_schema,
)


def make_record(**overrides):
    base = dict(
        grievanceId="G1",
        villageId="V1",
        resolverRole="officer",
        ipfsHash="",
        resolutionTimestamp=1_700_000_000,
    )
    base.update(overrides)
    return base


def test_resolution_round_trip():
    schema = resolution_schema()
    record = make_record(ipfsHash="bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi")
    assert codec.decode(codec.encode(record, schema), schema) == record


def test_decode_accepts_hex_string():
    schema = resolution_schema()
    encoded = codec.encode(make_record(), schema)
    assert codec.decode("0x" + encoded.hex(), schema) == make_record()


def test_missing_field_rejected():
    schema = resolution_schema()
    record = make_record()
    del record["villageId"]
    with pytest.raises(SchemaMismatch) as exc:
        codec.encode(record, schema)
    assert exc.value.details["missing"] == ["villageId"]


def test_unknown_field_rejected():
    schema = resolution_schema()
    with pytest.raises(SchemaMismatch) as exc:
        codec.encode(make_record(extra="x"), schema)
    assert exc.value.details["unexpected"] == ["extra"]


def test_non_mapping_rejected():
    with pytest.raises(SchemaMismatch):
        codec.encode(["G1", "V1"], resolution_schema())


def test_integer_conversions():
    schema = resolution_schema()
    assert codec.normalize(make_record(resolutionTimestamp="42"), schema)["resolutionTimestamp"] == 42
    with pytest.raises(SchemaMismatch):
        codec.encode(make_record(resolutionTimestamp=True), schema)
    with pytest.raises(SchemaMismatch):
        codec.encode(make_record(resolutionTimestamp=-1), schema)
    with pytest.raises(SchemaMismatch):
        codec.encode(make_record(resolutionTimestamp="soon"), schema)


def test_uint64_range():
    schema = parse_schema("uint64 ts")
    assert codec.normalize({"ts": 2 ** 64 - 1}, schema) == {"ts": 2 ** 64 - 1}
    with pytest.raises(SchemaMismatch):
        codec.normalize({"ts": 2 ** 64}, schema)


def test_signed_integer_range():
    schema = parse_schema("int8 delta")
    assert codec.decode(codec.encode({"delta": -128}, schema), schema) == {"delta": -128}
    with pytest.raises(SchemaMismatch):
        codec.normalize({"delta": 128}, schema)


def test_string_type_enforced():
    with pytest.raises(SchemaMismatch):
        codec.encode(make_record(grievanceId=7), resolution_schema())


def test_address_canonicalized():
    schema = issue_resolution_schema()
    lower = "0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed"
    record = dict(
        issueId="I-1",
        resolutionHash="",
        timestamp=1_700_000_000_000,
        resolver=lower,
        category="water",
        panchayatId="P7",
        ipfsCid="",
    )
    decoded = codec.decode(codec.encode(record, schema), schema)
    assert decoded["resolver"] == "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
    assert decoded["timestamp"] == 1_700_000_000_000
    with pytest.raises(SchemaMismatch):
        codec.encode(dict(record, resolver="0x1234"), schema)


def test_bytes_fields():
    schema = parse_schema("bytes32 digest,bytes blob,bool ok")
    record = {"digest": b"\x01\x02", "blob": "0xABCD", "ok": True}
    decoded = codec.decode(codec.encode(record, schema), schema)
    assert decoded == {"digest": "0x0102" + "00" * 30, "blob": "0xabcd", "ok": True}
    with pytest.raises(SchemaMismatch):
        codec.encode({"digest": "0x" + "11" * 33, "blob": "0x", "ok": True}, schema)
    with pytest.raises(SchemaMismatch):
        codec.encode({"digest": "0x", "blob": "abc", "ok": True}, schema)
    with pytest.raises(SchemaMismatch):
        codec.encode({"digest": "0x", "blob": "0x", "ok": 1}, schema)


def test_array_fields():
    schema = parse_schema("string[] tags,uint16[] counts")
    record = {"tags": ("a", "b"), "counts": [1, "2"]}
    assert codec.decode(codec.encode(record, schema), schema) == {"tags": ["a", "b"], "counts": [1, 2]}
    with pytest.raises(SchemaMismatch):
        codec.encode({"tags": "a", "counts": []}, schema)


def test_undecodable_data():
    with pytest.raises(SchemaMismatch):
        codec.decode(b"\x00\x01", resolution_schema())


def test_schema_uid_matches_registry_formula():
    schema = resolution_schema()
    assert schema.uid == compute_schema_uid(RESOLUTION_SCHEMA)
    assert schema.definition == RESOLUTION_SCHEMA
    assert parse_schema(RESOLUTION_SCHEMA, revocable=False).uid != schema.uid


def test_parse_schema_rejects_bad_definitions():
    for bad in ["", "string", "uint7 x", "bytes33 x", "string a,string a", "string 1abc", "float x"]:
        with pytest.raises(ValidationError):
            parse_schema(bad)


class TestSchemaRegistry:
    async def test_register_and_resolve_cached(self):
        registry = SchemaRegistry()
        schema = registry.register(resolution_schema())
        assert await registry.resolve(schema.uid.upper().replace("0X", "0x")) is schema
        assert registry.list() == [schema]

    async def test_conflicting_register(self):
        registry = SchemaRegistry()
        schema = resolution_schema()
        registry.register(schema)
        registry.register(schema)
        conflicting = parse_schema("string other", uid=schema.uid)
        with pytest.raises(ValueError):
            registry.register(conflicting)

    async def test_unknown_schema_without_source(self):
        with pytest.raises(SchemaMismatch):
            await SchemaRegistry().resolve("0x" + "ab" * 32)

    async def test_resolve_from_chain(self, schemas, schema_uid, node):
        schema = await schemas.resolve(schema_uid)
        assert schema.definition == RESOLUTION_SCHEMA
        assert schema.revocable is True
        await schemas.resolve(schema_uid)
        assert node.calls["call"] == 1

    async def test_unregistered_on_chain(self, schemas):
        with pytest.raises(SchemaMismatch):
            await schemas.resolve("0x" + "cd" * 32)
