"""
Example: Grievance Resolution Ledger

This example runs the ledger service against the in-process simulated node:
- Registering the resolution schema
- Attesting a grievance resolution and verifying it
- Linking a follow-up attestation and resolving the chain
- Revoking and checking revocation status
- Estimating batch cost and writing a batch
"""

import asyncio
import os
import sys

# Add parent directory to path so we can import gledger
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from gledger import LedgerConfig, LedgerError, create_service
from gledger.ledger import InMemoryLedger
from gledger.schema import RESOLUTION_SCHEMA

# Well-known development key; never fund it on a real network.
DEV_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


async def main():
    print("📒 Grievance Resolution Ledger Demo")
    print("=" * 50)

    print("\n1. Starting simulated node and registering schema...")
    node = InMemoryLedger()
    schema_uid = node.register_schema(RESOLUTION_SCHEMA)
    print(f"   Schema UID: {schema_uid}")

    config = LedgerConfig(attester_private_key=DEV_KEY, resolution_schema_uid=schema_uid)
    service = create_service(config, client=node)
    node.fund(service.attester, 10 ** 18)
    await service.start()
    print(f"   Attester: {service.attester}")

    try:
        print("\n2. Attesting a resolution...")
        created = await service.attest_resolution({
            "grievanceId": "GRV-1042",
            "villageId": "VLG-7",
            "resolverRole": "officer",
            "ipfsHash": "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi",
        })
        print(f"   ✓ UID: {created['uid']}")
        print(f"   ✓ Transaction: {created['transactionHash']}")

        result = await service.verify({"uid": created["uid"]})
        print(f"   Valid: {result['valid']}  Record: {result['attestation']['record']}")

        print("\n3. Linking a follow-up attestation...")
        follow_up = await service.write({"records": [{
            "data": {
                "grievanceId": "GRV-1042",
                "villageId": "VLG-7",
                "resolverRole": "volunteer",
                "ipfsHash": "",
                "resolutionTimestamp": result["attestation"]["record"]["resolutionTimestamp"] + 1,
            },
            "refUid": created["uid"],
        }]})
        chain = await service.chain({"uid": follow_up["uids"][0]})
        print(f"   Chain length: {chain['summary']['length']}")
        for link in chain["chain"]:
            print(f"   - {link['uid'][:18]}... by {link['record']['resolverRole']}")

        print("\n4. Revoking the original attestation...")
        await service.revoke({"uids": [created["uid"]], "reason": "duplicate filing"})
        status = await service.revocation_status({"uid": created["uid"]})
        print(f"   Status: {status['status']}")
        try:
            await service.revoke({"uids": [created["uid"]]})
            print("   ❌ Second revoke should have failed!")
        except LedgerError as e:
            print(f"   ✅ Second revoke rejected: {e.to_dict()['error']}")

        print("\n5. Estimating and writing a batch of 5...")
        estimate = await service.estimate({"count": 5})
        print(f"   Estimated gas: {estimate['estimatedGas']}  cost: {estimate['estimatedCostNative']} ETH")
        records = [
            {"data": {
                "grievanceId": f"GRV-{2000 + i}",
                "villageId": "VLG-7",
                "resolverRole": "officer",
                "ipfsHash": "",
                "resolutionTimestamp": 1_700_000_000 + i,
            }}
            for i in range(5)
        ]
        written = await service.write({"records": records, "correlationId": "batch-2000"})
        print(f"   ✓ {len(written['uids'])} attestations, gas used {written['gasUsed']}")

        print("\n6. Service status:")
        for name, value in service.get_service_status().items():
            print(f"   {name}: {value}")
    finally:
        await service.stop()

    print("\n🎉 Ledger demo completed successfully!")


if __name__ == "__main__":
    asyncio.run(main())
