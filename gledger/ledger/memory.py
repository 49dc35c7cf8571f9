"""
In-process EVM node hosting EAS and its schema registry.

``InMemoryLedger`` accepts real signed legacy (EIP-155) transactions, recovers
the sender with ``eth_account`` and enforces the node rules the submitter has to
cope with: nonce ordering, minimum gas price, balance, and duplicate
broadcasts, reported with geth's error messages. Every accepted transaction is
mined immediately into its own block. EAS ``multiAttest`` / ``multiRevoke``
semantics (revert rules, UIDs, events) are reproduced so read-back through
:class:`gledger.ledger.eas.EASContract` behaves as on a real chain.

Faults can be injected per RPC method for retry tests.
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import rlp
from rlp.exceptions import DecodingError as RLPDecodingError
from eth_account import Account
from eth_utils import big_endian_to_int, keccak, to_checksum_address
from web3.exceptions import ContractLogicError

from ..config import DEFAULT_EAS_ADDRESS, DEFAULT_SCHEMA_REGISTRY_ADDRESS
from ..identifiers import ZERO_ADDRESS, ZERO_UID, is_zero_uid, uid_to_bytes
from .base import LedgerClient, LogEntry, Receipt
from .eas import (
    ATTESTED_TOPIC,
    GET_ATTESTATION_SELECTOR,
    GET_SCHEMA_SELECTOR,
    MULTI_ATTEST_SELECTOR,
    MULTI_REVOKE_SELECTOR,
    REVOKED_TOPIC,
    compute_attestation_uid,
    decode_multi_attest,
    decode_multi_revoke,
    encode_attestation_struct,
    encode_schema_record,
)
from ..schema.types import compute_schema_uid

logger = logging.getLogger(__name__)

TX_BASE_GAS = 21_000
ATTEST_ITEM_GAS = 95_000
REVOKE_ITEM_GAS = 30_000

_EMPTY_ATTESTATION = {
    "uid": ZERO_UID,
    "schema": ZERO_UID,
    "time": 0,
    "expirationTime": 0,
    "revocationTime": 0,
    "refUID": ZERO_UID,
    "recipient": ZERO_ADDRESS,
    "attester": ZERO_ADDRESS,
    "revocable": False,
    "data": b"",
}


def node_error(message: str) -> ValueError:
    """JSON-RPC error the way web3 surfaces it for a rejected submission."""
    return ValueError({"code": -32000, "message": message})


class _Revert(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass
class _Fault:
    error: BaseException
    remaining: int
    after: bool


def _calldata_gas(data: bytes) -> int:
    return sum(16 if b else 4 for b in data)


def _address_topic(address: str) -> bytes:
    return b"\x00" * 12 + bytes.fromhex(address[2:])


class InMemoryLedger(LedgerClient):
    def __init__(
        self,
        chain_id: int = 11155420,
        eas_address: str = DEFAULT_EAS_ADDRESS,
        registry_address: str = DEFAULT_SCHEMA_REGISTRY_ADDRESS,
        gas_price: int = 1_000_000_000,
        clock: Callable[[], float] = time.time,
        broadcast_delay: float = 0.0,
    ):
        self._chain_id = chain_id
        self.eas_address = to_checksum_address(eas_address)
        self.registry_address = to_checksum_address(registry_address)
        self._gas_price = gas_price
        self._clock = clock
        self.broadcast_delay = broadcast_delay

        self._balances: Dict[str, int] = {}
        self._nonces: Dict[str, int] = {}
        self._block_number = 0
        self._timestamp = 0
        self._schemas: Dict[str, Tuple[str, bool, str]] = {}
        self._attestations: Dict[str, Dict[str, Any]] = {}
        self._transactions: Dict[str, Dict[str, Any]] = {}
        self._receipts: Dict[str, Receipt] = {}
        self._faults: Dict[str, List[_Fault]] = {}
        self._lock = asyncio.Lock()

        self.calls: Counter = Counter()
        self.mined: List[str] = []

    # Development helpers -------------------------------------------------

    def fund(self, address: str, wei: int) -> None:
        address = to_checksum_address(address)
        self._balances[address] = self._balances.get(address, 0) + wei

    def set_gas_price(self, wei: int) -> None:
        self._gas_price = wei

    def register_schema(self, definition: str, resolver: str = ZERO_ADDRESS, revocable: bool = True) -> str:
        resolver = to_checksum_address(resolver)
        uid = compute_schema_uid(definition, resolver, revocable)
        self._schemas[uid] = (resolver, revocable, definition)
        return uid

    def inject_fault(self, method: str, error: BaseException, times: int = 1, after: bool = False) -> None:
        """Make the next ``times`` calls of ``method`` raise ``error``.

        With ``after=True`` the call takes effect first and the error is raised
        on the way out (a response lost after the node accepted the request).
        """
        self._faults.setdefault(method, []).append(_Fault(error=error, remaining=times, after=after))

    def put_attestation(self, **fields: Any) -> str:
        """Store a raw attestation record, bypassing EAS rules."""
        record = dict(_EMPTY_ATTESTATION)
        record.update(fields)
        self._attestations[record["uid"].lower()] = record
        return record["uid"]

    def attestation(self, uid: str) -> Optional[Dict[str, Any]]:
        return self._attestations.get(uid.lower())

    @property
    def transaction_count(self) -> int:
        return len(self.mined)

    def _fail(self, method: str, after: bool) -> None:
        for fault in self._faults.get(method, []):
            if fault.after == after and fault.remaining > 0:
                fault.remaining -= 1
                raise fault.error

    def _enter(self, method: str) -> None:
        self.calls[method] += 1
        self._fail(method, after=False)

    # LedgerClient --------------------------------------------------------

    async def chain_id(self) -> int:
        self._enter("chain_id")
        return self._chain_id

    async def block_number(self) -> int:
        self._enter("block_number")
        return self._block_number

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        self._enter("get_transaction_count")
        return self._nonces.get(to_checksum_address(address), 0)

    async def gas_price(self) -> int:
        self._enter("gas_price")
        return self._gas_price

    async def get_balance(self, address: str) -> int:
        self._enter("get_balance")
        return self._balances.get(to_checksum_address(address), 0)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        self._enter("estimate_gas")
        sender = to_checksum_address(tx.get("from", ZERO_ADDRESS))
        try:
            gas_used, _, _ = self._execute(sender, tx.get("to"), bytes(tx.get("data", b"")), self._next_timestamp())
        except _Revert as e:
            raise ContractLogicError(f"execution reverted: {e.reason}")
        return gas_used

    async def call(self, tx: Dict[str, Any]) -> bytes:
        self._enter("call")
        to = to_checksum_address(tx["to"])
        data = bytes(tx.get("data", b""))
        selector, args = data[:4], data[4:]
        if to == self.eas_address and selector == GET_ATTESTATION_SELECTOR:
            uid = "0x" + args[:32].hex()
            return encode_attestation_struct(self._attestations.get(uid, _EMPTY_ATTESTATION))
        if to == self.registry_address and selector == GET_SCHEMA_SELECTOR:
            uid = "0x" + args[:32].hex()
            if uid not in self._schemas:
                return encode_schema_record(ZERO_UID, ZERO_ADDRESS, False, "")
            resolver, revocable, definition = self._schemas[uid]
            return encode_schema_record(uid, resolver, revocable, definition)
        raise ContractLogicError("execution reverted")

    async def send_raw_transaction(self, raw: bytes) -> str:
        self._enter("send_raw_transaction")
        if self.broadcast_delay:
            await asyncio.sleep(self.broadcast_delay)
        raw = bytes(raw)
        async with self._lock:
            tx_hash = "0x" + keccak(raw).hex()
            if tx_hash in self._transactions:
                raise node_error("already known")
            self._mine(tx_hash, raw)
        self._fail("send_raw_transaction", after=True)
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float, poll_latency: float) -> Receipt:
        self._enter("wait_for_receipt")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while tx_hash not in self._receipts:
            if loop.time() >= deadline:
                raise TimeoutError(f"Transaction {tx_hash} not mined within {timeout}s")
            await asyncio.sleep(poll_latency)
        return self._receipts[tx_hash]

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        self._enter("get_transaction")
        tx = self._transactions.get(tx_hash)
        return dict(tx) if tx is not None else None

    # Execution -----------------------------------------------------------

    def _next_timestamp(self) -> int:
        return max(int(self._clock()), self._timestamp + 1)

    def _mine(self, tx_hash: str, raw: bytes) -> None:
        if not raw or raw[0] < 0xC0:
            raise node_error("transaction type not supported")
        try:
            nonce, gas_price, gas, to, value, data, v, _r, _s = rlp.decode(raw)
        except (RLPDecodingError, ValueError):
            raise node_error("rlp: invalid transaction encoding")
        nonce, gas_price, gas = big_endian_to_int(nonce), big_endian_to_int(gas_price), big_endian_to_int(gas)
        value, v = big_endian_to_int(value), big_endian_to_int(v)
        if v < 35 or (v - 35) // 2 != self._chain_id:
            raise node_error("invalid chain id for signer")
        try:
            sender = to_checksum_address(Account.recover_transaction(raw))
        except (ValueError, TypeError):
            raise node_error("invalid sender")
        to_address = to_checksum_address("0x" + to.hex()) if to else None

        expected = self._nonces.get(sender, 0)
        if nonce < expected:
            raise node_error(f"nonce too low: address {sender}, tx: {nonce} state: {expected}")
        if nonce > expected:
            raise node_error(f"nonce too high: address {sender}, tx: {nonce} state: {expected}")
        if gas_price < self._gas_price:
            raise node_error("transaction underpriced")
        cost = gas * gas_price + value
        balance = self._balances.get(sender, 0)
        if balance < cost:
            raise node_error(
                f"insufficient funds for gas * price + value: address {sender} have {balance} want {cost}"
            )
        intrinsic = TX_BASE_GAS + _calldata_gas(data)
        if gas < intrinsic:
            raise node_error(f"intrinsic gas too low: have {gas}, want {intrinsic}")

        timestamp = self._next_timestamp()
        status, logs = 1, []
        try:
            gas_used, logs, commit = self._execute(sender, to_address, data, timestamp)
            if gas_used > gas:
                raise _Revert("out of gas")
            commit()
        except _Revert as e:
            logger.debug(f"Transaction {tx_hash} reverted: {e.reason}")
            status, gas_used, logs = 0, min(gas, intrinsic), []

        self._block_number += 1
        self._timestamp = timestamp
        self._nonces[sender] = expected + 1
        self._balances[sender] = balance - gas_used * gas_price - (value if status else 0)
        self._transactions[tx_hash] = {
            "hash": tx_hash,
            "from": sender,
            "to": to_address,
            "nonce": nonce,
            "gas": gas,
            "gasPrice": gas_price,
            "blockNumber": self._block_number,
        }
        self._receipts[tx_hash] = Receipt(
            transaction_hash=tx_hash,
            block_number=self._block_number,
            status=status,
            gas_used=gas_used,
            effective_gas_price=gas_price,
            logs=logs,
        )
        self.mined.append(tx_hash)

    def _execute(self, sender: str, to: Optional[str], data: bytes, timestamp: int):
        """Run a call against EAS. Returns (gas_used, logs, commit)."""
        if to is None or to_checksum_address(to) != self.eas_address:
            raise _Revert("unsupported call target")
        selector, args = data[:4], data[4:]
        base = TX_BASE_GAS + _calldata_gas(data)
        try:
            if selector == MULTI_ATTEST_SELECTOR:
                items = decode_multi_attest(args)
                logs, staged = self._attest(sender, items, timestamp)
                return base + ATTEST_ITEM_GAS * len(items), logs, lambda: self._attestations.update(staged)
            if selector == MULTI_REVOKE_SELECTOR:
                targets = decode_multi_revoke(args)
                logs, revoked = self._revoke(sender, targets, timestamp)

                def commit():
                    for uid in revoked:
                        self._attestations[uid]["revocationTime"] = timestamp

                return base + REVOKE_ITEM_GAS * len(targets), logs, commit
        except _Revert:
            raise
        except Exception as e:
            raise _Revert(f"invalid calldata: {e}")
        raise _Revert("unknown selector")

    def _attest(self, attester: str, items, timestamp: int):
        staged: Dict[str, Dict[str, Any]] = {}
        logs: List[LogEntry] = []
        for schema_uid, recipient, expiration, revocable, ref_uid, payload in items:
            schema = self._schemas.get(schema_uid)
            if schema is None:
                raise _Revert("InvalidSchema")
            if expiration != 0 and expiration <= timestamp:
                raise _Revert("InvalidExpirationTime")
            if revocable and not schema[1]:
                raise _Revert("Irrevocable")
            if not is_zero_uid(ref_uid) and ref_uid not in self._attestations and ref_uid not in staged:
                raise _Revert("NotFound")
            bump = 0
            while True:
                uid = compute_attestation_uid(
                    schema_uid, recipient, attester, timestamp, expiration, revocable, ref_uid, payload, bump
                )
                if uid not in self._attestations and uid not in staged:
                    break
                bump += 1
            staged[uid] = {
                "uid": uid,
                "schema": schema_uid,
                "time": timestamp,
                "expirationTime": expiration,
                "revocationTime": 0,
                "refUID": ref_uid,
                "recipient": recipient,
                "attester": attester,
                "revocable": revocable,
                "data": payload,
            }
            logs.append(LogEntry(
                address=self.eas_address,
                topics=[ATTESTED_TOPIC, _address_topic(recipient), _address_topic(attester), uid_to_bytes(schema_uid)],
                data=uid_to_bytes(uid),
            ))
        return logs, staged

    def _revoke(self, revoker: str, targets, timestamp: int):
        revoked: List[str] = []
        logs: List[LogEntry] = []
        for schema_uid, uid in targets:
            att = self._attestations.get(uid)
            if att is None:
                raise _Revert("NotFound")
            if att["schema"] != schema_uid:
                raise _Revert("InvalidSchema")
            if att["attester"] != revoker:
                raise _Revert("AccessDenied")
            if not att["revocable"]:
                raise _Revert("Irrevocable")
            if att["revocationTime"] != 0 or uid in revoked:
                raise _Revert("AlreadyRevoked")
            revoked.append(uid)
            logs.append(LogEntry(
                address=self.eas_address,
                topics=[REVOKED_TOPIC, _address_topic(att["recipient"]), _address_topic(revoker), uid_to_bytes(schema_uid)],
                data=uid_to_bytes(uid),
            ))
        return logs, revoked


__all__ = ["InMemoryLedger", "node_error", "TX_BASE_GAS", "ATTEST_ITEM_GAS", "REVOKE_ITEM_GAS"]
