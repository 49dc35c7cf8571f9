"""LedgerClient backed by a JSON-RPC node through ``web3.AsyncWeb3``."""

import logging
from typing import Any, Dict, Optional

from web3 import AsyncWeb3, Web3
from web3.exceptions import TimeExhausted, TransactionNotFound

from .base import LedgerClient, LogEntry, Receipt

logger = logging.getLogger(__name__)


def _to_receipt(raw: Any) -> Receipt:
    logs = [
        LogEntry(
            address=log["address"],
            topics=[bytes(t) for t in log["topics"]],
            data=bytes(log["data"]),
        )
        for log in raw.get("logs", [])
    ]
    return Receipt(
        transaction_hash=Web3.to_hex(raw["transactionHash"]),
        block_number=raw["blockNumber"],
        status=raw["status"],
        gas_used=raw["gasUsed"],
        effective_gas_price=raw.get("effectiveGasPrice", 0),
        logs=logs,
    )


class Web3LedgerClient(LedgerClient):
    def __init__(self, rpc_url: str, request_timeout: float = 30.0, w3: Optional[AsyncWeb3] = None):
        self.rpc_url = rpc_url
        self.w3 = w3 or AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )

    @staticmethod
    def _tx(tx: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(tx)
        if isinstance(out.get("data"), (bytes, bytearray)):
            out["data"] = Web3.to_hex(out["data"])
        return out

    async def chain_id(self) -> int:
        return await self.w3.eth.chain_id

    async def block_number(self) -> int:
        return await self.w3.eth.block_number

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return await self.w3.eth.get_transaction_count(address, block)

    async def gas_price(self) -> int:
        return await self.w3.eth.gas_price

    async def get_balance(self, address: str) -> int:
        return await self.w3.eth.get_balance(address)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return await self.w3.eth.estimate_gas(self._tx(tx))

    async def call(self, tx: Dict[str, Any]) -> bytes:
        return bytes(await self.w3.eth.call(self._tx(tx)))

    async def send_raw_transaction(self, raw: bytes) -> str:
        tx_hash = await self.w3.eth.send_raw_transaction(raw)
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: float, poll_latency: float) -> Receipt:
        try:
            raw = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=timeout, poll_latency=poll_latency
            )
        except TimeExhausted as e:
            raise TimeoutError(f"Transaction {tx_hash} not mined within {timeout}s") from e
        return _to_receipt(raw)

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            return dict(await self.w3.eth.get_transaction(tx_hash))
        except TransactionNotFound:
            return None

    async def close(self) -> None:
        provider = self.w3.provider
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
        logger.debug(f"Closed RPC client for {self.rpc_url}")


__all__ = ["Web3LedgerClient"]
