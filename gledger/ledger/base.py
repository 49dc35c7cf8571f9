"""
Node RPC surface used by the ledger core.

``LedgerClient`` is the only way gledger talks to a chain. Implementations raise
the raw node/web3 exceptions; mapping them onto the gledger error taxonomy is
done by :func:`gledger.transaction.classify.classify_rpc_error`.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class LogEntry:
    address: str
    topics: List[bytes]
    data: bytes


@dataclass
class Receipt:
    transaction_hash: str
    block_number: int
    status: int
    gas_used: int
    effective_gas_price: int = 0
    logs: List[LogEntry] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass
class EncodedCall:
    """Contract call ready to be signed: target, calldata and bookkeeping."""
    to: str
    data: bytes
    operation: str
    item_count: int = 1
    value: int = 0


class LedgerClient(ABC):
    """Async JSON-RPC node client."""

    @abstractmethod
    async def chain_id(self) -> int:
        ...

    @abstractmethod
    async def block_number(self) -> int:
        ...

    @abstractmethod
    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        ...

    @abstractmethod
    async def gas_price(self) -> int:
        ...

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        ...

    @abstractmethod
    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        ...

    @abstractmethod
    async def call(self, tx: Dict[str, Any]) -> bytes:
        ...

    @abstractmethod
    async def send_raw_transaction(self, raw: bytes) -> str:
        """Broadcast signed bytes and return the 0x transaction hash."""

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str, timeout: float, poll_latency: float) -> Receipt:
        """Block until the transaction is mined; raise ``TimeoutError`` past ``timeout``."""

    @abstractmethod
    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Return the transaction if the node knows it (pending or mined)."""

    async def close(self) -> None:
        return None


__all__ = ["LogEntry", "Receipt", "EncodedCall", "LedgerClient"]
