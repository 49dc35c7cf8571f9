"""
Transaction submitter: the only component that signs with the attester key.

Jobs go through one FIFO queue owned by a single worker task. The worker holds
the nonce counter and runs "allocate nonce -> sign -> broadcast" for one job at
a time; the caller is released after the broadcast and waits for its receipt
concurrently with later jobs.

Failure handling per attempt:

    InsufficientFunds, TransactionReverted  raised immediately
    NonceConflict      nonce re-fetched from the node, backoff, retry
    Underpriced        gas price bumped, nonce re-fetched, backoff, retry
    RpcTimeout         identical signed bytes re-broadcast, backoff, retry
                       ("already known" from the node counts as success)

Transient failures beyond ``max_attempts`` surface as ``Unavailable``.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from eth_account.signers.local import LocalAccount
from web3 import Web3

from ..config import SubmitterConfig
from ..errors import (
    InsufficientFunds,
    LedgerError,
    NonceConflict,
    RpcTimeout,
    SubmissionTimeout,
    TransactionAlreadyKnown,
    TransactionReverted,
    TransientNetworkError,
    Underpriced,
    Unavailable,
)
from ..ledger.base import EncodedCall, LedgerClient, LogEntry
from ..monitoring.metrics_exporter import get_registry
from ..resilience import ExponentialBackoff, RetryPolicy, retry_call
from .classify import classify_rpc_error

logger = logging.getLogger(__name__)


@dataclass
class SubmissionReceipt:
    transaction_hash: str
    block_number: int
    nonce: int
    gas_used: int
    status: int
    logs: List[LogEntry] = field(default_factory=list)
    attempts: int = 1


@dataclass
class SubmitterMetrics:
    submitted: int = 0
    confirmed: int = 0
    retries: int = 0
    failures: int = 0

    def snapshot(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class _Job:
    call: EncodedCall
    future: "asyncio.Future[Tuple[str, int, int]]"
    gas: int = 0
    raw: Optional[bytes] = None
    signed_for: Optional[Tuple[int, int]] = None
    sent_hashes: List[str] = field(default_factory=list)


class TransactionSubmitter:
    def __init__(
        self,
        client: LedgerClient,
        account: LocalAccount,
        chain_id: Optional[int] = None,
        config: Optional[SubmitterConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.account = account
        self.config = config or SubmitterConfig()
        self.metrics = SubmitterMetrics()
        self._chain_id = chain_id
        self._sleep = sleep
        self._backoff = ExponentialBackoff(
            initial_delay=self.config.initial_backoff,
            max_delay=self.config.max_backoff,
            multiplier=self.config.backoff_multiplier,
        )
        self._queue: "asyncio.Queue[Optional[_Job]]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._nonce: Optional[int] = None
        self._closed = False

    @property
    def address(self) -> str:
        return self.account.address

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _rpc(self, func: Callable[..., Awaitable[Any]], *args: Any, transaction_hash: Optional[str] = None) -> Any:
        try:
            return await func(*args)
        except LedgerError:
            raise
        except Exception as e:
            mapped = classify_rpc_error(e, transaction_hash)
            if mapped is None:
                raise
            raise mapped from e

    async def chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self._rpc(self.client.chain_id)
        return self._chain_id

    async def _read(self, what: str, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        policy = RetryPolicy(
            max_attempts=self.config.max_attempts,
            backoff=self._backoff,
            exceptions=(RpcTimeout,),
        )
        try:
            return await retry_call(policy, self._rpc, func, *args, sleep=self._sleep)
        except TransientNetworkError as e:
            raise Unavailable(f"{what} failed: {e.message}") from e

    async def current_gas_price(self) -> int:
        return await self._read("Gas price lookup", self.client.gas_price)

    async def balance(self) -> int:
        return await self._read("Balance lookup", self.client.get_balance, self.address)

    async def estimate_gas(self, call: EncodedCall) -> int:
        """Node gas estimate for ``call`` with the configured safety buffer applied."""
        tx = {"from": self.address, "to": call.to, "data": call.data, "value": call.value}
        gas = await self._read("Gas estimation", self.client.estimate_gas, tx)
        return int(gas * self.config.gas_buffer)

    async def submit(
        self,
        call: EncodedCall,
        timeout: Optional[float] = None,
        on_broadcast: Optional[Callable[[str], Awaitable[Any]]] = None,
    ) -> SubmissionReceipt:
        """Sign, broadcast and confirm ``call``.

        ``on_broadcast`` is awaited with the transaction hash once the node has
        accepted the transaction, before waiting for its receipt.

        When ``timeout`` elapses first a ``SubmissionTimeout`` is raised; a job
        already queued or broadcast is left in place.
        """
        if self._closed:
            raise Unavailable("Transaction submitter is closed")
        job = _Job(call=call, future=asyncio.get_running_loop().create_future())
        try:
            return await asyncio.wait_for(self._submit(job, on_broadcast), timeout)
        except asyncio.TimeoutError:
            tx_hash = job.sent_hashes[-1] if job.sent_hashes else None
            job.future.add_done_callback(self._log_orphan)
            logger.warning(f"{call.operation} submission exceeded caller deadline of {timeout}s (tx {tx_hash})")
            raise SubmissionTimeout(
                f"Submission not confirmed within {timeout}s; the transaction may still be mined",
                transaction_hash=tx_hash,
            )

    async def _submit(
        self, job: _Job, on_broadcast: Optional[Callable[[str], Awaitable[Any]]] = None
    ) -> SubmissionReceipt:
        job.gas = await self.estimate_gas(job.call)
        self._ensure_worker()
        await self._queue.put(job)
        get_registry().set_queue_depth(self._queue.qsize())
        tx_hash, nonce, attempts = await asyncio.shield(job.future)
        if on_broadcast is not None:
            await on_broadcast(tx_hash)
        return await self.confirm(job.call.operation, tx_hash, nonce, attempts)

    async def find_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """The node's view of ``tx_hash`` (pending or mined), or None if it is unknown."""
        return await self._read("Transaction lookup", self.client.get_transaction, tx_hash)

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    @staticmethod
    def _log_orphan(future: "asyncio.Future") -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error(f"Broadcast abandoned by its caller failed: {exc}")
        else:
            logger.info(f"Broadcast abandoned by its caller landed as {future.result()[0]}")

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if job is None:
                    return
                get_registry().set_queue_depth(self._queue.qsize())
                try:
                    result = await self._broadcast(job)
                except Exception as e:
                    if not job.future.done():
                        job.future.set_exception(e)
                else:
                    if not job.future.done():
                        job.future.set_result(result)
            finally:
                self._queue.task_done()

    def _sign(self, job: _Job, nonce: int, gas_price: int, chain_id: int) -> str:
        if job.signed_for != (nonce, gas_price):
            signed = self.account.sign_transaction({
                "nonce": nonce,
                "gasPrice": gas_price,
                "gas": job.gas,
                "to": job.call.to,
                "value": job.call.value,
                "data": job.call.data,
                "chainId": chain_id,
            })
            job.raw = bytes(signed.raw_transaction)
            job.signed_for = (nonce, gas_price)
            job.sent_hashes.append(Web3.to_hex(signed.hash))
        return job.sent_hashes[-1]

    async def _find_sent(self, job: _Job) -> Optional[Tuple[str, int]]:
        """Return (hash, nonce) of an earlier broadcast of ``job`` known to the node."""
        for tx_hash in reversed(job.sent_hashes):
            try:
                tx = await self._rpc(self.client.get_transaction, tx_hash)
            except TransientNetworkError:
                continue
            if tx is not None:
                return tx_hash, tx["nonce"]
        return None

    async def _broadcast(self, job: _Job) -> Tuple[str, int, int]:
        operation = job.call.operation
        chain_id = await self.chain_id()
        gas_price: Optional[int] = None
        price_floor = 0
        attempt = 0
        while True:
            attempt += 1
            try:
                if self._nonce is None:
                    self._nonce = await self._rpc(self.client.get_transaction_count, self.address, "pending")
                if gas_price is None:
                    gas_price = max(await self._rpc(self.client.gas_price), price_floor)
                nonce = self._nonce
                tx_hash = self._sign(job, nonce, gas_price, chain_id)
                try:
                    tx_hash = await self._rpc(self.client.send_raw_transaction, job.raw)
                except TransactionAlreadyKnown:
                    logger.info(f"Node already holds {tx_hash}; treating as broadcast")
                self._nonce = nonce + 1
                self.metrics.submitted += 1
                get_registry().observe_transaction(operation, "broadcast")
                logger.info(f"Broadcast {operation} tx {tx_hash} (nonce {nonce}, attempt {attempt})")
                return tx_hash, nonce, attempt
            except (InsufficientFunds, TransactionReverted) as e:
                self.metrics.failures += 1
                get_registry().observe_transaction(operation, "rejected")
                logger.error(f"{operation} submission rejected: {e}")
                raise
            except NonceConflict as e:
                self._nonce = None
                if job.sent_hashes:
                    found = await self._find_sent(job)
                    if found is not None:
                        tx_hash, nonce = found
                        self.metrics.submitted += 1
                        get_registry().observe_transaction(operation, "broadcast")
                        logger.info(f"Earlier broadcast {tx_hash} of {operation} is known to the node")
                        return tx_hash, nonce, attempt
                await self._backoff_or_give_up(job, e, attempt)
            except Underpriced as e:
                price_floor = int((gas_price or 0) * self.config.underpriced_bump) + 1
                gas_price = None
                self._nonce = None
                await self._backoff_or_give_up(job, e, attempt)
            except TransientNetworkError as e:
                # identical bytes are re-sent while nonce and price are unchanged
                await self._backoff_or_give_up(job, e, attempt)

    async def _backoff_or_give_up(self, job: _Job, error: LedgerError, attempt: int) -> None:
        if attempt >= self.config.max_attempts:
            self.metrics.failures += 1
            get_registry().observe_transaction(job.call.operation, "failed")
            logger.error(f"{job.call.operation} submission gave up after {attempt} attempts: {error}")
            raise Unavailable(
                f"Submission failed after {attempt} attempts: {error.message}",
                last_error=error.kind,
            ) from error
        delay = self._backoff.delay(attempt)
        self.metrics.retries += 1
        get_registry().observe_retry(error.kind)
        logger.warning(
            f"{job.call.operation} attempt {attempt}/{self.config.max_attempts} failed ({error.kind}: {error}); "
            f"retrying in {delay:.2f}s"
        )
        await self._sleep(delay)

    async def confirm(self, operation: str, tx_hash: str, nonce: int, attempts: int = 1) -> SubmissionReceipt:
        """Wait for the receipt of a broadcast transaction; status 0 raises ``TransactionReverted``."""
        try:
            receipt = await self._rpc(
                self.client.wait_for_receipt,
                tx_hash,
                self.config.confirmation_timeout,
                self.config.poll_interval,
                transaction_hash=tx_hash,
            )
        except RpcTimeout as e:
            logger.warning(f"No receipt for {tx_hash} after {self.config.confirmation_timeout}s")
            raise SubmissionTimeout(
                f"Transaction {tx_hash} not confirmed within {self.config.confirmation_timeout}s",
                transaction_hash=tx_hash,
            ) from e
        if not receipt.succeeded:
            self.metrics.failures += 1
            get_registry().observe_transaction(operation, "reverted")
            logger.error(f"{operation} tx {tx_hash} reverted in block {receipt.block_number}")
            raise TransactionReverted("transaction failed on-chain (status 0)", transaction_hash=tx_hash)
        self.metrics.confirmed += 1
        get_registry().observe_transaction(operation, "confirmed")
        logger.info(f"Confirmed {operation} tx {tx_hash} in block {receipt.block_number}")
        return SubmissionReceipt(
            transaction_hash=receipt.transaction_hash,
            block_number=receipt.block_number,
            nonce=nonce,
            gas_used=receipt.gas_used,
            status=receipt.status,
            logs=list(receipt.logs),
            attempts=attempts,
        )

    async def close(self) -> None:
        """Let queued jobs finish, then stop the worker."""
        self._closed = True
        if self._worker is not None and not self._worker.done():
            await self._queue.put(None)
            await self._worker
        self._worker = None


__all__ = ["SubmissionReceipt", "SubmitterMetrics", "TransactionSubmitter"]
