"""
Retry helpers: exponential backoff and bounded retry policies.

Usage:

    policy = RetryPolicy(
        max_attempts=5,
        backoff=ExponentialBackoff(initial_delay=0.1, max_delay=2.0, multiplier=2.0),
        exceptions=(RpcTimeout,),
    )

    await retry_call(policy, client.call, tx)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Tuple, Type

logger = logging.getLogger(__name__)


@dataclass
class ExponentialBackoff:
    """Delay grows by ``multiplier`` per attempt, capped at ``max_delay``."""
    initial_delay: float = 0.5
    max_delay: float = 8.0
    multiplier: float = 2.0

    def delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        if attempt < 1:
            return 0.0
        return min(self.max_delay, self.initial_delay * (self.multiplier ** (attempt - 1)))


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    backoff: ExponentialBackoff = field(default_factory=ExponentialBackoff)
    exceptions: Tuple[Type[BaseException], ...] = (Exception,)

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        return isinstance(exc, self.exceptions) and attempt < self.max_attempts


async def retry_call(
    policy: RetryPolicy,
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any,
) -> Any:
    """Await ``func`` until it succeeds or the policy gives up.

    The last exception is re-raised unchanged once attempts are exhausted or
    when it is not one of ``policy.exceptions``.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await func(*args, **kwargs)
        except policy.exceptions as exc:
            if not policy.should_retry(exc, attempt):
                raise
            delay = policy.backoff.delay(attempt)
            logger.warning(
                f"{getattr(func, '__name__', 'call')} failed (attempt {attempt}/{policy.max_attempts}): "
                f"{exc}; retrying in {delay:.2f}s"
            )
            await sleep(delay)


__all__ = ["ExponentialBackoff", "RetryPolicy", "retry_call"]
