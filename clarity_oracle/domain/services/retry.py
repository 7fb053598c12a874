"""Retry policy shared by provider calls, event scans and ledger submissions."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    max_retries counts additional attempts after the first one.
    """

    max_retries: int = 3
    base_delay: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (0-based)."""
        base = min(self.max_delay, self.base_delay * (2**attempt))
        spread = base * self.jitter
        return max(0.0, base + random.uniform(-spread, spread))


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    is_retryable: Callable[[Exception], bool],
    label: str = "operation",
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> T:
    """Run ``fn`` until it succeeds, fails terminally or attempts run out.

    Non-retryable errors and the error of the last attempt propagate.
    """
    sleep = sleep or asyncio.sleep
    attempts = policy.max_retries + 1
    for attempt in range(attempts):
        try:
            return await fn()
        except Exception as exc:
            if attempt >= policy.max_retries or not is_retryable(exc):
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                f"🔁 {label} failed (attempt {attempt + 1}/{attempts}): {exc}. "
                f"Retrying in {delay:.1f}s"
            )
            await sleep(delay)
    raise RuntimeError("retry_async exhausted without an exception")
