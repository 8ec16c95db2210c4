"""Retry with exponential backoff for LLM calls.

This lives on the client side of the boundary: the orchestrator never
retries, it only sees the final outcome of a (possibly retried) call.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import anyio

from codeh_llm.errors import LLMError, RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with optional "equal jitter".

    With jitter the delay is drawn uniformly from
    ``[0.5 * delay, delay]``.
    """

    max_retries: int = 2
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter: bool = True

    def compute_delay(self, attempt: int) -> float:
        """Delay before retry number *attempt* (0-indexed)."""
        delay = min(self.initial_delay * (self.backoff_factor**attempt), self.max_delay)
        if self.jitter:
            delay *= 0.5 + random.random() * 0.5  # noqa: S311
        return delay

    def delay_for(self, error: LLMError, attempt: int) -> float:
        """Backoff for *error*, never shorter than a server-requested wait."""
        delay = self.compute_delay(attempt)
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            delay = max(delay, error.retry_after)
        return delay


OnRetryCallback = Callable[[int, LLMError, float], Awaitable[None] | None]


async def retry_with_policy(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    on_retry: OnRetryCallback | None = None,
) -> T:
    """Call *fn* until it succeeds, retrying only ``retryable`` errors.

    Args:
        fn: Zero-argument async callable, invoked once per attempt.
        policy: Backoff configuration.
        on_retry: Called with ``(attempt, error, delay)`` before sleeping.

    Raises:
        LLMError: The last error, once it is not retryable or retries
            are exhausted.
        ValueError: If ``policy.max_retries`` is negative.
    """
    if policy.max_retries < 0:
        raise ValueError(f"max_retries must be >= 0, got {policy.max_retries}")

    attempt = 0
    while True:
        try:
            return await fn()
        except LLMError as exc:
            if not exc.retryable or attempt >= policy.max_retries:
                raise

            delay = policy.delay_for(exc, attempt)
            logger.warning(
                "LLM call failed (%s: %s), retrying in %.2fs (attempt %d/%d)",
                type(exc).__name__,
                exc,
                delay,
                attempt + 1,
                policy.max_retries,
            )
            if on_retry is not None:
                result = on_retry(attempt, exc, delay)
                if isinstance(result, Awaitable):
                    await result

            await anyio.sleep(delay)
            attempt += 1
