"""Bounded retry policy for outbound collaborator calls.

The policy is a pure decision function: given how many attempts have failed
and the last error, it says whether to try again and how long to wait. The
loop that sleeps and re-issues the call lives with the caller.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import anyio

from erp_mcp.errors import UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_STATUS = frozenset({408, 429})


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay: float = 0.0


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff over a fixed number of attempts.

    A failure is retryable when its status code is in ``retryable_status`` or
    is a 5xx; failures without a status code fall back to the error class's
    own ``retryable`` flag (timeouts and network failures).
    """

    max_attempts: int = 3
    backoff_base: float = 1.0
    retryable_status: frozenset[int] = field(default=DEFAULT_RETRYABLE_STATUS)

    def is_retryable(self, error: Exception) -> bool:
        if not isinstance(error, UpstreamError):
            return False
        if error.status_code is None:
            return error.retryable
        return error.status_code in self.retryable_status or error.status_code >= 500

    def decide(self, attempt: int, error: Exception) -> RetryDecision:
        """Decide what to do after ``attempt`` (0-based) failed with ``error``."""
        if attempt + 1 >= self.max_attempts or not self.is_retryable(error):
            return RetryDecision(retry=False)
        return RetryDecision(retry=True, delay=self.backoff_base * 2**attempt)


NO_RETRY = RetryPolicy(max_attempts=1)


async def call_with_retry(operation: Callable[[], Awaitable[T]], policy: RetryPolicy) -> T:
    attempt = 0
    while True:
        try:
            return await operation()
        except UpstreamError as e:
            decision = policy.decide(attempt, e)
            if not decision.retry:
                raise
            logger.warning(f"Attempt {attempt + 1} failed with {e.kind}, retrying in {decision.delay:g}s")
            attempt += 1
            await anyio.sleep(decision.delay)
