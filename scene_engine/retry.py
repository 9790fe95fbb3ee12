"""
Retry discipline for synchronous provider calls (prompt enrichment and
image generation).

A failure is retryable when its status is 429 / 500 / 503 or its message
mentions a transient condition. Errors that were already classified into a
ProviderError inside the call (safety blocks, empty responses) are final
and never retried.

Enrichment:        3 attempts, fixed delay
Image generation:  3 attempts, delay = base * 2^(attempt - 1)
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from . import metrics
from .errors import ProviderError, error_message, error_status

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = {429, 500, 503}
RETRYABLE_MESSAGE_MARKERS = (
    "deadline",
    "unavailable",
    "timeout",
    "resource exhausted",
    "high demand",
)

# Patched in tests to avoid real waits.
_sleep = asyncio.sleep


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 2.0
    exponential: bool = False

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        if self.exponential:
            return self.base_delay * (2 ** (attempt - 1))
        return self.base_delay


ENRICH_PROMPT_POLICY = RetryPolicy(max_attempts=3, base_delay=2.5, exponential=False)
IMAGE_GENERATION_POLICY = RetryPolicy(max_attempts=3, base_delay=2.0, exponential=True)


def is_retryable(error: Any) -> bool:
    status = error_status(error)
    if status in RETRYABLE_STATUS_CODES:
        return True
    msg = f"{error_message(error)} {status or ''}".lower()
    return any(marker in msg for marker in RETRYABLE_MESSAGE_MARKERS)


async def call_with_retry(
    policy: RetryPolicy,
    provider: str,
    operation: str,
    func: Callable[..., Awaitable[T]],
    *args,
    **kwargs,
) -> T:
    """
    Await func(*args, **kwargs) under the given policy.

    The caller sees the same result type as a direct call; on final failure a
    ProviderError is raised carrying the last backend error.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            with metrics.timed(f"provider.{provider}.{operation}"):
                result = await func(*args, **kwargs)
            metrics.provider_call(provider, operation, "ok")
            if attempt > 1:
                logger.info(f"{provider} {operation} succeeded after {attempt} attempts")
            return result

        except ProviderError as e:
            metrics.provider_call(provider, operation, "error")
            metrics.record_failure(f"{provider}.{operation}", e.code, e.message)
            raise

        except Exception as e:
            if attempt < policy.max_attempts and is_retryable(e):
                delay = policy.delay_for(attempt)
                metrics.provider_call(provider, operation, "retry")
                logger.warning(
                    f"{provider} {operation} attempt {attempt}/{policy.max_attempts} failed "
                    f"(retryable): {error_message(e)}, retrying in {delay:.1f}s"
                )
                await _sleep(delay)
                continue

            wrapped = ProviderError(provider, operation, e)
            metrics.provider_call(provider, operation, "error")
            metrics.record_failure(f"{provider}.{operation}", wrapped.code, wrapped.message)
            logger.error(f"{provider} {operation} failed after {attempt} attempt(s): {wrapped.message}")
            raise wrapped from e

    # max_attempts < 1
    raise ProviderError(provider, operation, "retry policy allows no attempts")
