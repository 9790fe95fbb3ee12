"""
Bounded polling of a backend video operation.

The wait between polls starts at 5s and grows by 1s per poll up to 10s.
The deadline is checked before every poll; once elapsed time exceeds the
bound the job fails with a timeout. A failed poll request is logged and the
loop keeps going.
"""

import time
import asyncio
import logging
from typing import Awaitable, Callable

from .. import metrics
from ..errors import ProviderError, error_message
from ..providers.base import AIProvider, VideoOperation

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

POLL_BASE_DELAY = 5.0   # seconds
POLL_DELAY_STEP = 1.0
POLL_MAX_DELAY = 10.0
DEFAULT_POLL_TIMEOUT = 300.0


def poll_delay(poll_count: int) -> float:
    """Wait before the given poll (1-based)."""
    return min(POLL_MAX_DELAY, POLL_BASE_DELAY + (poll_count - 1) * POLL_DELAY_STEP)


async def poll_until_done(
    provider: AIProvider,
    handle: str,
    timeout: float = DEFAULT_POLL_TIMEOUT,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
    job_id: str = "",
) -> VideoOperation:
    """
    Poll `handle` until the backend reports done.

    Returns the finished operation. Raises ProviderError (408) when the
    deadline passes, or when the backend finishes with an error.
    """
    started = clock()
    polls = 0
    operation = VideoOperation(name=handle)

    while not operation.done:
        if clock() - started > timeout:
            metrics.job_transition("video", "timed_out")
            raise ProviderError(provider.name, "video-polling", {
                "message": f"Video generation timed out after {timeout:g}s ({polls} polls)",
                "status": 408,
            })

        polls += 1
        await sleep(poll_delay(polls))

        try:
            operation = await provider.poll_operation(handle)
        except Exception as e:
            metrics.provider_call(provider.name, "poll_operation", "error")
            logger.warning(f"[{job_id}] Poll #{polls} failed, continuing: {error_message(e)}")
            continue

        logger.info(f"[{job_id}] Poll #{polls}: done={operation.done}")

    if operation.error:
        raise ProviderError(provider.name, "video-generation", operation.error)

    logger.info(f"[{job_id}] Video operation finished after {polls} polls")
    return operation
