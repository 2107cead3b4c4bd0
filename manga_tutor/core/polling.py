"""Caller-side poll loop over `StatusResolver`.

The resolver performs one query per call; this loop owns the initial delay,
the interval between queries and the attempt ceiling. It is used by the
terminal client; HTTP clients run the same loop on their side.

Terminal statuses stop the loop immediately. `succeeded_but_empty` is
terminal and is never retried automatically.
"""

import asyncio
import logging
import time

from manga_tutor.core.errors import GenerationTimeoutError
from manga_tutor.core.types import RunHandle, StatusResult
from manga_tutor.workflow.provider_config import (
    POLL_INITIAL_DELAY_SECONDS,
    POLL_INTERVAL_SECONDS,
    POLL_MAX_ATTEMPTS,
)

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Timed out: manga generation is taking too long"


def poll_until_complete(
    resolver,
    handle: RunHandle,
    max_attempts: int = POLL_MAX_ATTEMPTS,
    interval: float = POLL_INTERVAL_SECONDS,
    initial_delay: float = POLL_INITIAL_DELAY_SECONDS,
    sleep=time.sleep,
    on_attempt=None,
) -> StatusResult:
    """Resolve `handle` repeatedly until a terminal status.

    Args:
        resolver: Object with `async resolve(handle) -> StatusResult`.
        handle: Run to poll.
        max_attempts: Attempt ceiling.
        interval: Seconds between attempts.
        initial_delay: Seconds before the first attempt.
        sleep: Blocking sleep function (injected by tests).
        on_attempt: Optional `callback(attempt, result)` for progress output.

    Returns:
        The first terminal `StatusResult`.

    Raises:
        GenerationTimeoutError: No terminal status within `max_attempts`.
        RemoteServiceError: A status query failed; it is not retried.
    """
    if initial_delay > 0:
        sleep(initial_delay)

    for attempt in range(1, max(1, max_attempts) + 1):
        result = asyncio.run(resolver.resolve(handle))
        logger.info("Polling attempt %s for %s: %s", attempt, handle.run_id, result.status.value)

        if on_attempt is not None:
            on_attempt(attempt, result)

        if result.status.is_terminal:
            return result

        if attempt < max_attempts:
            sleep(interval)

    raise GenerationTimeoutError(TIMEOUT_MESSAGE)
