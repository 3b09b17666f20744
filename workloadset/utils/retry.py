import logging
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
    wait_random,
)

from workloadset.utils.errors import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: Delay between conflict retries
CONFLICT_RETRY_DELAY_SECONDS = 0.01


async def retry_on_conflict(
    fn: Callable[[], Awaitable[T]],
    attempts: int,
    wait=None,
) -> T:
    """Run the read-modify-write closure `fn`, retrying on ConflictError.

    The closure must re-read the object it modifies on every call.
    After `attempts` conflicting tries the last ConflictError is raised;
    any other exception propagates immediately.
    """
    result = None
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait
        if wait is not None
        else wait_fixed(CONFLICT_RETRY_DELAY_SECONDS) + wait_random(0, 0.001),
        retry=retry_if_exception_type(ConflictError),
        before_sleep=before_sleep_log(logger, logging.DEBUG),
        reraise=True,
    ):
        with attempt:
            result = await fn()
    return result
