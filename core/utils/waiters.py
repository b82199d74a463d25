"""Bounded polling and retry helpers used in place of fixed sleeps."""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)


logger = logging.getLogger(__name__)


async def poll_until(
    check: Callable[[], Awaitable[bool]],
    timeout_seconds: float,
    poll_interval: float = 5,
    description: str = "condition",
) -> float:
    """Await ``check`` until it returns True or the timeout elapses.

    Exceptions from ``check`` count as a negative answer. Returns the number
    of seconds waited; raises TimeoutError when the window closes.
    """
    start_time = datetime.utcnow()
    attempt = 0

    while True:
        attempt += 1
        try:
            if await check():
                elapsed = (datetime.utcnow() - start_time).total_seconds()
                logger.debug(f"{description} satisfied after {attempt} attempts")
                return elapsed
        except Exception as e:
            logger.debug(f"{description} check {attempt} raised: {str(e)}")

        elapsed = (datetime.utcnow() - start_time).total_seconds()
        if elapsed + poll_interval > timeout_seconds:
            break
        await asyncio.sleep(poll_interval)

    raise TimeoutError(f"{description} not met within {timeout_seconds} seconds")


def retrying(
    retry_if: Callable[[BaseException], bool],
    attempts: int = 5,
    delay: float = 5,
    max_delay: float = 60,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: str = "operation",
) -> AsyncRetrying:
    """Tenacity policy with exponential backoff for errors ``retry_if`` accepts.

    Call the returned object with the coroutine function to run. The last
    error is re-raised once the attempts are used up.
    """

    def log_retry(retry_state: RetryCallState) -> None:
        logger.info(
            f"{description} failed (attempt {retry_state.attempt_number}/{attempts}), "
            f"retrying in {retry_state.next_action.sleep}s: {str(retry_state.outcome.exception())}"
        )

    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=delay, max=max_delay),
        retry=retry_if_exception(retry_if),
        sleep=sleep,
        before_sleep=log_retry,
        reraise=True,
    )
