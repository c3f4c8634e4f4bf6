"""Exponential backoff with jitter, shared by the fetcher and the notifier."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from .config import (
    MAX_RETRIES,
    RETRY_BASE_DELAY_SECONDS,
    RETRY_JITTER_SECONDS,
    RETRY_MAX_DELAY_SECONDS,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to retry and how long to wait in between."""
    max_retries: int = MAX_RETRIES
    base_delay: float = RETRY_BASE_DELAY_SECONDS
    max_delay: float = RETRY_MAX_DELAY_SECONDS
    jitter: float = RETRY_JITTER_SECONDS

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter=settings.retry_jitter,
        )


def calculate_backoff(
    attempt: int,
    policy: RetryPolicy = RetryPolicy(),
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Delay in seconds before retrying after the given attempt (0-indexed).

    delay = min(base * 2^attempt + U(0, jitter), max_delay)
    """
    delay = policy.base_delay * (2 ** attempt) + rand() * policy.jitter
    return min(delay, policy.max_delay)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    description: str = "operation",
    sleep: SleepFunc = asyncio.sleep,
) -> T:
    """
    Await operation() up to policy.max_retries + 1 times.

    The last exception is re-raised once retries are exhausted.
    """
    retries = 0
    while True:
        try:
            return await operation()
        except retry_on:
            retries += 1
            if retries > policy.max_retries:
                logger.error(f"Maximum retries ({policy.max_retries}) exceeded for {description}")
                raise
            delay = calculate_backoff(retries - 1, policy)
            logger.info(
                f"Retry {retries}/{policy.max_retries} for {description} "
                f"after {delay:.1f} seconds"
            )
            await sleep(delay)
