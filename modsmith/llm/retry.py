"""
Bounded exponential-backoff retry for a single provider invocation.

Only rate-limit/quota failures are retried; every other error is re-raised
on first sight so the orchestrator can classify it.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from modsmith.llm.classifier import is_rate_limited
from modsmith.llm.errors import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryState:
    """Bookkeeping for one ``execute`` call; discarded when it returns."""

    attempts: int
    delay: float
    max_attempts: int
    max_delay: float


class RetryExecutor:
    """
    Retry an async call on rate limiting with capped exponential backoff.

    Parameters
    ----------
    max_retries:
        Retries after the first call; at most ``max_retries + 1`` calls are made.
    initial_delay:
        Seconds to wait before the first retry.
    max_delay:
        Upper bound for the base delay, in seconds.
    jitter:
        Random extra wait in ``[0, jitter)`` seconds added to every sleep.
    sleep:
        Awaitable sleep function.  Tests pass a recorder instead of
        ``asyncio.sleep``.
    rand:
        Source of jitter in ``[0, 1)``, scaled by *jitter*.
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 2.0,
        max_delay: float = 10.0,
        jitter: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._sleep = sleep
        self._rand = rand

    def new_state(self) -> RetryState:
        return RetryState(
            attempts=0,
            delay=self.initial_delay,
            max_attempts=self.max_retries,
            max_delay=self.max_delay,
        )

    async def execute(self, call: Callable[[], Awaitable[T]]) -> T:
        """
        Await ``call()`` until it succeeds, fails with a non-rate-limit
        error, or the retry budget runs out.

        Raises ``RetryExhaustedError`` (chained to the last error) when the
        budget is spent.
        """
        state = self.new_state()
        while True:
            try:
                return await call()
            except Exception as exc:
                if not is_rate_limited(exc):
                    raise

                state.attempts += 1
                if state.attempts > state.max_attempts:
                    logger.warning(
                        "Rate limited %d times, giving up: %s", state.attempts, exc
                    )
                    raise RetryExhaustedError(exc, state.attempts) from exc

                wait = state.delay + self._rand() * self.jitter
                logger.info(
                    "Rate limited (attempt %d/%d), retrying in %.2fs: %s",
                    state.attempts,
                    state.max_attempts,
                    wait,
                    exc,
                )
                await self._sleep(wait)
                state.delay = min(state.delay * 2, state.max_delay)
