"""Bounded retry for store operations after a job has been claimed."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class RetryPolicy:
    """Fixed-delay retry policy.

    ``retries`` is the number of extra attempts after the first one.
    """

    def __init__(self, retries: int = 2, delay: float = 1.0):
        self.retries = max(0, retries)
        self.delay = max(0.0, delay)

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        give_up_on: tuple[type[BaseException], ...] = (),
    ) -> T:
        """Run an operation, retrying on the given exceptions.

        Exceptions in ``give_up_on`` are re-raised immediately, even if they
        also match ``retry_on``. The last exception is re-raised once
        attempts are exhausted.
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except give_up_on:
                raise
            except retry_on as e:
                if attempt >= self.max_attempts:
                    raise
                logger.warning(
                    f"{description} failed (attempt {attempt}/{self.max_attempts}): {e}, "
                    f"retrying in {self.delay}s"
                )
                await asyncio.sleep(self.delay)
                attempt += 1
