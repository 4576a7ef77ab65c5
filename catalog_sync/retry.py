"""Bounded retry with per-attempt timeout."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Run an async operation up to `max_attempts` times.

    Args:
        max_attempts: Total attempts, including the first one
        timeout: Seconds allowed per attempt (None disables the limit)
        backoff: Base delay between attempts; attempt N waits backoff * N
        retry_on: Exception types that trigger another attempt
    """

    max_attempts: int = 2
    timeout: float | None = 8.0
    backoff: float = 0.5
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str = "operation",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        """Run `operation`, re-raising the last error once attempts are exhausted."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                if self.timeout is None:
                    return await operation()
                async with asyncio.timeout(self.timeout):
                    return await operation()
            except self.retry_on as e:
                logger.debug(f"{label} failed (attempt {attempt}/{self.max_attempts}): {e!r}")
                if attempt == self.max_attempts:
                    raise
                if self.backoff > 0:
                    await sleep(self.backoff * attempt)

        raise RuntimeError(f"{label}: max_attempts must be at least 1, got {self.max_attempts}")
