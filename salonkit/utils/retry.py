"""
Bounded retry policy for remote calls that resolve to ``Ok`` / ``Err``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, FrozenSet

from ..domain.results import Err, ErrorKind, Result

logger = logging.getLogger(__name__)

DEFAULT_RETRY_ON = frozenset({ErrorKind.NETWORK_ERROR, ErrorKind.UPSTREAM_UNAVAILABLE})


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff with a hard cap on attempts and delay.

    Only ``Err`` results whose kind is in ``retry_on`` are retried; a
    validation error or conflict is returned on the first attempt.
    """
    max_attempts: int = 3
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 5.0
    retry_on: FrozenSet[ErrorKind] = field(default=DEFAULT_RETRY_ON)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must not be negative")

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay_seconds=config.base_delay_seconds,
            max_delay_seconds=config.max_delay_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.base_delay_seconds * (2 ** (attempt - 1)), self.max_delay_seconds)

    def should_retry(self, result: Result[Any], attempt: int) -> bool:
        return (
            isinstance(result, Err)
            and result.kind in self.retry_on
            and attempt < self.max_attempts
        )

    async def run(
        self,
        call: Callable[[], Awaitable[Result[Any]]],
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        operation: str = "remote call",
    ) -> Result[Any]:
        """
        Invoke ``call`` until it succeeds, fails permanently or attempts run out.

        Returns:
            The last result produced by ``call``
        """
        attempt = 1
        while True:
            result = await call()
            if not self.should_retry(result, attempt):
                return result

            delay = self.delay_for(attempt)
            logger.info(
                "%s failed (%s), retrying in %.2fs (attempt %d/%d)",
                operation,
                result.kind.value,
                delay,
                attempt + 1,
                self.max_attempts,
            )
            await sleep(delay)
            attempt += 1
