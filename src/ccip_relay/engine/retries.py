"""
Bounded retry policy shared by chain reads, gas estimation and nonce fetches.

Delays grow geometrically from ``base_delay`` by ``multiplier`` and are capped
by ``max_delay``. Exceptions listed in ``give_up_on`` are raised immediately;
exceptions in ``retry_on`` are retried until ``max_attempts`` is reached, after
which the last one propagates.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterator, Optional, Tuple, Type, TypeVar

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff policy parameters.

    max_attempts: Total number of attempts, including the first one.
    base_delay: Delay before the first retry, in seconds.
    multiplier: Exponential scale factor per attempt.
    max_delay: Upper bound for a single delay (None for unbounded).
    """
    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: Optional[float] = 10.0
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ConfigurationError("base_delay must be non-negative")
        if self.multiplier < 1:
            raise ConfigurationError("multiplier must be >= 1")

    def delays(self) -> Iterator[float]:
        """Yield the delay before each retry (``max_attempts - 1`` values)."""
        delay = self.base_delay
        for _ in range(self.max_attempts - 1):
            yield min(delay, self.max_delay) if self.max_delay is not None else delay
            delay *= self.multiplier

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        give_up_on: Tuple[Type[BaseException], ...] = (),
        description: str = "operation",
    ) -> T:
        """
        Await ``operation()`` until it succeeds or the attempts run out.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt.
            retry_on: Exception types considered transient.
            give_up_on: Exception types raised without retrying, checked first.
            description: Label used in log messages.

        Returns:
            The operation's result.
        """
        delays = self.delays()
        attempt = 1
        while True:
            try:
                return await operation()
            except give_up_on:
                raise
            except retry_on as e:
                delay = next(delays, None)
                if delay is None:
                    logger.warning("%s failed after %d attempts: %s", description, attempt, e)
                    raise
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                    description, attempt, self.max_attempts, e, delay,
                )
                await self.sleep(delay)
                attempt += 1
