import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from loguru import logger

from evm_indexer.exceptions import RetryAbortedError, RetryExhaustedError, TransientUpstreamError

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Bounded exponential backoff around a single upstream call.

    Only TransientUpstreamError is retried. Anything else (not found, malformed
    request) propagates on the first attempt. After `attempts` failed tries a
    RetryExhaustedError is raised with the last error chained as its cause.

    :param attempts: int, total number of attempts including the first one
    :param base_delay: float, delay before the second attempt in seconds
    :param max_delay: float, cap applied to every delay
    :param jitter: bool, whether to stretch each delay by a random factor in [1.0, 1.5)
    :param sleep: coroutine used to wait between attempts
    :param interrupt: event that, once set, ends any backoff wait and abandons the call
        with RetryAbortedError
    """

    attempts: int = 5
    base_delay: float = 2.0
    max_delay: float = 60.0
    jitter: bool = True
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)
    interrupt: Optional[asyncio.Event] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt"""
        delay = self.base_delay * (2 ** (attempt - 1))
        if self.jitter:
            delay *= random.uniform(1.0, 1.5)
        # Cap after jitter so delays never shrink once the cap is reached
        return min(delay, self.max_delay)

    def _interrupted(self) -> bool:
        return self.interrupt is not None and self.interrupt.is_set()

    async def _wait(self, delay: float) -> None:
        if self.interrupt is None:
            await self.sleep(delay)
            return

        sleeper = asyncio.ensure_future(self.sleep(delay))
        waiter = asyncio.ensure_future(self.interrupt.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                task.cancel()
            await asyncio.gather(sleeper, waiter, return_exceptions=True)

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        description: str | None = None,
        **kwargs: Any,
    ) -> T:
        description = description or getattr(func, "__name__", "upstream call")
        for attempt in range(1, self.attempts + 1):
            try:
                return await func(*args, **kwargs)
            except TransientUpstreamError as e:
                if attempt == self.attempts:
                    logger.error(f"All {self.attempts} retry attempts failed for {description}: {e}")
                    raise RetryExhaustedError(description, self.attempts, e) from e
                if self._interrupted():
                    raise RetryAbortedError(description, attempt, e) from e

                delay = self.delay_for(attempt)
                logger.warning(
                    f"Attempt {attempt} failed for {description}. Retrying in {delay:.2f} seconds. Error: {e}"
                )
                await self._wait(delay)
                if self._interrupted():
                    logger.info(f"Shutdown requested, abandoning {description} after attempt {attempt}")
                    raise RetryAbortedError(description, attempt, e) from e

        # attempts >= 1 guarantees the loop either returns or raises
        raise AssertionError("unreachable")
