"""
Retry helpers with exponential backoff.
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from shared.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 0.25,
                 max_delay: float = 10.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: BaseException, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before the attempt following ``attempt`` (1-based)."""
    delay = min(config.base_delay * (config.exponential_base ** (attempt - 1)), config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)


async def call_with_retry(func: Callable[..., Awaitable[Any]], *args,
                          exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                          config: Optional[RetryConfig] = None,
                          sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                          **kwargs) -> Any:
    """Await ``func`` until it succeeds or ``config.max_attempts`` is reached."""
    config = config or RetryConfig()
    name = getattr(func, "__name__", "call")
    logger = get_logger(f"retry.{name}")

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await func(*args, **kwargs)
        except exceptions as e:
            if attempt == config.max_attempts:
                logger.error(
                    "All retry attempts exhausted",
                    attempt=attempt,
                    function=name,
                    error=str(e)
                )
                raise RetryError(
                    f"{name} failed after {config.max_attempts} attempts",
                    last_exception=e,
                    attempts=attempt
                ) from e

            delay = calculate_delay(attempt, config)
            logger.warning(
                "Retry attempt failed, waiting before next attempt",
                attempt=attempt,
                delay=delay,
                function=name,
                error=str(e)
            )
            await sleep(delay)
        else:
            if attempt > 1:
                logger.info("Retry succeeded", attempt=attempt, function=name)
            return result

    raise RetryError(f"{name} was not attempted", last_exception=RuntimeError("no attempts"), attempts=0)
