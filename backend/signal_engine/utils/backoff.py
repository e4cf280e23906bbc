"""
Exponential backoff helpers shared by watchers, the store and price lookups.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Tuple, Type

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base: float = 0.5, cap: float = 30.0) -> float:
    """
    Delay before retry number ``attempt`` (1-based): base, 2*base, 4*base, ... capped.

    Examples:
        >>> [backoff_delay(n, 0.5, 5.0) for n in range(1, 6)]
        [0.5, 1.0, 2.0, 4.0, 5.0]
    """
    if attempt < 1:
        return 0.0
    # Clamp the exponent so huge attempt counts don't overflow
    return min(base * (2 ** min(attempt - 1, 32)), cap)


async def retry_with_backoff(
    func: Callable[[], Awaitable[Any]],
    max_attempts: int = 3,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    base: float = 0.5,
    cap: float = 30.0,
    description: str = "operation",
) -> Any:
    """
    Await ``func()`` up to ``max_attempts`` times, sleeping with exponential
    backoff between attempts. Exceptions outside ``retry_on`` propagate
    immediately; the last retryable exception propagates once attempts run out.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            result = await func()
            if attempt > 1:
                logger.info(f"{description} succeeded on attempt {attempt}/{max_attempts}")
            return result
        except retry_on as e:
            if attempt >= max_attempts:
                logger.warning(f"{description} failed after {max_attempts} attempts: {e}")
                raise
            delay = backoff_delay(attempt, base, cap)
            logger.warning(
                f"{description} failed (attempt {attempt}/{max_attempts}): {e} - retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)
