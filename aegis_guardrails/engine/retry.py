"""Exponential backoff for collaborator writes."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (1-based), capped at ``max_delay``."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


async def with_retry(
    fn: Callable[..., Coroutine[Any, Any, T]],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    **kwargs: Any,
) -> T:
    """Await ``fn`` until it succeeds or ``max_attempts`` is exhausted.

    The last exception is re-raised once attempts run out. Exceptions not
    listed in ``retryable_exceptions`` propagate immediately.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return await fn(*args, **kwargs)
        except retryable_exceptions as exc:
            if attempt == max_attempts:
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "Attempt %d/%d failed (%s), retrying in %.2fs",
                attempt,
                max_attempts,
                exc,
                delay,
            )
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")
