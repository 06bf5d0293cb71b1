"""Bounded fixed-delay retries around async collaborator calls."""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from deepest.errors import NON_RETRYABLE_ERRORS

T = TypeVar("T")

RAISE = object()


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 1,
    delay: float = 1.0,
    fallback: Any = RAISE,
    label: str = "operation",
    before_attempt: Callable[[], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` with up to ``max_retries`` retries after the first attempt.

    Configuration errors and cancellation propagate immediately. Once retries are
    exhausted the last error is raised, unless a ``fallback`` is given, in which
    case it is returned instead.
    """
    attempts = max(int(max_retries), 0) + 1
    last_error: Exception | None = None

    for attempt in range(1, attempts + 1):
        if before_attempt is not None:
            before_attempt()
        try:
            return await operation()
        except NON_RETRYABLE_ERRORS:
            raise
        except Exception as e:
            last_error = e
            if attempt < attempts:
                logger.warning(
                    f"{label} failed (attempt {attempt}/{attempts}): {e}. Retrying in {delay}s..."
                )
                await sleep(delay)

    if fallback is not RAISE:
        logger.warning(f"{label} failed after {attempts} attempts, using fallback: {last_error}")
        return fallback

    assert last_error is not None
    raise last_error
