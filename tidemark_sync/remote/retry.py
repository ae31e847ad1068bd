"""Retry with exponential backoff for remote calls.

One canonical policy for every adapter and for the sync engine:
3 attempts in total, sleeping ``backoff_base * multiplier ** attempt``
between them (1 s, then 2 s with the defaults). What counts as retryable
is decided by the caller through a predicate.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Lock (423), edit conflict (409) and server errors are worth another try.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({409, 423})
AUTH_STATUS_CODES: frozenset[int] = frozenset({401, 403})


@dataclass
class RetryConfig:
    """Configuration for retry with exponential backoff."""

    max_attempts: int = 3
    backoff_base: float = 1.0  # seconds
    backoff_multiplier: float = 2.0
    backoff_max: float = 30.0  # cap

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (0-based)."""
        return min(self.backoff_base * (self.backoff_multiplier**attempt), self.backoff_max)


def is_retryable_status(status: int | None) -> bool:
    """True for 409, 423 and any 5xx."""
    if status is None:
        return False
    return status in RETRYABLE_STATUS_CODES or status >= 500


async def retry_with_backoff(
    fn: Callable[..., Coroutine[Any, Any, T]],
    *args: Any,
    is_retryable: Callable[[Exception], bool],
    config: RetryConfig | None = None,
    context_msg: str = "",
    **kwargs: Any,
) -> T:
    """Execute an async function with retry and exponential backoff.

    Args:
        fn: Async callable to execute
        *args: Positional args for fn
        is_retryable: Predicate deciding whether an exception is transient
        config: Retry configuration (uses defaults if None)
        context_msg: Extra context for log messages (e.g. resource name)
        **kwargs: Keyword args for fn

    Returns:
        Result of fn

    Raises:
        Exception: The first non-retryable exception, or the last one after
            all attempts are used up
    """
    cfg = config or RetryConfig()
    ctx = f" [{context_msg}]" if context_msg else ""
    attempts = max(cfg.max_attempts, 1)

    for attempt in range(attempts):
        try:
            result = await fn(*args, **kwargs)
        except Exception as exc:
            retryable = is_retryable(exc)
            if not retryable or attempt + 1 >= attempts:
                if retryable:
                    logger.error(
                        "RETRY_EXHAUSTED: attempt=%d/%d%s: %s",
                        attempt + 1,
                        attempts,
                        ctx,
                        exc,
                    )
                raise

            delay = cfg.delay_for(attempt)
            logger.warning(
                "RETRYING: attempt=%d/%d delay=%.1fs%s: %s",
                attempt + 1,
                attempts,
                delay,
                ctx,
                exc,
            )
            await asyncio.sleep(delay)
        else:
            if attempt > 0:
                logger.info(
                    "RETRY_RECOVERED: succeeded on attempt %d/%d%s",
                    attempt + 1,
                    attempts,
                    ctx,
                )
            return result

    # Unreachable, but satisfies type checker
    raise RuntimeError("retry_with_backoff exhausted without raising")  # pragma: no cover
