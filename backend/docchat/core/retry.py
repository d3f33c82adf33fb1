"""Bounded exponential backoff."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from docchat.core.errors import ProviderError
from docchat.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, initial_delay: float = 1.0, factor: float = 2.0) -> float:
    """Seconds to wait after the ``attempt``-th failure (0-based)."""
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    return initial_delay * (factor**attempt)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    attempts: int = 3,
    initial_delay: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    should_retry: Callable[[BaseException], bool] | None = None,
    on_retry: Callable[[int, BaseException], Awaitable[None] | None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Run ``operation`` up to ``attempts`` times, sleeping ``backoff_delay`` between tries.

    ``on_retry`` runs after each failed attempt that will be retried (used to
    recreate connection handles). The last error is re-raised unchanged.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    for attempt in range(attempts):
        try:
            return await operation()
        except retry_on as exc:
            retryable = should_retry(exc) if should_retry is not None else True
            if not retryable:
                logger.warning("%s failed: %s", label, exc)
                raise
            if attempt == attempts - 1:
                logger.warning("%s failed after %s attempts: %s", label, attempts, exc)
                raise
            logger.warning("%s failed (attempt %s/%s): %s", label, attempt + 1, attempts, exc)
            if on_retry is not None:
                result = on_retry(attempt, exc)
                if asyncio.iscoroutine(result):
                    await result
            delay = backoff_delay(attempt, initial_delay)
            logger.info("Retrying %s in %.2fs", label, delay)
            await sleep(delay)
    raise RuntimeError("unreachable")  # pragma: no cover


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.retryable


async def call_provider(
    operation: Callable[[], Awaitable[T]],
    *,
    provider: str,
    attempts: int = 3,
    initial_delay: float = 1.0,
    label: str | None = None,
) -> T:
    """Retry a provider SDK call that reports failures as :class:`ProviderError`.

    Connection failures, 408/409/429 and 5xx are retried with exponential
    backoff; other 4xx fail immediately.
    """
    return await retry_async(
        operation,
        attempts=attempts,
        initial_delay=initial_delay,
        retry_on=(ProviderError,),
        should_retry=_is_transient,
        label=label or f"{provider} call",
    )


__all__ = ["backoff_delay", "retry_async", "call_provider"]
