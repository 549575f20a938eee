"""Retry primitive for model fetches.

Usage:
    response = await run_async_with_retry(
        caller="LiteLLMFetcher.fetch",
        model="gpt-4o",
        max_retries=2,
        invoke=lambda attempt: litellm.acompletion(...),
        should_retry=is_retryable_fetch_error,
        compute_delay=lambda attempt, exc: (exponential_backoff(attempt), "backoff"),
        warning_sink=warnings,
        logger=logger,
    )
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


def exponential_backoff(attempt: int, base_delay: float = 1.0, max_delay: float = 30.0) -> float:
    """Exponential backoff with jitter, capped at *max_delay*."""
    delay = base_delay * (2 ** attempt)
    jitter = random.uniform(0.5, 1.5)
    return min(delay * jitter, max_delay)


async def run_async_with_retry(
    *,
    caller: str,
    model: str,
    max_retries: int,
    invoke: Callable[[int], Awaitable[T]],
    should_retry: Callable[[Exception], bool],
    compute_delay: Callable[[int, Exception], tuple[float, str]],
    warning_sink: list[str],
    logger: logging.Logger,
    on_retry: Callable[[int, Exception, float], None] | None = None,
    cancelled: Callable[[], bool] | None = None,
) -> T:
    """Run ``invoke(attempt)`` up to ``max_retries + 1`` times.

    Non-retryable errors and the last attempt's error are re-raised as is.
    When ``cancelled()`` turns true between attempts, the pending error is
    raised instead of sleeping.
    """
    for attempt in range(max_retries + 1):
        try:
            return await invoke(attempt)
        except Exception as exc:
            if not should_retry(exc) or attempt >= max_retries:
                raise
            if cancelled is not None and cancelled():
                raise

            delay, retry_delay_source = compute_delay(attempt, exc)
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            warning_sink.append(
                f"RETRY {attempt + 1}/{max_retries + 1}: "
                f"{model} ({type(exc).__name__}: {exc}) "
                f"[retry_delay_source={retry_delay_source}]"
            )
            logger.warning(
                "%s attempt %d/%d failed (retrying in %.1fs, source=%s): %s",
                caller,
                attempt + 1,
                max_retries + 1,
                delay,
                retry_delay_source,
                exc,
            )
            await asyncio.sleep(delay)

    raise RuntimeError("run_async_with_retry exhausted without returning")
