"""Tenacity retry wrapper for event delivery, driven by RetryConfig."""

from __future__ import annotations

from collections.abc import Callable

import httpx
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import RetryConfig

logger = structlog.get_logger()

DELIVERY_ERRORS: tuple[type[BaseException], ...] = (httpx.HTTPError,)


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    logger.warning(
        "event_delivery_retry",
        attempt=state.attempt_number,
        wait_seconds=state.next_action.sleep if state.next_action else None,
        error=str(exc),
    )


def with_retry(
    config: RetryConfig,
    *,
    retryable_exceptions: tuple[type[BaseException], ...] = DELIVERY_ERRORS,
) -> Callable:
    """Return a tenacity retry decorator configured from *config*.

    Only *retryable_exceptions* are retried; anything else propagates on
    the first attempt.  The last error is re-raised once attempts run out.

    Usage::

        @with_retry(settings.retry)
        async def deliver(event: BatchEvent) -> None: ...
    """
    return retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.multiplier,
            min=config.initial_wait_seconds,
            max=config.max_wait_seconds,
        ),
        retry=retry_if_exception_type(retryable_exceptions),
        before_sleep=_log_retry,
        reraise=True,
    )
