from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from pagewait.engine.errors import SessionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# A click or input rejected by the remote is retried this many times, no more.
ACTION_RETRY_LIMIT = 1


def should_retry(step_attempt: int, max_attempts: int, has_error: bool) -> bool:
    if not has_error:
        return False
    return step_attempt < max_attempts


def _retry_predicate(retry_on: type[BaseException] | tuple[type[BaseException], ...]) -> retry_if_exception:
    return retry_if_exception(
        lambda exc: isinstance(exc, retry_on) and not isinstance(exc, SessionError)
    )


def _log_attempt(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.debug(
        "Attempt %d of %s failed (%s), sleeping %.3fs",
        retry_state.attempt_number,
        getattr(retry_state.fn, "__name__", "callable"),
        exc,
        retry_state.next_action.sleep if retry_state.next_action else 0.0,
    )


def _check_budget(max_retries: int, delay_ms: float) -> None:
    if max_retries < 1:
        raise ValueError(f"max_retries must be at least 1, got {max_retries}")
    if delay_ms < 0:
        raise ValueError(f"delay_ms must not be negative, got {delay_ms}")


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    delay_ms: float = 1000,
    retry_on: type[BaseException] | tuple[type[BaseException], ...] = Exception,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Await ``fn()`` up to ``max_retries`` times.

    After the i-th failed attempt (counting from zero) the call sleeps
    ``delay_ms * 2**i`` milliseconds. Once the attempts are exhausted the last
    error is re-raised unchanged. ``SessionError`` is never retried.
    """
    _check_budget(max_retries, delay_ms)
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries),
        wait=wait_exponential(multiplier=delay_ms / 1000, exp_base=2),
        retry=_retry_predicate(retry_on),
        before_sleep=_log_attempt,
        sleep=sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await fn()
    raise AssertionError("unreachable")  # pragma: no cover


def backoff(
    max_retries: int = 3,
    delay_ms: float = 1000,
    retry_on: type[BaseException] | tuple[type[BaseException], ...] = Exception,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of :func:`retry_with_backoff` for async functions."""
    _check_budget(max_retries, delay_ms)
    return retry(
        stop=stop_after_attempt(max_retries),
        wait=wait_exponential(multiplier=delay_ms / 1000, exp_base=2),
        retry=_retry_predicate(retry_on),
        before_sleep=_log_attempt,
        reraise=True,
    )
