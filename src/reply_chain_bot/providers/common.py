from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    value: T | None
    error: BaseException | None
    attempts: int

    @property
    def ok(self) -> bool:
        return self.error is None


def _log_attempt_failure(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason}: {exc} (attempt {retry_state.attempt_number})")


def default_retry_kwargs(attempts: int = DEFAULT_ATTEMPTS, *, wait=None) -> dict:
    return {
        "retry": retry_if_exception_type(Exception),
        "wait": wait if wait is not None else wait_exponential(multiplier=1, min=1, max=8),
        "stop": stop_after_attempt(max(1, attempts)),
        "after": _log_attempt_failure,
        "reraise": False,
    }


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    wait=None,
) -> RetryOutcome[T]:
    """Run ``fn`` up to ``attempts`` times; never raises for a failed call.

    Pass ``wait=wait_none()`` to retry without sleeping.
    """
    retrying = AsyncRetrying(**default_retry_kwargs(attempts, wait=wait))
    try:
        async for attempt in retrying:
            with attempt:
                value = await fn()
    except RetryError as ex:
        last = ex.last_attempt
        return RetryOutcome(value=None, error=last.exception(), attempts=last.attempt_number)
    return RetryOutcome(value=value, error=None, attempts=retrying.statistics.get("attempt_number", 1))


