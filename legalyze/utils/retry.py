from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)

from legalyze.utils.error_taxonomy import RetriesExhaustedError

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryOutcome(Generic[T]):
    value: T
    attempts: int

    @property
    def retries_used(self) -> int:
        return self.attempts - 1


async def run_with_retry(
    *,
    operation: Callable[[], Awaitable[T]],
    should_retry: Callable[[BaseException], bool],
    compute_delay: Callable[[int, BaseException], float],
    max_attempts: int,
    sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_attempt: Callable[[int], None] | None = None,
    on_retry: Callable[[int, float, BaseException], None] | None = None,
) -> RetryOutcome[T]:
    """Await ``operation`` until it succeeds or the attempt budget is spent.

    Errors rejected by ``should_retry`` propagate unchanged on the attempt that
    raised them. When every attempt fails with a retryable error the last one
    is wrapped in ``RetriesExhaustedError``. Attempt indices handed to the
    callbacks are zero-based.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    def _wait(retry_state: RetryCallState) -> float:
        error = _outcome_exception(retry_state)
        return compute_delay(retry_state.attempt_number - 1, error)

    def _before_sleep(retry_state: RetryCallState) -> None:
        if on_retry is None:
            return
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        on_retry(
            retry_state.attempt_number - 1,
            delay,
            _outcome_exception(retry_state),
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        retry=retry_if_exception(should_retry),
        wait=_wait,
        sleep=sleep_fn,
        before_sleep=_before_sleep,
        reraise=False,
    )

    attempts = 0
    try:
        async for attempt in retrying:
            with attempt:
                attempts = attempt.retry_state.attempt_number
                if on_attempt is not None:
                    on_attempt(attempts - 1)
                value = await operation()
    except RetryError as error:
        last_error = error.last_attempt.exception()
        raise RetriesExhaustedError(
            attempts=attempts, last_error=last_error
        ) from last_error

    return RetryOutcome(value=value, attempts=attempts)


def _outcome_exception(retry_state: RetryCallState) -> BaseException:
    outcome = retry_state.outcome
    error = outcome.exception() if outcome is not None else None
    if error is None:
        raise RuntimeError("retry wait computed without a failed attempt")
    return error
