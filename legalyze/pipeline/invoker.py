from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Collection

from legalyze.llm_client.base import GenerationClient
from legalyze.pipeline.delay_policy import MAX_DELAY_SECONDS, compute_delay
from legalyze.utils.error_taxonomy import (
    ErrorClassification,
    TransientUpstreamError,
    UpstreamError,
    to_upstream_error,
)
from legalyze.utils.retry import run_with_retry

logger = logging.getLogger("legalyze.invoker")

RATE_LIMITED_ONLY: frozenset[ErrorClassification] = frozenset({"rate_limited"})
RATE_LIMITED_OR_UNAVAILABLE: frozenset[ErrorClassification] = frozenset(
    {"rate_limited", "service_unavailable"}
)


@dataclass(frozen=True, slots=True)
class InvocationResult:
    raw_text: str
    attempts: int
    elapsed_ms: float

    @property
    def retries_used(self) -> int:
        return self.attempts - 1


class ResilientInvoker:
    def __init__(
        self,
        *,
        client: GenerationClient,
        model: str,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
        random_fn: Callable[[], float] = random.random,
        max_delay_seconds: float = MAX_DELAY_SECONDS,
    ) -> None:
        self.client = client
        self.model = model
        self.sleep_fn = sleep_fn
        self.random_fn = random_fn
        self.max_delay_seconds = max_delay_seconds

    async def invoke(
        self,
        prompt: str,
        *,
        max_attempts: int,
        retryable: Collection[ErrorClassification],
    ) -> InvocationResult:
        started_at = time.perf_counter()

        async def _call() -> str:
            try:
                return await self.client.generate_text(prompt=prompt, model=self.model)
            except Exception as error:  # noqa: BLE001
                upstream_error = to_upstream_error(error)
                logger.warning(
                    "Upstream call failed (%s): %s",
                    upstream_error.classification,
                    upstream_error,
                    extra={"status_code": upstream_error.status_code},
                )
                raise upstream_error from error

        def _should_retry(error: BaseException) -> bool:
            return (
                isinstance(error, TransientUpstreamError)
                and error.classification in retryable
            )

        def _delay(attempt: int, error: BaseException) -> float:
            if not isinstance(error, UpstreamError):
                raise TypeError(f"Cannot compute backoff for {error!r}")
            return compute_delay(
                error.classification,
                attempt,
                error.retry_hint,
                random_fn=self.random_fn,
                max_delay_seconds=self.max_delay_seconds,
            )

        def _on_attempt(attempt: int) -> None:
            logger.info(
                "Upstream attempt %d/%d",
                attempt + 1,
                max_attempts,
                extra={"attempt": attempt},
            )

        def _on_retry(attempt: int, delay: float, error: BaseException) -> None:
            logger.warning(
                "Retrying in %.2fs after attempt %d/%d: %s",
                delay,
                attempt + 1,
                max_attempts,
                error,
                extra={"attempt": attempt, "delay_s": round(delay, 3)},
            )

        outcome = await run_with_retry(
            operation=_call,
            should_retry=_should_retry,
            compute_delay=_delay,
            max_attempts=max_attempts,
            sleep_fn=self.sleep_fn,
            on_attempt=_on_attempt,
            on_retry=_on_retry,
        )
        elapsed_ms = (time.perf_counter() - started_at) * 1000
        return InvocationResult(
            raw_text=outcome.value,
            attempts=outcome.attempts,
            elapsed_ms=elapsed_ms,
        )
