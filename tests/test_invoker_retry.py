from __future__ import annotations

import pytest

from legalyze.pipeline.invoker import RATE_LIMITED_ONLY, RATE_LIMITED_OR_UNAVAILABLE
from legalyze.utils.error_taxonomy import (
    FatalUpstreamError,
    RetriesExhaustedError,
    TransientUpstreamError,
)
from legalyze.utils.retry import run_with_retry
from tests.helpers import HttpError, RecordingSleep, ScriptedClient, build_invoker, rate_limited


@pytest.mark.asyncio
async def test_retries_exhausted_after_exactly_five_attempts() -> None:
    client = ScriptedClient(*(HttpError(503) for _ in range(5)))
    sleep = RecordingSleep()
    invoker = build_invoker(client, sleep=sleep)

    with pytest.raises(RetriesExhaustedError) as exc_info:
        await invoker.invoke(
            "prompt", max_attempts=5, retryable=RATE_LIMITED_OR_UNAVAILABLE
        )

    assert client.calls == 5
    assert exc_info.value.attempts == 5
    assert isinstance(exc_info.value.last_error, TransientUpstreamError)
    assert sleep.delays == [5.0, 10.0, 20.0, 30.0]


@pytest.mark.asyncio
async def test_success_on_fourth_attempt_reports_three_retries() -> None:
    client = ScriptedClient(rate_limited(), rate_limited(), HttpError(503), "done")
    sleep = RecordingSleep()
    invoker = build_invoker(client, sleep=sleep)

    result = await invoker.invoke(
        "prompt", max_attempts=5, retryable=RATE_LIMITED_OR_UNAVAILABLE
    )

    assert result.raw_text == "done"
    assert result.retries_used == 3
    assert result.attempts == 4
    assert sleep.delays == pytest.approx([10.5, 10.5, 20.0])


@pytest.mark.asyncio
async def test_first_attempt_success_has_zero_retries() -> None:
    client = ScriptedClient("ok")
    sleep = RecordingSleep()

    result = await build_invoker(client, sleep=sleep).invoke(
        "prompt", max_attempts=5, retryable=RATE_LIMITED_OR_UNAVAILABLE
    )

    assert result.retries_used == 0
    assert sleep.delays == []
    assert client.models == ["gemini-1.5-flash"]


@pytest.mark.asyncio
async def test_fatal_error_is_not_retried() -> None:
    client = ScriptedClient(HttpError(400, "bad request"), "never reached")
    sleep = RecordingSleep()

    with pytest.raises(FatalUpstreamError) as exc_info:
        await build_invoker(client, sleep=sleep).invoke(
            "prompt", max_attempts=5, retryable=RATE_LIMITED_OR_UNAVAILABLE
        )

    assert client.calls == 1
    assert sleep.delays == []
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_rate_limited_only_budget_does_not_retry_unavailable() -> None:
    client = ScriptedClient(HttpError(503), "never reached")
    sleep = RecordingSleep()

    with pytest.raises(TransientUpstreamError) as exc_info:
        await build_invoker(client, sleep=sleep).invoke(
            "prompt", max_attempts=3, retryable=RATE_LIMITED_ONLY
        )

    assert exc_info.value.classification == "service_unavailable"
    assert client.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_rate_limited_only_budget_stops_after_three_attempts() -> None:
    client = ScriptedClient(rate_limited(), rate_limited(), rate_limited())

    with pytest.raises(RetriesExhaustedError):
        await build_invoker(client).invoke(
            "prompt", max_attempts=3, retryable=RATE_LIMITED_ONLY
        )

    assert client.calls == 3


@pytest.mark.asyncio
async def test_retry_delay_hint_is_honoured_and_capped() -> None:
    client = ScriptedClient(rate_limited("2s"), rate_limited("52s"), "ok")
    sleep = RecordingSleep()

    await build_invoker(client, sleep=sleep).invoke(
        "prompt", max_attempts=5, retryable=RATE_LIMITED_ONLY
    )

    assert sleep.delays == pytest.approx([2.5, 30.0])


@pytest.mark.asyncio
async def test_run_with_retry_reports_attempts_to_observers() -> None:
    attempts: list[int] = []
    retries: list[tuple[int, float]] = []
    sleep = RecordingSleep()
    calls = {"count": 0}

    async def _operation() -> str:
        calls["count"] += 1
        if calls["count"] < 3:
            raise RuntimeError("flaky")
        return "value"

    outcome = await run_with_retry(
        operation=_operation,
        should_retry=lambda error: isinstance(error, RuntimeError),
        compute_delay=lambda attempt, error: float(attempt + 1),
        max_attempts=4,
        sleep_fn=sleep,
        on_attempt=attempts.append,
        on_retry=lambda attempt, delay, error: retries.append((attempt, delay)),
    )

    assert outcome.value == "value"
    assert outcome.retries_used == 2
    assert attempts == [0, 1, 2]
    assert retries == [(0, 1.0), (1, 2.0)]
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_run_with_retry_rejects_empty_budget() -> None:
    async def _operation() -> str:
        return "unused"

    with pytest.raises(ValueError):
        await run_with_retry(
            operation=_operation,
            should_retry=lambda error: True,
            compute_delay=lambda attempt, error: 0.0,
            max_attempts=0,
        )
