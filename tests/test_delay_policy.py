from __future__ import annotations

import pytest

from legalyze.pipeline.delay_policy import MAX_DELAY_SECONDS, compute_delay, parse_delay


@pytest.mark.parametrize(
    ("hint", "expected"),
    [
        ("52s", 52.0),
        ("1.2s", 1.2),
        ("5", 5.0),
        (" 7s ", 7.0),
        ("not-a-number", 10.0),
        ("", 10.0),
        (None, 10.0),
        ("-3s", 10.0),
        ("nan", 10.0),
        ("infs", 10.0),
    ],
)
def test_parse_delay_falls_back_to_ten_seconds(hint: str | None, expected: float) -> None:
    assert parse_delay(hint) == pytest.approx(expected)


def test_rate_limited_delay_uses_hint_exponent_and_jitter() -> None:
    assert compute_delay("rate_limited", 0, None, random_fn=lambda: 0.5) == pytest.approx(10.5)
    assert compute_delay("rate_limited", 0, "1.2s", random_fn=lambda: 0.5) == pytest.approx(1.7)
    assert compute_delay("rate_limited", 4, "1.2s", random_fn=lambda: 0.0) == pytest.approx(16.0)


def test_rate_limited_delay_is_capped() -> None:
    assert compute_delay("rate_limited", 0, "52s", random_fn=lambda: 0.99) == MAX_DELAY_SECONDS
    assert compute_delay("rate_limited", 10, None, random_fn=lambda: 0.0) == MAX_DELAY_SECONDS


def test_service_unavailable_delay_doubles_without_jitter() -> None:
    def _no_jitter() -> float:
        raise AssertionError("service_unavailable delays must not use jitter")

    delays = [
        compute_delay("service_unavailable", attempt, random_fn=_no_jitter)
        for attempt in range(5)
    ]

    assert delays == [5.0, 10.0, 20.0, 30.0, 30.0]


def test_delay_always_within_bounds() -> None:
    for attempt in range(8):
        for jitter in (0.0, 0.25, 0.999):
            for hint in (None, "0s", "3s", "29.9s", "120s", "garbage"):
                delay = compute_delay(
                    "rate_limited", attempt, hint, random_fn=lambda j=jitter: j
                )
                assert 0.0 <= delay <= MAX_DELAY_SECONDS


def test_custom_cap_is_honoured() -> None:
    assert compute_delay("service_unavailable", 3, max_delay_seconds=12.0) == 12.0


def test_non_retryable_classification_has_no_delay() -> None:
    with pytest.raises(ValueError):
        compute_delay("fatal", 0)

    with pytest.raises(ValueError):
        compute_delay("rate_limited", -1)
