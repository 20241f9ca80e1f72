"""Backoff delays for retryable upstream errors.

Rate-limited calls honour the upstream ``retryDelay`` hint (or a 10 second
default) but never wait less than the exponential component, plus up to one
second of jitter. Service-unavailable calls use a plain ``5 * 2**attempt``
schedule. Every delay is capped at ``MAX_DELAY_SECONDS``.
"""

from __future__ import annotations

import math
import random
from typing import Callable

from legalyze.utils.error_taxonomy import ErrorClassification

MAX_DELAY_SECONDS = 30.0
DEFAULT_HINT_SECONDS = 10.0
_EXPONENTIAL_BASE_SECONDS = 1.0
_SERVICE_UNAVAILABLE_BASE_SECONDS = 5.0
_MAX_JITTER_SECONDS = 1.0


def parse_delay(hint: str | None) -> float:
    if hint is None:
        return DEFAULT_HINT_SECONDS

    text = str(hint).strip()
    if text.endswith("s"):
        text = text[:-1].strip()

    try:
        seconds = float(text)
    except ValueError:
        return DEFAULT_HINT_SECONDS

    if not math.isfinite(seconds) or seconds < 0:
        return DEFAULT_HINT_SECONDS
    return seconds


def compute_delay(
    classification: ErrorClassification,
    attempt: int,
    hint: str | None = None,
    *,
    random_fn: Callable[[], float] = random.random,
    max_delay_seconds: float = MAX_DELAY_SECONDS,
) -> float:
    if attempt < 0:
        raise ValueError(f"attempt must be non-negative, got {attempt}")

    if classification == "rate_limited":
        exponential = (2**attempt) * _EXPONENTIAL_BASE_SECONDS
        jitter = random_fn() * _MAX_JITTER_SECONDS
        delay = max(parse_delay(hint), exponential) + jitter
    elif classification == "service_unavailable":
        delay = _SERVICE_UNAVAILABLE_BASE_SECONDS * (2**attempt)
    else:
        raise ValueError(f"No backoff for non-retryable classification: {classification}")

    return max(0.0, min(delay, max_delay_seconds))
