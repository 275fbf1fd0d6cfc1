"""Bounded order retry with typed outcomes."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from regime_trader.errors import ExecutionFailure
from regime_trader.utils.logging import get_logger

T = TypeVar("T")

_logger = get_logger("regime_trader.exec.retry")


@dataclass(slots=True, frozen=True)
class Succeeded(Generic[T]):
    value: T
    attempts: int


@dataclass(slots=True, frozen=True)
class FailedRetryable:
    """Every attempt failed with ``ExecutionFailure``; safe to try next cycle."""

    error: str
    attempts: int


@dataclass(slots=True, frozen=True)
class FailedFinal:
    """A non-retryable error aborted the submission."""

    error: str
    attempts: int


def submit_with_retry(
    action: Callable[[], T],
    *,
    attempts: int = 2,
    backoff_s: float = 2.0,
    label: str = "order",
    sleep: Callable[[float], None] = time.sleep,
) -> Succeeded[T] | FailedRetryable | FailedFinal:
    """Run ``action`` up to ``attempts`` times, ``backoff_s`` apart.

    Only ``ExecutionFailure`` is retried. Nothing is raised.
    """
    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(backoff_s),
        retry=retry_if_exception_type(ExecutionFailure),
        sleep=sleep,
        reraise=False,
    )
    made = 0
    try:
        for attempt in retrying:
            with attempt:
                made = attempt.retry_state.attempt_number
                value = action()
            if not attempt.retry_state.outcome.failed:
                return Succeeded(value=value, attempts=made)
    except RetryError as exc:
        error = exc.last_attempt.exception()
        _logger.warning("submit_retries_exhausted", label=label, attempts=made, error=str(error))
        return FailedRetryable(error=str(error), attempts=made)
    except Exception as exc:  # noqa: BLE001 - surfaced as a typed result.
        _logger.error("submit_failed", label=label, attempts=made, error=str(exc))
        return FailedFinal(error=str(exc), attempts=made)
    return FailedFinal(error="no_attempt_made", attempts=made)
