from __future__ import annotations

from regime_trader.errors import ExecutionFailure
from regime_trader.exec.retry import FailedFinal, FailedRetryable, Succeeded, submit_with_retry


class _Flaky:
    def __init__(self, failures: int, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or ExecutionFailure("gateway timeout")
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "tx-1"


def test_first_attempt_succeeds() -> None:
    sleeps: list[float] = []
    outcome = submit_with_retry(_Flaky(0), sleep=sleeps.append)
    assert outcome == Succeeded(value="tx-1", attempts=1)
    assert sleeps == []


def test_retries_once_after_fixed_delay() -> None:
    sleeps: list[float] = []
    action = _Flaky(1)
    outcome = submit_with_retry(action, attempts=2, backoff_s=2.0, sleep=sleeps.append)
    assert isinstance(outcome, Succeeded)
    assert outcome.attempts == 2
    assert sleeps == [2.0]


def test_gives_up_after_two_attempts() -> None:
    action = _Flaky(5)
    outcome = submit_with_retry(action, attempts=2, sleep=lambda _: None)
    assert isinstance(outcome, FailedRetryable)
    assert outcome.attempts == 2
    assert "gateway timeout" in outcome.error
    assert action.calls == 2


def test_unexpected_error_is_final() -> None:
    action = _Flaky(1, ValueError("bad symbol"))
    outcome = submit_with_retry(action, sleep=lambda _: None)
    assert isinstance(outcome, FailedFinal)
    assert action.calls == 1
