import pytest

from common.errors import PermanentSourceError, TransientSourceError
from common.retry import RetryPolicy


def test_backoff_is_exponential_and_capped():
    p = RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=5.0)
    assert [p.get_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]


def test_transient_errors_are_retried_until_success():
    sleeps, calls = [], []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TransientSourceError("timeout")
        return "ok"

    p = RetryPolicy(max_attempts=3, base_delay=0.5)
    assert p.call(flaky, sleep=sleeps.append) == "ok"
    assert sleeps == [0.5, 1.0]


def test_last_error_is_reraised():
    p = RetryPolicy(max_attempts=2, base_delay=0.1)
    retries = []

    def always():
        raise TransientSourceError("still down")

    with pytest.raises(TransientSourceError):
        p.call(always, sleep=lambda s: None, on_retry=lambda n, e, d: retries.append(n))
    assert retries == [1]


def test_permanent_errors_are_never_retried():
    calls = []

    def gone():
        calls.append(1)
        raise PermanentSourceError("HTTP 404")

    with pytest.raises(PermanentSourceError):
        RetryPolicy(max_attempts=5).call(gone, sleep=lambda s: pytest.fail("slept"))
    assert len(calls) == 1


def test_retryable_kinds_are_configurable():
    p = RetryPolicy(max_attempts=2, base_delay=0, retryable=(KeyError,))
    assert p.is_retryable(KeyError("x"))
    assert not p.is_retryable(TransientSourceError("x"))


def test_invalid_attempts():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    assert RetryPolicy.none().max_attempts == 1
