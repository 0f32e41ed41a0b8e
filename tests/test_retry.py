"""
Tests for the retry policy.
"""
import pytest
from sqlalchemy.exc import OperationalError

from meeting_followup.exceptions import (
    MalformedOutputError,
    PermanentIntegrationError,
    RateLimitError,
    TransientIntegrationError,
)
from meeting_followup.retry import RetryPolicy


class Flaky:
    """Raises the queued errors, then returns ``result``."""

    def __init__(self, *errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.mark.unit
class TestRetryPolicy:
    """Test retry classification and backoff."""

    async def test_transient_error_is_retried(self, fast_retry):
        """Test that a transient failure followed by success returns the result."""
        fn = Flaky(TransientIntegrationError("timeout"))

        assert await fast_retry.run(fn) == "ok"
        assert fn.calls == 2

    async def test_budget_exhausted_reraises_last_error(self, fast_retry):
        """Test that the last error surfaces after max_attempts calls."""
        fn = Flaky(*(TransientIntegrationError(f"boom {i}") for i in range(5)))

        with pytest.raises(TransientIntegrationError, match="boom 2"):
            await fast_retry.run(fn)
        assert fn.calls == 3

    async def test_permanent_error_is_not_retried(self, fast_retry):
        """Test that a permanent failure is raised on the first attempt."""
        fn = Flaky(PermanentIntegrationError("unsupported audio"))

        with pytest.raises(PermanentIntegrationError):
            await fast_retry.run(fn)
        assert fn.calls == 1

    async def test_arguments_are_passed_through(self, fast_retry):
        """Test that positional and keyword arguments reach the callable."""
        seen = {}

        async def fn(meeting_id, flag=False):
            seen.update(meeting_id=meeting_id, flag=flag)
            return meeting_id

        assert await fast_retry.run(fn, "m1", flag=True) == "m1"
        assert seen == {"meeting_id": "m1", "flag": True}

    def test_default_classification(self):
        """Test which errors the default policy retries."""
        policy = RetryPolicy()

        assert policy.is_retryable(TransientIntegrationError("x"))
        assert policy.is_retryable(RateLimitError("x", retry_after=3))
        assert policy.is_retryable(MalformedOutputError("x"))
        assert not policy.is_retryable(PermanentIntegrationError("x"))
        assert not policy.is_retryable(ValueError("x"))

    def test_custom_classification(self):
        """Test a policy that also retries database errors."""
        policy = RetryPolicy(retry_on=(TransientIntegrationError, OperationalError))

        assert policy.is_retryable(OperationalError("SELECT 1", {}, Exception("locked")))

    def test_backoff_is_exponential_and_capped(self):
        """Test the wait after each failed attempt."""
        policy = RetryPolicy(backoff_base=2.0, min_wait=1.0, max_wait=10.0)

        assert [policy.backoff(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_invalid_max_attempts(self):
        """Test that at least one attempt is required."""
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_from_settings(self, test_settings):
        """Test building a policy from settings with overrides."""
        policy = RetryPolicy.from_settings(test_settings, max_attempts=7)

        assert policy.max_attempts == 7
        assert policy.backoff(1) == test_settings.retry_min_wait
