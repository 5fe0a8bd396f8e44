"""
Unit tests for the retry and polling primitives.

Tests:
- Backoff policy construction and delays
- Polling until a predicate accepts the state
- Polling timeouts and early aborts
- Retrying transient failures
"""

import pytest
from unittest.mock import MagicMock

from cloudfleet.errors import CloudError, CloudTimeoutError
from cloudfleet.retry import BackoffPolicy, poll, retry_call

from fakes import FakeClock


class TestBackoffPolicy:
    """Test BackoffPolicy."""

    def test_delay_without_jitter(self):
        """Test delay is the fixed interval when jitter is zero."""
        assert BackoffPolicy(max_attempts=3, interval=2.5).delay() == 2.5

    def test_delay_with_jitter_stays_in_bounds(self):
        """Test jittered delay never exceeds interval plus jitter."""
        policy = BackoffPolicy(max_attempts=3, interval=1.0, jitter=0.5)
        for _ in range(50):
            assert 1.0 <= policy.delay() <= 1.5

    def test_for_timeout(self):
        """Test attempts derived from a timeout and interval."""
        policy = BackoffPolicy.for_timeout(300, 5)
        assert policy.max_attempts == 60
        assert policy.interval == 5

    def test_for_timeout_rounds_up(self):
        """Test a partial interval still gets an attempt."""
        assert BackoffPolicy.for_timeout(7, 5).max_attempts == 2

    def test_for_timeout_zero_interval(self):
        """Test a zero interval yields a single attempt."""
        policy = BackoffPolicy.for_timeout(300, 0)
        assert policy.max_attempts == 1


class TestPoll:
    """Test poll."""

    def test_returns_first_accepted_state(self):
        """Test polling stops as soon as the predicate accepts."""
        clock = FakeClock()
        fetch = MagicMock(side_effect=["pending", "pending", "done", "never"])

        result = poll(fetch, lambda s: s == "done", BackoffPolicy(5, 2), clock, "thing")

        assert result == "done"
        assert fetch.call_count == 3
        assert clock.sleeps == [2, 2]

    def test_timeout_raises(self):
        """Test exhausting the budget raises CloudTimeoutError."""
        clock = FakeClock()
        fetch = MagicMock(return_value="pending")

        with pytest.raises(CloudTimeoutError) as exc_info:
            poll(fetch, lambda s: False, BackoffPolicy(3, 1), clock, "droplet", "digitalocean")

        assert fetch.call_count == 3
        # No sleep after the final attempt
        assert clock.sleeps == [1, 1]
        assert exc_info.value.provider == "digitalocean"
        assert exc_info.value.status_code == 504
        assert "droplet" in exc_info.value.message

    def test_predicate_can_abort(self):
        """Test an exception from the predicate stops polling."""
        clock = FakeClock()

        def is_done(state):
            raise CloudError("vendor reported failure")

        with pytest.raises(CloudError, match="vendor reported failure"):
            poll(lambda: "failed", is_done, BackoffPolicy(5, 1), clock, "thing")

        assert clock.sleeps == []


class TestRetryCall:
    """Test retry_call."""

    def test_retries_transient_then_succeeds(self):
        """Test transient failures are retried."""
        clock = FakeClock()
        fn = MagicMock(side_effect=[CloudError("busy", status_code=503), "ok"])

        result = retry_call(fn, BackoffPolicy(3, 1), clock, lambda e: True)

        assert result == "ok"
        assert fn.call_count == 2
        assert clock.sleeps == [1]

    def test_non_transient_raises_immediately(self):
        """Test non-transient errors are not retried."""
        clock = FakeClock()
        fn = MagicMock(side_effect=CloudError("bad request", status_code=400))

        with pytest.raises(CloudError, match="bad request"):
            retry_call(fn, BackoffPolicy(3, 1), clock, lambda e: e.status_code >= 500)

        assert fn.call_count == 1
        assert clock.sleeps == []

    def test_exhausted_raises_last_error(self):
        """Test the last error propagates once attempts run out."""
        clock = FakeClock()
        errors = [CloudError(f"attempt {i}", status_code=502) for i in range(1, 4)]
        fn = MagicMock(side_effect=errors)

        with pytest.raises(CloudError, match="attempt 3"):
            retry_call(fn, BackoffPolicy(3, 1), clock, lambda e: True)

        assert fn.call_count == 3
        assert len(clock.sleeps) == 2
