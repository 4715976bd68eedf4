"""Tests for the retry policy."""

from datetime import UTC, datetime, timedelta

import pytest

from analytics_exports.lib.pipeline.results import Cancelled, PermanentFailure, TransientFailure
from analytics_exports.lib.pipeline.retry import RetryPolicy


class TestRetryPolicy:
    def test_transient_failure_retried_below_cap(self) -> None:
        policy = RetryPolicy()
        assert policy.should_retry(TransientFailure("io"), attempts=1) is True
        assert policy.should_retry(TransientFailure("io"), attempts=2) is True

    def test_cap_reached(self) -> None:
        assert RetryPolicy().should_retry(TransientFailure("io"), attempts=3) is False

    def test_permanent_and_cancelled_never_retried(self) -> None:
        policy = RetryPolicy()
        assert policy.should_retry(PermanentFailure("bad filters"), attempts=1) is False
        assert policy.should_retry(Cancelled(), attempts=1) is False

    def test_backoff_schedule(self) -> None:
        policy = RetryPolicy()
        assert policy.delay_for(1) == timedelta(seconds=60)
        assert policy.delay_for(2) == timedelta(seconds=300)
        assert policy.delay_for(3) == timedelta(seconds=900)
        assert policy.delay_for(7) == timedelta(seconds=900)

    def test_next_attempt_at(self) -> None:
        now = datetime(2026, 3, 1, tzinfo=UTC)
        assert RetryPolicy().next_attempt_at(2, now) == now + timedelta(minutes=5)

    def test_empty_schedule_retries_immediately(self) -> None:
        assert RetryPolicy(backoff_seconds=()).delay_for(1) == timedelta(0)

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)
