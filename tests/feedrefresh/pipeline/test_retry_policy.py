"""Tests for the exponential backoff RetryPolicy."""

from datetime import UTC, datetime, timedelta

import pytest

from feedrefresh.db.types import RefreshJob
from feedrefresh.pipeline import RetryDecision, RetryPolicy


@pytest.mark.unit
def test_default_policy_retries_after_5s_then_10s_then_gives_up():
    """The default policy is 3 attempts with a 5s base delay."""
    policy = RetryPolicy()

    assert policy.decide(1) == RetryDecision(retry=True, delay=timedelta(seconds=5))
    assert policy.decide(2) == RetryDecision(retry=True, delay=timedelta(seconds=10))
    assert policy.decide(3) == RetryDecision(retry=False)


@pytest.mark.unit
@pytest.mark.parametrize(
    "attempt, expected_ms",
    [(0, 5000), (1, 10000), (2, 20000), (3, 40000)],
)
def test_next_delay_doubles_per_attempt(attempt: int, expected_ms: int):
    """Each retry waits twice as long as the previous one."""
    policy = RetryPolicy(base_delay=timedelta(milliseconds=5000), max_attempts=10)
    assert policy.next_delay(attempt) == timedelta(milliseconds=expected_ms)


@pytest.mark.unit
def test_single_attempt_never_retries():
    policy = RetryPolicy(max_attempts=1)
    assert policy.decide(1).retry is False


@pytest.mark.unit
def test_decide_beyond_ceiling_does_not_retry():
    assert RetryPolicy(max_attempts=3).decide(7).retry is False


@pytest.mark.unit
def test_zero_base_delay_retries_immediately():
    policy = RetryPolicy(base_delay=timedelta(0), max_attempts=2)
    assert policy.decide(1) == RetryDecision(retry=True, delay=timedelta(0))


@pytest.mark.unit
def test_invalid_arguments_raise_value_error():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(base_delay=timedelta(seconds=-1))
    with pytest.raises(ValueError):
        RetryPolicy().next_delay(-1)
    with pytest.raises(ValueError):
        RetryPolicy().decide(0)


@pytest.mark.unit
def test_for_job_uses_options_captured_on_job():
    """The policy is rebuilt from the job, not from current settings."""
    now = datetime(2024, 1, 1, tzinfo=UTC)
    job = RefreshJob(
        dedupe_key="feed-1",
        feed_id="1",
        feed_url="https://example.com/feed.xml",
        max_attempts=5,
        backoff_delay_ms=250,
        enqueued_at=now,
        scheduled_at=now,
    )

    policy = RetryPolicy.for_job(job)

    assert policy.max_attempts == 5
    assert policy.base_delay == timedelta(milliseconds=250)
    assert policy.decide(3) == RetryDecision(
        retry=True, delay=timedelta(milliseconds=1000)
    )
