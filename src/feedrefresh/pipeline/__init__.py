"""Refresh pipeline: rate limiting, retries, workers, and scheduling of due feeds."""

from .orchestrator import RefreshOrchestrator
from .rate_limiter import SlidingWindowRateLimiter
from .retry_policy import RetryDecision, RetryPolicy
from .worker_pool import OutcomeListener, WorkerPool

__all__ = [
    "OutcomeListener",
    "RefreshOrchestrator",
    "RetryDecision",
    "RetryPolicy",
    "SlidingWindowRateLimiter",
    "WorkerPool",
]
