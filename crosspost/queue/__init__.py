"""
Queue package — durable job queue, rate limiter, status aggregation, worker.
"""

from crosspost.queue.aggregate import StatusAggregator, aggregate_status
from crosspost.queue.broker import JobQueue, StalledReport
from crosspost.queue.limiter import RateLimiter, SharedRateLimiter
from crosspost.queue.models import (
    BackoffPolicy,
    Job,
    JobOutcome,
    JobState,
    RetryableFailure,
    Success,
    TerminalFailure,
)

__all__ = [
    "JobQueue",
    "StalledReport",
    "RateLimiter",
    "SharedRateLimiter",
    "StatusAggregator",
    "aggregate_status",
    "BackoffPolicy",
    "Job",
    "JobOutcome",
    "JobState",
    "Success",
    "RetryableFailure",
    "TerminalFailure",
]
