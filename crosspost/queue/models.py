"""
Queue-side data types: the persisted job row, its states, the outcome a
worker reports for one attempt, and the retry backoff policy.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from crosspost.content.models import PublishJobPayload

QUEUE_NAME = "post-publishing"
JOB_NAME = "publish"


class JobState(str, Enum):
    WAITING = "waiting"         # due now, claimable
    DELAYED = "delayed"         # stored as waiting, run_at in the future
    ACTIVE = "active"           # claimed, lease held by a worker
    COMPLETED = "completed"
    FAILED = "failed"           # attempts exhausted or terminal outcome


class Job(BaseModel):
    """One persisted unit of work: publish target T of post P."""

    id: str
    queue: str = QUEUE_NAME
    name: str = JOB_NAME
    data: dict[str, Any] = Field(default_factory=dict)
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    max_attempts: int = 3
    run_at: float
    created_at: float
    processed_at: Optional[float] = None
    finished_at: Optional[float] = None
    lease_token: Optional[str] = None
    lease_until: Optional[float] = None
    stalled_count: int = 0
    failed_reason: Optional[str] = None
    return_value: Optional[str] = None

    @property
    def payload(self) -> PublishJobPayload:
        return PublishJobPayload.from_dict(self.data)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Success:
    value: Optional[str] = None


@dataclass(frozen=True)
class RetryableFailure:
    reason: str
    retry_after: Optional[float] = None     # seconds, from the platform


@dataclass(frozen=True)
class TerminalFailure:
    reason: str


JobOutcome = Union[Success, RetryableFailure, TerminalFailure]


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Delay before retry number ``attempts_made`` (1-based).

    exponential: delay * 2 ** (attempts_made - 1)   → 30s, 60s, 120s …
    linear:      delay * attempts_made               → 30s, 60s, 90s …
    """

    type: str = "exponential"
    delay: float = 30.0

    def __post_init__(self) -> None:
        if self.type not in ("exponential", "linear"):
            raise ValueError(f"unknown backoff type {self.type!r}")
        if self.delay <= 0:
            raise ValueError("backoff delay must be positive")

    def delay_for(self, attempts_made: int) -> float:
        n = max(1, attempts_made)
        if self.type == "linear":
            return self.delay * n
        return self.delay * 2 ** (n - 1)
