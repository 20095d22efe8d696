"""
Publish worker: pulls jobs from the queue and runs one publish attempt each.

Per attempt:

  claim → target already published?  → Success (no second publish)
        → resolve credentials        → failure: target failed, aggregate
        → target publishing, aggregate
        → adapter.publish            → failure: target failed, aggregate
        → target published, aggregate → Success(platform post id)

The worker never raises to trigger a retry; it returns a ``JobOutcome``
and the queue decides redelivery from it.  Concurrency is a bounded thread
pool; job starts go through a ``RateLimiter`` and a background thread
renews the leases of in-flight jobs.
"""

from __future__ import annotations

import contextlib
import datetime as dt
import logging
import sqlite3
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterator, Optional

from crosspost.accounts.resolver import CredentialResolver
from crosspost.content.models import PostTarget, TargetStatus
from crosspost.content.storage import PipelineStore
from crosspost.errors import CrosspostError, classify_error, is_retryable
from crosspost.publish.base import PublisherRegistry
from crosspost.queue.aggregate import StatusAggregator
from crosspost.queue.broker import JobQueue, StalledReport
from crosspost.queue.limiter import RateLimiter
from crosspost.queue.models import (
    Job,
    JobOutcome,
    RetryableFailure,
    Success,
    TerminalFailure,
)

logger = logging.getLogger(__name__)


class WorkerMetrics:
    """Counters exposed by the health server.  Safe to share between threads."""

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self.started_at = self._clock()
        self._active = 0
        self.last_job_at: Optional[float] = None
        self.jobs_processed = 0
        self.jobs_failed = 0

    @property
    def processing(self) -> bool:
        with self._lock:
            return self._active > 0

    @property
    def uptime(self) -> float:
        return self._clock() - self.started_at

    def job_started(self) -> None:
        with self._lock:
            self._active += 1
            self.last_job_at = self._clock()

    def job_finished(self, succeeded: bool) -> None:
        with self._lock:
            self._active = max(0, self._active - 1)
            if succeeded:
                self.jobs_processed += 1
            else:
                self.jobs_failed += 1

    def snapshot(self) -> dict:
        with self._lock:
            last = (
                dt.datetime.fromtimestamp(self.last_job_at, tz=dt.timezone.utc).isoformat()
                if self.last_job_at is not None
                else None
            )
            return {
                "processing": self._active > 0,
                "lastJobAt": last,
                "jobsProcessed": self.jobs_processed,
                "jobsFailed": self.jobs_failed,
            }


class PublishWorker:
    def __init__(
        self,
        queue: JobQueue,
        store: PipelineStore,
        resolver: CredentialResolver,
        registry: PublisherRegistry,
        aggregator: Optional[StatusAggregator] = None,
        *,
        concurrency: int = 3,
        limiter: Optional[RateLimiter] = None,
        poll_interval: float = 1.0,
        metrics: Optional[WorkerMetrics] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.store = store
        self.resolver = resolver
        self.registry = registry
        self.aggregator = aggregator or StatusAggregator(store)
        self.concurrency = concurrency
        self.limiter = limiter
        self.poll_interval = poll_interval
        self._renew_check = min(poll_interval, queue.lock_duration / 4)
        self.metrics = metrics or WorkerMetrics()

        self._stop = threading.Event()
        self._slots = threading.BoundedSemaphore(concurrency)
        self._inflight: dict[str, Job] = {}
        self._inflight_lock = threading.Lock()

    # ------------------------------------------------------------------
    # One attempt
    # ------------------------------------------------------------------

    def process(self, job: Job) -> JobOutcome:
        """Run one publish attempt for ``job`` and report its outcome."""
        payload = job.payload
        logger.info(
            "Processing job %s (post=%s account=%s attempt=%d)",
            job.id,
            payload.post_id,
            payload.social_account_id,
            job.attempts_made + 1,
        )

        target = self.store.get_target(payload.target_id)
        if target is None:
            return TerminalFailure(f"Post target {payload.target_id} not found")
        if target.status is TargetStatus.PUBLISHED:
            logger.info("Target %s already published; skipping", target.id)
            return Success(target.platform_post_id)

        try:
            credentials = self.resolver.resolve(payload.social_account_id)
        except Exception as exc:
            return self._fail(target, exc)

        if target.status is not TargetStatus.PUBLISHING:
            if not self.store.transition_target(target.id, TargetStatus.PUBLISHING):
                current = self.store.get_target(target.id)
                if current is not None and current.status is TargetStatus.PUBLISHED:
                    return Success(current.platform_post_id)
                if current is None or current.status is not TargetStatus.PUBLISHING:
                    return TerminalFailure(
                        f"Target {target.id} cannot move to publishing"
                    )
        logger.info("Target %s → publishing", target.id)
        self.aggregator.recompute(target.post_id)

        try:
            publisher = self.registry.get(credentials.platform)
            platform_post_id = publisher.publish(
                credentials, payload.content, payload.media
            )
        except Exception as exc:
            return self._fail(target, exc)

        self.store.transition_target(
            target.id, TargetStatus.PUBLISHED, platform_post_id=platform_post_id
        )
        logger.info(
            "Target %s → published on %s as %s",
            target.id,
            credentials.platform.value,
            platform_post_id,
        )
        self.aggregator.recompute(target.post_id)
        return Success(platform_post_id)

    def _fail(self, target: PostTarget, exc: Exception) -> JobOutcome:
        """Persist the failure on the target, then turn it into an outcome."""
        message = str(exc) or type(exc).__name__
        kind = classify_error(exc)
        if not isinstance(exc, CrosspostError):
            logger.exception("Unexpected error publishing target %s", target.id)
        self.store.transition_target(target.id, TargetStatus.FAILED, error_message=message)
        logger.warning("Target %s → failed (%s): %s", target.id, kind.value, message)
        self.aggregator.recompute(target.post_id)

        if is_retryable(exc):
            return RetryableFailure(message, retry_after=getattr(exc, "retry_after", None))
        return TerminalFailure(message)

    def _fail_stalled(self, report: StalledReport) -> None:
        """Jobs the queue gave up on must still show up as failed targets."""
        for job in report.failed:
            payload = job.payload
            if self.store.transition_target(
                payload.target_id,
                TargetStatus.FAILED,
                error_message=job.failed_reason,
            ):
                self.aggregator.recompute(payload.post_id)

    def _execute(self, job: Job) -> None:
        self.metrics.job_started()
        succeeded = False
        try:
            try:
                outcome = self.process(job)
            except Exception as exc:
                logger.exception("Job %s crashed", job.id)
                outcome = RetryableFailure(str(exc) or type(exc).__name__)
            succeeded = isinstance(outcome, Success)
            self.queue.complete(job, outcome)
        except sqlite3.Error:
            # job stays active until its lease expires; stalled recovery redelivers it
            logger.exception("Job %s: could not record the outcome", job.id)
        finally:
            self.metrics.job_finished(succeeded)
            with self._inflight_lock:
                self._inflight.pop(job.id, None)
            self._slots.release()

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------

    def _renew_leases(self) -> None:
        """Extend every in-flight lease that is past half its duration."""
        horizon = self.queue.now() + self.queue.lock_duration / 2
        with self._inflight_lock:
            due = [j for j in self._inflight.values() if (j.lease_until or 0) <= horizon]
        for job in due:
            if not self.queue.extend_lease(job):
                logger.warning("Job %s: lease lost while in flight", job.id)

    def _keep_leases(self, done: threading.Event) -> None:
        while not done.wait(self._renew_check):
            try:
                self._renew_leases()
            except sqlite3.Error as exc:
                logger.warning("Lease renewal failed: %s", exc)

    @contextlib.contextmanager
    def _lease_keeper(self) -> Iterator[None]:
        """Renew in-flight leases from a background thread while the block runs."""
        done = threading.Event()
        keeper = threading.Thread(
            target=self._keep_leases, args=(done,), name="lease-keeper", daemon=True
        )
        keeper.start()
        try:
            yield
        finally:
            done.set()
            keeper.join()

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    def _claim(self) -> Optional[Job]:
        """Claim a due job, then wait for the rate limiter.  The caller holds a slot."""
        job = self.queue.claim()
        if job is None:
            return None
        with self._inflight_lock:
            self._inflight[job.id] = job
        if self.limiter is not None:
            try:
                self.limiter.acquire()
            except BaseException:
                with self._inflight_lock:
                    self._inflight.pop(job.id, None)
                self.queue.release(job)
                raise
        return job

    def _poll(self) -> Optional[Job]:
        """Recover stalled jobs, then claim one job if a slot frees up in time."""
        self._fail_stalled(self.queue.recover_stalled())
        if not self._slots.acquire(timeout=self.poll_interval):
            return None
        try:
            job = self._claim()
        except BaseException:
            self._slots.release()
            raise
        if job is None:
            self._slots.release()
            self._stop.wait(self.poll_interval)
        return job

    def drain(self, max_jobs: Optional[int] = None) -> int:
        """Process every currently due job on the calling thread.  Returns the count."""
        handled = 0
        with self._lease_keeper():
            self._fail_stalled(self.queue.recover_stalled())
            while max_jobs is None or handled < max_jobs:
                self._slots.acquire()
                try:
                    job = self._claim()
                except BaseException:
                    self._slots.release()
                    raise
                if job is None:
                    self._slots.release()
                    break
                self._execute(job)
                handled += 1
        return handled

    def run(self) -> None:
        """Poll the queue until ``stop()`` is called, then wait for in-flight jobs."""
        self._stop.clear()
        logger.info(
            "Worker started (concurrency=%d, queue=%s)", self.concurrency, self.queue.name
        )

        with self._lease_keeper(), ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="publish"
        ) as pool:
            while not self._stop.is_set():
                try:
                    job = self._poll()
                except sqlite3.Error as exc:
                    logger.warning(
                        "Queue poll failed; retrying in %.1fs: %s", self.poll_interval, exc
                    )
                    self._stop.wait(self.poll_interval)
                    continue
                if job is not None:
                    pool.submit(self._execute, job)

            with self._inflight_lock:
                remaining = len(self._inflight)
            logger.info("Worker stopping; waiting for %d in-flight job(s)", remaining)
        logger.info("Worker stopped")

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()
