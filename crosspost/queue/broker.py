"""
Durable delayed-job queue backed by SQLite.

Jobs live in one table and move through:

  waiting ──claim──→ active ──Success──────────────→ completed
     ↑                 │  ──TerminalFailure────────→ failed
     │                 │  ──RetryableFailure, attempts left → waiting (run_at = now + backoff)
     │                 │  ──RetryableFailure, exhausted ────→ failed
     └──lease expired──┘  (stalled; more than max_stalled_count times → failed)

A ``waiting`` job whose ``run_at`` is in the future is reported as
``delayed``.  ``claim`` is a single ``UPDATE … WHERE id = (SELECT …)``
statement, so two workers (threads or processes sharing the file) can
never hold the same job at once.  Every acknowledgement is conditioned on
the lease token handed out by ``claim``; a worker that lost its lease to
stalled-job recovery cannot overwrite the redelivered attempt.

Table: jobs
  id             TEXT PK   post-<postId>-<targetId>
  queue, name    TEXT
  data           TEXT      JSON payload
  state          TEXT      waiting | active | completed | failed
  attempts_made  INTEGER   failed attempts so far
  max_attempts   INTEGER
  run_at         REAL      epoch seconds, earliest claim time
  lease_token    TEXT      current holder
  lease_until    REAL      epoch seconds
  stalled_count  INTEGER
  failed_reason  TEXT
  return_value   TEXT

Table: job_starts
  queue, started_at   one row per job start inside the rate-limit window,
                      shared by every worker process using the file
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import sqlite3
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

import sqlite_utils

from crosspost.content.models import PublishJobPayload
from crosspost.db import open_database
from crosspost.queue.models import (
    JOB_NAME,
    QUEUE_NAME,
    BackoffPolicy,
    Job,
    JobOutcome,
    JobState,
    RetryableFailure,
    Success,
    TerminalFailure,
)

logger = logging.getLogger(__name__)

STALLED_REASON = "job stalled more than allowable limit"


@dataclass
class StalledReport:
    """Result of one stalled-job sweep."""

    requeued: list[str] = field(default_factory=list)
    failed: list[Job] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.requeued) + len(self.failed)


class JobQueue:
    """
    Persistent ``post-publishing`` queue.

    Usage::

        queue = JobQueue(Path("data/queue.db"))
        queue.enqueue_now(payload)
        queue.enqueue_at(payload, when)
        job = queue.claim()
        queue.complete(job, Success(platform_post_id))
    """

    TABLE = "jobs"
    STARTS_TABLE = "job_starts"

    def __init__(
        self,
        db_path: Path,
        *,
        name: str = QUEUE_NAME,
        max_attempts: int = 3,
        backoff: Optional[BackoffPolicy] = None,
        lock_duration: float = 300.0,
        max_stalled_count: int = 1,
        keep_completed_seconds: float = 86_400,
        keep_completed_count: int = 1000,
        keep_failed_seconds: float = 604_800,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.db_path = db_path
        self.name = name
        self.max_attempts = max_attempts
        self.backoff = backoff or BackoffPolicy()
        self.lock_duration = lock_duration
        self.max_stalled_count = max_stalled_count
        self.keep_completed_seconds = keep_completed_seconds
        self.keep_completed_count = keep_completed_count
        self.keep_failed_seconds = keep_failed_seconds
        self._clock = clock or time.time
        self._db = open_database(db_path)
        self._lock = threading.RLock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _ensure_schema(self) -> None:
        with self._lock:
            tables = set(self._db.table_names())
            if self.STARTS_TABLE not in tables:
                self._db[self.STARTS_TABLE].create(
                    {"id": int, "queue": str, "started_at": float},
                    pk="id",
                    not_null={"queue", "started_at"},
                )
                self._db[self.STARTS_TABLE].create_index(["queue", "started_at"])
            if self.TABLE in tables:
                return
            self._db[self.TABLE].create(
                {
                    "id": str,
                    "queue": str,
                    "name": str,
                    "data": str,
                    "state": str,
                    "attempts_made": int,
                    "max_attempts": int,
                    "run_at": float,
                    "created_at": float,
                    "processed_at": float,
                    "finished_at": float,
                    "lease_token": str,
                    "lease_until": float,
                    "stalled_count": int,
                    "failed_reason": str,
                    "return_value": str,
                },
                pk="id",
                not_null={"id", "queue", "state", "run_at", "created_at"},
            )
            self._db[self.TABLE].create_index(["queue", "state", "run_at"])
            self._db[self.TABLE].create_index(["lease_token"])
            self._db[self.TABLE].create_index(["finished_at"])

    def now(self) -> float:
        return self._clock()

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def enqueue_now(self, payload: PublishJobPayload) -> Job:
        """Insert a job for immediate execution.  Re-enqueueing an existing id is a no-op."""
        return self._insert(payload, self.now())

    def enqueue_at(self, payload: PublishJobPayload, when: dt.datetime) -> Job:
        """Insert a job not claimable before ``when``.  A past ``when`` means now."""
        if when.tzinfo is None:
            when = when.replace(tzinfo=dt.timezone.utc)
        now = self.now()
        run_at = when.timestamp()
        if run_at <= now:
            return self._insert(payload, now)
        job = self._insert(payload, run_at)
        logger.info("Job %s delayed by %.0fs", job.id, job.run_at - now)
        return job

    def _insert(self, payload: PublishJobPayload, run_at: float) -> Job:
        job_id = payload.job_id
        row = {
            "id": job_id,
            "queue": self.name,
            "name": JOB_NAME,
            "data": json.dumps(payload.to_dict()),
            "state": JobState.WAITING.value,
            "attempts_made": 0,
            "max_attempts": self.max_attempts,
            "run_at": run_at,
            "created_at": self.now(),
            "stalled_count": 0,
        }
        with self._lock:
            existed = self._exists(job_id)
            self._db[self.TABLE].insert(row, ignore=True)
            stored = self._db[self.TABLE].get(job_id)
        if existed:
            logger.info("Job %s already enqueued; ignoring duplicate", job_id)
        else:
            logger.info("Enqueued job %s", job_id)
        return self._from_row(stored)

    def _exists(self, job_id: str) -> bool:
        return bool(
            self._db.execute(
                f"SELECT 1 FROM {self.TABLE} WHERE id = ?", [job_id]
            ).fetchone()
        )

    # ------------------------------------------------------------------
    # Claim / lease
    # ------------------------------------------------------------------

    def claim(self) -> Optional[Job]:
        """Atomically take the earliest due waiting job, or None."""
        token = uuid.uuid4().hex
        now = self.now()
        sql = (
            f"UPDATE {self.TABLE} SET state = 'active', lease_token = ?, "
            f"lease_until = ?, processed_at = ? "
            f"WHERE state = 'waiting' AND id = ("
            f"  SELECT id FROM {self.TABLE} WHERE queue = ? AND state = 'waiting' "
            f"  AND run_at <= ? ORDER BY run_at, rowid LIMIT 1)"
        )
        with self._lock, self._db.conn:
            cursor = self._db.execute(
                sql, [token, now + self.lock_duration, now, self.name, now]
            )
        if cursor.rowcount != 1:
            return None
        with self._lock:
            rows = list(self._db[self.TABLE].rows_where("lease_token = ?", [token]))
        if not rows:
            return None
        return self._from_row(rows[0])

    def extend_lease(self, job: Job) -> bool:
        """Push the lease of an in-flight job forward.  False if the lease was lost."""
        until = self.now() + self.lock_duration
        with self._lock, self._db.conn:
            cursor = self._db.execute(
                f"UPDATE {self.TABLE} SET lease_until = ? "
                f"WHERE id = ? AND lease_token = ? AND state = 'active'",
                [until, job.id, job.lease_token],
            )
        if cursor.rowcount == 1:
            job.lease_until = until
            return True
        return False

    def release(self, job: Job) -> bool:
        """Hand a claimed job back unprocessed.  Does not count as a stall."""
        released = self._release(job, state=JobState.WAITING.value, run_at=self.now())
        if released:
            logger.info("Job %s released back to the queue", job.id)
        return released

    def reserve_start(self, max_starts: int, period: float) -> float:
        """
        Record one job start unless ``max_starts`` were already recorded in
        the last ``period`` seconds by any process sharing this file.

        Returns 0.0 when the start was recorded, otherwise the seconds until
        the oldest start in the window expires.
        """
        now = self.now()
        with self._lock:
            conn = self._db.conn
            # write lock up front: the count and the insert must not interleave
            conn.execute("BEGIN IMMEDIATE")
            try:
                conn.execute(
                    f"DELETE FROM {self.STARTS_TABLE} WHERE queue = ? AND started_at <= ?",
                    [self.name, now - period],
                )
                count, oldest = conn.execute(
                    f"SELECT COUNT(*), MIN(started_at) FROM {self.STARTS_TABLE} WHERE queue = ?",
                    [self.name],
                ).fetchone()
                if count < max_starts:
                    conn.execute(
                        f"INSERT INTO {self.STARTS_TABLE} (queue, started_at) VALUES (?, ?)",
                        [self.name, now],
                    )
                    wait = 0.0
                else:
                    wait = period - (now - oldest)
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
        return wait

    # ------------------------------------------------------------------
    # Acknowledge
    # ------------------------------------------------------------------

    def complete(self, job: Job, outcome: JobOutcome) -> Optional[JobState]:
        """
        Record the outcome of one attempt and decide redelivery.

        Returns the job's new state, or None if the caller no longer holds
        the lease (the acknowledgement is then ignored).
        """
        now = self.now()
        updates: dict = {"lease_token": None, "lease_until": None}

        if isinstance(outcome, Success):
            new_state = JobState.COMPLETED
            updates.update(
                state=new_state.value,
                finished_at=now,
                return_value=outcome.value,
            )
        elif isinstance(outcome, TerminalFailure):
            new_state = JobState.FAILED
            updates.update(
                state=new_state.value,
                finished_at=now,
                failed_reason=outcome.reason,
                attempts_made=job.attempts_made + 1,
            )
        elif isinstance(outcome, RetryableFailure):
            attempts = job.attempts_made + 1
            updates.update(failed_reason=outcome.reason, attempts_made=attempts)
            if attempts >= job.max_attempts:
                new_state = JobState.FAILED
                updates.update(state=new_state.value, finished_at=now)
            else:
                new_state = JobState.WAITING
                delay = max(self.backoff.delay_for(attempts), outcome.retry_after or 0.0)
                updates.update(state=new_state.value, run_at=now + delay)
        else:
            raise TypeError(f"unknown job outcome {outcome!r}")

        assignments = ", ".join(f"{col} = ?" for col in updates)
        with self._lock, self._db.conn:
            cursor = self._db.execute(
                f"UPDATE {self.TABLE} SET {assignments} "
                f"WHERE id = ? AND lease_token = ? AND state = 'active'",
                [*updates.values(), job.id, job.lease_token],
            )
        if cursor.rowcount != 1:
            logger.warning("Job %s: lease lost, ignoring %s", job.id, type(outcome).__name__)
            return None

        if new_state is JobState.WAITING:
            logger.info(
                "Job %s attempt %d/%d failed; retry in %.0fs: %s",
                job.id,
                updates["attempts_made"],
                job.max_attempts,
                updates["run_at"] - now,
                outcome.reason,
            )
        elif new_state is JobState.FAILED:
            logger.error("Job %s failed permanently: %s", job.id, updates["failed_reason"])
        else:
            logger.info("Job %s completed", job.id)

        if new_state is not JobState.WAITING:
            self.prune()
        return new_state

    # ------------------------------------------------------------------
    # Stalled jobs
    # ------------------------------------------------------------------

    def recover_stalled(self) -> StalledReport:
        """Return expired leases to the queue, failing jobs that stalled too often."""
        now = self.now()
        report = StalledReport()
        with self._lock:
            rows = list(
                self._db[self.TABLE].rows_where(
                    "queue = ? AND state = 'active' AND lease_until < ?",
                    [self.name, now],
                )
            )
        for row in rows:
            job = self._from_row(row)
            if job.stalled_count >= self.max_stalled_count:
                changed = self._release(
                    job,
                    state=JobState.FAILED.value,
                    finished_at=now,
                    failed_reason=STALLED_REASON,
                )
                if changed:
                    job.state = JobState.FAILED
                    job.failed_reason = STALLED_REASON
                    report.failed.append(job)
                    logger.error("Job %s: %s", job.id, STALLED_REASON)
            else:
                changed = self._release(
                    job,
                    state=JobState.WAITING.value,
                    run_at=now,
                    stalled_count=job.stalled_count + 1,
                )
                if changed:
                    report.requeued.append(job.id)
                    logger.warning("Job %s stalled; returned to queue", job.id)
        return report

    def _release(self, job: Job, **updates: object) -> bool:
        updates.update(lease_token=None, lease_until=None)
        assignments = ", ".join(f"{col} = ?" for col in updates)
        with self._lock, self._db.conn:
            cursor = self._db.execute(
                f"UPDATE {self.TABLE} SET {assignments} "
                f"WHERE id = ? AND lease_token = ? AND state = 'active'",
                [*updates.values(), job.id, job.lease_token],
            )
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            try:
                row = self._db[self.TABLE].get(job_id)
            except sqlite_utils.db.NotFoundError:
                return None
        return self._from_row(row)

    def counts(self) -> dict[str, int]:
        """Job counts by state, with waiting split into waiting / delayed."""
        now = self.now()
        counts = {state.value: 0 for state in JobState}
        sql = (
            f"SELECT CASE WHEN state = 'waiting' AND run_at > ? THEN 'delayed' "
            f"ELSE state END AS s, COUNT(*) FROM {self.TABLE} "
            f"WHERE queue = ? GROUP BY s"
        )
        with self._lock:
            for state, count in self._db.execute(sql, [now, self.name]).fetchall():
                counts[state] = count
        return counts

    def list_jobs(self, state: JobState, limit: int = 50) -> list[Job]:
        """Jobs in ``state``, earliest due (or most recently finished) first."""
        now = self.now()
        if state is JobState.WAITING:
            where, args, order = "state = 'waiting' AND run_at <= ?", [now], "run_at, rowid"
        elif state is JobState.DELAYED:
            where, args, order = "state = 'waiting' AND run_at > ?", [now], "run_at, rowid"
        elif state is JobState.ACTIVE:
            where, args, order = "state = 'active'", [], "processed_at"
        else:
            where, args, order = "state = ?", [state.value], "finished_at DESC"
        with self._lock:
            rows = list(
                self._db[self.TABLE].rows_where(
                    f"queue = ? AND {where}", [self.name, *args], order_by=order, limit=limit
                )
            )
        return [self._from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def clean(self, state: JobState, grace: float = 0.0) -> int:
        """
        Delete jobs in ``state`` older than ``grace`` seconds.

        Finished jobs age from ``finished_at``; waiting/delayed jobs from
        ``created_at``.  Active jobs are never cleaned.
        """
        if state is JobState.ACTIVE:
            raise ValueError("active jobs cannot be cleaned")
        cutoff = self.now() - grace
        if state in (JobState.COMPLETED, JobState.FAILED):
            where, args = "state = ? AND finished_at <= ?", [state.value, cutoff]
        elif state is JobState.DELAYED:
            where, args = "state = 'waiting' AND run_at > ? AND created_at <= ?", [self.now(), cutoff]
        else:
            where, args = "state = 'waiting' AND run_at <= ? AND created_at <= ?", [self.now(), cutoff]
        with self._lock, self._db.conn:
            cursor = self._db.execute(
                f"DELETE FROM {self.TABLE} WHERE queue = ? AND {where}", [self.name, *args]
            )
        removed = cursor.rowcount
        if removed:
            logger.info("Cleaned %d %s job(s)", removed, state.value)
        return removed

    def prune(self) -> int:
        """Apply the retention policy for completed and failed jobs."""
        now = self.now()
        removed = 0
        with self._lock, self._db.conn:
            removed += self._db.execute(
                f"DELETE FROM {self.TABLE} WHERE queue = ? AND state = 'completed' "
                f"AND finished_at < ?",
                [self.name, now - self.keep_completed_seconds],
            ).rowcount
            removed += self._db.execute(
                f"DELETE FROM {self.TABLE} WHERE queue = ? AND state = 'completed' "
                f"AND id NOT IN (SELECT id FROM {self.TABLE} WHERE queue = ? "
                f"AND state = 'completed' ORDER BY finished_at DESC LIMIT ?)",
                [self.name, self.name, self.keep_completed_count],
            ).rowcount
            removed += self._db.execute(
                f"DELETE FROM {self.TABLE} WHERE queue = ? AND state = 'failed' "
                f"AND finished_at < ?",
                [self.name, now - self.keep_failed_seconds],
            ).rowcount
        if removed:
            logger.debug("Pruned %d finished job(s)", removed)
        return removed

    def ping(self) -> bool:
        try:
            with self._lock:
                self._db.execute("SELECT 1").fetchone()
        except sqlite3.Error:
            return False
        return True

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _from_row(row: dict) -> Job:
        data = dict(row)
        data["data"] = json.loads(row["data"] or "{}")
        return Job.model_validate(data)

    # ------------------------------------------------------------------
    # Context manager / cleanup
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._db.close()

    def __enter__(self) -> "JobQueue":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
