"""
Process-wide wiring: one explicitly constructed container of every
long-lived collaborator, opened at start-up and closed on shutdown.

Usage::

    with Pipeline.open(settings) as pipeline:
        pipeline.composer().submit(user_id, [account_id], "hello")
        pipeline.worker().run()
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from config.settings import Settings
from crosspost.accounts.cipher import TokenCipher
from crosspost.accounts.refresh import build_refreshers
from crosspost.accounts.resolver import CredentialResolver
from crosspost.content.storage import PipelineStore
from crosspost.content.submission import PostComposer
from crosspost.errors import ConfigurationError
from crosspost.publish import PublisherRegistry, default_registry
from crosspost.queue.aggregate import StatusAggregator
from crosspost.queue.broker import JobQueue
from crosspost.queue.limiter import SharedRateLimiter
from crosspost.queue.models import BackoffPolicy
from crosspost.queue.worker import PublishWorker, WorkerMetrics

logger = logging.getLogger(__name__)


class Pipeline:
    def __init__(
        self,
        settings: Settings,
        store: PipelineStore,
        queue: JobQueue,
        cipher: TokenCipher,
        http: httpx.Client,
        registry: Optional[PublisherRegistry] = None,
        resolver: Optional[CredentialResolver] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.queue = queue
        self.cipher = cipher
        self.http = http
        self.registry = registry or default_registry(settings, http)
        self.resolver = resolver or CredentialResolver(
            store, cipher, build_refreshers(settings, http)
        )
        self.aggregator = StatusAggregator(store)
        self.metrics = WorkerMetrics()

    @classmethod
    def open(cls, settings: Settings) -> "Pipeline":
        """Validate required configuration and open every connection."""
        missing = settings.missing_required()
        if missing:
            raise ConfigurationError(
                "Missing required configuration: " + ", ".join(missing)
            )
        cipher = TokenCipher(settings.token_encryption_key)
        store = PipelineStore(settings.database_path)
        queue = JobQueue(
            settings.queue_path,
            max_attempts=settings.job_attempts,
            backoff=BackoffPolicy(settings.backoff_type, settings.backoff_delay_seconds),
            lock_duration=settings.lock_duration_seconds,
            max_stalled_count=settings.max_stalled_count,
            keep_completed_seconds=settings.keep_completed_seconds,
            keep_completed_count=settings.keep_completed_count,
            keep_failed_seconds=settings.keep_failed_seconds,
        )
        http = httpx.Client(timeout=settings.http_timeout, follow_redirects=True)
        logger.debug(
            "Pipeline opened (db=%s, queue=%s)", settings.database_path, settings.queue_path
        )
        return cls(settings, store, queue, cipher, http)

    def composer(self) -> PostComposer:
        return PostComposer(
            self.store,
            self.queue,
            self.aggregator,
            horizon_days=self.settings.schedule_horizon_days,
            grace_seconds=self.settings.schedule_grace_seconds,
        )

    def worker(
        self,
        *,
        concurrency: Optional[int] = None,
        rate_max: Optional[int] = None,
        rate_duration_ms: Optional[int] = None,
    ) -> PublishWorker:
        s = self.settings
        limiter = SharedRateLimiter(
            self.queue,
            rate_max or s.rate_limit_max,
            (rate_duration_ms or s.rate_limit_duration_ms) / 1000,
        )
        return PublishWorker(
            self.queue,
            self.store,
            self.resolver,
            self.registry,
            self.aggregator,
            concurrency=concurrency or s.worker_concurrency,
            limiter=limiter,
            poll_interval=s.poll_interval_seconds,
            metrics=self.metrics,
        )

    def close(self) -> None:
        self.http.close()
        self.queue.close()
        self.store.close()
        logger.debug("Pipeline closed")

    def __enter__(self) -> "Pipeline":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
