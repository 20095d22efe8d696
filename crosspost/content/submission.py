"""
Post submission: validate a compose request, persist the post with one
target per account, and enqueue one publish job per target.

Nothing is persisted or enqueued when validation fails.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence, Union

from crosspost.content.models import (
    MediaReference,
    Post,
    PostStatus,
    PostTarget,
    PublishJobPayload,
    TargetStatus,
    UrlMedia,
)
from crosspost.content.storage import PipelineStore
from crosspost.errors import ValidationError
from crosspost.queue.aggregate import StatusAggregator, aggregate_status
from crosspost.queue.broker import JobQueue

logger = logging.getLogger(__name__)


@dataclass
class SubmissionReceipt:
    post_id: str
    status: PostStatus
    scheduled_for: Optional[dt.datetime]
    target_count: int
    media_count: int
    job_ids: list[str] = field(default_factory=list)


def parse_schedule(value: Union[str, dt.datetime, None]) -> Optional[dt.datetime]:
    """Accept a datetime or ISO 8601 string (``Z`` suffix allowed); naive means UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = dt.datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValidationError(f"Invalid scheduled time: {value!r}") from exc
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value


class PostComposer:
    def __init__(
        self,
        store: PipelineStore,
        queue: JobQueue,
        aggregator: Optional[StatusAggregator] = None,
        *,
        horizon_days: int = 365,
        grace_seconds: int = 60,
        clock: Optional[Callable[[], dt.datetime]] = None,
    ) -> None:
        self.store = store
        self.queue = queue
        self.aggregator = aggregator or StatusAggregator(store)
        self.horizon = dt.timedelta(days=horizon_days)
        self.grace = dt.timedelta(seconds=grace_seconds)
        self._clock = clock or (lambda: dt.datetime.now(dt.timezone.utc))

    def submit(
        self,
        user_id: str,
        account_ids: Sequence[str],
        content: str = "",
        media: Optional[Sequence[Union[MediaReference, str]]] = None,
        scheduled_for: Union[str, dt.datetime, None] = None,
    ) -> SubmissionReceipt:
        refs = [UrlMedia(url=m) if isinstance(m, str) else m for m in (media or [])]
        when = self._validate(user_id, account_ids, content, refs, scheduled_for)

        post = Post(
            user_id=user_id,
            content=content,
            media_urls=[m.url for m in refs if isinstance(m, UrlMedia)],
            scheduled_for=when,
            status=aggregate_status([TargetStatus.PENDING] * len(account_ids)),
        )
        targets = [PostTarget(post_id=post.id, social_account_id=a) for a in account_ids]
        self.store.create_post(post, targets)

        job_ids: list[str] = []
        enqueue_failed = False
        for target in targets:
            payload = PublishJobPayload(
                post_id=post.id,
                user_id=user_id,
                target_id=target.id,
                social_account_id=target.social_account_id,
                content=content,
                media=refs,
            )
            try:
                job = (
                    self.queue.enqueue_at(payload, when)
                    if when is not None
                    else self.queue.enqueue_now(payload)
                )
            except Exception as exc:
                logger.error("Failed to enqueue target %s: %s", target.id, exc)
                self.store.transition_target(
                    target.id, TargetStatus.FAILED, error_message=f"Failed to enqueue: {exc}"
                )
                enqueue_failed = True
                continue
            job_ids.append(job.id)

        status = self.aggregator.recompute(post.id) if enqueue_failed else post.status
        logger.info(
            "Submitted post %s to %d account(s)%s",
            post.id,
            len(targets),
            f" for {when.isoformat()}" if when else "",
        )
        return SubmissionReceipt(
            post_id=post.id,
            status=status,
            scheduled_for=when,
            target_count=len(targets),
            media_count=len(refs),
            job_ids=job_ids,
        )

    def _validate(
        self,
        user_id: str,
        account_ids: Sequence[str],
        content: str,
        media: Sequence[MediaReference],
        scheduled_for: Union[str, dt.datetime, None],
    ) -> Optional[dt.datetime]:
        """Returns the effective schedule time; None means publish now."""
        if not content.strip() and not media:
            raise ValidationError("Content or media is required")
        if not account_ids:
            raise ValidationError("At least one social account is required")
        if len(set(account_ids)) != len(account_ids):
            raise ValidationError("Duplicate social accounts in request")

        when = parse_schedule(scheduled_for)
        now = self._clock()
        if when is not None:
            if when - now > self.horizon:
                raise ValidationError(
                    f"Scheduled time is more than {self.horizon.days} days ahead"
                )
            if when < now - self.grace:
                logger.warning("Scheduled time %s is in the past, publishing now", when.isoformat())
                when = None
            elif when <= now:
                when = None

        accounts = self.store.get_accounts(list(account_ids))
        owned = {a.id for a in accounts if a.user_id == user_id}
        if len(owned) != len(account_ids):
            raise ValidationError("One or more social accounts not found")
        return when
