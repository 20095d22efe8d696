"""
Post status aggregation.

The post status is a pure function of its targets' statuses, checked in
this order:

  1. every target published                  → published
  2. some failed and some published          → published  (partial success)
  3. some failed, none published             → failed
  4. some publishing                         → publishing
  5. otherwise                               → scheduled

An empty target set satisfies rule 1.
"""

from __future__ import annotations

import logging
from typing import Iterable

from crosspost.content.models import PostStatus, TargetStatus
from crosspost.content.storage import PipelineStore

logger = logging.getLogger(__name__)


def aggregate_status(statuses: Iterable[TargetStatus]) -> PostStatus:
    statuses = list(statuses)
    if all(s is TargetStatus.PUBLISHED for s in statuses):
        return PostStatus.PUBLISHED
    if any(s is TargetStatus.FAILED for s in statuses):
        if any(s is TargetStatus.PUBLISHED for s in statuses):
            return PostStatus.PUBLISHED
        return PostStatus.FAILED
    if any(s is TargetStatus.PUBLISHING for s in statuses):
        return PostStatus.PUBLISHING
    return PostStatus.SCHEDULED


class StatusAggregator:
    """Recomputes and stores a post's status from its current targets."""

    def __init__(self, store: PipelineStore) -> None:
        self.store = store

    def recompute(self, post_id: str) -> PostStatus:
        targets = self.store.list_targets(post_id)
        status = aggregate_status(t.status for t in targets)
        self.store.set_post_status(post_id, status)
        logger.info("Post %s status → %s", post_id, status.value)
        return status
