"""
Tests for crosspost/content/submission.py
"""

from __future__ import annotations

import datetime as dt
from unittest.mock import MagicMock

import pytest

from crosspost.content.models import InlineMedia, Platform, PostStatus, TargetStatus
from crosspost.content.submission import PostComposer, parse_schedule
from crosspost.errors import ValidationError
from crosspost.queue.models import JobState


@pytest.fixture
def composer(store, queue, clock) -> PostComposer:
    return PostComposer(store, queue, clock=clock.now)


# ---------------------------------------------------------------------------
# parse_schedule
# ---------------------------------------------------------------------------


class TestParseSchedule:
    def test_z_suffix(self) -> None:
        assert parse_schedule("2025-03-01T10:00:00Z") == dt.datetime(
            2025, 3, 1, 10, tzinfo=dt.timezone.utc
        )

    def test_offset(self) -> None:
        parsed = parse_schedule("2025-03-01T12:00:00+02:00")
        assert parsed == dt.datetime(2025, 3, 1, 10, tzinfo=dt.timezone.utc)

    def test_naive_is_utc(self) -> None:
        assert parse_schedule(dt.datetime(2025, 3, 1, 10)).tzinfo is dt.timezone.utc

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty(self, value) -> None:
        assert parse_schedule(value) is None

    def test_garbage(self) -> None:
        with pytest.raises(ValidationError, match="Invalid scheduled time"):
            parse_schedule("next tuesday")


# ---------------------------------------------------------------------------
# Successful submission
# ---------------------------------------------------------------------------


class TestSubmit:
    def test_immediate_post(self, composer, store, queue, make_account) -> None:
        tw = make_account(Platform.TWITTER)
        li = make_account(Platform.LINKEDIN)

        receipt = composer.submit("user-1", [tw.id, li.id], content="hello")

        assert receipt.status is PostStatus.SCHEDULED
        assert receipt.target_count == 2
        assert receipt.media_count == 0
        assert receipt.scheduled_for is None
        post = store.get_post(receipt.post_id)
        assert post.content == "hello"
        assert post.status is PostStatus.SCHEDULED
        targets = store.list_targets(receipt.post_id)
        assert {t.social_account_id for t in targets} == {tw.id, li.id}
        assert all(t.status is TargetStatus.PENDING for t in targets)
        assert queue.counts()["waiting"] == 2
        assert sorted(receipt.job_ids) == sorted(f"post-{post.id}-{t.id}" for t in targets)

    def test_job_payload(self, composer, queue, make_account) -> None:
        account = make_account()

        receipt = composer.submit(
            "user-1", [account.id], content="hi", media=["https://x.example/a.jpg"]
        )

        payload = queue.get(receipt.job_ids[0]).payload
        assert payload.user_id == "user-1"
        assert payload.social_account_id == account.id
        assert payload.content == "hi"
        assert payload.media[0].url == "https://x.example/a.jpg"

    def test_media_only(self, composer, store, make_account) -> None:
        account = make_account(Platform.INSTAGRAM)
        inline = InlineMedia.from_bytes(b"\xff\xd8", "image/jpeg")

        receipt = composer.submit(
            "user-1", [account.id], media=["https://x.example/a.jpg", inline]
        )

        assert receipt.media_count == 2
        # only URL media is recorded on the post row
        assert store.get_post(receipt.post_id).media_urls == ["https://x.example/a.jpg"]

    def test_future_schedule_is_delayed(self, composer, queue, clock, make_account) -> None:
        account = make_account()
        when = clock.now() + dt.timedelta(hours=2)

        receipt = composer.submit("user-1", [account.id], content="later", scheduled_for=when)

        assert receipt.scheduled_for == when
        job = queue.get(receipt.job_ids[0])
        assert [j.id for j in queue.list_jobs(JobState.DELAYED)] == [job.id]
        assert job.run_at == pytest.approx(clock() + 7200)

    def test_iso_string_schedule(self, composer, queue, clock, make_account) -> None:
        account = make_account()
        when = (clock.now() + dt.timedelta(minutes=10)).strftime("%Y-%m-%dT%H:%M:%SZ")

        receipt = composer.submit("user-1", [account.id], content="x", scheduled_for=when)

        assert queue.counts()["delayed"] == 1
        assert receipt.scheduled_for.tzinfo is not None

    def test_past_schedule_publishes_now(self, composer, queue, clock, make_account) -> None:
        account = make_account()

        receipt = composer.submit(
            "user-1",
            [account.id],
            content="x",
            scheduled_for=clock.now() - dt.timedelta(minutes=5),
        )

        assert receipt.scheduled_for is None
        assert queue.counts()["waiting"] == 1

    def test_inside_grace_window_publishes_now(self, composer, queue, clock, make_account) -> None:
        account = make_account()

        receipt = composer.submit(
            "user-1", [account.id], content="x", scheduled_for=clock.now() - dt.timedelta(seconds=30)
        )

        assert receipt.scheduled_for is None
        assert queue.counts()["delayed"] == 0

    def test_inactive_account_accepted(self, composer, store, make_account) -> None:
        account = make_account(is_active=False)

        receipt = composer.submit("user-1", [account.id], content="x")

        assert store.get_post(receipt.post_id) is not None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    def _assert_nothing_written(self, store, queue) -> None:
        assert store.list_posts("user-1") == []
        assert sum(queue.counts().values()) == 0

    def test_requires_content_or_media(self, composer, store, queue, make_account) -> None:
        account = make_account()

        with pytest.raises(ValidationError, match="Content or media is required"):
            composer.submit("user-1", [account.id], content="   ")

        self._assert_nothing_written(store, queue)

    def test_requires_accounts(self, composer, store, queue) -> None:
        with pytest.raises(ValidationError, match="At least one social account"):
            composer.submit("user-1", [], content="x")

        self._assert_nothing_written(store, queue)

    def test_rejects_duplicate_accounts(self, composer, store, queue, make_account) -> None:
        account = make_account()

        with pytest.raises(ValidationError, match="Duplicate"):
            composer.submit("user-1", [account.id, account.id], content="x")

        self._assert_nothing_written(store, queue)

    def test_rejects_unknown_account(self, composer, store, queue, make_account) -> None:
        account = make_account()

        with pytest.raises(ValidationError, match="not found"):
            composer.submit("user-1", [account.id, "missing"], content="x")

        self._assert_nothing_written(store, queue)

    def test_rejects_other_users_account(self, composer, store, queue, make_account) -> None:
        theirs = make_account(user_id="someone-else")

        with pytest.raises(ValidationError, match="not found"):
            composer.submit("user-1", [theirs.id], content="x")

        self._assert_nothing_written(store, queue)

    def test_rejects_far_future(self, composer, store, queue, clock, make_account) -> None:
        account = make_account()

        with pytest.raises(ValidationError, match="365 days"):
            composer.submit(
                "user-1",
                [account.id],
                content="x",
                scheduled_for=clock.now() + dt.timedelta(days=366),
            )

        self._assert_nothing_written(store, queue)

    def test_rejects_bad_timestamp(self, composer, make_account) -> None:
        account = make_account()

        with pytest.raises(ValidationError):
            composer.submit("user-1", [account.id], content="x", scheduled_for="soon")


# ---------------------------------------------------------------------------
# Enqueue failure
# ---------------------------------------------------------------------------


class TestEnqueueFailure:
    def test_target_marked_failed(self, store, make_account) -> None:
        broken = MagicMock()
        broken.enqueue_now.side_effect = RuntimeError("queue unavailable")
        composer = PostComposer(store, broken)
        account = make_account()

        receipt = composer.submit("user-1", [account.id], content="x")

        assert receipt.status is PostStatus.FAILED
        assert receipt.job_ids == []
        (target,) = store.list_targets(receipt.post_id)
        assert target.status is TargetStatus.FAILED
        assert "queue unavailable" in target.error_message
        assert store.get_post(receipt.post_id).status is PostStatus.FAILED
