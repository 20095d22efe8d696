"""
Tests for crosspost/content/storage.py

Uses a real SQLite database in tmp_path.
"""

from __future__ import annotations

import datetime as dt

import pytest

from crosspost.content.models import Platform, Post, PostStatus, PostTarget, TargetStatus
from crosspost.content.storage import PipelineStore


def _post_with_targets(store: PipelineStore, n: int = 2) -> tuple[Post, list[PostTarget]]:
    post = Post(user_id="user-1", content="hello", media_urls=["https://x.example/a.jpg"])
    targets = [PostTarget(post_id=post.id, social_account_id=f"acct-{i}") for i in range(n)]
    store.create_post(post, targets)
    return post, targets


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class TestAccounts:
    def test_save_and_get(self, store: PipelineStore, make_account) -> None:
        account = make_account(Platform.LINKEDIN, token_expires_at=dt.datetime(2030, 1, 1, tzinfo=dt.timezone.utc))

        loaded = store.get_account(account.id)

        assert loaded.platform is Platform.LINKEDIN
        assert loaded.is_active is True
        assert loaded.token_expires_at == dt.datetime(2030, 1, 1, tzinfo=dt.timezone.utc)
        assert loaded.access_token == account.access_token

    def test_get_missing(self, store: PipelineStore) -> None:
        assert store.get_account("nope") is None

    def test_get_accounts_subset(self, store: PipelineStore, make_account) -> None:
        a = make_account()
        make_account()

        assert [x.id for x in store.get_accounts([a.id, "missing"])] == [a.id]
        assert store.get_accounts([]) == []

    def test_list_by_user(self, store: PipelineStore, make_account) -> None:
        make_account(user_id="alice")
        make_account(user_id="bob")

        assert [a.user_id for a in store.list_accounts("alice")] == ["alice"]
        assert len(store.list_accounts()) == 2

    def test_deactivate(self, store: PipelineStore, make_account) -> None:
        account = make_account()

        store.deactivate_account(account.id)

        assert store.get_account(account.id).is_active is False

    def test_update_tokens(self, store: PipelineStore, make_account) -> None:
        account = make_account()
        expires = dt.datetime(2031, 5, 5, tzinfo=dt.timezone.utc)

        store.update_tokens(account.id, "new-enc", "new-refresh-enc", expires)

        loaded = store.get_account(account.id)
        assert loaded.access_token == "new-enc"
        assert loaded.refresh_token == "new-refresh-enc"
        assert loaded.token_expires_at == expires


# ---------------------------------------------------------------------------
# Posts and targets
# ---------------------------------------------------------------------------


class TestPosts:
    def test_create_and_get(self, store: PipelineStore) -> None:
        post, targets = _post_with_targets(store)

        loaded = store.get_post(post.id)
        assert loaded.status is PostStatus.SCHEDULED
        assert loaded.media_urls == ["https://x.example/a.jpg"]
        assert {t.id for t in store.list_targets(post.id)} == {t.id for t in targets}
        assert all(t.status is TargetStatus.PENDING for t in store.list_targets(post.id))

    def test_post_needs_targets(self, store: PipelineStore) -> None:
        with pytest.raises(ValueError):
            store.create_post(Post(user_id="u"), [])

    def test_failed_target_insert_removes_post(self, store: PipelineStore) -> None:
        post = Post(user_id="u")
        duplicate = [
            PostTarget(post_id=post.id, social_account_id="same"),
            PostTarget(post_id=post.id, social_account_id="same"),
        ]

        with pytest.raises(Exception):
            store.create_post(post, duplicate)

        assert store.get_post(post.id) is None

    def test_list_posts_most_recent_first(self, store: PipelineStore) -> None:
        old = Post(user_id="u", created_at=dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc))
        new = Post(user_id="u", created_at=dt.datetime(2024, 6, 1, tzinfo=dt.timezone.utc))
        for post in (old, new):
            store.create_post(post, [PostTarget(post_id=post.id, social_account_id="a")])

        assert [p.id for p in store.list_posts("u")] == [new.id, old.id]
        assert store.list_posts("someone-else") == []

    def test_set_status(self, store: PipelineStore) -> None:
        post, _ = _post_with_targets(store)

        store.set_post_status(post.id, PostStatus.FAILED)

        assert store.get_post(post.id).status is PostStatus.FAILED

    def test_delete(self, store: PipelineStore) -> None:
        post, _ = _post_with_targets(store)

        assert store.delete_post(post.id) is True
        assert store.get_post(post.id) is None
        assert store.list_targets(post.id) == []
        assert store.delete_post(post.id) is False


class TestTargetTransitions:
    def test_full_path(self, store: PipelineStore) -> None:
        _, (target, _) = _post_with_targets(store)

        assert store.transition_target(target.id, TargetStatus.PUBLISHING)
        assert store.transition_target(target.id, TargetStatus.PUBLISHED, platform_post_id="X1")

        loaded = store.get_target(target.id)
        assert loaded.status is TargetStatus.PUBLISHED
        assert loaded.platform_post_id == "X1"
        assert loaded.published_at is not None

    def test_published_is_terminal(self, store: PipelineStore) -> None:
        _, (target, _) = _post_with_targets(store)
        store.transition_target(target.id, TargetStatus.PUBLISHING)
        store.transition_target(target.id, TargetStatus.PUBLISHED, platform_post_id="X1")

        assert not store.transition_target(target.id, TargetStatus.FAILED, error_message="late")
        assert not store.transition_target(target.id, TargetStatus.PUBLISHING)

        loaded = store.get_target(target.id)
        assert loaded.status is TargetStatus.PUBLISHED
        assert loaded.error_message is None

    def test_pending_cannot_skip_to_published(self, store: PipelineStore) -> None:
        _, (target, _) = _post_with_targets(store)

        assert not store.transition_target(target.id, TargetStatus.PUBLISHED)
        assert store.get_target(target.id).status is TargetStatus.PENDING

    def test_failure_message_kept_and_replaced(self, store: PipelineStore) -> None:
        _, (target, _) = _post_with_targets(store)

        store.transition_target(target.id, TargetStatus.FAILED, error_message="first")
        store.transition_target(target.id, TargetStatus.FAILED, error_message="second")

        assert store.get_target(target.id).error_message == "second"

    def test_success_after_retry_clears_error(self, store: PipelineStore) -> None:
        _, (target, _) = _post_with_targets(store)
        store.transition_target(target.id, TargetStatus.PUBLISHING)
        store.transition_target(target.id, TargetStatus.FAILED, error_message="503")
        store.transition_target(target.id, TargetStatus.PUBLISHING)
        store.transition_target(target.id, TargetStatus.PUBLISHED, platform_post_id="X2")

        loaded = store.get_target(target.id)
        assert loaded.error_message is None
        assert loaded.platform_post_id == "X2"

    def test_missing_target(self, store: PipelineStore) -> None:
        assert store.get_target("nope") is None
        assert not store.transition_target("nope", TargetStatus.PUBLISHING)
