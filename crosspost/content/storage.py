"""
SQLite-backed relational store for accounts, posts and post targets.

Uses sqlite-utils for schema creation and simple CRUD.  Every mutation on the
publish path is scoped to one row by primary key; target transitions are a
single conditional ``UPDATE`` so two workers racing on the same target cannot
move it backwards.

Tables:
  social_accounts   id PK, user_id, platform, tokens (ciphertext), is_active …
  posts             id PK, user_id, content, media_urls (JSON), status …
  post_targets      id PK, post_id, social_account_id (unique pair), status …
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import threading
from pathlib import Path
from typing import Optional

import sqlite_utils

from crosspost.content.models import (
    Post,
    PostStatus,
    PostTarget,
    SocialAccount,
    TargetStatus,
)
from crosspost.db import open_database

logger = logging.getLogger(__name__)

# bump when adding columns
_SCHEMA_VERSION = 1


def _iso(value: Optional[dt.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class PipelineStore:
    """Persistent storage for SocialAccount, Post and PostTarget rows."""

    ACCOUNTS = "social_accounts"
    POSTS = "posts"
    TARGETS = "post_targets"
    META_TABLE = "meta"

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._db = open_database(db_path)
        self._lock = threading.RLock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema setup
    # ------------------------------------------------------------------

    def _ensure_schema(self) -> None:
        with self._lock:
            names = self._db.table_names()
            if self.ACCOUNTS not in names:
                self._db[self.ACCOUNTS].create(
                    {
                        "id": str,
                        "user_id": str,
                        "platform": str,
                        "platform_user_id": str,
                        "platform_username": str,
                        "access_token": str,
                        "refresh_token": str,
                        "token_expires_at": str,
                        "oauth1_access_token": str,
                        "oauth1_access_token_secret": str,
                        "profile_image_url": str,
                        "follower_count": int,
                        "is_active": int,
                        "created_at": str,
                        "updated_at": str,
                    },
                    pk="id",
                    not_null={"id", "user_id", "platform", "access_token"},
                )
                self._db[self.ACCOUNTS].create_index(["user_id"])

            if self.POSTS not in names:
                self._db[self.POSTS].create(
                    {
                        "id": str,
                        "user_id": str,
                        "content": str,
                        "media_urls": str,     # JSON list
                        "scheduled_for": str,
                        "status": str,
                        "created_at": str,
                        "updated_at": str,
                    },
                    pk="id",
                    not_null={"id", "user_id", "status"},
                )
                self._db[self.POSTS].create_index(["user_id"])
                self._db[self.POSTS].create_index(["created_at"])

            if self.TARGETS not in names:
                self._db[self.TARGETS].create(
                    {
                        "id": str,
                        "post_id": str,
                        "social_account_id": str,
                        "status": str,
                        "platform_post_id": str,
                        "error_message": str,
                        "published_at": str,
                    },
                    pk="id",
                    not_null={"id", "post_id", "social_account_id", "status"},
                )
                self._db[self.TARGETS].create_index(["post_id"])
                self._db[self.TARGETS].create_index(
                    ["post_id", "social_account_id"], unique=True
                )
                self._db[self.TARGETS].create_index(["status"])
                logger.debug("Created pipeline tables")

            if self.META_TABLE not in names:
                self._db[self.META_TABLE].insert(
                    {"key": "schema_version", "value": str(_SCHEMA_VERSION)}
                )

    # ------------------------------------------------------------------
    # Social accounts
    # ------------------------------------------------------------------

    def save_account(self, account: SocialAccount) -> SocialAccount:
        """Insert or replace an account."""
        with self._lock:
            self._db[self.ACCOUNTS].insert(self._account_row(account), replace=True)
        return account

    def get_account(self, account_id: str) -> Optional[SocialAccount]:
        with self._lock:
            try:
                row = self._db[self.ACCOUNTS].get(account_id)
            except sqlite_utils.db.NotFoundError:
                return None
        return SocialAccount.model_validate(row)

    def get_accounts(self, account_ids: list[str]) -> list[SocialAccount]:
        if not account_ids:
            return []
        placeholders = ", ".join("?" for _ in account_ids)
        with self._lock:
            rows = list(
                self._db[self.ACCOUNTS].rows_where(
                    f"id IN ({placeholders})", list(account_ids)
                )
            )
        return [SocialAccount.model_validate(r) for r in rows]

    def list_accounts(self, user_id: Optional[str] = None) -> list[SocialAccount]:
        with self._lock:
            if user_id:
                rows = list(
                    self._db[self.ACCOUNTS].rows_where(
                        "user_id = ?", [user_id], order_by="created_at"
                    )
                )
            else:
                rows = list(self._db[self.ACCOUNTS].rows_where(order_by="created_at"))
        return [SocialAccount.model_validate(r) for r in rows]

    def update_tokens(
        self,
        account_id: str,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: Optional[dt.datetime],
    ) -> None:
        """Store freshly refreshed (already encrypted) tokens."""
        with self._lock:
            self._db[self.ACCOUNTS].update(
                account_id,
                {
                    "access_token": access_token,
                    "refresh_token": refresh_token,
                    "token_expires_at": _iso(expires_at),
                    "updated_at": _now().isoformat(),
                },
            )

    def deactivate_account(self, account_id: str) -> None:
        """One-way: only a reconnect (outside the pipeline) reactivates."""
        with self._lock, self._db.conn:
            self._db.execute(
                f"UPDATE {self.ACCOUNTS} SET is_active = 0, updated_at = ? WHERE id = ?",
                [_now().isoformat(), account_id],
            )
        logger.warning("Deactivated social account %s", account_id)

    # ------------------------------------------------------------------
    # Posts and targets
    # ------------------------------------------------------------------

    def create_post(self, post: Post, targets: list[PostTarget]) -> Post:
        """
        Insert a post together with its targets.

        If the targets cannot be written the post row is removed again, so a
        post never exists without its targets.
        """
        if not targets:
            raise ValueError("A post needs at least one target.")
        with self._lock:
            self._db[self.POSTS].insert(self._post_row(post))
            try:
                self._db[self.TARGETS].insert_all(
                    [self._target_row(t) for t in targets]
                )
            except Exception:
                logger.error("Target insertion failed; removing post %s", post.id)
                self._db[self.POSTS].delete(post.id)
                raise
        logger.info("Created post %s with %d target(s)", post.id, len(targets))
        return post

    def get_post(self, post_id: str) -> Optional[Post]:
        with self._lock:
            try:
                row = self._db[self.POSTS].get(post_id)
            except sqlite_utils.db.NotFoundError:
                return None
        return self._post_from_row(row)

    def list_posts(self, user_id: str, limit: int = 50) -> list[Post]:
        """Most recent first."""
        with self._lock:
            rows = list(
                self._db[self.POSTS].rows_where(
                    "user_id = ?", [user_id], order_by="created_at DESC", limit=limit
                )
            )
        return [self._post_from_row(r) for r in rows]

    def set_post_status(self, post_id: str, status: PostStatus) -> None:
        with self._lock:
            self._db[self.POSTS].update(
                post_id, {"status": status.value, "updated_at": _now().isoformat()}
            )

    def delete_post(self, post_id: str) -> bool:
        """Delete a post and its targets.  Returns True if the post existed."""
        if self.get_post(post_id) is None:
            return False
        with self._lock:
            self._db[self.TARGETS].delete_where("post_id = ?", [post_id])
            self._db[self.POSTS].delete(post_id)
        return True

    def get_target(self, target_id: str) -> Optional[PostTarget]:
        with self._lock:
            try:
                row = self._db[self.TARGETS].get(target_id)
            except sqlite_utils.db.NotFoundError:
                return None
        return PostTarget.model_validate(row)

    def list_targets(self, post_id: str) -> list[PostTarget]:
        with self._lock:
            rows = list(self._db[self.TARGETS].rows_where("post_id = ?", [post_id]))
        return [PostTarget.model_validate(r) for r in rows]

    def transition_target(
        self,
        target_id: str,
        new_status: TargetStatus,
        *,
        platform_post_id: Optional[str] = None,
        error_message: Optional[str] = None,
        published_at: Optional[dt.datetime] = None,
    ) -> bool:
        """
        Move a target to ``new_status`` if its current status allows it.

        Returns False (and changes nothing) when the transition is not allowed,
        e.g. the target is already published.
        """
        allowed_from = [s.value for s in TargetStatus if s.can_transition_to(new_status)]
        if not allowed_from:
            return False

        updates: dict = {"status": new_status.value}
        if new_status is TargetStatus.PUBLISHED:
            updates["platform_post_id"] = platform_post_id
            updates["published_at"] = _iso(published_at or _now())
            updates["error_message"] = None
        elif new_status is TargetStatus.FAILED:
            updates["error_message"] = error_message

        assignments = ", ".join(f"{col} = ?" for col in updates)
        placeholders = ", ".join("?" for _ in allowed_from)
        sql = (
            f"UPDATE {self.TARGETS} SET {assignments} "
            f"WHERE id = ? AND status IN ({placeholders})"
        )
        with self._lock, self._db.conn:
            cursor = self._db.execute(
                sql, [*updates.values(), target_id, *allowed_from]
            )
        changed = cursor.rowcount == 1
        if not changed:
            logger.debug("Target %s: transition to %s refused", target_id, new_status.value)
        return changed

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _account_row(account: SocialAccount) -> dict:
        row = account.model_dump(mode="json")
        row["is_active"] = int(account.is_active)
        return row

    @staticmethod
    def _post_row(post: Post) -> dict:
        return {
            "id": post.id,
            "user_id": post.user_id,
            "content": post.content,
            "media_urls": json.dumps(post.media_urls),
            "scheduled_for": _iso(post.scheduled_for),
            "status": post.status.value,
            "created_at": post.created_at.isoformat(),
            "updated_at": post.updated_at.isoformat(),
        }

    @staticmethod
    def _post_from_row(row: dict) -> Post:
        data = dict(row)
        data["media_urls"] = json.loads(row["media_urls"] or "[]")
        return Post.model_validate(data)

    @staticmethod
    def _target_row(target: PostTarget) -> dict:
        return target.model_dump(mode="json")

    # ------------------------------------------------------------------
    # Context manager / cleanup
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._db.close()

    def __enter__(self) -> "PipelineStore":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
