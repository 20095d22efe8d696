"""
Publishing pipeline data models.

Target state machine (per delivery of one post to one account):

  pending → publishing → published
     │          └──────→ failed ──→ publishing (next queue attempt)
     └─────────────────→ failed     (credentials refused before publishing)

``published`` is terminal.  ``failed → failed`` only replaces the error
message of a retry attempt that failed again.  The post status is derived from the set of
target statuses, see ``crosspost.queue.aggregate``.
"""

from __future__ import annotations

import base64
import datetime as dt
import uuid
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex[:21]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Platform(str, Enum):
    TWITTER = "twitter"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    LINKEDIN = "linkedin"


class PostStatus(str, Enum):
    SCHEDULED = "scheduled"     # no target has started yet
    PUBLISHING = "publishing"   # at least one target in flight
    PUBLISHED = "published"     # every target, or at least one, succeeded
    FAILED = "failed"           # some failed, none succeeded


class TargetStatus(str, Enum):
    PENDING = "pending"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    FAILED = "failed"

    def can_transition_to(self, new: "TargetStatus") -> bool:
        return new in _TARGET_TRANSITIONS[self]


_TARGET_TRANSITIONS: dict[TargetStatus, set[TargetStatus]] = {
    TargetStatus.PENDING: {TargetStatus.PUBLISHING, TargetStatus.FAILED},
    TargetStatus.PUBLISHING: {TargetStatus.PUBLISHED, TargetStatus.FAILED},
    TargetStatus.FAILED: {TargetStatus.PUBLISHING, TargetStatus.FAILED},
    TargetStatus.PUBLISHED: set(),
}


# ---------------------------------------------------------------------------
# Media references
# ---------------------------------------------------------------------------


class UrlMedia(BaseModel):
    """Media the platform (or the adapter) fetches from a public URL."""

    kind: Literal["url"] = "url"
    url: str


class InlineMedia(BaseModel):
    """Media bytes carried inside the job payload."""

    kind: Literal["inline"] = "inline"
    data: str                   # base64
    mime_type: str

    @field_validator("data")
    @classmethod
    def _check_base64(cls, v: str) -> str:
        try:
            base64.b64decode(v, validate=True)
        except ValueError as exc:
            raise ValueError("inline media data must be base64") from exc
        return v

    @property
    def raw(self) -> bytes:
        return base64.b64decode(self.data)

    @classmethod
    def from_bytes(cls, payload: bytes, mime_type: str) -> "InlineMedia":
        return cls(data=base64.b64encode(payload).decode("ascii"), mime_type=mime_type)


MediaReference = Annotated[Union[UrlMedia, InlineMedia], Field(discriminator="kind")]


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------


class SocialAccount(BaseModel):
    """A connected credential set for one platform identity.  Tokens are ciphertext."""

    id: str = Field(default_factory=new_id)
    user_id: str
    platform: Platform
    platform_user_id: str
    platform_username: str
    access_token: str
    refresh_token: Optional[str] = None
    token_expires_at: Optional[dt.datetime] = None
    oauth1_access_token: Optional[str] = None
    oauth1_access_token_secret: Optional[str] = None
    profile_image_url: Optional[str] = None
    follower_count: Optional[int] = None
    is_active: bool = True
    created_at: dt.datetime = Field(default_factory=_now)
    updated_at: dt.datetime = Field(default_factory=_now)

    def token_expired(self, now: Optional[dt.datetime] = None) -> bool:
        if self.token_expires_at is None:
            return False
        now = now or _now()
        expires = (
            self.token_expires_at.replace(tzinfo=dt.timezone.utc)
            if self.token_expires_at.tzinfo is None
            else self.token_expires_at
        )
        return expires < now


class Post(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str
    content: str = ""
    media_urls: list[str] = Field(default_factory=list)
    scheduled_for: Optional[dt.datetime] = None
    status: PostStatus = PostStatus.SCHEDULED
    created_at: dt.datetime = Field(default_factory=_now)
    updated_at: dt.datetime = Field(default_factory=_now)


class PostTarget(BaseModel):
    id: str = Field(default_factory=new_id)
    post_id: str
    social_account_id: str
    status: TargetStatus = TargetStatus.PENDING
    platform_post_id: Optional[str] = None
    error_message: Optional[str] = None
    published_at: Optional[dt.datetime] = None


# ---------------------------------------------------------------------------
# Queue payload
# ---------------------------------------------------------------------------


class PublishJobPayload(BaseModel):
    """What one ``post-publishing`` job carries."""

    post_id: str
    user_id: str
    target_id: str
    social_account_id: str
    content: str = ""
    media: list[MediaReference] = Field(default_factory=list)

    @property
    def job_id(self) -> str:
        return f"post-{self.post_id}-{self.target_id}"

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict) -> "PublishJobPayload":
        return cls.model_validate(data)
