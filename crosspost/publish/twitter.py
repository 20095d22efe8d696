"""
X/Twitter publisher using Tweepy.

Docs: https://docs.tweepy.org/en/stable/

Two credential sets are used per account:
  OAuth 2.0 user token   → tweepy.Client (API v2), tweet creation
  OAuth 1.0a token pair  → tweepy.API (v1.1), media upload

Media limits per tweet: up to 4 images, or exactly 1 video.  Videos are
uploaded chunked and polled until Twitter finishes processing them.
"""

from __future__ import annotations

import io
import logging
from typing import Callable, Optional, Sequence

import httpx
import tweepy

from crosspost.accounts.resolver import Credentials
from crosspost.content.models import MediaReference, Platform
from crosspost.errors import (
    AuthFailed,
    MediaRejected,
    PlatformTransient,
    PublishError,
    UnknownPublishError,
    error_for_status,
)
from crosspost.publish.base import HttpPublisher
from crosspost.publish.media import MediaBlob, load_media

logger = logging.getLogger(__name__)

MAX_IMAGES = 4
MAX_VIDEOS = 1

ClientFactory = Callable[[Credentials], "tweepy.Client"]
ApiFactory = Callable[[Credentials], "tweepy.API"]


class TwitterPublisher(HttpPublisher):
    platform = Platform.TWITTER

    def __init__(
        self,
        http: httpx.Client,
        *,
        consumer_key: str = "",
        consumer_secret: str = "",
        poll_interval: float = 2.0,
        poll_attempts: int = 60,
        client_factory: Optional[ClientFactory] = None,
        api_factory: Optional[ApiFactory] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        super().__init__(http, sleep=sleep)
        self._consumer_key = consumer_key
        self._consumer_secret = consumer_secret
        self.poll_interval = poll_interval
        self.poll_attempts = poll_attempts
        self._client_factory = client_factory or self._default_client
        self._api_factory = api_factory or self._default_api

    # ------------------------------------------------------------------
    # Tweepy construction
    # ------------------------------------------------------------------

    @staticmethod
    def _default_client(credentials: Credentials) -> "tweepy.Client":
        """API v2 client authenticated with the OAuth 2.0 user access token."""
        return tweepy.Client(bearer_token=credentials.access_token)

    def _default_api(self, credentials: Credentials) -> "tweepy.API":
        """v1.1 API authenticated with OAuth 1.0a user context (media upload)."""
        if not (self._consumer_key and self._consumer_secret):
            raise AuthFailed(
                "Twitter consumer key/secret are not configured; media upload needs OAuth 1.0a",
                platform=self.platform.value,
            )
        auth = tweepy.OAuth1UserHandler(
            self._consumer_key,
            self._consumer_secret,
            credentials.oauth1_token,
            credentials.oauth1_token_secret,
        )
        return tweepy.API(auth)

    def _translate(self, exc: Exception, context: str) -> PublishError:
        """Map a Tweepy exception onto the pipeline's error types."""
        if isinstance(exc, PublishError):
            return exc
        message = f"{context}: {exc}"
        if isinstance(exc, tweepy.HTTPException):
            status = getattr(exc.response, "status_code", None)
            if status is not None:
                retry_after = None
                headers = getattr(exc.response, "headers", None) or {}
                if "retry-after" in headers:
                    try:
                        retry_after = float(headers["retry-after"])
                    except ValueError:
                        retry_after = None
                return error_for_status(
                    status, message, platform=self.platform.value, retry_after=retry_after
                )
        if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError)):
            return PlatformTransient(message, platform=self.platform.value)
        return UnknownPublishError(message, platform=self.platform.value)

    # ------------------------------------------------------------------
    # Media upload
    # ------------------------------------------------------------------

    @staticmethod
    def check_media_counts(blobs: Sequence[MediaBlob]) -> None:
        videos = sum(1 for b in blobs if b.is_video)
        images = len(blobs) - videos
        if videos and images:
            raise MediaRejected(
                "Twitter does not allow mixing images and video in one tweet",
                platform=Platform.TWITTER.value,
            )
        if videos > MAX_VIDEOS or images > MAX_IMAGES:
            raise MediaRejected(
                f"Twitter supports up to {MAX_IMAGES} images or {MAX_VIDEOS} video per tweet",
                platform=Platform.TWITTER.value,
            )

    def upload_media(self, api: "tweepy.API", blob: MediaBlob) -> str:
        """Upload one file via the v1.1 media endpoint.  Returns the media_id_string."""
        try:
            if blob.is_video:
                media = api.media_upload(
                    blob.filename,
                    file=io.BytesIO(blob.data),
                    chunked=True,
                    media_category="tweet_video",
                )
            else:
                media = api.media_upload(blob.filename, file=io.BytesIO(blob.data))
        except Exception as exc:
            raise self._translate(exc, "Media upload failed") from exc

        media_id: str = media.media_id_string
        logger.info("Uploaded %s media → %s", blob.mime_type, media_id)
        if blob.is_video:
            self.wait_for_processing(api, media_id, getattr(media, "processing_info", None))
        return media_id

    def wait_for_processing(
        self, api: "tweepy.API", media_id: str, processing_info: Optional[dict]
    ) -> None:
        """Poll the upload status until Twitter reports the video ready."""
        info = processing_info
        for _ in range(self.poll_attempts):
            if not info:
                return
            state = info.get("state")
            if state == "succeeded":
                return
            if state == "failed":
                error = info.get("error") or {}
                raise MediaRejected(
                    f"Video processing failed: {error.get('message', 'unknown error')}",
                    platform=self.platform.value,
                )
            self._sleep(float(info.get("check_after_secs", self.poll_interval)))
            try:
                status = api.get_media_upload_status(media_id)
            except Exception as exc:
                raise self._translate(exc, "Media status check failed") from exc
            info = getattr(status, "processing_info", None)
        raise PlatformTransient("Video processing timeout", platform=self.platform.value)

    # ------------------------------------------------------------------
    # Publisher contract
    # ------------------------------------------------------------------

    def publish(
        self,
        credentials: Credentials,
        content: str,
        media: Sequence[MediaReference],
    ) -> str:
        media_ids: list[str] = []
        if media:
            if not credentials.has_oauth1:
                raise AuthFailed(
                    "Authentication failed: Twitter media upload requires OAuth 1.0a "
                    "credentials. Reconnect the account.",
                    platform=self.platform.value,
                )
            blobs = [load_media(m, self._http, platform=self.platform.value) for m in media]
            self.check_media_counts(blobs)
            api = self._api_factory(credentials)
            media_ids = [self.upload_media(api, blob) for blob in blobs]

        kwargs: dict = {"text": content, "user_auth": False}
        if media_ids:
            kwargs["media_ids"] = media_ids

        client = self._client_factory(credentials)
        try:
            response = client.create_tweet(**kwargs)
        except Exception as exc:
            raise self._translate(exc, "Tweet creation failed") from exc

        tweet_id = str(response.data["id"])
        logger.info("Posted tweet %s (%d media)", tweet_id, len(media_ids))
        return tweet_id
