"""
TikTok publisher (Content Posting API).  Video only.

Flow (inline video):
  1. POST /v2/post/publish/inbox/video/init/   source FILE_UPLOAD   → upload_url, upload_id
  2. PUT  upload_url (raw bytes)
  3. POST /v2/post/publish/video/init/         source FILE_UPLOAD   → publish_id

Flow (video URL):
  1. POST /v2/post/publish/video/init/         source PULL_FROM_URL → publish_id

Then POST /v2/post/publish/status/fetch/ every few seconds until
PUBLISH_COMPLETE (public post id, falling back to publish_id) or FAILED.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

import httpx

from crosspost.accounts.resolver import Credentials
from crosspost.content.models import InlineMedia, MediaReference, Platform
from crosspost.errors import MediaRejected, PlatformTransient, UnknownPublishError
from crosspost.publish.base import HttpPublisher

logger = logging.getLogger(__name__)

_API_BASE = "https://open.tiktokapis.com/v2"
TITLE_MAX = 150
MAX_VIDEO_BYTES = 4 * 1024 * 1024 * 1024
_VIDEO_SUBTYPES = ("mp4", "quicktime", "x-msvideo", "webm")


def validate_video(data: bytes, mime_type: str) -> None:
    """TikTok accepts MP4, MOV, AVI and WebM up to 4 GB."""
    subtype = mime_type.lower().split("/", 1)[-1]
    if not any(allowed in subtype for allowed in _VIDEO_SUBTYPES):
        raise MediaRejected(
            f"Invalid video format. TikTok supports: MP4, MOV, AVI, WebM. Got: {mime_type}",
            platform=Platform.TIKTOK.value,
        )
    if len(data) > MAX_VIDEO_BYTES:
        raise MediaRejected(
            "Video file too large. Maximum size is 4GB. "
            f"Got: {len(data) / 1024 / 1024:.2f}MB",
            platform=Platform.TIKTOK.value,
        )


class TikTokPublisher(HttpPublisher):
    platform = Platform.TIKTOK

    def __init__(
        self,
        http: httpx.Client,
        *,
        poll_interval: float = 5.0,
        poll_attempts: int = 60,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        super().__init__(http, sleep=sleep)
        self.poll_interval = poll_interval
        self.poll_attempts = poll_attempts

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json; charset=UTF-8",
        }

    def _api(self, token: str, path: str, body: dict, context: str) -> dict:
        """POST to the TikTok API; ``error.code`` other than ``ok`` is a failure."""
        resp = self._check(
            self._send("POST", f"{_API_BASE}{path}", json=body, headers=self._headers(token)),
            context,
        )
        payload = resp.json()
        error = payload.get("error") or {}
        if error.get("code") != "ok":
            raise UnknownPublishError(
                f"{context}: {error.get('message') or payload}", platform=self.platform.value
            )
        return payload.get("data") or {}

    @staticmethod
    def _post_info(content: str) -> dict:
        return {
            "title": content[:TITLE_MAX],
            "privacy_level": "PUBLIC_TO_EVERYONE",
            "disable_duet": False,
            "disable_comment": False,
            "disable_stitch": False,
        }

    # ------------------------------------------------------------------
    # Upload / publish steps
    # ------------------------------------------------------------------

    def upload_video(self, token: str, data: bytes, mime_type: str) -> str:
        """Inbox upload of raw bytes.  Returns the upload id."""
        init = self._api(
            token,
            "/post/publish/inbox/video/init/",
            {"source_info": {"source": "FILE_UPLOAD"}, "post_info": {"title": "Uploading..."}},
            "TikTok inbox init failed",
        )
        upload_url, upload_id = init["upload_url"], init["upload_id"]
        self._check(
            self._send("PUT", upload_url, content=data, headers={"Content-Type": mime_type}),
            "TikTok video upload failed",
        )
        logger.debug("Uploaded TikTok video %s (%.2f MB)", upload_id, len(data) / 1024 / 1024)
        return upload_id

    def init_publish(self, token: str, content: str, source_info: dict) -> str:
        data = self._api(
            token,
            "/post/publish/video/init/",
            {"post_info": self._post_info(content), "source_info": source_info},
            "TikTok publish init failed",
        )
        publish_id: str = data["publish_id"]
        logger.info("TikTok publish initialised: %s (%s)", publish_id, source_info["source"])
        return publish_id

    def wait_for_publish(self, token: str, publish_id: str) -> str:
        for _ in range(self.poll_attempts):
            resp = self._send(
                "POST",
                f"{_API_BASE}/post/publish/status/fetch/",
                json={"publish_id": publish_id},
                headers=self._headers(token),
            )
            if resp.status_code < 400:
                data = resp.json().get("data") or {}
                status = data.get("status")
                if status == "PUBLISH_COMPLETE":
                    public_ids = data.get("publicaly_available_post_id") or []
                    return str(public_ids[0]) if public_ids else publish_id
                if status == "FAILED":
                    raise UnknownPublishError(
                        f"TikTok publish failed: {data.get('fail_reason') or 'Unknown reason'}",
                        platform=self.platform.value,
                    )
                logger.debug("TikTok publish %s status %s", publish_id, status)
            self._sleep(self.poll_interval)
        raise PlatformTransient(
            "TikTok publish timeout - video may still be processing",
            platform=self.platform.value,
        )

    # ------------------------------------------------------------------
    # Publisher contract
    # ------------------------------------------------------------------

    def publish(
        self,
        credentials: Credentials,
        content: str,
        media: Sequence[MediaReference],
    ) -> str:
        if not media:
            raise MediaRejected(
                "TikTok requires a video to post", platform=self.platform.value
            )
        token = credentials.access_token
        video = media[0]

        if isinstance(video, InlineMedia):
            raw = video.raw
            validate_video(raw, video.mime_type)
            upload_id = self.upload_video(token, raw, video.mime_type)
            source = {"source": "FILE_UPLOAD", "upload_id": upload_id}
        else:
            source = {"source": "PULL_FROM_URL", "video_url": video.url}

        publish_id = self.init_publish(token, content, source)
        post_id = self.wait_for_publish(token, publish_id)
        logger.info("TikTok post published: %s", post_id)
        return post_id
