"""
Helpers for turning ``MediaReference`` items into bytes the adapters can upload.
"""

from __future__ import annotations

import mimetypes
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from crosspost.content.models import InlineMedia, MediaReference, UrlMedia
from crosspost.errors import PlatformTransient, error_for_status

_VIDEO_URL = re.compile(r"\.(mp4|mov|avi)$", re.IGNORECASE)
_DEFAULT_MIME = "image/jpeg"


@dataclass
class MediaBlob:
    data: bytes
    mime_type: str

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/")

    @property
    def filename(self) -> str:
        """A name whose extension matches the MIME type (some SDKs sniff it)."""
        ext = mimetypes.guess_extension(self.mime_type) or ".bin"
        return f"upload{ext}"


def is_video_url(url: str) -> bool:
    return bool(_VIDEO_URL.search(url.split("?", 1)[0]))


def is_video(ref: MediaReference) -> bool:
    if isinstance(ref, InlineMedia):
        return ref.mime_type.startswith("video/")
    return is_video_url(ref.url)


def load_media(
    ref: MediaReference, http: httpx.Client, *, platform: Optional[str] = None
) -> MediaBlob:
    """Inline media is decoded; URL media is downloaded."""
    if isinstance(ref, InlineMedia):
        return MediaBlob(data=ref.raw, mime_type=ref.mime_type)

    if not isinstance(ref, UrlMedia):
        raise TypeError(f"Unsupported media reference: {ref!r}")
    try:
        resp = http.get(ref.url)
    except httpx.TransportError as exc:
        raise PlatformTransient(
            f"Failed to download media {ref.url}: {exc}", platform=platform or ""
        ) from exc
    if resp.status_code >= 400:
        raise error_for_status(
            resp.status_code,
            f"Failed to download media {ref.url} (HTTP {resp.status_code})",
            platform=platform or "",
        )
    mime = resp.headers.get("content-type", "").split(";", 1)[0].strip()
    if not mime:
        mime = mimetypes.guess_type(ref.url)[0] or _DEFAULT_MIME
    return MediaBlob(data=resp.content, mime_type=mime)
