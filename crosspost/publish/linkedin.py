"""
LinkedIn publisher (UGC Posts API, member shares).

Docs: https://learn.microsoft.com/en-us/linkedin/consumer/integrations/self-serve/share-on-linkedin

Flow:
  1. per media item (max 9):
       POST /v2/assets?action=registerUpload   → uploadUrl + asset URN
       PUT  uploadUrl (raw bytes)
  2. POST /v2/ugcPosts                          → post id in X-RestLi-Id header
"""

from __future__ import annotations

import logging
from typing import Sequence

from crosspost.accounts.resolver import Credentials
from crosspost.content.models import MediaReference, Platform
from crosspost.errors import MediaRejected, UnknownPublishError
from crosspost.publish.base import HttpPublisher
from crosspost.publish.media import MediaBlob, load_media

logger = logging.getLogger(__name__)

_API_BASE = "https://api.linkedin.com/v2"
_UPLOAD_MECHANISM = "com.linkedin.digitalmedia.uploading.MediaUploadHttpRequest"
MAX_MEDIA = 9

_RECIPES = {
    "image": "urn:li:digitalmediaRecipe:feedshare-image",
    "video": "urn:li:digitalmediaRecipe:feedshare-video",
}


class LinkedInPublisher(HttpPublisher):
    platform = Platform.LINKEDIN

    @staticmethod
    def author_urn(platform_user_id: str) -> str:
        return f"urn:li:person:{platform_user_id}"

    def _headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    # ------------------------------------------------------------------
    # Asset upload
    # ------------------------------------------------------------------

    def upload_asset(self, token: str, owner_urn: str, blob: MediaBlob) -> str:
        """Register and upload one image or video.  Returns the asset URN."""
        if blob.mime_type.startswith("video/"):
            kind = "video"
        elif blob.mime_type.startswith("image/"):
            kind = "image"
        else:
            raise MediaRejected(
                f"Unsupported media type for LinkedIn: {blob.mime_type}",
                platform=self.platform.value,
            )

        register = {
            "registerUploadRequest": {
                "recipes": [_RECIPES[kind]],
                "owner": owner_urn,
                "serviceRelationships": [
                    {
                        "relationshipType": "OWNER",
                        "identifier": "urn:li:userGeneratedContent",
                    }
                ],
            }
        }
        resp = self._check(
            self._send(
                "POST",
                f"{_API_BASE}/assets",
                params={"action": "registerUpload"},
                json=register,
                headers=self._headers(token),
            ),
            f"Failed to register {kind} upload",
        )
        value = resp.json().get("value") or {}
        upload_url = (value.get("uploadMechanism") or {}).get(_UPLOAD_MECHANISM, {}).get("uploadUrl")
        asset = value.get("asset")
        if not upload_url or not asset:
            raise UnknownPublishError(
                "LinkedIn did not return uploadUrl or asset URN", platform=self.platform.value
            )

        self._check(
            self._send("PUT", upload_url, content=blob.data, headers=self._headers(token)),
            f"Failed to upload {kind} binary",
        )
        logger.debug("Uploaded LinkedIn %s asset %s (%d bytes)", kind, asset, len(blob.data))
        return asset

    # ------------------------------------------------------------------
    # Publisher contract
    # ------------------------------------------------------------------

    def publish(
        self,
        credentials: Credentials,
        content: str,
        media: Sequence[MediaReference],
    ) -> str:
        token = credentials.access_token
        author = self.author_urn(credentials.platform_user_id)

        if len(media) > MAX_MEDIA:
            logger.warning(
                "LinkedIn allows at most %d media items (got %d); extra items dropped",
                MAX_MEDIA,
                len(media),
            )
        assets: list[str] = []
        has_video = False
        for ref in list(media)[:MAX_MEDIA]:
            blob = load_media(ref, self._http, platform=self.platform.value)
            assets.append(self.upload_asset(token, author, blob))
            has_video = has_video or blob.is_video

        category = "NONE"
        if assets:
            category = "VIDEO" if has_video else "IMAGE"

        share: dict = {
            "shareCommentary": {"text": content},
            "shareMediaCategory": category,
        }
        if assets:
            share["media"] = [{"status": "READY", "media": urn} for urn in assets]

        body = {
            "author": author,
            "lifecycleState": "PUBLISHED",
            "specificContent": {"com.linkedin.ugc.ShareContent": share},
            "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
        }
        resp = self._check(
            self._send(
                "POST",
                f"{_API_BASE}/ugcPosts",
                json=body,
                headers={**self._headers(token), "X-Restli-Protocol-Version": "2.0.0"},
            ),
            "LinkedIn post creation failed",
        )

        post_id = resp.headers.get("x-restli-id")
        if not post_id:
            try:
                data = resp.json()
            except ValueError:
                data = {}
            post_id = data.get("id") or (data.get("value") or {}).get("id") or "unknown"
        logger.info("Created LinkedIn post %s (%s, %d asset(s))", post_id, category, len(assets))
        return post_id
