"""
Instagram publisher (Facebook Graph API, Business / Creator accounts).

Docs: https://developers.facebook.com/docs/instagram-api/guides/content-publishing
Rate limits: 50 API calls/hour, 25 posts per 24-hour period

Account resolution:
  1. GET /me/accounts                                   → first connected page
  2. GET /{page_id}?fields=instagram_business_account   → ig_user_id

Flow (single image / video):
  1. POST /{ig_user_id}/media              → container_id
  2. (video) GET /{container_id}?fields=status_code until FINISHED
  3. POST /{ig_user_id}/media_publish      → post_id

Flow (carousel — up to 10 items):
  1. POST /{ig_user_id}/media for each item (is_carousel_item=true)  → child_ids
  2. POST /{ig_user_id}/media with CAROUSEL + children=[child_ids]    → parent_id
  3. POST /{ig_user_id}/media_publish with creation_id=parent_id      → post_id

The Graph API fetches media itself, so only URL media is accepted.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Sequence

import httpx

from crosspost.accounts.resolver import Credentials
from crosspost.content.models import InlineMedia, MediaReference, Platform
from crosspost.errors import MediaRejected, PlatformTransient, UnknownPublishError
from crosspost.publish.base import HttpPublisher
from crosspost.publish.media import is_video_url

logger = logging.getLogger(__name__)

_GRAPH_HOST = "https://graph.facebook.com"
CAROUSEL_MAX = 10


class InstagramPublisher(HttpPublisher):
    platform = Platform.INSTAGRAM

    def __init__(
        self,
        http: httpx.Client,
        *,
        api_version: str = "v18.0",
        poll_interval: float = 2.0,
        poll_attempts: int = 30,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        super().__init__(http, sleep=sleep)
        self.base_url = f"{_GRAPH_HOST}/{api_version}"
        self.poll_interval = poll_interval
        self.poll_attempts = poll_attempts

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _graph(self, method: str, path: str, context: str, **kwargs: Any) -> dict:
        """Call the Graph API and return parsed JSON, raising on error."""
        resp = self._check(self._send(method, f"{self.base_url}{path}", **kwargs), context)
        body = resp.json()
        if isinstance(body, dict) and "error" in body:
            err = body["error"]
            msg = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            raise UnknownPublishError(f"{context}: {msg}", platform=self.platform.value)
        return body

    def _post(self, path: str, token: str, data: dict, context: str) -> dict:
        return self._graph("POST", path, context, data={**data, "access_token": token})

    def _get(self, path: str, token: str, params: dict, context: str) -> dict:
        return self._graph("GET", path, context, params={**params, "access_token": token})

    # ------------------------------------------------------------------
    # Account resolution
    # ------------------------------------------------------------------

    def resolve_account_id(self, token: str) -> str:
        pages = self._get("/me/accounts", token, {}, "Failed to get Facebook pages")
        data = pages.get("data") or []
        if not data:
            raise MediaRejected(
                "No Facebook page found. Instagram Business account requires a "
                "connected Facebook page.",
                platform=self.platform.value,
            )
        page_id = data[0]["id"]

        page = self._get(
            f"/{page_id}",
            token,
            {"fields": "instagram_business_account"},
            "Failed to get Instagram business account",
        )
        ig_account = page.get("instagram_business_account") or {}
        if not ig_account.get("id"):
            raise MediaRejected(
                "No Instagram Business account connected to this Facebook page",
                platform=self.platform.value,
            )
        return ig_account["id"]

    # ------------------------------------------------------------------
    # Container creation
    # ------------------------------------------------------------------

    def create_container(
        self,
        token: str,
        account_id: str,
        media_url: str,
        caption: str = "",
        *,
        is_carousel_item: bool = False,
    ) -> str:
        """Create an image or video container.  Returns the (unpublished) container id."""
        payload: dict = (
            {"video_url": media_url, "media_type": "VIDEO"}
            if is_video_url(media_url)
            else {"image_url": media_url}
        )
        if is_carousel_item:
            payload["is_carousel_item"] = "true"
        else:
            payload["caption"] = caption

        body = self._post(
            f"/{account_id}/media", token, payload, "Failed to create media container"
        )
        container_id: str = body["id"]
        logger.info("Created Instagram media container: %s", container_id)
        return container_id

    def create_carousel_container(
        self, token: str, account_id: str, children_ids: list[str], caption: str = ""
    ) -> str:
        payload = {
            "media_type": "CAROUSEL",
            "caption": caption,
            "children": ",".join(children_ids),
        }
        body = self._post(f"/{account_id}/media", token, payload, "Failed to create carousel")
        container_id: str = body["id"]
        logger.info(
            "Created Instagram carousel container: %s (%d children)",
            container_id,
            len(children_ids),
        )
        return container_id

    def wait_until_ready(self, token: str, container_id: str) -> None:
        """Poll a video container until it is FINISHED."""
        for attempt in range(self.poll_attempts):
            resp = self._send(
                "GET",
                f"{self.base_url}/{container_id}",
                params={"fields": "status_code", "access_token": token},
            )
            if resp.status_code < 400:
                status = resp.json().get("status_code")
                if status == "FINISHED":
                    logger.debug("Container %s ready after %d poll(s)", container_id, attempt + 1)
                    return
                if status == "ERROR":
                    raise MediaRejected("Media processing failed", platform=self.platform.value)
            self._sleep(self.poll_interval)
        raise PlatformTransient("Media processing timeout", platform=self.platform.value)

    def publish_container(self, token: str, account_id: str, container_id: str) -> str:
        body = self._post(
            f"/{account_id}/media_publish",
            token,
            {"creation_id": container_id},
            "Failed to publish",
        )
        post_id: str = body["id"]
        logger.info("Published Instagram container %s → post %s", container_id, post_id)
        return post_id

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
                "Instagram media required: at least one image or video",
                platform=self.platform.value,
            )
        if any(isinstance(m, InlineMedia) for m in media):
            raise MediaRejected(
                "Instagram fetches media from public URLs; inline media is not supported",
                platform=self.platform.value,
            )

        urls = [m.url for m in media]
        token = credentials.access_token
        account_id = self.resolve_account_id(token)

        if len(urls) == 1:
            container_id = self.create_container(token, account_id, urls[0], content)
            if is_video_url(urls[0]):
                self.wait_until_ready(token, container_id)
            return self.publish_container(token, account_id, container_id)

        if len(urls) > CAROUSEL_MAX:
            logger.warning(
                "Instagram carousels support at most %d items (got %d); extra items dropped",
                CAROUSEL_MAX,
                len(urls),
            )
            urls = urls[:CAROUSEL_MAX]

        children: list[str] = []
        for url in urls:
            child_id = self.create_container(token, account_id, url, is_carousel_item=True)
            if is_video_url(url):
                self.wait_until_ready(token, child_id)
            children.append(child_id)

        parent_id = self.create_carousel_container(token, account_id, children, content)
        return self.publish_container(token, account_id, parent_id)
